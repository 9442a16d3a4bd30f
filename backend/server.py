from fastapi import FastAPI, APIRouter, HTTPException, status, Depends
from dotenv import load_dotenv
from starlette.middleware.cors import CORSMiddleware
from motor.motor_asyncio import AsyncIOMotorClient
import os
import logging
from pathlib import Path
from typing import Dict, Any

from billing_models import (
    PlanCreate,
    InstallmentUpdate,
    MarkPaidRequest,
    StartDatePreviewRequest,
    StartDateChangeRequest,
    ResequenceRequest,
    HealthCheck
)
from ledger_core import (
    BillingLedgerEngine,
    LedgerEngineError,
    ValidationError,
    NotFound,
    StoreError,
    InvariantViolation
)
from ledger_store import LedgerStore, MotorLedgerStore

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Configure logging
logging.basicConfig(
    level=os.environ.get('LOG_LEVEL', 'INFO').upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# MongoDB connection
mongo_url = os.environ.get('MONGO_URL', 'mongodb://localhost:27017')
client = AsyncIOMotorClient(mongo_url)
db = client[os.environ.get('DB_NAME', 'billing_ledger')]

CASH_FLOW_CATEGORY = os.environ.get('CASH_FLOW_CATEGORY', 'payment')

ledger_store = MotorLedgerStore(db)

# Create the main app
app = FastAPI(
    title="Billing Ledger Consistency Engine",
    version="1.0.0",
    description="Keeps recurring billing plans, installments and the cash flow ledger consistent"
)

# Create router with /api prefix
api_router = APIRouter(prefix="/api")


def get_store() -> LedgerStore:
    return ledger_store


def get_engine(store: LedgerStore = Depends(get_store)) -> BillingLedgerEngine:
    return BillingLedgerEngine(store, cash_flow_category=CASH_FLOW_CATEGORY)


def to_http_exception(error: LedgerEngineError) -> HTTPException:
    """Map engine errors to HTTP responses; details are passed through for retries."""
    if isinstance(error, ValidationError):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(error, NotFound):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(error, InvariantViolation):
        code = status.HTTP_409_CONFLICT
    elif isinstance(error, StoreError):
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    else:
        code = status.HTTP_500_INTERNAL_SERVER_ERROR

    if code >= 500:
        logger.error(f"Ledger operation failed: {error.message} {error.details}")
    else:
        logger.info(f"Ledger operation rejected: {error.message}")

    return HTTPException(
        status_code=code,
        detail={"error": type(error).__name__, "message": error.message, "details": error.details}
    )


# ============================================
# HEALTH
# ============================================

@api_router.get("/health", response_model=HealthCheck)
async def health_check():
    return HealthCheck(
        service_name="Billing Ledger Consistency Engine",
        status="healthy",
        details={"db_name": db.name}
    )


# ============================================
# PLAN ENDPOINTS
# ============================================

@api_router.post("/plans", status_code=status.HTTP_201_CREATED)
async def create_plan(
    plan_data: PlanCreate,
    engine: BillingLedgerEngine = Depends(get_engine)
) -> Dict[str, Any]:
    """Create a recurring billing plan and generate its installments."""
    try:
        result = await engine.create_plan(plan_data)
    except LedgerEngineError as e:
        raise to_http_exception(e)
    return result.to_dict()


@api_router.post("/plans/{plan_id}/cancel")
async def cancel_plan(
    plan_id: str,
    engine: BillingLedgerEngine = Depends(get_engine)
) -> Dict[str, Any]:
    """Cancel a plan together with its pending and overdue installments."""
    try:
        result = await engine.cancel_plan(plan_id)
    except LedgerEngineError as e:
        raise to_http_exception(e)
    return result.to_dict()


@api_router.post("/plans/{plan_id}/mark-paid")
async def mark_plan_paid(
    plan_id: str,
    request: MarkPaidRequest,
    engine: BillingLedgerEngine = Depends(get_engine)
) -> Dict[str, Any]:
    try:
        result = await engine.mark_plan_paid(plan_id, request.payment_date)
    except LedgerEngineError as e:
        raise to_http_exception(e)
    return result.to_dict()


@api_router.post("/plans/{plan_id}/start-date/preview")
async def preview_start_date_change(
    plan_id: str,
    request: StartDatePreviewRequest,
    engine: BillingLedgerEngine = Depends(get_engine)
) -> Dict[str, Any]:
    """
    Report the day offset and number of installments a start date change
    would shift, so the user can confirm before applying it.
    """
    try:
        preview = await engine.preview_start_date_change(
            plan_id, request.new_start_date, request.old_start_date
        )
    except LedgerEngineError as e:
        raise to_http_exception(e)
    return preview.to_dict()


@api_router.post("/plans/{plan_id}/start-date")
async def apply_start_date_change(
    plan_id: str,
    request: StartDateChangeRequest,
    engine: BillingLedgerEngine = Depends(get_engine)
) -> Dict[str, Any]:
    """
    Store the plan's new start date. Installment due dates move by the same
    number of days only when confirm_shift is true.
    """
    try:
        result = await engine.apply_start_date_change(
            plan_id, request.old_start_date, request.new_start_date, request.confirm_shift
        )
    except LedgerEngineError as e:
        raise to_http_exception(e)
    return result.to_dict()


# ============================================
# INSTALLMENT ENDPOINTS
# ============================================

@api_router.patch("/installments/{installment_id}")
async def update_installment(
    installment_id: str,
    update_data: InstallmentUpdate,
    engine: BillingLedgerEngine = Depends(get_engine)
) -> Dict[str, Any]:
    """
    Edit an installment. Status co-requirements are checked before anything
    is written; setting status 'paid' books the income entry.
    """
    changes = update_data.model_dump(exclude_unset=True)
    try:
        result = await engine.update_installment(installment_id, changes)
    except LedgerEngineError as e:
        raise to_http_exception(e)
    return result.to_dict()


@api_router.post("/installments/{installment_id}/mark-paid")
async def mark_installment_paid(
    installment_id: str,
    request: MarkPaidRequest,
    engine: BillingLedgerEngine = Depends(get_engine)
) -> Dict[str, Any]:
    try:
        result = await engine.mark_paid(installment_id, request.payment_date)
    except LedgerEngineError as e:
        raise to_http_exception(e)
    return result.to_dict()


@api_router.post("/installments/{installment_id}/duplicate", status_code=status.HTTP_201_CREATED)
async def duplicate_installment(
    installment_id: str,
    engine: BillingLedgerEngine = Depends(get_engine)
) -> Dict[str, Any]:
    try:
        copy = await engine.duplicate(installment_id)
    except LedgerEngineError as e:
        raise to_http_exception(e)
    return copy.model_dump(mode="json")


@api_router.delete("/installments/{installment_id}")
async def delete_installment(
    installment_id: str,
    engine: BillingLedgerEngine = Depends(get_engine)
) -> Dict[str, Any]:
    """
    Delete an installment and renumber the rest of its series.
    A failed renumbering after a successful delete answers
    'success_with_warnings' with the parameters for /series/resequence.
    """
    try:
        result = await engine.delete_installment(installment_id)
    except LedgerEngineError as e:
        raise to_http_exception(e)
    return result.to_dict()


@api_router.post("/series/resequence")
async def resequence_series(
    request: ResequenceRequest,
    engine: BillingLedgerEngine = Depends(get_engine)
) -> Dict[str, Any]:
    try:
        result = await engine.resequence(request.client_id, request.base_description, request.totals)
    except LedgerEngineError as e:
        raise to_http_exception(e)
    return result.to_dict()


# ============================================
# LEDGER
# ============================================

@api_router.get("/ledger/integrity")
async def ledger_integrity(engine: BillingLedgerEngine = Depends(get_engine)) -> Dict[str, Any]:
    """Report paid installments whose cash flow booking is missing, doubled or wrong."""
    try:
        return await engine.check_ledger_integrity()
    except LedgerEngineError as e:
        raise to_http_exception(e)


app.include_router(api_router)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def create_ledger_indexes():
    await ledger_store.create_indexes()


@app.on_event("shutdown")
async def shutdown_db_client():
    client.close()
