from pydantic import BaseModel, Field
from typing import Optional, List, Dict, Any
from datetime import datetime, date
from enum import Enum
import uuid


# Alias so the CashFlowEntry "date" field does not shadow the type
EntryDate = date


def new_id() -> str:
    return str(uuid.uuid4())


# ============================================
# ENUMERATIONS
# ============================================
class PaymentStatus(str, Enum):
    PENDING = "pending"
    BILLED = "billed"
    AWAITING_INVOICE = "awaiting_invoice"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class PlanStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    PIX = "pix"
    BOLETO = "boleto"
    CREDIT_CARD = "credit_card"


class CashFlowType(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"


# ============================================
# RECURRING BILLING PLAN MODEL
# ============================================
class RecurringBillingPlan(BaseModel):
    id: str = Field(default_factory=new_id)
    client_id: str
    description: str
    amount: float
    installments: int = Field(ge=0)  # Total count of sibling installments
    due_day: int = Field(ge=1, le=31)
    start_date: date
    end_date: Optional[date] = None
    status: PlanStatus = PlanStatus.PENDING
    payment_method: PaymentMethod = PaymentMethod.PIX
    email_template: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.utcnow())
    updated_at: datetime = Field(default_factory=lambda: datetime.utcnow())

    class Config:
        use_enum_values = True


class PlanCreate(BaseModel):
    client_id: str
    description: str
    amount: float
    installments: int = Field(ge=1)
    due_day: int = Field(ge=1, le=31)
    start_date: date
    end_date: Optional[date] = None
    payment_method: PaymentMethod = PaymentMethod.PIX
    email_template: Optional[str] = None

    class Config:
        use_enum_values = True


# ============================================
# PAYMENT INSTALLMENT MODEL
# ============================================
class PaymentInstallment(BaseModel):
    id: str = Field(default_factory=new_id)
    client_id: str
    description: str  # Base description, optionally suffixed "(i/N)"
    amount: float
    due_date: date
    payment_date: Optional[date] = None
    payment_method: PaymentMethod = PaymentMethod.PIX
    status: PaymentStatus = PaymentStatus.PENDING
    installment_number: Optional[int] = None  # 1-based; None for one-off payments
    total_installments: Optional[int] = None
    paid_amount: Optional[float] = None
    email_template: Optional[str] = None
    created_at: datetime = Field(default_factory=lambda: datetime.utcnow())
    updated_at: datetime = Field(default_factory=lambda: datetime.utcnow())

    class Config:
        use_enum_values = True


class InstallmentUpdate(BaseModel):
    """Editable fields of an installment. Unset fields are left untouched."""
    description: Optional[str] = None
    amount: Optional[float] = None
    due_date: Optional[date] = None
    payment_date: Optional[date] = None
    payment_method: Optional[PaymentMethod] = None
    status: Optional[PaymentStatus] = None
    paid_amount: Optional[float] = None
    email_template: Optional[str] = None

    class Config:
        use_enum_values = True


# ============================================
# CASH FLOW ENTRY MODEL (append-only)
# ============================================
class CashFlowEntry(BaseModel):
    id: str = Field(default_factory=new_id)
    type: CashFlowType
    amount: float
    date: EntryDate
    description: str
    category: str
    payment_id: Optional[str] = None  # Back-reference, lookup only
    created_at: datetime = Field(default_factory=lambda: datetime.utcnow())

    class Config:
        use_enum_values = True


# ============================================
# REQUEST MODELS
# ============================================
class MarkPaidRequest(BaseModel):
    payment_date: Optional[date] = None


class StartDatePreviewRequest(BaseModel):
    new_start_date: date
    old_start_date: Optional[date] = None


class StartDateChangeRequest(BaseModel):
    new_start_date: date
    old_start_date: Optional[date] = None
    confirm_shift: bool = False


class ResequenceRequest(BaseModel):
    client_id: str
    base_description: str
    totals: List[int] = Field(min_length=1)


class HealthCheck(BaseModel):
    service_name: str
    status: str
    details: Dict[str, Any] = Field(default_factory=dict)
