"""
LEDGER STORE - REPOSITORY INTERFACE

The engine reaches the persisted relational store only through this
narrow surface:
- get_installment / list_installments / upsert_installment / delete_installment
- get_plan / list_plans / upsert_plan
- list_cash_flow_entries / insert_cash_flow_entry

MotorLedgerStore implements it over MongoDB collections:
    recurring_billing, payments, cash_flow

Every driver failure is raised as StoreError so the engine can report
which step of a multi-step sequence failed.
"""

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging
import re

from motor.motor_asyncio import AsyncIOMotorDatabase
from pymongo import ASCENDING
from pymongo.errors import DuplicateKeyError, PyMongoError

from billing_models import CashFlowEntry, PaymentInstallment, RecurringBillingPlan
from ledger_core.errors import DuplicateLedgerEntryError, StoreError

logger = logging.getLogger(__name__)

UNIQUE_PAYMENT_INDEX = "unique_cash_flow_payment_id"


class LedgerStore(ABC):
    """Repository surface consumed by the billing ledger engine."""

    # ---- installments ----

    @abstractmethod
    async def get_installment(self, installment_id: str) -> Optional[PaymentInstallment]:
        """Return the installment or None when it does not exist."""

    @abstractmethod
    async def list_installments(
        self,
        client_id: str,
        description_prefix: str,
        total_installments: Optional[int] = None
    ) -> List[PaymentInstallment]:
        """Installments of a client whose description starts with the prefix."""

    @abstractmethod
    async def list_installments_by_status(self, status: str) -> List[PaymentInstallment]:
        ...

    @abstractmethod
    async def upsert_installment(self, record: PaymentInstallment) -> PaymentInstallment:
        ...

    @abstractmethod
    async def delete_installment(self, installment_id: str) -> bool:
        """Delete by id. Returns False when nothing was deleted."""

    # ---- plans ----

    @abstractmethod
    async def get_plan(self, plan_id: str) -> Optional[RecurringBillingPlan]:
        ...

    @abstractmethod
    async def list_plans(
        self,
        client_id: str,
        description_prefix: str = ""
    ) -> List[RecurringBillingPlan]:
        ...

    @abstractmethod
    async def upsert_plan(self, record: RecurringBillingPlan) -> RecurringBillingPlan:
        ...

    # ---- cash flow (append-only) ----

    @abstractmethod
    async def list_cash_flow_entries(self, payment_id: str) -> List[CashFlowEntry]:
        ...

    @abstractmethod
    async def insert_cash_flow_entry(self, record: CashFlowEntry) -> CashFlowEntry:
        """Raises DuplicateLedgerEntryError when payment_id is already booked."""

    async def create_indexes(self) -> None:
        """Create store-side constraints. No-op for stores without indexes."""
        return None


def to_document(record) -> Dict[str, Any]:
    """Serialize a model for MongoDB: id becomes _id, dates become ISO strings."""
    doc = record.model_dump(mode="json")
    doc["_id"] = doc.pop("id")
    return doc


def from_document(model, doc: Optional[Dict[str, Any]]):
    if doc is None:
        return None
    data = dict(doc)
    data["id"] = str(data.pop("_id"))
    return model.model_validate(data)


class MotorLedgerStore(LedgerStore):
    """MongoDB-backed ledger store (motor)."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db
        self.plans = db.recurring_billing
        self.installments = db.payments
        self.cash_flow = db.cash_flow

    @asynccontextmanager
    async def _operation(self, name: str, **context):
        try:
            yield
        except DuplicateKeyError:
            raise
        except PyMongoError as e:
            logger.error(f"[LEDGER_STORE] {name} failed {context}: {str(e)}")
            raise StoreError(name, e, context)

    # ---- installments ----

    async def get_installment(self, installment_id: str) -> Optional[PaymentInstallment]:
        async with self._operation("get_installment", installment_id=installment_id):
            doc = await self.installments.find_one({"_id": installment_id})
        return from_document(PaymentInstallment, doc)

    async def list_installments(
        self,
        client_id: str,
        description_prefix: str,
        total_installments: Optional[int] = None
    ) -> List[PaymentInstallment]:
        query: Dict[str, Any] = {
            "client_id": client_id,
            "description": {"$regex": f"^{re.escape(description_prefix)}"}
        }
        if total_installments is not None:
            query["total_installments"] = total_installments

        async with self._operation("list_installments", client_id=client_id,
                                   description_prefix=description_prefix):
            cursor = self.installments.find(query).sort("installment_number", ASCENDING)
            docs = await cursor.to_list(length=None)
        return [from_document(PaymentInstallment, doc) for doc in docs]

    async def list_installments_by_status(self, status: str) -> List[PaymentInstallment]:
        async with self._operation("list_installments_by_status", status=status):
            docs = await self.installments.find({"status": status}).to_list(length=None)
        return [from_document(PaymentInstallment, doc) for doc in docs]

    async def upsert_installment(self, record: PaymentInstallment) -> PaymentInstallment:
        record = record.model_copy(update={"updated_at": datetime.utcnow()})
        async with self._operation("upsert_installment", installment_id=record.id):
            await self.installments.replace_one(
                {"_id": record.id}, to_document(record), upsert=True
            )
        return record

    async def delete_installment(self, installment_id: str) -> bool:
        async with self._operation("delete_installment", installment_id=installment_id):
            result = await self.installments.delete_one({"_id": installment_id})
        return result.deleted_count > 0

    # ---- plans ----

    async def get_plan(self, plan_id: str) -> Optional[RecurringBillingPlan]:
        async with self._operation("get_plan", plan_id=plan_id):
            doc = await self.plans.find_one({"_id": plan_id})
        return from_document(RecurringBillingPlan, doc)

    async def list_plans(
        self,
        client_id: str,
        description_prefix: str = ""
    ) -> List[RecurringBillingPlan]:
        query: Dict[str, Any] = {"client_id": client_id}
        if description_prefix:
            query["description"] = {"$regex": f"^{re.escape(description_prefix)}"}

        async with self._operation("list_plans", client_id=client_id):
            docs = await self.plans.find(query).sort("start_date", ASCENDING).to_list(length=None)
        return [from_document(RecurringBillingPlan, doc) for doc in docs]

    async def upsert_plan(self, record: RecurringBillingPlan) -> RecurringBillingPlan:
        record = record.model_copy(update={"updated_at": datetime.utcnow()})
        async with self._operation("upsert_plan", plan_id=record.id):
            await self.plans.replace_one(
                {"_id": record.id}, to_document(record), upsert=True
            )
        return record

    # ---- cash flow ----

    async def list_cash_flow_entries(self, payment_id: str) -> List[CashFlowEntry]:
        async with self._operation("list_cash_flow_entries", payment_id=payment_id):
            docs = await self.cash_flow.find({"payment_id": payment_id}).to_list(length=None)
        return [from_document(CashFlowEntry, doc) for doc in docs]

    async def insert_cash_flow_entry(self, record: CashFlowEntry) -> CashFlowEntry:
        try:
            async with self._operation("insert_cash_flow_entry", payment_id=record.payment_id):
                await self.cash_flow.insert_one(to_document(record))
        except DuplicateKeyError as e:
            raise DuplicateLedgerEntryError(record.payment_id, e)
        return record

    async def create_indexes(self) -> None:
        """
        Create the unique payment_id constraint on cash_flow and the lookup indexes.

        The unique partial index closes the read-then-write race of two
        concurrent "mark paid" calls on the same installment, so failing to
        build it raises StoreError. Lookup indexes are created one by one
        and a failure is only logged.
        """
        try:
            await self.cash_flow.create_index(
                [("payment_id", ASCENDING)],
                unique=True,
                partialFilterExpression={"payment_id": {"$type": "string"}},
                name=UNIQUE_PAYMENT_INDEX
            )
        except PyMongoError as e:
            logger.error(f"[LEDGER_STORE] Could not create {UNIQUE_PAYMENT_INDEX}: {str(e)}")
            raise StoreError("create_index", e, {"index": UNIQUE_PAYMENT_INDEX})
        logger.info(f"[LEDGER_STORE] Created index: {UNIQUE_PAYMENT_INDEX}")

        lookup_indexes = [
            (
                self.installments,
                [
                    ("client_id", ASCENDING),
                    ("total_installments", ASCENDING),
                    ("installment_number", ASCENDING)
                ],
                "idx_payments_series"
            ),
            (self.installments, [("status", ASCENDING)], "idx_payments_status"),
            (
                self.plans,
                [("client_id", ASCENDING), ("description", ASCENDING)],
                "idx_recurring_billing_client_description"
            ),
        ]
        for collection, keys, name in lookup_indexes:
            try:
                await collection.create_index(keys, name=name)
                logger.info(f"[LEDGER_STORE] Created index: {name}")
            except PyMongoError as e:
                logger.warning(f"[LEDGER_STORE] Lookup index {name} not created: {str(e)}")
