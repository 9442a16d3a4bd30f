"""
Shared fixtures for the billing ledger tests.

InMemoryLedgerStore stands in for MongoDB. It keeps the same contract as
MotorLedgerStore (prefix lookups, unique payment_id on cash flow) and can
be told to fail a given operation to exercise partial-failure paths.
"""
from collections import Counter
from datetime import date
from typing import Dict, List, Optional

import pytest

from billing_models import (
    CashFlowEntry,
    PaymentInstallment,
    PaymentStatus,
    RecurringBillingPlan,
)
from ledger_core import BillingLedgerEngine, DuplicateLedgerEntryError, StoreError
from ledger_core.plan_lifecycle import installment_due_date
from ledger_core.series_resolution import format_installment_description
from ledger_store import LedgerStore


class InMemoryLedgerStore(LedgerStore):

    def __init__(self):
        self.installments: Dict[str, PaymentInstallment] = {}
        self.plans: Dict[str, RecurringBillingPlan] = {}
        self.cash_flow: List[CashFlowEntry] = []
        self.calls = Counter()
        self._failures: Dict[str, Dict[str, int]] = {}

    # ---- failure injection ----

    def fail_on(self, operation: str, after: int = 0, times: int = 1):
        """Fail `operation` `times` times once it has succeeded `after` times."""
        self._failures[operation] = {"after": self.calls[operation] + after, "times": times}

    def _call(self, operation: str):
        self.calls[operation] += 1
        rule = self._failures.get(operation)
        if rule and rule["times"] > 0 and self.calls[operation] > rule["after"]:
            rule["times"] -= 1
            raise StoreError(operation, ConnectionError("injected failure"))

    # ---- installments ----

    async def get_installment(self, installment_id):
        self._call("get_installment")
        record = self.installments.get(installment_id)
        return record.model_copy(deep=True) if record else None

    async def list_installments(self, client_id, description_prefix, total_installments=None):
        self._call("list_installments")
        rows = [
            r.model_copy(deep=True) for r in self.installments.values()
            if r.client_id == client_id
            and r.description.startswith(description_prefix)
            and (total_installments is None or r.total_installments == total_installments)
        ]
        return sorted(rows, key=lambda r: r.installment_number or 0)

    async def list_installments_by_status(self, status):
        self._call("list_installments_by_status")
        return [r.model_copy(deep=True) for r in self.installments.values() if r.status == status]

    async def upsert_installment(self, record):
        self._call("upsert_installment")
        self.installments[record.id] = record.model_copy(deep=True)
        return record

    async def delete_installment(self, installment_id):
        self._call("delete_installment")
        return self.installments.pop(installment_id, None) is not None

    # ---- plans ----

    async def get_plan(self, plan_id):
        self._call("get_plan")
        record = self.plans.get(plan_id)
        return record.model_copy(deep=True) if record else None

    async def list_plans(self, client_id, description_prefix=""):
        self._call("list_plans")
        rows = [
            p.model_copy(deep=True) for p in self.plans.values()
            if p.client_id == client_id and p.description.startswith(description_prefix)
        ]
        return sorted(rows, key=lambda p: p.start_date)

    async def upsert_plan(self, record):
        self._call("upsert_plan")
        self.plans[record.id] = record.model_copy(deep=True)
        return record

    # ---- cash flow ----

    async def list_cash_flow_entries(self, payment_id):
        self._call("list_cash_flow_entries")
        return [e.model_copy(deep=True) for e in self.cash_flow if e.payment_id == payment_id]

    async def insert_cash_flow_entry(self, record):
        self._call("insert_cash_flow_entry")
        if record.payment_id and any(e.payment_id == record.payment_id for e in self.cash_flow):
            raise DuplicateLedgerEntryError(record.payment_id)
        self.cash_flow.append(record.model_copy(deep=True))
        return record

    # ---- seeding helpers (synchronous, bypass failure injection) ----

    def seed_series(
        self,
        count: int,
        client_id: str = "client-1",
        base_description: str = "Mensalidade",
        amount: float = 100.0,
        start_date: date = date(2024, 1, 10),
        due_day: int = 10,
        with_plan: bool = True
    ) -> List[PaymentInstallment]:
        """Seed a contiguous 1..count series, optionally with its owning plan."""
        if with_plan:
            self.seed_plan(
                client_id=client_id,
                description=base_description,
                amount=amount,
                installments=count,
                due_day=due_day,
                start_date=start_date
            )

        members = []
        for index in range(count):
            number = index + 1
            members.append(self.seed_installment(
                client_id=client_id,
                description=format_installment_description(base_description, number, count),
                amount=amount,
                due_date=installment_due_date(start_date, due_day, index),
                installment_number=number,
                total_installments=count
            ))
        return members

    def seed_plan(self, **fields) -> RecurringBillingPlan:
        plan = RecurringBillingPlan(**fields)
        self.plans[plan.id] = plan
        return plan

    def seed_installment(self, **fields) -> PaymentInstallment:
        fields.setdefault("client_id", "client-1")
        fields.setdefault("amount", 100.0)
        fields.setdefault("due_date", date(2024, 1, 10))
        fields.setdefault("status", PaymentStatus.PENDING)
        installment = PaymentInstallment(**fields)
        self.installments[installment.id] = installment
        return installment

    def seed_cash_flow(self, **fields) -> CashFlowEntry:
        """Insert an entry without the unique payment_id check."""
        fields.setdefault("type", "income")
        fields.setdefault("category", "payment")
        entry = CashFlowEntry(**fields)
        self.cash_flow.append(entry)
        return entry

    def series(self, client_id: str = "client-1", base_description: str = "Mensalidade") -> List[PaymentInstallment]:
        """Current series members ordered by number, for assertions."""
        rows = [
            r for r in self.installments.values()
            if r.client_id == client_id
            and r.installment_number is not None
            and r.description.startswith(f"{base_description} (")
        ]
        return sorted(rows, key=lambda r: r.installment_number)

    def only_plan(self) -> Optional[RecurringBillingPlan]:
        plans = list(self.plans.values())
        assert len(plans) == 1, f"expected exactly one plan, found {len(plans)}"
        return plans[0]


@pytest.fixture
def store():
    return InMemoryLedgerStore()


@pytest.fixture
def engine(store):
    return BillingLedgerEngine(store)
