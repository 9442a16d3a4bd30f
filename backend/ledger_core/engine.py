"""
BILLING LEDGER ENGINE

Composes the components over one ledger store:
- SeriesResolver (shared sibling resolution)
- InstallmentSequencer (delete + renumber)
- PaymentStatusMachine (status edits, co-requirements)
- LedgerSynchronizer (mark paid, at most one income entry)
- ScheduleShifter (start date change, due date shift)
- Duplicator (standalone copy)
- PlanLifecycle (create / cancel / mark paid)
- LedgerIntegrityJob (reconciliation report)

Entry points used by the API layer are the methods below.
"""

from datetime import date
from typing import TYPE_CHECKING, Any, Dict, Iterable, Optional
import logging

from billing_models import PaymentInstallment, PaymentStatus, PlanCreate
from ledger_core.duplicator import Duplicator
from ledger_core.installment_sequencer import InstallmentSequencer, SequenceResult
from ledger_core.ledger_integrity_job import LedgerIntegrityJob
from ledger_core.ledger_sync import DEFAULT_CATEGORY, LedgerSynchronizer, LedgerSyncResult
from ledger_core.payment_status_machine import PaymentStatusMachine, TransitionResult
from ledger_core.plan_lifecycle import PlanLifecycle, PlanOperationResult
from ledger_core.schedule_shifter import ScheduleShifter, ShiftPreview, ShiftResult
from ledger_core.series_resolution import SeriesResolver

if TYPE_CHECKING:
    from ledger_store import LedgerStore

logger = logging.getLogger(__name__)


class BillingLedgerEngine:

    def __init__(self, store: "LedgerStore", cash_flow_category: str = DEFAULT_CATEGORY):
        self.store = store
        self.resolver = SeriesResolver(store)
        self.sequencer = InstallmentSequencer(store, self.resolver)
        self.synchronizer = LedgerSynchronizer(store, category=cash_flow_category)
        self.status_machine = PaymentStatusMachine(store).on_enter(
            PaymentStatus.PAID.value, self.synchronizer.sync_installment
        )
        self.shifter = ScheduleShifter(store, self.resolver)
        self.duplicator = Duplicator(store)
        self.plans = PlanLifecycle(store, self.synchronizer, self.resolver)

    # ---- installments ----

    async def delete_installment(self, installment_id: str) -> SequenceResult:
        return await self.sequencer.delete_installment(installment_id)

    async def resequence(self, client_id: str, base_description: str, totals: Iterable[int]) -> SequenceResult:
        return await self.sequencer.resequence(client_id, base_description, totals)

    async def update_installment(self, installment_id: str, changes: Dict[str, Any]) -> TransitionResult:
        return await self.status_machine.update_installment(installment_id, changes)

    async def mark_paid(self, installment_id: str, payment_date: Optional[date]) -> LedgerSyncResult:
        return await self.synchronizer.mark_paid(installment_id, payment_date)

    async def duplicate(self, payment_id: str) -> PaymentInstallment:
        return await self.duplicator.duplicate(payment_id)

    # ---- plans ----

    async def create_plan(self, data: PlanCreate) -> PlanOperationResult:
        return await self.plans.create_plan(data)

    async def cancel_plan(self, plan_id: str) -> PlanOperationResult:
        return await self.plans.cancel_plan(plan_id)

    async def mark_plan_paid(self, plan_id: str, payment_date: Optional[date]) -> PlanOperationResult:
        return await self.plans.mark_plan_paid(plan_id, payment_date)

    async def preview_start_date_change(
        self,
        plan_id: str,
        new_start_date: date,
        old_start_date: Optional[date] = None
    ) -> ShiftPreview:
        return await self.shifter.preview_start_date_change(plan_id, new_start_date, old_start_date)

    async def apply_start_date_change(
        self,
        plan_id: str,
        old_start_date: Optional[date],
        new_start_date: date,
        confirm_shift: bool = False
    ) -> ShiftResult:
        return await self.shifter.apply_start_date_change(
            plan_id, old_start_date, new_start_date, confirm_shift
        )

    # ---- reconciliation ----

    async def check_ledger_integrity(self) -> Dict[str, Any]:
        return await LedgerIntegrityJob(self.store).run()
