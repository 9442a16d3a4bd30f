"""
BILLING LEDGER ENGINE - LEDGER INTEGRITY JOB

Reconciliation read that compares paid installments with the cash-flow
ledger. For each paid installment:
1. Exactly one cash-flow entry with payment_id == installment id
2. That entry's amount equals the installment amount

Mismatches are reported, never fixed here. Re-running mark_paid on a
MISSING_LEDGER_ENTRY installment books the missing entry.

Usage:
    job = LedgerIntegrityJob(store)
    report = await job.run()
"""

from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List
import logging

from billing_models import PaymentInstallment, PaymentStatus
from ledger_core.financial_precision import amounts_match

if TYPE_CHECKING:
    from ledger_store import LedgerStore

logger = logging.getLogger(__name__)


class LedgerIntegrityJob:
    """Reports paid installments whose ledger booking is missing, doubled or wrong."""

    def __init__(self, store: "LedgerStore"):
        self.store = store
        self.mismatches: List[Dict[str, Any]] = []
        self.checked_count = 0

    async def run(self) -> Dict[str, Any]:
        start_time = datetime.utcnow()
        self.mismatches = []
        self.checked_count = 0

        logger.info("[INTEGRITY_JOB] Starting ledger integrity check...")

        paid = await self.store.list_installments_by_status(PaymentStatus.PAID.value)
        for installment in paid:
            await self._check_installment(installment)

        end_time = datetime.utcnow()
        duration_ms = (end_time - start_time).total_seconds() * 1000

        report = {
            "job_name": "LedgerIntegrityJob",
            "status": "completed",
            "started_at": start_time.isoformat(),
            "completed_at": end_time.isoformat(),
            "duration_ms": round(duration_ms, 2),
            "installments_checked": self.checked_count,
            "mismatches_found": len(self.mismatches),
            "mismatches": self.mismatches
        }

        if self.mismatches:
            logger.warning(
                f"[INTEGRITY_JOB] Completed with {len(self.mismatches)} mismatches "
                f"out of {self.checked_count} paid installments"
            )
        else:
            logger.info(
                f"[INTEGRITY_JOB] Completed successfully. "
                f"All {self.checked_count} paid installments verified."
            )

        return report

    async def _check_installment(self, installment: PaymentInstallment):
        self.checked_count += 1
        entries = await self.store.list_cash_flow_entries(installment.id)

        if not entries:
            self._record(installment, "MISSING_LEDGER_ENTRY", entry_count=0)
            return

        if len(entries) > 1:
            self._record(
                installment,
                "DUPLICATE_LEDGER_ENTRY",
                entry_count=len(entries),
                entry_ids=[e.id for e in entries]
            )

        for entry in entries:
            if not amounts_match(entry.amount, installment.amount):
                self._record(
                    installment,
                    "AMOUNT_MISMATCH",
                    entry_id=entry.id,
                    stored=entry.amount,
                    expected=installment.amount
                )

    def _record(self, installment: PaymentInstallment, mismatch_type: str, **details):
        self.mismatches.append({
            "type": mismatch_type,
            "installment_id": installment.id,
            "client_id": installment.client_id,
            "description": installment.description,
            "checked_at": datetime.utcnow().isoformat(),
            **details
        })
        logger.warning(f"[INTEGRITY_JOB] {mismatch_type} for installment {installment.id}: {details}")
