"""
BILLING LEDGER ENGINE - LEDGER SYNCHRONIZER

Books realized income in the cash-flow ledger when an installment is
marked paid:
1. Update the installment (status=paid, payment_date)
2. Look up cash-flow entries by payment_id; stop if one exists
3. Insert a single income entry

Steps 1 and 3 are independent writes. An installment left paid without
an entry is found by LedgerIntegrityJob; running mark_paid again books
the missing entry without duplicating an existing one.

The store-level unique index on cash_flow.payment_id is the backstop for
two concurrent calls passing step 2 together.
"""

from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING, Any, Dict, Optional
import logging

from billing_models import CashFlowEntry, CashFlowType, PaymentInstallment, PaymentStatus
from ledger_core.errors import DuplicateLedgerEntryError, NotFound, ValidationError
from ledger_core.payment_status_machine import validate_transition

if TYPE_CHECKING:
    from ledger_store import LedgerStore

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = "payment"


@dataclass
class LedgerSyncResult:
    installment_id: str
    created: bool
    entry_id: Optional[str] = None
    message: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "installment_id": self.installment_id,
            "created": self.created,
            "entry_id": self.entry_id,
            "message": self.message
        }


class LedgerSynchronizer:

    def __init__(self, store: "LedgerStore", category: str = DEFAULT_CATEGORY):
        self.store = store
        self.category = category

    async def mark_paid(self, installment_id: str, payment_date: Optional[date]) -> LedgerSyncResult:
        """
        Mark an installment paid and book it as income exactly once.

        Raises:
            ValidationError: payment_date missing (nothing persisted)
            NotFound: installment does not exist
            StoreError: a write failed
        """
        if payment_date is None:
            raise ValidationError(
                "payment_date",
                "Payment date is required for paid payments",
                {"installment_id": installment_id}
            )

        installment = await self.store.get_installment(installment_id)
        if installment is None:
            raise NotFound("PaymentInstallment", installment_id)

        fields = {**installment.model_dump(), "payment_date": payment_date}
        validate_transition(installment.status, PaymentStatus.PAID.value, fields)

        updated = await self.store.upsert_installment(installment.model_copy(update={
            "status": PaymentStatus.PAID.value,
            "payment_date": payment_date
        }))
        logger.info(
            f"[LEDGER_SYNC] Installment {installment_id} marked paid on {payment_date} "
            f"(was {installment.status})"
        )

        return await self.sync_installment(updated)

    async def sync_installment(self, installment: PaymentInstallment) -> LedgerSyncResult:
        """Book the income entry for an already-paid installment if it has none."""
        if installment.status != PaymentStatus.PAID or installment.payment_date is None:
            return LedgerSyncResult(
                installment_id=installment.id,
                created=False,
                message="Installment is not paid; nothing to book"
            )

        existing = await self.store.list_cash_flow_entries(installment.id)
        if existing:
            if len(existing) > 1:
                logger.warning(
                    f"[LEDGER_SYNC] {len(existing)} cash flow entries already exist "
                    f"for installment {installment.id}"
                )
            logger.info(f"[LEDGER_SYNC] Cash flow entry already exists for {installment.id}")
            return LedgerSyncResult(
                installment_id=installment.id,
                created=False,
                entry_id=existing[0].id,
                message="Cash flow entry already exists"
            )

        entry = CashFlowEntry(
            type=CashFlowType.INCOME,
            amount=installment.amount,
            date=installment.payment_date,
            description=installment.description,
            category=self.category,
            payment_id=installment.id
        )

        try:
            await self.store.insert_cash_flow_entry(entry)
        except DuplicateLedgerEntryError:
            logger.info(
                f"[LEDGER_SYNC] Concurrent booking detected for {installment.id}; "
                f"unique index kept a single entry"
            )
            return LedgerSyncResult(
                installment_id=installment.id,
                created=False,
                message="Cash flow entry already exists"
            )

        logger.info(
            f"[LEDGER_SYNC] Booked income {installment.amount} on {installment.payment_date} "
            f"for installment {installment.id}"
        )
        return LedgerSyncResult(
            installment_id=installment.id,
            created=True,
            entry_id=entry.id,
            message="Cash flow entry created"
        )
