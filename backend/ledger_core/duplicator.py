"""
BILLING LEDGER ENGINE - DUPLICATOR

Clones a payment into a new standalone pending record. The copy never
joins a series and the source is never written.
"""

from typing import TYPE_CHECKING
import logging

from billing_models import PaymentInstallment, PaymentStatus
from ledger_core.errors import NotFound

if TYPE_CHECKING:
    from ledger_store import LedgerStore

logger = logging.getLogger(__name__)

COPY_SUFFIX = " (Cópia)"


def build_copy(source: PaymentInstallment) -> PaymentInstallment:
    return PaymentInstallment(
        client_id=source.client_id,
        description=f"{source.description}{COPY_SUFFIX}",
        amount=source.amount,
        due_date=source.due_date,
        payment_method=source.payment_method,
        email_template=source.email_template,
        status=PaymentStatus.PENDING,
        payment_date=None,
        installment_number=None,
        total_installments=None,
        paid_amount=None
    )


class Duplicator:

    def __init__(self, store: "LedgerStore"):
        self.store = store

    async def duplicate(self, payment_id: str) -> PaymentInstallment:
        source = await self.store.get_installment(payment_id)
        if source is None:
            raise NotFound("PaymentInstallment", payment_id)

        copy = await self.store.upsert_installment(build_copy(source))
        logger.info(f"[DUPLICATOR] Duplicated payment {payment_id} as {copy.id}")
        return copy
