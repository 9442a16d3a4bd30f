"""
BILLING LEDGER ENGINE - PAYMENT STATUS MACHINE

Any status may be set directly; what the machine enforces are the field
co-requirements of the target status, checked on every write:

    paid            -> payment_date is set
    partially_paid  -> 0 < paid_amount < amount
    cancelled       -> nothing

`validate_transition` is the single place those checks live.

Entering (or staying in) paid runs the on-enter hooks; the engine wires
the Ledger Synchronizer there. Partial payments are not booked as income.
Leaving paid never removes the ledger entry (the ledger is append-only).
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional
import logging

from pydantic import ValidationError as PydanticValidationError

from billing_models import PaymentInstallment, PaymentStatus
from ledger_core.errors import NotFound, StoreError, ValidationError
from ledger_core.financial_precision import outstanding_balance, round_financial, validate_positive
from ledger_core.series_resolution import is_series_member

if TYPE_CHECKING:
    from ledger_store import LedgerStore

logger = logging.getLogger(__name__)

STATUSES = [s.value for s in PaymentStatus]

EDITABLE_FIELDS = (
    "description",
    "amount",
    "due_date",
    "payment_date",
    "payment_method",
    "status",
    "paid_amount",
    "email_template",
)

# Field guard: raises ValidationError when the record cannot hold the status
StatusGuard = Callable[[Dict[str, Any]], None]

# Hook signature: async def hook(installment) -> result
EnterHook = Callable[[PaymentInstallment], Awaitable[Any]]


# =============================================================================
# CO-REQUIREMENT GUARDS
# =============================================================================

def require_payment_date(fields: Dict[str, Any]) -> None:
    if not fields.get("payment_date"):
        raise ValidationError(
            "payment_date",
            "Payment date is required for paid payments"
        )


def require_partial_amount(fields: Dict[str, Any]) -> None:
    paid_amount = fields.get("paid_amount")
    if paid_amount is None:
        raise ValidationError(
            "paid_amount",
            "Paid amount is required for partially paid payments"
        )

    paid = round_financial(paid_amount)
    amount = round_financial(fields.get("amount") or 0)
    if not (Decimal('0') < paid < amount):
        raise ValidationError(
            "paid_amount",
            f"Paid amount must be greater than 0 and less than {amount}: {paid}",
            {"paid_amount": float(paid), "amount": float(amount)}
        )


STATUS_GUARDS: Dict[str, List[StatusGuard]] = {
    PaymentStatus.PAID.value: [require_payment_date],
    PaymentStatus.PARTIALLY_PAID.value: [require_partial_amount],
}


def validate_transition(old_status: Optional[str], new_status: str, fields: Dict[str, Any]) -> None:
    """
    Validate that a record with `fields` may hold `new_status`.

    `old_status` does not restrict the move (every state is directly
    settable) but is reported in errors.
    """
    if new_status not in STATUSES:
        raise ValidationError(
            "status",
            f"Unknown payment status '{new_status}'. Allowed: {STATUSES}",
            {"from_status": old_status}
        )

    for guard in STATUS_GUARDS.get(new_status, []):
        try:
            guard(fields)
        except ValidationError as e:
            e.details.update({"from_status": old_status, "to_status": new_status})
            raise


# =============================================================================
# STATUS MACHINE
# =============================================================================

@dataclass
class TransitionResult:
    installment: PaymentInstallment
    from_status: str
    to_status: str
    hook_results: List[Any] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def status(self) -> str:
        return "success_with_warnings" if self.warnings else "success"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "installment": self.installment.model_dump(mode="json"),
            "hook_results": [
                r.to_dict() if hasattr(r, "to_dict") else r for r in self.hook_results
            ],
            "warnings": self.warnings
        }


class PaymentStatusMachine:
    """
    Applies installment edits with status co-requirements enforced.

    Example:
        machine = PaymentStatusMachine(store)
        machine.on_enter("paid", synchronizer.sync_installment)
        await machine.update_installment(installment_id, {"status": "paid", "payment_date": d})
    """

    def __init__(self, store: "LedgerStore"):
        self.store = store
        self._enter_hooks: Dict[str, List[EnterHook]] = {}

    def on_enter(self, status: str, hook: EnterHook) -> "PaymentStatusMachine":
        """Register a hook that runs after a record is persisted with `status`."""
        if status not in STATUSES:
            raise ValueError(f"Unknown payment status: {status}")
        self._enter_hooks.setdefault(status, []).append(hook)
        return self

    async def update_installment(self, installment_id: str, changes: Dict[str, Any]) -> TransitionResult:
        """
        Merge `changes` into the installment, validate, persist, run hooks.

        Raises:
            ValidationError: the merged record breaks a co-requirement (nothing persisted)
            NotFound: installment does not exist
            StoreError: persisting the installment failed
        """
        unknown = sorted(set(changes) - set(EDITABLE_FIELDS))
        if unknown:
            raise ValidationError(
                unknown[0],
                f"Field(s) not editable: {unknown}",
                {"installment_id": installment_id}
            )

        current = await self.store.get_installment(installment_id)
        if current is None:
            raise NotFound("PaymentInstallment", installment_id)

        if (
            "description" in changes
            and is_series_member(current)
            and changes["description"] != current.description
        ):
            # Series membership is derived from the description
            raise ValidationError(
                "description",
                "Description of a series installment cannot be edited individually",
                {"installment_id": installment_id, "description": current.description}
            )

        merged = {**current.model_dump(), **changes}
        from_status = current.status
        to_status = merged.get("status") or from_status

        if "amount" in changes:
            validate_positive(changes["amount"], "amount")
        validate_transition(from_status, to_status, merged)

        try:
            updated = PaymentInstallment.model_validate(merged)
        except PydanticValidationError as e:
            first = e.errors()[0]
            raise ValidationError(
                str(first["loc"][0]) if first.get("loc") else "installment",
                first.get("msg", str(e)),
                {"installment_id": installment_id}
            )

        updated = await self.store.upsert_installment(updated)
        logger.info(f"[STATUS_MACHINE] Installment {installment_id}: '{from_status}' -> '{to_status}'")

        if to_status == PaymentStatus.PARTIALLY_PAID:
            logger.info(
                f"[STATUS_MACHINE] Installment {installment_id} partially paid; "
                f"open balance {outstanding_balance(updated.amount, updated.paid_amount)} not booked"
            )

        if from_status == PaymentStatus.PAID and to_status != PaymentStatus.PAID:
            logger.warning(
                f"[STATUS_MACHINE] Installment {installment_id} left 'paid'; "
                f"its cash flow entry is kept (ledger is append-only)"
            )

        result = TransitionResult(installment=updated, from_status=from_status, to_status=to_status)

        for hook in self._enter_hooks.get(to_status, []):
            try:
                result.hook_results.append(await hook(updated))
            except StoreError as e:
                logger.error(
                    f"[STATUS_MACHINE] Installment {installment_id} saved as '{to_status}' "
                    f"but follow-up failed: {e}"
                )
                result.warnings.append(
                    f"Installment saved, but a follow-up step failed: {e.message}. "
                    f"Repeat the edit to retry."
                )

        return result
