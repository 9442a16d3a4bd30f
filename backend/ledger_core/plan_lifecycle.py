"""
BILLING LEDGER ENGINE - PLAN LIFECYCLE

Plan-level operations that fan out to the plan's installment series:
- create_plan: persist the plan and generate installments "(1/N)".."(N/N)"
- cancel_plan: cancel the plan and its pending/overdue installments
- mark_plan_paid: settle every open installment through the Ledger
  Synchronizer, so each one is booked at most once
"""

from calendar import monthrange
from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING, Any, Dict, List, Optional
import logging

from billing_models import (
    PaymentInstallment,
    PaymentStatus,
    PlanCreate,
    PlanStatus,
    RecurringBillingPlan,
)
from ledger_core.errors import NotFound, ValidationError
from ledger_core.financial_precision import to_float, validate_positive
from ledger_core.ledger_sync import LedgerSynchronizer, LedgerSyncResult
from ledger_core.series_resolution import (
    SeriesResolver,
    format_installment_description,
    series_key_for_plan,
    strip_installment_suffix,
)

if TYPE_CHECKING:
    from ledger_store import LedgerStore

logger = logging.getLogger(__name__)

CANCELLABLE_STATUSES = (PaymentStatus.PENDING.value, PaymentStatus.OVERDUE.value)
SETTLED_STATUSES = (PaymentStatus.PAID.value, PaymentStatus.CANCELLED.value)


def add_months(year: int, month: int, months: int):
    index = (year * 12 + month - 1) + months
    return index // 12, index % 12 + 1


def installment_due_date(start_date: date, due_day: int, index: int) -> date:
    """
    Due date of the installment at zero-based `index`.

    The first installment falls on the first `due_day` on or after
    start_date; later ones follow monthly. Days past the end of a month
    are clamped to its last day.
    """
    first_offset = 0 if due_day >= start_date.day else 1
    year, month = add_months(start_date.year, start_date.month, first_offset + index)
    return date(year, month, min(due_day, monthrange(year, month)[1]))


@dataclass
class PlanOperationResult:
    plan: RecurringBillingPlan
    installment_ids: List[str] = field(default_factory=list)
    ledger: List[LedgerSyncResult] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plan": self.plan.model_dump(mode="json"),
            "installment_ids": self.installment_ids,
            "ledger": [r.to_dict() for r in self.ledger]
        }


class PlanLifecycle:

    def __init__(
        self,
        store: "LedgerStore",
        synchronizer: LedgerSynchronizer,
        resolver: Optional[SeriesResolver] = None
    ):
        self.store = store
        self.synchronizer = synchronizer
        self.resolver = resolver or SeriesResolver(store)

    async def create_plan(self, data: PlanCreate) -> PlanOperationResult:
        """
        Persist a plan and generate its installment series.

        Raises:
            ValidationError: bad amount/dates, or a series with the same
                client, description and count already exists
        """
        amount = validate_positive(data.amount, "amount")
        if data.end_date is not None and data.end_date < data.start_date:
            raise ValidationError("end_date", "End date cannot be before start date")

        base_description = strip_installment_suffix(data.description)
        if not base_description:
            raise ValidationError("description", "Description is required")

        plan = RecurringBillingPlan(
            **{**data.model_dump(), "description": base_description, "amount": to_float(amount)}
        )

        existing = await self.resolver.resolve_key(series_key_for_plan(plan))
        if existing.size:
            raise ValidationError(
                "description",
                f"Client already has a {plan.installments}-installment series "
                f"named {base_description!r}",
                {"existing_ids": existing.ids}
            )

        plan = await self.store.upsert_plan(plan)

        result = PlanOperationResult(plan=plan)
        for index in range(plan.installments):
            number = index + 1
            installment = await self.store.upsert_installment(PaymentInstallment(
                client_id=plan.client_id,
                description=format_installment_description(base_description, number, plan.installments),
                amount=plan.amount,
                due_date=installment_due_date(plan.start_date, plan.due_day, index),
                payment_method=plan.payment_method,
                email_template=plan.email_template,
                status=PaymentStatus.PENDING,
                installment_number=number,
                total_installments=plan.installments
            ))
            result.installment_ids.append(installment.id)

        logger.info(
            f"[PLAN] Created plan {plan.id} with {plan.installments} installment(s) "
            f"for client {plan.client_id}"
        )
        return result

    async def cancel_plan(self, plan_id: str) -> PlanOperationResult:
        """Cancel the plan; pending and overdue installments are cancelled with it."""
        plan = await self._load_plan(plan_id)
        siblings = await self.resolver.resolve_key(series_key_for_plan(plan))

        plan = await self.store.upsert_plan(plan.model_copy(update={"status": PlanStatus.CANCELLED.value}))
        result = PlanOperationResult(plan=plan)

        for member in siblings.members:
            if member.status not in CANCELLABLE_STATUSES:
                continue
            await self.store.upsert_installment(
                member.model_copy(update={"status": PaymentStatus.CANCELLED.value})
            )
            result.installment_ids.append(member.id)

        logger.info(f"[PLAN] Cancelled plan {plan_id} and {len(result.installment_ids)} installment(s)")
        return result

    async def mark_plan_paid(self, plan_id: str, payment_date: Optional[date]) -> PlanOperationResult:
        """
        Settle a whole plan.

        Open installments go through mark_paid; already-paid ones are
        re-synchronized so a missing ledger entry gets booked. The plan is
        marked paid last, so an interrupted run can simply be repeated.
        """
        if payment_date is None:
            raise ValidationError("payment_date", "Payment date is required for paid payments")

        plan = await self._load_plan(plan_id)
        if plan.status == PlanStatus.CANCELLED:
            raise ValidationError("status", f"Plan {plan_id} is cancelled")

        siblings = await self.resolver.resolve_key(series_key_for_plan(plan))
        ledger: List[LedgerSyncResult] = []

        for member in siblings.members:
            if member.status == PaymentStatus.CANCELLED:
                continue
            if member.status == PaymentStatus.PAID:
                ledger.append(await self.synchronizer.sync_installment(member))
            else:
                ledger.append(await self.synchronizer.mark_paid(member.id, payment_date))

        plan = await self.store.upsert_plan(plan.model_copy(update={"status": PlanStatus.PAID.value}))
        logger.info(f"[PLAN] Plan {plan_id} marked paid; {sum(r.created for r in ledger)} entry(ies) booked")

        return PlanOperationResult(
            plan=plan,
            installment_ids=[r.installment_id for r in ledger],
            ledger=ledger
        )

    async def _load_plan(self, plan_id: str) -> RecurringBillingPlan:
        plan = await self.store.get_plan(plan_id)
        if plan is None:
            raise NotFound("RecurringBillingPlan", plan_id)
        return plan
