"""
BILLING LEDGER ENGINE - SCHEDULE SHIFTER

When a plan's start date moves, its installments can move with it by the
same signed number of calendar days (never calendar months: a 31-day
shift moves every due date by exactly 31 days).

The shift is confirmation-gated. `preview_start_date_change` reports the
offset and sibling count; `apply_start_date_change` always stores the new
start date and shifts due dates only when `confirm_shift` is set.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import TYPE_CHECKING, Any, Dict, List, Optional
import logging

from billing_models import RecurringBillingPlan
from ledger_core.errors import NotFound, StoreError
from ledger_core.series_resolution import Series, SeriesResolver, series_key_for_plan

if TYPE_CHECKING:
    from ledger_store import LedgerStore

logger = logging.getLogger(__name__)


def days_between(new_date: date, old_date: date) -> int:
    """Signed calendar-day offset from old_date to new_date."""
    return (new_date - old_date).days


def shift_date(value: date, day_offset: int) -> date:
    return value + timedelta(days=day_offset)


@dataclass
class ShiftPreview:
    plan_id: str
    old_start_date: date
    new_start_date: date
    day_offset: int
    sibling_count: int

    @property
    def requires_confirmation(self) -> bool:
        return self.day_offset != 0 and self.sibling_count > 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "old_start_date": self.old_start_date.isoformat(),
            "new_start_date": self.new_start_date.isoformat(),
            "day_offset": self.day_offset,
            "sibling_count": self.sibling_count,
            "requires_confirmation": self.requires_confirmation
        }


@dataclass
class ShiftResult:
    plan_id: str
    old_start_date: date
    new_start_date: date
    day_offset: int
    start_date_updated: bool = False
    shifted_ids: List[str] = field(default_factory=list)
    skipped_reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "old_start_date": self.old_start_date.isoformat(),
            "new_start_date": self.new_start_date.isoformat(),
            "day_offset": self.day_offset,
            "start_date_updated": self.start_date_updated,
            "shifted_ids": self.shifted_ids,
            "skipped_reason": self.skipped_reason
        }


class ScheduleShifter:

    def __init__(self, store: "LedgerStore", resolver: Optional[SeriesResolver] = None):
        self.store = store
        self.resolver = resolver or SeriesResolver(store)

    async def preview_start_date_change(
        self,
        plan_id: str,
        new_start_date: date,
        old_start_date: Optional[date] = None
    ) -> ShiftPreview:
        plan = await self._load_plan(plan_id)
        old_start = old_start_date or plan.start_date
        siblings = await self._siblings(plan)

        return ShiftPreview(
            plan_id=plan.id,
            old_start_date=old_start,
            new_start_date=new_start_date,
            day_offset=days_between(new_start_date, old_start),
            sibling_count=siblings.size
        )

    async def apply_start_date_change(
        self,
        plan_id: str,
        old_start_date: Optional[date],
        new_start_date: date,
        confirm_shift: bool = False
    ) -> ShiftResult:
        """
        Store the plan's new start date and, if confirmed, shift sibling due dates.

        Raises:
            NotFound: plan does not exist
            StoreError: a write failed; details list the installments already shifted
        """
        plan = await self._load_plan(plan_id)
        old_start = old_start_date or plan.start_date

        if old_start_date is not None and old_start_date != plan.start_date:
            logger.warning(
                f"[SHIFTER] Plan {plan_id} stored start date {plan.start_date} differs "
                f"from the given old start date {old_start_date}; offset uses the given date"
            )

        result = ShiftResult(
            plan_id=plan.id,
            old_start_date=old_start,
            new_start_date=new_start_date,
            day_offset=days_between(new_start_date, old_start)
        )

        if old_start == new_start_date:
            result.skipped_reason = "unchanged"
            return result

        siblings = await self._siblings(plan)

        await self.store.upsert_plan(plan.model_copy(update={"start_date": new_start_date}))
        result.start_date_updated = True
        logger.info(f"[SHIFTER] Plan {plan_id} start date: {old_start} -> {new_start_date}")

        if siblings.size == 0:
            result.skipped_reason = "no_installments"
            return result

        if not confirm_shift:
            result.skipped_reason = "not_confirmed"
            logger.info(
                f"[SHIFTER] Shift of {siblings.size} installment(s) by {result.day_offset} "
                f"day(s) not confirmed for plan {plan_id}"
            )
            return result

        for member in siblings.members:
            try:
                await self.store.upsert_installment(member.model_copy(update={
                    "due_date": shift_date(member.due_date, result.day_offset)
                }))
            except StoreError as e:
                e.details.update({
                    "plan_id": plan.id,
                    "day_offset": result.day_offset,
                    "shifted_ids": list(result.shifted_ids),
                    "pending_ids": [m.id for m in siblings.members if m.id not in result.shifted_ids]
                })
                logger.error(
                    f"[SHIFTER] Shift for plan {plan_id} stopped after "
                    f"{len(result.shifted_ids)} of {siblings.size} installment(s): {e}"
                )
                raise
            result.shifted_ids.append(member.id)

        logger.info(
            f"[SHIFTER] Shifted {len(result.shifted_ids)} installment(s) of plan {plan_id} "
            f"by {result.day_offset} day(s)"
        )
        return result

    async def _load_plan(self, plan_id: str) -> RecurringBillingPlan:
        plan = await self.store.get_plan(plan_id)
        if plan is None:
            raise NotFound("RecurringBillingPlan", plan_id)
        return plan

    async def _siblings(self, plan: RecurringBillingPlan) -> Series:
        key = series_key_for_plan(plan)
        if key.total_installments == 0:
            return Series(key=key)
        return await self.resolver.resolve_key(key)
