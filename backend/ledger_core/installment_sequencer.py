"""
BILLING LEDGER ENGINE - INSTALLMENT SEQUENCER

Keeps the sibling installments of a series numbered 1..N with a shared
total N and "(i/N)" description suffixes.

Deleting a series member:
1. Resolve the full series (fresh query; a series left half-renumbered
   by an earlier failure is merged across its totals and healed here)
2. Delete the installment
3. Renumber the survivors from scratch and rewrite their descriptions
4. Set the owning plan's installment count to the survivor count

Steps 2-4 are independent writes. When 3 or 4 fails after 2 succeeded the
result carries a warning plus the key needed by `resequence`, which
rebuilds full contiguous numbering and therefore converges on retry.
"""

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Tuple
import logging

from ledger_core.errors import InvariantViolation, NotFound, StoreError, ValidationError
from ledger_core.series_resolution import (
    Series,
    SeriesKey,
    SeriesResolver,
    format_installment_description,
    is_series_member,
)

if TYPE_CHECKING:
    from ledger_store import LedgerStore

logger = logging.getLogger(__name__)


@dataclass
class SequenceResult:
    """Outcome of a delete or resequence on a series."""
    series_key: Optional[SeriesKey] = None
    deleted_id: Optional[str] = None
    remaining_total: int = 0
    renumbered_ids: List[str] = field(default_factory=list)
    plan_id: Optional[str] = None
    warnings: List[str] = field(default_factory=list)
    retry: Optional[Dict[str, Any]] = None

    @property
    def status(self) -> str:
        return "success_with_warnings" if self.warnings else "success"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "deleted_id": self.deleted_id,
            "series": self.series_key.to_dict() if self.series_key else None,
            "remaining_total": self.remaining_total,
            "renumbered_ids": self.renumbered_ids,
            "plan_id": self.plan_id,
            "warnings": self.warnings,
            "retry": self.retry
        }


class InstallmentSequencer:

    def __init__(self, store: "LedgerStore", resolver: Optional[SeriesResolver] = None):
        self.store = store
        self.resolver = resolver or SeriesResolver(store)

    async def delete_installment(self, installment_id: str) -> SequenceResult:
        """
        Delete an installment and renumber its surviving siblings.

        Raises:
            NotFound: installment does not exist
            InvariantViolation: series could not be resolved consistently (nothing deleted)
            StoreError: the delete itself failed (nothing changed)
        """
        installment = await self.store.get_installment(installment_id)
        if installment is None:
            raise NotFound("PaymentInstallment", installment_id)

        if not is_series_member(installment):
            await self.store.delete_installment(installment_id)
            logger.info(f"[SEQUENCER] Deleted one-off installment {installment_id}")
            return SequenceResult(deleted_id=installment_id)

        series, totals = await self._resolve_for_delete(installment)
        issues = series.contiguity_issues()
        if issues:
            logger.warning(
                f"[SEQUENCER] Series {series.key.base_description!r} was not contiguous "
                f"before delete, renumbering will heal it: {issues}"
            )

        remaining = series.without(installment_id)

        await self.store.delete_installment(installment_id)
        logger.info(
            f"[SEQUENCER] Deleted installment {installment_id} "
            f"({installment.installment_number}/{installment.total_installments})"
        )

        result = SequenceResult(
            series_key=series.key,
            deleted_id=installment_id,
            remaining_total=remaining.size
        )

        try:
            result.renumbered_ids = await self._renumber(remaining)
            result.plan_id = await self._update_plan_count(series.key, totals, remaining.size)
        except StoreError as e:
            logger.error(
                f"[SEQUENCER] Delete of {installment_id} succeeded but renumbering failed: {e}"
            )
            result.warnings.append(
                f"Installment deleted, but renumbering the remaining {remaining.size} "
                f"installment(s) failed: {e.message}. Retry with resequence."
            )
            result.retry = {
                "client_id": series.key.client_id,
                "base_description": series.key.base_description,
                "totals": sorted(set(totals) | {remaining.size})
            }

        return result

    async def _resolve_for_delete(self, installment) -> Tuple[Series, List[int]]:
        """
        Resolve the series of `installment` together with every total its
        members carry. A series left half-renumbered by an earlier failure
        is merged across its totals so this delete heals it.
        """
        try:
            series = await self.resolver.resolve(installment)
            return series, [series.key.total_installments]
        except InvariantViolation as e:
            if e.violation_type != "TOTAL_MISMATCH":
                raise
            totals = e.details["totals"]
            logger.warning(
                f"[SEQUENCER] Series {e.details['base_description']!r} carries totals {totals}; "
                f"merging before delete of {installment.id}"
            )
            series = await self.resolver.resolve_across_totals(
                e.details["client_id"], e.details["base_description"], totals
            )
            return series, totals

    async def resequence(
        self,
        client_id: str,
        base_description: str,
        totals: Iterable[int]
    ) -> SequenceResult:
        """
        Rebuild contiguous numbering for a series from a fresh resolution.

        `totals` lists every total the members may currently carry (the old
        and new totals after an interrupted renumbering). Safe to repeat.
        """
        totals = sorted({t for t in totals if t is not None and t >= 0})
        if not totals:
            raise ValidationError("totals", "At least one series total is required")

        series = await self.resolver.resolve_across_totals(client_id, base_description, totals)
        issues = series.contiguity_issues()
        if issues:
            logger.warning(f"[SEQUENCER] Healing series {base_description!r}: {issues}")

        result = SequenceResult(series_key=series.key, remaining_total=series.size)
        result.renumbered_ids = await self._renumber(series)
        result.plan_id = await self._update_plan_count(series.key, totals + [series.size], series.size)
        return result

    async def _renumber(self, series: Series) -> List[str]:
        """Assign 1..N in series order. Records already correct are not rewritten."""
        total = series.size
        changed = []

        for number, member in enumerate(series.members, start=1):
            description = format_installment_description(series.key.base_description, number, total)
            if (
                member.installment_number == number
                and member.total_installments == total
                and member.description == description
            ):
                continue

            await self.store.upsert_installment(member.model_copy(update={
                "installment_number": number,
                "total_installments": total,
                "description": description
            }))
            changed.append(member.id)

        if changed:
            logger.info(
                f"[SEQUENCER] Renumbered {len(changed)} of {total} installment(s) "
                f"in {series.key.base_description!r}"
            )
        return changed

    async def _update_plan_count(
        self,
        key: SeriesKey,
        totals: List[int],
        new_total: int
    ) -> Optional[str]:
        plan = await self.resolver.find_plan(key.client_id, key.base_description, totals)
        if plan is None:
            logger.info(f"[SEQUENCER] No plan owns series {key.base_description!r}")
            return None

        if plan.installments != new_total:
            await self.store.upsert_plan(plan.model_copy(update={"installments": new_total}))
            logger.info(f"[SEQUENCER] Plan {plan.id} installments: {plan.installments} -> {new_total}")
        return plan.id
