"""
BILLING LEDGER ENGINE - SERIES RESOLUTION

A series is not stored: it is the set of installments sharing
(client_id, base description, total_installments), where the base
description is the description with any trailing "(i/N)" removed.

Resolution is re-run on every mutation and reads every record with the
same client and base description, whatever total it carries:
- a group carrying another total whose size equals that total is an
  independent series and is ignored
- any other group is a stale fragment of an interrupted renumbering;
  the series disagrees on total_installments (retry, then TOTAL_MISMATCH)
- installment_number gaps/duplicates are reported for healing
"""

from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Sequence
import logging
import re

from billing_models import PaymentInstallment, PlanStatus, RecurringBillingPlan
from ledger_core.errors import InvariantViolation

if TYPE_CHECKING:
    from ledger_store import LedgerStore

logger = logging.getLogger(__name__)

INSTALLMENT_SUFFIX = re.compile(r"\s*\(\d+/\d+\)\s*$")


def strip_installment_suffix(description: str) -> str:
    """'Mensalidade (2/12)' -> 'Mensalidade'"""
    return INSTALLMENT_SUFFIX.sub("", description or "").rstrip()


def format_installment_description(base_description: str, number: int, total: int) -> str:
    return f"{base_description} ({number}/{total})"


def is_series_member(installment: PaymentInstallment) -> bool:
    return (
        installment.installment_number is not None
        and installment.total_installments is not None
    )


def series_order(installment: PaymentInstallment):
    """Ascending original order: number, then due date, then id."""
    return (
        installment.installment_number if installment.installment_number is not None else 0,
        installment.due_date or date.min,
        installment.id
    )


def stale_fragments(rows: Iterable[PaymentInstallment], total: int) -> List[PaymentInstallment]:
    """
    Records carrying a total other than `total` that cannot form a series
    of their own (group size differs from the total they carry).
    """
    groups: Dict[int, List[PaymentInstallment]] = {}
    for row in rows:
        if row.total_installments != total:
            groups.setdefault(row.total_installments, []).append(row)

    stale = []
    for other_total, group in sorted(groups.items()):
        if len(group) != other_total:
            stale.extend(group)
    return stale


@dataclass(frozen=True)
class SeriesKey:
    client_id: str
    base_description: str
    total_installments: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "client_id": self.client_id,
            "base_description": self.base_description,
            "total_installments": self.total_installments
        }


def series_key_for(installment: PaymentInstallment) -> SeriesKey:
    if not is_series_member(installment):
        raise InvariantViolation(
            violation_type="NOT_A_SERIES_MEMBER",
            message=f"Installment {installment.id} is a one-off payment",
            details={"installment_id": installment.id}
        )
    return SeriesKey(
        client_id=installment.client_id,
        base_description=strip_installment_suffix(installment.description),
        total_installments=installment.total_installments
    )


def series_key_for_plan(plan: RecurringBillingPlan) -> SeriesKey:
    return SeriesKey(
        client_id=plan.client_id,
        base_description=strip_installment_suffix(plan.description),
        total_installments=plan.installments
    )


@dataclass
class Series:
    key: SeriesKey
    members: List[PaymentInstallment] = field(default_factory=list)

    @property
    def size(self) -> int:
        return len(self.members)

    @property
    def ids(self) -> List[str]:
        return [m.id for m in self.members]

    def without(self, installment_id: str) -> "Series":
        return Series(
            key=self.key,
            members=[m for m in self.members if m.id != installment_id]
        )

    def contiguity_issues(self) -> List[Dict[str, Any]]:
        """
        Compare the series against {1..N} numbering with total N everywhere.
        Returns an empty list when the series is contiguous.
        """
        issues = []
        expected_total = self.size
        numbers = [m.installment_number for m in self.members]

        seen = set()
        for number in numbers:
            if number in seen:
                issues.append({"type": "DUPLICATE_NUMBER", "installment_number": number})
            seen.add(number)

        missing = sorted(set(range(1, expected_total + 1)) - seen)
        for number in missing:
            issues.append({"type": "GAP", "installment_number": number})

        for member in self.members:
            if member.total_installments != expected_total:
                issues.append({
                    "type": "WRONG_TOTAL",
                    "installment_id": member.id,
                    "total_installments": member.total_installments,
                    "expected": expected_total
                })
            if member.installment_number is not None:
                expected_description = format_installment_description(
                    self.key.base_description, member.installment_number, expected_total
                )
                if member.description != expected_description:
                    issues.append({
                        "type": "WRONG_DESCRIPTION",
                        "installment_id": member.id,
                        "description": member.description,
                        "expected": expected_description
                    })

        return issues


class SeriesResolver:
    """
    Resolves sibling installments from the store.

    Never caches: every call queries the store again.
    """

    MAX_RESOLVE_ATTEMPTS = 3

    def __init__(self, store: "LedgerStore"):
        self.store = store

    async def resolve(self, installment: PaymentInstallment) -> Series:
        """Resolve the series the installment belongs to (including itself)."""
        return await self.resolve_key(series_key_for(installment))

    async def resolve_key(self, key: SeriesKey) -> Series:
        """
        Resolve the members carrying `key.total_installments`.

        Raises:
            InvariantViolation: TOTAL_MISMATCH when stale fragments with
                another total persist; details["totals"] lists every total
                involved, ready for resolve_across_totals / resequence.
        """
        for attempt in range(self.MAX_RESOLVE_ATTEMPTS):
            rows = await self._fetch(key.client_id, key.base_description, None)
            members = [r for r in rows if r.total_installments == key.total_installments]
            mismatched = stale_fragments(rows, key.total_installments)

            if not mismatched:
                return Series(key=key, members=sorted(members, key=series_order))

            logger.warning(
                f"[SERIES] Stale resolution for {key.base_description!r} "
                f"(client {key.client_id}), retry {attempt + 1}: "
                f"{len(mismatched)} member(s) disagree on total"
            )

        raise InvariantViolation(
            violation_type="TOTAL_MISMATCH",
            message=(
                f"Series {key.base_description!r} for client {key.client_id} "
                f"disagrees on total_installments after {self.MAX_RESOLVE_ATTEMPTS} attempts"
            ),
            details={
                **key.to_dict(),
                "mismatched_ids": [m.id for m in mismatched],
                "totals": sorted({key.total_installments} | {m.total_installments for m in mismatched})
            }
        )

    async def resolve_across_totals(
        self,
        client_id: str,
        base_description: str,
        totals: Iterable[int]
    ) -> Series:
        """
        Merge the members recorded under several totals.

        Used to heal a series left half-renumbered, where some records
        already carry the new total and others still carry the old one.
        """
        by_id: Dict[str, PaymentInstallment] = {}
        totals = sorted(set(totals))
        for total in totals:
            for member in await self._fetch(client_id, base_description, total):
                by_id[member.id] = member

        members = sorted(by_id.values(), key=series_order)
        key = SeriesKey(client_id, base_description, len(members))
        return Series(key=key, members=members)

    async def find_plan(
        self,
        client_id: str,
        base_description: str,
        totals: Sequence[int]
    ) -> Optional[RecurringBillingPlan]:
        """Find the plan that owns a series, preferring plans that are not cancelled."""
        plans = await self.store.list_plans(client_id, base_description)
        candidates = [
            p for p in plans
            if strip_installment_suffix(p.description) == base_description
            and p.installments in totals
        ]
        if not candidates:
            return None

        candidates.sort(key=lambda p: p.status == PlanStatus.CANCELLED)
        if len(candidates) > 1:
            logger.warning(
                f"[SERIES] {len(candidates)} plans match {base_description!r} "
                f"for client {client_id}; using {candidates[0].id}"
            )
        return candidates[0]

    async def _fetch(
        self,
        client_id: str,
        base_description: str,
        total: Optional[int]
    ) -> List[PaymentInstallment]:
        rows = await self.store.list_installments(client_id, base_description, total)
        # Prefix match alone would also pick up "Mensalidade Extra (1/3)"
        return [
            r for r in rows
            if is_series_member(r)
            and strip_installment_suffix(r.description) == base_description
        ]
