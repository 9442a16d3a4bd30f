"""
Series Resolution Tests
Testing: suffix handling, exact-base membership, contiguity reporting, stale reads
"""
import asyncio

import pytest

from ledger_core import InvariantViolation, SeriesKey, SeriesResolver, strip_installment_suffix
from ledger_core.financial_precision import amounts_match, round_financial, to_decimal
from ledger_core import ValidationError


class TestDescriptions:

    def test_strip_suffix(self):
        assert strip_installment_suffix("Mensalidade (2/12)") == "Mensalidade"
        assert strip_installment_suffix("Mensalidade  (10/12) ") == "Mensalidade"
        assert strip_installment_suffix("Mensalidade") == "Mensalidade"
        assert strip_installment_suffix("Plano (anual)") == "Plano (anual)"


class TestResolver:

    def test_resolves_exact_base_only(self, store):
        members = store.seed_series(3, with_plan=False)
        store.seed_series(3, base_description="Mensalidade Extra", with_plan=False)

        series = asyncio.run(SeriesResolver(store).resolve(members[0]))

        assert series.ids == [m.id for m in members]
        assert series.contiguity_issues() == []

    def test_reports_gaps_and_duplicates(self, store):
        members = store.seed_series(3, with_plan=False)
        store.installments[members[2].id] = members[2].model_copy(update={"installment_number": 1})

        series = asyncio.run(SeriesResolver(store).resolve(members[0]))

        issue_types = {issue["type"] for issue in series.contiguity_issues()}
        assert {"DUPLICATE_NUMBER", "GAP", "WRONG_DESCRIPTION"} <= issue_types

    def test_one_off_is_not_a_series_member(self, store):
        one_off = store.seed_installment(description="Avulso")

        with pytest.raises(InvariantViolation) as exc:
            asyncio.run(SeriesResolver(store).resolve(one_off))
        assert exc.value.violation_type == "NOT_A_SERIES_MEMBER"

    def test_stale_fragment_is_a_total_mismatch(self, store):
        """A record left with an old total disagrees with the series"""
        store.seed_series(3, with_plan=False)
        stale = store.seed_installment(
            description="Mensalidade (4/4)", installment_number=4, total_installments=4
        )

        with pytest.raises(InvariantViolation) as exc:
            asyncio.run(SeriesResolver(store).resolve_key(SeriesKey("client-1", "Mensalidade", 3)))

        assert exc.value.violation_type == "TOTAL_MISMATCH"
        assert exc.value.details["mismatched_ids"] == [stale.id]
        assert exc.value.details["totals"] == [3, 4]
        assert store.calls["list_installments"] == SeriesResolver.MAX_RESOLVE_ATTEMPTS

    def test_complete_series_with_other_total_is_independent(self, store):
        """Same description, different plan length: two separate series"""
        short = store.seed_series(2, with_plan=False)
        store.seed_series(3, with_plan=False)

        series = asyncio.run(SeriesResolver(store).resolve(short[0]))

        assert series.ids == [m.id for m in short]


class TestFinancialPrecision:

    def test_round_half_up(self):
        assert str(round_financial(2.675)) == "2.68"
        assert str(round_financial("0.005")) == "0.01"

    def test_amounts_match_at_cents(self):
        assert amounts_match(0.1 + 0.2, 0.3)
        assert not amounts_match(100.0, 99.99)

    def test_rejects_booleans_and_garbage(self):
        with pytest.raises(ValidationError):
            to_decimal(True)
        with pytest.raises(ValidationError):
            to_decimal("abc")
