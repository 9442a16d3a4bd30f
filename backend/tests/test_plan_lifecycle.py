"""
Plan Lifecycle Tests
Testing: plan creation with generated series, cancellation cascade, whole-plan payment
"""
import asyncio
from datetime import date

import pytest

from billing_models import PlanCreate
from ledger_core import NotFound, ValidationError, installment_due_date


def plan_data(**overrides):
    data = {
        "client_id": "client-1",
        "description": "Mensalidade",
        "amount": 120.0,
        "installments": 3,
        "due_day": 10,
        "start_date": date(2024, 1, 15),
    }
    data.update(overrides)
    return PlanCreate(**data)


class TestInstallmentDueDate:

    def test_first_due_date_on_or_after_start(self):
        assert installment_due_date(date(2024, 1, 15), 10, 0) == date(2024, 2, 10)
        assert installment_due_date(date(2024, 1, 5), 10, 0) == date(2024, 1, 10)
        assert installment_due_date(date(2024, 1, 10), 10, 0) == date(2024, 1, 10)

    def test_day_clamped_to_month_end(self):
        start = date(2024, 1, 31)
        assert [installment_due_date(start, 31, i) for i in range(3)] == [
            date(2024, 1, 31), date(2024, 2, 29), date(2024, 3, 31)
        ]

    def test_year_rollover(self):
        assert installment_due_date(date(2024, 11, 20), 5, 1) == date(2025, 1, 5)


class TestCreatePlan:

    def test_generates_numbered_series(self, store, engine):
        result = asyncio.run(engine.create_plan(plan_data()))

        members = store.series()
        assert [m.id for m in members] == result.installment_ids
        assert [m.description for m in members] == [
            "Mensalidade (1/3)", "Mensalidade (2/3)", "Mensalidade (3/3)"
        ]
        assert [m.due_date for m in members] == [
            date(2024, 2, 10), date(2024, 3, 10), date(2024, 4, 10)
        ]
        assert all(m.status == "pending" and m.amount == 120.0 for m in members)
        assert result.plan.installments == 3

    def test_suffix_in_description_is_stripped(self, store, engine):
        result = asyncio.run(engine.create_plan(plan_data(description="Mensalidade (1/3)")))

        assert result.plan.description == "Mensalidade"

    def test_duplicate_series_is_rejected(self, store, engine):
        asyncio.run(engine.create_plan(plan_data()))

        with pytest.raises(ValidationError):
            asyncio.run(engine.create_plan(plan_data()))

        assert len(store.series()) == 3

    def test_invalid_amount(self, engine):
        with pytest.raises(ValidationError):
            asyncio.run(engine.create_plan(plan_data(amount=0)))

    def test_end_before_start(self, engine):
        with pytest.raises(ValidationError):
            asyncio.run(engine.create_plan(plan_data(end_date=date(2023, 12, 31))))


class TestCancelPlan:

    def test_cancels_open_installments_only(self, store, engine):
        result = asyncio.run(engine.create_plan(plan_data()))
        first, second, third = result.installment_ids
        asyncio.run(engine.mark_paid(first, date(2024, 2, 9)))
        asyncio.run(engine.update_installment(second, {"status": "billed"}))

        cancelled = asyncio.run(engine.cancel_plan(result.plan.id))

        assert cancelled.plan.status == "cancelled"
        assert cancelled.installment_ids == [third]
        assert store.installments[first].status == "paid"
        assert store.installments[second].status == "billed"
        assert store.installments[third].status == "cancelled"
        assert len(store.cash_flow) == 1

    def test_missing_plan(self, engine):
        with pytest.raises(NotFound):
            asyncio.run(engine.cancel_plan("nope"))


class TestMarkPlanPaid:

    def test_books_every_installment_once(self, store, engine):
        result = asyncio.run(engine.create_plan(plan_data()))
        asyncio.run(engine.mark_paid(result.installment_ids[0], date(2024, 2, 9)))

        paid = asyncio.run(engine.mark_plan_paid(result.plan.id, date(2024, 4, 1)))

        assert paid.plan.status == "paid"
        assert [r.created for r in paid.ledger] == [False, True, True]
        assert len(store.cash_flow) == 3
        assert all(m.status == "paid" for m in store.series())

    def test_repeat_is_idempotent(self, store, engine):
        result = asyncio.run(engine.create_plan(plan_data()))
        asyncio.run(engine.mark_plan_paid(result.plan.id, date(2024, 4, 1)))

        again = asyncio.run(engine.mark_plan_paid(result.plan.id, date(2024, 4, 1)))

        assert not any(r.created for r in again.ledger)
        assert len(store.cash_flow) == 3

    def test_requires_payment_date(self, store, engine):
        result = asyncio.run(engine.create_plan(plan_data()))

        with pytest.raises(ValidationError):
            asyncio.run(engine.mark_plan_paid(result.plan.id, None))

    def test_cancelled_plan_cannot_be_paid(self, store, engine):
        result = asyncio.run(engine.create_plan(plan_data()))
        asyncio.run(engine.cancel_plan(result.plan.id))

        with pytest.raises(ValidationError):
            asyncio.run(engine.mark_plan_paid(result.plan.id, date(2024, 4, 1)))
        assert store.cash_flow == []
