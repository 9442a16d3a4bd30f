"""
Ledger Synchronizer Tests
Testing: mark paid books exactly one income entry, idempotent retries
"""
import asyncio
from datetime import date

import pytest

from ledger_core import LedgerSynchronizer, NotFound, StoreError, ValidationError


class TestMarkPaid:
    """Marking installments paid"""

    def test_mark_paid_twice_books_one_entry(self, store, engine):
        """Second call finds the existing entry and creates nothing"""
        installment = store.seed_installment(description="Mensalidade (1/1)", amount=250.0)
        paid_on = date(2024, 3, 5)

        first = asyncio.run(engine.mark_paid(installment.id, paid_on))
        second = asyncio.run(engine.mark_paid(installment.id, paid_on))

        assert first.created is True
        assert second.created is False
        assert second.entry_id == first.entry_id
        assert len(store.cash_flow) == 1

        entry = store.cash_flow[0]
        assert entry.type == "income"
        assert entry.amount == 250.0
        assert entry.date == paid_on
        assert entry.description == "Mensalidade (1/1)"
        assert entry.category == "payment"
        assert entry.payment_id == installment.id

        stored = store.installments[installment.id]
        assert stored.status == "paid"
        assert stored.payment_date == paid_on

    def test_missing_payment_date_is_rejected(self, store, engine):
        installment = store.seed_installment(description="Avulso")

        with pytest.raises(ValidationError) as exc:
            asyncio.run(engine.mark_paid(installment.id, None))

        assert exc.value.field == "payment_date"
        assert store.installments[installment.id].status == "pending"
        assert store.cash_flow == []

    def test_missing_installment(self, engine):
        with pytest.raises(NotFound):
            asyncio.run(engine.mark_paid("nope", date(2024, 1, 1)))

    def test_retry_after_ledger_failure_books_missing_entry(self, store, engine):
        """Installment saved as paid, insert failed; running again completes it"""
        installment = store.seed_installment(description="Avulso")
        store.fail_on("insert_cash_flow_entry")

        with pytest.raises(StoreError):
            asyncio.run(engine.mark_paid(installment.id, date(2024, 2, 1)))

        assert store.installments[installment.id].status == "paid"
        assert store.cash_flow == []

        retry = asyncio.run(engine.mark_paid(installment.id, date(2024, 2, 1)))

        assert retry.created is True
        assert len(store.cash_flow) == 1

    def test_status_write_failure_books_nothing(self, store, engine):
        installment = store.seed_installment(description="Avulso")
        store.fail_on("upsert_installment")

        with pytest.raises(StoreError):
            asyncio.run(engine.mark_paid(installment.id, date(2024, 2, 1)))

        assert store.installments[installment.id].status == "pending"
        assert store.cash_flow == []

    def test_custom_category(self, store):
        installment = store.seed_installment(description="Avulso")
        synchronizer = LedgerSynchronizer(store, category="mensalidades")

        asyncio.run(synchronizer.mark_paid(installment.id, date(2024, 2, 1)))

        assert store.cash_flow[0].category == "mensalidades"


class TestSyncInstallment:
    """Booking for already-paid installments"""

    def test_unpaid_installment_is_not_booked(self, store):
        installment = store.seed_installment(description="Avulso")

        result = asyncio.run(LedgerSynchronizer(store).sync_installment(installment))

        assert result.created is False
        assert store.cash_flow == []

    def test_concurrent_insert_is_treated_as_existing(self, store):
        """The unique payment_id constraint rejects the loser of a race"""
        installment = store.seed_installment(
            description="Avulso", status="paid", payment_date=date(2024, 2, 1)
        )
        synchronizer = LedgerSynchronizer(store)

        async def race_lookup(payment_id):
            # Both callers read before either writes
            return []

        store.seed_cash_flow(
            amount=100.0, date=date(2024, 2, 1), description="Avulso", payment_id=installment.id
        )
        store.list_cash_flow_entries = race_lookup

        result = asyncio.run(synchronizer.sync_installment(installment))

        assert result.created is False
        assert len(store.cash_flow) == 1
