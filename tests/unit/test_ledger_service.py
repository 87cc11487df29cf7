"""Tests for the ledger reader and append point."""

from datetime import timedelta
from decimal import Decimal

import pytest

from treasury.models import LedgerEntryStatus, utcnow
from treasury.services.balance_service import BalanceService
from treasury.services.errors import ImmutableRecordError
from treasury.services.ledger_service import LedgerService


class TestLedgerService:
    @pytest.mark.asyncio
    async def test_sum_by_type_and_status(self, session, association, add_income):
        await add_income(100)
        await add_income(50)
        await add_income(70, type="don")
        await add_income(30, status=LedgerEntryStatus.PENDING)

        ledger = LedgerService(session)
        assert await ledger.sum_by_type_and_status(association.id, "cotisation") == Decimal("150.00")
        assert await ledger.sum_by_type_and_status(
            association.id, "cotisation", LedgerEntryStatus.PENDING
        ) == Decimal("30.00")
        assert await ledger.sum_by_type_and_status(association.id, "evenement") == Decimal("0.00")

        yesterday = utcnow() - timedelta(days=1)
        assert await ledger.sum_by_type_and_status(
            association.id, "don", date_range=(yesterday - timedelta(days=7), yesterday)
        ) == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_components_match_snapshot(
        self, session, service, association, users, add_income, approved_request, paid_loan
    ):
        await add_income(3000)
        paid = await approved_request(250)
        await service.confirm_payment(association.id, paid.id, users.tresorier)
        await paid_loan(1000)

        ledger = LedgerService(session)
        income_types = ["cotisation", "don", "evenement"]
        snapshot = await BalanceService(session, income_types=income_types).get_available_balance(association.id)

        assert await ledger.total_income(association.id, income_types) == snapshot.total_income
        assert await ledger.total_expenses_paid(association.id) == snapshot.total_expenses_paid
        assert await ledger.outstanding_loan_principal(association.id) == snapshot.outstanding_loans
        assert snapshot.available_balance == Decimal("750.00")

        entries = await ledger.entries_for_request(paid.id)
        assert [(e.type, e.amount) for e in entries] == [("aide_membre", Decimal("250.00"))]

    @pytest.mark.asyncio
    async def test_entries_only_change_status(self, session, association):
        ledger = LedgerService(session)
        entry = await ledger.append_entry(association_id=association.id, type="don", amount=Decimal("20"))
        await session.commit()

        entry.status = LedgerEntryStatus.CANCELLED
        await session.commit()

        entry.amount = Decimal("25")
        with pytest.raises(ImmutableRecordError):
            await session.commit()
        await session.rollback()
