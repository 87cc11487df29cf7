"""Unit tests for the balance engine against a SQLite database."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from treasury.models import ExpenseStatus, LedgerEntryStatus, utcnow
from treasury.services.balance_service import BalanceService
from treasury.services.errors import InsufficientFundsError, ValidationError


@pytest.fixture
def balance(session) -> BalanceService:
    return BalanceService(session)


class TestAvailableBalance:
    """Test available = income - paid expenses - outstanding loans."""

    @pytest.mark.asyncio
    async def test_empty_association(self, balance, association):
        snapshot = await balance.get_available_balance(association.id)
        assert snapshot.total_income == Decimal("0.00")
        assert snapshot.available_balance == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_only_completed_income_types_count(self, balance, association, add_income):
        await add_income(1000)
        await add_income(200, type="don")
        await add_income("75.50", type="evenement")
        await add_income(500, status=LedgerEntryStatus.CANCELLED)
        await add_income(300, status=LedgerEntryStatus.PENDING)
        await add_income(50, type="remboursement")
        await add_income(80, type="aide")

        snapshot = await balance.get_available_balance(association.id)

        assert snapshot.total_income == Decimal("1275.50")
        assert snapshot.available_balance == Decimal("1275.50")

    @pytest.mark.asyncio
    async def test_paid_expense_reduces_balance(
        self, balance, service, association, users, add_income, approved_request
    ):
        await add_income(1000)
        request = await approved_request(600)
        assert (await balance.get_available_balance(association.id)).available_balance == Decimal("1000.00")

        await service.confirm_payment(association.id, request.id, users.tresorier)

        snapshot = await balance.get_available_balance(association.id)
        assert snapshot.total_expenses_paid == Decimal("600.00")
        assert snapshot.available_balance == Decimal("400.00")

    @pytest.mark.asyncio
    async def test_paid_loan_is_expense_and_outstanding_principal(
        self, balance, loan_service, association, users, add_income, paid_loan
    ):
        await add_income(5000)
        loan = await paid_loan(1200)

        snapshot = await balance.get_available_balance(association.id)

        assert snapshot.total_expenses_paid == Decimal("1200.00")
        assert snapshot.outstanding_loans == Decimal("1200.00")
        assert snapshot.available_balance == Decimal("2600.00")

        for _ in range(2):
            await loan_service.record_repayment(association.id, loan.id, users.tresorier, amount=100)

        snapshot = await balance.get_available_balance(association.id)
        assert snapshot.total_expenses_paid == Decimal("1200.00")
        assert snapshot.outstanding_loans == Decimal("1000.00")
        assert snapshot.available_balance == Decimal("2800.00")

    @pytest.mark.asyncio
    async def test_income_minus_expenses_is_exact(self, balance, association, add_income):
        for amount in ("0.10", "0.20", "0.30"):
            await add_income(amount)
        snapshot = await balance.get_available_balance(association.id)
        assert snapshot.available_balance == Decimal("0.60")


class TestFundsCheck:
    @pytest.mark.asyncio
    async def test_sufficient_and_idempotent(self, balance, association, add_income):
        await add_income(1000)
        first = await balance.check_sufficient_funds(association.id, Decimal("1000"))
        second = await balance.check_sufficient_funds(association.id, Decimal("1000"))
        assert first.sufficient is True
        assert first.shortage == Decimal("0.00")
        assert (first.sufficient, first.available_balance, first.shortage) == (
            second.sufficient,
            second.available_balance,
            second.shortage,
        )

    @pytest.mark.asyncio
    async def test_shortage(self, balance, association, add_income):
        await add_income(400)
        check = await balance.check_sufficient_funds(association.id, Decimal("500"))
        assert check.sufficient is False
        assert check.shortage == Decimal("100.00")

        with pytest.raises(InsufficientFundsError) as exc_info:
            await balance.ensure_sufficient_funds(association.id, Decimal("500"))
        assert exc_info.value.available_balance == Decimal("400.00")
        assert exc_info.value.shortage == Decimal("100.00")


class TestFinancialSummary:
    @pytest.mark.asyncio
    async def test_expenses_by_type_window(
        self, balance, service, association, users, add_income, approved_request
    ):
        await add_income(5000)
        recent = await approved_request(300, title="Aide récente")
        older = await approved_request(200, title="Aide ancienne")
        await service.confirm_payment(association.id, recent.id, users.tresorier)
        await service.confirm_payment(
            association.id, older.id, users.tresorier, paid_at=utcnow() - timedelta(days=60)
        )

        everything = await balance.get_expenses_by_type(association.id, "all")
        month = await balance.get_expenses_by_type(association.id, "month")
        quarter = await balance.get_expenses_by_type(association.id, "quarter")

        assert [(t.type, t.count, t.total) for t in everything] == [("aide_membre", 2, Decimal("500.00"))]
        assert [(t.count, t.total) for t in month] == [(1, Decimal("300.00"))]
        assert [(t.count, t.total) for t in quarter] == [(2, Decimal("500.00"))]

    @pytest.mark.asyncio
    async def test_window_bounds_are_inclusive(
        self, session, service, association, users, add_income, approved_request
    ):
        now = datetime(2026, 6, 15, 12, tzinfo=timezone.utc)
        await add_income(5000)
        paid_at = {
            "on the lower bound": now - timedelta(days=30),
            "just before the window": now - timedelta(days=30, seconds=1),
            "now": now,
            "after now": now + timedelta(seconds=1),
        }
        for title, when in paid_at.items():
            request = await approved_request(100, title=title)
            await service.confirm_payment(association.id, request.id, users.tresorier, paid_at=when)

        month = await BalanceService(session, clock=lambda: now).get_expenses_by_type(association.id, "month")

        assert [(t.count, t.total) for t in month] == [(2, Decimal("200.00"))]

    @pytest.mark.asyncio
    async def test_offset_payment_time_stored_in_utc(
        self, balance, service, association, users, add_income, approved_request
    ):
        await add_income(1000)
        request = await approved_request(300)
        paid_at = (utcnow() - timedelta(minutes=1)).astimezone(timezone(timedelta(hours=5)))

        paid = await service.confirm_payment(association.id, request.id, users.tresorier, paid_at=paid_at)

        assert paid.paid_at == paid_at
        assert paid.paid_at.utcoffset() == timedelta(0)
        month = await balance.get_expenses_by_type(association.id, "month")
        assert [(t.count, t.total) for t in month] == [(1, Decimal("300.00"))]

    @pytest.mark.asyncio
    async def test_naive_payment_time_rejected(self, service, association, users, add_income, approved_request):
        await add_income(1000)
        request = await approved_request(300)

        with pytest.raises(ValidationError):
            await service.confirm_payment(
                association.id, request.id, users.tresorier, paid_at=datetime(2026, 6, 1, 9, 30)
            )

        assert (await service.get_request(association.id, request.id)).status == ExpenseStatus.APPROVED

    @pytest.mark.asyncio
    async def test_unknown_period(self, balance, association):
        with pytest.raises(ValidationError):
            await balance.get_expenses_by_type(association.id, "decade")

    @pytest.mark.asyncio
    async def test_projection(
        self, balance, service, loan_service, association, users, add_income, paid_loan
    ):
        await add_income(3000)
        loan = await paid_loan(1200)
        today = utcnow().date()
        await loan_service.schedule_installments(
            association.id, loan.id, users.tresorier, first_due_date=today + timedelta(days=10)
        )
        await service.create_request(
            association_id=association.id,
            requester_id=users.member,
            expense_type="aide_membre",
            title="Aide santé",
            amount_requested=250,
        )

        summary = await balance.get_financial_summary(association.id)

        assert summary.current_balance.available_balance == Decimal("600.00")
        assert summary.pending_expenses == Decimal("250.00")
        # Only the first installment falls in the next 30 days
        assert summary.upcoming_repayments == Decimal("100.00")
        assert summary.projected_balance == Decimal("450.00")

    @pytest.mark.asyncio
    async def test_balance_history(
        self, balance, service, association, users, add_income, approved_request
    ):
        await add_income(1000)
        request = await approved_request(600)
        await service.confirm_payment(association.id, request.id, users.tresorier)

        history = await balance.get_balance_history(association.id, months=3)

        assert len(history) == 3
        current = history[-1]
        assert current.month == utcnow().strftime("%Y-%m")
        assert current.income == Decimal("1000.00")
        assert current.expenses == Decimal("600.00")
        assert current.net == Decimal("400.00")
        assert history[0].net == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_balance_history_bounds(self, balance, association):
        with pytest.raises(ValidationError):
            await balance.get_balance_history(association.id, months=0)


@pytest.fixture
async def spending(service, association, users, add_income, approved_request, paid_loan):
    """Three paid aides (100, 200, 50), a paid 1200 loan, one approved, one under review, one pending."""
    await add_income(5000)
    for amount in (100, 200, 50):
        request = await approved_request(amount, title=f"Aide {amount}")
        await service.confirm_payment(association.id, request.id, users.tresorier)
    await paid_loan(1200)
    await approved_request(80, title="Aide transport")

    reviewed = await service.create_request(
        association_id=association.id,
        requester_id=users.member,
        expense_type="aide_membre",
        title="Aide scolaire",
        amount_requested=40,
    )
    await service.decide(association.id, reviewed.id, users.president, "approved")
    await service.create_request(
        association_id=association.id,
        requester_id=users.member,
        expense_type="aide_membre",
        title="Aide santé",
        amount_requested=30,
    )


class TestExpenseStatistics:
    @pytest.mark.asyncio
    async def test_by_type_and_status(self, balance, association, spending):
        statistics = await balance.get_expense_statistics(association.id)

        assert [(t.type, t.count, t.total, t.average) for t in statistics.by_type] == [
            ("aide_membre", 3, Decimal("350.00"), Decimal("116.67")),
            ("pret_partenariat", 1, Decimal("1200.00"), Decimal("1200.00")),
        ]
        assert statistics.by_status["paid"] == 4
        assert statistics.by_status["approved"] == 1
        assert statistics.by_status["under_review"] == 1
        assert statistics.by_status["pending"] == 1
        assert statistics.by_status["rejected"] == 0
        assert set(statistics.by_status) == {status.value for status in ExpenseStatus}
        assert statistics.include_loans is True

    @pytest.mark.asyncio
    async def test_without_loans(self, balance, association, spending):
        statistics = await balance.get_expense_statistics(association.id, include_loans=False)

        assert [t.type for t in statistics.by_type] == ["aide_membre"]
        assert statistics.by_status["paid"] == 3

    @pytest.mark.asyncio
    async def test_period_filters_on_creation(self, session, balance, association, spending):
        later = BalanceService(session, clock=lambda: utcnow() + timedelta(days=400))

        statistics = await later.get_expense_statistics(association.id, "month")

        assert statistics.period == "month"
        assert statistics.by_type == []
        assert sum(statistics.by_status.values()) == 0

        statistics = await balance.get_expense_statistics(association.id, "month")
        assert sum(statistics.by_status.values()) == 7

    @pytest.mark.asyncio
    async def test_unknown_period(self, balance, association):
        with pytest.raises(ValidationError):
            await balance.get_expense_statistics(association.id, "week")

    @pytest.mark.asyncio
    async def test_quick_summary(self, balance, association, spending):
        summary = await balance.get_quick_summary(association.id)

        assert summary.pending == 2
        assert summary.approved == 1
        assert summary.paid == 4
        assert summary.total_paid == Decimal("1550.00")

    @pytest.mark.asyncio
    async def test_quick_summary_empty(self, balance, association):
        summary = await balance.get_quick_summary(association.id)
        assert (summary.pending, summary.approved, summary.paid, summary.total_paid) == (0, 0, 0, Decimal("0"))
