"""Integration tests for the loan repayment tracker."""

from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from treasury.models import LedgerEntry, LoanRepayment, RepaymentStatus
from treasury.services.balance_service import BalanceService
from treasury.services.errors import AuthorizationError, ConflictError, ValidationError
from treasury.services.events import RepaymentValidated
from treasury.services.loan_service import LoanRepaymentStatus, LoanService


def fixed_clock(day: date):
    return lambda: datetime(day.year, day.month, day.day, 12, tzinfo=timezone.utc)


@pytest.fixture
async def funded(add_income):
    await add_income(3000)


class TestRepayments:
    @pytest.mark.asyncio
    async def test_five_repayments_on_twelve_hundred(
        self, funded, loan_service, paid_loan, association, users
    ):
        """Test 5 x 100 repaid on a 1200 loan: 700 outstanding, 42%."""
        loan = await paid_loan(1200)
        for _ in range(5):
            await loan_service.record_repayment(association.id, loan.id, users.tresorier, amount=100)

        status = await loan_service.get_loan_status(association.id, loan.id)

        assert status.loan_amount == Decimal("1200.00")
        assert status.total_repaid == Decimal("500.00")
        assert status.outstanding == Decimal("700.00")
        assert status.completion_percentage == 42
        assert status.repayment_status == LoanRepaymentStatus.IN_PROGRESS
        assert status.overpaid is False
        assert len(await loan_service.repayment_history(association.id, loan.id)) == 5

    @pytest.mark.asyncio
    async def test_repayments_restore_balance(
        self, funded, session, loan_service, paid_loan, association, users
    ):
        balance = BalanceService(session)
        loan = await paid_loan(1200)
        assert (await balance.get_available_balance(association.id)).available_balance == Decimal("600.00")

        for _ in range(3):
            await loan_service.record_repayment(association.id, loan.id, users.tresorier, amount=100)

        snapshot = await balance.get_available_balance(association.id)
        assert snapshot.outstanding_loans == Decimal("900.00")
        assert snapshot.available_balance == Decimal("900.00")

        entries = (
            await session.execute(select(LedgerEntry).where(LedgerEntry.type == "remboursement"))
        ).scalars().all()
        assert len(entries) == 3
        assert all(e.loan_repayment_id is not None for e in entries)

    @pytest.mark.asyncio
    async def test_interest_is_kept_apart(self, funded, loan_service, paid_loan, association, users):
        loan = await paid_loan(1200)
        repayment = await loan_service.record_repayment(
            association.id, loan.id, users.tresorier, amount="110", interest_amount="10"
        )
        assert repayment.principal_amount == Decimal("100.00")
        assert repayment.interest_amount == Decimal("10.00")

        status = await loan_service.get_loan_status(association.id, loan.id)
        assert status.total_repaid == Decimal("100.00")
        assert status.total_interest == Decimal("10.00")

        with pytest.raises(ValidationError):
            await loan_service.record_repayment(
                association.id, loan.id, users.tresorier, amount=100, principal_amount=90, interest_amount=20
            )

    @pytest.mark.asyncio
    async def test_over_repayment_is_excess(self, funded, bus, loan_service, paid_loan, association, users):
        received = []

        async def recorder(event):
            received.append(event)

        bus.subscribe(RepaymentValidated, recorder)
        loan = await paid_loan(300, duration_months=3)
        await loan_service.record_repayment(association.id, loan.id, users.tresorier, amount=250)
        last = await loan_service.record_repayment(association.id, loan.id, users.tresorier, amount=100)

        assert last.principal_amount == Decimal("50.00")
        assert last.excess_amount == Decimal("50.00")
        status = await loan_service.get_loan_status(association.id, loan.id)
        assert status.outstanding == Decimal("0.00")
        assert status.completion_percentage == 100
        assert status.repayment_status == LoanRepaymentStatus.COMPLETED
        assert status.overpaid is True
        assert [e.completed for e in received] == [False, True]
        assert received[0].outstanding == Decimal("50.00")

    @pytest.mark.asyncio
    async def test_unpaid_loan_rejects_repayments(self, funded, service, loan_service, association, users):
        loan = await service.create_request(
            association_id=association.id,
            requester_id=users.president,
            expense_type="pret_partenariat",
            title="Prêt",
            amount_requested=500,
            is_loan=True,
            loan_terms={"duration_months": 5},
        )
        association_id, loan_id = association.id, loan.id
        with pytest.raises(ConflictError):
            await loan_service.record_repayment(association_id, loan_id, users.tresorier, amount=100)
        with pytest.raises(ConflictError):
            await loan_service.schedule_installments(association_id, loan_id, users.tresorier)

        status = await loan_service.get_loan_status(association_id, loan_id)
        assert status.repayment_status == LoanRepaymentStatus.NOT_STARTED

    @pytest.mark.asyncio
    async def test_non_loan_and_non_bureau(
        self, funded, service, loan_service, paid_loan, approved_request, association, users
    ):
        request = await approved_request(100)
        with pytest.raises(ValidationError):
            await loan_service.get_loan_status(association.id, request.id)

        loan = await paid_loan(600)
        with pytest.raises(AuthorizationError):
            await loan_service.record_repayment(association.id, loan.id, users.member, amount=100)


class TestInstallments:
    @pytest.mark.asyncio
    async def test_schedule(self, funded, loan_service, paid_loan, association, users):
        loan = await paid_loan(1200, duration_months=12)
        installments = await loan_service.schedule_installments(
            association.id, loan.id, users.tresorier, first_due_date=date(2026, 1, 31)
        )

        assert len(installments) == 12
        assert {i.amount for i in installments} == {Decimal("100.00")}
        assert installments[1].due_date == date(2026, 2, 28)
        assert installments[-1].due_date == date(2026, 12, 31)
        assert all(i.status == RepaymentStatus.PENDING for i in installments)

        with pytest.raises(ConflictError):
            await loan_service.schedule_installments(association.id, loan.id, users.tresorier)

    @pytest.mark.asyncio
    async def test_monthly_payment_carries_interest(self, funded, loan_service, paid_loan, association, users):
        loan = await paid_loan(1200, duration_months=12, monthly_payment=105, interest_rate=5)
        installments = await loan_service.schedule_installments(
            association.id, loan.id, users.president, first_due_date=date(2026, 1, 15)
        )
        assert installments[0].amount == Decimal("105.00")
        assert installments[0].principal_amount == Decimal("100.00")
        assert installments[0].interest_amount == Decimal("5.00")

    @pytest.mark.asyncio
    async def test_validate_installment_once(self, funded, loan_service, paid_loan, association, users):
        loan = await paid_loan(1200, duration_months=12)
        await loan_service.schedule_installments(
            association.id, loan.id, users.tresorier, first_due_date=date(2026, 1, 15)
        )

        repayment = await loan_service.record_repayment(
            association.id, loan.id, users.tresorier, amount=100, installment_number=1,
            payment_date=date(2026, 1, 20),
        )
        assert repayment.status == RepaymentStatus.VALIDATED
        assert repayment.due_date == date(2026, 1, 15)
        assert repayment.days_late(date(2026, 6, 1)) == 5
        assert len(await loan_service.repayment_history(association.id, loan.id)) == 12

        with pytest.raises(ConflictError):
            await loan_service.record_repayment(
                association.id, loan.id, users.tresorier, amount=100, installment_number=1
            )

    @pytest.mark.asyncio
    async def test_installment_number_requires_schedule(self, funded, loan_service, paid_loan, association, users):
        loan = await paid_loan(1200, duration_months=12)
        association_id, loan_id = association.id, loan.id

        with pytest.raises(ValidationError):
            await loan_service.record_repayment(
                association_id, loan_id, users.tresorier, amount=100, installment_number=1
            )
        assert await loan_service.repayment_history(association_id, loan_id) == []

        # An unscheduled repayment does not count as a schedule
        await loan_service.record_repayment(association_id, loan_id, users.tresorier, amount=100)
        installments = await loan_service.schedule_installments(
            association_id, loan_id, users.tresorier, first_due_date=date(2026, 1, 15)
        )
        assert len(installments) == 12

        with pytest.raises(ValidationError):
            await loan_service.record_repayment(
                association_id, loan_id, users.tresorier, amount=100, installment_number=13
            )

    @pytest.mark.asyncio
    async def test_late_installments(self, funded, session, bus, locks, paid_loan, association, users):
        today = date(2026, 3, 20)
        loans = LoanService(session, events=bus, locks=locks, clock=fixed_clock(today))
        loan = await paid_loan(1200, duration_months=12)
        await loans.schedule_installments(
            association.id, loan.id, users.tresorier, first_due_date=date(2026, 1, 15)
        )
        await loans.record_repayment(association.id, loan.id, users.tresorier, amount=100, installment_number=1)

        assert await loans.count_late_installments(association.id) == 2
        assert await loans.flag_late_installments(association.id) == 2
        assert await loans.flag_late_installments(association.id) == 0
        assert await loans.count_late_installments(association.id) == 2

        status = await loans.get_loan_status(association.id, loan.id)
        assert [i.installment_number for i in status.late_installments] == [2, 3]
        assert status.late_installments[0].days_late == 33
        assert [i.installment_number for i in status.upcoming_installments] == [4, 5, 6]

        late = (
            await session.execute(
                select(LoanRepayment)
                .where(LoanRepayment.status == RepaymentStatus.LATE)
                .execution_options(populate_existing=True)
            )
        ).scalars().all()
        assert sorted(r.installment_number for r in late) == [2, 3]

    @pytest.mark.asyncio
    async def test_late_installments_carry_penalty(self, funded, session, bus, locks, paid_loan, association, users):
        """Test penalty = principal * rate / 365 * days late, kept out of outstanding."""
        loans = LoanService(
            session, events=bus, locks=locks, clock=fixed_clock(date(2026, 3, 20)), penalty_rate=Decimal("0.05")
        )
        loan = await paid_loan(1200, duration_months=12)
        await loans.schedule_installments(
            association.id, loan.id, users.tresorier, first_due_date=date(2026, 1, 15)
        )
        await loans.record_repayment(association.id, loan.id, users.tresorier, amount=100, installment_number=1)

        status = await loans.get_loan_status(association.id, loan.id)

        # 33 and 5 days late on 100 of principal each
        assert [i.penalty for i in status.late_installments] == [Decimal("0.45"), Decimal("0.07")]
        assert status.total_penalty == Decimal("0.52")
        assert all(i.penalty == 0 for i in status.upcoming_installments)
        assert status.outstanding == Decimal("1100.00")

        doubled = LoanService(
            session, events=bus, locks=locks, clock=fixed_clock(date(2026, 3, 20)), penalty_rate=Decimal("0.10")
        )
        assert (await doubled.get_loan_status(association.id, loan.id)).total_penalty == Decimal("1.04")
