"""Balance engine: how much money an association can spend right now.

Formula:
    available = total_income - total_expenses_paid - outstanding_loan_principal

- total_income: completed ledger entries of an income type (net amounts)
- total_expenses_paid: every paid request, loans included
- outstanding_loan_principal: per paid loan, max(0, amount - validated principal)

The three figures come from one SELECT so a snapshot never mixes states.
"""

import logging
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Callable, Iterable, NamedTuple

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from treasury.config.settings import settings
from treasury.models import utcnow
from treasury.models.expense_request import ExpenseRequest, ExpenseStatus
from treasury.models.ledger_entry import LedgerEntry, LedgerEntryStatus
from treasury.models.loan_repayment import LoanRepayment, RepaymentStatus
from treasury.services.errors import InsufficientFundsError, ValidationError
from treasury.services.ledger_service import (
    LOAN_REPAYMENT_TYPE,
    income_total_query,
    outstanding_loans_query,
    paid_expenses_query,
)
from treasury.services.money import ZERO, to_money

logger = logging.getLogger(__name__)

# Breakdown windows, in days back from now
PERIOD_DAYS = {"month": 30, "quarter": 90, "year": 365}

# Requests whose money is committed but not yet out of the treasury
OPEN_SPENDING_STATUSES = (
    ExpenseStatus.PENDING,
    ExpenseStatus.UNDER_REVIEW,
    ExpenseStatus.APPROVED,
)


class BalanceSnapshot(NamedTuple):
    """Balance of one association at calculated_at."""

    association_id: int
    total_income: Decimal
    total_expenses_paid: Decimal
    outstanding_loans: Decimal
    available_balance: Decimal
    calculated_at: datetime


class FundsCheck(NamedTuple):
    """Result of a sufficiency check."""

    sufficient: bool
    available_balance: Decimal
    requested_amount: Decimal
    shortage: Decimal


class ExpenseTypeTotal(NamedTuple):
    type: str
    count: int
    total: Decimal


class ExpenseTypeStatistics(NamedTuple):
    type: str
    count: int
    total: Decimal
    average: Decimal


class ExpenseStatistics(NamedTuple):
    """Per-type paid figures and per-status request counts over a period."""

    period: str
    include_loans: bool
    by_type: list[ExpenseTypeStatistics]
    by_status: dict[str, int]
    calculated_at: datetime


class QuickSummary(NamedTuple):
    pending: int  # pending + under_review
    approved: int
    paid: int
    total_paid: Decimal


class MonthlyBalance(NamedTuple):
    month: str  # YYYY-MM
    income: Decimal
    repayments: Decimal
    expenses: Decimal
    net: Decimal


class FinancialSummary(NamedTuple):
    current_balance: BalanceSnapshot
    pending_expenses: Decimal
    upcoming_repayments: Decimal
    projected_balance: Decimal
    expenses_by_type: list[ExpenseTypeTotal]
    period: str
    calculated_at: datetime


def _month_start(day: date, months_back: int) -> date:
    year, month = day.year, day.month - months_back
    while month <= 0:
        month += 12
        year -= 1
    return date(year, month, 1)


def _next_month(day: date) -> date:
    if day.month == 12:
        return date(day.year + 1, 1, 1)
    return date(day.year, day.month + 1, 1)


class BalanceService:
    """Compute available balance, sufficiency checks and financial summaries."""

    def __init__(
        self,
        session: AsyncSession,
        income_types: Iterable[str] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize with database session.

        Args:
            session: AsyncSession for database operations
            income_types: Ledger types counted as income (default: settings.income_types)
            clock: Returns the current timezone-aware time
        """
        self.session = session
        self.income_types = list(income_types or settings.income_types)
        self.clock = clock

    async def get_available_balance(self, association_id: int) -> BalanceSnapshot:
        """Calculate the available balance from a single consistent read."""
        stmt = select(
            income_total_query(association_id, self.income_types).label("income"),
            paid_expenses_query(association_id).label("expenses"),
            outstanding_loans_query(association_id).label("loans"),
        )
        row = (await self.session.execute(stmt)).one()
        total_income = to_money(row.income)
        total_expenses = to_money(row.expenses)
        outstanding = to_money(row.loans)

        snapshot = BalanceSnapshot(
            association_id=association_id,
            total_income=total_income,
            total_expenses_paid=total_expenses,
            outstanding_loans=outstanding,
            available_balance=total_income - total_expenses - outstanding,
            calculated_at=self.clock(),
        )
        logger.debug(
            "Balance association=%s income=%s expenses=%s loans=%s available=%s",
            association_id,
            total_income,
            total_expenses,
            outstanding,
            snapshot.available_balance,
        )
        return snapshot

    async def check_sufficient_funds(self, association_id: int, amount: Decimal) -> FundsCheck:
        """Check whether the available balance covers amount."""
        requested = to_money(amount)
        available = (await self.get_available_balance(association_id)).available_balance
        return FundsCheck(
            sufficient=requested <= available,
            available_balance=available,
            requested_amount=requested,
            shortage=max(ZERO, requested - available),
        )

    async def ensure_sufficient_funds(self, association_id: int, amount: Decimal) -> FundsCheck:
        """Sufficiency check that raises instead of returning a negative result.

        Raises:
            InsufficientFundsError: With available balance and shortage
        """
        check = await self.check_sufficient_funds(association_id, amount)
        if not check.sufficient:
            logger.info(
                "Insufficient funds for association %s: requested=%s available=%s shortage=%s",
                association_id,
                check.requested_amount,
                check.available_balance,
                check.shortage,
            )
            raise InsufficientFundsError(
                available_balance=check.available_balance,
                requested_amount=check.requested_amount,
                shortage=check.shortage,
            )
        return check

    async def get_pending_expenses(self, association_id: int) -> Decimal:
        """Requested amounts of requests not yet paid, rejected or cancelled."""
        result = await self.session.execute(
            select(func.coalesce(func.sum(ExpenseRequest.amount_requested), 0)).where(
                ExpenseRequest.association_id == association_id,
                ExpenseRequest.status.in_(OPEN_SPENDING_STATUSES),
            )
        )
        return to_money(result.scalar_one())

    async def get_upcoming_repayments(self, association_id: int, days: int | None = None) -> Decimal:
        """Pending installments falling due within the next days."""
        today = self.clock().date()
        horizon = today + timedelta(days=days if days is not None else settings.upcoming_repayment_days)
        result = await self.session.execute(
            select(func.coalesce(func.sum(LoanRepayment.amount), 0))
            .join(ExpenseRequest, ExpenseRequest.id == LoanRepayment.expense_request_id)
            .where(
                ExpenseRequest.association_id == association_id,
                LoanRepayment.status == RepaymentStatus.PENDING,
                LoanRepayment.due_date.between(today, horizon),
            )
        )
        return to_money(result.scalar_one())

    def _period_window(self, period: str) -> tuple[datetime, datetime] | None:
        """Inclusive [now - period, now] bounds, None for all."""
        if period == "all":
            return None
        if period not in PERIOD_DAYS:
            raise ValidationError(f"Unknown period {period!r}", allowed=["all", *PERIOD_DAYS])
        now = self.clock()
        return now - timedelta(days=PERIOD_DAYS[period]), now

    async def get_expenses_by_type(
        self, association_id: int, period: str = "all"
    ) -> list[ExpenseTypeTotal]:
        """Paid requests grouped by expense type within [now - period, now].

        Raises:
            ValidationError: If period is not all, month, quarter or year
        """
        amount = func.coalesce(ExpenseRequest.amount_approved, ExpenseRequest.amount_requested)
        stmt = (
            select(
                ExpenseRequest.expense_type,
                func.count(ExpenseRequest.id),
                func.coalesce(func.sum(amount), 0),
            )
            .where(
                ExpenseRequest.association_id == association_id,
                ExpenseRequest.status == ExpenseStatus.PAID,
            )
            .group_by(ExpenseRequest.expense_type)
            .order_by(ExpenseRequest.expense_type)
        )
        window = self._period_window(period)
        if window is not None:
            stmt = stmt.where(ExpenseRequest.paid_at.between(*window))

        rows = (await self.session.execute(stmt)).all()
        return [
            ExpenseTypeTotal(type=expense_type, count=int(count), total=to_money(total))
            for expense_type, count, total in rows
        ]

    async def get_financial_summary(
        self, association_id: int, period: str = "all"
    ) -> FinancialSummary:
        """Balance, commitments and projections for an association."""
        current = await self.get_available_balance(association_id)
        pending = await self.get_pending_expenses(association_id)
        upcoming = await self.get_upcoming_repayments(association_id)
        by_type = await self.get_expenses_by_type(association_id, period)

        return FinancialSummary(
            current_balance=current,
            pending_expenses=pending,
            upcoming_repayments=upcoming,
            projected_balance=current.available_balance - pending + upcoming,
            expenses_by_type=by_type,
            period=period,
            calculated_at=current.calculated_at,
        )

    async def get_expense_statistics(
        self, association_id: int, period: str = "all", include_loans: bool = True
    ) -> ExpenseStatistics:
        """Statistics over the requests created within [now - period, now].

        by_type covers paid requests (approved amount when set) with count,
        total and average; by_status counts every request, one key per status.

        Raises:
            ValidationError: If period is not all, month, quarter or year
        """
        filters = [ExpenseRequest.association_id == association_id]
        window = self._period_window(period)
        if window is not None:
            filters.append(ExpenseRequest.created_at.between(*window))
        if not include_loans:
            filters.append(ExpenseRequest.is_loan.is_(False))

        amount = func.coalesce(ExpenseRequest.amount_approved, ExpenseRequest.amount_requested)
        type_rows = await self.session.execute(
            select(ExpenseRequest.expense_type, func.count(ExpenseRequest.id), func.coalesce(func.sum(amount), 0))
            .where(*filters, ExpenseRequest.status == ExpenseStatus.PAID)
            .group_by(ExpenseRequest.expense_type)
            .order_by(ExpenseRequest.expense_type)
        )
        by_type = [
            ExpenseTypeStatistics(
                type=expense_type,
                count=int(count),
                total=to_money(total),
                average=to_money(to_money(total) / count),
            )
            for expense_type, count, total in type_rows.all()
        ]

        by_status = {status.value: 0 for status in ExpenseStatus}
        status_rows = await self.session.execute(
            select(ExpenseRequest.status, func.count(ExpenseRequest.id))
            .where(*filters)
            .group_by(ExpenseRequest.status)
        )
        for status, count in status_rows.all():
            by_status[ExpenseStatus(status).value] = int(count)

        return ExpenseStatistics(
            period=period,
            include_loans=include_loans,
            by_type=by_type,
            by_status=by_status,
            calculated_at=self.clock(),
        )

    async def get_quick_summary(self, association_id: int) -> QuickSummary:
        """Request counts by stage and total paid out, for dashboards."""
        stmt = (
            select(
                ExpenseRequest.status,
                func.count(ExpenseRequest.id),
                func.coalesce(
                    func.sum(func.coalesce(ExpenseRequest.amount_approved, ExpenseRequest.amount_requested)), 0
                ),
            )
            .where(
                ExpenseRequest.association_id == association_id,
                ExpenseRequest.status.in_(
                    [ExpenseStatus.PENDING, ExpenseStatus.UNDER_REVIEW, ExpenseStatus.APPROVED, ExpenseStatus.PAID]
                ),
            )
            .group_by(ExpenseRequest.status)
        )
        counts: dict[ExpenseStatus, int] = {}
        total_paid = ZERO
        for status, count, total in (await self.session.execute(stmt)).all():
            status = ExpenseStatus(status)
            counts[status] = int(count)
            if status == ExpenseStatus.PAID:
                total_paid = to_money(total)

        return QuickSummary(
            pending=counts.get(ExpenseStatus.PENDING, 0) + counts.get(ExpenseStatus.UNDER_REVIEW, 0),
            approved=counts.get(ExpenseStatus.APPROVED, 0),
            paid=counts.get(ExpenseStatus.PAID, 0),
            total_paid=total_paid,
        )

    async def get_balance_history(self, association_id: int, months: int = 12) -> list[MonthlyBalance]:
        """Monthly cash flow for the last months calendar months (current month last).

        income: completed income entries; repayments: completed loan repayments;
        expenses: everything paid out (loans included), by paid_at.
        """
        if months < 1 or months > 120:
            raise ValidationError("months must be between 1 and 120", months=months)

        today = self.clock().date()
        first_month = _month_start(today, months - 1)
        start = datetime(first_month.year, first_month.month, 1, tzinfo=self.clock().tzinfo)

        buckets: dict[str, dict[str, Decimal]] = {}
        month = first_month
        for _ in range(months):
            buckets[month.strftime("%Y-%m")] = {"income": ZERO, "repayments": ZERO, "expenses": ZERO}
            month = _next_month(month)

        entries = await self.session.execute(
            select(LedgerEntry.type, LedgerEntry.net_amount, LedgerEntry.created_at).where(
                LedgerEntry.association_id == association_id,
                LedgerEntry.status == LedgerEntryStatus.COMPLETED,
                LedgerEntry.type.in_([*self.income_types, LOAN_REPAYMENT_TYPE]),
                LedgerEntry.created_at >= start,
            )
        )
        for entry_type, net_amount, created_at in entries.all():
            bucket = buckets.get(created_at.strftime("%Y-%m"))
            if bucket is None:
                continue
            key = "repayments" if entry_type == LOAN_REPAYMENT_TYPE else "income"
            bucket[key] += to_money(net_amount)

        paid = await self.session.execute(
            select(
                func.coalesce(ExpenseRequest.amount_approved, ExpenseRequest.amount_requested),
                ExpenseRequest.paid_at,
            ).where(
                ExpenseRequest.association_id == association_id,
                ExpenseRequest.status == ExpenseStatus.PAID,
                ExpenseRequest.paid_at >= start,
            )
        )
        for amount, paid_at in paid.all():
            bucket = buckets.get(paid_at.strftime("%Y-%m"))
            if bucket is not None:
                bucket["expenses"] += to_money(amount)

        return [
            MonthlyBalance(
                month=key,
                income=values["income"],
                repayments=values["repayments"],
                expenses=values["expenses"],
                net=values["income"] + values["repayments"] - values["expenses"],
            )
            for key, values in buckets.items()
        ]


__all__ = [
    "BalanceService",
    "BalanceSnapshot",
    "ExpenseStatistics",
    "ExpenseTypeStatistics",
    "ExpenseTypeTotal",
    "FinancialSummary",
    "FundsCheck",
    "MonthlyBalance",
    "OPEN_SPENDING_STATUSES",
    "PERIOD_DAYS",
    "QuickSummary",
]
