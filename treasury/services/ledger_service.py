"""Ledger reader: aggregates over completed money movements of one association.

Holds no state. The query builders return scalar subqueries so the balance
engine can combine them into a single statement (one consistent read).
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Iterable

from sqlalchemy import case, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.expression import ScalarSelect

from treasury.models.expense_request import ExpenseRequest, ExpenseStatus
from treasury.models.ledger_entry import LedgerEntry, LedgerEntryStatus
from treasury.models.loan_repayment import LoanRepayment, RepaymentStatus
from treasury.services.errors import LedgerError
from treasury.services.money import to_money

logger = logging.getLogger(__name__)

# Ledger type of loan disbursements and of loan repayments
LOAN_DISBURSEMENT_TYPE = "pret"
LOAN_REPAYMENT_TYPE = "remboursement"


def income_total_query(association_id: int, income_types: Iterable[str]) -> ScalarSelect:
    """Sum of net_amount over completed income entries."""
    return (
        select(func.coalesce(func.sum(LedgerEntry.net_amount), 0))
        .where(
            LedgerEntry.association_id == association_id,
            LedgerEntry.status == LedgerEntryStatus.COMPLETED,
            LedgerEntry.type.in_(list(income_types)),
        )
        .scalar_subquery()
    )


def paid_expenses_query(association_id: int) -> ScalarSelect:
    """Sum of amounts paid out for every paid request, loans included."""
    return (
        select(
            func.coalesce(
                func.sum(
                    func.coalesce(ExpenseRequest.amount_approved, ExpenseRequest.amount_requested)
                ),
                0,
            )
        )
        .where(
            ExpenseRequest.association_id == association_id,
            ExpenseRequest.status == ExpenseStatus.PAID,
        )
        .scalar_subquery()
    )


def outstanding_loans_query(association_id: int) -> ScalarSelect:
    """Sum over paid loans of max(0, loan amount - validated principal)."""
    repaid = (
        select(
            LoanRepayment.expense_request_id.label("loan_id"),
            func.sum(LoanRepayment.principal_amount).label("repaid"),
        )
        .where(LoanRepayment.status == RepaymentStatus.VALIDATED)
        .group_by(LoanRepayment.expense_request_id)
        .subquery()
    )
    loan_amount = func.coalesce(ExpenseRequest.amount_approved, ExpenseRequest.amount_requested)
    remaining = loan_amount - func.coalesce(repaid.c.repaid, 0)
    return (
        select(func.coalesce(func.sum(case((remaining > 0, remaining), else_=0)), 0))
        .select_from(ExpenseRequest)
        .outerjoin(repaid, repaid.c.loan_id == ExpenseRequest.id)
        .where(
            ExpenseRequest.association_id == association_id,
            ExpenseRequest.is_loan.is_(True),
            ExpenseRequest.status == ExpenseStatus.PAID,
        )
        .scalar_subquery()
    )


class LedgerService:
    """Append to and aggregate over the association ledger."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def append_entry(
        self,
        association_id: int,
        type: str,
        amount: Decimal,
        net_amount: Decimal | None = None,
        status: LedgerEntryStatus = LedgerEntryStatus.COMPLETED,
        currency: str = "EUR",
        description: str | None = None,
        expense_request_id: int | None = None,
        loan_repayment_id: int | None = None,
    ) -> LedgerEntry:
        """Add a ledger entry to the current transaction and flush it.

        The caller commits, so the entry lands atomically with the change
        that produced it.

        Raises:
            LedgerError: If the entry cannot be written
        """
        entry = LedgerEntry(
            association_id=association_id,
            type=type,
            amount=to_money(amount),
            net_amount=to_money(amount if net_amount is None else net_amount),
            status=status,
            currency=currency,
            description=description,
            expense_request_id=expense_request_id,
            loan_repayment_id=loan_repayment_id,
        )
        try:
            self.session.add(entry)
            await self.session.flush()
        except SQLAlchemyError as e:
            logger.error(
                "Ledger append failed for association %s (type=%s, amount=%s): %s",
                association_id,
                type,
                amount,
                e,
            )
            raise LedgerError(
                "Could not append ledger entry",
                association_id=association_id,
                expense_request_id=expense_request_id,
            ) from e
        logger.debug(
            "Ledger entry %s appended: association=%s type=%s amount=%s",
            entry.id,
            association_id,
            type,
            entry.amount,
        )
        return entry

    async def sum_by_type_and_status(
        self,
        association_id: int,
        type: str,
        status: LedgerEntryStatus = LedgerEntryStatus.COMPLETED,
        date_range: tuple[datetime, datetime] | None = None,
    ) -> Decimal:
        """Sum net_amount of entries of one type and status, optionally in [start, end]."""
        stmt = select(func.coalesce(func.sum(LedgerEntry.net_amount), 0)).where(
            LedgerEntry.association_id == association_id,
            LedgerEntry.type == type,
            LedgerEntry.status == status,
        )
        if date_range is not None:
            start, end = date_range
            stmt = stmt.where(LedgerEntry.created_at.between(start, end))
        result = await self.session.execute(stmt)
        return to_money(result.scalar_one())

    async def total_income(self, association_id: int, income_types: Iterable[str]) -> Decimal:
        result = await self.session.execute(select(income_total_query(association_id, income_types)))
        return to_money(result.scalar_one())

    async def total_expenses_paid(self, association_id: int) -> Decimal:
        result = await self.session.execute(select(paid_expenses_query(association_id)))
        return to_money(result.scalar_one())

    async def outstanding_loan_principal(self, association_id: int) -> Decimal:
        result = await self.session.execute(select(outstanding_loans_query(association_id)))
        return to_money(result.scalar_one())

    async def entries_for_request(self, expense_request_id: int) -> list[LedgerEntry]:
        """Ledger entries tagged with an expense request, oldest first."""
        result = await self.session.execute(
            select(LedgerEntry)
            .where(LedgerEntry.expense_request_id == expense_request_id)
            .order_by(LedgerEntry.id)
        )
        return list(result.scalars().all())


__all__ = [
    "LOAN_DISBURSEMENT_TYPE",
    "LOAN_REPAYMENT_TYPE",
    "LedgerService",
    "income_total_query",
    "outstanding_loans_query",
    "paid_expenses_query",
]
