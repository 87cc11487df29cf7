"""Loan repayment tracker.

A loan is an expense request with is_loan set; once paid it is tracked
against its LoanRepayment rows. Declared loan_terms only shape the
installment schedule: the repayment state is derived from validated rows.
"""

import calendar
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Callable

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from treasury.config.settings import settings
from treasury.models import utcnow
from treasury.models.expense_request import ExpenseRequest, ExpenseStatus
from treasury.models.loan_repayment import LoanRepayment, RepaymentStatus
from treasury.services.association_service import AssociationService
from treasury.services.audit_service import AuditService
from treasury.services.errors import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from treasury.services.events import EventBus, RepaymentValidated, event_bus
from treasury.services.expense_request_service import BUREAU_ROLES, RequestLockRegistry, request_locks
from treasury.services.ledger_service import LOAN_REPAYMENT_TYPE, LedgerService
from treasury.services.loan_terms import parse_loan_terms
from treasury.services.money import ZERO, parse_amount, to_money

logger = logging.getLogger(__name__)

# Installments shown as "upcoming" in a loan status
UPCOMING_LIMIT = 3

# Late penalties accrue on a daily share of the yearly rate
DAYS_PER_YEAR = Decimal(365)

OPEN_INSTALLMENT_STATUSES = (RepaymentStatus.PENDING, RepaymentStatus.LATE)


class LoanRepaymentStatus(str, Enum):
    """Derived on read, never stored."""

    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


@dataclass
class InstallmentView:
    id: int
    installment_number: int | None
    amount: Decimal
    due_date: date | None
    status: RepaymentStatus
    days_late: int
    penalty: Decimal = ZERO


@dataclass
class LoanStatus:
    request_id: int
    loan_amount: Decimal
    currency: str
    total_repaid: Decimal
    total_interest: Decimal
    total_excess: Decimal
    outstanding: Decimal
    completion_percentage: int
    repayment_status: LoanRepaymentStatus
    overpaid: bool
    total_penalty: Decimal = ZERO
    upcoming_installments: list[InstallmentView] = field(default_factory=list)
    late_installments: list[InstallmentView] = field(default_factory=list)


def completion_percentage(total_repaid: Decimal, loan_amount: Decimal) -> int:
    """round(100 * repaid / amount), half-up, clamped to [0, 100]."""
    if loan_amount <= 0:
        return 0
    ratio = (Decimal(100) * total_repaid / loan_amount).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return int(min(Decimal(100), max(Decimal(0), ratio)))


def repayment_status(total_repaid: Decimal, outstanding: Decimal) -> LoanRepaymentStatus:
    if outstanding <= 0:
        return LoanRepaymentStatus.COMPLETED
    if total_repaid <= 0:
        return LoanRepaymentStatus.NOT_STARTED
    return LoanRepaymentStatus.IN_PROGRESS


def late_penalty(principal: Decimal, days_late: int, rate: Decimal) -> Decimal:
    """principal * rate / 365 * days_late, rounded to cents; zero when not late."""
    if days_late <= 0:
        return ZERO
    return to_money(Decimal(principal) * Decimal(rate) / DAYS_PER_YEAR * days_late)


def _add_months(day: date, months: int) -> date:
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    # Clamp to the last day of shorter months
    return date(year, month, min(day.day, calendar.monthrange(year, month)[1]))


def split_evenly(total: Decimal, parts: int) -> list[Decimal]:
    """Split total in parts cents-exact; the last part absorbs rounding."""
    share = to_money(total / parts)
    return [share] * (parts - 1) + [to_money(total - share * (parts - 1))]


class LoanService:
    """Schedule, record and summarize loan repayments."""

    def __init__(
        self,
        session: AsyncSession,
        events: EventBus | None = None,
        locks: RequestLockRegistry | None = None,
        clock: Callable[[], datetime] = utcnow,
        penalty_rate: Decimal | None = None,
    ):
        """Initialize with database session.

        Args:
            session: AsyncSession for database operations
            events: Bus receiving RepaymentValidated after commit
            locks: Per-request lock registry shared with the workflow
            clock: Returns the current timezone-aware time
            penalty_rate: Yearly late penalty rate (default: settings.late_penalty_rate)
        """
        self.session = session
        self.events = events or event_bus
        self.locks = locks or request_locks
        self.clock = clock
        self.penalty_rate = settings.late_penalty_rate if penalty_rate is None else Decimal(penalty_rate)
        self.associations = AssociationService(session)
        self.ledger = LedgerService(session)

    def _today(self) -> date:
        return self.clock().date()

    async def get_loan(self, association_id: int, request_id: int, for_update: bool = False) -> ExpenseRequest:
        """Load a loan request.

        Raises:
            NotFoundError: Unknown request
            ValidationError: Request is not a loan
        """
        stmt = select(ExpenseRequest).where(ExpenseRequest.id == request_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        request = (await self.session.execute(stmt)).scalar_one_or_none()
        if request is None or request.association_id != association_id:
            raise NotFoundError(
                f"Expense request {request_id} not found",
                association_id=association_id,
                request_id=request_id,
            )
        if not request.is_loan:
            raise ValidationError(f"Expense request {request_id} is not a loan", request_id=request_id)
        return request

    @staticmethod
    def _ensure_disbursed(request: ExpenseRequest) -> None:
        if request.status != ExpenseStatus.PAID:
            raise ConflictError(
                "Repayments are only tracked for paid loans",
                current_status=request.status,
                request_id=request.id,
            )

    async def _ensure_bureau(self, association_id: int, user_id: int) -> str:
        role = await self.associations.role_of(user_id, association_id)
        if role not in BUREAU_ROLES:
            raise AuthorizationError("A bureau role is required to manage repayments", role=role)
        return role

    async def _repayments(self, request_id: int) -> list[LoanRepayment]:
        result = await self.session.execute(
            select(LoanRepayment)
            .where(LoanRepayment.expense_request_id == request_id)
            .order_by(LoanRepayment.installment_number.is_(None), LoanRepayment.installment_number, LoanRepayment.id)
        )
        return list(result.scalars().all())

    async def total_repaid(self, request_id: int) -> Decimal:
        """Sum of validated principal."""
        result = await self.session.execute(
            select(func.coalesce(func.sum(LoanRepayment.principal_amount), 0)).where(
                LoanRepayment.expense_request_id == request_id,
                LoanRepayment.status == RepaymentStatus.VALIDATED,
            )
        )
        return to_money(result.scalar_one())

    async def outstanding_balance(self, request: ExpenseRequest) -> Decimal:
        """Loan amount minus validated principal, floored at 0."""
        return max(ZERO, to_money(request.payable_amount) - await self.total_repaid(request.id))

    async def schedule_installments(
        self,
        association_id: int,
        request_id: int,
        user_id: int,
        first_due_date: date | None = None,
    ) -> list[LoanRepayment]:
        """Create the monthly pending installments declared by loan_terms.

        The principal is split evenly over duration_months; each installment
        is monthly_payment when declared, its principal share otherwise.

        Raises:
            ConflictError: Loan not paid yet, or already scheduled
        """
        await self._ensure_bureau(association_id, user_id)
        request = await self.get_loan(association_id, request_id)
        self._ensure_disbursed(request)

        existing = await self.session.execute(
            select(func.count(LoanRepayment.id)).where(
                LoanRepayment.expense_request_id == request.id,
                LoanRepayment.installment_number.is_not(None),
            )
        )
        if existing.scalar_one():
            raise ConflictError("Installments are already scheduled", request_id=request.id)

        terms = parse_loan_terms(request.loan_terms)
        start = first_due_date or terms.start_date
        if start is None:
            paid_on = request.paid_at.date() if request.paid_at else self._today()
            start = _add_months(paid_on, 1)

        principals = split_evenly(to_money(request.payable_amount), terms.duration_months)
        installments = []
        try:
            for number, principal in enumerate(principals, start=1):
                amount = to_money(terms.monthly_payment) if terms.monthly_payment else principal
                installment = LoanRepayment(
                    expense_request_id=request.id,
                    installment_number=number,
                    amount=amount,
                    principal_amount=principal,
                    interest_amount=max(ZERO, amount - principal),
                    due_date=_add_months(start, number - 1),
                    status=RepaymentStatus.PENDING,
                )
                self.session.add(installment)
                installments.append(installment)
            AuditService.log(
                self.session,
                "expense_request",
                request.id,
                "installments_scheduled",
                actor_id=user_id,
                changes={"count": len(installments), "first_due_date": start},
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise

        logger.info(
            "Scheduled %d installments for loan %s starting %s", len(installments), request.id, start
        )
        return installments

    async def record_repayment(
        self,
        association_id: int,
        request_id: int,
        user_id: int,
        amount: Any,
        payment_date: date | None = None,
        due_date: date | None = None,
        installment_number: int | None = None,
        principal_amount: Any = None,
        interest_amount: Any = None,
        payment_method: str | None = None,
        manual_reference: str | None = None,
        notes: str | None = None,
    ) -> LoanRepayment:
        """Record money received against a loan.

        Validates the scheduled installment named by installment_number,
        otherwise adds an unnumbered validated row. Principal beyond what is
        still owed is kept apart as excess_amount. A completed remboursement
        ledger entry is written in the same transaction.

        Raises:
            ConflictError: Loan not paid, or installment already validated
            ValidationError: Bad amounts, or installment_number not scheduled
        """
        amount = parse_amount(amount)
        interest = ZERO
        if interest_amount is not None:
            interest = parse_amount(interest_amount, "interest_amount", allow_zero=True)
        if principal_amount is not None:
            principal = parse_amount(principal_amount, "principal_amount", allow_zero=True)
        else:
            principal = amount - interest
        if principal < 0 or principal + interest > amount:
            raise ValidationError(
                "principal_amount + interest_amount cannot exceed amount",
                amount=amount,
                principal_amount=principal,
                interest_amount=interest,
            )

        async with self.locks.get(request_id):
            try:
                await self._ensure_bureau(association_id, user_id)
                request = await self.get_loan(association_id, request_id, for_update=True)
                self._ensure_disbursed(request)

                outstanding = await self.outstanding_balance(request)
                credited = min(principal, outstanding)
                excess = principal - credited
                paid_on = payment_date or self._today()

                repayment = None
                if installment_number is not None:
                    result = await self.session.execute(
                        select(LoanRepayment).where(
                            LoanRepayment.expense_request_id == request.id,
                            LoanRepayment.installment_number == installment_number,
                        )
                    )
                    repayment = result.scalars().first()
                    if repayment is None:
                        raise ValidationError(
                            f"Loan has no scheduled installment {installment_number}",
                            field="installment_number",
                            request_id=request.id,
                        )
                    if repayment.status == RepaymentStatus.VALIDATED:
                        raise ConflictError(
                            f"Installment {installment_number} is already validated",
                            request_id=request.id,
                            installment_number=installment_number,
                        )
                if repayment is None:
                    repayment = LoanRepayment(
                        expense_request_id=request.id,
                        due_date=due_date,
                    )
                    self.session.add(repayment)
                elif due_date is not None:
                    repayment.due_date = due_date

                repayment.amount = amount
                repayment.principal_amount = credited
                repayment.interest_amount = interest
                repayment.excess_amount = excess
                repayment.payment_date = paid_on
                repayment.status = RepaymentStatus.VALIDATED
                repayment.payment_method = payment_method
                repayment.manual_reference = manual_reference
                repayment.notes = notes
                repayment.validated_by = user_id
                repayment.validated_at = utcnow()
                await self.session.flush()

                entry = await self.ledger.append_entry(
                    association_id=request.association_id,
                    type=LOAN_REPAYMENT_TYPE,
                    amount=amount,
                    currency=request.currency,
                    description=f"Remboursement: {request.title}",
                    expense_request_id=request.id,
                    loan_repayment_id=repayment.id,
                )
                repayment.transaction_id = entry.id
                # Version bump serializes concurrent repayments on the same loan
                request.updated_at = utcnow()

                AuditService.log(
                    self.session,
                    "loan_repayment",
                    repayment.id,
                    "validated",
                    actor_id=user_id,
                    changes={
                        "expense_request_id": request.id,
                        "amount": amount,
                        "principal_amount": credited,
                        "excess_amount": excess,
                    },
                )
                await self.session.commit()
            except StaleDataError as e:
                await self.session.rollback()
                raise ConflictError(
                    "Loan was modified concurrently, please retry", request_id=request_id
                ) from e
            except Exception:
                await self.session.rollback()
                raise

        remaining = outstanding - credited
        if excess > 0:
            logger.warning(
                "Over-repayment on loan %s: %s beyond outstanding principal", request.id, excess
            )
        logger.info(
            "Repayment %s of %s recorded on loan %s (outstanding %s)",
            repayment.id,
            amount,
            request.id,
            remaining,
        )
        await self.events.publish(
            RepaymentValidated(
                association_id=request.association_id,
                request_id=request.id,
                actor_id=user_id,
                repayment_id=repayment.id,
                amount=amount,
                outstanding=remaining,
                currency=request.currency,
                completed=remaining == 0,
            )
        )
        return repayment

    async def repayment_history(self, association_id: int, request_id: int) -> list[LoanRepayment]:
        """All repayment rows of a loan, scheduled ones in installment order."""
        request = await self.get_loan(association_id, request_id)
        return await self._repayments(request.id)

    async def get_loan_status(self, association_id: int, request_id: int) -> LoanStatus:
        """Repayment progress derived from validated rows.

        Late installments carry a penalty (informational, never added to
        outstanding); total_penalty sums them.
        """
        request = await self.get_loan(association_id, request_id)
        rows = await self._repayments(request.id)
        today = self._today()

        validated = [r for r in rows if r.status == RepaymentStatus.VALIDATED]
        total_repaid = to_money(sum((r.principal_amount for r in validated), ZERO))
        loan_amount = to_money(request.payable_amount)
        outstanding = max(ZERO, loan_amount - total_repaid)
        total_excess = to_money(sum((r.excess_amount for r in validated), ZERO))

        def view(row: LoanRepayment) -> InstallmentView:
            days_late = row.days_late(today)
            return InstallmentView(
                id=row.id,
                installment_number=row.installment_number,
                amount=to_money(row.amount),
                due_date=row.due_date,
                status=row.status,
                days_late=days_late,
                penalty=late_penalty(row.principal_amount, days_late, self.penalty_rate),
            )

        open_rows = [r for r in rows if r.status in OPEN_INSTALLMENT_STATUSES and r.due_date is not None]
        late = [view(r) for r in open_rows if r.due_date < today]
        upcoming = sorted((r for r in open_rows if r.due_date >= today), key=lambda r: r.due_date)

        disbursed = request.status == ExpenseStatus.PAID
        return LoanStatus(
            request_id=request.id,
            loan_amount=loan_amount,
            currency=request.currency,
            total_repaid=total_repaid,
            total_interest=to_money(sum((r.interest_amount for r in validated), ZERO)),
            total_excess=total_excess,
            outstanding=outstanding,
            completion_percentage=completion_percentage(total_repaid, loan_amount),
            repayment_status=(
                repayment_status(total_repaid, outstanding)
                if disbursed
                else LoanRepaymentStatus.NOT_STARTED
            ),
            overpaid=total_excess > 0,
            total_penalty=to_money(sum((v.penalty for v in late), ZERO)),
            upcoming_installments=[view(r) for r in upcoming[:UPCOMING_LIMIT]],
            late_installments=late,
        )

    def _overdue_clause(self, association_id: int, today: date):
        loan_ids = select(ExpenseRequest.id).where(
            ExpenseRequest.association_id == association_id,
            ExpenseRequest.is_loan.is_(True),
        )
        return (
            LoanRepayment.expense_request_id.in_(loan_ids),
            LoanRepayment.status.in_(OPEN_INSTALLMENT_STATUSES),
            LoanRepayment.due_date < today,
        )

    async def count_late_installments(self, association_id: int, today: date | None = None) -> int:
        """Open installments past their due date."""
        result = await self.session.execute(
            select(func.count(LoanRepayment.id)).where(
                *self._overdue_clause(association_id, today or self._today())
            )
        )
        return int(result.scalar_one())

    async def flag_late_installments(self, association_id: int, today: date | None = None) -> int:
        """Mark overdue pending installments late. Returns how many changed."""
        today = today or self._today()
        try:
            result = await self.session.execute(
                update(LoanRepayment)
                .where(
                    *self._overdue_clause(association_id, today),
                    LoanRepayment.status == RepaymentStatus.PENDING,
                )
                .values(status=RepaymentStatus.LATE, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            await self.session.commit()
        except Exception:
            await self.session.rollback()
            raise
        if result.rowcount:
            logger.info("Flagged %d late installment(s) in association %s", result.rowcount, association_id)
        return result.rowcount


__all__ = [
    "InstallmentView",
    "LoanRepaymentStatus",
    "LoanService",
    "LoanStatus",
    "completion_percentage",
    "repayment_status",
    "split_evenly",
]
