"""LoanRepayment ORM model: one installment against a loan expense request."""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import Date, DateTime, ForeignKey, Index, Numeric, String, Text
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from treasury.models import Base, BaseModel


class RepaymentStatus(str, Enum):
    """Installment state."""

    PENDING = "pending"
    VALIDATED = "validated"
    LATE = "late"


class LoanRepayment(Base, BaseModel):
    """Installment of a loan.

    Pending rows come from the installment schedule; validated rows carry
    the money actually received. days_late is not stored, it is computed on
    read (see LoanService).
    """

    __tablename__ = "loan_repayments"

    expense_request_id: Mapped[int] = mapped_column(
        ForeignKey("expense_requests.id"), nullable=False, index=True
    )
    installment_number: Mapped[int | None] = mapped_column(nullable=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    principal_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    interest_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    excess_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0"),
        comment="Principal paid beyond the outstanding loan amount",
    )

    due_date: Mapped[date | None] = mapped_column(Date, nullable=True, index=True)
    payment_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    status: Mapped[RepaymentStatus] = mapped_column(
        SAEnum(RepaymentStatus, native_enum=False, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=RepaymentStatus.PENDING,
        index=True,
    )
    payment_method: Mapped[str | None] = mapped_column(String(30), nullable=True)
    manual_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    validated_by: Mapped[int | None] = mapped_column(nullable=True)
    validated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    transaction_id: Mapped[int | None] = mapped_column(
        ForeignKey("ledger_entries.id"), nullable=True
    )

    __table_args__ = (
        Index("idx_repayment_request_status", "expense_request_id", "status"),
        Index("idx_repayment_request_installment", "expense_request_id", "installment_number"),
    )

    def days_late(self, today: date) -> int:
        """Days past due_date.

        Open installments are measured against today; validated ones keep
        the lateness they had when paid.
        """
        if self.due_date is None:
            return 0
        if self.status == RepaymentStatus.VALIDATED:
            reference = self.payment_date or today
        else:
            reference = today
        return max(0, (reference - self.due_date).days)

    def __repr__(self) -> str:
        return (
            f"<LoanRepayment(id={self.id}, loan={self.expense_request_id}, "
            f"amount={self.amount}, status={self.status.value})>"
        )


__all__ = ["LoanRepayment", "RepaymentStatus"]
