"""ExpenseRequest ORM model: a single proposal to spend association funds."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from treasury.models import Base, BaseModel


class ExpenseStatus(str, Enum):
    """Workflow state of an expense request."""

    PENDING = "pending"
    UNDER_REVIEW = "under_review"
    APPROVED = "approved"
    REJECTED = "rejected"
    ADDITIONAL_INFO_NEEDED = "additional_info_needed"
    PAID = "paid"
    PAYMENT_FAILED = "payment_failed"
    CANCELLED = "cancelled"


# No field writes once a request reaches one of these (repayments excepted)
FROZEN_STATUSES = frozenset({ExpenseStatus.PAID, ExpenseStatus.REJECTED, ExpenseStatus.CANCELLED})


class UrgencyLevel(str, Enum):
    """Priority of a request."""

    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    CRITICAL = "critical"


class PaymentMode(str, Enum):
    """How the payment was executed."""

    DIGITAL = "digital"
    MANUAL = "manual"


class PaymentMethod(str, Enum):
    """Concrete payment instrument."""

    STRIPE_TRANSFER = "stripe_transfer"
    BANK_TRANSFER = "bank_transfer"
    CASH = "cash"
    CHECK = "check"
    MOBILE_MONEY = "mobile_money"


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class ExpenseRequest(Base, BaseModel):
    """Spending proposal moving through the approval workflow.

    Who decided what lives only in validation_records (append-only).
    required_validators is computed once at creation from the association
    workflow rules and never re-derived.
    """

    __tablename__ = "expense_requests"

    # Context
    association_id: Mapped[int] = mapped_column(
        ForeignKey("associations.id"), nullable=False, index=True
    )
    section_id: Mapped[int | None] = mapped_column(
        nullable=True, comment="Association section (optional sub-unit)"
    )

    # Parties
    requester_id: Mapped[int] = mapped_column(nullable=False, index=True)
    beneficiary_id: Mapped[int | None] = mapped_column(
        nullable=True, index=True, comment="Internal member beneficiary"
    )
    beneficiary_external: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True, comment="External beneficiary {name, contact}"
    )

    # Classification
    expense_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    expense_subtype: Mapped[str | None] = mapped_column(String(100), nullable=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    expected_impact: Mapped[str | None] = mapped_column(Text, nullable=True)
    urgency_level: Mapped[UrgencyLevel] = mapped_column(
        SAEnum(UrgencyLevel, native_enum=False, values_callable=_enum_values),
        default=UrgencyLevel.NORMAL,
        nullable=False,
    )

    # Money
    amount_requested: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    amount_approved: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 2), nullable=True, comment="Set on approval, may differ from requested"
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EUR")

    # Loan
    is_loan: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False, index=True)
    loan_terms: Mapped[dict[str, Any] | None] = mapped_column(
        JSON,
        nullable=True,
        comment="Informational {duration_months, interest_rate, monthly_payment, start_date}",
    )

    # Workflow
    status: Mapped[ExpenseStatus] = mapped_column(
        SAEnum(ExpenseStatus, native_enum=False, values_callable=_enum_values),
        default=ExpenseStatus.PENDING,
        nullable=False,
        index=True,
    )
    required_validators: Mapped[list[str]] = mapped_column(
        JSON, nullable=False, default=list, comment="Roles frozen at creation"
    )
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Payment
    payment_mode: Mapped[PaymentMode | None] = mapped_column(
        SAEnum(PaymentMode, native_enum=False, values_callable=_enum_values), nullable=True
    )
    payment_method: Mapped[PaymentMethod | None] = mapped_column(
        SAEnum(PaymentMethod, native_enum=False, values_callable=_enum_values), nullable=True
    )
    manual_payment_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    payment_validated_by: Mapped[int | None] = mapped_column(nullable=True)
    payment_failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    transaction_id: Mapped[int | None] = mapped_column(
        ForeignKey("ledger_entries.id"),
        nullable=True,
        comment="Ledger entry recording the payment",
    )
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    # Optimistic concurrency counter
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    validation_records: Mapped[list["ValidationRecord"]] = relationship(  # noqa: F821
        "ValidationRecord",
        back_populates="expense_request",
        order_by="ValidationRecord.id",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_expense_association_status", "association_id", "status"),
        Index("idx_expense_loan", "association_id", "is_loan", "status"),
    )

    @property
    def payable_amount(self) -> Decimal:
        """Amount that leaves the treasury when paid."""
        if self.amount_approved is not None:
            return self.amount_approved
        return self.amount_requested

    def __repr__(self) -> str:
        return (
            f"<ExpenseRequest(id={self.id}, association_id={self.association_id}, "
            f"type={self.expense_type}, amount={self.amount_requested}, status={self.status.value})>"
        )


__all__ = [
    "ExpenseRequest",
    "ExpenseStatus",
    "FROZEN_STATUSES",
    "PaymentMethod",
    "PaymentMode",
    "UrgencyLevel",
]
