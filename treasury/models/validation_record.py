"""ValidationRecord ORM model: one bureau decision on an expense request."""

from decimal import Decimal
from enum import Enum

from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from treasury.models import Base, BaseModel


class Decision(str, Enum):
    """Decision recorded by a validator."""

    APPROVED = "approved"
    REJECTED = "rejected"
    INFO_REQUESTED = "info_requested"


class ValidationRecord(Base, BaseModel):
    """Append-only entry of an expense request's validation history.

    created_at (from BaseModel) is the decision timestamp. Rows are never
    updated or deleted; see treasury.models.immutability.
    """

    __tablename__ = "validation_records"

    expense_request_id: Mapped[int] = mapped_column(
        ForeignKey("expense_requests.id"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(nullable=False, comment="Deciding member")
    role: Mapped[str] = mapped_column(String(50), nullable=False, comment="Role the decision counts for")
    decision: Mapped[Decision] = mapped_column(
        SAEnum(Decision, native_enum=False, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    comment: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount_approved: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 2), nullable=True, comment="Amount the validator approved"
    )

    expense_request: Mapped["ExpenseRequest"] = relationship(  # noqa: F821
        "ExpenseRequest", back_populates="validation_records"
    )

    __table_args__ = (Index("idx_validation_request_role", "expense_request_id", "role"),)

    def __repr__(self) -> str:
        return (
            f"<ValidationRecord(request={self.expense_request_id}, role={self.role}, "
            f"decision={self.decision.value})>"
        )


__all__ = ["Decision", "ValidationRecord"]
