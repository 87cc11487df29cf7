"""LedgerEntry ORM model: money moved in or out of an association treasury."""

from decimal import Decimal
from enum import Enum

from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from treasury.models import Base, BaseModel


class LedgerEntryStatus(str, Enum):
    """Settlement state of a ledger entry."""

    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class LedgerEntry(Base, BaseModel):
    """Append-only record of money moved.

    Types form an open set: "cotisation" and "don" are income, expense
    payments use the request's expense type, loan disbursements use "pret"
    and loan repayments use "remboursement".

    Only status may change after insert (see treasury.models.immutability).
    """

    __tablename__ = "ledger_entries"

    association_id: Mapped[int] = mapped_column(
        ForeignKey("associations.id"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, comment="Gross amount")
    net_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, comment="Amount after fees"
    )
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="EUR")
    status: Mapped[LedgerEntryStatus] = mapped_column(
        SAEnum(LedgerEntryStatus, native_enum=False, values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=LedgerEntryStatus.COMPLETED,
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Traceability tags (plain ids, the ledger store is owned by another collaborator)
    expense_request_id: Mapped[int | None] = mapped_column(nullable=True, index=True)
    loan_repayment_id: Mapped[int | None] = mapped_column(nullable=True)

    __table_args__ = (
        Index("idx_ledger_association_type_status", "association_id", "type", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry(id={self.id}, association_id={self.association_id}, "
            f"type={self.type}, amount={self.amount}, status={self.status.value})>"
        )


__all__ = ["LedgerEntry", "LedgerEntryStatus"]
