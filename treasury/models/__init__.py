"""SQLAlchemy base model with common fields and model exports."""

from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlalchemy.orm import Mapped, declarative_base, mapped_column

# Base class for all models
Base = declarative_base()


def utcnow() -> datetime:
    """Timezone-aware current time used for every timestamp column."""
    return datetime.now(timezone.utc)


class BaseModel:
    """Base model with common timestamp fields."""

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )


# Import models to register them with Base (after Base is defined)
# This must be after Base declaration to avoid circular imports
from treasury.models.association import Association, AssociationMember, BureauRole  # noqa: E402
from treasury.models.audit_log import AuditLog  # noqa: E402
from treasury.models.expense_request import (  # noqa: E402
    ExpenseRequest,
    ExpenseStatus,
    PaymentMethod,
    PaymentMode,
    UrgencyLevel,
)
from treasury.models.ledger_entry import LedgerEntry, LedgerEntryStatus  # noqa: E402
from treasury.models.loan_repayment import LoanRepayment, RepaymentStatus  # noqa: E402
from treasury.models.validation_record import Decision, ValidationRecord  # noqa: E402
from treasury.models import immutability  # noqa: E402,F401

__all__ = [
    "Base",
    "BaseModel",
    "utcnow",
    "Association",
    "AssociationMember",
    "BureauRole",
    "AuditLog",
    "ExpenseRequest",
    "ExpenseStatus",
    "PaymentMethod",
    "PaymentMode",
    "UrgencyLevel",
    "LedgerEntry",
    "LedgerEntryStatus",
    "LoanRepayment",
    "RepaymentStatus",
    "Decision",
    "ValidationRecord",
]
