"""Association and membership ORM models.

Minimal persistent stand-ins for the association configuration and
membership collaborators: the treasury core only reads workflow rules,
expense subtype caps, the low-balance threshold and each member's role.
"""

from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import JSON, Boolean, ForeignKey, Index, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from treasury.models import Base, BaseModel


class BureauRole(str, Enum):
    """Office-holder roles able to validate expense requests."""

    PRESIDENT = "president"
    TRESORIER = "tresorier"
    SECRETAIRE = "secretaire"


# Roles required when the association has no rule for an expense type
DEFAULT_VALIDATORS = [role.value for role in BureauRole]


class Association(Base, BaseModel):
    """Association whose treasury is managed.

    workflow_rules example:
        {"aide_membre": {"validators": ["president", "tresorier"]}}

    expense_types example:
        {"aide_membre": {"aide_mariage": {"max_amount": 300}}}
    """

    __tablename__ = "associations"

    name: Mapped[str] = mapped_column(String(255), nullable=False, comment="Association name")
    currency: Mapped[str] = mapped_column(
        String(3), nullable=False, default="EUR", comment="Treasury currency"
    )
    workflow_rules: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True, comment="Required validators per expense type"
    )
    expense_types: Mapped[dict[str, Any] | None] = mapped_column(
        JSON, nullable=True, comment="Configured subtypes per expense type (with max_amount)"
    )
    low_balance_threshold: Mapped[Decimal | None] = mapped_column(
        Numeric(12, 2),
        nullable=True,
        comment="Low balance alert threshold (falls back to settings)",
    )

    members: Mapped[list["AssociationMember"]] = relationship(
        "AssociationMember",
        back_populates="association",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Association(id={self.id}, name={self.name!r})>"


class AssociationMember(Base, BaseModel):
    """Membership of a user in an association with a single role."""

    __tablename__ = "association_members"

    association_id: Mapped[int] = mapped_column(
        ForeignKey("associations.id"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(nullable=False, index=True, comment="Member user id")
    role: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="membre",
        comment="president / tresorier / secretaire / membre",
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    association: Mapped["Association"] = relationship("Association", back_populates="members")

    __table_args__ = (
        Index("idx_member_association_user", "association_id", "user_id", unique=True),
    )

    def __repr__(self) -> str:
        return (
            f"<AssociationMember(association_id={self.association_id}, "
            f"user_id={self.user_id}, role={self.role})>"
        )


__all__ = ["Association", "AssociationMember", "BureauRole", "DEFAULT_VALIDATORS"]
