"""Association configuration and membership lookups consumed by the workflow."""

import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from treasury.config.settings import settings
from treasury.models.association import DEFAULT_VALIDATORS, Association, AssociationMember
from treasury.services.errors import NotFoundError, ValidationError
from treasury.services.money import to_money

logger = logging.getLogger(__name__)


class AssociationService:
    """Read association workflow rules, subtype caps and member roles."""

    def __init__(self, session: AsyncSession):
        """Initialize with database session.

        Args:
            session: AsyncSession for database operations
        """
        self.session = session

    async def get_association(self, association_id: int) -> Association:
        """Load an association.

        Raises:
            NotFoundError: If the association does not exist
        """
        association = await self.session.get(Association, association_id)
        if association is None:
            raise NotFoundError(
                f"Association {association_id} not found", association_id=association_id
            )
        return association

    async def role_of(self, user_id: int, association_id: int) -> str | None:
        """Role held by an active member, or None for non-members."""
        result = await self.session.execute(
            select(AssociationMember.role).where(
                AssociationMember.association_id == association_id,
                AssociationMember.user_id == user_id,
                AssociationMember.is_active.is_(True),
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    def required_validators_for_type(association: Association, expense_type: str) -> list[str]:
        """Roles that must each approve a request of this type.

        Falls back to president + tresorier + secretaire when the association
        has no rule for the type. Order is kept, duplicates dropped.
        """
        rules = association.workflow_rules or {}
        rule = rules.get(expense_type) or {}
        validators = rule.get("validators") or DEFAULT_VALIDATORS
        return list(dict.fromkeys(validators))

    @staticmethod
    def max_amount_for(
        association: Association, expense_type: str, expense_subtype: str | None
    ) -> Decimal | None:
        """Cap configured for a subtype, None when uncapped.

        Raises:
            ValidationError: If the subtype is not configured for the type
        """
        if not expense_subtype:
            return None
        type_config = (association.expense_types or {}).get(expense_type) or {}
        subtype_config = type_config.get(expense_subtype)
        if subtype_config is None:
            raise ValidationError(
                f'Subtype "{expense_subtype}" is not configured for {expense_type}',
                expense_type=expense_type,
                expense_subtype=expense_subtype,
            )
        max_amount = subtype_config.get("max_amount")
        return to_money(max_amount) if max_amount is not None else None

    @staticmethod
    def low_balance_threshold(association: Association) -> Decimal:
        """Association threshold for the low_balance alert."""
        if association.low_balance_threshold is not None:
            return to_money(association.low_balance_threshold)
        return to_money(settings.low_balance_threshold)


__all__ = ["AssociationService"]
