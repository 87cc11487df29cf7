"""Audit trail of treasury records (who changed what, in which transaction)."""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from treasury.models.audit_log import AuditLog


def _jsonable(value: Any) -> Any:
    """Decimals as strings, enums as values, dates ISO, containers recursively."""
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(item) for item in value]
    return value


class AuditService:
    """Writes and reads audit_logs rows.

    Writes never commit: the row joins the caller's transaction and lands
    (or is rolled back) together with the change it describes.
    """

    @staticmethod
    def status_change(previous: Enum | str, target: Enum | str) -> dict[str, str]:
        return {"from": _jsonable(previous), "to": _jsonable(target)}

    @staticmethod
    def log(
        db: AsyncSession,
        entity_type: str,
        entity_id: int,
        action: str,
        actor_id: int | None = None,
        changes: dict[str, Any] | None = None,
    ) -> AuditLog:
        """Add an audit row to the current transaction.

        Args:
            db: Session holding the change being recorded
            entity_type: "expense_request" or "loan_repayment"
            entity_id: Primary key of the entity
            action: "created", "approved", "paid", "validated", ...
            actor_id: Member who acted, None for system actions
            changes: Changed fields; converted to JSON-safe values
        """
        audit = AuditLog(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor_id=actor_id,
            changes=_jsonable(changes) if changes else None,
        )
        db.add(audit)
        return audit

    @staticmethod
    async def history(db: AsyncSession, entity_type: str, entity_id: int) -> list[AuditLog]:
        """Audit rows of one entity, oldest first."""
        result = await db.execute(
            select(AuditLog)
            .where(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
            .order_by(AuditLog.id)
        )
        return list(result.scalars().all())


__all__ = ["AuditService"]
