"""Treasury error taxonomy.

Every error carries a machine-readable code, the HTTP status the API layer
maps it to, and a context dict with what the caller needs to resynchronize
(current status, required roles, shortage, ...).
"""

from decimal import Decimal
from enum import Enum
from typing import Any


class TreasuryError(Exception):
    """Base application error."""

    code = "treasury_error"
    http_status = 400

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.context = context
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """JSON-friendly representation used by the API layer."""
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        for key, value in self.context.items():
            if isinstance(value, Decimal):
                value = str(value)
            elif isinstance(value, Enum):
                value = value.value
            elif isinstance(value, (set, frozenset, tuple)):
                value = sorted(value)
            payload[key] = value
        return payload


class ValidationError(TreasuryError):
    """Malformed input (bad amount, bad loan terms, unknown subtype)."""

    code = "validation_error"
    http_status = 400


class AuthorizationError(TreasuryError):
    """Caller's role is not allowed to perform this action."""

    code = "authorization_error"
    http_status = 403


class ConflictError(TreasuryError):
    """Duplicate validation, or request not in a state accepting the event."""

    code = "conflict"
    http_status = 409


class InsufficientFundsError(TreasuryError):
    """Available balance does not cover the amount."""

    code = "insufficient_funds"
    http_status = 400

    def __init__(
        self,
        available_balance: Decimal,
        requested_amount: Decimal,
        shortage: Decimal,
        message: str | None = None,
        **context: Any,
    ):
        self.available_balance = available_balance
        self.requested_amount = requested_amount
        self.shortage = shortage
        super().__init__(
            message or f"Insufficient funds: short by {shortage}",
            available_balance=available_balance,
            requested_amount=requested_amount,
            shortage=shortage,
            **context,
        )


class NotFoundError(TreasuryError):
    """Unknown association, request or repayment id."""

    code = "not_found"
    http_status = 404


class LedgerError(TreasuryError):
    """Ledger append failed; the transition it belonged to was rolled back."""

    code = "ledger_error"
    http_status = 500


class ImmutableRecordError(TreasuryError):
    """Attempt to modify an append-only or frozen record."""

    code = "immutable_record"
    http_status = 500


__all__ = [
    "TreasuryError",
    "ValidationError",
    "AuthorizationError",
    "ConflictError",
    "InsufficientFundsError",
    "NotFoundError",
    "LedgerError",
    "ImmutableRecordError",
]
