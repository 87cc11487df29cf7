"""Decimal helpers for currency amounts (2 decimal places, half-up)."""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from treasury.services.errors import ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Any) -> Decimal:
    """Quantize any numeric value (Decimal, int, float, str, None) to cents."""
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        # str() keeps floats coming back from SQLite aggregates exact enough
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def parse_amount(value: Any, field: str = "amount", allow_zero: bool = False) -> Decimal:
    """Validate user input as a positive money amount.

    Raises:
        ValidationError: If value is missing, not a number, or not positive
    """
    if value is None or isinstance(value, bool):
        raise ValidationError(f"{field} is required", field=field)
    try:
        amount = to_money(value)
    except (InvalidOperation, ValueError, TypeError) as e:
        raise ValidationError(f"{field} is not a valid amount: {value!r}", field=field) from e
    if not amount.is_finite():
        raise ValidationError(f"{field} is not a valid amount: {value!r}", field=field)
    if amount < 0 or (amount == 0 and not allow_zero):
        raise ValidationError(f"{field} must be greater than 0", field=field, value=amount)
    return amount


__all__ = ["CENT", "ZERO", "to_money", "parse_amount"]
