"""Shape of the informational loan_terms attached to loan requests."""

from datetime import date
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from treasury.services.errors import ValidationError


class LoanTerms(BaseModel):
    """Declared loan terms. Repayment state comes from recorded repayments only."""

    duration_months: int = Field(ge=1, le=120)
    interest_rate: Decimal = Field(default=Decimal("0"), ge=0, le=50)
    monthly_payment: Decimal | None = Field(default=None, gt=0)
    start_date: date | None = None


def parse_loan_terms(raw: dict[str, Any] | LoanTerms | None) -> LoanTerms:
    """Validate loan terms submitted with a loan request.

    Raises:
        ValidationError: If terms are missing or out of range
    """
    if isinstance(raw, LoanTerms):
        return raw
    if not raw:
        raise ValidationError("Loan terms are required for a loan request", field="loan_terms")
    try:
        return LoanTerms.model_validate(raw)
    except PydanticValidationError as e:
        errors = [
            {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
            for err in e.errors()
        ]
        raise ValidationError("Invalid loan terms", field="loan_terms", errors=errors) from e


def loan_terms_to_json(terms: LoanTerms) -> dict[str, Any]:
    """JSON column representation (decimals as strings, dates ISO)."""
    return terms.model_dump(mode="json", exclude_none=True)


__all__ = ["LoanTerms", "parse_loan_terms", "loan_terms_to_json"]
