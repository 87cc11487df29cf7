"""API error handling and response helpers."""

import logging
from typing import Any, NoReturn

from fastapi import HTTPException

from treasury.services.errors import TreasuryError

logger = logging.getLogger(__name__)


def error_response(error: TreasuryError) -> dict[str, Any]:
    """Create a standardized error response."""
    return {"error": error.to_dict()}


def raise_app_error(error: TreasuryError) -> NoReturn:
    """Raise an HTTPException from a TreasuryError."""
    if error.http_status >= 500:
        logger.error("%s: %s", error.code, error.message)
    raise HTTPException(status_code=error.http_status, detail=error_response(error)) from error
