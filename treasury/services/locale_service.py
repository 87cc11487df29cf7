"""Currency formatting for alerts and notifications.

Amounts are rendered with babel in the locale configured by ``LOCALE``
(default ``fr_FR``); an unparsable locale falls back to the default.
"""

import logging
from decimal import Decimal
from functools import lru_cache

from babel import Locale, UnknownLocaleError
from babel.numbers import format_currency, format_decimal

from treasury.config.settings import settings
from treasury.services.money import to_money

logger = logging.getLogger(__name__)

DEFAULT_LOCALE = "fr_FR"


@lru_cache
def resolve_locale(name: str) -> str:
    """Return ``name`` when babel knows it, otherwise the default locale."""
    try:
        Locale.parse(name)
    except (UnknownLocaleError, ValueError) as e:
        logger.warning("Unknown locale %r (%s), using %s", name, e, DEFAULT_LOCALE)
        return DEFAULT_LOCALE
    return name


def format_amount(amount: Decimal | int | float | str, currency: str | None = None, with_symbol: bool = True) -> str:
    """Render a money amount, e.g. ``Decimal("1234.5")`` -> ``'1 234,50 €'``."""
    value = to_money(amount)
    locale = resolve_locale(settings.locale)
    if not with_symbol:
        return format_decimal(value, format="#,##0.00", locale=locale)
    return format_currency(value, currency or settings.default_currency, locale=locale)


__all__ = ["DEFAULT_LOCALE", "format_amount", "resolve_locale"]
