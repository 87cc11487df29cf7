"""Message catalogue for notifications and alerts.

translations.json is nested by category ({"alerts": {"low_balance": ...}});
lookups use the dotted path. The file is read once, on first use.
"""

import json
import logging
from functools import lru_cache
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

TRANSLATIONS_PATH = Path(__file__).parent.parent / "static" / "translations.json"


def _flatten(tree: dict[str, Any], prefix: str = "") -> dict[str, str]:
    flat: dict[str, str] = {}
    for name, value in tree.items():
        key = f"{prefix}{name}"
        if isinstance(value, dict):
            flat.update(_flatten(value, f"{key}."))
        elif isinstance(value, str):
            flat[key] = value
    return flat


@lru_cache(maxsize=1)
def _catalogue() -> dict[str, str]:
    try:
        with open(TRANSLATIONS_PATH, encoding="utf-8") as f:
            return _flatten(json.load(f))
    except (OSError, json.JSONDecodeError) as e:
        logger.error("Failed to load translations from %s: %s", TRANSLATIONS_PATH, e)
        return {}


def t(key: str, **kwargs: Any) -> str:
    """Message for key with {placeholders} filled in.

    Unknown keys come back unchanged; a missing placeholder leaves the
    template unformatted. Both are logged.
    """
    template = _catalogue().get(key)
    if template is None:
        logger.warning("Translation key not found: %s", key)
        return key
    if not kwargs:
        return template
    try:
        return template.format(**kwargs)
    except (KeyError, IndexError) as e:
        logger.warning("Missing placeholder %s for key: %s", e, key)
        return template


__all__ = ["t"]
