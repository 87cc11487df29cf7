"""Logging setup for the treasury API server.

Workflow transitions, payments and repayments are logged at INFO by the
services, so the server log doubles as a readable trail next to the
audit_logs table. Level comes from settings.log_level (LOG_LEVEL).
"""

import logging
import sys
from pathlib import Path

from treasury.config.settings import settings

LOG_FORMAT = "[%(asctime)s] %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Chatty third-party loggers, kept at WARNING unless running at DEBUG
QUIET_LOGGERS = ("sqlalchemy.engine", "httpx", "telegram")


def get_log_level(name: str | None = None) -> int:
    """Resolve a level name (default: settings.log_level); unknown names mean INFO."""
    level = logging.getLevelName((name or settings.log_level).upper())
    return level if isinstance(level, int) else logging.INFO


def _add_handler(root: logging.Logger, handler: logging.Handler, level: int) -> None:
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    root.addHandler(handler)


def setup_server_logging(log_file: str | None = "logs/server.log") -> None:
    """
    Configure the root logger: stdout always, plus log_file when given.

    Replaces handlers installed earlier, so calling it twice does not
    duplicate lines.
    """
    level = get_log_level()
    root = logging.getLogger()
    root.setLevel(level)
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()

    _add_handler(root, logging.StreamHandler(sys.stdout), level)
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        _add_handler(root, logging.FileHandler(path, encoding="utf-8"), level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if level <= logging.DEBUG else logging.WARNING)


__all__ = ["get_log_level", "setup_server_logging"]
