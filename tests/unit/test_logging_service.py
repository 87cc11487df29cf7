"""Tests for logging service configuration."""

import logging
from pathlib import Path

import pytest

from treasury.config.settings import settings
from treasury.services.logging import get_log_level, setup_server_logging


class TestServerLogging:
    """Test server logging configuration."""

    def setup_method(self):
        """Save original handlers before each test."""
        self.root_logger = logging.getLogger()
        self.original_handlers = self.root_logger.handlers.copy()
        self.original_level = self.root_logger.level

    def teardown_method(self):
        """Restore original handlers after each test."""
        for handler in self.root_logger.handlers[:]:
            handler.close()
            self.root_logger.removeHandler(handler)
        for handler in self.original_handlers:
            self.root_logger.addHandler(handler)
        self.root_logger.setLevel(self.original_level)

    def test_creates_log_directory(self, tmp_path) -> None:
        log_file = tmp_path / "logs" / "server.log"
        assert not log_file.parent.exists()

        setup_server_logging(str(log_file))

        assert log_file.parent.exists()

    def test_creates_stdout_and_file_handlers(self, tmp_path) -> None:
        setup_server_logging(str(tmp_path / "server.log"))

        assert len(self.root_logger.handlers) == 2
        assert any(isinstance(h, logging.FileHandler) for h in self.root_logger.handlers)

    def test_stdout_only_without_log_file(self) -> None:
        setup_server_logging(None)

        assert len(self.root_logger.handlers) == 1
        assert not isinstance(self.root_logger.handlers[0], logging.FileHandler)

    def test_level_from_settings(self, tmp_path, monkeypatch) -> None:
        monkeypatch.setattr(settings, "log_level", "warning")

        setup_server_logging(str(tmp_path / "server.log"))

        assert self.root_logger.level == logging.WARNING
        for handler in self.root_logger.handlers:
            assert handler.level == logging.WARNING
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING

    def test_writes_transitions_to_file(self, tmp_path, monkeypatch) -> None:
        monkeypatch.setattr(settings, "log_level", "INFO")
        log_file = tmp_path / "server.log"
        setup_server_logging(str(log_file))

        logging.getLogger("treasury.services.expense_request_service").info("Request 7 paid: 600.00 EUR")
        for handler in self.root_logger.handlers:
            handler.flush()

        content = Path(log_file).read_text()
        assert "treasury.services.expense_request_service - INFO - Request 7 paid: 600.00 EUR" in content


@pytest.mark.parametrize(
    "value, expected",
    [("DEBUG", logging.DEBUG), ("error", logging.ERROR), ("verbose", logging.INFO)],
)
def test_get_log_level(monkeypatch, value, expected):
    monkeypatch.setattr(settings, "log_level", value)
    assert get_log_level() == expected
