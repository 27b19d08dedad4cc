"""Unit tests for logging setup."""
import logging

import structlog

from src.core.config import LoggingConfig
from src.utils.logging_config import setup_logging


class TestSetupLogging:
    """Test setup_logging."""

    def test_file_handler_added(self, tmp_path):
        log_file = tmp_path / "logs" / "engine.log"
        root = logging.getLogger()
        before = list(root.handlers)

        try:
            setup_logging(LoggingConfig(log_level="DEBUG", log_file=str(log_file), log_to_file=True))

            added = [h for h in root.handlers if h not in before]
            assert log_file.parent.exists()
            assert any(isinstance(h, logging.FileHandler) for h in added)
        finally:
            for handler in [h for h in root.handlers if h not in before]:
                root.removeHandler(handler)
                handler.close()
            structlog.reset_defaults()

    def test_no_file_handler_when_disabled(self, tmp_path):
        log_file = tmp_path / "logs" / "engine.log"
        root = logging.getLogger()
        before = list(root.handlers)

        try:
            setup_logging(LoggingConfig(log_file=str(log_file), log_to_file=False))

            assert not log_file.parent.exists()
            assert not any(
                isinstance(h, logging.FileHandler) for h in root.handlers if h not in before
            )
        finally:
            structlog.reset_defaults()
