"""Tests for logger setup."""

import logging

from mailhook.utils.logger import get_logger, setup_logger


class TestSetupLogger:
    """Test setup_logger()."""

    def test_writes_package_log_file(self, tmp_path):
        """Test every module logs to the file of its top-level package."""
        logger = setup_logger("loggertest.sync.engine", level="debug", log_dir=str(tmp_path))

        logger.debug("hello")
        for handler in logger.handlers:
            handler.flush()

        assert logger.level == logging.DEBUG
        assert "hello" in (tmp_path / "loggertest.log").read_text()

    def test_cached(self, tmp_path):
        """Test a logger is configured once and then reused."""
        first = setup_logger("loggertest.cached", log_dir=str(tmp_path))
        second = get_logger("loggertest.cached")

        assert first is second
        assert len(first.handlers) == 2
