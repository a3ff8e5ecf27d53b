"""
Unit Tests for Logging Utility

Tests the colored formatter and structured logger payloads.
"""

import pytest
import logging
import sys
import os

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "vocab_session_engine", "src"))

from vocab_session_engine.logger import ColoredFormatter, get_logger, setup_logging


def make_record(name: str, level: int, message: str) -> logging.LogRecord:
    return logging.LogRecord(name, level, __file__, 1, message, None, None)


class TestColoredFormatter:
    """Test suite for ColoredFormatter."""

    @pytest.fixture
    def formatter(self):
        """Create formatter without colors."""
        return ColoredFormatter(use_colors=False)

    def test_component_icon(self, formatter):
        line = formatter.format(make_record("vocab_session_engine.session_manager", logging.INFO, "Resumed"))

        assert "💾" in line
        assert "INFO" in line
        assert line.endswith("| Resumed")

    def test_level_icon_for_unknown_component(self, formatter):
        line = formatter.format(make_record("somewhere.else", logging.ERROR, "boom"))

        assert "❌" in line

    def test_json_message_pretty_printed(self, formatter):
        line = formatter.format(make_record("x", logging.INFO, '{"points": 3}'))

        assert "'points': 3" in line


class TestStructuredLogger:
    """Test suite for StructuredLogger."""

    def test_info_with_data(self, caplog):
        logger = get_logger("vocab_session_engine.tests")

        with caplog.at_level(logging.INFO, logger="vocab_session_engine.tests"):
            logger.info("Created session", data={"lesson_id": "lesson-1", "items": [1, 2]})

        assert "Created session" in caplog.text
        assert "lesson_id: lesson-1" in caplog.text

    def test_error_includes_exception(self, caplog):
        logger = get_logger("vocab_session_engine.tests")

        with caplog.at_level(logging.ERROR, logger="vocab_session_engine.tests"):
            logger.error("Persist failed", error=OSError("disk full"))

        assert "OSError: disk full" in caplog.text

    def test_success_prefix(self, caplog):
        logger = get_logger("vocab_session_engine.tests")

        with caplog.at_level(logging.INFO, logger="vocab_session_engine.tests"):
            logger.success("Completed")

        assert "✅ Completed" in caplog.text


class TestSetupLogging:
    """Test suite for setup_logging."""

    def test_installs_single_handler(self):
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            setup_logging(level=logging.DEBUG, use_colors=False)
            setup_logging(level=logging.DEBUG, use_colors=False)

            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, ColoredFormatter)
            assert root.level == logging.DEBUG
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
