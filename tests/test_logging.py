"""
Tests for the logging module.

This test module validates:
- JSON-formatted structured logging output
- Logger configuration and setup (keyword and LoggingConfig forms)
- Extra fields in log entries
"""

from __future__ import annotations

import json
import logging
import sys
from io import StringIO

import pytest

from mcp_tasks.config import LoggingConfig
from mcp_tasks.logging import JSONFormatter, get_logger, setup_logging

# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def string_handler() -> logging.StreamHandler[StringIO]:
    """Create a string handler for capturing log output."""
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(JSONFormatter())
    return handler


@pytest.fixture(autouse=True)
def _cleanup_loggers() -> None:
    """Clean up loggers after each test (autouse fixture)."""
    yield
    logger = logging.getLogger("mcp_tasks")
    logger.handlers.clear()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


def make_record(msg: str = "Test", level: int = logging.INFO, **extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        name="test_logger",
        level=level,
        pathname="test.py",
        lineno=10,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


# =============================================================================
# Tests for JSONFormatter
# =============================================================================


class TestJSONFormatter:
    """Tests for JSONFormatter class."""

    def test_format_basic_log_record(self) -> None:
        parsed = json.loads(JSONFormatter().format(make_record("Test message")))

        assert parsed["level"] == "INFO"
        assert parsed["logger"] == "test_logger"
        assert parsed["message"] == "Test message"
        assert parsed["timestamp"].endswith("+00:00")

    def test_format_with_extra_fields(self) -> None:
        record = make_record("Connection established", connection_id="abc", origin="10.0.0.1")

        parsed = json.loads(JSONFormatter().format(record))

        assert parsed["connection_id"] == "abc"
        assert parsed["origin"] == "10.0.0.1"

    def test_none_extras_are_omitted(self) -> None:
        parsed = json.loads(JSONFormatter().format(make_record(client_id=None)))
        assert "client_id" not in parsed

    def test_non_serializable_extra_uses_str(self) -> None:
        parsed = json.loads(JSONFormatter().format(make_record(fields={"a"})))
        assert parsed["fields"] == "{'a'}"

    def test_format_with_exception(self) -> None:
        try:
            raise ValueError("Test error")
        except ValueError:
            exc_info = sys.exc_info()

        record = make_record("An error occurred", level=logging.ERROR)
        record.exc_info = exc_info

        parsed = json.loads(JSONFormatter().format(record))

        assert parsed["level"] == "ERROR"
        assert "ValueError: Test error" in parsed["exception"]


# =============================================================================
# Tests for setup_logging
# =============================================================================


class TestSetupLogging:
    """Tests for setup_logging function."""

    def test_returns_package_logger(self) -> None:
        logger = setup_logging()
        assert logger.name == "mcp_tasks"
        assert logger.propagate is False

    def test_sets_level(self) -> None:
        assert setup_logging(level="DEBUG").level == logging.DEBUG
        assert setup_logging(level="error").level == logging.ERROR

    def test_json_and_plain_formats(self) -> None:
        logger = setup_logging(json_format=True)
        assert isinstance(logger.handlers[0].formatter, JSONFormatter)

        logger = setup_logging(json_format=False)
        assert not isinstance(logger.handlers[0].formatter, JSONFormatter)

    def test_reconfiguring_does_not_duplicate_handlers(self) -> None:
        setup_logging()
        assert len(setup_logging().handlers) == 1

    def test_no_stdout_handler(self) -> None:
        assert setup_logging(log_to_stdout=False).handlers == []

    def test_with_logging_config(self) -> None:
        config = LoggingConfig(level="warning", json_format=False)

        logger = setup_logging(config)

        assert logger.level == logging.WARNING
        assert not isinstance(logger.handlers[0].formatter, JSONFormatter)

    def test_debug_mode_forces_debug_level(self) -> None:
        logger = setup_logging(LoggingConfig(level="error", debug_mode=True))
        assert logger.level == logging.DEBUG


# =============================================================================
# Tests for get_logger
# =============================================================================


class TestGetLogger:
    """Tests for get_logger function."""

    def test_module_name_is_kept(self) -> None:
        assert get_logger("mcp_tasks.transport").name == "mcp_tasks.transport"

    def test_prefix_is_added(self) -> None:
        assert get_logger("my_module").name == "mcp_tasks.my_module"

    def test_child_inherits_level(self) -> None:
        setup_logging(level="DEBUG")
        assert get_logger("config").getEffectiveLevel() == logging.DEBUG

    def test_output_is_json_lines(self, string_handler: logging.StreamHandler[StringIO]) -> None:
        logger = logging.getLogger("test.multiple")
        logger.addHandler(string_handler)
        logger.setLevel(logging.INFO)

        logger.info("First", extra={"tool": "add_task"})
        logger.warning("Second")

        lines = string_handler.stream.getvalue().strip().split("\n")
        assert [json.loads(line)["message"] for line in lines] == ["First", "Second"]
        assert json.loads(lines[0])["tool"] == "add_task"
