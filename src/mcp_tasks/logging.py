"""
Structured logging for the task manager MCP server.

Log records are emitted as JSON objects with a consistent field set so that
connection and tool-call events can be filtered by connection id, tool name
or origin:

- timestamp: ISO 8601 timestamp in UTC
- level: Log level name
- logger: Logger name
- message: Log message
- any fields passed through the `extra` dict
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from mcp_tasks.config import LoggingConfig

ROOT_LOGGER_NAME = "mcp_tasks"

# Used when JSON output is switched off (local development)
DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Attributes every LogRecord carries; anything else came in via `extra`
_RESERVED_RECORD_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JSONFormatter(logging.Formatter):
    """A logging formatter that outputs log records as JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        """
        Format the log record as a JSON string.

        Args:
            record: The log record to format.

        Returns:
            JSON-formatted string representation of the log record.
        """
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        for key in set(record.__dict__) - _RESERVED_RECORD_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


def setup_logging(
    config: LoggingConfig | None = None,
    *,
    level: str = "INFO",
    json_format: bool = True,
    log_to_stdout: bool = True,
) -> logging.Logger:
    """
    Configure the `mcp_tasks` logger hierarchy.

    Args:
        config: Optional LoggingConfig. When given it overrides the keyword
            arguments.
        level: Log level used when no config is provided.
        json_format: Whether to emit JSON (default: True).
        log_to_stdout: Whether to attach a stdout handler (default: True).

    Returns:
        The package root logger.

    Example:
        >>> logger = setup_logging(level="DEBUG")
        >>> logger.info("Server started", extra={"port": 3000})
    """
    if config is not None:
        log_level = ("debug" if config.debug_mode else config.level).upper()
        json_format = config.json_format
        log_to_stdout = config.log_to_stdout
    else:
        log_level = level.upper()

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, log_level, logging.INFO))

    # Remove existing handlers to avoid duplicates on reconfiguration
    logger.handlers.clear()

    if log_to_stdout:
        handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(getattr(logging, log_level, logging.INFO))

        if json_format:
            handler.setFormatter(JSONFormatter())
        else:
            handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))

        logger.addHandler(handler)

    logger.propagate = False

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a child logger of the package root logger.

    Args:
        name: Typically `__name__` of the calling module. The "mcp_tasks."
            prefix is added when missing.

    Returns:
        A logger instance.
    """
    if not name.startswith(ROOT_LOGGER_NAME):
        name = f"{ROOT_LOGGER_NAME}.{name}"

    return logging.getLogger(name)
