"""
Audit logging for the task manager MCP server.

Audit entries record:
- Admission decisions (accepted, unauthorized, rate limited) per origin
- Every tool call with its outcome and duration
- Connection close events

Entries are single JSON lines written to a dedicated `mcp_tasks.audit`
logger (optionally backed by a file) and mirrored to the application log.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from mcp_tasks.config import LoggingConfig
    from mcp_tasks.context import ToolContext

logger = logging.getLogger("mcp_tasks.security.audit_logger")


class AuditLogger:
    """
    Structured audit logger.

    Audit log format (JSON):
    {
        "timestamp": "2026-01-15T14:30:00+00:00",
        "event_type": "tool_call",
        "action": "add_task",
        "result": "success",
        "connection_id": "5f0c...",
        "client_id": "web-ui",
        "source_ip": "203.0.113.7",
        "params": {...},
        "duration_ms": 4.2
    }

    Example:
        >>> audit_logger = AuditLogger.from_config(config.logging)
        >>> audit_logger.log_admission("accepted", source_ip="203.0.113.7")
    """

    SENSITIVE_FIELD_PATTERNS = [
        "token",
        "password",
        "secret",
        "api_key",
        "apikey",
        "x-api-key",
        "credential",
        "auth",
    ]

    def __init__(
        self,
        audit_log_path: str | None = None,
        log_to_stdout: bool = True,
    ) -> None:
        """
        Initialize the audit logger.

        Args:
            audit_log_path: Optional path to the audit log file.
            log_to_stdout: Mirror entries to the application log.
        """
        self._audit_log_path = audit_log_path
        self._log_to_stdout = log_to_stdout
        self._file_logger: logging.Logger | None = None

        if audit_log_path:
            self._setup_file_logger(audit_log_path)

    @classmethod
    def from_config(cls, config: LoggingConfig) -> AuditLogger:
        """Create an AuditLogger from logging configuration."""
        return cls(
            audit_log_path=config.audit_log_path,
            log_to_stdout=config.log_to_stdout,
        )

    def _setup_file_logger(self, path: str) -> None:
        try:
            Path(path).parent.mkdir(parents=True, exist_ok=True)

            self._file_logger = logging.getLogger("mcp_tasks.audit")
            self._file_logger.setLevel(logging.INFO)
            self._file_logger.propagate = False
            self._file_logger.handlers.clear()

            handler = logging.FileHandler(path, mode="a", encoding="utf-8")
            handler.setFormatter(logging.Formatter("%(message)s"))
            self._file_logger.addHandler(handler)

            logger.info("Audit logging initialized to %s", path)
        except OSError as e:
            logger.error("Failed to setup audit file logging: %s", str(e))
            self._file_logger = None

    def log_admission(
        self,
        decision: str,
        source_ip: str | None = None,
        connection_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Log an admission decision.

        Args:
            decision: "accepted", "unauthorized" or "rate_limited".
            source_ip: Client origin.
            connection_id: Id assigned on acceptance.
            details: Additional event details (masked).
        """
        entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "event_type": "admission",
            "result": decision,
            "source_ip": source_ip,
        }
        if connection_id:
            entry["connection_id"] = connection_id
        if details:
            entry["details"] = self._mask_sensitive_fields(details)

        self._write_entry(entry)

    def log_tool_call(
        self,
        ctx: ToolContext,
        status: str,
        error_code: str | None = None,
        params: dict[str, Any] | None = None,
        duration_ms: float | None = None,
    ) -> None:
        """
        Log a tool invocation.

        Args:
            ctx: Tool context with connection information.
            status: "success" or "error".
            error_code: Error code if status is "error".
            params: Tool parameters (sensitive fields are masked).
            duration_ms: Execution duration in milliseconds.
        """
        entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "event_type": "tool_call",
            "action": ctx.tool_name,
            "result": status,
            "connection_id": ctx.connection_id,
            "client_id": ctx.client_id,
        }

        if ctx.origin:
            entry["source_ip"] = ctx.origin
        if error_code:
            entry["error_code"] = error_code
        if params:
            entry["params"] = self._mask_sensitive_fields(params)
        if duration_ms is not None:
            entry["duration_ms"] = round(duration_ms, 2)

        self._write_entry(entry)

    def log_disconnect(self, connection_id: str, source_ip: str | None = None) -> None:
        """Log the end of a session."""
        self._write_entry(
            {
                "timestamp": datetime.now(UTC).isoformat(),
                "event_type": "disconnect",
                "connection_id": connection_id,
                "source_ip": source_ip,
            }
        )

    def _mask_sensitive_fields(self, data: dict[str, Any]) -> dict[str, Any]:
        """
        Mask sensitive fields in a dictionary.

        Keys containing 'token', 'password', 'api_key' etc. have their values
        replaced with '<masked>' (or a short prefix/suffix for long strings).
        """
        masked: dict[str, Any] = {}
        for key, value in data.items():
            key_lower = key.lower()
            is_sensitive = any(
                pattern in key_lower for pattern in self.SENSITIVE_FIELD_PATTERNS
            )

            if is_sensitive:
                if isinstance(value, str) and len(value) > 8:
                    masked[key] = f"{value[:2]}...{value[-2:]}"
                else:
                    masked[key] = "<masked>"
            elif isinstance(value, dict):
                masked[key] = self._mask_sensitive_fields(value)
            else:
                masked[key] = value

        return masked

    def _write_entry(self, entry: dict[str, Any]) -> None:
        json_line = json.dumps(entry, default=str)

        if self._file_logger:
            self._file_logger.info(json_line)

        if self._log_to_stdout:
            logger.info("AUDIT: %s", json_line)
