"""
Error types for the task manager MCP server.

Domain errors raised by tool handlers and collaborators are expressed as
ToolError (or a subclass). The dispatcher catches them at its boundary and
turns them into the `error` field of a `tool_response` envelope, so nothing
raised here ever closes a connection.

Malformed frames are reported with ProtocolError, which the dispatcher turns
into a plain `error` envelope instead.
"""

from __future__ import annotations

from typing import Any


class ToolError(Exception):
    """
    Base exception class for MCP tool errors.

    Attributes:
        error_code: Internal error code string (e.g., "invalid_argument",
            "not_found", "unavailable", "failed_precondition", "internal").
        message: Human-readable error message, sent to the peer as-is.
        details: Optional structured details used for logging.

    Example:
        >>> raise ToolError(
        ...     error_code="invalid_argument",
        ...     message="priority must be one of: low, medium, high",
        ...     details={"priority": "urgent"},
        ... )
    """

    def __init__(
        self,
        error_code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.message = message
        self.details = details or {}

    def __repr__(self) -> str:
        """Return a detailed string representation."""
        return (
            f"{self.__class__.__name__}("
            f"error_code={self.error_code!r}, "
            f"message={self.message!r}, "
            f"details={self.details!r})"
        )

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the error to a dictionary for serialization.

        Returns:
            Dictionary with error_code, message, and details.
        """
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class InvalidArgumentError(ToolError):
    """Raised when tool parameters fail validation."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(
            error_code="invalid_argument", message=message, details=details
        )


class NotFoundError(ToolError):
    """Raised when a referenced entity (e.g. a task id) does not exist."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(error_code="not_found", message=message, details=details)


class ToolNotFoundError(NotFoundError):
    """Raised when a tool_call names a tool that is not registered."""

    def __init__(self, tool: str) -> None:
        super().__init__(message=f"Unknown tool: {tool}", details={"tool": tool})
        self.tool = tool


class UnavailableError(ToolError):
    """
    Raised when a collaborator (task store, resolver) cannot serve a request.

    Maps to the "unavailable" error code.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(error_code="unavailable", message=message, details=details)


class FailedPreconditionError(ToolError):
    """
    Raised when an operation is attempted in the wrong state.

    For example, starting a transport that is already listening.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(
            error_code="failed_precondition", message=message, details=details
        )


class InternalError(ToolError):
    """Raised for unexpected internal errors (logged with stack traces)."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(error_code="internal", message=message, details=details)


class ProtocolError(Exception):
    """
    Raised when an inbound frame is not a valid envelope.

    Covers non-JSON payloads, non-UTF-8 binary frames and JSON values that do
    not have the envelope shape.
    """

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message
