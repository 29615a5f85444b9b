"""
Envelope protocol for the task manager MCP server.

Every WebSocket frame carries exactly one JSON envelope:

    {"type": "tool_call", "client_id": str, "tool": str, "params": object}
    {"type": "tool_response", "tool": str, "result": any}
    {"type": "tool_response", "tool": str, "error": str}
    {"type": "connection_established", "message": str}
    {"type": "error", "error": str}

This module owns the Envelope data class, decoding (with shape validation)
and encoding, plus small constructors for the server-originated envelopes.
The protocol carries no request id: a response is matched to its call only
by the `tool` name and the connection it arrives on.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from mcp_tasks.errors import ProtocolError


class EnvelopeType(str, Enum):
    """Enumerated envelope `type` values."""

    CONNECTION_ESTABLISHED = "connection_established"
    TOOL_CALL = "tool_call"
    TOOL_RESPONSE = "tool_response"
    ERROR = "error"


@dataclass
class Envelope:
    """
    One decoded wire message.

    Attributes:
        type: Envelope type.
        client_id: Peer-chosen identifier, echoed in logs only.
        tool: Tool name (tool_call / tool_response).
        params: Tool parameters (tool_call).
        result: Handler result (successful tool_response).
        error: Error description (error envelopes, failed tool_response).
        message: Human-readable text (connection_established).
    """

    type: EnvelopeType
    client_id: str | None = None
    tool: str | None = None
    params: dict[str, Any] = field(default_factory=dict)
    result: Any = None
    error: str | None = None
    message: str | None = None

    @property
    def is_error(self) -> bool:
        """True for `error` envelopes and failed tool responses."""
        return self.error is not None

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the envelope to its wire dictionary.

        Optional fields are omitted when unset. A tool_response always carries
        exactly one of `result` or `error`.
        """
        data: dict[str, Any] = {"type": self.type.value}

        if self.client_id is not None:
            data["client_id"] = self.client_id
        if self.tool is not None:
            data["tool"] = self.tool
        if self.type is EnvelopeType.TOOL_CALL or self.params:
            data["params"] = self.params
        if self.message is not None:
            data["message"] = self.message

        if self.error is not None:
            data["error"] = self.error
        elif self.type is EnvelopeType.TOOL_RESPONSE or self.result is not None:
            data["result"] = self.result

        return data


# =============================================================================
# Decoding
# =============================================================================


def _require_str(data: dict[str, Any], key: str, *, required: bool = False) -> str | None:
    value = data.get(key)
    if value is None:
        if required:
            raise ProtocolError(f"Invalid message format: missing '{key}' field")
        return None
    if not isinstance(value, str):
        raise ProtocolError(f"Invalid message format: '{key}' must be a string")
    return value


def decode_envelope(frame: str | bytes) -> Envelope:
    """
    Decode one frame into an Envelope.

    Args:
        frame: Text frame, or a binary frame holding UTF-8 JSON.

    Returns:
        The decoded Envelope.

    Raises:
        ProtocolError: If the frame is not JSON or lacks the envelope shape.

    Example:
        >>> env = decode_envelope('{"type":"tool_call","tool":"list_tasks","params":{}}')
        >>> env.tool
        'list_tasks'
    """
    if isinstance(frame, (bytes, bytearray)):
        try:
            frame = bytes(frame).decode("utf-8")
        except UnicodeDecodeError as e:
            raise ProtocolError("Invalid message format: UTF-8 required") from e

    try:
        data = json.loads(frame)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Invalid message format: {e.msg}") from e
    except RecursionError as e:
        raise ProtocolError("Invalid message format: nesting too deep") from e

    if not isinstance(data, dict):
        raise ProtocolError("Invalid message format: message must be a JSON object")

    raw_type = _require_str(data, "type", required=True)
    try:
        envelope_type = EnvelopeType(raw_type)
    except ValueError as e:
        raise ProtocolError(f"Unsupported message type: {raw_type}") from e

    tool = _require_str(
        data,
        "tool",
        required=envelope_type in (EnvelopeType.TOOL_CALL, EnvelopeType.TOOL_RESPONSE),
    )
    if tool is not None and not tool:
        raise ProtocolError("Invalid message format: 'tool' must be a non-empty string")

    params = data.get("params")
    if params is None:
        params = {}
    elif not isinstance(params, dict):
        raise ProtocolError("Invalid message format: 'params' must be an object")

    return Envelope(
        type=envelope_type,
        client_id=_require_str(data, "client_id"),
        tool=tool,
        params=params,
        result=data.get("result"),
        error=_require_str(data, "error"),
        message=_require_str(data, "message"),
    )


# =============================================================================
# Encoding
# =============================================================================


def encode_envelope(envelope: Envelope) -> str:
    """
    Serialize an Envelope to a compact JSON text frame.

    Values json cannot represent natively (datetimes, paths) are rendered
    with str().
    """
    return json.dumps(envelope.to_dict(), separators=(",", ":"), default=str)


# =============================================================================
# Server-originated envelopes
# =============================================================================


def connection_established(message: str) -> Envelope:
    """Welcome envelope sent once after admission."""
    return Envelope(type=EnvelopeType.CONNECTION_ESTABLISHED, message=message)


def error_envelope(error: str) -> Envelope:
    """Transport-level error (malformed frame, unsupported type)."""
    return Envelope(type=EnvelopeType.ERROR, error=error)


def tool_result(tool: str, result: Any) -> Envelope:
    """Successful tool_response."""
    return Envelope(type=EnvelopeType.TOOL_RESPONSE, tool=tool, result=result)


def tool_failure(tool: str, error: str) -> Envelope:
    """Failed tool_response carrying an error string."""
    return Envelope(type=EnvelopeType.TOOL_RESPONSE, tool=tool, error=error)
