"""
Tool call context for the task manager MCP server.

A ToolContext is built by the dispatcher for every tool_call and handed to
the handler alongside its validated parameters.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from mcp_tasks.protocol import Envelope


@dataclass
class ToolContext:
    """
    Encapsulates the context of a single tool call.

    Attributes:
        tool_name: Tool being invoked (e.g., "add_task").
        connection_id: Id of the connection the call arrived on.
        client_id: Peer-supplied identifier from the envelope, if any.
        origin: Network origin of the connection, if known.
        timestamp: When the call was received (UTC).
        metadata: Additional context for handlers.
    """

    tool_name: str
    connection_id: str
    client_id: str | None = None
    origin: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a dictionary for logging."""
        return {
            "tool_name": self.tool_name,
            "connection_id": self.connection_id,
            "client_id": self.client_id,
            "origin": self.origin,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }

    @classmethod
    def from_envelope(
        cls,
        envelope: Envelope,
        connection_id: str,
        origin: str | None = None,
    ) -> ToolContext:
        """
        Create a ToolContext from a decoded tool_call envelope.

        Args:
            envelope: The tool_call envelope.
            connection_id: Originating connection.
            origin: Optional network origin.
        """
        return cls(
            tool_name=envelope.tool or "",
            connection_id=connection_id,
            client_id=envelope.client_id,
            origin=origin,
            timestamp=datetime.now(UTC),
        )
