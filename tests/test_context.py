"""
Tests for ToolContext.
"""

from __future__ import annotations

from datetime import UTC, datetime

from mcp_tasks.context import ToolContext
from mcp_tasks.protocol import Envelope, EnvelopeType


class TestToolContext:
    """Tests for ToolContext."""

    def test_defaults(self) -> None:
        ctx = ToolContext(tool_name="list_tasks", connection_id="c1")

        assert ctx.client_id is None
        assert ctx.origin is None
        assert ctx.metadata == {}
        assert ctx.timestamp.tzinfo is UTC

    def test_from_envelope(self) -> None:
        envelope = Envelope(
            type=EnvelopeType.TOOL_CALL,
            client_id="web-ui",
            tool="add_task",
            params={"title": "x"},
        )

        ctx = ToolContext.from_envelope(envelope, "c1", origin="10.0.0.1")

        assert ctx.tool_name == "add_task"
        assert ctx.connection_id == "c1"
        assert ctx.client_id == "web-ui"
        assert ctx.origin == "10.0.0.1"

    def test_to_dict(self) -> None:
        stamp = datetime(2026, 10, 17, 14, 30, tzinfo=UTC)
        ctx = ToolContext(tool_name="delete_task", connection_id="c1", timestamp=stamp)

        assert ctx.to_dict() == {
            "tool_name": "delete_task",
            "connection_id": "c1",
            "client_id": None,
            "origin": None,
            "timestamp": "2026-10-17T14:30:00+00:00",
            "metadata": {},
        }
