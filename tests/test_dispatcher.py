"""
Tests for the Dispatcher.

This test module validates:
- Malformed frames and non-tool_call envelopes yield `error` envelopes
- Unknown tools yield a failed tool_response with no handler invoked
- Validation failures never reach the handler
- Handler errors (domain and unexpected) become failed tool_responses
- The per-connection inbox is consumed in order until the sentinel
- Audit entries for tool calls
"""

from __future__ import annotations

import asyncio
import json
from typing import Any
from unittest import mock

import pytest

from mcp_tasks.connections import Connection, ConnectionRegistry
from mcp_tasks.context import ToolContext
from mcp_tasks.dispatcher import Dispatcher
from mcp_tasks.errors import NotFoundError
from mcp_tasks.protocol import Envelope, EnvelopeType
from mcp_tasks.routing import ToolParams, ToolRegistry

# =============================================================================
# Helper Models, Handlers and Fixtures
# =============================================================================


class EchoParams(ToolParams):
    text: str
    delay: float = 0.0


class Recorder:
    """Collects the contexts handlers were invoked with."""

    def __init__(self) -> None:
        self.calls: list[tuple[ToolContext, Any]] = []

    async def echo(self, ctx: ToolContext, params: EchoParams) -> dict[str, Any]:
        self.calls.append((ctx, params))
        if params.delay:
            await asyncio.sleep(params.delay)
        return {"echo": params.text}

    async def missing(self, ctx: ToolContext, params: EchoParams) -> dict[str, Any]:
        self.calls.append((ctx, params))
        raise NotFoundError(f"Task with ID {params.text} not found")

    async def crash(self, ctx: ToolContext, params: EchoParams) -> dict[str, Any]:
        self.calls.append((ctx, params))
        raise RuntimeError("database exploded")


class FakeSocket:
    async def send(self, message: str) -> None:
        pass

    async def close(self, code: int = 1000, reason: str = "") -> None:
        pass


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def registry(recorder: Recorder) -> ToolRegistry:
    registry = ToolRegistry()
    registry.register("echo", EchoParams, recorder.echo)
    registry.register("missing", EchoParams, recorder.missing)
    registry.register("crash", EchoParams, recorder.crash)
    return registry


@pytest.fixture
def connections() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture
def dispatcher(registry: ToolRegistry, connections: ConnectionRegistry) -> Dispatcher:
    return Dispatcher(registry, connections=connections)


def tool_call(tool: str, params: dict[str, Any] | None = None, **extra: Any) -> str:
    return json.dumps({"type": "tool_call", "tool": tool, "params": params or {}, **extra})


# =============================================================================
# Tests for handle_frame
# =============================================================================


class TestHandleFrame:
    """Tests for Dispatcher.handle_frame."""

    async def test_successful_call(self, dispatcher: Dispatcher) -> None:
        response = await dispatcher.handle_frame("c1", tool_call("echo", {"text": "hi"}))

        assert response is not None
        assert response.type is EnvelopeType.TOOL_RESPONSE
        assert response.tool == "echo"
        assert response.result == {"echo": "hi"}
        assert response.error is None

    async def test_non_json_frame(self, dispatcher: Dispatcher, recorder: Recorder) -> None:
        response = await dispatcher.handle_frame("c1", "this is not json")

        assert response is not None
        assert response.type is EnvelopeType.ERROR
        assert response.error is not None
        assert response.error.startswith("Invalid message format")
        assert recorder.calls == []

    async def test_unsupported_known_type(self, dispatcher: Dispatcher) -> None:
        """Test that peers may not send server-side envelope types."""
        response = await dispatcher.handle_frame(
            "c1", '{"type":"tool_response","tool":"echo","result":1}'
        )

        assert response is not None
        assert response.type is EnvelopeType.ERROR
        assert response.error == "Unsupported message type: tool_response"

    async def test_unknown_type(self, dispatcher: Dispatcher) -> None:
        response = await dispatcher.handle_frame("c1", '{"type":"ping"}')

        assert response is not None
        assert response.error == "Unsupported message type: ping"

    async def test_unknown_tool_invokes_no_handler(
        self, dispatcher: Dispatcher, recorder: Recorder
    ) -> None:
        response = await dispatcher.handle_frame("c1", tool_call("teleport"))

        assert response is not None
        assert response.type is EnvelopeType.TOOL_RESPONSE
        assert response.tool == "teleport"
        assert response.error == "Unknown tool: teleport"
        assert recorder.calls == []

    async def test_invalid_params_invoke_no_handler(
        self, dispatcher: Dispatcher, recorder: Recorder
    ) -> None:
        response = await dispatcher.handle_frame("c1", tool_call("echo", {"text": 5}))

        assert response is not None
        assert response.tool == "echo"
        assert response.error is not None
        assert "Invalid parameters for 'echo'" in response.error
        assert recorder.calls == []

    async def test_domain_error_becomes_tool_failure(self, dispatcher: Dispatcher) -> None:
        response = await dispatcher.handle_frame("c1", tool_call("missing", {"text": "7"}))

        assert response is not None
        assert response.tool == "missing"
        assert response.error == "Task with ID 7 not found"

    async def test_unexpected_error_becomes_tool_failure(self, dispatcher: Dispatcher) -> None:
        response = await dispatcher.handle_frame("c1", tool_call("crash", {"text": "x"}))

        assert response is not None
        assert response.tool == "crash"
        assert response.error == "database exploded"

    async def test_context_carries_connection_and_client(
        self,
        dispatcher: Dispatcher,
        connections: ConnectionRegistry,
        recorder: Recorder,
    ) -> None:
        connection = Connection(socket=FakeSocket(), origin="10.1.1.1")
        connections.add(connection)

        await dispatcher.handle_frame(
            connection.id, tool_call("echo", {"text": "hi"}, client_id="web-ui")
        )

        [(ctx, _params)] = recorder.calls
        assert ctx.tool_name == "echo"
        assert ctx.connection_id == connection.id
        assert ctx.client_id == "web-ui"
        assert ctx.origin == "10.1.1.1"
        assert connection.client_id == "web-ui"

    async def test_audit_entry_per_call(self, registry: ToolRegistry) -> None:
        audit_logger = mock.Mock()
        dispatcher = Dispatcher(registry, audit_logger=audit_logger)

        await dispatcher.handle_frame("c1", tool_call("echo", {"text": "hi"}))
        await dispatcher.handle_frame("c1", tool_call("teleport"))

        first, second = audit_logger.log_tool_call.call_args_list
        assert first.kwargs["status"] == "success"
        assert first.kwargs["duration_ms"] >= 0
        assert second.kwargs["status"] == "error"
        assert second.kwargs["error_code"] == "not_found"


# =============================================================================
# Tests for consume
# =============================================================================


class TestConsume:
    """Tests for Dispatcher.consume."""

    async def test_responses_follow_arrival_order(self, registry: ToolRegistry) -> None:
        """Test that a slow call is not overtaken by a fast one."""
        sent: list[tuple[str, Envelope]] = []

        async def sender(connection_id: str, envelope: Envelope) -> bool:
            sent.append((connection_id, envelope))
            return True

        dispatcher = Dispatcher(registry, sender=sender)
        inbox: asyncio.Queue = asyncio.Queue()
        inbox.put_nowait(tool_call("echo", {"text": "slow", "delay": 0.05}))
        inbox.put_nowait("garbage")
        inbox.put_nowait(tool_call("echo", {"text": "fast"}))
        inbox.put_nowait(None)

        await asyncio.wait_for(dispatcher.consume("c1", inbox), timeout=5)

        assert [connection_id for connection_id, _ in sent] == ["c1", "c1", "c1"]
        assert sent[0][1].result == {"echo": "slow"}
        assert sent[1][1].type is EnvelopeType.ERROR
        assert sent[2][1].result == {"echo": "fast"}

    async def test_consume_stops_at_sentinel(self, registry: ToolRegistry) -> None:
        sender = mock.AsyncMock(return_value=True)
        dispatcher = Dispatcher(registry, sender=sender)
        inbox: asyncio.Queue = asyncio.Queue()
        inbox.put_nowait(None)
        inbox.put_nowait(tool_call("echo", {"text": "after"}))

        await asyncio.wait_for(dispatcher.consume("c1", inbox), timeout=5)

        sender.assert_not_called()
        assert inbox.qsize() == 1

    async def test_consume_survives_unexpected_failure(self, registry: ToolRegistry) -> None:
        """Test that a failure outside the handler does not end the loop."""
        sent: list[Envelope] = []

        async def sender(connection_id: str, envelope: Envelope) -> bool:
            sent.append(envelope)
            return True

        audit_logger = mock.Mock()
        audit_logger.log_tool_call.side_effect = [RuntimeError("audit sink down"), None]
        dispatcher = Dispatcher(registry, sender=sender, audit_logger=audit_logger)
        inbox: asyncio.Queue = asyncio.Queue()
        inbox.put_nowait(tool_call("echo", {"text": "first"}))
        inbox.put_nowait(tool_call("echo", {"text": "second"}))
        inbox.put_nowait(None)

        await asyncio.wait_for(dispatcher.consume("c1", inbox), timeout=5)

        assert len(sent) == 2
        assert sent[0].type is EnvelopeType.ERROR
        assert sent[0].error == "Internal error"
        assert sent[1].result == {"echo": "second"}

    async def test_consume_requires_sender(self, registry: ToolRegistry) -> None:
        dispatcher = Dispatcher(registry)

        with pytest.raises(RuntimeError):
            await dispatcher.consume("c1", asyncio.Queue())
