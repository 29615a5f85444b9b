"""
Frame dispatcher for the task manager MCP server.

The Dispatcher turns one inbound frame into at most one outbound envelope:

1. Decode the frame; a malformed frame yields an `error` envelope
2. Reject envelope types other than `tool_call`
3. Record the peer's client_id on its connection
4. Build a ToolContext for the call
5. Look up the tool; an unknown name yields a failed `tool_response`
6. Validate params against the tool's model
7. Invoke the handler
8. Wrap the result (or the handler's error) in a `tool_response`

No failure in these steps closes the connection. Frames of one connection
are consumed from its inbox strictly in arrival order, so responses leave in
the same order the calls came in.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

from mcp_tasks.context import ToolContext
from mcp_tasks.errors import ProtocolError, ToolError, ToolNotFoundError
from mcp_tasks.logging import get_logger
from mcp_tasks.protocol import (
    Envelope,
    EnvelopeType,
    decode_envelope,
    error_envelope,
    tool_failure,
    tool_result,
)

if TYPE_CHECKING:
    from mcp_tasks.connections import ConnectionRegistry
    from mcp_tasks.routing import ToolRegistry
    from mcp_tasks.security.audit_logger import AuditLogger

logger = get_logger(__name__)

Sender = Callable[[str, Envelope], Awaitable[bool]]


class Dispatcher:
    """
    Routes decoded tool calls to registered handlers.

    Example:
        >>> dispatcher = Dispatcher(registry, transport.send, connections)
        >>> response = await dispatcher.handle_frame(conn.id, raw_frame)
    """

    def __init__(
        self,
        registry: ToolRegistry,
        sender: Sender | None = None,
        connections: ConnectionRegistry | None = None,
        audit_logger: AuditLogger | None = None,
    ) -> None:
        """
        Initialize the Dispatcher.

        Args:
            registry: Tools available to peers.
            sender: Delivers a response envelope to a connection id.
            connections: Registry used to record client ids and origins.
            audit_logger: Optional audit sink for tool calls.
        """
        self.registry = registry
        self.sender = sender
        self.connections = connections
        self.audit_logger = audit_logger

    async def handle_frame(self, connection_id: str, frame: str | bytes) -> Envelope | None:
        """
        Process one inbound frame.

        Args:
            connection_id: Connection the frame arrived on.
            frame: Raw text or binary frame.

        Returns:
            The envelope to send back, or None when there is nothing to send.
        """
        try:
            envelope = decode_envelope(frame)
        except ProtocolError as e:
            logger.warning(
                "Rejected malformed frame",
                extra={"connection_id": connection_id, "error": e.message},
            )
            return error_envelope(e.message)

        if envelope.type is not EnvelopeType.TOOL_CALL:
            logger.warning(
                "Rejected envelope type",
                extra={"connection_id": connection_id, "type": envelope.type.value},
            )
            return error_envelope(f"Unsupported message type: {envelope.type.value}")

        origin = None
        connection = self.connections.get(connection_id) if self.connections else None
        if connection is not None:
            origin = connection.origin
            if envelope.client_id is not None:
                connection.client_id = envelope.client_id

        ctx = ToolContext.from_envelope(envelope, connection_id, origin=origin)
        return await self._invoke(ctx, envelope)

    async def _invoke(self, ctx: ToolContext, envelope: Envelope) -> Envelope:
        tool = ctx.tool_name
        start = time.perf_counter()
        status = "success"
        error_code: str | None = None

        logger.debug(
            "Dispatching tool call",
            extra={"tool": tool, "connection_id": ctx.connection_id},
        )

        try:
            descriptor = self.registry.lookup(tool)
            params = self.registry.validate(tool, envelope.params)
            result = await descriptor.handler(ctx, params)
            response = tool_result(tool, result)

        except ToolNotFoundError as e:
            status, error_code = "error", e.error_code
            logger.warning(
                "Unknown tool requested",
                extra={"tool": tool, "connection_id": ctx.connection_id},
            )
            response = tool_failure(tool, e.message)

        except ToolError as e:
            status, error_code = "error", e.error_code
            logger.warning(
                "Tool call failed",
                extra={
                    "tool": tool,
                    "connection_id": ctx.connection_id,
                    "error_code": e.error_code,
                    "error": e.message,
                },
            )
            response = tool_failure(tool, e.message)

        except Exception as e:
            status, error_code = "error", "internal"
            logger.exception(
                "Unexpected error in tool handler",
                extra={"tool": tool, "connection_id": ctx.connection_id},
            )
            response = tool_failure(tool, str(e) or type(e).__name__)

        duration_ms = (time.perf_counter() - start) * 1000
        if self.audit_logger is not None:
            self.audit_logger.log_tool_call(
                ctx,
                status=status,
                error_code=error_code,
                params=envelope.params,
                duration_ms=duration_ms,
            )
        return response

    async def consume(self, connection_id: str, inbox: asyncio.Queue) -> None:
        """
        Drain a connection's inbox until the None sentinel arrives.

        Each frame is handled to completion, and its response handed to the
        sender, before the next frame is taken.

        Raises:
            RuntimeError: If no sender was configured.
        """
        if self.sender is None:
            raise RuntimeError("Dispatcher has no sender configured")

        while True:
            frame = await inbox.get()
            try:
                if frame is None:
                    return
                try:
                    response = await self.handle_frame(connection_id, frame)
                except Exception:
                    logger.exception(
                        "Failed to handle frame",
                        extra={"connection_id": connection_id},
                    )
                    response = error_envelope("Internal error")
                if response is not None:
                    await self.sender(connection_id, response)
            finally:
                inbox.task_done()
