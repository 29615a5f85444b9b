"""
WebSocket transport for the task manager MCP server.

This module implements the WebSocketTransport class that:
- Listens for WebSocket connections (websockets asyncio server)
- Answers `GET /health` without authentication
- Admits connections through the rate limiter and the API key check
- Feeds each connection's frames, in arrival order, to a Dispatcher consumer
- Routes response envelopes back to the connection they belong to

Admission happens in the `process_request` hook, before the HTTP upgrade:
a rejected client gets a plain HTTP response (401 or 429) and never
receives `connection_established`.
"""

from __future__ import annotations

import asyncio
import json
import math
from collections.abc import Iterable
from http import HTTPStatus
from typing import TYPE_CHECKING

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosedError
from websockets.http11 import Request, Response

from mcp_tasks.connections import Connection, ConnectionRegistry
from mcp_tasks.errors import FailedPreconditionError
from mcp_tasks.logging import get_logger
from mcp_tasks.protocol import (
    Envelope,
    connection_established,
    encode_envelope,
    error_envelope,
)

if TYPE_CHECKING:
    from mcp_tasks.dispatcher import Dispatcher
    from mcp_tasks.security.audit_logger import AuditLogger
    from mcp_tasks.security.auth import ApiKeyAuthenticator
    from mcp_tasks.security.rate_limit import FixedWindowRateLimiter

logger = get_logger(__name__)

HEALTH_PATH = "/health"


class WebSocketTransport:
    """
    Accepts WebSocket sessions and moves envelopes between peers and the
    Dispatcher.

    Example:
        >>> transport = WebSocketTransport(connections, dispatcher, authenticator)
        >>> dispatcher.sender = transport.send
        >>> await transport.start("0.0.0.0", 3000)
    """

    def __init__(
        self,
        connections: ConnectionRegistry,
        dispatcher: Dispatcher,
        authenticator: ApiKeyAuthenticator,
        rate_limiter: FixedWindowRateLimiter | None = None,
        audit_logger: AuditLogger | None = None,
        *,
        name: str = "PunchAI MCP Server",
        max_message_bytes: int = 1024 * 1024,
        per_message_limit: bool = False,
        trust_forwarded_for: bool = False,
    ) -> None:
        """
        Initialize the transport.

        Args:
            connections: Registry of open connections (owned by the transport).
            dispatcher: Consumer of inbound frames.
            authenticator: API key check run at admission.
            rate_limiter: Per-origin limiter; None disables rate limiting.
            audit_logger: Optional audit sink for admission events.
            name: Server name for the welcome and health messages.
            max_message_bytes: Largest accepted inbound frame.
            per_message_limit: Count every inbound frame against the limiter.
            trust_forwarded_for: Take the origin from X-Forwarded-For.
        """
        self.connections = connections
        self.dispatcher = dispatcher
        self.authenticator = authenticator
        self.rate_limiter = rate_limiter
        self.audit_logger = audit_logger
        self.name = name
        self.max_message_bytes = max_message_bytes
        self.per_message_limit = per_message_limit
        self.trust_forwarded_for = trust_forwarded_for
        self._server: Server | None = None
        self._consumers: set[asyncio.Task[None]] = set()

    @property
    def is_serving(self) -> bool:
        return self._server is not None

    @property
    def port(self) -> int | None:
        """Bound TCP port, useful when started on port 0."""
        if self._server is None:
            return None
        for sock in self._server.sockets:
            return sock.getsockname()[1]
        return None

    async def start(self, host: str, port: int) -> None:
        """
        Bind and begin accepting connections.

        Raises:
            FailedPreconditionError: If the transport is already started.
            OSError: If the address cannot be bound.
        """
        if self._server is not None:
            raise FailedPreconditionError(
                "Transport is already started",
                details={"host": host, "port": port},
            )

        self._server = await serve(
            self._handle_connection,
            host,
            port,
            process_request=self._process_request,
            max_size=self.max_message_bytes,
        )
        logger.info(
            f"{self.name} listening",
            extra={"host": host, "port": self.port},
        )

    async def close(self) -> None:
        """Close every open connection, then the listener."""
        for connection in self.connections:
            await connection.close()

        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
            logger.info("Transport closed")

    # =========================================================================
    # Admission
    # =========================================================================

    def _origin(self, connection: ServerConnection, request: Request) -> str:
        if self.trust_forwarded_for:
            forwarded = request.headers.get("X-Forwarded-For")
            if forwarded:
                first_hop = forwarded.split(",")[0].strip()
                if first_hop:
                    return first_hop

        address = connection.remote_address
        if isinstance(address, tuple) and address:
            return str(address[0])
        return str(address) if address else "unknown"

    def _health_response(self, connection: ServerConnection) -> Response:
        body = json.dumps({"status": "ok", "message": f"{self.name} is running"})
        response = connection.respond(HTTPStatus.OK, body)
        del response.headers["Content-Type"]
        response.headers["Content-Type"] = "application/json"
        return response

    async def _process_request(
        self, connection: ServerConnection, request: Request
    ) -> Response | None:
        """
        Admission hook run before the upgrade.

        Returns:
            An HTTP response to reject (or answer) the request, or None to
            continue the WebSocket handshake.
        """
        if request.path.split("?", 1)[0] == HEALTH_PATH:
            return self._health_response(connection)

        origin = self._origin(connection, request)

        if self.rate_limiter is not None and not self.rate_limiter.allow(origin):
            retry_after = self.rate_limiter.retry_after(origin)
            logger.warning("Rate limit exceeded", extra={"origin": origin})
            if self.audit_logger is not None:
                self.audit_logger.log_admission(
                    "rate_limited",
                    source_ip=origin,
                    details={"retry_after": round(retry_after, 3)},
                )
            response = connection.respond(
                HTTPStatus.TOO_MANY_REQUESTS,
                "Too many connection attempts, please try again later.\n",
            )
            response.headers["Retry-After"] = str(max(1, math.ceil(retry_after)))
            return response

        credential = request.headers.get(self.authenticator.header_name)
        if not self.authenticator.verify(credential):
            logger.warning(
                "Rejected connection with invalid API key",
                extra={"origin": origin, "key_present": bool(credential)},
            )
            if self.audit_logger is not None:
                self.audit_logger.log_admission(
                    "unauthorized",
                    source_ip=origin,
                    details={"reason": "missing" if not credential else "invalid"},
                )
            return connection.respond(HTTPStatus.UNAUTHORIZED, "Unauthorized\n")

        return None

    # =========================================================================
    # Sessions
    # =========================================================================

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        origin = self._origin(websocket, websocket.request)
        connection = Connection(socket=websocket, origin=origin)
        self.connections.add(connection)

        logger.info(
            "Connection established",
            extra={"connection_id": connection.id, "origin": origin},
        )
        if self.audit_logger is not None:
            self.audit_logger.log_admission(
                "accepted", source_ip=origin, connection_id=connection.id
            )

        inbox: asyncio.Queue[str | bytes | None] = asyncio.Queue()
        await connection.send_text(
            encode_envelope(connection_established(f"Connected to {self.name}"))
        )
        consumer = asyncio.create_task(self.dispatcher.consume(connection.id, inbox))
        self._consumers.add(consumer)

        try:
            async for frame in websocket:
                if (
                    self.per_message_limit
                    and self.rate_limiter is not None
                    and not self.rate_limiter.allow(origin)
                ):
                    logger.warning(
                        "Frame rate limit exceeded",
                        extra={"connection_id": connection.id, "origin": origin},
                    )
                    await connection.send_text(
                        encode_envelope(error_envelope("Rate limit exceeded"))
                    )
                    continue
                inbox.put_nowait(frame)
        except ConnectionClosedError as e:
            logger.info(
                "Connection closed with error",
                extra={"connection_id": connection.id, "code": e.rcvd.code if e.rcvd else None},
            )
        finally:
            self.connections.remove(connection.id)
            inbox.put_nowait(None)
            try:
                await consumer
            finally:
                self._consumers.discard(consumer)

            logger.info(
                "Connection closed",
                extra={"connection_id": connection.id, "origin": origin},
            )
            if self.audit_logger is not None:
                self.audit_logger.log_disconnect(connection.id, source_ip=origin)

    # =========================================================================
    # Outbound
    # =========================================================================

    async def send(self, connection_id: str, envelope: Envelope) -> bool:
        """
        Send an envelope to one connection.

        Returns:
            False if the connection is unknown or no longer open.
        """
        connection = self.connections.get(connection_id)
        if connection is None or not connection.is_open:
            logger.debug(
                "Dropped envelope for unknown connection",
                extra={"connection_id": connection_id},
            )
            return False
        return await connection.send_text(encode_envelope(envelope))

    async def broadcast(self, envelope: Envelope, exclude: Iterable[str] = ()) -> int:
        """
        Send an envelope to every open connection except `exclude`.

        Returns:
            Number of connections the envelope was delivered to.
        """
        excluded = set(exclude)
        text = encode_envelope(envelope)
        delivered = 0
        for connection in self.connections:
            if connection.id in excluded:
                continue
            if await connection.send_text(text):
                delivered += 1
        return delivered
