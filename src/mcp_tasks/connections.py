"""
Connection bookkeeping for the task manager MCP server.

A Connection wraps one established WebSocket. The ConnectionRegistry is the
only owner of Connection objects; the transport adds an entry after
admission and removes it synchronously when the socket closes, so iteration
never yields a closed connection.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol

from websockets.exceptions import ConnectionClosed

from mcp_tasks.logging import get_logger

logger = get_logger(__name__)


class ConnectionState(str, Enum):
    """Lifecycle state of a connection."""

    OPEN = "open"
    CLOSED = "closed"


class DuplexSocket(Protocol):
    """The subset of a websockets server connection used here."""

    async def send(self, message: str) -> None: ...

    async def close(self, code: int = 1000, reason: str = "") -> None: ...


@dataclass
class Connection:
    """
    One established session.

    Attributes:
        socket: The underlying duplex socket.
        origin: Network origin the connection was admitted from.
        id: Unique connection id.
        state: Open/closed state.
        client_id: Last client_id seen in an envelope from this peer.
        opened_at: Admission time (UTC).
    """

    socket: DuplexSocket
    origin: str | None = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    state: ConnectionState = ConnectionState.OPEN
    client_id: str | None = None
    opened_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.OPEN

    def mark_closed(self) -> None:
        self.state = ConnectionState.CLOSED

    async def send_text(self, text: str) -> bool:
        """
        Send one text frame.

        Returns:
            True if the frame was handed to the socket, False if the
            connection is closed (the frame is dropped).
        """
        if not self.is_open:
            return False
        try:
            await self.socket.send(text)
        except ConnectionClosed:
            self.mark_closed()
            logger.debug(
                "Dropped frame for closed connection",
                extra={"connection_id": self.id},
            )
            return False
        return True

    async def close(self, code: int = 1001, reason: str = "Server shutting down") -> None:
        """Server-initiated close."""
        if self.is_open:
            self.mark_closed()
            await self.socket.close(code, reason)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a dictionary for logging."""
        return {
            "connection_id": self.id,
            "origin": self.origin,
            "state": self.state.value,
            "client_id": self.client_id,
            "opened_at": self.opened_at.isoformat(),
        }


class ConnectionRegistry:
    """
    Map of connection id to open Connection.

    Example:
        >>> registry = ConnectionRegistry()
        >>> registry.add(connection)
        >>> registry.get(connection.id) is connection
        True
    """

    def __init__(self) -> None:
        self._connections: dict[str, Connection] = {}

    def add(self, connection: Connection) -> None:
        """
        Register an established connection.

        Raises:
            ValueError: If the id is already registered.
        """
        if connection.id in self._connections:
            raise ValueError(f"Connection '{connection.id}' is already registered")
        self._connections[connection.id] = connection

    def remove(self, connection_id: str) -> Connection | None:
        """Deregister a connection, marking it closed. Unknown ids are ignored."""
        connection = self._connections.pop(connection_id, None)
        if connection is not None:
            connection.mark_closed()
        return connection

    def get(self, connection_id: str) -> Connection | None:
        """Look up an open connection by id."""
        return self._connections.get(connection_id)

    def ids(self) -> list[str]:
        return list(self._connections)

    def __iter__(self) -> Iterator[Connection]:
        # Snapshot so callers may await (and the set may change) mid-iteration
        return iter(list(self._connections.values()))

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._connections

    def __len__(self) -> int:
        return len(self._connections)
