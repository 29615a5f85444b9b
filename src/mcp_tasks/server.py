"""
Task manager MCP server assembly.

This module wires the components together:
- TaskStore and DueDateResolver behind the task tools
- ToolRegistry with list_tasks, add_task, update_task, delete_task
- Dispatcher feeding responses back through the WebSocketTransport
- ApiKeyAuthenticator, FixedWindowRateLimiter and AuditLogger at admission

`main()` is the console entry point: it loads the layered configuration,
sets up logging and runs until SIGINT/SIGTERM. Fatal startup errors
(invalid configuration, duplicate tool registration, bind failure) are
logged and end the process with exit status 1.
"""

from __future__ import annotations

import asyncio
import signal
import sys
from typing import TYPE_CHECKING

import yaml

from mcp_tasks import __version__
from mcp_tasks.config import load_config
from mcp_tasks.connections import ConnectionRegistry
from mcp_tasks.dates import DueDateResolver
from mcp_tasks.dispatcher import Dispatcher
from mcp_tasks.errors import ToolError
from mcp_tasks.logging import get_logger, setup_logging
from mcp_tasks.routing import ToolRegistry
from mcp_tasks.security import ApiKeyAuthenticator, AuditLogger, FixedWindowRateLimiter
from mcp_tasks.storage import TaskStore
from mcp_tasks.tools import TaskTools
from mcp_tasks.transport import WebSocketTransport

if TYPE_CHECKING:
    from mcp_tasks.config import AppConfig

logger = get_logger(__name__)


class TaskServer:
    """
    A fully assembled server.

    Attributes:
        config: Effective configuration.
        store: Task persistence.
        registry: Registered tools.
        connections: Open connections.
        dispatcher: Tool call dispatcher.
        transport: WebSocket listener.
    """

    def __init__(
        self,
        config: AppConfig,
        store: TaskStore,
        registry: ToolRegistry,
        connections: ConnectionRegistry,
        dispatcher: Dispatcher,
        transport: WebSocketTransport,
    ) -> None:
        self.config = config
        self.store = store
        self.registry = registry
        self.connections = connections
        self.dispatcher = dispatcher
        self.transport = transport

    async def start(self) -> None:
        """
        Open the task store and start listening.

        Raises:
            UnavailableError: If the database cannot be initialized.
            OSError: If the listen address cannot be bound.
        """
        await self.store.initialize()
        await self.transport.start(self.config.server.host, self.config.server.port)
        logger.info(
            f"{self.config.server.name} started",
            extra={
                "version": __version__,
                "port": self.transport.port,
                "tools": self.registry.list_tools(),
                "db_path": str(self.store.db_path),
            },
        )

    async def stop(self) -> None:
        await self.transport.close()
        logger.info(f"{self.config.server.name} stopped")


def create_server(
    config: AppConfig,
    registry: ToolRegistry | None = None,
) -> TaskServer:
    """
    Create and wire a TaskServer from configuration.

    Args:
        config: Application configuration.
        registry: Optional registry; a fresh one is created when omitted.

    Raises:
        ValueError: If a task tool name is already registered in `registry`.

    Example:
        >>> server = create_server(load_config(cli_args=[]))
        >>> await server.start()
    """
    registry = registry if registry is not None else ToolRegistry()

    store = TaskStore(config.storage.db_path)
    resolver = DueDateResolver(timezone=config.tasks.timezone)
    TaskTools(store, resolver).register(registry)

    audit_logger = AuditLogger.from_config(config.logging)
    rate_limiter = (
        FixedWindowRateLimiter.from_config(config.rate_limit)
        if config.rate_limit.enabled
        else None
    )

    connections = ConnectionRegistry()
    dispatcher = Dispatcher(registry, connections=connections, audit_logger=audit_logger)
    transport = WebSocketTransport(
        connections,
        dispatcher,
        ApiKeyAuthenticator.from_config(config.security),
        rate_limiter,
        audit_logger,
        name=config.server.name,
        max_message_bytes=config.server.max_message_bytes,
        per_message_limit=config.rate_limit.per_message,
        trust_forwarded_for=config.rate_limit.trust_forwarded_for,
    )
    dispatcher.sender = transport.send

    return TaskServer(config, store, registry, connections, dispatcher, transport)


async def run_server(config: AppConfig) -> None:
    """
    Run the server until SIGINT or SIGTERM.

    Args:
        config: Application configuration.
    """
    server = create_server(config)
    await server.start()

    loop = asyncio.get_running_loop()
    stop_event = asyncio.Event()

    def signal_handler() -> None:
        logger.info("Received shutdown signal")
        stop_event.set()

    try:
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, signal_handler)
    except (ValueError, NotImplementedError):
        # Signal handling not supported on this platform
        pass

    try:
        await stop_event.wait()
    finally:
        await server.stop()


def main(argv: list[str] | None = None) -> int:
    """
    Console entry point.

    Returns:
        Process exit status.
    """
    try:
        config = load_config(cli_args=argv)
    except (ValueError, FileNotFoundError, yaml.YAMLError) as e:
        setup_logging()
        logger.error("Invalid configuration", extra={"error": str(e)})
        return 1

    setup_logging(config.logging)
    logger.info(
        "Configuration loaded",
        extra={
            "host": config.server.host,
            "port": config.server.port,
            "db_path": config.storage.db_path,
            "rate_limit_enabled": config.rate_limit.enabled,
            "api_key_count": len(config.security.api_keys),
        },
    )

    try:
        asyncio.run(run_server(config))
    except KeyboardInterrupt:
        logger.info("Interrupted")
    except (ValueError, OSError, ToolError) as e:
        logger.error("Server failed to start", extra={"error": str(e)})
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
