"""Connections to the upstream MCP servers being aggregated.

Each enabled server is spawned over stdio through a fastmcp Client.
Servers that fail to start are logged and skipped; the proxy runs with
whatever connected.
"""

from __future__ import annotations

import os
from collections.abc import Callable
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from fastmcp import Client
from fastmcp.client.transports import StdioTransport
from mcp import types

from riglm.observe import emit
from riglm.observe.events import UpstreamConnected, UpstreamFailed
from riglm.observe.logging import get_logger
from riglm.observe.tracing import traced

if TYPE_CHECKING:
    from riglm.config import ServerConfig

logger = get_logger(__name__)

ClientFactory = Callable[["ServerConfig"], Any]


def stdio_client_factory(server: ServerConfig) -> Client:
    """fastmcp Client that spawns `server.command` with the proxy's environment plus `server.env`."""
    transport = StdioTransport(
        command=server.command,
        args=list(server.args),
        env={**os.environ, **server.env},
        cwd=server.cwd,
    )
    return Client(transport)


@dataclass
class UpstreamConnection:
    name: str
    client: Any
    tools: list[types.Tool]
    _stack: AsyncExitStack = field(default_factory=AsyncExitStack, repr=False)


class UpstreamManager:
    """Owns the upstream clients for the life of the proxy.

    Connect and disconnect from the same task: the stdio transport's
    task group is bound to the task that entered it.
    """

    def __init__(self, client_factory: ClientFactory | None = None) -> None:
        self._client_factory = client_factory or stdio_client_factory
        self._connections: dict[str, UpstreamConnection] = {}

    async def connect_all(self, servers: list[ServerConfig]) -> list[UpstreamConnection]:
        """Connect every enabled server in order. Returns the live connections."""
        for server in servers:
            if not server.enabled:
                logger.info("upstream.skipped", server=server.name, reason="disabled")
                continue
            try:
                await self._connect_one(server)
            except Exception as exc:
                emit(UpstreamFailed(server_name=server.name, error=str(exc)))
        return self.get_all_connections()

    async def _connect_one(self, server: ServerConfig) -> None:
        stack = AsyncExitStack()
        try:
            client = await stack.enter_async_context(self._client_factory(server))
            tools = list(await client.list_tools())
        except BaseException:
            await stack.aclose()
            raise

        self._connections[server.name] = UpstreamConnection(
            name=server.name, client=client, tools=tools, _stack=stack
        )
        emit(UpstreamConnected(server_name=server.name, tool_count=len(tools)))

    @traced("upstream.call_tool")
    async def call_tool(
        self, server_name: str, tool_name: str, arguments: dict[str, Any] | None
    ) -> types.CallToolResult:
        """Forward a call under the tool's original name. Upstream errors propagate.

        Raises:
            KeyError: No live connection to `server_name`.
        """
        conn = self._connections.get(server_name)
        if conn is None:
            raise KeyError(f"No connection to server: {server_name}")
        return await conn.client.call_tool_mcp(tool_name, arguments or {})

    def get_connection(self, name: str) -> UpstreamConnection | None:
        return self._connections.get(name)

    def get_all_connections(self) -> list[UpstreamConnection]:
        return list(self._connections.values())

    async def disconnect_all(self) -> None:
        """Close every connection. One failing close doesn't stop the rest."""
        for conn in list(self._connections.values()):
            try:
                await conn._stack.aclose()
                logger.info("upstream.disconnected", server=conn.name)
            except Exception as exc:
                logger.error("upstream.disconnect_failed", server=conn.name, error=str(exc))
        self._connections.clear()
