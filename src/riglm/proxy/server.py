"""MCP proxy server: one downstream client, many upstream servers.

tools/list returns the upstream catalog, narrowed by ToolFilter once the
client has stated its intent with set_context and enough has been
learned, plus the meta-tools. tools/call answers meta-tools locally and
forwards everything else to the owning upstream under its original name,
then learns from the call in the background.

Architecture:
    ProxyServer.list_tools_impl() / call_tool_impl() hold the logic;
    the handlers registered on the low-level mcp Server delegate to them.
    Tests call the `_impl` methods directly.

    run_proxy(config) owns the process lifecycle:
        connect upstreams -> build registry -> open store -> index static tools
        -> prune + load learned associations -> serve stdio
    and on exit: stop maintenance -> drain learning -> prune -> close store
        -> disconnect upstreams
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

from mcp import types
from mcp.server.lowlevel import NotificationOptions, Server
from mcp.server.stdio import stdio_server

from riglm import __version__
from riglm.config import RiglmConfig
from riglm.learning.retriever import DEFAULT_TOP_K, ToolRetriever
from riglm.learning.store import SqliteAssociationStore
from riglm.learning.types import PruneThresholds
from riglm.observe import configure, emit
from riglm.observe.events import ToolCallForwarded, ToolListServed
from riglm.observe.logging import get_logger
from riglm.proxy.filtering import ToolFilter
from riglm.proxy.meta_tools import (
    SET_CONTEXT,
    get_meta_tool_definitions,
    handle_meta_tool,
    is_meta_tool,
)
from riglm.proxy.registry import ToolRegistry
from riglm.proxy.session import DEFAULT_SESSION, SessionStore
from riglm.proxy.upstream import UpstreamManager
from riglm.vec.cache import CachedEmbeddingModel
from riglm.vec.embeddings import EmbeddingModel, create_embedding_model

logger = get_logger(__name__)


class ProxyStartupError(RuntimeError):
    """The proxy cannot start serving (e.g. no upstream connected)."""


def _error_result(text: str) -> types.CallToolResult:
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        isError=True,
    )


class ProxyServer:
    def __init__(
        self,
        name: str,
        registry: ToolRegistry,
        upstream: UpstreamManager,
        sessions: SessionStore,
        retriever: ToolRetriever | None = None,
        top_k: int = DEFAULT_TOP_K,
        session_id: str = DEFAULT_SESSION,
        ranking_timeout: float | None = None,
    ) -> None:
        self._registry = registry
        self._upstream = upstream
        self._sessions = sessions
        self._session_id = session_id
        self._filter = ToolFilter(registry, sessions, retriever, top_k, timeout=ranking_timeout)
        self._learning_tasks: set[asyncio.Task] = set()
        self.server = self._build_server(name)

    @property
    def filter(self) -> ToolFilter:
        return self._filter

    def _build_server(self, name: str) -> Server:
        server: Server = Server(name, version=__version__)

        @server.list_tools()
        async def _list_tools() -> list[types.Tool]:
            return await self.list_tools_impl()

        # Upstream servers validate their own arguments
        @server.call_tool(validate_input=False)
        async def _call_tool(tool_name: str, arguments: dict[str, Any]) -> types.CallToolResult:
            result = await self.call_tool_impl(tool_name, arguments)
            if tool_name == SET_CONTEXT:
                await self._notify_tools_changed(server)
            return result

        return server

    async def _notify_tools_changed(self, server: Server) -> None:
        try:
            await server.request_context.session.send_tool_list_changed()
        except Exception as exc:
            logger.warning("notify.tools_changed.failed", error=str(exc))

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def list_tools_impl(self) -> list[types.Tool]:
        selection = await self._filter.select_tools(self._session_id)
        emit(
            ToolListServed(
                session_id=self._session_id,
                reason=selection.reason,
                filtered=selection.filtered,
                tool_count=len(selection.tools),
                total_tools=self._registry.size(),
                confidence=selection.confidence,
            )
        )
        return [*selection.tools, *get_meta_tool_definitions()]

    async def call_tool_impl(
        self, name: str, arguments: dict[str, Any] | None
    ) -> types.CallToolResult:
        if is_meta_tool(name):
            return handle_meta_tool(
                name, arguments, self._registry, self._sessions, self._session_id
            )

        entry = self._registry.get_entry(name)
        if entry is None:
            return _error_result(f"Unknown tool: {name}")

        t0 = time.perf_counter()
        result = await self._upstream.call_tool(
            entry.server_name, entry.original_name, arguments or {}
        )
        emit(
            ToolCallForwarded(
                tool_name=name,
                server_name=entry.server_name,
                is_error=bool(result.isError),
                latency_ms=(time.perf_counter() - t0) * 1000,
            )
        )

        pending = self._filter.record_invocation(self._session_id, name)
        if pending is not None:
            task = asyncio.create_task(self._filter.apply_learning(pending))
            self._learning_tasks.add(task)
            task.add_done_callback(self._learning_tasks.discard)
        return result

    async def wait_for_learning(self) -> None:
        """Wait for background learning started by tools/call."""
        while self._learning_tasks:
            await asyncio.gather(*list(self._learning_tasks))

    async def run_stdio(self) -> None:
        async with stdio_server() as (read_stream, write_stream):
            await self.server.run(
                read_stream,
                write_stream,
                self.server.create_initialization_options(
                    notification_options=NotificationOptions(tools_changed=True),
                ),
            )


# ---------------------------------------------------------------------------
# Process lifecycle
# ---------------------------------------------------------------------------


async def _maintenance_loop(
    retriever: ToolRetriever,
    sessions: SessionStore,
    thresholds: PruneThresholds,
    interval: float,
) -> None:
    """Prune the store, reload learned associations and evict idle sessions."""
    while True:
        await asyncio.sleep(interval)
        try:
            removed = await retriever.prune(thresholds)
        except Exception as exc:
            logger.error("maintenance.prune_failed", error=str(exc), exc_info=True)
            removed = 0
        evicted = sessions.evict_idle()
        logger.info("maintenance.completed", pruned=removed, sessions_evicted=evicted)


def build_embedder(config: RiglmConfig) -> EmbeddingModel:
    model = create_embedding_model(
        backend=config.embedding.backend,
        model=config.embedding.model,
        base_url=config.embedding.base_url,
        timeout=config.embedding.timeout_seconds,
    )
    return CachedEmbeddingModel(model, max_size=config.embedding.cache_size)


async def run_proxy(
    config: RiglmConfig,
    embedder: EmbeddingModel | None = None,
    upstream: UpstreamManager | None = None,
) -> None:
    """Run the proxy over stdio until the client disconnects.

    Raises:
        ProxyStartupError: No upstream server connected.
    """
    configure()
    upstream = upstream or UpstreamManager()
    store: SqliteAssociationStore | None = None
    thresholds = config.storage.thresholds()

    try:
        connections = await upstream.connect_all(config.servers)
        if not connections:
            raise ProxyStartupError("No upstream servers connected")

        registry = ToolRegistry(config.proxy.namespace_separator)
        registry.build_from_connections(connections)
        logger.info("registry.built", tools=registry.size(), servers=len(connections))

        store = SqliteAssociationStore(config.db_path)
        await store.connect()
        retriever = ToolRetriever(embedder or build_embedder(config), registry, store)
        await retriever.index_static_tools()
        await retriever.prune(thresholds)

        sessions = SessionStore(idle_ttl_seconds=config.session.idle_ttl_seconds)
        proxy = ProxyServer(
            config.proxy.name,
            registry,
            upstream,
            sessions,
            retriever,
            top_k=config.proxy.top_k,
            ranking_timeout=config.embedding.timeout_seconds,
        )

        maintenance: asyncio.Task | None = None
        interval = config.storage.prune_interval_seconds
        if interval > 0:
            maintenance = asyncio.create_task(
                _maintenance_loop(retriever, sessions, thresholds, interval)
            )

        logger.info("proxy.running", name=config.proxy.name, transport="stdio", **retriever.stats())
        try:
            await proxy.run_stdio()
        finally:
            if maintenance is not None:
                maintenance.cancel()
                await asyncio.gather(maintenance, return_exceptions=True)
            await proxy.wait_for_learning()
    finally:
        logger.info("proxy.shutdown")
        try:
            if store is not None:
                try:
                    await store.prune(thresholds)
                finally:
                    await store.close()
        finally:
            await upstream.disconnect_all()

