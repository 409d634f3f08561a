"""Tests for ProxyServer handlers and the run_proxy lifecycle.

The `_impl` methods are the handler logic; the MCP transport is not
exercised here.
"""

from __future__ import annotations

import asyncio
import logging

import pytest
from conftest import FILES_QUERY, TEST_TOOLS, FakeClient, make_tool

from riglm.config import RiglmConfig, ServerConfig, StorageConfig
from riglm.learning.retriever import ToolRetriever
from riglm.learning.types import association_id
from riglm.observe import configure
from riglm.observe.events import ToolCallForwarded, ToolListServed
from riglm.observe.linker import RiglmEventLinker
from riglm.proxy import server as server_mod
from riglm.proxy.meta_tools import SEARCH_AVAILABLE_TOOLS, SET_CONTEXT
from riglm.proxy.server import ProxyServer, ProxyStartupError, run_proxy
from riglm.proxy.session import DEFAULT_SESSION, SessionStore
from riglm.proxy.upstream import UpstreamManager


@pytest.fixture
def client() -> FakeClient:
    return FakeClient(tools=[make_tool(n, d) for n, d in TEST_TOOLS])


@pytest.fixture
async def upstream(client) -> UpstreamManager:
    manager = UpstreamManager(lambda server: client)
    await manager.connect_all([ServerConfig(name="test", command="unused")])
    return manager


@pytest.fixture
def sessions() -> SessionStore:
    return SessionStore()


@pytest.fixture
async def retriever(embedder, registry) -> ToolRetriever:
    r = ToolRetriever(embedder, registry)
    await r.index_static_tools()
    return r


@pytest.fixture
def proxy(registry, upstream, sessions, retriever) -> ProxyServer:
    return ProxyServer("riglm-test", registry, upstream, sessions, retriever, top_k=2)


def _text(result) -> str:
    return result.content[0].text


class TestListTools:
    async def test_full_catalog_plus_meta_tools(self, proxy):
        names = [t.name for t in await proxy.list_tools_impl()]
        assert names[:5] == [f"test__{n}" for n, _ in TEST_TOOLS]
        assert names[5:] == [SET_CONTEXT, SEARCH_AVAILABLE_TOOLS]

    async def test_meta_tools_always_present_when_filtered(self, proxy, retriever):
        for tool in ["test__file_read", "test__file_write", "test__echo", "test__db_query"]:
            await retriever.record_learning(FILES_QUERY, tool, 1.0)
        await proxy.call_tool_impl(SET_CONTEXT, {"query": FILES_QUERY})

        names = [t.name for t in await proxy.list_tools_impl()]
        assert names == ["test__file_read", "test__file_write", SET_CONTEXT, SEARCH_AVAILABLE_TOOLS]

    async def test_emits_tool_list_served(self, proxy):
        captured = []

        @RiglmEventLinker.on(ToolListServed)
        def capture(event):
            captured.append(event)

        configure()
        await proxy.list_tools_impl()

        await asyncio.sleep(0.05)
        assert captured
        assert captured[-1].reason == "no_context"
        assert captured[-1].tool_count == 5
        assert captured[-1].total_tools == 5

    async def test_tool_list_logged_once(self, proxy, caplog, monkeypatch):
        monkeypatch.setenv("RIGLM_LOG_LEVEL", "DEBUG")
        caplog.set_level(logging.DEBUG)
        configure()
        await proxy.list_tools_impl()

        await asyncio.sleep(0.05)
        events = [r.msg.get("event") if isinstance(r.msg, dict) else r.msg for r in caplog.records]
        assert events.count("tools.list.served") == 1
        assert "tools.list" not in events


class TestCallTool:
    async def test_forwards_under_original_name(self, proxy, client):
        result = await proxy.call_tool_impl("test__echo", {"text": "hi"})
        assert client.calls == [("echo", {"text": "hi"})]
        assert _text(result) == "echo:{'text': 'hi'}"

    async def test_unknown_tool(self, proxy, client):
        result = await proxy.call_tool_impl("nope__tool", {})
        assert result.isError
        assert _text(result) == "Unknown tool: nope__tool"
        assert client.calls == []

    async def test_meta_tool_answered_locally(self, proxy, sessions, client):
        result = await proxy.call_tool_impl(SET_CONTEXT, {"query": "read files"})
        assert "Context updated" in _text(result)
        assert sessions.get_context(DEFAULT_SESSION).query == "read files"
        assert client.calls == []

    async def test_call_without_context_learns_nothing(self, proxy, retriever):
        await proxy.call_tool_impl("test__echo", {})
        await proxy.wait_for_learning()
        assert retriever.stats()["learned_size"] == 0

    async def test_call_after_search_learns_with_search_signal(self, proxy, retriever):
        await proxy.call_tool_impl(SET_CONTEXT, {"query": FILES_QUERY})
        await proxy.call_tool_impl(SEARCH_AVAILABLE_TOOLS, {"query": "file"})
        await proxy.call_tool_impl("test__file_read", {"path": "/x"})
        await proxy.wait_for_learning()

        entry = retriever.learned_index.get(association_id(FILES_QUERY, "test__file_read"))
        assert entry.confidence == 1.5

    async def test_unsearched_call_is_discovery(self, proxy, retriever):
        await proxy.call_tool_impl(SET_CONTEXT, {"query": FILES_QUERY})
        await proxy.call_tool_impl("test__echo", {})
        await proxy.wait_for_learning()

        entry = retriever.learned_index.get(association_id(FILES_QUERY, "test__echo"))
        assert entry.confidence == 0.5

    async def test_learning_failure_does_not_fail_call(self, proxy, embedder, client):
        await proxy.call_tool_impl(SET_CONTEXT, {"query": "something new"})
        embedder.fail = True
        result = await proxy.call_tool_impl("test__echo", {})
        await proxy.wait_for_learning()
        assert not result.isError

    async def test_emits_tool_call_forwarded(self, proxy):
        captured = []

        @RiglmEventLinker.on(ToolCallForwarded)
        def capture(event):
            captured.append(event)

        configure()
        await proxy.call_tool_impl("test__echo", {})

        await asyncio.sleep(0.05)
        assert captured[-1].tool_name == "test__echo"
        assert captured[-1].server_name == "test"
        assert captured[-1].is_error is False

    async def test_without_retriever(self, registry, upstream, sessions, client):
        proxy = ProxyServer("riglm-test", registry, upstream, sessions)
        await proxy.call_tool_impl(SET_CONTEXT, {"query": FILES_QUERY})
        await proxy.call_tool_impl("test__echo", {})
        assert proxy.filter.retriever is None
        assert client.calls == [("echo", {})]


class TestRunProxy:
    async def test_no_upstreams_is_startup_error(self, tmp_path, embedder):
        client = FakeClient(tools=[], fail_on_enter=True)
        config = RiglmConfig(
            servers=[ServerConfig(name="bad", command="unused")],
            storage=StorageConfig(path=str(tmp_path / "riglm.db")),
        )
        with pytest.raises(ProxyStartupError):
            await run_proxy(config, embedder=embedder, upstream=UpstreamManager(lambda s: client))
        assert not (tmp_path / "riglm.db").exists()

    async def test_lifecycle(self, tmp_path, embedder, monkeypatch):
        """Startup indexes and loads; shutdown drains learning and disconnects."""
        client = FakeClient(tools=[make_tool(n, d) for n, d in TEST_TOOLS])
        config = RiglmConfig(
            servers=[ServerConfig(name="test", command="unused")],
            storage=StorageConfig(path=str(tmp_path / "riglm.db")),
        )
        seen = {}

        async def fake_run_stdio(self):
            seen["static"] = self.filter.retriever.stats()["static_size"]
            await self.call_tool_impl(SET_CONTEXT, {"query": FILES_QUERY})
            await self.call_tool_impl("test__file_read", {})

        monkeypatch.setattr(ProxyServer, "run_stdio", fake_run_stdio)
        await run_proxy(config, embedder=embedder, upstream=UpstreamManager(lambda s: client))

        assert seen["static"] == 5
        assert client.exited

        # The learned association reached the store before shutdown
        from riglm.learning.store import SqliteAssociationStore

        store = SqliteAssociationStore(tmp_path / "riglm.db")
        try:
            stored = await store.get(association_id(FILES_QUERY, "test__file_read"))
        finally:
            await store.close()
        assert stored is not None
        assert stored.confidence == 0.5

    async def test_learned_associations_loaded_at_startup(self, tmp_path, embedder, monkeypatch):
        client = FakeClient(tools=[make_tool(n, d) for n, d in TEST_TOOLS])
        config = RiglmConfig(
            servers=[ServerConfig(name="test", command="unused")],
            storage=StorageConfig(path=str(tmp_path / "riglm.db")),
        )
        learned_sizes = []

        async def fake_run_stdio(self):
            learned_sizes.append(self.filter.retriever.stats()["learned_size"])
            await self.call_tool_impl(SET_CONTEXT, {"query": FILES_QUERY})
            await self.call_tool_impl("test__file_write", {"path": "/x"})

        monkeypatch.setattr(ProxyServer, "run_stdio", fake_run_stdio)
        await run_proxy(config, embedder=embedder, upstream=UpstreamManager(lambda s: client))
        client.exited = False
        await run_proxy(config, embedder=embedder, upstream=UpstreamManager(lambda s: client))

        assert learned_sizes == [0, 1]


def test_build_embedder_wraps_in_cache():
    from riglm.config import EmbeddingConfig
    from riglm.vec.cache import CachedEmbeddingModel

    config = RiglmConfig(
        servers=[ServerConfig(name="x", command="y")],
        embedding=EmbeddingConfig(cache_size=7),
    )
    embedder = server_mod.build_embedder(config)
    assert isinstance(embedder, CachedEmbeddingModel)
