"""Shared fixtures: a deterministic keyword embedder and a five-tool registry."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

import pytest
from mcp import types

from riglm.observe import reset as obs_reset
from riglm.proxy.registry import ToolRegistry


def normalize(v: list[float]) -> list[float]:
    norm = math.sqrt(sum(x * x for x in v))
    return [x / norm for x in v]


KEYWORD_VECTORS: list[tuple[str, list[float]]] = [
    ("file_read", normalize([0.9, 0.1, 0.0, 0.0])),
    ("file_write", normalize([0.8, 0.2, 0.0, 0.0])),
    ("web_search", normalize([0.0, 0.0, 0.9, 0.1])),
    ("db_query", normalize([0.0, 0.1, 0.0, 0.9])),
    ("echo", normalize([0.1, 0.1, 0.1, 0.1])),
]

FILES_QUERY = "I need to read and write files"
WEB_QUERY = "search the web for info"
DB_QUERY = "query the database"

QUERY_VECTORS: dict[str, list[float]] = {
    FILES_QUERY: normalize([0.85, 0.15, 0.0, 0.0]),
    WEB_QUERY: normalize([0.0, 0.0, 0.95, 0.05]),
    DB_QUERY: normalize([0.0, 0.05, 0.0, 0.95]),
}

DEFAULT_VECTOR = normalize([0.1, 0.1, 0.1, 0.1])


class MockEmbedder:
    """Maps known queries and tool-name keywords to fixed 4-d unit vectors."""

    dimensions = 4

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.fail = False

    async def embed(self, text: str) -> list[float]:
        self.calls.append(text)
        if self.fail:
            raise RuntimeError("embedding backend down")
        if text in QUERY_VECTORS:
            return QUERY_VECTORS[text]
        for pattern, vector in KEYWORD_VECTORS:
            if pattern in text:
                return vector
        return DEFAULT_VECTOR

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [await self.embed(t) for t in texts]


@dataclass
class FakeConnection:
    name: str
    tools: list[types.Tool]
    client: Any = None


def make_tool(name: str, description: str | None = None, **kwargs: Any) -> types.Tool:
    return types.Tool(
        name=name,
        description=description,
        inputSchema={"type": "object"},
        **kwargs,
    )


TEST_TOOLS = [
    ("file_read", "Read a file from disk"),
    ("file_write", "Write content to a file"),
    ("web_search", "Search the internet"),
    ("db_query", "Query a database"),
    ("echo", "Echo input back"),
]


def build_registry() -> ToolRegistry:
    registry = ToolRegistry("__")
    conn = FakeConnection(name="test", tools=[make_tool(n, d) for n, d in TEST_TOOLS])
    registry.build_from_connections([conn])
    return registry


@dataclass
class FakeClient:
    """Stands in for a fastmcp Client: async context manager with list/call."""

    tools: list[types.Tool]
    fail_on_enter: bool = False
    fail_on_exit: bool = False
    calls: list[tuple[str, dict]] = field(default_factory=list)
    entered: bool = False
    exited: bool = False

    async def __aenter__(self) -> FakeClient:
        if self.fail_on_enter:
            raise ConnectionError("spawn failed")
        self.entered = True
        return self

    async def __aexit__(self, *exc: object) -> None:
        self.exited = True
        if self.fail_on_exit:
            raise RuntimeError("close failed")

    async def list_tools(self) -> list[types.Tool]:
        return self.tools

    async def call_tool_mcp(self, name: str, arguments: dict) -> types.CallToolResult:
        self.calls.append((name, arguments))
        return types.CallToolResult(
            content=[types.TextContent(type="text", text=f"{name}:{arguments}")]
        )


@pytest.fixture
def embedder() -> MockEmbedder:
    return MockEmbedder()


@pytest.fixture
def registry() -> ToolRegistry:
    return build_registry()


@pytest.fixture(autouse=True)
def _reset_observability():
    obs_reset()
    yield
    obs_reset()
