"""riglm proxy: aggregation, filtering and routing between MCP client and servers."""

from riglm.proxy.filtering import (
    DISCOVERY_SIGNAL,
    RANKED_SIGNAL,
    SEARCH_SIGNAL,
    PendingLearning,
    ToolFilter,
    ToolSelection,
)
from riglm.proxy.registry import ToolEntry, ToolRegistry
from riglm.proxy.session import DEFAULT_SESSION, SessionContext, SessionStore
from riglm.proxy.upstream import UpstreamConnection, UpstreamManager

__all__ = [
    "DEFAULT_SESSION",
    "DISCOVERY_SIGNAL",
    "PendingLearning",
    "RANKED_SIGNAL",
    "SEARCH_SIGNAL",
    "SessionContext",
    "SessionStore",
    "ToolEntry",
    "ToolFilter",
    "ToolRegistry",
    "ToolSelection",
    "UpstreamConnection",
    "UpstreamManager",
]
