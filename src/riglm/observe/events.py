"""Typed event dataclasses for riglm observability.

All events are frozen (immutable) dataclasses. Modules emit these;
they don't know about logs or traces. Subscribers handle routing.

Grouped by domain: retrieval, learning, association store, proxy surface,
upstream lifecycle.
"""

from __future__ import annotations

from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Retrieval
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StaticIndexBuilt:
    tool_count: int
    latency_ms: float


@dataclass(frozen=True)
class RetrievalCompleted:
    query: str
    top_k: int
    static_hits: int
    learned_hits: int
    result_count: int
    latency_ms: float


@dataclass(frozen=True)
class ConfidenceComputed:
    query: str
    confidence: float
    neighbors: int
    cold_start: bool


# ---------------------------------------------------------------------------
# Learning
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LearningRecorded:
    association_id: str
    tool_name: str
    signal: float
    confidence: float
    created: bool  # False when an existing association was EMA-updated


# ---------------------------------------------------------------------------
# Association store
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AssociationsLoaded:
    count: int


@dataclass(frozen=True)
class AssociationsPruned:
    removed: int
    remaining: int
    size_threshold: int
    min_confidence: float
    unused_days: int


# ---------------------------------------------------------------------------
# Proxy surface
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ToolListServed:
    session_id: str
    reason: str  # "no_context" | "no_retriever" | "cold_start" | "filtered" | ...
    filtered: bool
    tool_count: int
    total_tools: int
    confidence: float | None = None


@dataclass(frozen=True)
class ToolCallForwarded:
    tool_name: str
    server_name: str
    is_error: bool
    latency_ms: float


# ---------------------------------------------------------------------------
# Upstream lifecycle
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UpstreamConnected:
    server_name: str
    tool_count: int


@dataclass(frozen=True)
class UpstreamFailed:
    server_name: str
    error: str
