"""Routes all events to structured log lines via the configured LogFormatter.

Always-on subscriber. Called by emitter.configure() on startup.
Uses get_logger() from the logging module -- works with structlog, stdlib,
or any registered LogFormatter.
"""

from __future__ import annotations

from dataclasses import asdict

from riglm.observe.events import (
    AssociationsLoaded,
    AssociationsPruned,
    ConfidenceComputed,
    LearningRecorded,
    RetrievalCompleted,
    StaticIndexBuilt,
    ToolCallForwarded,
    ToolListServed,
    UpstreamConnected,
    UpstreamFailed,
)
from riglm.observe.linker import RiglmEventLinker
from riglm.observe.logging import get_logger

_registered = False


def _get_logger():
    """Lazy logger -- always reflects the active formatter, not stale import-time state."""
    return get_logger("riglm.events")


def _to_dict(event: object) -> dict:
    """Convert frozen dataclass to dict for structlog."""
    return asdict(event)  # type: ignore[arg-type]


def register_structlog_subscriber() -> None:
    """Register log handlers for all events on RiglmEventLinker.

    Handlers live on the linker class, which outlives emitter.reset(),
    so registration happens once per process.
    """
    global _registered
    if _registered:
        return

    # Retrieval
    @RiglmEventLinker.on(StaticIndexBuilt)
    def _log_static_index(event: StaticIndexBuilt) -> None:
        _get_logger().info("index.static.built", **_to_dict(event))

    @RiglmEventLinker.on(RetrievalCompleted)
    def _log_retrieval(event: RetrievalCompleted) -> None:
        _get_logger().debug("retrieval.completed", **_to_dict(event))

    @RiglmEventLinker.on(ConfidenceComputed)
    def _log_confidence(event: ConfidenceComputed) -> None:
        _get_logger().debug("confidence.computed", **_to_dict(event))

    # Learning
    @RiglmEventLinker.on(LearningRecorded)
    def _log_learning(event: LearningRecorded) -> None:
        _get_logger().info("learning.recorded", **_to_dict(event))

    # Association store
    @RiglmEventLinker.on(AssociationsLoaded)
    def _log_loaded(event: AssociationsLoaded) -> None:
        _get_logger().info("associations.loaded", **_to_dict(event))

    @RiglmEventLinker.on(AssociationsPruned)
    def _log_pruned(event: AssociationsPruned) -> None:
        _get_logger().info("associations.pruned", **_to_dict(event))

    # Proxy surface
    @RiglmEventLinker.on(ToolListServed)
    def _log_tool_list(event: ToolListServed) -> None:
        _get_logger().info("tools.list.served", **_to_dict(event))

    @RiglmEventLinker.on(ToolCallForwarded)
    def _log_tool_call(event: ToolCallForwarded) -> None:
        _get_logger().info("tools.call.forwarded", **_to_dict(event))

    # Upstream lifecycle
    @RiglmEventLinker.on(UpstreamConnected)
    def _log_upstream_connected(event: UpstreamConnected) -> None:
        _get_logger().info("upstream.connected", **_to_dict(event))

    @RiglmEventLinker.on(UpstreamFailed)
    def _log_upstream_failed(event: UpstreamFailed) -> None:
        _get_logger().warning("upstream.failed", **_to_dict(event))

    _registered = True
