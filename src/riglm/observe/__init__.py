"""riglm observability: typed events routed to structured logs and spans.

Public API:
    emit(event)     -- Fire-and-forget event emission (no-op if not configured)
    configure(cfg)  -- Initialize logging + emitter + subscribers (call once at startup)
    reset()         -- Reset for testing

Logging (swappable formatter x destination):
    get_logger(name)             -- Get a structured logger
    register_formatter(n, cls)   -- Register custom LogFormatter
    register_destination(n, cls) -- Register custom LogDestination

Modules import `emit` and fire typed events. They don't know about
logs or traces. Subscribers handle routing.
"""

from riglm.observe.config import ObservabilityConfig
from riglm.observe.emitter import configure, emit, is_configured, reset
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
from riglm.observe.logging import (
    LogDestination,
    LogFormatter,
    get_logger,
    register_destination,
    register_formatter,
)
from riglm.observe.tracing import traced

__all__ = [
    "ObservabilityConfig",
    "configure",
    "emit",
    "is_configured",
    "reset",
    "get_logger",
    "register_formatter",
    "register_destination",
    "LogFormatter",
    "LogDestination",
    "traced",
    # Events
    "StaticIndexBuilt",
    "RetrievalCompleted",
    "ConfidenceComputed",
    "LearningRecorded",
    "AssociationsLoaded",
    "AssociationsPruned",
    "ToolListServed",
    "ToolCallForwarded",
    "UpstreamConnected",
    "UpstreamFailed",
]
