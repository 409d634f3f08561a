"""Singleton emitter: configure once, emit everywhere.

The global emit() function is the only API modules need.
It's a no-op when not configured (zero overhead in tests).
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from riglm.observe.config import ObservabilityConfig

from pyventus.events import EventEmitter

_emitter: EventEmitter | None = None
_configured: bool = False


def emit(event: Any) -> None:
    """Fire-and-forget event emission. No-op if not configured."""
    if _emitter is not None:
        _emitter.emit(event)


def configure(config: ObservabilityConfig | None = None) -> EventEmitter:
    """Initialize the global emitter and register subscribers.

    Called once at startup (proxy init, CLI entry, test setup).
    Idempotent -- second call returns existing emitter.
    """
    global _emitter, _configured

    if _configured and _emitter is not None:
        return _emitter

    from riglm.observe.config import ObservabilityConfig

    cfg = config or ObservabilityConfig()

    # Structured logging first (formatter x destination from config)
    from riglm.observe.logging import setup_logging

    setup_logging(cfg)

    # Emitter bound to our isolated linker
    from pyventus.core.processing.asyncio import AsyncIOProcessingService

    from riglm.observe.linker import RiglmEventLinker

    _emitter = EventEmitter(
        event_linker=RiglmEventLinker,
        event_processor=AsyncIOProcessingService(),
    )

    from riglm.observe.subscribers.structlog_sub import register_structlog_subscriber

    register_structlog_subscriber()

    _configured = True
    return _emitter


def is_configured() -> bool:
    return _configured


def reset() -> None:
    """Reset for testing."""
    global _emitter, _configured

    from riglm.observe.logging import shutdown_logging

    shutdown_logging()

    _emitter = None
    _configured = False
