"""@traced decorator: automatic OpenTelemetry span creation.

Creates spans via start_as_current_span(). Nested @traced calls form a
parent-child tree through contextvars. Without an SDK installed the API
hands out non-recording spans, so the decorator costs next to nothing.

Usage:
    @traced("retrieval.retrieve")
    async def retrieve(self, query: str) -> list[str]: ...

    @traced("vec.search")
    def search(self, vector, top_k) -> list[SearchHit]: ...
"""

from __future__ import annotations

import functools
import inspect
import time
from typing import Any, Callable, TypeVar

from opentelemetry import trace

F = TypeVar("F", bound=Callable[..., Any])

_TRACER_NAME = "riglm"


def _mark_error(span: trace.Span, exc: BaseException) -> None:
    span.set_attribute("error", True)
    span.set_attribute("error.type", type(exc).__name__)
    span.record_exception(exc)


def traced(name: str) -> Callable[[F], F]:
    """Decorator: wrap a sync or async function in an OTel span.

    Args:
        name: Span name (e.g. "retrieval.retrieve", "store.prune").
    """

    def decorator(fn: F) -> F:
        @functools.wraps(fn)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            tracer = trace.get_tracer(_TRACER_NAME)
            with tracer.start_as_current_span(name) as span:
                t0 = time.monotonic()
                try:
                    return fn(*args, **kwargs)
                except Exception as exc:
                    _mark_error(span, exc)
                    raise
                finally:
                    span.set_attribute("riglm.total_seconds", time.monotonic() - t0)

        @functools.wraps(fn)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            tracer = trace.get_tracer(_TRACER_NAME)
            with tracer.start_as_current_span(name) as span:
                t0 = time.monotonic()
                try:
                    return await fn(*args, **kwargs)
                except Exception as exc:
                    _mark_error(span, exc)
                    raise
                finally:
                    span.set_attribute("riglm.total_seconds", time.monotonic() - t0)

        if inspect.iscoroutinefunction(fn):
            return async_wrapper  # type: ignore[return-value]
        return sync_wrapper  # type: ignore[return-value]

    return decorator
