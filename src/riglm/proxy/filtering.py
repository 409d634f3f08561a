"""Filtering decisions: which tools a session sees, and how hard a call teaches.

tools/list:
    no context or no retriever   -> full catalog
    confidence < cold start      -> full catalog
    otherwise                    -> retriever ranking, mapped back to the registry
    ranking fails or times out   -> full catalog ("degraded")

tools/call, once a context is set:
    tool was in the last explicit search  -> SEARCH_SIGNAL (1.5)
    tool was in the last ranked set       -> RANKED_SIGNAL (1.0)
    otherwise                             -> DISCOVERY_SIGNAL (0.5)
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from mcp import types

from riglm.learning.retriever import DEFAULT_TOP_K, ToolRetriever
from riglm.observe.logging import get_logger
from riglm.proxy.registry import ToolRegistry
from riglm.proxy.session import SessionStore

logger = get_logger(__name__)

DISCOVERY_SIGNAL = 0.5
RANKED_SIGNAL = 1.0
SEARCH_SIGNAL = 1.5


@dataclass(frozen=True)
class ToolSelection:
    """Upstream tools to expose for one tools/list. Meta-tools are not included."""

    tools: list[types.Tool]
    filtered: bool
    reason: str  # "no_context" | "no_retriever" | "cold_start" | "filtered" | "degraded" | "empty_ranking"
    confidence: float | None = None


@dataclass(frozen=True)
class PendingLearning:
    """A learning signal decided at call time, applied later."""

    query: str
    tool_name: str
    signal: float


class ToolFilter:
    def __init__(
        self,
        registry: ToolRegistry,
        sessions: SessionStore,
        retriever: ToolRetriever | None = None,
        top_k: int = DEFAULT_TOP_K,
        timeout: float | None = None,
    ) -> None:
        self._registry = registry
        self._sessions = sessions
        self._retriever = retriever
        self._top_k = top_k
        self._timeout = timeout

    @property
    def retriever(self) -> ToolRetriever | None:
        return self._retriever

    def _full(self, reason: str, confidence: float | None = None) -> ToolSelection:
        return ToolSelection(
            tools=self._registry.get_all_tools(),
            filtered=False,
            reason=reason,
            confidence=confidence,
        )

    async def select_tools(self, session_id: str) -> ToolSelection:
        context = self._sessions.get_context(session_id)
        if context is None:
            return self._full("no_context")
        if self._retriever is None:
            return self._full("no_retriever")

        try:
            async with asyncio.timeout(self._timeout):
                confidence = await self._retriever.context_confidence(context.query)
                if confidence < self._retriever.cold_start_threshold:
                    return self._full("cold_start", confidence)
                names = await self._retriever.retrieve(context.query, self._top_k)
        except TimeoutError:
            logger.warning("filtering.timeout", session=session_id, timeout=self._timeout)
            return self._full("degraded")
        except Exception as exc:
            # Relevance unknown: show everything rather than fail the request
            logger.warning("filtering.degraded", session=session_id, error=str(exc), exc_info=True)
            return self._full("degraded")

        tools = []
        for name in names:
            entry = self._registry.get_entry(name)
            if entry is not None:
                tools.append(entry.definition)
        self._sessions.set_retrieved_tools(session_id, names)

        if not tools:
            return self._full("empty_ranking", confidence)
        return ToolSelection(tools=tools, filtered=True, reason="filtered", confidence=confidence)

    def classify_signal(self, session_id: str, tool_name: str) -> float:
        last_search = self._sessions.get_last_search(session_id)
        if last_search is not None and tool_name in last_search.results:
            return SEARCH_SIGNAL
        retrieved = self._sessions.get_retrieved_tools(session_id)
        if retrieved is not None and tool_name in retrieved:
            return RANKED_SIGNAL
        return DISCOVERY_SIGNAL

    def record_invocation(self, session_id: str, tool_name: str) -> PendingLearning | None:
        """Log the call on the session and decide its learning signal.

        Returns None when nothing should be learned: no retriever, or no
        context to attach the call to.
        """
        self._sessions.record_tool_call(session_id, tool_name)
        if self._retriever is None:
            return None
        context = self._sessions.get_context(session_id)
        if context is None:
            return None
        return PendingLearning(
            query=context.query,
            tool_name=tool_name,
            signal=self.classify_signal(session_id, tool_name),
        )

    async def apply_learning(self, pending: PendingLearning) -> bool:
        """Feed a decided signal to the retriever. Failures are logged, not raised."""
        if self._retriever is None:
            return False
        try:
            await self._retriever.record_learning(pending.query, pending.tool_name, pending.signal)
        except Exception as exc:
            logger.error(
                "learning.failed",
                tool=pending.tool_name,
                signal=pending.signal,
                error=str(exc),
                exc_info=True,
            )
            return False
        return True
