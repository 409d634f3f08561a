"""Per-session state: stated intent, last ranked set, last explicit search.

All of it is transient. Sessions are created on first write and, when
an idle TTL is configured, evicted by the proxy's maintenance task.
"""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable

DEFAULT_SESSION = "default"


@dataclass(frozen=True)
class SessionContext:
    query: str
    intent: str | None = None
    observed_at: float = 0.0


@dataclass(frozen=True)
class ToolCallRecord:
    tool_name: str
    timestamp: float
    context_query: str | None = None


@dataclass(frozen=True)
class SearchRecord:
    query: str
    results: tuple[str, ...]


@dataclass
class Session:
    id: str
    context: SessionContext | None = None
    retrieved_tools: tuple[str, ...] | None = None
    last_search: SearchRecord | None = None
    tool_calls: deque[ToolCallRecord] = field(default_factory=deque)
    last_seen: float = 0.0


class SessionStore:
    """In-memory sessions keyed by id. Most recent write wins.

    Args:
        idle_ttl_seconds: Sessions untouched for longer are dropped by
            evict_idle(). None keeps sessions forever.
        max_history: Tool-call records kept per session.
    """

    def __init__(
        self,
        idle_ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.time,
        max_history: int = 200,
    ) -> None:
        self._sessions: dict[str, Session] = {}
        self._idle_ttl = idle_ttl_seconds
        self._clock = clock
        self._max_history = max_history

    def _touch(self, session_id: str) -> Session:
        session = self._sessions.get(session_id)
        if session is None:
            session = Session(id=session_id, tool_calls=deque(maxlen=self._max_history))
            self._sessions[session_id] = session
        session.last_seen = self._clock()
        return session

    def set_context(self, session_id: str, query: str, intent: str | None = None) -> SessionContext:
        session = self._touch(session_id)
        session.context = SessionContext(query=query, intent=intent, observed_at=self._clock())
        return session.context

    def get_context(self, session_id: str) -> SessionContext | None:
        session = self._sessions.get(session_id)
        return session.context if session else None

    def set_retrieved_tools(self, session_id: str, names: list[str]) -> None:
        self._touch(session_id).retrieved_tools = tuple(names)

    def get_retrieved_tools(self, session_id: str) -> tuple[str, ...] | None:
        session = self._sessions.get(session_id)
        return session.retrieved_tools if session else None

    def set_last_search(self, session_id: str, query: str, results: list[str]) -> None:
        self._touch(session_id).last_search = SearchRecord(query=query, results=tuple(results))

    def get_last_search(self, session_id: str) -> SearchRecord | None:
        session = self._sessions.get(session_id)
        return session.last_search if session else None

    def record_tool_call(self, session_id: str, tool_name: str) -> ToolCallRecord:
        session = self._touch(session_id)
        record = ToolCallRecord(
            tool_name=tool_name,
            timestamp=self._clock(),
            context_query=session.context.query if session.context else None,
        )
        session.tool_calls.append(record)
        return record

    def get_session(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def evict_idle(self) -> int:
        """Drop sessions idle past the TTL. Returns sessions removed."""
        if self._idle_ttl is None:
            return 0
        cutoff = self._clock() - self._idle_ttl
        stale = [sid for sid, s in self._sessions.items() if s.last_seen < cutoff]
        for sid in stale:
            del self._sessions[sid]
        return len(stale)

    def __len__(self) -> int:
        return len(self._sessions)
