"""Tests for SessionStore."""

from __future__ import annotations

from riglm.proxy.session import DEFAULT_SESSION, SessionStore


class Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


class TestSessionStore:
    def test_unknown_session_is_empty(self):
        store = SessionStore()
        assert store.get_context(DEFAULT_SESSION) is None
        assert store.get_retrieved_tools(DEFAULT_SESSION) is None
        assert store.get_last_search(DEFAULT_SESSION) is None
        assert len(store) == 0

    def test_most_recent_context_wins(self):
        store = SessionStore()
        store.set_context("s", "first")
        store.set_context("s", "second", intent="code-review")
        ctx = store.get_context("s")
        assert ctx.query == "second"
        assert ctx.intent == "code-review"

    def test_context_is_per_session(self):
        store = SessionStore()
        store.set_context("a", "alpha")
        store.set_context("b", "beta")
        assert store.get_context("a").query == "alpha"
        assert store.get_context("b").query == "beta"

    def test_retrieved_and_search(self):
        store = SessionStore()
        store.set_retrieved_tools("s", ["x__a", "x__b"])
        store.set_last_search("s", "a", ["x__a"])
        assert store.get_retrieved_tools("s") == ("x__a", "x__b")
        search = store.get_last_search("s")
        assert search.query == "a"
        assert search.results == ("x__a",)

    def test_tool_calls_capture_context(self):
        clock = Clock()
        store = SessionStore(clock=clock)
        store.record_tool_call("s", "x__a")
        store.set_context("s", "query")
        clock.now += 5
        record = store.record_tool_call("s", "x__b")
        assert record.context_query == "query"
        assert record.timestamp == 1005.0
        assert [r.tool_name for r in store.get_session("s").tool_calls] == ["x__a", "x__b"]

    def test_history_is_bounded(self):
        store = SessionStore(max_history=3)
        for i in range(10):
            store.record_tool_call("s", f"x__{i}")
        assert [r.tool_name for r in store.get_session("s").tool_calls] == [
            "x__7",
            "x__8",
            "x__9",
        ]


class TestEviction:
    def test_no_ttl_never_evicts(self):
        clock = Clock()
        store = SessionStore(clock=clock)
        store.set_context("s", "q")
        clock.now += 10**9
        assert store.evict_idle() == 0
        assert len(store) == 1

    def test_idle_sessions_evicted(self):
        clock = Clock()
        store = SessionStore(idle_ttl_seconds=60, clock=clock)
        store.set_context("old", "q")
        clock.now += 50
        store.set_context("fresh", "q")
        clock.now += 20

        assert store.evict_idle() == 1
        assert store.get_context("old") is None
        assert store.get_context("fresh") is not None

    def test_activity_keeps_session_alive(self):
        clock = Clock()
        store = SessionStore(idle_ttl_seconds=60, clock=clock)
        store.set_context("s", "q")
        clock.now += 50
        store.record_tool_call("s", "x__a")
        clock.now += 50
        assert store.evict_idle() == 0
