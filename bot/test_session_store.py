"""Tests for the chat session store."""

from bot.session_store import SessionStore


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


class TestSessionStore:
    """Scratch data and idle expiry."""

    def setup_method(self):
        self.clock = FakeClock()
        self.store = SessionStore(idle_timeout_ms=1000, clock=self.clock)

    def test_set_merges(self):
        self.store.set(1, {"a": 1})
        self.store.set(1, {"b": 2})
        assert self.store.get(1) == {"a": 1, "b": 2}

    def test_get_returns_copy(self):
        self.store.set(1, {"a": 1})
        data = self.store.get(1)
        data["a"] = 99
        assert self.store.get(1) == {"a": 1}

    def test_chats_are_isolated(self):
        self.store.set(1, {"a": 1})
        assert self.store.get(2) == {}

    def test_pop_and_clear(self):
        self.store.set(1, {"a": 1, "b": 2, "c": 3})
        self.store.pop(1, "a", "missing")
        assert self.store.get(1) == {"b": 2, "c": 3}
        self.store.clear(1)
        assert self.store.get(1) == {}

    def test_idle_session_cleared_on_read(self):
        self.store.set(1, {"a": 1})
        self.store.set_active_flow(1, "flow")
        self.clock.now += 1.5
        assert self.store.active_flow(1) is None
        assert self.store.get(1) == {}

    def test_activity_restarts_clock(self):
        self.store.set(1, {"a": 1})
        self.clock.now += 0.8
        self.store.touch(1)
        self.clock.now += 0.8
        assert self.store.get(1) == {"a": 1}

    def test_touch_reports_expiry(self):
        self.store.set(1, {"a": 1})
        self.clock.now += 2
        assert self.store.touch(1) is True
        assert self.store.touch(1) is False

    def test_no_timeout(self):
        store = SessionStore(idle_timeout_ms=None, clock=self.clock)
        store.set(1, {"a": 1})
        self.clock.now += 10_000
        assert store.get(1) == {"a": 1}

    def test_flow_timeout_only_while_active(self):
        self.store.set_active_flow(1, "long", idle_timeout_ms=60_000)
        self.clock.now += 30
        assert self.store.active_flow(1) == "long"
        self.store.set_active_flow(1, None)
        self.store.set(1, {"a": 1})
        self.clock.now += 2
        assert self.store.get(1) == {}

    def test_sweep(self):
        self.store.set(1, {"a": 1})
        self.store.set(2, {"b": 1})
        self.clock.now += 0.5
        self.store.touch(2)
        self.clock.now += 0.7
        assert self.store.sweep() == 1
        assert len(self.store) == 1
        assert self.store.get(2) == {"b": 1}
