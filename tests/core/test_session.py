"""
Tests for the in-memory session store.
"""

from __future__ import annotations

from oidc_login.core.session import MemorySession, Session, SessionStore


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_memory_session_satisfies_protocol():
    session = MemorySession()

    assert isinstance(session, Session)
    session.set_attr("user", "alice")
    assert session.attr("user") == "alice"
    session.set_attr("user", None)
    assert session.attr("user", "gone") == "gone"


def test_get_or_create_reuses_known_sessions():
    store = SessionStore()

    session, created = store.get_or_create(None)
    again, created_again = store.get_or_create(session.id)

    assert created is True
    assert created_again is False
    assert again is session
    assert len(store) == 1


def test_unknown_id_creates_a_new_session():
    store = SessionStore()

    session, created = store.get_or_create("forged-id")

    assert created is True
    assert session.id != "forged-id"


def test_idle_session_expires_on_lookup():
    clock = FakeClock()
    store = SessionStore(idle_ttl_seconds=60, clock=clock)
    session = store.create()

    clock.now += 61

    assert store.get(session.id) is None
    assert len(store) == 0


def test_lookup_keeps_session_alive():
    clock = FakeClock()
    store = SessionStore(idle_ttl_seconds=60, clock=clock)
    session = store.create()

    for _ in range(5):
        clock.now += 50
        assert store.get(session.id) is session


def test_sweep_drops_only_idle_sessions():
    clock = FakeClock()
    store = SessionStore(idle_ttl_seconds=60, clock=clock)
    idle = [store.create() for _ in range(200)]
    clock.now += 30
    active = store.create()
    clock.now += 31

    assert store.sweep() == 200
    assert len(store) == 1
    assert store.get(active.id) is active
    assert store.get(idle[0].id) is None


def test_zero_ttl_keeps_sessions_forever():
    clock = FakeClock()
    store = SessionStore(idle_ttl_seconds=0, clock=clock)
    session = store.create()

    clock.now += 10**9

    assert store.sweep() == 0
    assert store.get(session.id) is session
