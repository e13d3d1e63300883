"""Tests for the session store."""

import asyncio
from threading import Thread

import pytest

from apiscope.core.config import Settings
from apiscope.models.capture import ApiRecord, WebSocketConnection, WebSocketFrame
from apiscope.store.session_store import SessionStore

MINUTE_MS = 60_000
TTL_MS = 3_600_000


class FakeClock:
    """Epoch-milliseconds clock advanced by hand."""

    def __init__(self, start: float = 1_700_000_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, ms: float) -> None:
        self.now += ms


def record(record_id: int = 1, url: str = "https://example.com/api/items") -> ApiRecord:
    return ApiRecord(id=record_id, url=url, method="GET", resource_type="fetch", matched_rule="resource_type")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return SessionStore(ttl_ms=TTL_MS, max_sessions=100, cleanup_interval_ms=15 * MINUTE_MS, clock=clock)


class TestPutAndGet:
    """Test cases for put and get."""

    def test_put_then_get(self, store):
        """Test a stored session can be read back."""
        store.put("s1", "https://example.com", [record(1), record(2)])

        view = store.get("s1")

        assert view.id == "s1"
        assert view.url == "https://example.com"
        assert [r.id for r in view.api_records] == [1, 2]
        assert view.access_count == 1
        assert view.metadata.access_count == 1

    def test_missing_session(self, store):
        """Test an unknown id returns None."""
        assert store.get("nope") is None

    def test_get_updates_access_tracking(self, store, clock):
        """Test each read bumps the count and last access time."""
        store.put("s1", "https://example.com", [])
        clock.advance(5 * MINUTE_MS)

        store.get("s1")
        view = store.get("s1")

        assert view.access_count == 2
        assert view.last_accessed_at == clock.now
        assert view.created_at == clock.now - 5 * MINUTE_MS

    def test_metadata(self, store, clock):
        """Test age and time-to-expiry metadata in minutes."""
        store.put("s1", "https://example.com", [])
        clock.advance(20 * MINUTE_MS)

        view = store.get("s1")

        assert view.metadata.age_minutes == 20
        assert view.metadata.time_until_expiration_minutes == 40

    def test_views_are_copies(self, store):
        """Test mutating a view or the input list does not change the stored session."""
        records = [record(1)]
        store.put("s1", "https://example.com", records)
        records.append(record(2))

        view = store.get("s1")
        view.api_records[0].url = "https://changed.example.com"

        again = store.get("s1")
        assert len(again.api_records) == 1
        assert again.api_records[0].url == "https://example.com/api/items"

    def test_web_sockets_are_stored(self, store):
        """Test WebSocket connections are kept with the session and copied out."""
        socket = WebSocketConnection(
            id=1,
            url="wss://example.com/live",
            frames=[WebSocketFrame(direction="sent", data="ping")],
        )
        store.put("s1", "https://example.com", [], [socket])
        socket.status = "closed"

        view = store.get("s1")
        view.web_sockets[0].frames.clear()

        again = store.get("s1")
        assert again.web_sockets[0].status == "connected"
        assert [f.data for f in again.web_sockets[0].frames] == ["ping"]

    def test_web_sockets_default_empty(self, store):
        """Test sessions stored without sockets report an empty list."""
        store.put("s1", "https://example.com", [record(1)])

        assert store.get("s1").web_sockets == []

    def test_put_replaces_same_id(self, store):
        """Test re-storing an id replaces the session."""
        store.put("s1", "https://a.example.com", [])
        store.put("s1", "https://b.example.com", [])

        assert len(store) == 1
        assert store.get("s1").url == "https://b.example.com"


class TestExpiry:
    """Test cases for TTL expiry."""

    def test_expired_on_read(self, store, clock):
        """Test a session one millisecond past the TTL is gone."""
        store.put("s1", "https://example.com", [])
        clock.advance(TTL_MS + 1)

        assert store.get("s1") is None
        assert "s1" not in store

    def test_exactly_at_ttl_is_still_valid(self, store, clock):
        """Test the TTL boundary is inclusive."""
        store.put("s1", "https://example.com", [])
        clock.advance(TTL_MS)

        assert store.get("s1") is not None

    def test_access_does_not_extend_ttl(self, store, clock):
        """Test TTL is measured from creation, not last access."""
        store.put("s1", "https://example.com", [])
        clock.advance(TTL_MS - MINUTE_MS)
        store.get("s1")
        clock.advance(2 * MINUTE_MS)

        assert store.get("s1") is None

    def test_sweep_expired(self, store, clock):
        """Test the sweep removes only expired sessions."""
        store.put("old", "https://example.com/old", [])
        clock.advance(50 * MINUTE_MS)
        store.put("new", "https://example.com/new", [])
        clock.advance(11 * MINUTE_MS)

        stats = store.sweep_expired()

        assert stats.removed == 1
        assert stats.remaining == 1
        assert stats.oldest_session_age_minutes == 11
        assert stats.reason == "ttl"
        assert "new" in store


class TestSizeLimit:
    """Test cases for LRU eviction."""

    def test_bound_holds_after_every_put(self, clock):
        """Test 150 inserts leave the 100 most recent."""
        store = SessionStore(max_sessions=100, clock=clock)

        for i in range(150):
            store.put(f"s{i}", "https://example.com", [])
            clock.advance(1)
            assert len(store) <= 100

        assert len(store) == 100
        assert "s49" not in store
        assert "s50" in store
        assert "s149" in store

    def test_recently_read_sessions_survive(self, clock):
        """Test eviction uses last access, not creation time."""
        store = SessionStore(max_sessions=2, clock=clock)
        store.put("a", "https://example.com/a", [])
        clock.advance(1)
        store.put("b", "https://example.com/b", [])
        clock.advance(1)
        store.get("a")
        clock.advance(1)

        store.put("c", "https://example.com/c", [])

        assert "a" in store
        assert "b" not in store
        assert "c" in store

    def test_enforce_within_limit(self, store):
        """Test enforcing when nothing needs evicting."""
        store.put("s1", "https://example.com", [])

        stats = store.enforce_size_limit()

        assert stats.evicted == 0
        assert stats.reason == "within_limit"


class TestCleanup:
    """Test cases for manual cleanup."""

    def test_force(self, store):
        """Test force removes everything."""
        for i in range(3):
            store.put(f"s{i}", "https://example.com", [])

        stats = store.cleanup(force=True)

        assert stats.removed == 3
        assert stats.remaining == 0
        assert stats.reason == "force_cleanup"
        assert len(store) == 0

    def test_max_age(self, store, clock):
        """Test max_age removes sessions older than the given minutes."""
        store.put("old", "https://example.com/old", [])
        clock.advance(30 * MINUTE_MS)
        store.put("new", "https://example.com/new", [])
        clock.advance(MINUTE_MS)

        stats = store.cleanup(max_age_minutes=10)

        assert stats.removed == 1
        assert stats.remaining == 1
        assert stats.reason == "manual"
        assert "new" in store

    def test_plain_cleanup_runs_ttl_sweep(self, store, clock):
        """Test cleanup without options applies the TTL."""
        store.put("s1", "https://example.com", [])
        clock.advance(TTL_MS + 1)

        assert store.cleanup().removed == 1


class TestStats:
    """Test cases for store statistics."""

    def test_empty(self, store):
        """Test stats of an empty store."""
        stats = store.stats()

        assert stats.total_sessions == 0
        assert stats.max_sessions == 100
        assert stats.utilization_percent == 0
        assert stats.session_ttl_hours == 1
        assert stats.next_cleanup_in_minutes == 15

    def test_ages_and_access(self, store, clock):
        """Test ages in minutes and total access count."""
        store.put("a", "https://example.com/a", [])
        clock.advance(10 * MINUTE_MS)
        store.put("b", "https://example.com/b", [])
        store.get("a")
        store.get("b")
        store.get("b")

        stats = store.stats()

        assert stats.total_sessions == 2
        assert stats.utilization_percent == 2
        assert stats.oldest_session_age == 10
        assert stats.newest_session_age == 0
        assert stats.average_session_age == 5
        assert stats.total_access_count == 3
        assert stats.next_cleanup_in_minutes == 5


class TestConcurrency:
    """Test cases for concurrent access."""

    def test_concurrent_puts_respect_bound(self):
        """Test the size bound under threads."""
        store = SessionStore(max_sessions=20)

        def writer(prefix: str) -> None:
            for i in range(100):
                store.put(f"{prefix}-{i}", "https://example.com", [])
                store.get(f"{prefix}-{i // 2}")

        threads = [Thread(target=writer, args=(f"t{n}",)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(store) == 20


class TestLifecycle:
    """Test cases for start/stop."""

    def test_from_settings(self):
        """Test building a store from settings."""
        settings = Settings(_env_file=None, MAX_SESSIONS=7, SESSION_TTL_MS=1000)

        store = SessionStore.from_settings(settings)

        assert store.max_sessions == 7
        assert store.ttl_ms == 1000

    async def test_start_runs_initial_sweep(self, clock):
        """Test start sweeps expired sessions immediately."""
        store = SessionStore(ttl_ms=1000, clock=clock)
        store.put("s1", "https://example.com", [])
        clock.advance(1001)

        async with store:
            assert len(store) == 0

    async def test_background_sweep(self):
        """Test the periodic sweep removes expired sessions."""
        clock = FakeClock()
        store = SessionStore(ttl_ms=1000, cleanup_interval_ms=10, clock=clock)

        await store.start()
        try:
            store.put("s1", "https://example.com", [])
            clock.advance(1001)
            for _ in range(50):
                await asyncio.sleep(0.01)
                if len(store._sessions) == 0:
                    break
            assert len(store._sessions) == 0
        finally:
            await store.stop()

    async def test_stop_is_idempotent(self):
        """Test stopping twice, or without starting, is harmless."""
        store = SessionStore()

        await store.stop()
        await store.start()
        await store.stop()
        await store.stop()
