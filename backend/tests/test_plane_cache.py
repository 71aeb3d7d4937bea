"""Tests for the session-scoped cache."""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from services.plane_cache import DEFAULT_TTLS, CacheService, CacheStore, SessionRegistry
from services.plane_errors import UpstreamError


@pytest.fixture
def sessions():
    return SessionRegistry(clock=lambda: 1700000000.123)


@pytest.fixture
def store(sessions, fake_clock):
    return CacheStore("work_items", 300, sessions, clock=fake_clock)


class TestSessionRegistry:
    """Test session tokens."""

    def test_default_token_before_any_session(self, sessions):
        """A default session is current until one is started."""
        assert sessions.current_token() == "default:0"
        assert sessions.is_current("default:0")

    def test_token_format(self, sessions):
        """Tokens carry scope, counter and creation time in milliseconds."""
        token = sessions.start_session("proj-1")
        assert token == "proj-1:1:1700000000123"
        assert sessions.current_token() == token

    def test_same_scope_same_millisecond_gets_distinct_tokens(self, sessions):
        """Two sessions never share a token."""
        first = sessions.start_session("proj-1")
        second = sessions.start_session("proj-1")
        assert first != second
        assert not sessions.is_current(first)
        assert sessions.is_current(second)

    def test_describe(self, sessions):
        sessions.start_session("proj-9")
        described = sessions.describe()
        assert described["scopeId"] == "proj-9"
        assert described["token"].startswith("proj-9:")


class TestCacheStoreBasics:
    """Test get/set, TTL and session checks."""

    def test_missing_key_returns_none(self, store):
        assert store.get("nope") is None

    def test_set_then_get(self, store):
        store.set("k", [1, 2])
        assert store.get("k") == [1, 2]

    def test_entry_valid_just_before_ttl(self, store, fake_clock):
        store.set("k", "v")
        fake_clock.advance(299.9)
        assert store.get("k") == "v"

    def test_entry_expires_at_ttl(self, store, fake_clock):
        """An entry written ttl seconds ago is a miss."""
        store.set("k", "v")
        fake_clock.advance(300)
        assert store.get("k") is None
        assert store.stats()["entries"] == 0

    def test_new_session_invalidates_entries(self, store, sessions):
        """Entries written under another session are never returned."""
        sessions.start_session("proj-1")
        store.set("k", "first run")
        sessions.start_session("proj-1")
        assert store.get("k") is None

    def test_session_check_applies_within_ttl(self, store, sessions, fake_clock):
        sessions.start_session("a")
        store.set("k", "v")
        fake_clock.advance(1)
        sessions.start_session("b")
        assert store.get("k") is None

    def test_clear_key(self, store):
        store.set("a", 1)
        store.set("b", 2)
        store.clear_key("a")
        assert store.get("a") is None
        assert store.get("b") == 2

    def test_clear(self, store):
        store.set("a", 1)
        store.clear()
        assert store.get("a") is None


class TestGetOrFetch:
    """Test in-flight deduplication."""

    def test_fetches_once_then_serves_cache(self, store):
        calls = []

        def fetch():
            calls.append(1)
            return "value"

        assert store.get_or_fetch("k", fetch) == "value"
        assert store.get_or_fetch("k", fetch) == "value"
        assert len(calls) == 1

    def test_concurrent_callers_share_one_fetch(self, store):
        """N threads asking for the same key cause exactly one upstream call."""
        started = threading.Event()
        release = threading.Event()
        calls = []

        def slow_fetch():
            calls.append(1)
            started.set()
            release.wait(5)
            return {"items": 3}

        with ThreadPoolExecutor(max_workers=8) as executor:
            futures = [executor.submit(store.get_or_fetch, "k", slow_fetch) for _ in range(8)]
            started.wait(5)
            release.set()
            results = [f.result(timeout=5) for f in futures]

        assert len(calls) == 1
        assert all(r == {"items": 3} for r in results)

    def test_failure_reaches_waiters_and_is_not_cached(self, store, caplog):
        """A caller parked on an in-flight fetch receives that fetch's error."""
        caplog.set_level(logging.DEBUG, logger="services.plane_cache")
        started = threading.Event()
        release = threading.Event()

        def failing_fetch():
            started.set()
            release.wait(5)
            raise UpstreamError("boom", status_code=500)

        def waiter_parked():
            return any("Waiting for in-flight request for key: k" in m for m in caplog.messages)

        with ThreadPoolExecutor(max_workers=2) as executor:
            owner = executor.submit(store.get_or_fetch, "k", failing_fetch)
            assert started.wait(5)
            waiter = executor.submit(store.get_or_fetch, "k", lambda: "unused")

            deadline = time.monotonic() + 5
            while not waiter_parked() and time.monotonic() < deadline:
                time.sleep(0.01)
            assert waiter_parked()
            release.set()

            with pytest.raises(UpstreamError):
                owner.result(timeout=5)
            with pytest.raises(UpstreamError):
                waiter.result(timeout=5)

        assert store.stats()["inFlight"] == 0
        assert store.get_or_fetch("k", lambda: "recovered") == "recovered"

    def test_interrupted_fetch_settles_waiters(self, store):
        """A fetch stopped by a non-Exception error still clears its in-flight marker."""
        class Interrupted(BaseException):
            pass

        def interrupted():
            raise Interrupted()

        with pytest.raises(Interrupted):
            store.get_or_fetch("k", interrupted)

        assert store.stats()["inFlight"] == 0
        assert store.get_or_fetch("k", lambda: "ok") == "ok"

    def test_failed_fetch_is_retried_by_next_call(self, store):
        def failing():
            raise UpstreamError("boom")

        with pytest.raises(UpstreamError):
            store.get_or_fetch("k", failing)
        assert store.get_or_fetch("k", lambda: "ok") == "ok"

    def test_clear_during_fetch_discards_result(self, store):
        """A fetch in flight when the store is cleared still answers but is not cached."""
        started = threading.Event()
        release = threading.Event()

        def slow_fetch():
            started.set()
            release.wait(5)
            return "old"

        with ThreadPoolExecutor(max_workers=1) as executor:
            future = executor.submit(store.get_or_fetch, "k", slow_fetch)
            started.wait(5)
            store.clear()
            release.set()
            assert future.result(timeout=5) == "old"

        assert store.get("k") is None

    def test_value_stamped_with_session_current_at_write(self, store, sessions):
        """Starting a session mid-fetch stamps the result with the new token."""
        started = threading.Event()
        release = threading.Event()

        def slow_fetch():
            started.set()
            release.wait(5)
            return "v"

        with ThreadPoolExecutor(max_workers=1) as executor:
            future = executor.submit(store.get_or_fetch, "k", slow_fetch)
            started.wait(5)
            sessions.start_session("new")
            release.set()
            future.result(timeout=5)

        assert store.get("k") == "v"


class TestCacheService:
    """Test the store bundle."""

    def test_default_ttls(self):
        cache = CacheService()
        assert cache.projects.ttl == 300
        assert cache.users.ttl == 1800
        assert cache.cycles.ttl == 600
        assert set(cache.stats()["stores"]) == set(DEFAULT_TTLS)

    def test_ttl_overrides(self):
        cache = CacheService(ttls={"projects": 60})
        assert cache.projects.ttl == 60
        assert cache.work_items.ttl == 300

    def test_clear_activity_caches_keeps_other_stores(self):
        cache = CacheService()
        cache.projects.set("all_projects", ["p"])
        cache.activities.set("item:1", ["a"])
        cache.comments.set("comments:1", ["c"])
        cache.subitems.set("subitems:1", ["s"])

        cache.clear_activity_caches()

        assert cache.projects.get("all_projects") == ["p"]
        assert cache.activities.get("item:1") is None
        assert cache.comments.get("comments:1") is None
        assert cache.subitems.get("subitems:1") is None

    def test_clear_all(self):
        cache = CacheService()
        cache.projects.set("all_projects", ["p"])
        cache.clear_all()
        assert cache.projects.get("all_projects") is None

    def test_start_session_shared_by_stores(self):
        cache = CacheService()
        cache.users.set("user_table", {"u": "U"})
        token = cache.start_session("proj-1")
        assert cache.current_token() == token
        assert cache.users.get("user_table") is None

    def test_stats_shape(self):
        cache = CacheService()
        cache.cycles.set("cycles:p", [])
        stats = cache.stats()
        assert stats["session"]["token"] == "default:0"
        assert stats["stores"]["cycles"] == {"ttlSeconds": 600, "entries": 1, "inFlight": 0}
