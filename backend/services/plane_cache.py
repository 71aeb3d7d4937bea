"""In-memory caching for Plane API data.

Every cached value is stamped with the reporting session that was current
when it was written. A read only hits when the entry is inside its TTL *and*
belongs to the current session, so two reporting runs a minute apart never
share data while the many lookups inside one run are served from memory.
"""

import itertools
import logging
import threading
import time
from concurrent.futures import Future
from typing import Callable, Optional

logger = logging.getLogger(__name__)

# TTLs in seconds. Members and cycles change slowly, per-item data does not.
DEFAULT_TTLS = {
    "projects": 5 * 60,
    "users": 30 * 60,
    "members": 30 * 60,
    "work_items": 5 * 60,
    "activities": 5 * 60,
    "comments": 5 * 60,
    "subitems": 5 * 60,
    "cycles": 10 * 60,
}

ACTIVITY_STORES = ("activities", "comments", "subitems")

_MISSING = object()


class SessionRegistry:
    """Holds the single "current" reporting session token."""

    DEFAULT_TOKEN = "default:0"

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._counter = itertools.count(1)
        self._token = self.DEFAULT_TOKEN
        self._scope_id = None
        self._created_at = None

    def start_session(self, scope_id) -> str:
        """Start a new session for ``scope_id`` and make it current.

        The counter guarantees the token differs from every previous one,
        even for the same scope started twice within the same millisecond.
        """
        with self._lock:
            created_at = self._clock()
            token = f"{scope_id}:{next(self._counter)}:{int(created_at * 1000)}"
            self._token = token
            self._scope_id = scope_id
            self._created_at = created_at
        logger.info(f"Started cache session {token}")
        return token

    def current_token(self) -> str:
        with self._lock:
            return self._token

    def is_current(self, token: str) -> bool:
        with self._lock:
            return token == self._token

    def describe(self) -> dict:
        with self._lock:
            return {
                "token": self._token,
                "scopeId": self._scope_id,
                "createdAt": self._created_at,
            }


class _CacheEntry:
    __slots__ = ("value", "written_at", "session_token")

    def __init__(self, value, written_at: float, session_token: str):
        self.value = value
        self.written_at = written_at
        self.session_token = session_token


class CacheStore:
    """Key/value store with one TTL, session scoping and in-flight dedup."""

    def __init__(self, name: str, ttl: float, sessions: SessionRegistry,
                 clock: Callable[[], float] = time.monotonic):
        self.name = name
        self.ttl = ttl
        self._sessions = sessions
        self._clock = clock
        self._lock = threading.Lock()
        self._entries = {}
        self._pending = {}
        # Bumped by clear(); fetches started before a clear never write back.
        self._generation = 0

    def _lookup(self, key):
        """Return the live value for ``key`` or ``_MISSING``. Caller holds the lock."""
        entry = self._entries.get(key)
        if entry is None:
            return _MISSING

        if not self._sessions.is_current(entry.session_token):
            del self._entries[key]
            logger.debug(f"[{self.name}] Stale session for key: {key}")
            return _MISSING

        if self._clock() - entry.written_at >= self.ttl:
            del self._entries[key]
            logger.debug(f"[{self.name}] Cache expired for key: {key}")
            return _MISSING

        return entry.value

    def _write(self, key, value):
        """Store ``value``, stamped with the session current right now."""
        self._entries[key] = _CacheEntry(
            value, self._clock(), self._sessions.current_token()
        )

    def get(self, key):
        """Return the cached value, or None when missing, expired or from another session."""
        with self._lock:
            value = self._lookup(key)
        if value is _MISSING:
            return None
        logger.debug(f"[{self.name}] Cache hit for key: {key}")
        return value

    def set(self, key, value):
        with self._lock:
            self._write(key, value)
        logger.debug(f"[{self.name}] Cached data for key: {key}")

    def get_or_fetch(self, key, fetch_fn: Callable):
        """Return the cached value or fetch it, at most once per key at a time.

        Concurrent callers for the same uncached key wait on the first
        caller's fetch and receive its result (or its exception). The
        in-flight marker is dropped once the fetch settles, so a failed
        fetch can be retried by a later call.
        """
        with self._lock:
            value = self._lookup(key)
            if value is not _MISSING:
                logger.debug(f"[{self.name}] Cache hit for key: {key}")
                return value

            future = self._pending.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._pending[key] = future
                generation = self._generation

        if not owner:
            logger.debug(f"[{self.name}] Waiting for in-flight request for key: {key}")
            return future.result()

        logger.debug(f"[{self.name}] Fetching fresh data for key: {key}")
        try:
            value = fetch_fn()
        except BaseException as e:
            # Waiters must never be left on an unsettled Future.
            with self._lock:
                if self._pending.get(key) is future:
                    del self._pending[key]
            future.set_exception(e)
            raise

        with self._lock:
            if generation == self._generation:
                self._write(key, value)
            else:
                logger.debug(f"[{self.name}] Discarding result for cleared key: {key}")
            if self._pending.get(key) is future:
                del self._pending[key]
        future.set_result(value)
        return value

    def clear(self):
        with self._lock:
            self._entries.clear()
            self._pending.clear()
            self._generation += 1
        logger.debug(f"[{self.name}] Cache cleared")

    def clear_key(self, key):
        with self._lock:
            self._entries.pop(key, None)
        logger.debug(f"[{self.name}] Cache cleared for key: {key}")

    def stats(self) -> dict:
        with self._lock:
            return {
                "ttlSeconds": self.ttl,
                "entries": len(self._entries),
                "inFlight": len(self._pending),
            }


class CacheService:
    """All per-resource stores plus the session registry they share.

    Built once per application and handed to the fetchers and the
    orchestrator; tests build their own isolated instances.
    """

    def __init__(self, ttls: Optional[dict] = None,
                 clock: Callable[[], float] = time.monotonic,
                 sessions: Optional[SessionRegistry] = None):
        self.sessions = sessions or SessionRegistry()
        effective = dict(DEFAULT_TTLS)
        effective.update(ttls or {})
        self._stores = {
            name: CacheStore(name, ttl, self.sessions, clock)
            for name, ttl in effective.items()
        }
        self.projects = self._stores["projects"]
        self.users = self._stores["users"]
        self.members = self._stores["members"]
        self.work_items = self._stores["work_items"]
        self.activities = self._stores["activities"]
        self.comments = self._stores["comments"]
        self.subitems = self._stores["subitems"]
        self.cycles = self._stores["cycles"]

    def store(self, name: str) -> CacheStore:
        return self._stores[name]

    def start_session(self, scope_id) -> str:
        return self.sessions.start_session(scope_id)

    def current_token(self) -> str:
        return self.sessions.current_token()

    def clear_activity_caches(self):
        """Drop per-item activity data so the next run fetches it fresh."""
        for name in ACTIVITY_STORES:
            self._stores[name].clear()
        logger.debug("Cleared activity caches for fresh data fetch")

    def clear_all(self):
        for cache_store in self._stores.values():
            cache_store.clear()
        logger.info("All caches cleared")

    def stats(self) -> dict:
        return {
            "session": self.sessions.describe(),
            "stores": {name: s.stats() for name, s in self._stores.items()},
        }
