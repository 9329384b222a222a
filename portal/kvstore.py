"""
Key-value store for short-lived security state.

Three pieces of state live here rather than in the database:

  - password reset tokens           ("reset:<sha256>")
  - sliding-window rate-limit hits  ("ratelimit:<bucket>:<ip>")
  - CSRF session tokens             ("csrf:<session id>")

Services depend on the KeyValueStore interface, never on a concrete
class, so the in-process MemoryKeyValueStore can be swapped for a shared
cache (e.g. Redis sorted sets for the windows, WATCH/MULTI for
compare-and-swap) without touching them. The application keeps one
instance on app.state.kv_store.

MemoryKeyValueStore is single-process: state is lost on restart and not
shared between workers. That's acceptable for a single-instance
deployment and is the known scaling limit of this design.
"""

import asyncio
import logging
import time
from typing import Any

log = logging.getLogger(__name__)


class KeyValueStore:
    """Async key-value interface with TTLs and the two atomic primitives the services need."""

    async def get(self, key: str) -> Any | None:
        """Return the value, or None if the key is missing or expired."""
        raise NotImplementedError

    async def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        """Store a value, optionally expiring after ttl seconds."""
        raise NotImplementedError

    async def delete(self, key: str) -> bool:
        """Remove a key. Returns True if it existed."""
        raise NotImplementedError

    async def compare_and_swap(
        self, key: str, expected: Any, new: Any, ttl: float | None = None
    ) -> bool:
        """Replace the value only if it still equals expected. Returns True on success."""
        raise NotImplementedError

    async def hit_window(
        self, key: str, limit: int, window_seconds: float, now: float | None = None
    ) -> tuple[bool, float]:
        """
        Record a hit in a sliding window of window_seconds.

        Hits older than the window are discarded first. If fewer than limit
        hits remain the new one is recorded and (True, 0) is returned;
        otherwise nothing is recorded and (False, seconds until the oldest
        hit leaves the window) is returned.
        """
        raise NotImplementedError

    async def clear(self) -> int:
        raise NotImplementedError


class MemoryKeyValueStore(KeyValueStore):
    """
    In-process implementation. An asyncio.Lock makes each operation atomic.

    Expired keys are dropped when read, and writes sweep the whole map at
    most once every sweep_interval seconds so keys that are never read
    again (one-off CSRF sessions, unused reset tokens, rate-limit windows
    of clients that went away) don't accumulate.
    """

    def __init__(self, sweep_interval: float = 60.0):
        self._store: dict[str, Any] = {}
        self._expiry: dict[str, float] = {}
        self._lock = asyncio.Lock()
        self._sweep_interval = sweep_interval
        self._next_sweep = 0.0

    def __len__(self) -> int:
        return len(self._store)

    def _purge(self, now: float) -> None:
        if now < self._next_sweep:
            return
        self._next_sweep = now + self._sweep_interval
        expired = [key for key, expires in self._expiry.items() if now >= expires]
        for key in expired:
            self._store.pop(key, None)
            del self._expiry[key]
        if expired:
            log.debug("Swept %d expired keys", len(expired))

    def _live(self, key: str, now: float) -> bool:
        expires = self._expiry.get(key)
        if expires is not None and now >= expires:
            self._store.pop(key, None)
            self._expiry.pop(key, None)
            return False
        return key in self._store

    def _put(self, key: str, value: Any, ttl: float | None, now: float) -> None:
        self._store[key] = value
        if ttl is None:
            self._expiry.pop(key, None)
        else:
            self._expiry[key] = now + ttl

    async def get(self, key: str) -> Any | None:
        async with self._lock:
            if self._live(key, time.monotonic()):
                return self._store[key]
            return None

    async def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        async with self._lock:
            now = time.monotonic()
            self._purge(now)
            self._put(key, value, ttl, now)

    async def delete(self, key: str) -> bool:
        async with self._lock:
            existed = self._live(key, time.monotonic())
            self._store.pop(key, None)
            self._expiry.pop(key, None)
            return existed

    async def compare_and_swap(
        self, key: str, expected: Any, new: Any, ttl: float | None = None
    ) -> bool:
        async with self._lock:
            now = time.monotonic()
            if not self._live(key, now) or self._store[key] != expected:
                return False
            if ttl is None and key in self._expiry:
                # Keep the existing expiry
                ttl = self._expiry[key] - now
            self._put(key, new, ttl, now)
            return True

    async def hit_window(
        self, key: str, limit: int, window_seconds: float, now: float | None = None
    ) -> tuple[bool, float]:
        async with self._lock:
            now = time.monotonic() if now is None else now
            self._purge(now)
            hits = self._store.get(key, []) if self._live(key, now) else []
            hits = [t for t in hits if t > now - window_seconds]
            if len(hits) >= limit:
                self._put(key, hits, window_seconds, now)
                return False, hits[0] + window_seconds - now
            hits.append(now)
            self._put(key, hits, window_seconds, now)
            return True, 0.0

    async def clear(self) -> int:
        async with self._lock:
            count = len(self._store)
            self._store.clear()
            self._expiry.clear()
            return count
