"""TTL cache with per-source quota lockout: the engine's only shared state.

Every remote read in the engine goes through :meth:`TTLCache.get_or_refresh`.
The cache owns three behaviours that callers must never re-implement:

1. **Time-boxed memoisation.**  A fresh entry is returned without calling the
   producer.  An expired entry triggers exactly one producer call, even when
   many threads hit the same key at once (per-key lock).
2. **Degraded results are still results.**  Whatever the producer returns,
   including an empty list after an upstream failure, is stored for the full
   TTL so a failing collaborator is not re-hammered on every request.
3. **Quota lockout.**  When a producer raises :class:`QuotaExhaustedError`
   the producer's *source* is locked out for a fixed cool-down.  While locked
   out no producer for that source is called; the last known value (stale or
   not) or the caller's default is served instead.

Keys are hashable tuples, conventionally ``(namespace, entity_or_scope,
outcome_type)``.  Instances are injected into each service rather than held in
module globals so tests can use a fake clock.

Run tests with::

    pytest tests/test_cache.py -v
"""

from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Optional

import requests
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

#: Cool-down applied to a source after it signals quota exhaustion (seconds).
QUOTA_LOCKOUT_SECONDS = int(os.getenv("QUOTA_LOCKOUT_SECONDS", "3600"))

#: How long an expired entry is kept as a lockout fallback before it is purged.
STALE_RETENTION_SECONDS = int(os.getenv("STALE_RETENTION_SECONDS", str(24 * 60 * 60)))


class QuotaExhaustedError(Exception):
    """Raised by a producer when its remote source refuses further calls."""

    def __init__(self, source: str, message: str = ""):
        self.source = source
        super().__init__(message or f"{source} quota exhausted")


@dataclass
class CacheEntry:
    """A single cached value."""

    value: Any
    stored_at: float
    ttl: float
    hit_count: int = 0

    def is_expired(self, now: float) -> bool:
        return now - self.stored_at >= self.ttl


class TTLCache:
    """Thread-safe TTL cache with lockout semantics for quota-exhausted sources.

    Args:
        clock: Monotonic time source.  Tests pass a fake to step time.
        lockout_seconds: Default lockout window for :meth:`lockout`.
    """

    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        lockout_seconds: float = QUOTA_LOCKOUT_SECONDS,
    ):
        self._clock = clock
        self._lockout_seconds = lockout_seconds
        self._entries: Dict[Hashable, CacheEntry] = {}
        self._lockouts: Dict[str, float] = {}
        self._key_locks: Dict[Hashable, threading.Lock] = {}
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, key: Hashable) -> Optional[Any]:
        """Return the value for ``key`` if present and fresh, else None."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or entry.is_expired(self._clock()):
                return None
            entry.hit_count += 1
            return entry.value

    def get_or_refresh(
        self,
        key: Hashable,
        ttl: float,
        producer: Callable[[], Any],
        *,
        source: Optional[str] = None,
        default: Any = None,
    ) -> Any:
        """Return the cached value for ``key``, refreshing via ``producer`` when stale.

        Args:
            key: Hashable cache key.
            ttl: Freshness window in seconds for a newly stored value.
            producer: Zero-argument callable that fetches the value.  May
                raise; see module docstring for how each failure is handled.
            source: Remote source name used for lockout bookkeeping.
            default: Value served when nothing is cached and the producer
                cannot be called or fails.

        Returns:
            Fresh, stale or default value.  Never raises for upstream failures.
        """
        key_lock = self._lock_for(key)
        with key_lock:
            now = self._clock()
            with self._lock:
                entry = self._entries.get(key)
            if entry is not None and not entry.is_expired(now):
                entry.hit_count += 1
                return entry.value

            fallback = entry.value if entry is not None else default

            if source is not None and self.is_locked_out(source):
                logger.debug("Source %s locked out; serving last known value for %s", source, key)
                return fallback

            try:
                value = producer()
            except QuotaExhaustedError as exc:
                self.lockout(exc.source or source or "unknown")
                return fallback
            except (requests.RequestException, TimeoutError, ValueError) as exc:
                logger.warning("Refresh of %s failed (%s); serving degraded value", key, exc)
                value = fallback

            self._store(key, value, ttl)
            return value

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def set(self, key: Hashable, value: Any, ttl: float) -> None:
        with self._lock_for(key):
            self._store(key, value, ttl)

    def invalidate(self, key: Hashable) -> None:
        with self._lock:
            self._entries.pop(key, None)
            self._drop_key_lock(key)

    def clear(self) -> None:
        """Drop all entries and lockouts."""
        with self._lock:
            self._entries.clear()
            self._lockouts.clear()
            for key in list(self._key_locks):
                self._drop_key_lock(key)

    def purge_expired(self, retention: float = STALE_RETENTION_SECONDS) -> int:
        """Remove entries expired for longer than ``retention`` seconds.

        Entries inside the retention window stay so a locked-out source can
        still serve its last known value.  Per-key locks with no entry left
        are released too.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            now = self._clock()
            stale = [
                key for key, entry in self._entries.items()
                if now - entry.stored_at >= entry.ttl + retention
            ]
            for key in stale:
                del self._entries[key]
            for key in list(self._key_locks):
                if key not in self._entries:
                    self._drop_key_lock(key)
        if stale:
            logger.info("Purged %d stale cache entries", len(stale))
        return len(stale)

    # ------------------------------------------------------------------
    # Lockout
    # ------------------------------------------------------------------

    def lockout(self, source: str, seconds: Optional[float] = None) -> None:
        """Suppress producer calls for ``source`` for ``seconds`` (logged once)."""
        window = self._lockout_seconds if seconds is None else seconds
        with self._lock:
            already = self._lockouts.get(source, 0.0) > self._clock()
            self._lockouts[source] = self._clock() + window
        if not already:
            logger.warning(
                "%s quota exhausted; suppressing calls for %d minutes",
                source, int(window // 60),
            )

    def is_locked_out(self, source: str) -> bool:
        return self.lockout_remaining(source) > 0

    def lockout_remaining(self, source: str) -> int:
        """Seconds left in ``source``'s lockout (0 when not locked out)."""
        with self._lock:
            until = self._lockouts.get(source)
            if until is None:
                return 0
            remaining = until - self._clock()
            if remaining <= 0:
                del self._lockouts[source]
                return 0
            return int(remaining + 0.999)

    # ------------------------------------------------------------------
    # Audit
    # ------------------------------------------------------------------

    def status(self) -> Dict[str, Any]:
        """Snapshot of cache health for the status endpoint."""
        now = self._clock()
        with self._lock:
            total = len(self._entries)
            fresh = sum(1 for e in self._entries.values() if not e.is_expired(now))
            sources = list(self._lockouts)
        lockouts = {s: self.lockout_remaining(s) for s in sources}
        return {
            "entries": total,
            "fresh_entries": fresh,
            "lockouts": {s: r for s, r in lockouts.items() if r > 0},
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lock_for(self, key: Hashable) -> threading.Lock:
        with self._lock:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._key_locks[key] = lock
            return lock

    def _drop_key_lock(self, key: Hashable) -> None:
        # Caller holds self._lock; a lock mid-refresh is left for its holder
        lock = self._key_locks.get(key)
        if lock is not None and not lock.locked():
            del self._key_locks[key]

    def _store(self, key: Hashable, value: Any, ttl: float) -> None:
        with self._lock:
            self._entries[key] = CacheEntry(value=value, stored_at=self._clock(), ttl=ttl)
