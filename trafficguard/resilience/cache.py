"""In-process TTL cache.

Entries expire after a per-entry time-to-live. Expired entries are treated as
absent and dropped when read, and a background sweep reclaims the ones that
are never read again. There is no size bound and no LRU eviction.
"""

import asyncio
import inspect
import threading
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar, Union

from trafficguard.observability.logging import get_logger
from trafficguard.observability.metrics import (
    cache_hits_total,
    cache_misses_total,
    cache_swept_entries_total,
)

logger = get_logger(__name__)

T = TypeVar("T")

_MISSING = object()


@dataclass
class _CacheEntry:
    """Internal cache entry with TTL tracking."""

    value: Any
    expires_at: float

    def is_expired(self, now: Optional[float] = None) -> bool:
        """Check if the entry has expired."""
        return (now if now is not None else time.time()) > self.expires_at


@dataclass(frozen=True)
class CacheStats:
    """Snapshot of cache occupancy."""
    total: int
    active: int
    expired: int


class TTLCache:
    """
    Key/value cache with per-entry expiry.

    Reads and writes are synchronous and guarded by a re-entrant lock, so the
    cache may be shared between the event loop and worker threads. Call
    :meth:`start` from a running event loop to begin the periodic sweep and
    :meth:`stop` on shutdown.

    Example:
        >>> cache = TTLCache(default_ttl_seconds=60)
        >>> cache.set("plan:acme", {"max_requests": 120})
        >>> cache.get("plan:acme")
        {'max_requests': 120}
    """

    def __init__(
        self,
        default_ttl_seconds: float = 300,
        sweep_interval_seconds: float = 300,
    ):
        if default_ttl_seconds <= 0:
            raise ValueError("default_ttl_seconds must be positive")
        if sweep_interval_seconds <= 0:
            raise ValueError("sweep_interval_seconds must be positive")
        self.default_ttl_seconds = default_ttl_seconds
        self.sweep_interval_seconds = sweep_interval_seconds
        self._data: Dict[str, _CacheEntry] = {}
        self._lock = threading.RLock()
        self._sweep_task: Optional[asyncio.Task] = None

    def set(self, key: str, value: Any, ttl_seconds: Optional[float] = None) -> None:
        """Store ``value`` under ``key`` for ``ttl_seconds`` (default TTL when omitted)."""
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        with self._lock:
            self._data[key] = _CacheEntry(value=value, expires_at=time.time() + ttl)

    def _lookup(self, key: str) -> Any:
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return _MISSING
            if entry.is_expired():
                del self._data[key]
                return _MISSING
            return entry.value

    def get(self, key: str, default: Any = None) -> Any:
        """Return the cached value, or ``default`` when absent or expired."""
        value = self._lookup(key)
        if value is _MISSING:
            cache_misses_total.labels(operation="get").inc()
            return default
        cache_hits_total.labels(operation="get").inc()
        return value

    def has(self, key: str) -> bool:
        """Check if ``key`` is present and not expired."""
        return self._lookup(key) is not _MISSING

    def delete(self, key: str) -> bool:
        """Remove ``key``; returns whether an entry was physically present."""
        with self._lock:
            return self._data.pop(key, None) is not None

    def clear(self) -> None:
        """Drop every entry."""
        with self._lock:
            self._data.clear()
        logger.info("Cache cleared")

    def size(self) -> int:
        """Number of stored entries, expired ones included."""
        with self._lock:
            return len(self._data)

    async def get_or_set(
        self,
        key: str,
        compute_fn: Callable[[], Union[T, Awaitable[T]]],
        ttl_seconds: Optional[float] = None,
    ) -> T:
        """Return the cached value, computing and caching it on a miss.

        Concurrent misses for the same key each run ``compute_fn``; the last
        one to finish wins.
        """
        value = self._lookup(key)
        if value is not _MISSING:
            cache_hits_total.labels(operation="get_or_set").inc()
            return value

        cache_misses_total.labels(operation="get_or_set").inc()
        value = compute_fn()
        if inspect.isawaitable(value):
            value = await value
        self.set(key, value, ttl_seconds)
        return value

    def get_stats(self) -> CacheStats:
        """Count stored, live and expired-but-unswept entries."""
        now = time.time()
        with self._lock:
            total = len(self._data)
            expired = sum(1 for entry in self._data.values() if entry.is_expired(now))
        return CacheStats(total=total, active=total - expired, expired=expired)

    def sweep(self) -> int:
        """Remove all expired entries.

        Returns:
            Number of entries removed.
        """
        now = time.time()
        with self._lock:
            expired_keys = [
                key for key, entry in self._data.items() if entry.is_expired(now)
            ]
            for key in expired_keys:
                del self._data[key]

        if expired_keys:
            cache_swept_entries_total.inc(len(expired_keys))
            logger.debug(f"Cache cleanup: removed {len(expired_keys)} expired entries")
        return len(expired_keys)

    # ==== BACKGROUND SWEEP ==== #

    @property
    def is_sweeping(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    def start(self) -> None:
        """Start the periodic sweep on the running event loop. Idempotent."""
        if self.is_sweeping:
            return
        self._sweep_task = asyncio.get_running_loop().create_task(
            self._sweep_loop(), name="ttl-cache-sweep"
        )

    async def stop(self) -> None:
        """Cancel the periodic sweep and wait for it to finish."""
        task, self._sweep_task = self._sweep_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_seconds)
            try:
                self.sweep()
            except Exception:
                logger.exception("Cache sweep failed")
