"""
Single-Flight Cache

In-memory, TTL-governed cache with per-key request coalescing and
invalidation by time-range overlap. It is shared by the report cache and the
overview cache.

Per key the state is Absent -> Computing -> Cached(ttl):
- Cached entries are served without taking any per-key lock.
- On a miss, callers serialize on a per-key asyncio.Lock. The first one
  computes. The rest re-check after acquiring and get the same instance.
- Expiration is sliding: every hit pushes the deadline out by ttl.

One RLock guards both tables:
- _entries holds value, ttl, last access and the tracked (start, end) window
  together. The cache and its range bookkeeping cannot diverge.
- _locks holds the reference-counted per-key locks.

Every removal goes through _evict_locked. It posts an EvictionEvent to a queue
that a single cleanup routine (_process_evictions) drains. That routine drops
idle per-key locks and notifies listeners.

Lock lifetime: a lock entry is deleted when its last user leaves and no entry
exists for the key. The other path is eviction cleanup when nobody is using
it. Failed computations therefore never leave orphaned locks. A lock someone
is waiting on is never dropped under them.
"""

import asyncio
import queue
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Union

import structlog

logger = structlog.get_logger(__name__)

Window = Tuple[datetime, datetime]


class EvictionReason(str, Enum):
    expired = "expired"
    invalidated = "invalidated"
    replaced = "replaced"
    cleared = "cleared"


@dataclass(frozen=True)
class EvictionEvent:
    key: str
    reason: EvictionReason
    window: Window


@dataclass
class CacheStats:
    hits: int = 0
    coalesced: int = 0  # served by a peer's computation after waiting on the key lock
    misses: int = 0
    computations: int = 0
    failures: int = 0
    evictions: int = 0
    discarded: int = 0  # results invalidated while being computed

    def to_dict(self) -> Dict[str, int]:
        return {
            "hits": self.hits,
            "coalesced": self.coalesced,
            "misses": self.misses,
            "computations": self.computations,
            "failures": self.failures,
            "evictions": self.evictions,
            "discarded": self.discarded,
        }


@dataclass
class _Entry:
    value: Any
    ttl_seconds: float
    last_access: float
    window: Window


@dataclass
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0
    # Window being computed under this lock; an overlapping invalidation marks it stale
    window: Optional[Window] = None
    stale: bool = False


_MISSING = object()


def ranges_overlap(a: Window, b: Window) -> bool:
    """Strict overlap: touching boundaries (a.end == b.start) do not overlap."""
    return a[0] < b[1] and b[0] < a[1]


class SingleFlightCache:
    """
    Coalescing TTL cache keyed by strings, with time-window invalidation.

    Safe to call from any thread for lookup/invalidate/purge. get_or_compute
    must run on an event loop.
    """

    def __init__(self, name: str, monotonic: Callable[[], float] = time.monotonic):
        """
        Args:
            name: Cache name, used in log events
            monotonic: Clock for TTL bookkeeping (injectable for tests)
        """
        self.name = name
        self._monotonic = monotonic
        self._guard = threading.RLock()
        self._entries: Dict[str, _Entry] = {}
        self._locks: Dict[str, _KeyLock] = {}
        self._evictions: "queue.SimpleQueue[EvictionEvent]" = queue.SimpleQueue()
        self._listeners: List[Callable[[EvictionEvent], None]] = []
        self.stats = CacheStats()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def get_or_compute(
        self,
        key: str,
        window: Window,
        compute: Callable[[], Awaitable[Any]],
        ttl: Union[timedelta, Callable[[], timedelta]],
    ) -> Any:
        """
        Return the cached value for key, computing it at most once concurrently.

        Args:
            key: Canonical cache key
            window: (start, end) range the value covers, used for invalidation
            compute: Zero-arg coroutine factory producing the value
            ttl: Sliding expiration, or a callable evaluated when the result is stored

        Returns:
            The cached or freshly computed value (same instance for all waiters)

        Raises:
            Whatever compute raises. Nothing is cached and the key lock is released.
        """
        value = self._lookup(key)
        self._process_evictions()
        if value is not _MISSING:
            with self._guard:
                self.stats.hits += 1
            return value

        key_lock = self._checkout_lock(key)
        try:
            async with key_lock.lock:
                # A peer may have filled the entry while we waited
                value = self._lookup(key)
                if value is not _MISSING:
                    with self._guard:
                        self.stats.coalesced += 1
                    return value

                with self._guard:
                    self.stats.misses += 1
                    self.stats.computations += 1
                    key_lock.window = window
                    key_lock.stale = False

                try:
                    value = await compute()
                except BaseException:
                    with self._guard:
                        self.stats.failures += 1
                        key_lock.window = None
                    raise

                self._install(key, value, ttl, window, key_lock)
                return value
        finally:
            self._return_lock(key, key_lock)
            self._process_evictions()

    def invalidate(self, start: datetime, end: datetime) -> int:
        """
        Drop every entry whose tracked window strictly overlaps [start, end).

        In-flight computations over an overlapping window are marked stale: the
        computing caller still gets its result, but it is not cached.

        Returns:
            Number of cached entries removed
        """
        target = (start, end)
        with self._guard:
            keys = [key for key, entry in self._entries.items() if ranges_overlap(entry.window, target)]
            for key in keys:
                self._evict_locked(key, EvictionReason.invalidated)
            for key_lock in self._locks.values():
                if key_lock.window is not None and ranges_overlap(key_lock.window, target):
                    key_lock.stale = True
        self._process_evictions()
        return len(keys)

    def clear(self) -> int:
        with self._guard:
            keys = list(self._entries)
            for key in keys:
                self._evict_locked(key, EvictionReason.cleared)
        self._process_evictions()
        return len(keys)

    def purge_expired(self) -> int:
        """Evict every expired entry. Run periodically so idle keys release memory."""
        now = self._monotonic()
        with self._guard:
            keys = [
                key for key, entry in self._entries.items()
                if now - entry.last_access >= entry.ttl_seconds
            ]
            for key in keys:
                self._evict_locked(key, EvictionReason.expired)
        self._process_evictions()
        return len(keys)

    def subscribe(self, listener: Callable[[EvictionEvent], None]) -> None:
        """Register a callback invoked once per eviction, from the cleanup routine."""
        with self._guard:
            self._listeners.append(listener)

    def has_lock(self, key: str) -> bool:
        with self._guard:
            return key in self._locks

    def lock_count(self) -> int:
        with self._guard:
            return len(self._locks)

    def __contains__(self, key: str) -> bool:
        with self._guard:
            return key in self._entries

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _lookup(self, key: str) -> Any:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                return _MISSING
            now = self._monotonic()
            if now - entry.last_access >= entry.ttl_seconds:
                self._evict_locked(key, EvictionReason.expired)
                return _MISSING
            entry.last_access = now
            return entry.value

    def _install(
        self,
        key: str,
        value: Any,
        ttl: Union[timedelta, Callable[[], timedelta]],
        window: Window,
        key_lock: _KeyLock,
    ) -> None:
        if callable(ttl):
            ttl = ttl()
        with self._guard:
            key_lock.window = None
            if key_lock.stale:
                self.stats.discarded += 1
                logger.debug("cache_result_discarded", cache=self.name, key=key, reason="invalidated_in_flight")
                return
            if key in self._entries:
                self._evict_locked(key, EvictionReason.replaced)
            self._entries[key] = _Entry(
                value=value,
                ttl_seconds=ttl.total_seconds(),
                last_access=self._monotonic(),
                window=window,
            )

    def _evict_locked(self, key: str, reason: EvictionReason) -> bool:
        # Caller holds _guard
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        self.stats.evictions += 1
        self._evictions.put(EvictionEvent(key=key, reason=reason, window=entry.window))
        return True

    def _checkout_lock(self, key: str) -> _KeyLock:
        with self._guard:
            key_lock = self._locks.get(key)
            if key_lock is None:
                key_lock = _KeyLock()
                self._locks[key] = key_lock
            key_lock.users += 1
            return key_lock

    def _return_lock(self, key: str, key_lock: _KeyLock) -> None:
        with self._guard:
            key_lock.users -= 1
            if key_lock.users == 0 and key not in self._entries and self._locks.get(key) is key_lock:
                del self._locks[key]

    def _process_evictions(self) -> None:
        """Single cleanup routine: drain eviction events, drop idle locks, notify listeners."""
        while True:
            try:
                event = self._evictions.get_nowait()
            except queue.Empty:
                return

            with self._guard:
                key_lock = self._locks.get(event.key)
                if key_lock is not None and key_lock.users == 0 and event.key not in self._entries:
                    del self._locks[event.key]
                listeners = list(self._listeners)

            for listener in listeners:
                try:
                    listener(event)
                except Exception as e:
                    logger.error(
                        "cache_eviction_listener_failed",
                        cache=self.name,
                        key=event.key,
                        error=str(e),
                        exc_info=True,
                    )


__all__ = [
    "SingleFlightCache",
    "CacheStats",
    "EvictionEvent",
    "EvictionReason",
    "ranges_overlap",
]
