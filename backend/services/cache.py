"""In-memory TTL cache for analytics report results.

Entries are keyed by method name plus normalized arguments, copied on the way
in and on the way out, and evicted oldest-first once the cache is full.

Note: Each uvicorn worker has its own cache instance and runs every cache
operation on its event loop thread, so no locking is needed. Two concurrent
misses for the same key will both hit the data source; callers that care
must de-duplicate their own in-flight requests.
"""

import asyncio
import contextlib
import logging
import time
from dataclasses import dataclass
from datetime import date, datetime, timezone
from datetime import time as time_of_day
from decimal import Decimal
from typing import Any, Callable, Sequence

from config import settings
from errors import CacheSerializationError

logger = logging.getLogger(__name__)

KEY_DELIMITER = ":"
NULL_TOKEN = "null"

# Immutable leaves, returned as-is by clone_payload
_ATOMIC_TYPES = (str, int, float, bool, Decimal, date, time_of_day, type(None))
_KEY_TYPES = (str, int, float, bool, type(None))


class _Miss:
    """Sentinel returned by AnalyticsCache.get when nothing usable is cached."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "MISS"


MISS = _Miss()


def monotonic_ms() -> float:
    return time.monotonic_ns() / 1_000_000


def normalize_arg(value: Any) -> str:
    """Normalize one argument for use in a cache key."""
    if value is None:
        return NULL_TOKEN
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def generate_key(method: str, args: Sequence[Any]) -> str:
    """Build a deterministic cache key, e.g. ``get_catch_trends:2025-01-01:null:3``.

    Argument order matters. Datetimes collapse to their UTC calendar day so
    two timestamps on the same day share a key.
    """
    return KEY_DELIMITER.join([method, *(normalize_arg(arg) for arg in args)])


def clone_payload(value: Any) -> Any:
    """Deep-copy a JSON-like value.

    Raises CacheSerializationError for cyclic structures, unsupported types,
    or structures nested too deeply to copy.
    """
    try:
        return _clone(value, set())
    except RecursionError as e:
        raise CacheSerializationError("Payload is nested too deeply to cache") from e


def _clone(value: Any, active: set[int]) -> Any:
    if isinstance(value, _ATOMIC_TYPES):
        return value

    if not isinstance(value, (dict, list, tuple)):
        raise CacheSerializationError(
            f"Cannot cache value of type {type(value).__name__}"
        )

    marker = id(value)
    if marker in active:
        raise CacheSerializationError(
            f"Cannot cache cyclic {type(value).__name__} payload"
        )
    active.add(marker)
    try:
        if isinstance(value, dict):
            copied = {}
            for k, v in value.items():
                if not isinstance(k, _KEY_TYPES):
                    raise CacheSerializationError(
                        f"Cannot cache dict key of type {type(k).__name__}"
                    )
                copied[k] = _clone(v, active)
            return copied
        items = [_clone(item, active) for item in value]
        return tuple(items) if isinstance(value, tuple) else items
    finally:
        active.discard(marker)


@dataclass
class CacheEntry:
    key: str
    payload: Any
    stored_at: float
    ttl_ms: float

    def is_expired(self, now: float) -> bool:
        return now - self.stored_at > self.ttl_ms


class AnalyticsCache:
    """Bounded TTL cache with FIFO eviction and copy-in/copy-out payloads.

    Overwriting an existing key refreshes its payload, timestamp and TTL but
    keeps the key's original insertion slot for eviction purposes.
    """

    def __init__(
        self,
        default_ttl_ms: float = 5 * 60 * 1000,
        max_entries: int = 100,
        clock: Callable[[], float] = monotonic_ms,
    ):
        if max_entries < 1:
            raise ValueError(f"max_entries must be at least 1, got {max_entries}")
        if default_ttl_ms < 0:
            raise ValueError(f"default_ttl_ms must be non-negative, got {default_ttl_ms}")
        self.default_ttl_ms = default_ttl_ms
        self.max_entries = max_entries
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    generate_key = staticmethod(generate_key)

    def get(self, key: str) -> Any:
        """Return a copy of the cached payload, or MISS if absent or expired."""
        entry = self._entries.get(key)
        if entry is None:
            logger.debug("Cache miss: %s", key)
            return MISS
        if entry.is_expired(self._clock()):
            del self._entries[key]
            logger.debug("Cache expired: %s", key)
            return MISS
        logger.debug("Cache hit: %s", key)
        return clone_payload(entry.payload)

    def set(self, key: str, payload: Any, ttl_ms: float | None = None) -> None:
        """Store a copy of payload, evicting the oldest entry when full."""
        if ttl_ms is None:
            ttl_ms = self.default_ttl_ms
        elif ttl_ms < 0:
            raise ValueError(f"ttl_ms must be non-negative, got {ttl_ms}")

        # Copy before evicting so a bad payload leaves the cache untouched
        copied = clone_payload(payload)

        existing = self._entries.get(key)
        if existing is not None:
            existing.payload = copied
            existing.stored_at = self._clock()
            existing.ttl_ms = ttl_ms
            return

        if len(self._entries) >= self.max_entries:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
            logger.debug("Cache full (%d), evicted %s", self.max_entries, oldest)

        self._entries[key] = CacheEntry(key, copied, self._clock(), ttl_ms)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        """Invalidate all cached entries."""
        self._entries.clear()

    def clear_pattern(self, prefix: str) -> int:
        """Remove every entry whose key starts with prefix. Returns count removed."""
        doomed = [key for key in self._entries if key.startswith(prefix)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def clean_expired(self) -> int:
        """Remove every expired entry. Returns count removed."""
        now = self._clock()
        doomed = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in doomed:
            del self._entries[key]
        return len(doomed)

    def get_stats(self) -> dict:
        now = self._clock()
        expired = sum(1 for entry in self._entries.values() if entry.is_expired(now))
        return {
            "total": len(self._entries),
            "valid": len(self._entries) - expired,
            "expired": expired,
            "max_size": self.max_entries,
        }


class CacheSweeper:
    """Background task that calls ``clean_expired`` on a fixed interval.

    Must be started from inside a running event loop; ``stop`` cancels the
    task and waits for it to finish.
    """

    def __init__(self, cache: AnalyticsCache, interval_ms: float = 60 * 1000):
        if interval_ms <= 0:
            raise ValueError(f"interval_ms must be positive, got {interval_ms}")
        self.cache = cache
        self.interval_ms = interval_ms
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name="analytics-cache-sweeper"
        )
        logger.info("Cache sweeper started (every %.0f ms)", self.interval_ms)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task
        logger.info("Cache sweeper stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_ms / 1000)
            removed = self.cache.clean_expired()
            if removed:
                logger.debug("Cache sweep removed %d expired entries", removed)


cache = AnalyticsCache(
    default_ttl_ms=settings.cache_default_ttl_ms,
    max_entries=settings.cache_max_entries,
)
