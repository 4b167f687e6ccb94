"""
In-memory TTL cache shared by every source client.
Entries are evicted lazily on read. Concurrent misses for the same key share one
in-flight load instead of each hitting the upstream.
"""
import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from prometheus_client import Counter

from app.core.logging_config import get_logger

logger = get_logger("cache")

CACHE_LOOKUPS = Counter('cache_lookups_total', 'TTL cache lookups', ['result'])

MISSING = object()


@dataclass
class CacheEntry:
    value: Any
    stored_at: float
    ttl: float

    def expired(self, now: float) -> bool:
        return now - self.stored_at > self.ttl


class TTLCache:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._inflight: Dict[str, asyncio.Task] = {}

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return default
        if entry.expired(self._clock()):
            del self._entries[key]
            return default
        return entry.value

    def set(self, key: str, value: Any, ttl: float) -> None:
        self._entries[key] = CacheEntry(value=value, stored_at=self._clock(), ttl=ttl)

    def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    async def get_or_compute(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[Any]],
        ttl: float,
        should_cache: Optional[Callable[[Any], bool]] = None,
    ) -> Any:
        """
        Read-through lookup. On a hit within TTL the fetcher is not called.
        `should_cache` lets callers keep failed loads (e.g. None) out of the cache.
        """
        cached = self.get(key, MISSING)
        if cached is not MISSING:
            CACHE_LOOKUPS.labels(result="hit").inc()
            logger.debug("cache_hit", key=key)
            return cached

        task = self._inflight.get(key)
        if task is None:
            CACHE_LOOKUPS.labels(result="miss").inc()
            logger.debug("cache_miss", key=key)
            task = asyncio.ensure_future(self._load(key, fetcher, ttl, should_cache))
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
        else:
            CACHE_LOOKUPS.labels(result="shared").inc()

        return await asyncio.shield(task)

    async def _load(self, key, fetcher, ttl, should_cache):
        value = await fetcher()
        if should_cache is None or should_cache(value):
            self.set(key, value, ttl)
        return value

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
