"""
In-process TTL cache and its background sweeper.

CacheContext instances are created by their owners (template engine, AI
optimizer, HTTP optimizer) and injected, so tests can use a fake clock.
Access is single-threaded on the event loop; there are no locks.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Hashable, Iterable, Optional

logger = logging.getLogger(__name__)


@dataclass
class _Entry:
    value: Any
    expires_at: float


class CacheContext:
    """
    TTL + capacity-bounded key/value store.

    When full, setting a new key evicts the oldest inserted entry.
    """

    def __init__(
        self,
        max_size: int = 1000,
        default_ttl: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
        name: str = "cache",
    ):
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.default_ttl = default_ttl
        self.clock = clock
        self.name = name
        self._entries: dict[Hashable, _Entry] = {}  # insertion ordered
        self.hits = 0
        self.misses = 0

    def get(self, key: Hashable, default: Any = None) -> Any:
        """Return the live value for key. Expired entries are evicted and count as a miss."""
        entry = self._entries.get(key)
        if entry is None:
            self.misses += 1
            return default
        if entry.expires_at <= self.clock():
            del self._entries[key]
            self.misses += 1
            return default
        self.hits += 1
        return entry.value

    def set(self, key: Hashable, value: Any, ttl: Optional[float] = None) -> None:
        if key in self._entries:
            # Re-setting moves the key to the newest position
            del self._entries[key]
        elif len(self._entries) >= self.max_size:
            oldest = next(iter(self._entries))
            del self._entries[oldest]
        self._entries[key] = _Entry(value, self.clock() + (self.default_ttl if ttl is None else ttl))

    def evict(self, key: Hashable) -> bool:
        return self._entries.pop(key, None) is not None

    def sweep(self) -> int:
        """Purge expired entries. Returns the number removed."""
        now = self.clock()
        expired = [k for k, e in self._entries.items() if e.expires_at <= now]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def keys(self) -> list:
        return list(self._entries)

    def stats(self) -> dict:
        lookups = self.hits + self.misses
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hits / lookups if lookups else 0.0,
        }

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: Hashable) -> bool:
        entry = self._entries.get(key)
        return entry is not None and entry.expires_at > self.clock()


class CacheSweeper:
    """Periodically sweeps registered caches on the running event loop."""

    def __init__(self, caches: Iterable[CacheContext] = (), interval: float = 300.0):
        self.caches = list(caches)
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    def register(self, cache: CacheContext) -> None:
        if cache not in self.caches:
            self.caches.append(cache)

    def sweep_once(self) -> int:
        removed = 0
        for cache in self.caches:
            count = cache.sweep()
            if count:
                logger.debug("Swept %d expired entries from %s", count, cache.name)
            removed += count
        return removed

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.sweep_once()

    def start(self) -> None:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()
