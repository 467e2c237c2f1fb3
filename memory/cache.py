# memory/cache.py
"""Lock-guarded TTL cache shared by every in-flight generation pipeline."""

from __future__ import annotations

import asyncio
import contextlib
import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Literal

import structlog

logger = structlog.get_logger(__name__)

EvictionPolicy = Literal["lru", "fifo"]


@dataclass(frozen=True)
class CacheStats:
    size: int
    max_entries: int
    hits: int
    misses: int
    evictions: int

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class TTLCache:
    """TTL cache with a bounded entry count.

    Every read and write holds one ``asyncio.Lock`` so eviction and the
    periodic sweep never interleave with a lookup. ``eviction="lru"`` drops
    the least recently read entry on overflow, ``"fifo"`` the oldest insert.
    """

    def __init__(
        self,
        max_entries: int,
        ttl_seconds: float,
        eviction: EvictionPolicy = "lru",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self.eviction = eviction
        self._clock = clock
        self._data: OrderedDict[str, tuple[float, Any]] = OrderedDict()
        self._lock = asyncio.Lock()
        self._sweeper: asyncio.Task[None] | None = None
        self.hits = 0
        self.misses = 0
        self.evictions = 0

    def __len__(self) -> int:
        return len(self._data)

    async def get(self, key: str) -> Any | None:
        async with self._lock:
            item = self._data.get(key)
            if item is None:
                self.misses += 1
                return None
            expires_at, value = item
            if self._clock() >= expires_at:
                del self._data[key]
                self.misses += 1
                return None
            if self.eviction == "lru":
                self._data.move_to_end(key)
            self.hits += 1
            return value

    async def set(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        ttl = self.ttl_seconds if ttl_seconds is None else ttl_seconds
        async with self._lock:
            exists = key in self._data
            self._data[key] = (self._clock() + ttl, value)
            if exists and self.eviction == "lru":
                self._data.move_to_end(key)
            while len(self._data) > self.max_entries:
                evicted, _ = self._data.popitem(last=False)
                self.evictions += 1
                logger.debug("Cache eviction", key=evicted, policy=self.eviction)

    async def invalidate(self, pattern: str) -> int:
        """Drop every key containing ``pattern``. Returns the number removed."""
        async with self._lock:
            doomed = [key for key in self._data if pattern in key]
            for key in doomed:
                del self._data[key]
        if doomed:
            logger.debug("Cache invalidated", pattern=pattern, removed=len(doomed))
        return len(doomed)

    async def clear(self) -> None:
        async with self._lock:
            self._data.clear()

    async def sweep(self) -> int:
        """Remove expired entries. Returns the number removed."""
        async with self._lock:
            now = self._clock()
            expired = [key for key, (exp, _) in self._data.items() if now >= exp]
            for key in expired:
                del self._data[key]
        return len(expired)

    def stats(self) -> CacheStats:
        return CacheStats(
            size=len(self._data),
            max_entries=self.max_entries,
            hits=self.hits,
            misses=self.misses,
            evictions=self.evictions,
        )

    @property
    def sweeper_running(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    def start_sweeper(self, interval_seconds: float) -> None:
        if self.sweeper_running:
            return
        self._sweeper = asyncio.create_task(
            self._sweep_loop(interval_seconds), name="memory-cache-sweeper"
        )

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._sweeper
        self._sweeper = None

    async def _sweep_loop(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            removed = await self.sweep()
            if removed:
                logger.debug("Cache sweep", removed=removed, size=len(self._data))
