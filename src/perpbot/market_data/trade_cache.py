"""Bounded, time-queryable store of recent trade-tape entries."""

import asyncio
import time
from collections.abc import Callable, Iterable

from perpbot.logging import get_logger
from perpbot.models import CachedTrade

logger = get_logger(__name__)

DEFAULT_CAPACITY = 10_000


class RollingTradeCache:
    """Trades keyed by id, bounded to the newest ``capacity`` entries.

    Inserting an id that is already cached overwrites the entry in place.
    Compaction only runs inside insert(): once the merged size reaches
    capacity, entries are ranked newest first and everything past
    ``capacity`` is dropped.

    All operations are serialized behind one asyncio.Lock, so a periodic
    producer and several window readers can share one instance.

    Args:
        capacity: Maximum number of trades retained after an insert.
        clock: Wall clock in seconds, used to compute window cutoffs.
    """

    def __init__(
        self,
        capacity: int = DEFAULT_CAPACITY,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._clock = clock
        self._trades: dict[int, CachedTrade] = {}
        self._lock = asyncio.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._trades)

    async def insert(self, trades: Iterable[CachedTrade]) -> None:
        """Merge trades by id, then compact to capacity if needed."""
        async with self._lock:
            for trade in trades:
                self._trades[trade.id] = trade

            if len(self._trades) < self._capacity:
                logger.debug("trade_cache_updated", size=len(self._trades))
                return

            newest = sorted(
                self._trades.values(), key=lambda t: t.timestamp_ms, reverse=True
            )[: self._capacity]
            self._trades = {t.id: t for t in newest}
            logger.debug("trade_cache_compacted", size=len(self._trades))

    async def window(self, seconds: float) -> list[CachedTrade]:
        """Trades with ``timestamp >= now - seconds``, oldest first."""
        async with self._lock:
            cutoff_ms = (self._clock() - seconds) * 1000
            selected = [t for t in self._trades.values() if t.timestamp_ms >= cutoff_ms]
        selected.sort(key=lambda t: t.timestamp_ms)
        return selected

    async def windows(self, minutes: Iterable[int]) -> dict[int, list[CachedTrade]]:
        """Windows at several granularities, keyed by minutes."""
        return {m: await self.window(m * 60) for m in minutes}

    async def clear(self) -> None:
        async with self._lock:
            self._trades = {}
