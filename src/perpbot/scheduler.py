"""Snapshot scheduler -- the periodic driver of the market data layer.

Each cycle:
  1. SNAPSHOT: aggregate market and account state (also triggers a
     throttled trade cache refresh)
  2. WINDOWS: read the trade cache at each configured granularity
  3. TRACK: start the position poller whenever a position is open

The scheduler owns the armed flag. The poller's disarm callback clears it,
and the trade feed stops fetching (and empties the cache) while it is clear.
"""

import asyncio

from perpbot.config import AppSettings
from perpbot.logging import get_logger
from perpbot.market_data.aggregator import MarketDataAggregator, MarketSnapshot
from perpbot.market_data.trade_cache import RollingTradeCache
from perpbot.models import CachedTrade, PositionInfo
from perpbot.position.poller import PositionPoller

logger = get_logger(__name__)


class SnapshotScheduler:
    """Runs snapshot cycles until stopped.

    The poller is attached after construction because its disarm callback
    is this scheduler's disarm() method.

    Args:
        settings: Application-wide settings.
        aggregator: Market data aggregator.
        trade_cache: Cache read at the configured window granularities.
    """

    def __init__(
        self,
        settings: AppSettings,
        aggregator: MarketDataAggregator,
        trade_cache: RollingTradeCache,
    ) -> None:
        self._settings = settings
        self._aggregator = aggregator
        self._trade_cache = trade_cache
        self._poller: PositionPoller | None = None
        self._armed = True
        self._running = False
        self._stop_event = asyncio.Event()
        self._cycle_lock = asyncio.Lock()
        self._last_snapshot: MarketSnapshot | None = None
        self._last_windows: dict[int, list[CachedTrade]] = {}

    def set_poller(self, poller: PositionPoller) -> None:
        self._poller = poller

    def is_armed(self) -> bool:
        return self._armed

    def arm(self) -> None:
        if not self._armed:
            logger.info("system_armed")
        self._armed = True

    async def disarm(self, info: PositionInfo) -> None:
        """Disarm callback for the position poller."""
        self._armed = False
        logger.warning(
            "system_disarmed",
            symbol=self._settings.market.symbol,
            unrealized_pnl=str(info.unrealized_pnl),
        )

    @property
    def last_snapshot(self) -> MarketSnapshot | None:
        return self._last_snapshot

    @property
    def last_windows(self) -> dict[int, list[CachedTrade]]:
        """Trade windows read in the last cycle, keyed by minutes."""
        return self._last_windows

    @property
    def is_running(self) -> bool:
        return self._running

    async def run(self) -> None:
        """Run cycles every snapshot_interval seconds until stop() is called."""
        self._running = True
        self._stop_event.clear()
        logger.info(
            "scheduler_started",
            interval=self._settings.market.snapshot_interval,
        )
        while self._running:
            try:
                async with self._cycle_lock:
                    await self.run_cycle()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("scheduler_cycle_error", error=str(e), exc_info=True)
            if self._running:
                try:
                    await asyncio.wait_for(
                        self._stop_event.wait(),
                        timeout=self._settings.market.snapshot_interval,
                    )
                except asyncio.TimeoutError:
                    continue
                except asyncio.CancelledError:
                    break
        logger.info("scheduler_stopped")

    async def stop(self) -> None:
        """Signal the loop to exit and stop the position poller."""
        self._running = False
        self._stop_event.set()
        if self._poller is not None:
            await self._poller.stop()

    async def run_cycle(self) -> MarketSnapshot:
        snapshot = await self._aggregator.snapshot()
        self._last_snapshot = snapshot

        self._last_windows = await self._trade_cache.windows(
            self._settings.market.trade_window_minutes
        )
        logger.info(
            "trade_windows",
            counts={m: len(trades) for m, trades in self._last_windows.items()},
        )

        info = snapshot.position_info
        if info is not None and info.has_position and self._poller is not None:
            self.arm()
            await self._poller.start()
        return snapshot
