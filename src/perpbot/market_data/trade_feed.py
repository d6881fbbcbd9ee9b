"""Trade feed -- keeps the rolling trade cache filled from the trade tape.

Uses REST polling of the recent-trades endpoint. Refreshes are throttled: a
refresh requested within ``min_fetch_gap`` seconds of the last successful
fetch is skipped, so the background loop and the snapshot trigger can both
ask for data without doubling the request weight.
"""

import asyncio
import time
from collections.abc import Callable

from perpbot.exchange.client import ExchangeClient
from perpbot.logging import get_logger
from perpbot.market_data.trade_cache import RollingTradeCache
from perpbot.models import CachedTrade

logger = get_logger(__name__)


class TradeFeed:
    """Fetches recent trades for one symbol into a RollingTradeCache.

    While ``is_active()`` reports the system inactive, the background loop
    clears the cache instead of fetching, so stale trades are never served
    after a pause.
    """

    def __init__(
        self,
        exchange: ExchangeClient,
        cache: RollingTradeCache,
        symbol: str,
        fetch_limit: int = 1000,
        refresh_interval: float = 150.0,
        min_fetch_gap: float = 10.0,
        is_active: Callable[[], bool] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._exchange = exchange
        self._cache = cache
        self._symbol = symbol
        self._fetch_limit = fetch_limit
        self._refresh_interval = refresh_interval
        self._min_fetch_gap = min_fetch_gap
        self._is_active = is_active or (lambda: True)
        self._clock = clock
        self._last_fetch: float | None = None
        self._running = False
        self._task: asyncio.Task | None = None  # type: ignore[type-arg]

    @property
    def cache(self) -> RollingTradeCache:
        return self._cache

    def set_activity_check(self, is_active: Callable[[], bool]) -> None:
        """Replace the predicate consulted by the background loop."""
        self._is_active = is_active

    async def refresh(self) -> bool:
        """Fetch recent trades into the cache unless one was fetched just now.

        Returns:
            True if a fetch was made, False if it was throttled.

        Raises:
            ExchangeError: The fetch failed; the throttle window is released
                so the next call can try again.
        """
        now = self._clock()
        previous = self._last_fetch
        if previous is not None and now - previous <= self._min_fetch_gap:
            logger.debug("trade_refresh_throttled", since_last=now - previous)
            return False
        # Claimed before the first await, so a concurrent caller sees it.
        self._last_fetch = now

        try:
            trades = await self._exchange.fetch_recent_trades(
                self._symbol, self._fetch_limit
            )
        except Exception:
            self._last_fetch = previous
            raise

        await self._cache.insert(CachedTrade.from_recent_trade(t) for t in trades)
        logger.debug("trades_fetched", symbol=self._symbol, count=len(trades), cached=len(self._cache))
        return True

    async def start(self) -> None:
        """Begin refreshing the cache in the background."""
        if self._running:
            logger.warning("trade_feed_already_running")
            return
        self._running = True
        self._task = asyncio.create_task(self._refresh_loop())
        logger.info(
            "trade_feed_started",
            symbol=self._symbol,
            refresh_interval=self._refresh_interval,
        )

    async def stop(self) -> None:
        """Stop the background refresh gracefully."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("trade_feed_stopped")

    async def _refresh_loop(self) -> None:
        while self._running:
            try:
                if self._is_active():
                    await self.refresh()
                else:
                    await self._cache.clear()
                    logger.debug("trade_cache_cleared_inactive")
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.warning("trade_feed_refresh_error", exc_info=True)
            if self._running:
                await asyncio.sleep(self._refresh_interval)
