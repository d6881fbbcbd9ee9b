"""Market data aggregator -- one snapshot of market and account state.

Each data source is fetched concurrently through the shared exchange client
and wrapped in a SourceResult carrying either its value or its error. The
aggregator joins on all sources: one failing source never cancels or delays
the others, and never fails the snapshot as a whole.

CONSISTENCY: sources are fetched independently and are not atomic relative
to each other or to exchange time. The ticker price and the depth snapshot,
for example, may describe slightly different instants. Consumers computing
cross-source metrics (spread vs. last price, position value vs. mark price)
must tolerate that skew.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from perpbot.config import MarketDataSettings
from perpbot.exchange.client import ExchangeClient
from perpbot.exchange.types import (
    AccountInfo,
    BookTicker,
    FundingRate,
    Kline,
    MarkPrice,
    OpenInterest,
    Order,
    OrderBook,
    Position,
    Ticker,
)
from perpbot.logging import get_logger
from perpbot.market_data.trade_feed import TradeFeed
from perpbot.models import PositionInfo

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class SourceResult(Generic[T]):
    """Outcome of fetching one source: a value or an error, never both."""

    name: str
    value: T | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class MarketSnapshot:
    """Best-effort aggregate of independently fetched read models.

    Every source field is independently optional: check ``.ok`` (or that
    ``.value`` is not None) before use.
    """

    symbol: str
    ticker: SourceResult[Ticker]
    klines: SourceResult[list[Kline]]
    depth: SourceResult[OrderBook]
    positions: SourceResult[list[Position]]
    account: SourceResult[AccountInfo]
    mark_price: SourceResult[MarkPrice]
    funding_rate: SourceResult[FundingRate]
    funding_rate_history: SourceResult[list[FundingRate]]
    open_interest: SourceResult[OpenInterest]
    order_history: SourceResult[list[Order]]
    open_orders: SourceResult[list[Order]]
    book_ticker: SourceResult[BookTicker]
    trade_refresh: SourceResult[bool]
    taken_at: float = field(default_factory=time.time)

    def sources(self) -> list[SourceResult[Any]]:
        return [
            self.ticker,
            self.klines,
            self.depth,
            self.positions,
            self.account,
            self.mark_price,
            self.funding_rate,
            self.funding_rate_history,
            self.open_interest,
            self.order_history,
            self.open_orders,
            self.book_ticker,
            self.trade_refresh,
        ]

    @property
    def errors(self) -> list[Exception]:
        """Errors of the failed sources. Advisory only."""
        return [s.error for s in self.sources() if s.error is not None]

    @property
    def failed_sources(self) -> list[str]:
        return [s.name for s in self.sources() if not s.ok]

    @property
    def position_info(self) -> PositionInfo | None:
        """Derived position summary, or None when positions could not be fetched."""
        if self.positions.value is None:
            return None
        return PositionInfo.from_positions(self.positions.value)


class MarketDataAggregator:
    """Fans out the per-source fetches for one symbol and joins them.

    Args:
        exchange: Shared exchange client.
        settings: Symbol and per-source request sizes.
        trade_feed: When given, each snapshot also triggers a (throttled)
            trade cache refresh.
    """

    def __init__(
        self,
        exchange: ExchangeClient,
        settings: MarketDataSettings,
        trade_feed: TradeFeed | None = None,
    ) -> None:
        self._exchange = exchange
        self._settings = settings
        self._trade_feed = trade_feed

    async def snapshot(self) -> MarketSnapshot:
        """Fetch every source concurrently and wait for all of them."""
        ex = self._exchange
        s = self._settings
        symbol = s.symbol

        results = await asyncio.gather(
            _fetch("ticker", lambda: ex.fetch_ticker(symbol)),
            _fetch("klines", lambda: ex.fetch_klines(symbol, s.kline_interval, s.kline_limit)),
            _fetch("depth", lambda: ex.fetch_depth(symbol, s.depth_limit)),
            _fetch("positions", lambda: ex.fetch_positions(symbol)),
            _fetch("account", ex.fetch_account),
            _fetch("mark_price", lambda: ex.fetch_mark_price(symbol)),
            _fetch("funding_rate", lambda: ex.fetch_funding_rate(symbol)),
            _fetch(
                "funding_rate_history",
                lambda: ex.fetch_funding_rate_history(symbol, s.funding_history_limit),
            ),
            _fetch("open_interest", lambda: ex.fetch_open_interest(symbol)),
            _fetch(
                "order_history",
                lambda: ex.fetch_order_history(symbol, s.order_history_limit),
            ),
            _fetch("open_orders", lambda: ex.fetch_open_orders(symbol)),
            _fetch("book_ticker", lambda: ex.fetch_book_ticker(symbol)),
            _fetch("trade_refresh", self._refresh_trades),
        )

        snapshot = MarketSnapshot(symbol, *results)

        if snapshot.errors:
            logger.warning(
                "market_snapshot_partial",
                symbol=symbol,
                failed=snapshot.failed_sources,
            )
        logger.info(
            "market_snapshot_taken",
            symbol=symbol,
            last_price=str(snapshot.ticker.value.last_price) if snapshot.ticker.value else None,
            mark_price=(
                str(snapshot.mark_price.value.mark_price) if snapshot.mark_price.value else None
            ),
            failed=len(snapshot.errors),
        )
        return snapshot

    async def _refresh_trades(self) -> bool:
        if self._trade_feed is None:
            return False
        return await self._trade_feed.refresh()


async def _fetch(name: str, call: Callable[[], Awaitable[T]]) -> SourceResult[T]:
    """Run one source fetch, capturing its failure instead of raising."""
    try:
        value = await call()
    except asyncio.CancelledError:
        raise
    except Exception as exc:
        logger.warning("market_source_failed", source=name, error=str(exc))
        return SourceResult(name, error=exc)
    return SourceResult(name, value=value)
