"""Abstract exchange client interface.

Defines the contract consumed by the market data aggregator, the trade feed
and the position poller. Binance-specific details (paths, parameter names,
wire decoding) stay in the concrete implementation.
"""

from abc import ABC, abstractmethod
from typing import Any

from perpbot.exchange.types import (
    AccountInfo,
    BookTicker,
    FundingRate,
    Kline,
    MarkPrice,
    NewOrderRequest,
    OpenInterest,
    Order,
    OrderBook,
    Position,
    RecentTrade,
    Ticker,
)


class ExchangeClient(ABC):
    """Abstract base class for exchange API clients."""

    @abstractmethod
    async def connect(self) -> None:
        """Open the underlying HTTP session."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the HTTP session. Must be called on shutdown."""
        ...

    @abstractmethod
    async def execute(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        requires_auth: bool = False,
        idempotent: bool | None = None,
    ) -> Any:
        """Generic call for order and position logic outside the gateway."""
        ...

    @abstractmethod
    async def ping(self) -> None:
        ...

    @abstractmethod
    async def server_time(self) -> int:
        """Exchange server time in Unix milliseconds."""
        ...

    @abstractmethod
    async def fetch_ticker(self, symbol: str) -> Ticker:
        ...

    @abstractmethod
    async def fetch_klines(self, symbol: str, interval: str, limit: int) -> list[Kline]:
        """Closed candles, oldest first."""
        ...

    @abstractmethod
    async def fetch_depth(self, symbol: str, limit: int) -> OrderBook:
        ...

    @abstractmethod
    async def fetch_recent_trades(self, symbol: str, limit: int) -> list[RecentTrade]:
        ...

    @abstractmethod
    async def fetch_mark_price(self, symbol: str) -> MarkPrice:
        ...

    @abstractmethod
    async def fetch_funding_rate(self, symbol: str) -> FundingRate:
        """Most recent settled funding rate."""
        ...

    @abstractmethod
    async def fetch_funding_rate_history(self, symbol: str, limit: int) -> list[FundingRate]:
        ...

    @abstractmethod
    async def fetch_open_interest(self, symbol: str) -> OpenInterest:
        ...

    @abstractmethod
    async def fetch_book_ticker(self, symbol: str) -> BookTicker:
        ...

    @abstractmethod
    async def fetch_account(self) -> AccountInfo:
        ...

    @abstractmethod
    async def fetch_positions(self, symbol: str) -> list[Position]:
        """Position legs for one symbol (one per side in hedge mode)."""
        ...

    @abstractmethod
    async def fetch_open_orders(self, symbol: str) -> list[Order]:
        ...

    @abstractmethod
    async def fetch_order_history(self, symbol: str, limit: int) -> list[Order]:
        ...

    @abstractmethod
    async def fetch_position_mode(self) -> bool:
        """True when the account is in hedge (dual side) mode."""
        ...

    @abstractmethod
    async def set_leverage(self, symbol: str, leverage: int) -> dict:
        ...

    @abstractmethod
    async def new_order(self, order: NewOrderRequest) -> Order:
        ...

    @abstractmethod
    async def cancel_order(self, symbol: str, order_id: int) -> Order:
        ...

    @abstractmethod
    async def cancel_all_open_orders(self, symbol: str) -> None:
        ...
