"""Binance USD-M futures client over the retrying REST executor.

Maps each typed call to its endpoint and decodes the JSON payload into
Decimal-valued dataclasses. A payload that does not have the expected shape
raises ExchangeError(INVALID_JSON) carrying the raw body.
"""

import json
import uuid
from collections.abc import Callable
from typing import Any, TypeVar

from perpbot.config import ExchangeSettings
from perpbot.exceptions import ErrorKind, ExchangeError
from perpbot.exchange.client import ExchangeClient
from perpbot.exchange.executor import RetryingExecutor
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
from perpbot.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

KLINE_FIELD_COUNT = 12


def _decode(payload: Any, parser: Callable[[Any], T], what: str) -> T:
    """Run ``parser`` over ``payload``, turning shape errors into INVALID_JSON."""
    try:
        return parser(payload)
    except (KeyError, IndexError, TypeError, ValueError, AttributeError, ArithmeticError) as exc:
        raise ExchangeError(
            ErrorKind.INVALID_JSON,
            f"failed to decode {what}",
            detail=repr(exc),
            raw=json.dumps(payload, default=str),
        ) from exc


def _parse_klines(rows: list) -> list[Kline]:
    klines = [Kline.from_row(row) for row in rows if len(row) >= KLINE_FIELD_COUNT]
    # The last candle is still forming; its volume figures are incomplete.
    if len(klines) > 1:
        klines = klines[:-1]
    return klines


class BinanceFuturesClient(ExchangeClient):
    """Concrete Binance USD-M futures client.

    All calls share one RetryingExecutor, and therefore one rate limiter and
    one HTTP session.
    """

    def __init__(
        self,
        settings: ExchangeSettings,
        executor: RetryingExecutor | None = None,
    ) -> None:
        self._settings = settings
        self._executor = executor or RetryingExecutor(settings)

    @property
    def executor(self) -> RetryingExecutor:
        """Access the underlying request executor."""
        return self._executor

    async def connect(self) -> None:
        logger.info("connecting_to_binance", testnet=self._settings.testnet)
        await self._executor.connect()

    async def close(self) -> None:
        logger.info("closing_binance_connection")
        await self._executor.close()

    async def execute(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        requires_auth: bool = False,
        idempotent: bool | None = None,
    ) -> Any:
        return await self._executor.execute(
            method, path, params, requires_auth=requires_auth, idempotent=idempotent
        )

    # -- Market data (public) ------------------------------------------------

    async def ping(self) -> None:
        await self._executor.execute("GET", "/fapi/v1/ping")

    async def server_time(self) -> int:
        payload = await self._executor.execute("GET", "/fapi/v1/time")
        return _decode(payload, lambda p: int(p["serverTime"]), "server time")

    async def fetch_ticker(self, symbol: str) -> Ticker:
        payload = await self._executor.execute(
            "GET", "/fapi/v1/ticker/24hr", {"symbol": symbol}
        )
        return _decode(payload, Ticker.from_json, "24h ticker")

    async def fetch_klines(self, symbol: str, interval: str, limit: int) -> list[Kline]:
        params = {"symbol": symbol, "interval": interval}
        if limit > 0:
            params["limit"] = limit
        payload = await self._executor.execute("GET", "/fapi/v1/klines", params)
        return _decode(payload, _parse_klines, "klines")

    async def fetch_depth(self, symbol: str, limit: int) -> OrderBook:
        params: dict[str, Any] = {"symbol": symbol}
        if limit > 0:
            params["limit"] = limit
        payload = await self._executor.execute("GET", "/fapi/v1/depth", params)
        return _decode(payload, OrderBook.from_json, "depth")

    async def fetch_recent_trades(self, symbol: str, limit: int) -> list[RecentTrade]:
        params: dict[str, Any] = {"symbol": symbol}
        if limit > 0:
            params["limit"] = limit
        payload = await self._executor.execute("GET", "/fapi/v1/trades", params)
        return _decode(
            payload, lambda rows: [RecentTrade.from_json(r) for r in rows], "recent trades"
        )

    async def fetch_mark_price(self, symbol: str) -> MarkPrice:
        payload = await self._executor.execute(
            "GET", "/fapi/v1/premiumIndex", {"symbol": symbol}
        )
        return _decode(payload, MarkPrice.from_json, "mark price")

    async def fetch_funding_rate(self, symbol: str) -> FundingRate:
        """Most recent funding settlement.

        The endpoint returns records oldest first, so only the last one is
        requested and the newest record in the reply is returned.

        Raises:
            ExchangeError: INVALID_SYMBOL when the exchange has no funding
                records for the symbol.
        """
        payload = await self._executor.execute(
            "GET", "/fapi/v1/fundingRate", {"symbol": symbol, "limit": 1}
        )
        rates = _decode(
            payload, lambda rows: [FundingRate.from_json(r) for r in rows], "funding rate"
        )
        if not rates:
            raise ExchangeError(
                ErrorKind.INVALID_SYMBOL, "no funding rate data", detail=symbol
            )
        return max(rates, key=lambda r: r.funding_time)

    async def fetch_funding_rate_history(self, symbol: str, limit: int) -> list[FundingRate]:
        """Funding settlements, oldest first. Defaults to 100 records."""
        payload = await self._executor.execute(
            "GET",
            "/fapi/v1/fundingRate",
            {"symbol": symbol, "limit": limit if limit > 0 else 100},
        )
        return _decode(
            payload,
            lambda rows: [FundingRate.from_json(r) for r in rows],
            "funding rate history",
        )

    async def fetch_open_interest(self, symbol: str) -> OpenInterest:
        payload = await self._executor.execute(
            "GET", "/fapi/v1/openInterest", {"symbol": symbol}
        )
        return _decode(payload, OpenInterest.from_json, "open interest")

    async def fetch_book_ticker(self, symbol: str) -> BookTicker:
        payload = await self._executor.execute(
            "GET", "/fapi/v1/ticker/bookTicker", {"symbol": symbol}
        )
        return _decode(payload, BookTicker.from_json, "book ticker")

    # -- Account (signed) ----------------------------------------------------

    async def fetch_account(self) -> AccountInfo:
        payload = await self._executor.execute("GET", "/fapi/v2/account", requires_auth=True)
        return _decode(payload, AccountInfo.from_json, "account")

    async def fetch_positions(self, symbol: str) -> list[Position]:
        payload = await self._executor.execute(
            "GET", "/fapi/v2/positionRisk", {"symbol": symbol}, requires_auth=True
        )
        return _decode(
            payload, lambda rows: [Position.from_json(r) for r in rows], "positions"
        )

    async def fetch_open_orders(self, symbol: str) -> list[Order]:
        payload = await self._executor.execute(
            "GET", "/fapi/v1/openOrders", {"symbol": symbol}, requires_auth=True
        )
        return _decode(payload, lambda rows: [Order.from_json(r) for r in rows], "open orders")

    async def fetch_order_history(self, symbol: str, limit: int) -> list[Order]:
        params: dict[str, Any] = {"symbol": symbol}
        if limit > 0:
            params["limit"] = limit
        payload = await self._executor.execute(
            "GET", "/fapi/v1/allOrders", params, requires_auth=True
        )
        return _decode(
            payload, lambda rows: [Order.from_json(r) for r in rows], "order history"
        )

    async def fetch_position_mode(self) -> bool:
        payload = await self._executor.execute(
            "GET", "/fapi/v1/positionSide/dual", requires_auth=True
        )
        return _decode(payload, lambda p: bool(p["dualSidePosition"]), "position mode")

    # -- Orders (signed) -----------------------------------------------------

    async def set_leverage(self, symbol: str, leverage: int) -> dict:
        logger.info("setting_leverage", symbol=symbol, leverage=leverage)
        # Setting the same leverage twice has the same effect.
        return await self._executor.execute(
            "POST",
            "/fapi/v1/leverage",
            {"symbol": symbol, "leverage": leverage},
            requires_auth=True,
            idempotent=True,
        )

    async def new_order(self, order: NewOrderRequest) -> Order:
        """Place an order.

        A client order id is generated when the request has none, so the
        order can be looked up after an ambiguous failure. The call is only
        retried when the exchange provably rejected it.
        """
        if not order.client_order_id:
            order.client_order_id = f"perpbot-{uuid.uuid4().hex[:24]}"
        logger.info(
            "creating_order",
            symbol=order.symbol,
            side=order.side.value,
            order_type=order.order_type.value,
            quantity=str(order.quantity) if order.quantity is not None else None,
            client_order_id=order.client_order_id,
        )
        payload = await self._executor.execute(
            "POST", "/fapi/v1/order", order.to_params(), requires_auth=True
        )
        return _decode(payload, Order.from_json, "new order")

    async def fetch_order(self, symbol: str, client_order_id: str) -> Order:
        """Look an order up by its client order id."""
        payload = await self._executor.execute(
            "GET",
            "/fapi/v1/order",
            {"symbol": symbol, "origClientOrderId": client_order_id},
            requires_auth=True,
        )
        return _decode(payload, Order.from_json, "order")

    async def cancel_order(self, symbol: str, order_id: int) -> Order:
        logger.info("cancelling_order", symbol=symbol, order_id=order_id)
        payload = await self._executor.execute(
            "DELETE",
            "/fapi/v1/order",
            {"symbol": symbol, "orderId": order_id},
            requires_auth=True,
        )
        return _decode(payload, Order.from_json, "cancelled order")

    async def cancel_all_open_orders(self, symbol: str) -> None:
        logger.info("cancelling_all_open_orders", symbol=symbol)
        await self._executor.execute(
            "DELETE", "/fapi/v1/allOpenOrders", {"symbol": symbol}, requires_auth=True
        )
