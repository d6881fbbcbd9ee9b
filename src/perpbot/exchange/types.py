"""Exchange wire types for Binance USD-M futures and their JSON decoders.

All monetary values use Decimal. Never use float for prices, quantities, or fees.

Klines and depth levels arrive as positional arrays, not objects; their
decoders index by position per the exchange's API reference:
- kline: [openTime, open, high, low, close, volume, closeTime,
          quoteVolume, trades, takerBuyBase, takerBuyQuote, ignore]
- depth level: [price, qty]
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any


def to_decimal(value: Any) -> Decimal:
    """Convert an exchange numeric string (or number) to Decimal; empty -> 0."""
    if value is None or value == "":
        return Decimal("0")
    return Decimal(str(value))


class PositionSide(str, Enum):
    """Position side as reported by positionRisk (BOTH in one-way mode)."""

    BOTH = "BOTH"
    LONG = "LONG"
    SHORT = "SHORT"


class OrderSide(str, Enum):
    BUY = "BUY"
    SELL = "SELL"


class OrderType(str, Enum):
    MARKET = "MARKET"
    LIMIT = "LIMIT"
    STOP = "STOP"
    STOP_MARKET = "STOP_MARKET"
    TAKE_PROFIT = "TAKE_PROFIT"
    TAKE_PROFIT_MARKET = "TAKE_PROFIT_MARKET"


class TimeInForce(str, Enum):
    GTC = "GTC"
    IOC = "IOC"
    FOK = "FOK"


@dataclass
class Ticker:
    """24h rolling window statistics."""

    symbol: str
    last_price: Decimal
    price_change: Decimal
    price_change_percent: Decimal
    weighted_avg_price: Decimal
    open_price: Decimal
    high_price: Decimal
    low_price: Decimal
    volume: Decimal
    quote_volume: Decimal
    open_time: int
    close_time: int
    count: int

    @classmethod
    def from_json(cls, data: dict) -> "Ticker":
        return cls(
            symbol=data["symbol"],
            last_price=to_decimal(data["lastPrice"]),
            price_change=to_decimal(data.get("priceChange")),
            price_change_percent=to_decimal(data.get("priceChangePercent")),
            weighted_avg_price=to_decimal(data.get("weightedAvgPrice")),
            open_price=to_decimal(data.get("openPrice")),
            high_price=to_decimal(data.get("highPrice")),
            low_price=to_decimal(data.get("lowPrice")),
            volume=to_decimal(data.get("volume")),
            quote_volume=to_decimal(data.get("quoteVolume")),
            open_time=int(data.get("openTime", 0)),
            close_time=int(data.get("closeTime", 0)),
            count=int(data.get("count", 0)),
        )


@dataclass
class Kline:
    """One candle, decoded positionally."""

    open_time: int
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal
    close_time: int
    quote_volume: Decimal
    trade_count: int
    taker_buy_base_volume: Decimal
    taker_buy_quote_volume: Decimal

    @classmethod
    def from_row(cls, row: list) -> "Kline":
        return cls(
            open_time=int(row[0]),
            open=to_decimal(row[1]),
            high=to_decimal(row[2]),
            low=to_decimal(row[3]),
            close=to_decimal(row[4]),
            volume=to_decimal(row[5]),
            close_time=int(row[6]),
            quote_volume=to_decimal(row[7]),
            trade_count=int(row[8]),
            taker_buy_base_volume=to_decimal(row[9]),
            taker_buy_quote_volume=to_decimal(row[10]),
        )


@dataclass
class DepthLevel:
    price: Decimal
    quantity: Decimal


@dataclass
class OrderBook:
    """Order book snapshot; bids best-first (descending), asks best-first (ascending)."""

    last_update_id: int
    bids: list[DepthLevel] = field(default_factory=list)
    asks: list[DepthLevel] = field(default_factory=list)

    @classmethod
    def from_json(cls, data: dict) -> "OrderBook":
        return cls(
            last_update_id=int(data.get("lastUpdateId", 0)),
            bids=[_depth_level(level) for level in data.get("bids", []) if len(level) >= 2],
            asks=[_depth_level(level) for level in data.get("asks", []) if len(level) >= 2],
        )

    @property
    def best_bid(self) -> DepthLevel | None:
        return self.bids[0] if self.bids else None

    @property
    def best_ask(self) -> DepthLevel | None:
        return self.asks[0] if self.asks else None


def _depth_level(level: list) -> DepthLevel:
    return DepthLevel(price=to_decimal(level[0]), quantity=to_decimal(level[1]))


@dataclass
class RecentTrade:
    """Trade-tape entry from /fapi/v1/trades."""

    id: int
    price: Decimal
    qty: Decimal
    quote_qty: Decimal
    time: int  # Unix milliseconds
    is_buyer_maker: bool

    @classmethod
    def from_json(cls, data: dict) -> "RecentTrade":
        return cls(
            id=int(data["id"]),
            price=to_decimal(data["price"]),
            qty=to_decimal(data["qty"]),
            quote_qty=to_decimal(data.get("quoteQty")),
            time=int(data["time"]),
            is_buyer_maker=bool(data.get("isBuyerMaker", False)),
        )


@dataclass
class MarkPrice:
    """Premium index: mark/index price and current funding info."""

    symbol: str
    mark_price: Decimal
    index_price: Decimal
    estimated_settle_price: Decimal
    last_funding_rate: Decimal
    next_funding_time: int
    interest_rate: Decimal
    time: int

    @classmethod
    def from_json(cls, data: dict) -> "MarkPrice":
        return cls(
            symbol=data["symbol"],
            mark_price=to_decimal(data["markPrice"]),
            index_price=to_decimal(data.get("indexPrice")),
            estimated_settle_price=to_decimal(data.get("estimatedSettlePrice")),
            last_funding_rate=to_decimal(data.get("lastFundingRate")),
            next_funding_time=int(data.get("nextFundingTime", 0)),
            interest_rate=to_decimal(data.get("interestRate")),
            time=int(data.get("time", 0)),
        )


@dataclass
class FundingRate:
    """One funding settlement record."""

    symbol: str
    funding_rate: Decimal
    funding_time: int  # Unix milliseconds
    mark_price: Decimal = Decimal("0")

    @classmethod
    def from_json(cls, data: dict) -> "FundingRate":
        return cls(
            symbol=data["symbol"],
            funding_rate=to_decimal(data["fundingRate"]),
            funding_time=int(data["fundingTime"]),
            mark_price=to_decimal(data.get("markPrice")),
        )


@dataclass
class OpenInterest:
    """Open interest in contracts (not notional)."""

    symbol: str
    open_interest: Decimal
    time: int

    @classmethod
    def from_json(cls, data: dict) -> "OpenInterest":
        return cls(
            symbol=data["symbol"],
            open_interest=to_decimal(data["openInterest"]),
            time=int(data.get("time", 0)),
        )


@dataclass
class Position:
    """One position leg from /fapi/v2/positionRisk."""

    symbol: str
    position_amt: Decimal  # signed in one-way mode
    entry_price: Decimal
    mark_price: Decimal
    unrealized_profit: Decimal
    liquidation_price: Decimal
    leverage: int
    margin_type: str
    position_side: PositionSide
    notional: Decimal
    update_time: int  # Unix milliseconds

    @classmethod
    def from_json(cls, data: dict) -> "Position":
        return cls(
            symbol=data["symbol"],
            position_amt=to_decimal(data["positionAmt"]),
            entry_price=to_decimal(data.get("entryPrice")),
            mark_price=to_decimal(data.get("markPrice")),
            unrealized_profit=to_decimal(data.get("unRealizedProfit")),
            liquidation_price=to_decimal(data.get("liquidationPrice")),
            leverage=int(data.get("leverage", 0) or 0),
            margin_type=str(data.get("marginType", "")),
            position_side=PositionSide(data.get("positionSide", "BOTH")),
            notional=to_decimal(data.get("notional")),
            update_time=int(data.get("updateTime", 0)),
        )


@dataclass
class AssetBalance:
    asset: str
    wallet_balance: Decimal
    available_balance: Decimal
    unrealized_profit: Decimal


@dataclass
class AccountInfo:
    """Futures account summary from /fapi/v2/account."""

    total_wallet_balance: Decimal
    total_margin_balance: Decimal
    total_unrealized_profit: Decimal
    available_balance: Decimal
    total_initial_margin: Decimal
    total_maint_margin: Decimal
    can_trade: bool
    update_time: int
    assets: list[AssetBalance] = field(default_factory=list)

    @classmethod
    def from_json(cls, data: dict) -> "AccountInfo":
        return cls(
            total_wallet_balance=to_decimal(data["totalWalletBalance"]),
            total_margin_balance=to_decimal(data.get("totalMarginBalance")),
            total_unrealized_profit=to_decimal(data.get("totalUnrealizedProfit")),
            available_balance=to_decimal(data.get("availableBalance")),
            total_initial_margin=to_decimal(data.get("totalInitialMargin")),
            total_maint_margin=to_decimal(data.get("totalMaintMargin")),
            can_trade=bool(data.get("canTrade", False)),
            update_time=int(data.get("updateTime", 0)),
            assets=[
                AssetBalance(
                    asset=a["asset"],
                    wallet_balance=to_decimal(a.get("walletBalance")),
                    available_balance=to_decimal(a.get("availableBalance")),
                    unrealized_profit=to_decimal(a.get("unrealizedProfit")),
                )
                for a in data.get("assets", [])
            ],
        )


@dataclass
class Order:
    """Order as returned by order query/placement endpoints."""

    symbol: str
    order_id: int
    client_order_id: str
    price: Decimal
    avg_price: Decimal
    orig_qty: Decimal
    executed_qty: Decimal
    status: str
    type: str
    side: str
    position_side: str
    stop_price: Decimal
    time_in_force: str
    reduce_only: bool
    close_position: bool
    time: int
    update_time: int

    @classmethod
    def from_json(cls, data: dict) -> "Order":
        return cls(
            symbol=data["symbol"],
            order_id=int(data["orderId"]),
            client_order_id=str(data.get("clientOrderId", "")),
            price=to_decimal(data.get("price")),
            avg_price=to_decimal(data.get("avgPrice")),
            orig_qty=to_decimal(data.get("origQty")),
            executed_qty=to_decimal(data.get("executedQty")),
            status=str(data.get("status", "")),
            type=str(data.get("type", "")),
            side=str(data.get("side", "")),
            position_side=str(data.get("positionSide", "")),
            stop_price=to_decimal(data.get("stopPrice")),
            time_in_force=str(data.get("timeInForce", "")),
            reduce_only=bool(data.get("reduceOnly", False)),
            close_position=bool(data.get("closePosition", False)),
            time=int(data.get("time", 0)),
            update_time=int(data.get("updateTime", 0)),
        )


@dataclass
class BookTicker:
    """Best bid/ask currently on the book."""

    symbol: str
    bid_price: Decimal
    bid_qty: Decimal
    ask_price: Decimal
    ask_qty: Decimal
    time: int

    @classmethod
    def from_json(cls, data: dict) -> "BookTicker":
        return cls(
            symbol=data["symbol"],
            bid_price=to_decimal(data["bidPrice"]),
            bid_qty=to_decimal(data.get("bidQty")),
            ask_price=to_decimal(data["askPrice"]),
            ask_qty=to_decimal(data.get("askQty")),
            time=int(data.get("time", 0)),
        )


@dataclass
class NewOrderRequest:
    """Parameters for /fapi/v1/order. Business rules live outside the gateway."""

    symbol: str
    side: OrderSide
    order_type: OrderType
    quantity: Decimal | None = None
    price: Decimal | None = None
    stop_price: Decimal | None = None
    time_in_force: TimeInForce | None = None
    position_side: PositionSide | None = None
    reduce_only: bool = False
    close_position: bool = False
    working_type: str = ""
    client_order_id: str = ""

    def to_params(self) -> dict[str, str]:
        params = {
            "symbol": self.symbol,
            "side": self.side.value,
            "type": self.order_type.value,
        }
        if self.quantity is not None:
            params["quantity"] = str(self.quantity)
        if self.price is not None:
            params["price"] = str(self.price)
        if self.stop_price is not None:
            params["stopPrice"] = str(self.stop_price)
        if self.time_in_force is not None:
            params["timeInForce"] = self.time_in_force.value
        if self.position_side is not None:
            params["positionSide"] = self.position_side.value
        if self.reduce_only:
            params["reduceOnly"] = "true"
        if self.close_position:
            params["closePosition"] = "true"
        if self.working_type:
            params["workingType"] = self.working_type
        if self.client_order_id:
            params["newClientOrderId"] = self.client_order_id
        return params
