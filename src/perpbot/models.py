"""Shared data models for the futures gateway.

CRITICAL: All monetary values use Decimal. Never use float for prices, quantities, or PnL.
"""

import time
from dataclasses import dataclass, field
from decimal import Decimal

from perpbot.exchange.types import Position, PositionSide, RecentTrade


@dataclass
class CachedTrade:
    """One trade-tape entry held by the rolling trade cache. Identity is ``id``."""

    id: int
    price: Decimal
    quantity: Decimal
    timestamp_ms: int
    is_buyer_maker: bool

    @classmethod
    def from_recent_trade(cls, trade: RecentTrade) -> "CachedTrade":
        return cls(
            id=trade.id,
            price=trade.price,
            quantity=trade.qty,
            timestamp_ms=trade.time,
            is_buyer_maker=trade.is_buyer_maker,
        )


@dataclass
class PositionInfo:
    """Open-position summary derived from a symbol's position legs.

    In hedge mode the LONG and SHORT legs are reported separately. In one-way
    mode there is a single BOTH leg whose sign gives the direction; its signed
    amount is kept in ``net_amt``.
    """

    has_long: bool = False
    has_short: bool = False
    long_amt: Decimal = Decimal("0")
    short_amt: Decimal = Decimal("0")
    net_amt: Decimal = Decimal("0")
    is_dual_side: bool = True
    duration: float = 0.0  # seconds since the open leg was last updated
    unrealized_pnl: Decimal = Decimal("0")

    @property
    def has_position(self) -> bool:
        return self.has_long or self.has_short

    @classmethod
    def from_positions(
        cls, positions: list[Position], now: float | None = None
    ) -> "PositionInfo":
        """Derive the summary from positionRisk legs.

        Args:
            positions: Legs for one symbol.
            now: Current Unix time in seconds (defaults to time.time()).
        """
        now = time.time() if now is None else now
        info = cls()

        for pos in positions:
            amt = pos.position_amt
            if pos.position_side is PositionSide.BOTH:
                info.is_dual_side = False
                info.net_amt = amt
                if amt > 0:
                    info.has_long = True
                    info.long_amt = amt
                elif amt < 0:
                    info.has_short = True
                    info.short_amt = -amt
            else:
                size = abs(amt)
                if pos.position_side is PositionSide.LONG and size > 0:
                    info.has_long = True
                    info.long_amt = size
                elif pos.position_side is PositionSide.SHORT and size > 0:
                    info.has_short = True
                    info.short_amt = size

            if amt != 0:
                info.duration = max(0.0, now - pos.update_time / 1000)
                info.unrealized_pnl = pos.unrealized_profit

        return info


@dataclass
class PositionRecord:
    """One position snapshot retained by the poller."""

    positions: list[Position]
    info: PositionInfo
    recorded_at: float = field(default_factory=time.time)
