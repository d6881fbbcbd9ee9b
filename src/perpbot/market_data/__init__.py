"""Market data layer -- snapshot aggregation and the rolling trade cache."""

from perpbot.market_data.aggregator import MarketDataAggregator, MarketSnapshot, SourceResult
from perpbot.market_data.trade_cache import RollingTradeCache
from perpbot.market_data.trade_feed import TradeFeed

__all__ = [
    "MarketDataAggregator",
    "MarketSnapshot",
    "RollingTradeCache",
    "SourceResult",
    "TradeFeed",
]
