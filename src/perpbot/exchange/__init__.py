"""Exchange client layer -- Binance USD-M futures over aiohttp."""

from perpbot.exchange.binance_client import BinanceFuturesClient
from perpbot.exchange.client import ExchangeClient
from perpbot.exchange.executor import RetryingExecutor
from perpbot.exchange.rate_limiter import RateLimiter
from perpbot.exchange.signing import RequestSigner, SignedRequest, canonical_query_string

__all__ = [
    "BinanceFuturesClient",
    "ExchangeClient",
    "RateLimiter",
    "RequestSigner",
    "RetryingExecutor",
    "SignedRequest",
    "canonical_query_string",
]
