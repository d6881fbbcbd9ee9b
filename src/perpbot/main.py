"""Entry point for the futures gateway service.

Wires all components together once, explicitly, and runs the snapshot
scheduler. Handles SIGINT/SIGTERM for graceful shutdown.

Component wiring order (in build_components):
1. AppSettings (configuration)
2. Logging setup
3. RetryingExecutor + BinanceFuturesClient (shared by every consumer)
4. RollingTradeCache
5. TradeFeed (background trade tape refresh)
6. MarketDataAggregator
7. SnapshotScheduler
8. PositionPoller (disarm callback -> scheduler)
"""

import asyncio
import signal
from typing import Any

from perpbot.config import AppSettings
from perpbot.exceptions import ConfigurationError
from perpbot.exchange.binance_client import BinanceFuturesClient
from perpbot.exchange.executor import RetryingExecutor
from perpbot.logging import get_logger, setup_logging
from perpbot.market_data.aggregator import MarketDataAggregator
from perpbot.market_data.trade_cache import RollingTradeCache
from perpbot.market_data.trade_feed import TradeFeed
from perpbot.position.poller import PositionPoller
from perpbot.scheduler import SnapshotScheduler


def build_components(settings: AppSettings) -> dict[str, Any]:
    """Build all components from settings.

    Does NOT open the HTTP session -- that happens in run().

    Raises:
        ConfigurationError: An API secret is configured without an API key.
    """
    logger = get_logger("perpbot.main")

    api_key = settings.exchange.api_key.get_secret_value()
    api_secret = settings.exchange.api_secret.get_secret_value()
    if api_secret and not api_key:
        raise ConfigurationError("BINANCE_API_SECRET is set but BINANCE_API_KEY is empty")
    if not api_secret:
        logger.warning(
            "no_api_secret_configured",
            note="Public endpoints (market data) will work. "
            "Signed endpoints (account, positions, orders) will fail.",
        )

    executor = RetryingExecutor(settings.exchange)
    exchange_client = BinanceFuturesClient(settings.exchange, executor)

    trade_cache = RollingTradeCache(settings.market.trade_cache_capacity)

    trade_feed = TradeFeed(
        exchange_client,
        trade_cache,
        settings.market.symbol,
        fetch_limit=settings.market.trade_fetch_limit,
        refresh_interval=settings.market.trade_refresh_interval,
        min_fetch_gap=settings.market.trade_min_fetch_gap,
    )

    aggregator = MarketDataAggregator(exchange_client, settings.market, trade_feed)

    scheduler = SnapshotScheduler(settings, aggregator, trade_cache)
    # Set after scheduler created (circular ref)
    trade_feed.set_activity_check(scheduler.is_armed)

    poller = PositionPoller(
        exchange_client,
        settings.market.symbol,
        disarm=scheduler.disarm,
        poll_interval=settings.position.poll_interval,
        history_capacity=settings.position.history_capacity,
    )
    scheduler.set_poller(poller)

    return {
        "exchange_client": exchange_client,
        "trade_cache": trade_cache,
        "trade_feed": trade_feed,
        "aggregator": aggregator,
        "scheduler": scheduler,
        "poller": poller,
    }


def _setup_signal_handlers(scheduler: SnapshotScheduler) -> None:
    """Register SIGINT/SIGTERM to stop the scheduler gracefully.

    Must be called after the asyncio event loop is running.
    """
    logger = get_logger("perpbot.main")
    loop = asyncio.get_running_loop()

    def _graceful_handler() -> None:
        logger.info("graceful_shutdown_signal")
        asyncio.create_task(scheduler.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, _graceful_handler)


async def run() -> None:
    """Run the gateway until a shutdown signal arrives."""
    # 1. Load settings
    settings = AppSettings()

    # 2. Setup logging
    setup_logging(settings.log_level)
    logger = get_logger("perpbot.main")

    # 3-8. Build all components
    components = build_components(settings)
    scheduler: SnapshotScheduler = components["scheduler"]
    _setup_signal_handlers(scheduler)

    logger.info(
        "starting_gateway",
        symbol=settings.market.symbol,
        base_url=settings.exchange.resolved_base_url,
        snapshot_interval=settings.market.snapshot_interval,
    )

    try:
        await components["exchange_client"].connect()
        await components["trade_feed"].start()
        await scheduler.run()
    finally:
        await components["poller"].stop()
        await components["trade_feed"].stop()
        await components["exchange_client"].close()
        logger.info("gateway_stopped")


def main() -> None:
    """Synchronous entry point."""
    asyncio.run(run())


if __name__ == "__main__":
    main()
