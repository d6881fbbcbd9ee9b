"""Shared test fixtures for the futures gateway."""

from decimal import Decimal

import pytest

from perpbot.config import AppSettings, ExchangeSettings, MarketDataSettings, PositionSettings
from perpbot.exchange.types import Position, PositionSide


class FakeClock:
    """Manually advanced clock returning seconds."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_position(
    amount: str,
    side: PositionSide = PositionSide.LONG,
    symbol: str = "ETHUSDT",
    update_time: int = 1_700_000_000_000,
    unrealized: str = "0",
) -> Position:
    return Position(
        symbol=symbol,
        position_amt=Decimal(amount),
        entry_price=Decimal("3000"),
        mark_price=Decimal("3010"),
        unrealized_profit=Decimal(unrealized),
        liquidation_price=Decimal("0"),
        leverage=10,
        margin_type="cross",
        position_side=side,
        notional=Decimal("0"),
        update_time=update_time,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(start=1_700_000_000.0)


@pytest.fixture
def position_factory():
    """Factory building positionRisk legs: position_factory("0.5", PositionSide.LONG)."""
    return make_position


@pytest.fixture
def exchange_settings() -> ExchangeSettings:
    """Exchange settings with dummy keys and a fast, deterministic retry policy."""
    return ExchangeSettings(
        api_key="test-api-key",  # type: ignore[arg-type]
        api_secret="test-api-secret",  # type: ignore[arg-type]
        max_retries=2,
        retry_delay_ms=1000,
        retry_backoff=2.0,
        recv_window_ms=5000,
    )


@pytest.fixture
def mock_settings(exchange_settings: ExchangeSettings) -> AppSettings:
    """Return AppSettings with test defaults (dummy API keys)."""
    return AppSettings(
        log_level="DEBUG",
        exchange=exchange_settings,
        market=MarketDataSettings(symbol="ETHUSDT", snapshot_interval=0.01),
        position=PositionSettings(poll_interval=60.0),
    )
