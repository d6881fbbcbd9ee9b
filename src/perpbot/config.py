"""Configuration system using pydantic-settings with environment variable loading.

Every numeric bound is enforced by pydantic at construction time, so an invalid
exchange configuration fails once, up front, with a ValidationError instead of
surfacing as a runtime error on the first request.
"""

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

MAINNET_BASE_URL = "https://fapi.binance.com"
TESTNET_BASE_URL = "https://testnet.binancefuture.com"


class ExchangeSettings(BaseSettings):
    """Binance USD-M futures connection, retry and rate-limit settings."""

    model_config = SettingsConfigDict(env_prefix="BINANCE_")

    api_key: SecretStr = SecretStr("")
    api_secret: SecretStr = SecretStr("")
    base_url: str = MAINNET_BASE_URL
    testnet: bool = False
    proxy_url: str = ""

    timeout: float = Field(default=10.0, gt=0)  # seconds, per HTTP call
    max_retries: int = Field(default=3, ge=0)
    retry_delay_ms: int = Field(default=1000, ge=0)
    retry_backoff: float = Field(default=2.0, ge=1)
    recv_window_ms: int = Field(default=60000, ge=0, le=60000)

    rate_limit_capacity: int = Field(default=1200, gt=0)
    rate_limit_interval_ms: int = Field(default=60000, gt=0)

    @property
    def resolved_base_url(self) -> str:
        """Base URL actually used for requests (testnet overrides base_url)."""
        if self.testnet:
            return TESTNET_BASE_URL
        return self.base_url.rstrip("/")


class MarketDataSettings(BaseSettings):
    """What the aggregator fetches and how the trade tape is cached."""

    model_config = SettingsConfigDict(env_prefix="MARKET_")

    symbol: str = "ETHUSDT"
    kline_interval: str = "3m"
    kline_limit: int = Field(default=71, gt=0)
    depth_limit: int = 20
    funding_history_limit: int = Field(default=6, gt=0)
    order_history_limit: int = Field(default=15, gt=0)

    trade_fetch_limit: int = Field(default=1000, gt=0, le=1000)
    trade_cache_capacity: int = Field(default=10_000, gt=0)
    trade_refresh_interval: float = Field(default=150.0, gt=0)  # seconds
    trade_min_fetch_gap: float = Field(default=10.0, ge=0)  # seconds
    trade_window_minutes: list[int] = [5, 10, 20]

    snapshot_interval: float = Field(default=180.0, gt=0)  # seconds between scheduler cycles


class PositionSettings(BaseSettings):
    """Position poller cadence and history bound."""

    model_config = SettingsConfigDict(env_prefix="POSITION_")

    poll_interval: float = Field(default=180.0, gt=0)  # 3 minutes
    history_capacity: int = Field(default=15, gt=0)


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    exchange: ExchangeSettings = ExchangeSettings()
    market: MarketDataSettings = MarketDataSettings()
    position: PositionSettings = PositionSettings()
