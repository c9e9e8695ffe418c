"""Configuration system using pydantic-settings with environment variable loading."""

from typing import Literal

from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict


class RateLimit(BaseModel):
    """Sliding-window quota for one external service."""

    max_requests: int
    window_seconds: float


class DatabaseSettings(BaseSettings):
    """SQLite storage location."""

    model_config = SettingsConfigDict(env_prefix="DB_")

    path: str = "data/analytics.db"
    seed_defaults: bool = False  # insert reference pools on first start


class ProviderSettings(BaseSettings):
    """External data provider endpoints, quotas, retry and failover policy.

    All fields configurable via PROVIDERS_ environment variable prefix.
    Rate limits default to the free-tier quotas of each service.
    """

    model_config = SettingsConfigDict(env_prefix="PROVIDERS_")

    geckoterminal_url: str = "https://api.geckoterminal.com/api/v2"
    defillama_url: str = "https://yields.llama.fi"
    dexscreener_url: str = "https://api.dexscreener.com"

    request_timeout: float = 10.0  # seconds per outbound call
    max_attempts: int = 3  # per provider before failing over
    retry_base_delay: float = 1.0  # 1s, 2s, 4s ...
    ohlcv_max_limit: int = 1000  # GeckoTerminal candles per request

    rate_limits: dict[str, RateLimit] = {
        "geckoterminal": RateLimit(max_requests=30, window_seconds=60),
        "defillama": RateLimit(max_requests=100, window_seconds=3600),
        "dexscreener": RateLimit(max_requests=300, window_seconds=60),
    }

    # Ordered fallback chains, first healthy provider wins
    price_providers: list[str] = ["geckoterminal", "dexscreener"]
    metadata_providers: list[str] = ["defillama", "geckoterminal", "dexscreener"]

    max_quota_wait: float = 30.0  # longer local waits raise QuotaExceeded

    breaker_failure_threshold: int = 3  # consecutive failed calls
    breaker_cooldown_seconds: float = 300.0


class IngestionSettings(BaseSettings):
    """Price observation ingestion parameters."""

    model_config = SettingsConfigDict(env_prefix="INGEST_")

    max_gap_seconds: int = 7200  # wider gaps break the log-return chain
    backfill_days: int = 30  # history requested for a pool with no observations


class AnalyticsSettings(BaseSettings):
    """Volatility, FVR and impermanent-loss calculation parameters."""

    model_config = SettingsConfigDict(env_prefix="ANALYTICS_")

    sampling: Literal["hourly", "daily"] = "hourly"
    concentration_factor: float = 1.5  # coarse CL amplification, tunable
    il_horizon_days: int = 30
    il_risk_bucket: float = 0.005  # |IL| per risk-score point


class AlertSettings(BaseSettings):
    """Alert evaluation parameters."""

    model_config = SettingsConfigDict(env_prefix="ALERTS_")

    cooldown_seconds: int = 3600  # one trigger per pool per alert per hour
    feed_size: int = 500


class SchedulerSettings(BaseSettings):
    """Tier cadences and tick execution limits."""

    model_config = SettingsConfigDict(env_prefix="SCHEDULER_")

    max_workers: int = 4
    tick_interval_seconds: int = 300
    tick_budget_seconds: float = 240.0
    run_once: bool = False  # single tick then exit, for cron-driven deployments

    active_cadence_seconds: int = 3600
    watchlist_cadence_seconds: int = 6 * 3600
    screening_cadence_seconds: int = 24 * 3600


class PromotionSettings(BaseSettings):
    """Automatic tier promotion on volatility spikes.

    The exact ratio and cooldown are product decisions, not derived constants.
    """

    model_config = SettingsConfigDict(env_prefix="PROMOTION_")

    enabled: bool = True
    spike_ratio: float = 2.0  # 1d volatility vs 30d baseline
    cooldown_seconds: int = 24 * 3600  # revert after this long without a spike


class ApiSettings(BaseSettings):
    """Read-only HTTP API server configuration."""

    model_config = SettingsConfigDict(env_prefix="API_")

    enabled: bool = False
    host: str = "0.0.0.0"
    port: int = 8080


class AppSettings(BaseSettings):
    """Root application settings, composing all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
    )

    log_level: str = "INFO"
    log_format: str = "console"
    database: DatabaseSettings = DatabaseSettings()
    providers: ProviderSettings = ProviderSettings()
    ingestion: IngestionSettings = IngestionSettings()
    analytics: AnalyticsSettings = AnalyticsSettings()
    alerts: AlertSettings = AlertSettings()
    scheduler: SchedulerSettings = SchedulerSettings()
    promotion: PromotionSettings = PromotionSettings()
    api: ApiSettings = ApiSettings()
