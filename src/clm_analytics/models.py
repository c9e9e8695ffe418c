"""Shared data models for the pool analytics engine.

Prices, returns and risk metrics are floats: every metric here goes through
log/sqrt and is a statistical estimate, not a settled amount. Timestamps are
Unix milliseconds; calendar dates are UTC ``YYYY-MM-DD`` strings.
"""

from dataclasses import dataclass, field
from enum import Enum


class Tier(str, Enum):
    """Update-frequency classification of a pool."""

    ACTIVE = "active"
    WATCHLIST = "watchlist"
    SCREENING = "screening"


#: Highest priority first; a pool referenced by several positions takes the first match.
TIER_PRIORITY: tuple[Tier, ...] = (Tier.ACTIVE, Tier.WATCHLIST, Tier.SCREENING)


class Recommendation(str, Enum):
    """FVR signal classification."""

    ATTRACTIVE = "attractive"
    FAIR = "fair"
    OVERPRICED = "overpriced"


class AlertType(str, Enum):
    """Alert kinds; the breach direction is implied by the type."""

    FVR_THRESHOLD = "fvr_threshold"
    VOLATILITY_SPIKE = "volatility_spike"
    IL_WARNING = "il_warning"


@dataclass(frozen=True)
class Pool:
    """A concentrated-liquidity pool. Immutable except is_active."""

    address: str
    network: str
    token_pair: str
    protocol: str
    fee_tier: float | None = None  # fraction, e.g. 0.003 for 0.3%
    token0_symbol: str | None = None
    token1_symbol: str | None = None
    token0_address: str | None = None
    token1_address: str | None = None
    is_active: bool = True


@dataclass
class RawSample:
    """A provider price sample before ingestion."""

    timestamp_ms: int
    price: float
    volume_usd: float | None = None


@dataclass
class PriceObservation:
    """An ingested, ordered price observation. Append-only."""

    pool_address: str
    network: str
    timestamp_ms: int
    price: float
    volume_usd: float | None
    log_return: float | None


@dataclass
class PoolMetadata:
    """Pool state reported by a metadata provider."""

    tvl_usd: float | None = None
    volume_24h: float | None = None
    fees_24h: float | None = None
    apy_base: float | None = None  # percent, as reported
    apy_reward: float | None = None  # percent, as reported
    fee_tier: float | None = None
    source: str | None = None


@dataclass
class PoolAnalyticsSnapshot:
    """Current analytics for one pool, overwritten on each recompute."""

    pool_address: str
    network: str
    token_pair: str
    tvl_usd: float | None = None
    volume_24h: float | None = None
    fees_24h: float | None = None
    apy_base: float | None = None
    apy_reward: float | None = None
    fee_apr: float | None = None
    volatility_1d: float | None = None
    volatility_7d: float | None = None
    volatility_30d: float | None = None
    fvr: float | None = None
    il_risk_score: int | None = None
    recommendation: Recommendation | None = None
    expected_il_30d: float | None = None
    breakeven_fee_apr: float | None = None
    data_points_count: int = 0
    oldest_data_ms: int | None = None
    newest_data_ms: int | None = None
    last_updated_ms: int | None = None
    last_error: str | None = None

    def metric(self, name: str) -> float | None:
        """Return a numeric metric by column name."""
        value = getattr(self, name)
        return None if value is None else float(value)


@dataclass
class VolatilityHistoryPoint:
    """Daily volatility trend row, unique per (pool, date, period_days)."""

    pool_address: str
    date: str
    period_days: int
    value: float


@dataclass
class FvrHistoryPoint:
    """Daily FVR trend row, unique per (pool, date)."""

    pool_address: str
    date: str
    fvr: float
    fee_apr: float
    volatility: float
    recommendation: Recommendation


@dataclass
class UserPositionTier:
    """A tracked position that places a pool in an update tier."""

    pool_address: str
    network: str
    tier: Tier
    id: int | None = None
    tick_lower: int | None = None
    tick_upper: int | None = None
    liquidity: str | None = None  # arbitrary-precision integer as text


@dataclass
class ScheduledPool:
    """A pool selected for a scheduler tick, with its effective tier."""

    pool: Pool
    tier: Tier
    last_updated_ms: int | None = None
    promoted: bool = False


@dataclass
class Alert:
    """Threshold alert configuration for one pool."""

    pool_address: str
    alert_type: AlertType
    threshold_value: float
    id: int | None = None
    is_active: bool = True
    last_triggered_ms: int | None = None


@dataclass
class AlertEvent:
    """A fired alert, handed to the notification path."""

    alert_id: int
    pool_address: str
    alert_type: AlertType
    metric: str
    value: float
    threshold_value: float
    triggered_at_ms: int


@dataclass
class TickReport:
    """Outcome of one scheduler tick."""

    started_at_ms: int
    selected: list[str] = field(default_factory=list)
    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    skipped_in_flight: list[str] = field(default_factory=list)
    abandoned: list[str] = field(default_factory=list)
    alerts: list[AlertEvent] = field(default_factory=list)
