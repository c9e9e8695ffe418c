"""Tier cadences and the volatility-spike promotion policy."""

from clm_analytics.config import PromotionSettings, SchedulerSettings
from clm_analytics.models import TIER_PRIORITY, Tier


def tier_cadences_ms(settings: SchedulerSettings) -> dict[Tier, int]:
    """Refresh interval per tier, in milliseconds."""
    return {
        Tier.ACTIVE: settings.active_cadence_seconds * 1000,
        Tier.WATCHLIST: settings.watchlist_cadence_seconds * 1000,
        Tier.SCREENING: settings.screening_cadence_seconds * 1000,
    }


def effective_tier(tiers: set[Tier]) -> Tier:
    """Highest-priority tier among a pool's positions; untracked pools are screened."""
    for tier in TIER_PRIORITY:
        if tier in tiers:
            return tier
    return Tier.SCREENING


class PromotionPolicy:
    """Temporary promotion to the active tier on a volatility spike.

    A spike is 1-day volatility above ``spike_ratio`` times the pool's own
    30-day baseline. A promotion reverts once ``cooldown_seconds`` pass
    without another spike.
    """

    def __init__(self, settings: PromotionSettings) -> None:
        self.enabled = settings.enabled
        self.spike_ratio = settings.spike_ratio
        self.cooldown_ms = settings.cooldown_seconds * 1000

    def is_spike(self, volatility_1d: float | None, volatility_30d: float | None) -> bool:
        if not self.enabled or volatility_1d is None or volatility_30d is None:
            return False
        if volatility_30d <= 0:
            return False
        return volatility_1d > self.spike_ratio * volatility_30d

    def is_expired(self, last_spike_ms: int, now_ms: int) -> bool:
        return now_ms - last_spike_ms >= self.cooldown_ms
