"""Tier-based pool update scheduling."""

from clm_analytics.scheduler.scheduler import TieredScheduler, utc_date
from clm_analytics.scheduler.tiers import PromotionPolicy, effective_tier, tier_cadences_ms

__all__ = [
    "PromotionPolicy",
    "TieredScheduler",
    "effective_tier",
    "tier_cadences_ms",
    "utc_date",
]
