"""SQLite persistence for pools, price observations, analytics and alerts."""

from clm_analytics.data.database import AnalyticsDatabase
from clm_analytics.data.seed import DEFAULT_POOLS, seed_default_pools
from clm_analytics.data.store import AnalyticsStore

__all__ = [
    "DEFAULT_POOLS",
    "AnalyticsDatabase",
    "AnalyticsStore",
    "seed_default_pools",
]
