"""External fetch layer: rate limiting, providers and the failover client."""

from clm_analytics.fetch.client import CircuitBreaker, FetchClient
from clm_analytics.fetch.providers import (
    DefiLlamaProvider,
    DexScreenerProvider,
    GeckoTerminalProvider,
    PoolDataProvider,
    build_providers,
)
from clm_analytics.fetch.rate_limiter import (
    Grant,
    UsageTrackedRateLimiter,
    build_rate_limiters,
)

__all__ = [
    "CircuitBreaker",
    "DefiLlamaProvider",
    "DexScreenerProvider",
    "FetchClient",
    "GeckoTerminalProvider",
    "Grant",
    "PoolDataProvider",
    "UsageTrackedRateLimiter",
    "build_providers",
    "build_rate_limiters",
]
