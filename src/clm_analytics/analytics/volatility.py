"""Rolling annualized volatility over the 1, 7 and 30 day windows.

Volatility is the population standard deviation of the trailing
``window_days * samples_per_day`` log returns, annualized by
``sqrt(samples_per_year)``. Fewer than two returns yield None
(insufficient data), never zero.
"""

import math

from clm_analytics.config import AnalyticsSettings
from clm_analytics.data.store import AnalyticsStore
from clm_analytics.exceptions import InsufficientSamples

#: Observations per day / per year for each sampling frequency.
SAMPLES_PER_DAY: dict[str, int] = {"hourly": 24, "daily": 1}
SAMPLES_PER_YEAR: dict[str, int] = {"hourly": 24 * 365, "daily": 365}

VOLATILITY_WINDOWS: tuple[int, ...] = (1, 7, 30)
MIN_SAMPLES = 2


def population_stddev(returns: list[float]) -> float:
    """Population standard deviation. Raises InsufficientSamples below two samples."""
    n = len(returns)
    if n < MIN_SAMPLES:
        raise InsufficientSamples(f"need {MIN_SAMPLES} returns, got {n}")
    mean = sum(returns) / n
    variance = sum((r - mean) ** 2 for r in returns) / n
    return math.sqrt(variance)


def annualized_volatility(returns: list[float], sampling: str = "hourly") -> float | None:
    """Annualize per-period volatility: sigma_ann = sigma * sqrt(periods per year).

    Args:
        returns: Log returns at the given sampling frequency.
        sampling: "hourly" or "daily".

    Returns:
        Annualized volatility as a decimal fraction, or None if fewer than
        two returns are available.
    """
    if sampling not in SAMPLES_PER_YEAR:
        raise ValueError(f"Unsupported sampling: {sampling}")
    try:
        sigma = population_stddev(returns)
    except InsufficientSamples:
        return None
    return sigma * math.sqrt(SAMPLES_PER_YEAR[sampling])


def window_sample_count(window_days: int, sampling: str = "hourly") -> int:
    """Number of trailing returns that make up a window."""
    return window_days * SAMPLES_PER_DAY[sampling]


def rolling_volatility(
    returns: list[float], sampling: str = "hourly"
) -> dict[int, float | None]:
    """Volatility for every maintained window from one return series."""
    return {
        days: annualized_volatility(returns[-window_sample_count(days, sampling):], sampling)
        for days in VOLATILITY_WINDOWS
    }


class VolatilityCalculator:
    """Computes pool volatility from stored log returns.

    Args:
        store: Source of the pool's log returns.
        settings: Sampling frequency.
    """

    def __init__(self, store: AnalyticsStore, settings: AnalyticsSettings) -> None:
        self._store = store
        self._sampling = settings.sampling

    async def volatility(self, pool_address: str, window_days: int) -> float | None:
        """Annualized volatility over the trailing window, None if insufficient."""
        if window_days <= 0:
            raise ValueError("window_days must be positive")
        returns = await self._store.get_recent_log_returns(
            pool_address, window_sample_count(window_days, self._sampling)
        )
        return annualized_volatility(returns, self._sampling)

    async def all_windows(self, pool_address: str) -> dict[int, float | None]:
        """Volatility for the 1, 7 and 30 day windows with a single query."""
        returns = await self._store.get_recent_log_returns(
            pool_address, window_sample_count(max(VOLATILITY_WINDOWS), self._sampling)
        )
        return rolling_volatility(returns, self._sampling)
