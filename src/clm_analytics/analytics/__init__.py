"""Risk/return calculators: volatility, fee-to-volatility ratio, impermanent loss."""

from clm_analytics.analytics.fvr import classify_fvr, fvr, pool_fee_apr
from clm_analytics.analytics.impermanent_loss import (
    breakeven_fee_apr,
    estimate_il,
    expected_il,
    il_path,
    il_risk_score,
)
from clm_analytics.analytics.volatility import (
    VOLATILITY_WINDOWS,
    VolatilityCalculator,
    annualized_volatility,
)

__all__ = [
    "VOLATILITY_WINDOWS",
    "VolatilityCalculator",
    "annualized_volatility",
    "breakeven_fee_apr",
    "classify_fvr",
    "estimate_il",
    "expected_il",
    "fvr",
    "il_path",
    "il_risk_score",
    "pool_fee_apr",
]
