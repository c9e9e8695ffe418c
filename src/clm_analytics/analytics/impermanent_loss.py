"""Impermanent-loss estimation for full-range and concentrated positions.

Constant-product IL for a price ratio r = P_end / P_start is
``2*sqrt(r)/(1+r) - 1``: zero at r = 1, symmetric under r <-> 1/r and always
in (-1, 0]. Concentrated positions apply a fixed amplification factor, a
coarse tunable approximation of range tightness rather than a derived law.
The scaled value is exactly factor times the constant-product one, so for
large divergence it drops below -1 (e.g. about -1.20 at r = 100 with 1.5).
expected_il caps it at -1, a total loss of the position.
"""

import math

DEFAULT_CONCENTRATION_FACTOR = 1.5
DAYS_PER_YEAR = 365


def estimate_il(
    price_ratio: float,
    concentrated: bool = False,
    concentration_factor: float = DEFAULT_CONCENTRATION_FACTOR,
) -> float:
    """Estimated impermanent loss (a non-positive fraction) for a price ratio."""
    if price_ratio <= 0:
        raise ValueError("price_ratio must be positive")
    il_cp = 2 * math.sqrt(price_ratio) / (1 + price_ratio) - 1
    # Exact zero at r == 1 and never a positive rounding artefact
    il_cp = min(il_cp, 0.0)
    if concentrated:
        return il_cp * concentration_factor
    return il_cp


def il_path(
    prices: list[float],
    concentrated: bool = False,
    concentration_factor: float = DEFAULT_CONCENTRATION_FACTOR,
) -> list[float]:
    """IL at each point of a price path, relative to the first price."""
    if not prices:
        return []
    entry = prices[0]
    if entry <= 0:
        raise ValueError("entry price must be positive")
    return [estimate_il(p / entry, concentrated, concentration_factor) for p in prices]


def one_sigma_price_ratio(volatility: float, horizon_days: int) -> float:
    """Price ratio of a one-standard-deviation move over the horizon."""
    return math.exp(volatility * math.sqrt(horizon_days / DAYS_PER_YEAR))


def expected_il(
    volatility: float,
    horizon_days: int = 30,
    concentrated: bool = True,
    concentration_factor: float = DEFAULT_CONCENTRATION_FACTOR,
) -> float:
    """IL of a one-sigma move over the horizon, never below -1.

    IL is symmetric, so an up move and a down move give the same value.
    """
    il = estimate_il(
        one_sigma_price_ratio(volatility, horizon_days), concentrated, concentration_factor
    )
    return max(il, -1.0)


def breakeven_fee_apr(estimated_il: float, horizon_days: int = 30) -> float:
    """Annualized fee rate that exactly offsets |IL| over the horizon."""
    if horizon_days <= 0:
        raise ValueError("horizon_days must be positive")
    return abs(estimated_il) / (horizon_days / DAYS_PER_YEAR)


def il_risk_score(expected_il_30d: float, bucket: float = 0.005) -> int:
    """Map |expected 30-day IL| onto a monotonic 1-10 risk scale.

    Each ``bucket`` of IL magnitude adds one point: with the default 0.5%
    bucket, |IL| <= 0.5% scores 1 and |IL| > 4.5% scores 10.
    """
    if bucket <= 0:
        raise ValueError("bucket must be positive")
    score = math.ceil(abs(expected_il_30d) / bucket)
    return max(1, min(10, score))


def position_value(price: float, price_lower: float, price_upper: float, liquidity: float) -> float:
    """Value of a range position in token1 units.

    Below the range the position is all token0, above it all token1, and in
    range V = L * (2*sqrt(P) - sqrt(Pa) - P/sqrt(Pb)).
    """
    s = math.sqrt(price)
    sa = math.sqrt(price_lower)
    sb = math.sqrt(price_upper)
    if price <= price_lower:
        amount0 = liquidity * (1 / sa - 1 / sb)
        return amount0 * price
    if price >= price_upper:
        return liquidity * (sb - sa)
    return liquidity * (2 * s - sa - (s * s) / sb)


def hodl_value(initial_capital: float, current_price: float, initial_price: float) -> float:
    """Value of a 50/50 buy-and-hold of the same capital, in token1 units."""
    return initial_capital / 2 * (1 + current_price / initial_price)


def realized_position_il(
    entry_price: float,
    current_price: float,
    price_lower: float,
    price_upper: float,
    liquidity: float,
) -> float:
    """Realized IL of a range position versus holding its entry amounts 50/50."""
    entry_value = position_value(entry_price, price_lower, price_upper, liquidity)
    if entry_value <= 0:
        raise ValueError("position has no value at entry price")
    current = position_value(current_price, price_lower, price_upper, liquidity)
    hodl = hodl_value(entry_value, current_price, entry_price)
    return current / hodl - 1
