"""Fee-to-volatility ratio, its classification, and fee APR derivation.

FVR = fee APR / annualized volatility. A zero volatility defines the ratio as
0: the pool cannot be evaluated and is treated as unattractive.
"""

from clm_analytics.models import PoolMetadata, Recommendation

ATTRACTIVE_ABOVE = 1.0
FAIR_ABOVE = 0.6


def fvr(fee_apr: float, volatility: float) -> float:
    """Fee-to-volatility ratio; 0 when volatility is 0."""
    if volatility == 0:
        return 0.0
    return fee_apr / volatility


def classify_fvr(ratio: float) -> Recommendation:
    """fvr > 1.0 attractive; 0.6 < fvr <= 1.0 fair; fvr <= 0.6 overpriced."""
    if ratio > ATTRACTIVE_ABOVE:
        return Recommendation.ATTRACTIVE
    if ratio > FAIR_ABOVE:
        return Recommendation.FAIR
    return Recommendation.OVERPRICED


def pool_fee_apr(fees_24h: float | None, tvl_usd: float | None) -> float:
    """Annualized pool fee yield: fees_24h / tvl * 365 (0 without TVL)."""
    if not tvl_usd or fees_24h is None:
        return 0.0
    return fees_24h / tvl_usd * 365


def position_fee_apr(
    pool_apr: float, time_in_range: float = 1.0, liquidity_share: float = 1.0
) -> float:
    """Fee APR earned by a position that is in range part of the time."""
    return pool_apr * time_in_range * liquidity_share


def excess_yield(fee_apr: float, il_rate: float) -> float:
    """Fee yield left over after paying for impermanent loss."""
    return fee_apr - il_rate


def estimate_fees_24h(metadata: PoolMetadata, fee_tier: float | None) -> float | None:
    """Best available 24h fee estimate for a pool.

    Reported fees win; otherwise volume x fee tier; otherwise the base APY
    (percent) applied to TVL.
    """
    if metadata.fees_24h is not None:
        return metadata.fees_24h
    tier = metadata.fee_tier if metadata.fee_tier is not None else fee_tier
    if metadata.volume_24h is not None and tier is not None:
        return metadata.volume_24h * tier
    if metadata.apy_base is not None and metadata.tvl_usd:
        return metadata.apy_base / 100 * metadata.tvl_usd / 365
    return None
