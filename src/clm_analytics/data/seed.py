"""Reference pools for a fresh database.

Four Uniswap v3 mainnet pools: the two ETH/USDC fee tiers tracked as
active, BTC/ETH and BTC/USDC on the watchlist.
"""

from clm_analytics.data.store import AnalyticsStore
from clm_analytics.logging import get_logger
from clm_analytics.models import Pool, Tier, UserPositionTier

logger = get_logger(__name__)

DEFAULT_POOLS: list[tuple[Pool, Tier]] = [
    (
        Pool(
            address="0x88e6a0c2ddd26feeb64f039a2c41296fcb3f5640",
            network="eth",
            token_pair="ETH/USDC",
            protocol="uniswap-v3",
            fee_tier=0.0005,
            token0_symbol="ETH",
            token1_symbol="USDC",
        ),
        Tier.ACTIVE,
    ),
    (
        Pool(
            address="0x8ad599c3a0ff1de082011efddc58f1908eb6e6d8",
            network="eth",
            token_pair="ETH/USDC",
            protocol="uniswap-v3",
            fee_tier=0.003,
            token0_symbol="ETH",
            token1_symbol="USDC",
        ),
        Tier.ACTIVE,
    ),
    (
        Pool(
            address="0xcbcdf9626bc03e24f779434178a73a0b4bad62ed",
            network="eth",
            token_pair="BTC/ETH",
            protocol="uniswap-v3",
            fee_tier=0.003,
            token0_symbol="WBTC",
            token1_symbol="ETH",
        ),
        Tier.WATCHLIST,
    ),
    (
        Pool(
            address="0x99ac8ca7087fa4a2a1fb6357269965a2014abc35",
            network="eth",
            token_pair="BTC/USDC",
            protocol="uniswap-v3",
            fee_tier=0.003,
            token0_symbol="WBTC",
            token1_symbol="USDC",
        ),
        Tier.WATCHLIST,
    ),
]


async def seed_default_pools(store: AnalyticsStore) -> int:
    """Insert the reference pools and their tier rows. Returns pools newly added.

    Pools that already exist keep their current tier configuration.
    """
    added = 0
    for pool, tier in DEFAULT_POOLS:
        if await store.upsert_pool(pool):
            await store.add_position(UserPositionTier(pool.address, pool.network, tier))
            added += 1
    logger.info("default_pools_seeded", added=added, total=len(DEFAULT_POOLS))
    return added
