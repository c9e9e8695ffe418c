"""Shared test fixtures for the pool analytics engine."""

import pytest
import pytest_asyncio

from clm_analytics.config import (
    AlertSettings,
    AppSettings,
    DatabaseSettings,
    IngestionSettings,
    ProviderSettings,
    SchedulerSettings,
)
from clm_analytics.data.database import AnalyticsDatabase
from clm_analytics.data.store import AnalyticsStore
from clm_analytics.models import Pool


@pytest.fixture
def settings(tmp_path) -> AppSettings:
    """Return AppSettings with test defaults (temp database, no retry delays)."""
    return AppSettings(
        log_level="DEBUG",
        database=DatabaseSettings(path=str(tmp_path / "analytics.db")),
        providers=ProviderSettings(retry_base_delay=0.0, max_quota_wait=1.0),
        ingestion=IngestionSettings(max_gap_seconds=7200, backfill_days=30),
        alerts=AlertSettings(cooldown_seconds=3600),
        scheduler=SchedulerSettings(max_workers=4, tick_budget_seconds=60.0),
    )


@pytest_asyncio.fixture
async def database(tmp_path):
    """Connected AnalyticsDatabase on a temp file, closed after the test."""
    db = AnalyticsDatabase(str(tmp_path / "analytics.db"))
    await db.connect()
    yield db
    await db.close()


@pytest_asyncio.fixture
async def store(database) -> AnalyticsStore:
    return AnalyticsStore(database)


@pytest.fixture
def pool() -> Pool:
    return Pool(
        address="0x88e6a0c2ddd26feeb64f039a2c41296fcb3f5640",
        network="eth",
        token_pair="ETH/USDC",
        protocol="uniswap-v3",
        fee_tier=0.0005,
        token0_symbol="ETH",
        token1_symbol="USDC",
    )


@pytest_asyncio.fixture
async def stored_pool(store, pool) -> Pool:
    await store.upsert_pool(pool)
    return pool
