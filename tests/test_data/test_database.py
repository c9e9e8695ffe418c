"""Tests for AnalyticsDatabase schema and lifecycle."""

import aiosqlite
import pytest

from clm_analytics.data.database import SCHEMA_VERSION, AnalyticsDatabase


class TestAnalyticsDatabase:
    @pytest.mark.asyncio
    async def test_creates_parent_directory_and_tables(self, tmp_path):
        path = str(tmp_path / "nested" / "analytics.db")
        async with AnalyticsDatabase(path) as database:
            async with database.db.execute(
                "SELECT name FROM sqlite_master WHERE type = 'table'"
            ) as cursor:
                tables = {row[0] for row in await cursor.fetchall()}

        assert {
            "pools",
            "price_data",
            "pool_analytics",
            "user_positions",
            "api_usage",
            "volatility_history",
            "fvr_history",
            "alerts",
            "tier_promotions",
        } <= tables

    @pytest.mark.asyncio
    async def test_reopen_keeps_data_and_single_version_row(self, tmp_path):
        path = str(tmp_path / "analytics.db")
        async with AnalyticsDatabase(path) as database:
            await database.db.execute(
                "INSERT INTO pools (pool_address, network, token_pair, protocol, created_at) "
                "VALUES ('0xabc', 'eth', 'ETH/USDC', 'uniswap_v3', 0)"
            )
            await database.db.commit()

        async with AnalyticsDatabase(path) as database:
            async with database.db.execute("SELECT COUNT(*) FROM pools") as cursor:
                assert (await cursor.fetchone())[0] == 1
            async with database.db.execute("SELECT version FROM schema_version") as cursor:
                assert await cursor.fetchall() == [(SCHEMA_VERSION,)]

    @pytest.mark.asyncio
    async def test_refuses_newer_schema(self, tmp_path):
        path = str(tmp_path / "analytics.db")
        async with aiosqlite.connect(path) as conn:
            await conn.execute("CREATE TABLE schema_version (version INTEGER PRIMARY KEY)")
            await conn.execute("INSERT INTO schema_version VALUES (?)", (SCHEMA_VERSION + 1,))
            await conn.commit()

        database = AnalyticsDatabase(path)
        with pytest.raises(RuntimeError, match="schema version"):
            await database.connect()
        assert not database.is_connected

    @pytest.mark.asyncio
    async def test_db_access_before_connect_raises(self, tmp_path):
        database = AnalyticsDatabase(str(tmp_path / "analytics.db"))
        with pytest.raises(RuntimeError):
            _ = database.db

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, tmp_path):
        database = AnalyticsDatabase(str(tmp_path / "analytics.db"))
        await database.connect()
        await database.close()
        await database.close()
        assert not database.is_connected
