"""SQLite schema and connection lifecycle for the analytics store.

Uniqueness constraints carry two rules at the storage layer: a price sample
is stored once per (pool, timestamp), and history rows are written at most
once per pool per UTC day.
"""

import os
from typing import Self

import aiosqlite

from clm_analytics.logging import get_logger

logger = get_logger(__name__)

SCHEMA_VERSION = 1

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS pools (
    pool_address TEXT PRIMARY KEY,
    network TEXT NOT NULL,
    token_pair TEXT NOT NULL,
    token0_address TEXT,
    token1_address TEXT,
    token0_symbol TEXT,
    token1_symbol TEXT,
    fee_tier REAL,
    protocol TEXT NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1,
    created_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS price_data (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    pool_address TEXT NOT NULL REFERENCES pools(pool_address),
    network TEXT NOT NULL,
    timestamp_ms INTEGER NOT NULL,
    price REAL NOT NULL,
    volume_usd REAL,
    log_return REAL,
    created_at INTEGER NOT NULL,
    UNIQUE (pool_address, timestamp_ms)
);

CREATE TABLE IF NOT EXISTS pool_analytics (
    pool_address TEXT PRIMARY KEY REFERENCES pools(pool_address),
    network TEXT NOT NULL,
    token_pair TEXT NOT NULL,
    tvl_usd REAL,
    volume_24h REAL,
    fees_24h REAL,
    apy_base REAL,
    apy_reward REAL,
    fee_apr REAL,
    volatility_1d REAL,
    volatility_7d REAL,
    volatility_30d REAL,
    fvr REAL,
    il_risk_score INTEGER,
    recommendation TEXT,
    expected_il_30d REAL,
    breakeven_fee_apr REAL,
    data_points_count INTEGER NOT NULL DEFAULT 0,
    oldest_data_ms INTEGER,
    newest_data_ms INTEGER,
    last_updated_ms INTEGER,
    last_error TEXT,
    last_attempt_ms INTEGER
);

CREATE TABLE IF NOT EXISTS user_positions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    pool_address TEXT NOT NULL REFERENCES pools(pool_address),
    network TEXT NOT NULL,
    position_type TEXT NOT NULL DEFAULT 'active'
        CHECK (position_type IN ('active', 'watchlist', 'screening')),
    tick_lower INTEGER,
    tick_upper INTEGER,
    liquidity TEXT,
    created_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS api_usage (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    service TEXT NOT NULL,
    endpoint TEXT NOT NULL,
    date_hour TEXT NOT NULL,
    requests_count INTEGER NOT NULL DEFAULT 1,
    created_at INTEGER NOT NULL,
    UNIQUE (service, endpoint, date_hour)
);

CREATE TABLE IF NOT EXISTS volatility_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    pool_address TEXT NOT NULL REFERENCES pools(pool_address),
    date TEXT NOT NULL,
    period_days INTEGER NOT NULL CHECK (period_days IN (1, 7, 30)),
    volatility_value REAL NOT NULL,
    created_at INTEGER NOT NULL,
    UNIQUE (pool_address, date, period_days)
);

CREATE TABLE IF NOT EXISTS fvr_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    pool_address TEXT NOT NULL REFERENCES pools(pool_address),
    date TEXT NOT NULL,
    fvr_value REAL NOT NULL,
    fee_apr REAL NOT NULL,
    volatility REAL NOT NULL,
    recommendation TEXT NOT NULL,
    created_at INTEGER NOT NULL,
    UNIQUE (pool_address, date)
);

CREATE TABLE IF NOT EXISTS alerts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    pool_address TEXT NOT NULL REFERENCES pools(pool_address),
    alert_type TEXT NOT NULL
        CHECK (alert_type IN ('fvr_threshold', 'volatility_spike', 'il_warning')),
    threshold_value REAL NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 1,
    last_triggered_ms INTEGER,
    created_at INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS tier_promotions (
    pool_address TEXT PRIMARY KEY REFERENCES pools(pool_address),
    promoted_at_ms INTEGER NOT NULL,
    last_spike_ms INTEGER NOT NULL
);
"""

_CREATE_INDEXES_SQL = """
CREATE INDEX IF NOT EXISTS idx_price_pool_ts
    ON price_data(pool_address, timestamp_ms DESC);

CREATE INDEX IF NOT EXISTS idx_price_network_ts
    ON price_data(network, timestamp_ms DESC);

CREATE INDEX IF NOT EXISTS idx_user_positions_pool
    ON user_positions(pool_address);

CREATE INDEX IF NOT EXISTS idx_alerts_pool
    ON alerts(pool_address, is_active);
"""

_MEMORY_PATH = ":memory:"


class AnalyticsDatabase:
    """Owns the single aiosqlite connection shared by the store.

    connect() is idempotent with respect to the schema: every CREATE uses
    IF NOT EXISTS, so pointing the engine at an existing file keeps its data.
    A file written by a newer schema version is refused.
    """

    def __init__(self, db_path: str = "data/analytics.db") -> None:
        self._db_path = db_path
        self._connection: aiosqlite.Connection | None = None

    @property
    def path(self) -> str:
        return self._db_path

    @property
    def is_connected(self) -> bool:
        return self._connection is not None

    @property
    def db(self) -> aiosqlite.Connection:
        if self._connection is None:
            raise RuntimeError(f"analytics database {self._db_path} is not open")
        return self._connection

    async def connect(self) -> None:
        if self._connection is not None:
            return

        if self._db_path != _MEMORY_PATH:
            parent = os.path.dirname(self._db_path)
            if parent:
                os.makedirs(parent, exist_ok=True)

        conn = await aiosqlite.connect(self._db_path)
        try:
            # WAL lets the API read while a tick is writing
            if self._db_path != _MEMORY_PATH:
                await conn.execute("PRAGMA journal_mode=WAL")
            await conn.execute("PRAGMA synchronous=NORMAL")
            await conn.execute("PRAGMA foreign_keys=ON")
            await self._apply_schema(conn)
        except BaseException:
            await conn.close()
            raise

        self._connection = conn
        logger.info("analytics_db_connected", db_path=self._db_path)

    async def close(self) -> None:
        conn, self._connection = self._connection, None
        if conn is None:
            return
        await conn.close()
        logger.info("analytics_db_closed", db_path=self._db_path)

    async def _apply_schema(self, conn: aiosqlite.Connection) -> None:
        await conn.executescript(_CREATE_TABLES_SQL + _CREATE_INDEXES_SQL)

        async with conn.execute("SELECT MAX(version) FROM schema_version") as cursor:
            (stored,) = await cursor.fetchone()

        if stored is None:
            await conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,)
            )
            logger.info("schema_created", version=SCHEMA_VERSION)
        elif stored > SCHEMA_VERSION:
            raise RuntimeError(
                f"{self._db_path} has schema version {stored}, "
                f"this build understands up to {SCHEMA_VERSION}"
            )
        await conn.commit()

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
