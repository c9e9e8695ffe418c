"""Typed SQLite read/write abstraction for pool analytics.

Provides AnalyticsStore with typed methods for pools, tier assignments,
price observations, API usage counters, analytics snapshots, the two
append-once-per-day history tables, alerts and tier promotions. All SQL is
isolated behind this interface.
"""

import sqlite3
import time

from clm_analytics.data.database import AnalyticsDatabase
from clm_analytics.exceptions import PersistenceConflict
from clm_analytics.logging import get_logger
from clm_analytics.models import (
    Alert,
    AlertType,
    FvrHistoryPoint,
    Pool,
    PoolAnalyticsSnapshot,
    PriceObservation,
    Recommendation,
    Tier,
    UserPositionTier,
    VolatilityHistoryPoint,
)

logger = get_logger(__name__)

_POOL_COLUMNS = (
    "pool_address, network, token_pair, protocol, fee_tier, token0_symbol, "
    "token1_symbol, token0_address, token1_address, is_active"
)

_SNAPSHOT_FIELDS = (
    "pool_address",
    "network",
    "token_pair",
    "tvl_usd",
    "volume_24h",
    "fees_24h",
    "apy_base",
    "apy_reward",
    "fee_apr",
    "volatility_1d",
    "volatility_7d",
    "volatility_30d",
    "fvr",
    "il_risk_score",
    "recommendation",
    "expected_il_30d",
    "breakeven_fee_apr",
    "data_points_count",
    "oldest_data_ms",
    "newest_data_ms",
    "last_updated_ms",
    "last_error",
)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _row_to_pool(row: tuple) -> Pool:
    return Pool(
        address=row[0],
        network=row[1],
        token_pair=row[2],
        protocol=row[3],
        fee_tier=row[4],
        token0_symbol=row[5],
        token1_symbol=row[6],
        token0_address=row[7],
        token1_address=row[8],
        is_active=bool(row[9]),
    )


def _row_to_observation(row: tuple) -> PriceObservation:
    return PriceObservation(
        pool_address=row[0],
        network=row[1],
        timestamp_ms=row[2],
        price=row[3],
        volume_usd=row[4],
        log_return=row[5],
    )


def _row_to_snapshot(row: tuple) -> PoolAnalyticsSnapshot:
    values = dict(zip(_SNAPSHOT_FIELDS, row))
    if values["recommendation"] is not None:
        values["recommendation"] = Recommendation(values["recommendation"])
    return PoolAnalyticsSnapshot(**values)


def _row_to_alert(row: tuple) -> Alert:
    return Alert(
        id=row[0],
        pool_address=row[1],
        alert_type=AlertType(row[2]),
        threshold_value=row[3],
        is_active=bool(row[4]),
        last_triggered_ms=row[5],
    )


class AnalyticsStore:
    """Async SQLite store for pools, price observations and analytics.

    Wraps AnalyticsDatabase with typed read/write methods. All SQL access
    goes through self._database.db (the aiosqlite Connection).

    Usage:
        async with AnalyticsDatabase("data/analytics.db") as database:
            store = AnalyticsStore(database)
            count = await store.insert_observations(observations)
    """

    def __init__(self, database: AnalyticsDatabase) -> None:
        self._database = database

    # ──────────────────────────────────────────────
    # Pools and tier configuration
    # ──────────────────────────────────────────────

    async def upsert_pool(self, pool: Pool) -> bool:
        """Register a pool on first discovery. Existing pools are left untouched.

        Returns True if the pool was newly created.
        """
        cursor = await self._database.db.execute(
            "INSERT OR IGNORE INTO pools "
            "(pool_address, network, token_pair, protocol, fee_tier, token0_symbol, "
            "token1_symbol, token0_address, token1_address, is_active, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (
                pool.address,
                pool.network,
                pool.token_pair,
                pool.protocol,
                pool.fee_tier,
                pool.token0_symbol,
                pool.token1_symbol,
                pool.token0_address,
                pool.token1_address,
                1 if pool.is_active else 0,
                _now_ms(),
            ),
        )
        await self._database.db.commit()
        return cursor.rowcount > 0

    async def set_pool_active(self, pool_address: str, is_active: bool) -> None:
        """Soft-(de)activate a pool. Pools are never physically deleted."""
        await self._database.db.execute(
            "UPDATE pools SET is_active = ? WHERE pool_address = ?",
            (1 if is_active else 0, pool_address),
        )
        await self._database.db.commit()

    async def get_pool(self, pool_address: str) -> Pool | None:
        cursor = await self._database.db.execute(
            f"SELECT {_POOL_COLUMNS} FROM pools WHERE pool_address = ?",
            (pool_address,),
        )
        row = await cursor.fetchone()
        return _row_to_pool(row) if row else None

    async def get_active_pools(self) -> list[Pool]:
        cursor = await self._database.db.execute(
            f"SELECT {_POOL_COLUMNS} FROM pools WHERE is_active = 1 "
            "ORDER BY pool_address"
        )
        return [_row_to_pool(row) for row in await cursor.fetchall()]

    async def add_position(self, position: UserPositionTier) -> int:
        """Track a position, placing its pool in the position's tier."""
        cursor = await self._database.db.execute(
            "INSERT INTO user_positions "
            "(pool_address, network, position_type, tick_lower, tick_upper, liquidity, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                position.pool_address,
                position.network,
                position.tier.value,
                position.tick_lower,
                position.tick_upper,
                position.liquidity,
                _now_ms(),
            ),
        )
        await self._database.db.commit()
        return cursor.lastrowid

    async def set_position_tier(self, position_id: int, tier: Tier) -> None:
        """Manual tier reassignment of a tracked position."""
        await self._database.db.execute(
            "UPDATE user_positions SET position_type = ? WHERE id = ?",
            (tier.value, position_id),
        )
        await self._database.db.commit()

    async def get_positions(self, pool_address: str | None = None) -> list[UserPositionTier]:
        query = (
            "SELECT id, pool_address, network, position_type, tick_lower, tick_upper, liquidity "
            "FROM user_positions"
        )
        params: list = []
        if pool_address is not None:
            query += " WHERE pool_address = ?"
            params.append(pool_address)
        cursor = await self._database.db.execute(query + " ORDER BY id", params)
        return [
            UserPositionTier(
                id=row[0],
                pool_address=row[1],
                network=row[2],
                tier=Tier(row[3]),
                tick_lower=row[4],
                tick_upper=row[5],
                liquidity=row[6],
            )
            for row in await cursor.fetchall()
        ]

    async def get_schedule_rows(self) -> list[tuple[Pool, set[Tier], int | None]]:
        """Active pools with every tier they are tracked in and their last update.

        Returns list of (pool, tiers, last_updated_ms) tuples.
        """
        cursor = await self._database.db.execute(
            f"SELECT {', '.join('p.' + c.strip() for c in _POOL_COLUMNS.split(','))}, "
            "pa.last_updated_ms, "
            "(SELECT GROUP_CONCAT(DISTINCT up.position_type) FROM user_positions up "
            " WHERE up.pool_address = p.pool_address) "
            "FROM pools p LEFT JOIN pool_analytics pa ON pa.pool_address = p.pool_address "
            "WHERE p.is_active = 1 ORDER BY p.pool_address"
        )
        rows = await cursor.fetchall()
        result = []
        for row in rows:
            tiers = {Tier(t) for t in row[11].split(",")} if row[11] else set()
            result.append((_row_to_pool(row[:10]), tiers, row[10]))
        return result

    # ──────────────────────────────────────────────
    # Price observations
    # ──────────────────────────────────────────────

    async def insert_observations(self, observations: list[PriceObservation]) -> int:
        """Insert observations, ignoring duplicates via INSERT OR IGNORE.

        Returns the number of actually inserted rows (excludes ignored duplicates).
        """
        if not observations:
            return 0

        now_ms = _now_ms()
        data = [
            (
                o.pool_address,
                o.network,
                o.timestamp_ms,
                o.price,
                o.volume_usd,
                o.log_return,
                now_ms,
            )
            for o in observations
        ]
        cursor = await self._database.db.executemany(
            "INSERT OR IGNORE INTO price_data "
            "(pool_address, network, timestamp_ms, price, volume_usd, log_return, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            data,
        )
        await self._database.db.commit()

        inserted = cursor.rowcount
        logger.debug(
            "inserted_observations",
            pool_address=observations[0].pool_address,
            total=len(observations),
            inserted=inserted,
        )
        return inserted

    async def get_observations(
        self,
        pool_address: str,
        since_ms: int | None = None,
        until_ms: int | None = None,
        limit: int | None = None,
    ) -> list[PriceObservation]:
        """Query observations for a pool within an optional time range.

        Returns observations ordered by timestamp_ms ASC. With ``limit``, the
        most recent ``limit`` observations in the range are returned.
        """
        conditions = ["pool_address = ?"]
        params: list = [pool_address]

        if since_ms is not None:
            conditions.append("timestamp_ms >= ?")
            params.append(since_ms)
        if until_ms is not None:
            conditions.append("timestamp_ms <= ?")
            params.append(until_ms)

        where = " AND ".join(conditions)
        query = (
            "SELECT pool_address, network, timestamp_ms, price, volume_usd, log_return "
            f"FROM price_data WHERE {where} ORDER BY timestamp_ms DESC"
        )
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        cursor = await self._database.db.execute(query, params)
        rows = await cursor.fetchall()
        return [_row_to_observation(row) for row in reversed(rows)]

    async def get_predecessor(
        self, pool_address: str, before_ms: int
    ) -> PriceObservation | None:
        """Return the newest observation strictly older than ``before_ms``."""
        cursor = await self._database.db.execute(
            "SELECT pool_address, network, timestamp_ms, price, volume_usd, log_return "
            "FROM price_data WHERE pool_address = ? AND timestamp_ms < ? "
            "ORDER BY timestamp_ms DESC LIMIT 1",
            (pool_address, before_ms),
        )
        row = await cursor.fetchone()
        return _row_to_observation(row) if row else None

    async def get_latest_timestamp(self, pool_address: str) -> int | None:
        cursor = await self._database.db.execute(
            "SELECT MAX(timestamp_ms) FROM price_data WHERE pool_address = ?",
            (pool_address,),
        )
        return (await cursor.fetchone())[0]

    async def get_recent_log_returns(self, pool_address: str, limit: int) -> list[float]:
        """Return the trailing ``limit`` non-null log returns, oldest first."""
        cursor = await self._database.db.execute(
            "SELECT log_return FROM price_data "
            "WHERE pool_address = ? AND log_return IS NOT NULL "
            "ORDER BY timestamp_ms DESC LIMIT ?",
            (pool_address, limit),
        )
        rows = await cursor.fetchall()
        return [row[0] for row in reversed(rows)]

    async def get_observation_stats(
        self, pool_address: str
    ) -> tuple[int, int | None, int | None]:
        """Return (count, oldest_ms, newest_ms) of a pool's observations."""
        cursor = await self._database.db.execute(
            "SELECT COUNT(*), MIN(timestamp_ms), MAX(timestamp_ms) "
            "FROM price_data WHERE pool_address = ?",
            (pool_address,),
        )
        row = await cursor.fetchone()
        return row[0], row[1], row[2]

    # ──────────────────────────────────────────────
    # API usage counters
    # ──────────────────────────────────────────────

    async def increment_api_usage(self, service: str, endpoint: str, date_hour: str) -> None:
        """Increment-or-insert the request counter for an hour bucket."""
        await self._database.db.execute(
            "INSERT INTO api_usage (service, endpoint, date_hour, requests_count, created_at) "
            "VALUES (?, ?, ?, 1, ?) "
            "ON CONFLICT (service, endpoint, date_hour) "
            "DO UPDATE SET requests_count = requests_count + 1",
            (service, endpoint, date_hour, _now_ms()),
        )
        await self._database.db.commit()

    async def get_api_usage(
        self, service: str | None = None, date_hour: str | None = None
    ) -> list[dict]:
        """Return usage rows, newest hour bucket first."""
        conditions = []
        params: list = []
        if service is not None:
            conditions.append("service = ?")
            params.append(service)
        if date_hour is not None:
            conditions.append("date_hour = ?")
            params.append(date_hour)
        where = f"WHERE {' AND '.join(conditions)}" if conditions else ""
        cursor = await self._database.db.execute(
            "SELECT service, endpoint, date_hour, requests_count FROM api_usage "
            f"{where} ORDER BY date_hour DESC, service, endpoint",
            params,
        )
        return [
            {
                "service": row[0],
                "endpoint": row[1],
                "date_hour": row[2],
                "requests_count": row[3],
            }
            for row in await cursor.fetchall()
        ]

    # ──────────────────────────────────────────────
    # Analytics snapshot
    # ──────────────────────────────────────────────

    async def upsert_snapshot(self, snapshot: PoolAnalyticsSnapshot) -> None:
        """Overwrite the pool's snapshot row.

        last_updated_ms never moves backwards; last_error is replaced by the
        snapshot's own data-quality note (None on a clean run).
        """
        values = [getattr(snapshot, f) for f in _SNAPSHOT_FIELDS]
        rec_idx = _SNAPSHOT_FIELDS.index("recommendation")
        if values[rec_idx] is not None:
            values[rec_idx] = Recommendation(values[rec_idx]).value

        columns = ", ".join(_SNAPSHOT_FIELDS)
        placeholders = ", ".join("?" for _ in _SNAPSHOT_FIELDS)
        updates = ", ".join(
            f"{f} = excluded.{f}"
            for f in _SNAPSHOT_FIELDS
            if f not in ("pool_address", "last_updated_ms")
        )
        await self._database.db.execute(
            f"INSERT INTO pool_analytics ({columns}) VALUES ({placeholders}) "
            f"ON CONFLICT (pool_address) DO UPDATE SET {updates}, "
            "last_updated_ms = MAX(COALESCE(pool_analytics.last_updated_ms, 0), "
            "excluded.last_updated_ms)",
            values,
        )
        await self._database.db.commit()

    async def record_failure(self, pool_address: str, error: str, attempt_ms: int) -> None:
        """Record a failed pipeline run without touching metrics or last_updated_ms."""
        await self._database.db.execute(
            "INSERT INTO pool_analytics "
            "(pool_address, network, token_pair, last_error, last_attempt_ms) "
            "SELECT pool_address, network, token_pair, ?, ? FROM pools WHERE pool_address = ? "
            "ON CONFLICT (pool_address) DO UPDATE SET "
            "last_error = excluded.last_error, last_attempt_ms = excluded.last_attempt_ms",
            (error, attempt_ms, pool_address),
        )
        await self._database.db.commit()

    async def get_snapshot(self, pool_address: str) -> PoolAnalyticsSnapshot | None:
        cursor = await self._database.db.execute(
            f"SELECT {', '.join(_SNAPSHOT_FIELDS)} FROM pool_analytics WHERE pool_address = ?",
            (pool_address,),
        )
        row = await cursor.fetchone()
        return _row_to_snapshot(row) if row else None

    async def get_top_snapshots(
        self, min_tvl: float = 0.0, limit: int = 100
    ) -> list[PoolAnalyticsSnapshot]:
        """Snapshots with an FVR, best first, above a TVL floor."""
        cursor = await self._database.db.execute(
            f"SELECT {', '.join(_SNAPSHOT_FIELDS)} FROM pool_analytics "
            "WHERE fvr IS NOT NULL AND COALESCE(tvl_usd, 0) >= ? "
            "ORDER BY fvr DESC LIMIT ?",
            (min_tvl, limit),
        )
        return [_row_to_snapshot(row) for row in await cursor.fetchall()]

    # ──────────────────────────────────────────────
    # History tables (append once per day)
    # ──────────────────────────────────────────────

    async def insert_volatility_history(self, point: VolatilityHistoryPoint) -> None:
        """Append a daily volatility row.

        Raises PersistenceConflict if (pool, date, period_days) already exists.
        """
        await self._insert_history(
            "INSERT INTO volatility_history "
            "(pool_address, date, period_days, volatility_value, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (point.pool_address, point.date, point.period_days, point.value, _now_ms()),
        )

    async def insert_fvr_history(self, point: FvrHistoryPoint) -> None:
        """Append a daily FVR row.

        Raises PersistenceConflict if (pool, date) already exists.
        """
        await self._insert_history(
            "INSERT INTO fvr_history "
            "(pool_address, date, fvr_value, fee_apr, volatility, recommendation, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (
                point.pool_address,
                point.date,
                point.fvr,
                point.fee_apr,
                point.volatility,
                Recommendation(point.recommendation).value,
                _now_ms(),
            ),
        )

    async def _insert_history(self, sql: str, params: tuple) -> None:
        try:
            await self._database.db.execute(sql, params)
        except sqlite3.IntegrityError as e:
            if "UNIQUE" not in str(e):
                raise
            raise PersistenceConflict(str(e)) from e
        await self._database.db.commit()

    async def get_volatility_history(
        self, pool_address: str, period_days: int | None = None, limit: int = 365
    ) -> list[VolatilityHistoryPoint]:
        """Volatility trend rows, oldest first."""
        query = (
            "SELECT pool_address, date, period_days, volatility_value "
            "FROM volatility_history WHERE pool_address = ?"
        )
        params: list = [pool_address]
        if period_days is not None:
            query += " AND period_days = ?"
            params.append(period_days)
        query += " ORDER BY date DESC, period_days DESC LIMIT ?"
        params.append(limit)
        cursor = await self._database.db.execute(query, params)
        rows = await cursor.fetchall()
        return [
            VolatilityHistoryPoint(
                pool_address=row[0], date=row[1], period_days=row[2], value=row[3]
            )
            for row in reversed(rows)
        ]

    async def get_fvr_history(self, pool_address: str, limit: int = 365) -> list[FvrHistoryPoint]:
        """FVR trend rows, oldest first."""
        cursor = await self._database.db.execute(
            "SELECT pool_address, date, fvr_value, fee_apr, volatility, recommendation "
            "FROM fvr_history WHERE pool_address = ? ORDER BY date DESC LIMIT ?",
            (pool_address, limit),
        )
        rows = await cursor.fetchall()
        return [
            FvrHistoryPoint(
                pool_address=row[0],
                date=row[1],
                fvr=row[2],
                fee_apr=row[3],
                volatility=row[4],
                recommendation=Recommendation(row[5]),
            )
            for row in reversed(rows)
        ]

    # ──────────────────────────────────────────────
    # Alerts
    # ──────────────────────────────────────────────

    async def create_alert(self, alert: Alert) -> int:
        cursor = await self._database.db.execute(
            "INSERT INTO alerts (pool_address, alert_type, threshold_value, is_active, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (
                alert.pool_address,
                AlertType(alert.alert_type).value,
                alert.threshold_value,
                1 if alert.is_active else 0,
                _now_ms(),
            ),
        )
        await self._database.db.commit()
        return cursor.lastrowid

    async def set_alert_active(self, alert_id: int, is_active: bool) -> None:
        await self._database.db.execute(
            "UPDATE alerts SET is_active = ? WHERE id = ?",
            (1 if is_active else 0, alert_id),
        )
        await self._database.db.commit()

    async def get_alerts(self, pool_address: str, active_only: bool = True) -> list[Alert]:
        query = (
            "SELECT id, pool_address, alert_type, threshold_value, is_active, last_triggered_ms "
            "FROM alerts WHERE pool_address = ?"
        )
        if active_only:
            query += " AND is_active = 1"
        cursor = await self._database.db.execute(query + " ORDER BY id", (pool_address,))
        return [_row_to_alert(row) for row in await cursor.fetchall()]

    async def mark_alert_triggered(self, alert_id: int, triggered_ms: int) -> None:
        await self._database.db.execute(
            "UPDATE alerts SET last_triggered_ms = ? WHERE id = ?",
            (triggered_ms, alert_id),
        )
        await self._database.db.commit()

    # ──────────────────────────────────────────────
    # Tier promotions
    # ──────────────────────────────────────────────

    async def record_spike(self, pool_address: str, spike_ms: int) -> bool:
        """Promote a pool (or extend its promotion) after a volatility spike.

        Returns True if the pool was newly promoted.
        """
        cursor = await self._database.db.execute(
            "SELECT 1 FROM tier_promotions WHERE pool_address = ?", (pool_address,)
        )
        existed = await cursor.fetchone() is not None
        await self._database.db.execute(
            "INSERT INTO tier_promotions (pool_address, promoted_at_ms, last_spike_ms) "
            "VALUES (?, ?, ?) "
            "ON CONFLICT (pool_address) DO UPDATE SET "
            "last_spike_ms = MAX(tier_promotions.last_spike_ms, excluded.last_spike_ms)",
            (pool_address, spike_ms, spike_ms),
        )
        await self._database.db.commit()
        return not existed

    async def get_promotions(self) -> dict[str, int]:
        """Return {pool_address: last_spike_ms} for promoted pools."""
        cursor = await self._database.db.execute(
            "SELECT pool_address, last_spike_ms FROM tier_promotions"
        )
        return {row[0]: row[1] for row in await cursor.fetchall()}

    async def clear_promotion(self, pool_address: str) -> None:
        await self._database.db.execute(
            "DELETE FROM tier_promotions WHERE pool_address = ?", (pool_address,)
        )
        await self._database.db.commit()
