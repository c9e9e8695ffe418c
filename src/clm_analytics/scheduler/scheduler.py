"""Tiered scheduler: drives fetch -> ingest -> compute -> persist -> evaluate per pool.

Each tick selects the pools whose tier cadence has elapsed since their last
successful update and runs their pipelines concurrently, bounded by a worker
semaphore. One pool's failure is recorded on its snapshot row and never
reaches the other pools of the tick. Pools not started before the tick
budget runs out are abandoned and become eligible again on the next tick.
"""

import asyncio
import time
from collections.abc import Callable
from datetime import datetime, timezone

from clm_analytics.alerts.evaluator import AlertEvaluator
from clm_analytics.analytics.fvr import classify_fvr, estimate_fees_24h, fvr, pool_fee_apr
from clm_analytics.analytics.impermanent_loss import (
    breakeven_fee_apr,
    expected_il,
    il_risk_score,
)
from clm_analytics.analytics.volatility import VOLATILITY_WINDOWS, VolatilityCalculator
from clm_analytics.config import AppSettings
from clm_analytics.data.store import AnalyticsStore
from clm_analytics.exceptions import AnalyticsError, PersistenceConflict
from clm_analytics.fetch.client import FetchClient
from clm_analytics.ingestion.pipeline import IngestionPipeline
from clm_analytics.logging import get_logger, pool_log_context
from clm_analytics.models import (
    TIER_PRIORITY,
    AlertEvent,
    FvrHistoryPoint,
    Pool,
    PoolAnalyticsSnapshot,
    PoolMetadata,
    ScheduledPool,
    Tier,
    TickReport,
    VolatilityHistoryPoint,
)
from clm_analytics.scheduler.tiers import PromotionPolicy, effective_tier, tier_cadences_ms

logger = get_logger(__name__)

MS_PER_DAY = 86_400_000


def utc_date(timestamp_ms: int) -> str:
    """Calendar date (UTC) of a millisecond timestamp, as YYYY-MM-DD."""
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).strftime("%Y-%m-%d")


def _first_available(windows: dict[int, float | None]) -> float | None:
    """Longest-window volatility that could be computed."""
    for days in sorted(windows, reverse=True):
        if windows[days] is not None:
            return windows[days]
    return None


class TieredScheduler:
    """Runs pool pipelines at tier-dependent cadences.

    Args:
        store: Persistence for schedule inputs, snapshots and history.
        fetch_client: Rate-limited provider access.
        ingestion: Price observation writer.
        volatility: Volatility calculator over stored log returns.
        alert_evaluator: Threshold alert checks on fresh metrics.
        settings: Application settings (scheduler, ingestion, analytics, promotion).
        clock: Wall clock in epoch seconds, injectable for tests.
    """

    def __init__(
        self,
        store: AnalyticsStore,
        fetch_client: FetchClient,
        ingestion: IngestionPipeline,
        volatility: VolatilityCalculator,
        alert_evaluator: AlertEvaluator,
        settings: AppSettings,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._fetch_client = fetch_client
        self._ingestion = ingestion
        self._volatility = volatility
        self._alert_evaluator = alert_evaluator
        self._settings = settings
        self._clock = clock
        self._cadences = tier_cadences_ms(settings.scheduler)
        self._promotion = PromotionPolicy(settings.promotion)
        self._in_flight: set[str] = set()
        self._running = False
        self._stop_event = asyncio.Event()

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    @property
    def in_flight(self) -> frozenset[str]:
        return frozenset(self._in_flight)

    @property
    def is_running(self) -> bool:
        return self._running

    # ──────────────────────────────────────────────
    # Selection
    # ──────────────────────────────────────────────

    async def select_due_pools(self, now_ms: int | None = None) -> list[ScheduledPool]:
        """Pools whose effective tier cadence has elapsed, most urgent first.

        Expired promotions are cleared here, so a pool drops back to its
        configured tier on the first selection after its cooldown.
        """
        now_ms = self._now_ms() if now_ms is None else now_ms

        promotions: dict[str, int] = {}
        if self._promotion.enabled:
            promotions = await self._store.get_promotions()
            for address, last_spike_ms in list(promotions.items()):
                if self._promotion.is_expired(last_spike_ms, now_ms):
                    await self._store.clear_promotion(address)
                    del promotions[address]
                    logger.info("tier_promotion_reverted", pool_address=address)

        due: list[ScheduledPool] = []
        for pool, tiers, last_updated_ms in await self._store.get_schedule_rows():
            tier = effective_tier(tiers)
            promoted = pool.address in promotions and tier is not Tier.ACTIVE
            if promoted:
                tier = Tier.ACTIVE
            if last_updated_ms is None or now_ms - last_updated_ms >= self._cadences[tier]:
                due.append(ScheduledPool(pool, tier, last_updated_ms, promoted))

        due.sort(key=lambda s: (TIER_PRIORITY.index(s.tier), s.last_updated_ms or 0))
        return due

    # ──────────────────────────────────────────────
    # Tick
    # ──────────────────────────────────────────────

    async def tick(self, now_ms: int | None = None) -> TickReport:
        """Run one scheduling cycle over every due pool."""
        now_ms = self._now_ms() if now_ms is None else now_ms
        report = TickReport(started_at_ms=now_ms)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._settings.scheduler.tick_budget_seconds
        semaphore = asyncio.Semaphore(self._settings.scheduler.max_workers)

        claimed: list[ScheduledPool] = []
        for scheduled in await self.select_due_pools(now_ms):
            address = scheduled.pool.address
            report.selected.append(address)
            if address in self._in_flight:
                report.skipped_in_flight.append(address)
                continue
            self._in_flight.add(address)
            claimed.append(scheduled)

        async def _worker(scheduled: ScheduledPool) -> None:
            address = scheduled.pool.address
            try:
                async with semaphore:
                    if loop.time() >= deadline:
                        report.abandoned.append(address)
                        return
                    await self._run_isolated(scheduled, now_ms, report)
            finally:
                self._in_flight.discard(address)

        await asyncio.gather(*(_worker(s) for s in claimed))

        logger.info(
            "scheduler_tick_complete",
            selected=len(report.selected),
            succeeded=len(report.succeeded),
            failed=len(report.failed),
            skipped_in_flight=len(report.skipped_in_flight),
            abandoned=len(report.abandoned),
            alerts=len(report.alerts),
        )
        return report

    async def _run_isolated(
        self, scheduled: ScheduledPool, now_ms: int, report: TickReport
    ) -> None:
        address = scheduled.pool.address
        try:
            events = await self.run_pool(scheduled, now_ms)
        except AnalyticsError as e:
            error = f"{type(e).__name__}: {e}"
            logger.warning("pool_pipeline_failed", pool_address=address, error=error)
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            logger.error(
                "pool_pipeline_error", pool_address=address, error=error, exc_info=True
            )
        else:
            report.succeeded.append(address)
            report.alerts.extend(events)
            return

        report.failed[address] = error
        try:
            await self._store.record_failure(address, error, now_ms)
        except Exception as e:
            logger.error("record_failure_failed", pool_address=address, error=str(e))

    # ──────────────────────────────────────────────
    # Per-pool pipeline
    # ──────────────────────────────────────────────

    async def run_pool(self, scheduled: ScheduledPool, now_ms: int) -> list[AlertEvent]:
        """Fetch, ingest, recompute and persist one pool, then evaluate its alerts."""
        pool = scheduled.pool
        with pool_log_context(pool.address, scheduled.tier.value):
            latest_ms = await self._store.get_latest_timestamp(pool.address)
            since_ms = (
                latest_ms
                if latest_ms is not None
                else now_ms - self._settings.ingestion.backfill_days * MS_PER_DAY
            )
            samples = await self._fetch_client.fetch_price_series(pool, since_ms)
            inserted = await self._ingestion.ingest(pool, samples)

            # DataUnavailable fails the run; the pool stays due
            metadata = await self._fetch_client.fetch_pool_metadata(pool)

            windows = await self._volatility.all_windows(pool.address)
            count, oldest_ms, newest_ms = await self._store.get_observation_stats(pool.address)
            snapshot = self._build_snapshot(pool, metadata, windows)
            snapshot.data_points_count = count
            snapshot.oldest_data_ms = oldest_ms
            snapshot.newest_data_ms = newest_ms
            snapshot.last_updated_ms = max(now_ms, newest_ms or 0)
            if _first_available(windows) is None:
                snapshot.last_error = f"InsufficientSamples: {count} observations"

            await self._store.upsert_snapshot(snapshot)
            await self._append_history(snapshot, windows, utc_date(now_ms))
            await self._check_promotion(pool.address, windows, now_ms)

            logger.info(
                "pool_updated",
                inserted=inserted,
                data_points=count,
                fvr=snapshot.fvr,
                recommendation=(
                    snapshot.recommendation.value if snapshot.recommendation else None
                ),
            )
            return await self._alert_evaluator.evaluate(pool.address, snapshot, now_ms)

    def _build_snapshot(
        self,
        pool: Pool,
        metadata: PoolMetadata,
        windows: dict[int, float | None],
    ) -> PoolAnalyticsSnapshot:
        analytics = self._settings.analytics
        snapshot = PoolAnalyticsSnapshot(
            pool_address=pool.address,
            network=pool.network,
            token_pair=pool.token_pair,
            volatility_1d=windows.get(1),
            volatility_7d=windows.get(7),
            volatility_30d=windows.get(30),
            tvl_usd=metadata.tvl_usd,
            volume_24h=metadata.volume_24h,
            fees_24h=estimate_fees_24h(metadata, pool.fee_tier),
            apy_base=metadata.apy_base,
            apy_reward=metadata.apy_reward,
        )

        if snapshot.fees_24h is not None and snapshot.tvl_usd:
            snapshot.fee_apr = pool_fee_apr(snapshot.fees_24h, snapshot.tvl_usd)

        volatility = _first_available(windows)
        if volatility is None:
            return snapshot

        if snapshot.fee_apr is not None:
            snapshot.fvr = fvr(snapshot.fee_apr, volatility)
            snapshot.recommendation = classify_fvr(snapshot.fvr)

        il = expected_il(
            volatility,
            analytics.il_horizon_days,
            concentrated=True,
            concentration_factor=analytics.concentration_factor,
        )
        snapshot.expected_il_30d = il
        snapshot.breakeven_fee_apr = breakeven_fee_apr(il, analytics.il_horizon_days)
        snapshot.il_risk_score = il_risk_score(il, analytics.il_risk_bucket)
        return snapshot

    async def _append_history(
        self,
        snapshot: PoolAnalyticsSnapshot,
        windows: dict[int, float | None],
        date: str,
    ) -> None:
        """Append today's trend rows; an existing row for today is left as is."""
        address = snapshot.pool_address
        for days in VOLATILITY_WINDOWS:
            value = windows.get(days)
            if value is None:
                continue
            try:
                await self._store.insert_volatility_history(
                    VolatilityHistoryPoint(address, date, days, value)
                )
            except PersistenceConflict:
                logger.debug("volatility_history_exists", date=date, period_days=days)

        if snapshot.fvr is None or snapshot.recommendation is None:
            return
        try:
            await self._store.insert_fvr_history(
                FvrHistoryPoint(
                    pool_address=address,
                    date=date,
                    fvr=snapshot.fvr,
                    fee_apr=snapshot.fee_apr,
                    volatility=_first_available(windows),
                    recommendation=snapshot.recommendation,
                )
            )
        except PersistenceConflict:
            logger.debug("fvr_history_exists", date=date)

    async def _check_promotion(
        self, pool_address: str, windows: dict[int, float | None], now_ms: int
    ) -> None:
        if not self._promotion.is_spike(windows.get(1), windows.get(30)):
            return
        if await self._store.record_spike(pool_address, now_ms):
            logger.info(
                "tier_promoted",
                volatility_1d=windows.get(1),
                volatility_30d=windows.get(30),
            )

    # ──────────────────────────────────────────────
    # Driver loop
    # ──────────────────────────────────────────────

    async def start(self) -> None:
        """Run ticks every tick_interval_seconds until stop() is called.

        With run_once set, a single tick runs and the loop exits.
        """
        settings = self._settings.scheduler
        logger.info(
            "scheduler_starting",
            max_workers=settings.max_workers,
            tick_interval=settings.tick_interval_seconds,
            run_once=settings.run_once,
        )
        self._running = True
        self._stop_event.clear()
        try:
            while self._running:
                try:
                    await self.tick()
                    if settings.run_once:
                        break
                    await self._wait(settings.tick_interval_seconds)
                except asyncio.CancelledError:
                    break
                except Exception as e:
                    logger.error("scheduler_tick_error", error=str(e), exc_info=True)
                    await self._wait(10)
        finally:
            self._running = False
            logger.info("scheduler_stopped")

    async def _wait(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def stop(self) -> None:
        """Signal the loop to exit after the current tick."""
        logger.info("scheduler_stopping")
        self._running = False
        self._stop_event.set()
