"""Tests for IngestionPipeline.

Tests verify:
- New samples are stored in timestamp order with chained log returns
- Re-ingesting seen (pool, timestamp) samples is a no-op (count and content)
- Gaps wider than the tolerance leave log_return null
- Log returns chain onto observations stored by earlier batches
- Non-positive and non-finite prices are dropped
- Batches failing the quality thresholds are rejected whole
- Batch quality thresholds (90% valid, 95% positive)
"""

import math

import pytest

from clm_analytics.config import IngestionSettings
from clm_analytics.ingestion.pipeline import (
    IngestionPipeline,
    assess_batch,
    compute_log_return,
    log_returns,
)
from clm_analytics.models import RawSample

HOUR_MS = 3_600_000
T0_MS = 1_704_067_200_000  # 2024-01-01T00:00:00Z


def _samples(prices: list[float], start_ms: int = T0_MS, step_ms: int = HOUR_MS) -> list[RawSample]:
    return [RawSample(timestamp_ms=start_ms + i * step_ms, price=p) for i, p in enumerate(prices)]


@pytest.fixture
def pipeline(store) -> IngestionPipeline:
    return IngestionPipeline(store, IngestionSettings(max_gap_seconds=7200))


class TestIngest:
    @pytest.mark.asyncio
    async def test_inserts_ordered_with_log_returns(self, pipeline, store, stored_pool) -> None:
        samples = _samples([100.0, 110.0, 99.0])
        inserted = await pipeline.ingest(stored_pool, list(reversed(samples)))

        assert inserted == 3
        observations = await store.get_observations(stored_pool.address)
        assert [o.timestamp_ms for o in observations] == [s.timestamp_ms for s in samples]
        assert observations[0].log_return is None
        assert observations[1].log_return == pytest.approx(math.log(110 / 100))
        assert observations[2].log_return == pytest.approx(math.log(99 / 110))

    @pytest.mark.asyncio
    async def test_reingestion_is_idempotent(self, pipeline, store, stored_pool) -> None:
        samples = _samples([100.0, 101.0, 102.0])
        await pipeline.ingest(stored_pool, samples)
        before = await store.get_observations(stored_pool.address)

        # Same timestamps, different prices: still ignored
        replay = [RawSample(s.timestamp_ms, s.price * 2) for s in samples]
        assert await pipeline.ingest(stored_pool, replay) == 0
        assert await store.get_observations(stored_pool.address) == before

    @pytest.mark.asyncio
    async def test_duplicates_within_batch_counted_once(self, pipeline, stored_pool) -> None:
        samples = _samples([100.0, 101.0])
        assert await pipeline.ingest(stored_pool, samples + samples) == 2

    @pytest.mark.asyncio
    async def test_gap_beyond_tolerance_breaks_chain(self, pipeline, store, stored_pool) -> None:
        samples = [
            RawSample(T0_MS, 100.0),
            RawSample(T0_MS + 2 * HOUR_MS, 101.0),  # exactly at tolerance
            RawSample(T0_MS + 5 * HOUR_MS, 102.0),  # 3h gap
        ]
        await pipeline.ingest(stored_pool, samples)

        returns = [o.log_return for o in await store.get_observations(stored_pool.address)]
        assert returns[0] is None
        assert returns[1] == pytest.approx(math.log(101 / 100))
        assert returns[2] is None

    @pytest.mark.asyncio
    async def test_chains_onto_previous_batch(self, pipeline, store, stored_pool) -> None:
        await pipeline.ingest(stored_pool, _samples([100.0, 105.0]))
        await pipeline.ingest(stored_pool, _samples([110.0], start_ms=T0_MS + 2 * HOUR_MS))

        latest = (await store.get_observations(stored_pool.address))[-1]
        assert latest.log_return == pytest.approx(math.log(110 / 105))

    @pytest.mark.asyncio
    async def test_overlapping_batch_only_adds_new(self, pipeline, store, stored_pool) -> None:
        await pipeline.ingest(stored_pool, _samples([100.0, 101.0, 102.0]))
        inserted = await pipeline.ingest(stored_pool, _samples([101.0, 102.0, 103.0], start_ms=T0_MS + HOUR_MS))

        assert inserted == 1
        count, oldest, newest = await store.get_observation_stats(stored_pool.address)
        assert count == 4
        assert oldest == T0_MS
        assert newest == T0_MS + 3 * HOUR_MS

    @pytest.mark.asyncio
    async def test_invalid_prices_dropped(self, pipeline, store, stored_pool) -> None:
        prices = [100.0 + i for i in range(40)]
        prices[5] = float("nan")
        prices[10] = 0.0
        inserted = await pipeline.ingest(stored_pool, _samples(prices))

        assert inserted == 38
        stored = [o.price for o in await store.get_observations(stored_pool.address)]
        assert all(math.isfinite(p) and p > 0 for p in stored)
        assert len(stored) == 38

    @pytest.mark.asyncio
    async def test_low_quality_batch_rejected_whole(self, pipeline, store, stored_pool) -> None:
        prices = [100.0, float("nan")] * 5
        inserted = await pipeline.ingest(stored_pool, _samples(prices))

        assert inserted == 0
        count, _, _ = await store.get_observation_stats(stored_pool.address)
        assert count == 0

    @pytest.mark.asyncio
    async def test_mostly_non_positive_batch_rejected(self, pipeline, store, stored_pool) -> None:
        prices = [100.0] * 18 + [0.0, -1.0]
        assert await pipeline.ingest(stored_pool, _samples(prices)) == 0
        assert await store.get_observations(stored_pool.address) == []

    @pytest.mark.asyncio
    async def test_empty_batch(self, pipeline, stored_pool) -> None:
        assert await pipeline.ingest(stored_pool, []) == 0


class TestHelpers:
    def test_compute_log_return(self) -> None:
        assert compute_log_return(100.0, 110.0, HOUR_MS, 2 * HOUR_MS) == pytest.approx(math.log(1.1))
        assert compute_log_return(100.0, 110.0, 3 * HOUR_MS, 2 * HOUR_MS) is None
        assert compute_log_return(0.0, 110.0, HOUR_MS, 2 * HOUR_MS) is None

    def test_log_returns(self) -> None:
        assert log_returns([100.0, 110.0, 121.0]) == pytest.approx([math.log(1.1), math.log(1.1)])
        assert log_returns([100.0]) == []

    def test_batch_quality(self) -> None:
        assert assess_batch(_samples([1.0] * 20)).ok
        # 2 of 20 invalid: exactly 90% valid
        assert assess_batch(_samples([1.0] * 18 + [float("nan")] * 2)).ok
        assert not assess_batch(_samples([1.0] * 17 + [float("inf")] * 3)).ok
        # 2 of 20 non-positive: below 95% positive
        assert not assess_batch(_samples([1.0] * 18 + [0.0, -1.0])).ok
        assert not assess_batch([]).ok
