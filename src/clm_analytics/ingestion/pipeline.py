"""Ingestion of raw provider samples into ordered price observations.

Samples are cleaned, sorted and deduplicated by (pool, timestamp). Each new
observation's log return is computed against the immediately preceding
observation for the same pool, whether that predecessor was already stored
or arrived earlier in the same batch. A gap wider than the configured
tolerance breaks the chain and leaves log_return null.
"""

import bisect
import math
from dataclasses import dataclass

from clm_analytics.config import IngestionSettings
from clm_analytics.data.store import AnalyticsStore
from clm_analytics.logging import get_logger
from clm_analytics.models import Pool, PriceObservation, RawSample

logger = get_logger(__name__)

MIN_VALID_RATIO = 0.9
MIN_POSITIVE_RATIO = 0.95


@dataclass
class BatchQuality:
    """Validity summary of a raw price batch."""

    total: int
    valid: int
    positive: int

    @property
    def ok(self) -> bool:
        if self.total == 0:
            return False
        if self.valid / self.total < MIN_VALID_RATIO:
            return False
        return self.positive >= self.valid * MIN_POSITIVE_RATIO


def assess_batch(samples: list[RawSample]) -> BatchQuality:
    """At least 90% of prices must be finite and 95% of those positive."""
    valid = [s.price for s in samples if s.price is not None and math.isfinite(s.price)]
    return BatchQuality(
        total=len(samples),
        valid=len(valid),
        positive=sum(1 for p in valid if p > 0),
    )


def compute_log_return(
    prev_price: float,
    price: float,
    gap_ms: int,
    max_gap_ms: int,
) -> float | None:
    """ln(price / prev_price), or None across a data-quality break."""
    if gap_ms <= 0 or gap_ms > max_gap_ms:
        return None
    if prev_price <= 0 or price <= 0:
        return None
    return math.log(price / prev_price)


def log_returns(prices: list[float]) -> list[float]:
    """Consecutive log returns of a price path, skipping non-positive prices."""
    return [
        math.log(cur / prev)
        for prev, cur in zip(prices, prices[1:])
        if prev > 0 and cur > 0
    ]


class IngestionPipeline:
    """Appends raw samples to the price_data table.

    Args:
        store: Analytics store (sole price_data writer goes through it).
        settings: Gap tolerance for the log-return chain.
    """

    def __init__(self, store: AnalyticsStore, settings: IngestionSettings) -> None:
        self._store = store
        self._max_gap_ms = settings.max_gap_seconds * 1000

    async def ingest(self, pool: Pool, samples: list[RawSample]) -> int:
        """Ingest samples for a pool. Returns the count of genuinely new rows.

        A batch that fails the quality thresholds is rejected whole and
        nothing is written.
        """
        if not samples:
            return 0

        quality = assess_batch(samples)
        if not quality.ok:
            logger.warning(
                "price_batch_rejected",
                pool_address=pool.address,
                total=quality.total,
                valid=quality.valid,
                positive=quality.positive,
            )
            return 0

        by_ts: dict[int, RawSample] = {}
        for sample in sorted(samples, key=lambda s: s.timestamp_ms):
            if sample.price is None or not math.isfinite(sample.price) or sample.price <= 0:
                continue
            by_ts.setdefault(sample.timestamp_ms, sample)
        if not by_ts:
            return 0

        first_ts = min(by_ts)
        last_ts = max(by_ts)
        existing = await self._store.get_observations(pool.address, first_ts, last_ts)
        existing_ts = {o.timestamp_ms for o in existing}

        # Known (timestamp, price) points, kept sorted for predecessor lookup
        known: list[tuple[int, float]] = [(o.timestamp_ms, o.price) for o in existing]
        predecessor = await self._store.get_predecessor(pool.address, first_ts)
        if predecessor is not None:
            known.insert(0, (predecessor.timestamp_ms, predecessor.price))

        observations: list[PriceObservation] = []
        breaks = 0
        for ts, sample in by_ts.items():
            if ts in existing_ts:
                continue

            idx = bisect.bisect_left(known, (ts, float("-inf")))
            log_return = None
            if idx > 0:
                prev_ts, prev_price = known[idx - 1]
                log_return = compute_log_return(
                    prev_price, sample.price, ts - prev_ts, self._max_gap_ms
                )
                if log_return is None:
                    breaks += 1
            known.insert(idx, (ts, sample.price))

            observations.append(
                PriceObservation(
                    pool_address=pool.address,
                    network=pool.network,
                    timestamp_ms=ts,
                    price=sample.price,
                    volume_usd=sample.volume_usd,
                    log_return=log_return,
                )
            )

        inserted = await self._store.insert_observations(observations)
        if breaks:
            logger.info("log_return_chain_breaks", pool_address=pool.address, breaks=breaks)
        logger.debug(
            "ingested_samples",
            pool_address=pool.address,
            received=len(samples),
            inserted=inserted,
        )
        return inserted
