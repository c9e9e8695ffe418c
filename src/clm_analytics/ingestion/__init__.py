"""Time-series ingestion of raw samples into price observations."""

from clm_analytics.ingestion.pipeline import (
    IngestionPipeline,
    assess_batch,
    compute_log_return,
    log_returns,
)

__all__ = [
    "IngestionPipeline",
    "assess_batch",
    "compute_log_return",
    "log_returns",
]
