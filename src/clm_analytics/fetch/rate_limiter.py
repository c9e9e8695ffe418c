"""Per-service sliding-window rate limiting with persisted usage counters.

Each external service gets its own limiter instance, injected into the fetch
client. Window state is guarded by an asyncio.Lock so concurrent pool
pipelines can never be granted more than ``max_requests`` calls inside any
``window_seconds`` span. Every grant also bumps the hourly ``api_usage``
counter through the injected recorder.
"""

import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timezone

from clm_analytics.config import RateLimit
from clm_analytics.exceptions import QuotaExceeded
from clm_analytics.logging import get_logger

logger = get_logger(__name__)

UsageRecorder = Callable[[str, str, str], Awaitable[None]]


def hour_bucket(epoch_seconds: float | None = None) -> str:
    """Return the UTC ``YYYY-MM-DD-HH`` bucket for a wall-clock time."""
    ts = time.time() if epoch_seconds is None else epoch_seconds
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d-%H")


@dataclass(frozen=True)
class Grant:
    """Permission for one outbound call."""

    service: str
    endpoint: str
    granted_at: float  # monotonic seconds, identifies the window slot


class UsageTrackedRateLimiter:
    """Sliding-window limiter for a single external service.

    Args:
        service: Service name used for usage counters and logs.
        limit: Quota as (max_requests, window_seconds).
        usage_recorder: Async callable(service, endpoint, date_hour) invoked
            once per granted call. None disables usage tracking.
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        service: str,
        limit: RateLimit,
        usage_recorder: UsageRecorder | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.service = service
        self._max_requests = limit.max_requests
        self._window = limit.window_seconds
        self._usage_recorder = usage_recorder
        self._clock = clock
        self._granted: deque[float] = deque()
        self._lock = asyncio.Lock()

    @property
    def in_window(self) -> int:
        """Number of grants currently counted against the window."""
        self._prune(self._clock())
        return len(self._granted)

    def _prune(self, now: float) -> None:
        while self._granted and self._granted[0] <= now - self._window:
            self._granted.popleft()

    async def try_acquire(self, endpoint: str = "") -> Grant | float:
        """Grant a call now, or return the seconds until a slot frees up."""
        async with self._lock:
            now = self._clock()
            self._prune(now)
            if len(self._granted) >= self._max_requests:
                return max(self._granted[0] + self._window - now, 0.0)
            self._granted.append(now)
            grant = Grant(service=self.service, endpoint=endpoint, granted_at=now)

        await self._record_usage(endpoint)
        return grant

    async def acquire(self, endpoint: str = "", max_wait: float | None = None) -> Grant:
        """Wait for a slot and return the grant.

        Raises QuotaExceeded instead of waiting when the required wait is
        longer than ``max_wait``.
        """
        while True:
            result = await self.try_acquire(endpoint)
            if isinstance(result, Grant):
                return result
            if max_wait is not None and result > max_wait:
                raise QuotaExceeded(self.service, retry_after=result, local=True)
            logger.info(
                "rate_limit_wait",
                service=self.service,
                endpoint=endpoint,
                wait_seconds=round(result, 2),
            )
            await asyncio.sleep(result)

    def refund(self, grant: Grant) -> None:
        """Return a slot for a call the provider never accepted."""
        try:
            self._granted.remove(grant.granted_at)
        except ValueError:
            return  # already expired out of the window
        logger.debug("rate_limit_refund", service=self.service, endpoint=grant.endpoint)

    async def _record_usage(self, endpoint: str) -> None:
        if self._usage_recorder is None:
            return
        try:
            await self._usage_recorder(self.service, endpoint, hour_bucket())
        except Exception:
            logger.warning(
                "api_usage_record_failed",
                service=self.service,
                endpoint=endpoint,
                exc_info=True,
            )


def build_rate_limiters(
    limits: dict[str, RateLimit],
    usage_recorder: UsageRecorder | None = None,
) -> dict[str, UsageTrackedRateLimiter]:
    """Create one limiter per configured service."""
    return {
        service: UsageTrackedRateLimiter(service, limit, usage_recorder)
        for service, limit in limits.items()
    }
