"""Rate-limited fetch client with retry, provider failover and circuit breaking.

For each logical capability (price series, pool metadata) the client walks an
ordered chain of capability-equivalent providers. Each provider call:
1. Acquires a grant from that service's rate limiter
2. Runs with the provider's fixed timeout
3. Retries TransportError / QuotaExceeded with exponential backoff
4. On exhaustion, counts a failure against the provider's circuit breaker
   and moves on to the next provider

When every provider is exhausted or skipped, DataUnavailable is raised for
the pool. ProviderError (bad payload, pool not listed) skips straight to the
next provider without retrying.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

from clm_analytics.config import ProviderSettings
from clm_analytics.exceptions import (
    DataUnavailable,
    ProviderError,
    QuotaExceeded,
    TransportError,
)
from clm_analytics.fetch.providers import METADATA, PRICES, PoolDataProvider
from clm_analytics.fetch.rate_limiter import UsageTrackedRateLimiter
from clm_analytics.logging import get_logger
from clm_analytics.models import Pool, PoolMetadata, RawSample

logger = get_logger(__name__)

T = TypeVar("T")


class CircuitBreaker:
    """Skip a provider for a cooldown period after repeated failures.

    After ``failure_threshold`` consecutive failures the breaker opens. Once
    ``cooldown_seconds`` have passed a single trial call is allowed and every
    other caller is refused until it reports back: success closes the breaker,
    another failure re-opens it for a full cooldown, and ``release`` hands the
    trial to the next caller without changing state.
    """

    def __init__(
        self,
        failure_threshold: int,
        cooldown_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._threshold = failure_threshold
        self._cooldown = cooldown_seconds
        self._clock = clock
        self._failures = 0
        self._opened_at: float | None = None
        self._trial_in_flight = False

    @property
    def is_open(self) -> bool:
        return self._opened_at is not None

    def allow(self) -> bool:
        if self._opened_at is None:
            return True
        if self._trial_in_flight or self._clock() - self._opened_at < self._cooldown:
            return False
        self._trial_in_flight = True
        return True

    def release(self) -> None:
        """Give up a trial call that produced no verdict on the provider."""
        self._trial_in_flight = False

    def record_success(self) -> None:
        self._failures = 0
        self._opened_at = None
        self._trial_in_flight = False

    def record_failure(self) -> None:
        self._trial_in_flight = False
        self._failures += 1
        if self._failures >= self._threshold or self._opened_at is not None:
            self._opened_at = self._clock()


class FetchClient:
    """Retrieves price series and pool metadata through the provider chains.

    Args:
        providers: Provider instances keyed by service name.
        limiters: Rate limiters keyed by the same service names.
        settings: Retry, timeout, chain and breaker configuration.
        sleep: Awaitable sleep, injectable for tests.
    """

    def __init__(
        self,
        providers: dict[str, PoolDataProvider],
        limiters: dict[str, UsageTrackedRateLimiter],
        settings: ProviderSettings,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._providers = providers
        self._limiters = limiters
        self._settings = settings
        self._sleep = sleep
        self._breakers = {
            name: CircuitBreaker(
                settings.breaker_failure_threshold,
                settings.breaker_cooldown_seconds,
            )
            for name in providers
        }

    def breaker(self, service: str) -> CircuitBreaker:
        return self._breakers[service]

    async def close(self) -> None:
        for provider in self._providers.values():
            await provider.close()

    # ──────────────────────────────────────────────
    # Public methods
    # ──────────────────────────────────────────────

    async def fetch_price_series(self, pool: Pool, since_ms: int | None) -> list[RawSample]:
        """Return raw samples newer than ``since_ms``, oldest first."""
        return await self._fetch(
            PRICES,
            self._settings.price_providers,
            pool,
            lambda provider: provider.fetch_price_series(pool, since_ms),
        )

    async def fetch_pool_metadata(self, pool: Pool) -> PoolMetadata:
        return await self._fetch(
            METADATA,
            self._settings.metadata_providers,
            pool,
            lambda provider: provider.fetch_pool_metadata(pool),
        )

    # ──────────────────────────────────────────────
    # Failover chain
    # ──────────────────────────────────────────────

    async def _fetch(
        self,
        capability: str,
        chain: list[str],
        pool: Pool,
        call: Callable[[PoolDataProvider], Awaitable[T]],
    ) -> T:
        for name in chain:
            provider = self._providers.get(name)
            if provider is None or capability not in provider.capabilities:
                continue

            breaker = self._breakers[name]
            if not breaker.allow():
                logger.debug("provider_circuit_open", service=name, capability=capability)
                continue

            try:
                result = await self._call_with_retry(provider, capability, call)
            except ProviderError as e:
                breaker.release()
                logger.warning(
                    "provider_unusable_response",
                    service=name,
                    capability=capability,
                    pool_address=pool.address,
                    error=str(e),
                )
                continue
            except (TransportError, QuotaExceeded) as e:
                if isinstance(e, QuotaExceeded) and e.local:
                    # our own quota is spent; says nothing about the provider
                    breaker.release()
                    logger.warning(
                        "provider_quota_exhausted",
                        service=name,
                        capability=capability,
                        pool_address=pool.address,
                        retry_after=e.retry_after,
                    )
                    continue
                breaker.record_failure()
                logger.warning(
                    "provider_failed_over",
                    service=name,
                    capability=capability,
                    pool_address=pool.address,
                    error=str(e),
                    circuit_open=breaker.is_open,
                )
                continue
            except BaseException:
                breaker.release()
                raise

            breaker.record_success()
            return result

        raise DataUnavailable(pool.address, capability)

    # ──────────────────────────────────────────────
    # Retry wrapper
    # ──────────────────────────────────────────────

    async def _call_with_retry(
        self,
        provider: PoolDataProvider,
        capability: str,
        call: Callable[[PoolDataProvider], Awaitable[T]],
    ) -> T:
        """Execute one provider call with exponential backoff retry.

        Retries up to max_attempts times with delays: 1s, 2s, 4s, ...
        Quota refusals wait for the reported retry-after when known, otherwise
        get a longer delay multiplier. Re-raises on final failure.
        """
        limiter = self._limiters[provider.name]
        endpoint = provider.endpoint_for(capability)
        max_attempts = self._settings.max_attempts
        base_delay = self._settings.retry_base_delay

        for attempt in range(max_attempts):
            try:
                grant = await limiter.acquire(endpoint, max_wait=self._settings.max_quota_wait)
                try:
                    return await call(provider)
                except TransportError as e:
                    if not e.accepted:
                        limiter.refund(grant)
                    raise
            except (TransportError, QuotaExceeded) as e:
                if attempt == max_attempts - 1:
                    logger.error(
                        "fetch_failed_permanently",
                        service=provider.name,
                        endpoint=endpoint,
                        error=str(e),
                        attempts=max_attempts,
                    )
                    raise

                delay = base_delay * (2**attempt)

                if isinstance(e, QuotaExceeded):
                    if e.retry_after is not None:
                        delay = min(e.retry_after, self._settings.max_quota_wait)
                    else:
                        delay *= 3
                    logger.warning(
                        "rate_limit_exceeded",
                        service=provider.name,
                        attempt=attempt + 1,
                        max_attempts=max_attempts,
                        delay=delay,
                    )
                else:
                    logger.warning(
                        "fetch_retry",
                        service=provider.name,
                        attempt=attempt + 1,
                        max_attempts=max_attempts,
                        delay=delay,
                        error=str(e),
                    )

                await self._sleep(delay)

        raise AssertionError("unreachable")  # loop always returns or raises
