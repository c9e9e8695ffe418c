"""Tests for FetchClient retry, failover and circuit breaking.

Providers are scripted in-process; no HTTP is involved.
"""

import pytest

from clm_analytics.config import ProviderSettings, RateLimit
from clm_analytics.exceptions import DataUnavailable, ProviderError, QuotaExceeded, TransportError
from clm_analytics.fetch.client import CircuitBreaker, FetchClient
from clm_analytics.fetch.providers import METADATA, PRICES, PoolDataProvider
from clm_analytics.fetch.rate_limiter import build_rate_limiters
from clm_analytics.models import PoolMetadata, RawSample


class ScriptedProvider(PoolDataProvider):
    """Provider whose calls pop outcomes from a script (exception or value)."""

    def __init__(self, name: str, outcomes: list, capabilities=frozenset({PRICES, METADATA})) -> None:
        super().__init__("https://unused.test", 1.0)
        self.name = name
        self.capabilities = capabilities
        self.outcomes = list(outcomes)
        self.calls = 0

    def endpoint_for(self, capability: str) -> str:
        return capability

    async def _next(self):
        self.calls += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def fetch_price_series(self, pool, since_ms):
        return await self._next()

    async def fetch_pool_metadata(self, pool):
        return await self._next()


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _client(providers: list[ScriptedProvider], **overrides) -> tuple[FetchClient, list[float], dict]:
    names = [p.name for p in providers]
    settings = ProviderSettings(
        max_attempts=3,
        retry_base_delay=1.0,
        max_quota_wait=5.0,
        price_providers=names,
        metadata_providers=names,
        rate_limits={n: RateLimit(max_requests=100, window_seconds=60) for n in names},
        **overrides,
    )
    limiters = build_rate_limiters(settings.rate_limits)
    delays: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        delays.append(seconds)

    client = FetchClient({p.name: p for p in providers}, limiters, settings, sleep=fake_sleep)
    return client, delays, limiters


SAMPLES = [RawSample(timestamp_ms=1, price=2000.0)]


class TestRetry:
    @pytest.mark.asyncio
    async def test_transport_error_retried_with_backoff(self, pool) -> None:
        primary = ScriptedProvider("primary", [TransportError("reset"), TransportError("reset"), SAMPLES])
        client, delays, _ = _client([primary])

        assert await client.fetch_price_series(pool, None) == SAMPLES
        assert primary.calls == 3
        assert delays == [1.0, 2.0]

    @pytest.mark.asyncio
    async def test_quota_exceeded_waits_retry_after_capped(self, pool) -> None:
        primary = ScriptedProvider(
            "primary",
            [QuotaExceeded("primary", retry_after=2.0), QuotaExceeded("primary", retry_after=60.0), SAMPLES],
        )
        client, delays, _ = _client([primary])

        await client.fetch_price_series(pool, None)
        assert delays == [2.0, 5.0]

    @pytest.mark.asyncio
    async def test_quota_without_retry_after_uses_longer_delay(self, pool) -> None:
        primary = ScriptedProvider("primary", [QuotaExceeded("primary"), SAMPLES])
        client, delays, _ = _client([primary])

        await client.fetch_price_series(pool, None)
        assert delays == [3.0]

    @pytest.mark.asyncio
    async def test_unaccepted_call_is_refunded(self, pool) -> None:
        primary = ScriptedProvider(
            "primary", [TransportError("refused", accepted=False), SAMPLES]
        )
        client, _, limiters = _client([primary])

        await client.fetch_price_series(pool, None)
        assert limiters["primary"].in_window == 1

    @pytest.mark.asyncio
    async def test_accepted_failure_is_charged(self, pool) -> None:
        primary = ScriptedProvider("primary", [TransportError("read timeout"), SAMPLES])
        client, _, limiters = _client([primary])

        await client.fetch_price_series(pool, None)
        assert limiters["primary"].in_window == 2


class TestFailover:
    @pytest.mark.asyncio
    async def test_falls_back_after_exhausting_retries(self, pool) -> None:
        primary = ScriptedProvider("primary", [TransportError("down")] * 3)
        secondary = ScriptedProvider("secondary", [SAMPLES])
        client, _, _ = _client([primary, secondary])

        assert await client.fetch_price_series(pool, None) == SAMPLES
        assert primary.calls == 3
        assert secondary.calls == 1

    @pytest.mark.asyncio
    async def test_provider_error_fails_over_without_retry(self, pool) -> None:
        primary = ScriptedProvider("primary", [ProviderError("not listed")])
        secondary = ScriptedProvider("secondary", [PoolMetadata(tvl_usd=1.0)])
        client, delays, _ = _client([primary, secondary])

        metadata = await client.fetch_pool_metadata(pool)
        assert metadata.tvl_usd == 1.0
        assert primary.calls == 1
        assert delays == []
        assert not client.breaker("primary").is_open

    @pytest.mark.asyncio
    async def test_skips_provider_without_capability(self, pool) -> None:
        meta_only = ScriptedProvider("meta", [], capabilities=frozenset({METADATA}))
        prices = ScriptedProvider("prices", [SAMPLES])
        client, _, _ = _client([meta_only, prices])

        assert await client.fetch_price_series(pool, None) == SAMPLES
        assert meta_only.calls == 0

    @pytest.mark.asyncio
    async def test_exhausted_chain_raises_data_unavailable(self, pool) -> None:
        primary = ScriptedProvider("primary", [TransportError("down")] * 3)
        secondary = ScriptedProvider("secondary", [ProviderError("bad payload")])
        client, _, _ = _client([primary, secondary])

        with pytest.raises(DataUnavailable) as exc_info:
            await client.fetch_price_series(pool, None)
        assert exc_info.value.pool_address == pool.address
        assert exc_info.value.capability == PRICES


class TestCircuitBreaker:
    @pytest.mark.asyncio
    async def test_open_breaker_skips_provider(self, pool) -> None:
        primary = ScriptedProvider("primary", [TransportError("down")] * 3)
        secondary = ScriptedProvider("secondary", [SAMPLES, SAMPLES])
        client, _, _ = _client([primary, secondary], breaker_failure_threshold=1)

        await client.fetch_price_series(pool, None)
        assert client.breaker("primary").is_open

        await client.fetch_price_series(pool, None)
        assert primary.calls == 3  # not called again while open
        assert secondary.calls == 2

    def test_opens_after_threshold(self) -> None:
        breaker = CircuitBreaker(failure_threshold=3, cooldown_seconds=60, clock=FakeClock())
        breaker.record_failure()
        breaker.record_failure()
        assert breaker.allow()
        breaker.record_failure()
        assert breaker.is_open
        assert not breaker.allow()

    def test_half_open_after_cooldown(self) -> None:
        clock = FakeClock()
        breaker = CircuitBreaker(failure_threshold=1, cooldown_seconds=60, clock=clock)
        breaker.record_failure()
        clock.now = 60
        assert breaker.allow()

        # trial failure re-opens for a full cooldown
        breaker.record_failure()
        clock.now = 100
        assert not breaker.allow()

        clock.now = 120
        breaker.record_success()
        assert not breaker.is_open
        assert breaker.allow()

    def test_single_trial_call_after_cooldown(self) -> None:
        clock = FakeClock()
        breaker = CircuitBreaker(failure_threshold=1, cooldown_seconds=60, clock=clock)
        breaker.record_failure()
        clock.now = 61

        assert [breaker.allow() for _ in range(4)] == [True, False, False, False]

        breaker.record_success()
        assert [breaker.allow() for _ in range(3)] == [True, True, True]

    def test_released_trial_passes_to_next_caller(self) -> None:
        clock = FakeClock()
        breaker = CircuitBreaker(failure_threshold=1, cooldown_seconds=60, clock=clock)
        breaker.record_failure()
        clock.now = 61

        assert breaker.allow()
        breaker.release()
        assert breaker.is_open
        assert breaker.allow()
        assert not breaker.allow()

    @pytest.mark.asyncio
    async def test_provider_error_on_trial_releases_it(self, pool) -> None:
        primary = ScriptedProvider(
            "primary", [TransportError("down")] * 3 + [ProviderError("not listed"), SAMPLES]
        )
        secondary = ScriptedProvider("secondary", [SAMPLES, SAMPLES])
        client, _, _ = _client(
            [primary, secondary], breaker_failure_threshold=1, breaker_cooldown_seconds=0
        )

        await client.fetch_price_series(pool, None)
        assert client.breaker("primary").is_open

        # trial answered with a bad payload: breaker stays open, trial handed back
        await client.fetch_price_series(pool, None)
        assert client.breaker("primary").is_open
        assert secondary.calls == 2

        await client.fetch_price_series(pool, None)
        assert primary.calls == 5
        assert not client.breaker("primary").is_open

    @pytest.mark.asyncio
    async def test_local_quota_does_not_trip_breaker(self, pool) -> None:
        primary = ScriptedProvider("primary", [])
        secondary = ScriptedProvider("secondary", [SAMPLES])
        client, delays, limiters = _client([primary, secondary], breaker_failure_threshold=1)
        for _ in range(100):
            await limiters["primary"].acquire()

        assert await client.fetch_price_series(pool, None) == SAMPLES
        assert primary.calls == 0
        assert delays == [5.0, 5.0]
        assert not client.breaker("primary").is_open

    @pytest.mark.asyncio
    async def test_provider_throttling_trips_breaker(self, pool) -> None:
        primary = ScriptedProvider("primary", [QuotaExceeded("primary", retry_after=1.0)] * 3)
        secondary = ScriptedProvider("secondary", [SAMPLES])
        client, _, _ = _client([primary, secondary], breaker_failure_threshold=1)

        await client.fetch_price_series(pool, None)
        assert client.breaker("primary").is_open
