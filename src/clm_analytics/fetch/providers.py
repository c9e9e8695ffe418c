"""Pool data provider interface and the concrete HTTP providers.

Fetch and analytics code depends only on PoolDataProvider, keeping
provider-specific URLs, payload shapes and network identifiers isolated in
the concrete implementations. Each provider method issues exactly one HTTP
request, so one rate-limit grant covers one method call.

httpx failures are translated here into the engine's error taxonomy:
connect failures and timeouts become TransportError (accepted=False when the
request never reached the provider), HTTP 429 becomes QuotaExceeded, 5xx is a
transient TransportError, anything else unusable is a ProviderError.
"""

import time
from abc import ABC, abstractmethod
from typing import Any

import httpx

from clm_analytics.config import ProviderSettings
from clm_analytics.exceptions import ProviderError, QuotaExceeded, TransportError
from clm_analytics.logging import get_logger
from clm_analytics.models import Pool, PoolMetadata, RawSample

logger = get_logger(__name__)

PRICES = "prices"
METADATA = "metadata"

SAMPLE_INTERVAL_MS = {
    "hourly": 3600 * 1000,
    "daily": 86400 * 1000,
}

#: Internal network key -> identifier used by each provider.
NETWORKS: dict[str, dict[str, str]] = {
    "eth": {"geckoterminal": "eth", "defillama": "Ethereum", "dexscreener": "ethereum"},
    "arbitrum": {"geckoterminal": "arbitrum", "defillama": "Arbitrum", "dexscreener": "arbitrum"},
    "base": {"geckoterminal": "base", "defillama": "Base", "dexscreener": "base"},
    "polygon": {"geckoterminal": "polygon_pos", "defillama": "Polygon", "dexscreener": "polygon"},
    "solana": {"geckoterminal": "solana", "defillama": "Solana", "dexscreener": "solana"},
}


def _to_float(value: Any) -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


class PoolDataProvider(ABC):
    """Abstract base class for pool data providers.

    Args:
        base_url: Provider API root.
        timeout: Fixed per-call timeout in seconds.
        sampling: "hourly" or "daily" price sampling.
        transport: Optional httpx transport (tests inject MockTransport).
    """

    name: str = ""
    capabilities: frozenset[str] = frozenset()

    def __init__(
        self,
        base_url: str,
        timeout: float,
        sampling: str = "hourly",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._sampling = sampling
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout),
            headers={"Accept": "application/json"},
            transport=transport,
        )

    def network_id(self, pool: Pool) -> str:
        try:
            return NETWORKS[pool.network][self.name]
        except KeyError:
            raise ProviderError(f"{self.name} does not support network {pool.network}")

    async def close(self) -> None:
        await self._client.aclose()

    async def fetch_price_series(self, pool: Pool, since_ms: int | None) -> list[RawSample]:
        """Return raw price samples newer than ``since_ms``, oldest first."""
        raise ProviderError(f"{self.name} does not provide price series")

    async def fetch_pool_metadata(self, pool: Pool) -> PoolMetadata:
        """Return TVL / volume / fee state for a pool."""
        raise ProviderError(f"{self.name} does not provide pool metadata")

    @abstractmethod
    def endpoint_for(self, capability: str) -> str:
        """Usage-counter endpoint label for a capability."""
        ...

    async def _get_json(self, path: str, params: dict | None = None) -> Any:
        try:
            response = await self._client.get(path, params=params)
        except (httpx.ConnectTimeout, httpx.ConnectError) as e:
            raise TransportError(f"{self.name}: {e!r}", accepted=False) from e
        except (httpx.TimeoutException, httpx.TransportError) as e:
            raise TransportError(f"{self.name}: {e!r}") from e

        if response.status_code == 429:
            retry_after = _to_float(response.headers.get("Retry-After"))
            raise QuotaExceeded(self.name, retry_after=retry_after)
        if response.status_code >= 500:
            raise TransportError(f"{self.name}: HTTP {response.status_code}")
        if response.status_code >= 400:
            raise ProviderError(f"{self.name}: HTTP {response.status_code} for {path}")

        try:
            return response.json()
        except ValueError as e:
            raise ProviderError(f"{self.name}: invalid JSON from {path}") from e


class GeckoTerminalProvider(PoolDataProvider):
    """GeckoTerminal: OHLCV price history and pool attributes."""

    name = "geckoterminal"
    capabilities = frozenset({PRICES, METADATA})

    def __init__(self, *args: Any, max_limit: int = 1000, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._max_limit = max_limit

    def endpoint_for(self, capability: str) -> str:
        return "ohlcv" if capability == PRICES else "pool"

    async def fetch_price_series(self, pool: Pool, since_ms: int | None) -> list[RawSample]:
        timeframe = "hour" if self._sampling == "hourly" else "day"
        interval_ms = SAMPLE_INTERVAL_MS[self._sampling]
        now_ms = int(time.time() * 1000)

        limit = self._max_limit
        if since_ms is not None:
            limit = max(1, min(self._max_limit, (now_ms - since_ms) // interval_ms + 1))

        payload = await self._get_json(
            f"/networks/{self.network_id(pool)}/pools/{pool.address}/ohlcv/{timeframe}",
            params={"limit": limit},
        )
        try:
            candles = payload["data"]["attributes"]["ohlcv_list"]
        except (KeyError, TypeError) as e:
            raise ProviderError(f"{self.name}: missing ohlcv_list") from e

        samples = []
        for candle in candles:
            # [timestamp_s, open, high, low, close, volume]
            timestamp_ms = int(candle[0]) * 1000
            if since_ms is not None and timestamp_ms <= since_ms:
                continue
            close = _to_float(candle[4])
            if close is None:
                continue
            samples.append(
                RawSample(
                    timestamp_ms=timestamp_ms,
                    price=close,
                    volume_usd=_to_float(candle[5]) if len(candle) > 5 else None,
                )
            )
        # Responses are newest first
        samples.sort(key=lambda s: s.timestamp_ms)
        return samples

    async def fetch_pool_metadata(self, pool: Pool) -> PoolMetadata:
        payload = await self._get_json(
            f"/networks/{self.network_id(pool)}/pools/{pool.address}"
        )
        try:
            attributes = payload["data"]["attributes"]
        except (KeyError, TypeError) as e:
            raise ProviderError(f"{self.name}: missing pool attributes") from e

        fee_pct = _to_float(attributes.get("pool_fee_percentage"))
        return PoolMetadata(
            tvl_usd=_to_float(attributes.get("reserve_in_usd")),
            volume_24h=_to_float((attributes.get("volume_usd") or {}).get("h24")),
            fee_tier=fee_pct / 100 if fee_pct is not None else None,
            source=self.name,
        )


class DefiLlamaProvider(PoolDataProvider):
    """DeFiLlama yields: TVL, APY and daily volume. Metadata only."""

    name = "defillama"
    capabilities = frozenset({METADATA})

    def endpoint_for(self, capability: str) -> str:
        return "pools"

    async def fetch_pool_metadata(self, pool: Pool) -> PoolMetadata:
        chain = self.network_id(pool).lower()
        payload = await self._get_json("/pools")
        if not isinstance(payload, dict) or payload.get("status") != "success":
            raise ProviderError(f"{self.name}: unexpected /pools response")

        address = pool.address.lower()
        for entry in payload.get("data") or []:
            if str(entry.get("chain", "")).lower() != chain:
                continue
            pool_id = str(entry.get("pool", "")).lower()
            pool_meta = str(entry.get("poolMeta") or "").lower()
            if pool_id == address or pool_id.startswith(address) or address in pool_meta:
                return PoolMetadata(
                    tvl_usd=_to_float(entry.get("tvlUsd")),
                    volume_24h=_to_float(entry.get("volumeUsd1d")),
                    apy_base=_to_float(entry.get("apyBase")),
                    apy_reward=_to_float(entry.get("apyReward")),
                    source=self.name,
                )
        raise ProviderError(f"{self.name}: pool {pool.address} not listed")


class DexScreenerProvider(PoolDataProvider):
    """DexScreener: current spot price and liquidity, the fallback source.

    The price series is a single sample stamped at the start of the current
    sampling interval, so repeated calls within an interval deduplicate.
    """

    name = "dexscreener"
    capabilities = frozenset({PRICES, METADATA})

    def endpoint_for(self, capability: str) -> str:
        return "pairs"

    async def _fetch_pair(self, pool: Pool) -> dict:
        payload = await self._get_json(
            f"/latest/dex/pairs/{self.network_id(pool)}/{pool.address}"
        )
        pairs = (payload or {}).get("pairs") or []
        if not pairs and (payload or {}).get("pair"):
            pairs = [payload["pair"]]
        if not pairs:
            raise ProviderError(f"{self.name}: pair {pool.address} not found")
        return pairs[0]

    async def fetch_price_series(self, pool: Pool, since_ms: int | None) -> list[RawSample]:
        pair = await self._fetch_pair(pool)
        price = _to_float(pair.get("priceUsd")) or _to_float(pair.get("priceNative"))
        if price is None:
            raise ProviderError(f"{self.name}: no price for {pool.address}")

        interval_ms = SAMPLE_INTERVAL_MS[self._sampling]
        now_ms = int(time.time() * 1000)
        timestamp_ms = now_ms - now_ms % interval_ms
        if since_ms is not None and timestamp_ms <= since_ms:
            return []
        volume = _to_float((pair.get("volume") or {}).get("h24"))
        return [RawSample(timestamp_ms=timestamp_ms, price=price, volume_usd=volume)]

    async def fetch_pool_metadata(self, pool: Pool) -> PoolMetadata:
        pair = await self._fetch_pair(pool)
        return PoolMetadata(
            tvl_usd=_to_float((pair.get("liquidity") or {}).get("usd")),
            volume_24h=_to_float((pair.get("volume") or {}).get("h24")),
            source=self.name,
        )


_PROVIDER_CLASSES: dict[str, type[PoolDataProvider]] = {
    GeckoTerminalProvider.name: GeckoTerminalProvider,
    DefiLlamaProvider.name: DefiLlamaProvider,
    DexScreenerProvider.name: DexScreenerProvider,
}


def build_providers(
    settings: ProviderSettings,
    sampling: str = "hourly",
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, PoolDataProvider]:
    """Instantiate every provider referenced by the configured chains."""
    base_urls = {
        GeckoTerminalProvider.name: settings.geckoterminal_url,
        DefiLlamaProvider.name: settings.defillama_url,
        DexScreenerProvider.name: settings.dexscreener_url,
    }
    providers: dict[str, PoolDataProvider] = {}
    for name in dict.fromkeys([*settings.price_providers, *settings.metadata_providers]):
        if name not in _PROVIDER_CLASSES:
            raise ValueError(f"Unknown provider: {name}")
        kwargs: dict[str, Any] = {}
        if name == GeckoTerminalProvider.name:
            kwargs["max_limit"] = settings.ohlcv_max_limit
        providers[name] = _PROVIDER_CLASSES[name](
            base_urls[name],
            settings.request_timeout,
            sampling=sampling,
            transport=transport,
            **kwargs,
        )
    return providers
