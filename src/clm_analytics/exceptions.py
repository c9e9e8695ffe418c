"""Custom exceptions for the pool analytics engine.

Every failure a pool pipeline can hit is an AnalyticsError, so the scheduler
can isolate one pool's failure from the rest of a tick with a single handler.
"""


class AnalyticsError(Exception):
    """Base exception for all analytics engine errors."""


class TransportError(AnalyticsError):
    """Network failure or timeout talking to a provider.

    ``accepted`` is False when the request never reached the provider
    (connect failure or connect timeout); such calls are refunded to the
    rate-limit window.
    """

    def __init__(self, message: str, *, accepted: bool = True) -> None:
        super().__init__(message)
        self.accepted = accepted


class QuotaExceeded(AnalyticsError):
    """Raised when a call would exceed a quota, locally or provider-reported.

    ``local`` is True when our own rate limiter refused the call; the provider
    was never contacted and its health is unknown.
    """

    def __init__(
        self, service: str, retry_after: float | None = None, *, local: bool = False
    ) -> None:
        where = "local" if local else "provider"
        super().__init__(f"{where} quota exceeded for {service}")
        self.service = service
        self.retry_after = retry_after
        self.local = local


class ProviderError(AnalyticsError):
    """Provider answered with something unusable (HTTP error, bad payload)."""


class DataUnavailable(AnalyticsError):
    """All providers for a capability were exhausted for a pool."""

    def __init__(self, pool_address: str, capability: str) -> None:
        super().__init__(f"{capability} unavailable for pool {pool_address}")
        self.pool_address = pool_address
        self.capability = capability


class InsufficientSamples(AnalyticsError):
    """A calculator precondition (minimum sample count) was not met."""


class PersistenceConflict(AnalyticsError):
    """A once-per-day history row already exists for the given key."""
