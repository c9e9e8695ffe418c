"""Threshold alert evaluation with per-alert cooldown.

Each alert type names the metric it watches and its breach direction:
- fvr_threshold: FVR falling below the threshold (risk-type)
- volatility_spike: 1-day volatility exceeding the threshold (spike-type)
- il_warning: |expected 30-day IL| exceeding the threshold (spike-type)

A breach fires only when the alert has never fired or its cooldown has
elapsed since last_triggered. Fired events go to the AlertFeed, the hand-off
point for the external notification path.
"""

import time
from collections import deque
from collections.abc import Awaitable, Callable

from clm_analytics.config import AlertSettings
from clm_analytics.data.store import AnalyticsStore
from clm_analytics.logging import get_logger
from clm_analytics.models import Alert, AlertEvent, AlertType, PoolAnalyticsSnapshot

logger = get_logger(__name__)

#: alert type -> (snapshot metric, breach when value is above the threshold)
ALERT_RULES: dict[AlertType, tuple[str, bool]] = {
    AlertType.FVR_THRESHOLD: ("fvr", False),
    AlertType.VOLATILITY_SPIKE: ("volatility_1d", True),
    AlertType.IL_WARNING: ("expected_il_30d", True),
}

AlertSubscriber = Callable[[AlertEvent], Awaitable[None]]


def is_breach(alert_type: AlertType, value: float, threshold: float) -> bool:
    _, above = ALERT_RULES[alert_type]
    if alert_type is AlertType.IL_WARNING:
        value = abs(value)
    return value > threshold if above else value < threshold


class AlertFeed:
    """Bounded in-memory feed of fired alert events.

    Subscribers (e.g. a webhook notifier) are awaited for every event; a
    failing subscriber is logged and does not block the others.
    """

    def __init__(self, max_size: int = 500) -> None:
        self._events: deque[AlertEvent] = deque(maxlen=max_size)
        self._subscribers: list[AlertSubscriber] = []

    def subscribe(self, subscriber: AlertSubscriber) -> None:
        self._subscribers.append(subscriber)

    async def publish(self, event: AlertEvent) -> None:
        self._events.append(event)
        for subscriber in self._subscribers:
            try:
                await subscriber(event)
            except Exception:
                logger.warning(
                    "alert_subscriber_failed",
                    alert_id=event.alert_id,
                    exc_info=True,
                )

    def recent(self, limit: int = 50) -> list[AlertEvent]:
        """Most recent events, newest first."""
        return list(reversed(self._events))[:limit]


class AlertEvaluator:
    """Checks a pool's active alerts against freshly computed metrics.

    Args:
        store: Alert configuration and last_triggered persistence.
        settings: Cooldown interval.
        feed: Destination for fired events.
    """

    def __init__(
        self,
        store: AnalyticsStore,
        settings: AlertSettings,
        feed: AlertFeed | None = None,
    ) -> None:
        self._store = store
        self._cooldown_ms = settings.cooldown_seconds * 1000
        self._feed = feed or AlertFeed(settings.feed_size)

    @property
    def feed(self) -> AlertFeed:
        return self._feed

    def _cooled_down(self, alert: Alert, now_ms: int) -> bool:
        if alert.last_triggered_ms is None:
            return True
        return now_ms - alert.last_triggered_ms >= self._cooldown_ms

    async def evaluate(
        self,
        pool_address: str,
        metrics: PoolAnalyticsSnapshot,
        now_ms: int | None = None,
    ) -> list[AlertEvent]:
        """Return the alerts that fired for this pool on these metrics."""
        now_ms = int(time.time() * 1000) if now_ms is None else now_ms
        fired: list[AlertEvent] = []

        for alert in await self._store.get_alerts(pool_address):
            metric_name, _ = ALERT_RULES[alert.alert_type]
            value = metrics.metric(metric_name)
            if value is None:
                continue
            if not is_breach(alert.alert_type, value, alert.threshold_value):
                continue
            if not self._cooled_down(alert, now_ms):
                logger.debug(
                    "alert_in_cooldown",
                    alert_id=alert.id,
                    pool_address=pool_address,
                )
                continue

            await self._store.mark_alert_triggered(alert.id, now_ms)
            event = AlertEvent(
                alert_id=alert.id,
                pool_address=pool_address,
                alert_type=alert.alert_type,
                metric=metric_name,
                value=value,
                threshold_value=alert.threshold_value,
                triggered_at_ms=now_ms,
            )
            await self._feed.publish(event)
            fired.append(event)
            logger.info(
                "alert_triggered",
                alert_id=alert.id,
                pool_address=pool_address,
                alert_type=alert.alert_type.value,
                value=value,
                threshold=alert.threshold_value,
            )

        return fired
