"""Tests for tier cadences and the promotion policy."""

import pytest

from clm_analytics.config import PromotionSettings, SchedulerSettings
from clm_analytics.models import Tier
from clm_analytics.scheduler.tiers import PromotionPolicy, effective_tier, tier_cadences_ms

HOUR_MS = 3_600_000


def test_default_cadences() -> None:
    cadences = tier_cadences_ms(SchedulerSettings())
    assert cadences == {
        Tier.ACTIVE: HOUR_MS,
        Tier.WATCHLIST: 6 * HOUR_MS,
        Tier.SCREENING: 24 * HOUR_MS,
    }


@pytest.mark.parametrize(
    ("tiers", "expected"),
    [
        ({Tier.ACTIVE, Tier.SCREENING}, Tier.ACTIVE),
        ({Tier.WATCHLIST, Tier.SCREENING}, Tier.WATCHLIST),
        ({Tier.SCREENING}, Tier.SCREENING),
        (set(), Tier.SCREENING),
    ],
)
def test_effective_tier_takes_highest_priority(tiers, expected) -> None:
    assert effective_tier(tiers) is expected


class TestPromotionPolicy:
    def test_spike_relative_to_baseline(self) -> None:
        policy = PromotionPolicy(PromotionSettings(spike_ratio=2.0))
        assert policy.is_spike(0.81, 0.4)
        assert not policy.is_spike(0.8, 0.4)
        assert not policy.is_spike(0.5, 0.4)

    @pytest.mark.parametrize(("vol_1d", "vol_30d"), [(None, 0.4), (0.8, None), (0.8, 0.0)])
    def test_no_spike_without_baseline(self, vol_1d, vol_30d) -> None:
        assert not PromotionPolicy(PromotionSettings()).is_spike(vol_1d, vol_30d)

    def test_disabled(self) -> None:
        assert not PromotionPolicy(PromotionSettings(enabled=False)).is_spike(10.0, 0.1)

    def test_expiry(self) -> None:
        policy = PromotionPolicy(PromotionSettings(cooldown_seconds=3600))
        assert not policy.is_expired(0, HOUR_MS - 1)
        assert policy.is_expired(0, HOUR_MS)
