"""Tests for impermanent-loss estimation, breakeven APR and risk scoring."""

import math

import pytest

from clm_analytics.analytics.impermanent_loss import (
    breakeven_fee_apr,
    estimate_il,
    expected_il,
    hodl_value,
    il_path,
    il_risk_score,
    one_sigma_price_ratio,
    position_value,
    realized_position_il,
)


class TestEstimateIL:
    def test_no_divergence_no_loss(self) -> None:
        assert estimate_il(1.0, concentrated=False) == 0
        assert estimate_il(1.0, concentrated=True) == 0

    def test_scenario_ratio_1_5(self) -> None:
        assert estimate_il(1.5, concentrated=False) == pytest.approx(-0.0202, abs=1e-4)
        assert estimate_il(1.5, concentrated=True) == pytest.approx(-0.0303, abs=1e-4)

    @pytest.mark.parametrize("ratio", [0.01, 0.25, 0.5, 0.9, 1.1, 2.0, 4.0, 100.0])
    def test_symmetric_under_inversion(self, ratio: float) -> None:
        assert estimate_il(ratio) == pytest.approx(estimate_il(1 / ratio))

    @pytest.mark.parametrize("ratio", [0.01, 0.5, 1.5, 3.0, 1000.0])
    def test_concentrated_is_one_and_a_half_times(self, ratio: float) -> None:
        assert estimate_il(ratio, concentrated=True) == 1.5 * estimate_il(ratio, concentrated=False)

    @pytest.mark.parametrize("ratio", [1e-6, 0.3, 1.0, 7.0, 1e6])
    def test_range(self, ratio: float) -> None:
        il = estimate_il(ratio)
        assert -1 < il <= 0

    def test_custom_factor(self) -> None:
        assert estimate_il(2.0, True, concentration_factor=3.0) == pytest.approx(3 * estimate_il(2.0))

    @pytest.mark.parametrize("ratio", [0.0, -1.0])
    def test_non_positive_ratio_rejected(self, ratio: float) -> None:
        with pytest.raises(ValueError):
            estimate_il(ratio)

    def test_il_path_relative_to_entry(self) -> None:
        path = il_path([100.0, 150.0, 100.0, 50.0])
        assert path[0] == 0
        assert path[1] == pytest.approx(estimate_il(1.5))
        assert path[2] == 0
        assert path[3] == pytest.approx(estimate_il(0.5))
        assert il_path([]) == []


class TestExpectedIL:
    def test_one_sigma_ratio(self) -> None:
        assert one_sigma_price_ratio(0.5, 365) == pytest.approx(math.exp(0.5))
        assert one_sigma_price_ratio(0.0, 30) == 1.0

    def test_expected_il_concentrated_by_default(self) -> None:
        ratio = math.exp(0.8 * math.sqrt(30 / 365))
        assert expected_il(0.8) == pytest.approx(1.5 * estimate_il(ratio))

    def test_higher_volatility_more_loss(self) -> None:
        assert expected_il(1.2) < expected_il(0.6) < expected_il(0.1) <= 0

    def test_concentrated_estimate_can_exceed_total_loss(self) -> None:
        assert estimate_il(100.0, concentrated=True) == pytest.approx(1.5 * (20 / 101 - 1))
        assert estimate_il(100.0, concentrated=True) < -1

    def test_expected_il_capped_at_total_loss(self) -> None:
        # a 30-day one-sigma move at 3000% volatility is a ~5400x price ratio
        assert expected_il(30.0) == -1.0
        assert breakeven_fee_apr(expected_il(30.0)) == pytest.approx(365 / 30)
        assert il_risk_score(expected_il(30.0)) == 10


class TestBreakeven:
    def test_breakeven_annualizes_horizon_loss(self) -> None:
        assert breakeven_fee_apr(-0.01, horizon_days=30) == pytest.approx(0.01 * 365 / 30)

    def test_breakeven_zero_loss(self) -> None:
        assert breakeven_fee_apr(0.0) == 0.0

    def test_rejects_non_positive_horizon(self) -> None:
        with pytest.raises(ValueError):
            breakeven_fee_apr(-0.01, horizon_days=0)


class TestRiskScore:
    @pytest.mark.parametrize(
        ("il", "score"),
        [
            (0.0, 1),
            (-0.004, 1),
            (-0.005, 1),
            (-0.0051, 2),
            (-0.019, 4),
            (-0.044, 9),
            (-0.0451, 10),
            (-0.5, 10),
        ],
    )
    def test_buckets(self, il: float, score: int) -> None:
        assert il_risk_score(il) == score

    def test_monotonic_and_clamped(self) -> None:
        scores = [il_risk_score(-i / 1000) for i in range(0, 200)]
        assert scores == sorted(scores)
        assert min(scores) == 1
        assert max(scores) == 10


class TestPositionValue:
    def test_in_range_value_positive(self) -> None:
        assert position_value(2000.0, 1500.0, 2500.0, 1000.0) > 0

    def test_above_range_all_token1(self) -> None:
        value = position_value(3000.0, 1500.0, 2500.0, 1000.0)
        assert value == pytest.approx(1000.0 * (math.sqrt(2500.0) - math.sqrt(1500.0)))
        # value is flat above the range
        assert position_value(4000.0, 1500.0, 2500.0, 1000.0) == pytest.approx(value)

    def test_hodl_value(self) -> None:
        assert hodl_value(1000.0, 2.0, 1.0) == pytest.approx(1500.0)
        assert hodl_value(1000.0, 1.0, 1.0) == pytest.approx(1000.0)

    def test_realized_il_zero_without_move(self) -> None:
        assert realized_position_il(2000.0, 2000.0, 1500.0, 2500.0, 1000.0) == pytest.approx(0.0)

    def test_realized_il_exceeds_full_range_estimate(self) -> None:
        realized = realized_position_il(2000.0, 2400.0, 1500.0, 2500.0, 1000.0)
        assert realized < estimate_il(1.2) < 0
