"""Tests for the risk management module.

Covers confidence-bucket position sizing, leverage, runtime policy
setters, and direction-aware TP/SL levels.
"""

import pytest

from marketpulse.risk.position_sizer import PositionSizer, confidence_fraction
from marketpulse.risk.sl_tp import (
    RiskLevels,
    calculate_risk_levels,
    calculate_sl,
    calculate_tp,
)


# ── Position sizing ──────────────────────────────────────────────────────


class TestConfidenceBuckets:
    @pytest.mark.parametrize(
        "score, fraction",
        [(100, 1.0), (90, 1.0), (89, 0.8), (80, 0.8), (75, 0.6), (60, 0.4), (59, 0.2), (0, 0.2)],
    )
    def test_bucket_boundaries(self, score, fraction):
        assert confidence_fraction(score) == fraction


class TestLeverage:
    @pytest.mark.parametrize(
        "score, expected",
        [(95, 5), (85, 4), (75, 3), (65, 2), (10, 1)],
    )
    def test_leverage_steps(self, score, expected):
        assert PositionSizer(max_leverage=5).leverage(score) == expected

    def test_leverage_never_below_one(self):
        assert PositionSizer(max_leverage=2).leverage(0) == 1

    def test_leverage_range_for_all_scores(self):
        sizer = PositionSizer(max_leverage=10)
        for score in range(0, 101):
            assert 1 <= sizer.leverage(score) <= 10

    def test_invalid_max_leverage(self):
        with pytest.raises(ValueError):
            PositionSizer(max_leverage=0)


class TestPositionSize:
    def test_floor_applies_on_small_account(self):
        """$1,000 at 2 % risk → $20 × fraction, always under the $50 floor."""
        sizer = PositionSizer(account_size=1000, max_risk_per_trade_pct=2, default_position_notional=50)
        assert sizer.position_size(95) == 50
        assert sizer.position_size(10) == 50

    def test_risk_amount_times_fraction(self):
        sizer = PositionSizer(account_size=10_000, max_risk_per_trade_pct=2, default_position_notional=50)
        assert sizer.position_size(95) == pytest.approx(200.0)
        assert sizer.position_size(85) == pytest.approx(160.0)
        assert sizer.position_size(10) == pytest.approx(50.0)  # 40 → floor

    def test_capped_at_ten_percent_of_account(self):
        sizer = PositionSizer(account_size=10_000, max_risk_per_trade_pct=20, default_position_notional=50)
        assert sizer.position_size(95) == pytest.approx(1000.0)

    def test_range_for_all_scores(self):
        sizer = PositionSizer(account_size=5_000, max_risk_per_trade_pct=5, default_position_notional=25)
        for score in range(0, 101):
            assert 25 <= sizer.position_size(score) <= 500

    def test_setters_affect_later_calls(self):
        sizer = PositionSizer(account_size=10_000, max_risk_per_trade_pct=2)
        before = sizer.position_size(95)
        sizer.set_account_size(20_000)
        sizer.set_max_risk_per_trade(1)
        assert before == pytest.approx(200.0)
        assert sizer.position_size(95) == pytest.approx(200.0)
        sizer.set_max_risk_per_trade(3)
        assert sizer.position_size(95) == pytest.approx(600.0)
        assert sizer.snapshot()["account_size"] == 20_000

    def test_setters_reject_non_positive(self):
        sizer = PositionSizer()
        with pytest.raises(ValueError):
            sizer.set_account_size(0)
        with pytest.raises(ValueError):
            sizer.set_max_risk_per_trade(-1)

    @pytest.mark.parametrize("value", [float("nan"), float("inf")])
    def test_setters_reject_non_finite(self, value):
        sizer = PositionSizer(account_size=10_000, max_risk_per_trade_pct=2)
        with pytest.raises(ValueError):
            sizer.set_account_size(value)
        with pytest.raises(ValueError):
            sizer.set_max_risk_per_trade(value)
        assert sizer.position_size(95) == pytest.approx(200.0)


# ── SL / TP ──────────────────────────────────────────────────────────────


class TestSLTP:
    def test_long_levels(self):
        assert calculate_tp(100.0, "Buy", 3.0) == pytest.approx(103.0)
        assert calculate_sl(100.0, "Buy", 1.5) == pytest.approx(98.5)

    def test_short_levels(self):
        assert calculate_tp(100.0, "Sell", 3.0) == pytest.approx(97.0)
        assert calculate_sl(100.0, "Sell", 1.5) == pytest.approx(101.5)

    def test_risk_levels_bundle(self):
        levels = calculate_risk_levels(200.0, "Sell", 3.0, 1.5)
        assert isinstance(levels, RiskLevels)
        assert levels.take_profit < 200.0 < levels.stop_loss

    def test_invalid_side(self):
        with pytest.raises(ValueError):
            calculate_tp(100.0, "BUY", 3.0)

    def test_invalid_entry(self):
        with pytest.raises(ValueError):
            calculate_risk_levels(0.0, "Buy", 3.0, 1.5)
