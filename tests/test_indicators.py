"""Tests for marketpulse.strategy.indicators — pure indicator math."""

import math

import pytest

from marketpulse.errors import InsufficientDataError
from marketpulse.strategy.indicators import (
    calculate_bollinger,
    calculate_ema_cross,
    calculate_macd,
    calculate_rsi,
    calculate_volume_profile,
    ema_series,
    sma_series,
)
from marketpulse.strategy.models import CandleData


# ── Helpers ──────────────────────────────────────────────────────────────


def _candles(closes, volumes=None) -> list[CandleData]:
    volumes = volumes or [100.0] * len(closes)
    return [
        CandleData(
            timestamp=1_700_000_000_000 + i * 60_000,
            open=c, high=c, low=c, close=c, volume=v,
        )
        for i, (c, v) in enumerate(zip(closes, volumes))
    ]


def _wave(n: int = 120) -> list[float]:
    """Deterministic oscillating price series with drift."""
    return [100.0 + 10.0 * math.sin(i / 4.0) + 0.1 * i for i in range(n)]


# ── Moving averages ──────────────────────────────────────────────────────


class TestMovingAverages:
    def test_sma_length_and_values(self):
        assert sma_series([1, 2, 3, 4, 5], 3) == pytest.approx([2.0, 3.0, 4.0])

    def test_sma_short_input(self):
        assert sma_series([1, 2], 3) == []

    def test_ema_seeded_with_sma(self):
        out = ema_series([2.0, 4.0, 6.0, 8.0], 3)
        assert len(out) == 2
        assert out[0] == pytest.approx(4.0)
        # k = 0.5 → 8 * 0.5 + 4 * 0.5
        assert out[1] == pytest.approx(6.0)


# ── RSI ──────────────────────────────────────────────────────────────────


class TestRSI:
    def test_oversold_at_25(self):
        """Seven +1 and seven −3 moves → avg gain 0.5, avg loss 1.5 → RSI 25."""
        closes = [100.0]
        for i in range(14):
            closes.append(closes[-1] + (1.0 if i % 2 == 0 else -3.0))
        rsi = calculate_rsi(_candles(closes), period=14)

        assert len(rsi) == 1
        assert rsi[-1].value == pytest.approx(25.0)
        assert rsi[-1].is_oversold is True
        assert rsi[-1].is_overbought is False

    def test_monotonic_decline_is_zero(self):
        rsi = calculate_rsi(_candles([100.0 - i for i in range(30)]))
        assert rsi[-1].value == pytest.approx(0.0)
        assert rsi[-1].is_oversold is True

    def test_monotonic_rise_is_hundred(self):
        rsi = calculate_rsi(_candles([100.0 + i for i in range(30)]))
        assert rsi[-1].value == pytest.approx(100.0)
        assert rsi[-1].is_overbought is True

    def test_flat_series_is_neutral(self):
        rsi = calculate_rsi(_candles([50.0] * 20))
        assert all(r.value == 50.0 for r in rsi)

    def test_bounds_and_alignment(self):
        candles = _candles(_wave())
        rsi = calculate_rsi(candles)
        assert len(rsi) == len(candles) - 14
        assert rsi[-1].timestamp == candles[-1].timestamp
        assert all(0.0 <= r.value <= 100.0 for r in rsi)

    def test_insufficient_data(self):
        with pytest.raises(InsufficientDataError) as exc_info:
            calculate_rsi(_candles([1.0] * 10), period=14)
        assert exc_info.value.needed == 14
        assert exc_info.value.got == 10


# ── MACD ─────────────────────────────────────────────────────────────────


class TestMACD:
    def test_histogram_is_macd_minus_signal(self):
        macd = calculate_macd(_candles(_wave()))
        for row in macd:
            assert row.histogram == pytest.approx(row.macd - row.signal)

    def test_rows_start_once_signal_exists(self):
        candles = _candles(_wave(100))
        macd = calculate_macd(candles, 12, 26, 9)
        # first row sits on candle index 26 + 9 - 2
        assert len(macd) == 100 - 33
        assert macd[0].timestamp == candles[33].timestamp
        assert macd[-1].timestamp == candles[-1].timestamp

    def test_first_row_neither_bullish_nor_bearish(self):
        macd = calculate_macd(_candles(_wave()))
        assert macd[0].is_bullish is False
        assert macd[0].is_bearish is False

    def test_bullish_follows_rising_histogram(self):
        macd = calculate_macd(_candles(_wave()))
        for prev, cur in zip(macd, macd[1:]):
            assert cur.is_bullish == (cur.histogram > prev.histogram)
            assert cur.is_bearish == (cur.histogram < prev.histogram)

    def test_insufficient_data(self):
        with pytest.raises(InsufficientDataError):
            calculate_macd(_candles(_wave(34)), 12, 26, 9)


# ── Bollinger ────────────────────────────────────────────────────────────


class TestBollinger:
    def test_band_ordering(self):
        for row in calculate_bollinger(_candles(_wave())):
            assert row.upper >= row.middle >= row.lower
            assert row.bandwidth >= 0

    def test_constant_series_has_zero_bandwidth(self):
        bands = calculate_bollinger(_candles([10.0] * 25), period=20)
        assert len(bands) == 6
        assert bands[-1].bandwidth == pytest.approx(0.0)
        assert bands[-1].upper == pytest.approx(10.0)

    def test_known_window(self):
        # closes 1..20: mean 10.5, population σ = sqrt((20² − 1) / 12)
        bands = calculate_bollinger(_candles([float(i) for i in range(1, 21)]), 20, 2.0)
        sigma = math.sqrt((20 ** 2 - 1) / 12)
        assert bands[0].middle == pytest.approx(10.5)
        assert bands[0].upper == pytest.approx(10.5 + 2 * sigma)
        assert bands[0].bandwidth == pytest.approx(4 * sigma / 10.5)

    def test_price_breach_flags(self):
        above = calculate_bollinger(_candles([10.0] * 19 + [30.0]), period=20)
        assert above[-1].is_above_upper is True
        assert above[-1].is_below_lower is False
        below = calculate_bollinger(_candles([10.0] * 19 + [1.0]), period=20)
        assert below[-1].is_below_lower is True
        flat = calculate_bollinger(_candles([10.0] * 20), period=20)
        assert flat[-1].is_above_upper is False
        assert flat[-1].is_below_lower is False

    def test_insufficient_data(self):
        with pytest.raises(InsufficientDataError):
            calculate_bollinger(_candles([1.0] * 19), period=20)


# ── EMA cross ────────────────────────────────────────────────────────────


class TestEMACross:
    def test_cross_over_on_latest_bar(self):
        summary = calculate_ema_cross(_candles([0.0] * 30 + [10.0]), 9, 21)
        assert summary.latest.is_cross_over is True
        assert summary.latest.is_cross_under is False
        assert summary.label == "9/21"

    def test_cross_under_on_latest_bar(self):
        summary = calculate_ema_cross(_candles([0.0] * 30 + [-10.0]), 9, 21)
        assert summary.latest.is_cross_under is True
        assert summary.latest.is_cross_over is False

    def test_never_both_flags(self):
        summary = calculate_ema_cross(_candles(_wave()), 9, 21)
        assert not any(r.is_cross_over and r.is_cross_under for r in summary.series)

    def test_minimum_is_slow_plus_five(self):
        with pytest.raises(InsufficientDataError) as exc_info:
            calculate_ema_cross(_candles(_wave(25)), 9, 21)
        assert exc_info.value.needed == 26
        calculate_ema_cross(_candles(_wave(26)), 9, 21)


# ── Volume ───────────────────────────────────────────────────────────────


class TestVolumeProfile:
    def test_high_volume_detected(self):
        volumes = [100.0] * 20 + [200.0]
        profile = calculate_volume_profile(_candles([1.0] * 21, volumes), period=20)
        latest = profile[-1]
        assert latest.average_volume == pytest.approx(105.0)
        assert latest.volume_change_pct == pytest.approx((200 - 105) / 105 * 100)
        assert latest.is_high_volume is True

    def test_normal_volume(self):
        profile = calculate_volume_profile(_candles([1.0] * 20), period=20)
        assert len(profile) == 1
        assert profile[0].is_high_volume is False
        assert profile[0].volume_change_pct == pytest.approx(0.0)

    def test_insufficient_data(self):
        with pytest.raises(InsufficientDataError):
            calculate_volume_profile(_candles([1.0] * 5), period=20)
