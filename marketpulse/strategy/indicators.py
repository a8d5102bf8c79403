"""Technical indicators — RSI, MACD, Bollinger Bands, EMA cross, volume. Pure functions, no I/O.

Every function returns rows aligned to the *tail* of the input candles:
warm-up bars produce no row at all, so ``result[-1]`` is always the
latest bar and ``result[i].timestamp`` matches the candle it describes.
"""

import math

from marketpulse.errors import InsufficientDataError
from marketpulse.strategy.models import (
    BollingerResult,
    CandleData,
    EMACrossResult,
    EMACrossSummary,
    MACDResult,
    RSIResult,
    VolumeResult,
)


def sma_series(values: list[float], period: int) -> list[float]:
    """Simple moving average, one value per full window (``len - period + 1``)."""
    if len(values) < period:
        return []
    window_sum = sum(values[:period])
    out = [window_sum / period]
    for i in range(period, len(values)):
        window_sum += values[i] - values[i - period]
        out.append(window_sum / period)
    return out


def ema_series(values: list[float], period: int) -> list[float]:
    """Exponential Moving Average series.

    Uses the standard EMA formula:
        ``EMA_today = value × k + EMA_yesterday × (1 - k)``
    where ``k = 2 / (period + 1)``.

    The first EMA value is seeded with the SMA of the first *period*
    values, so the output has ``len(values) - period + 1`` entries and
    ``out[0]`` corresponds to ``values[period - 1]``.
    """
    if len(values) < period:
        return []

    k = 2.0 / (period + 1)
    ema = [sum(values[:period]) / period]
    for value in values[period:]:
        ema.append(value * k + ema[-1] * (1 - k))
    return ema


# ── RSI ──────────────────────────────────────────────────────────────────


def calculate_rsi(
    candles: list[CandleData],
    period: int = 14,
    overbought: float = 70.0,
    oversold: float = 30.0,
) -> list[RSIResult]:
    """Calculate Wilder's Relative Strength Index.

    Algorithm (Wilder-smoothed):
        1. delta = close[i] - close[i-1]
        2. Separate gains (positive) and losses (|negative|).
        3. Seed average gain/loss = SMA of first *period* deltas.
        4. Subsequent: avg = (prev_avg × (period-1) + current) / period
        5. RS = avg_gain / avg_loss
        6. RSI = 100 - 100 / (1 + RS)

    Raises ``InsufficientDataError`` when fewer than *period* candles are
    given.  One row is produced per candle from index *period* onward.
    """
    if len(candles) < period:
        raise InsufficientDataError(f"RSI({period})", period, len(candles))

    closes = [c.close for c in candles]
    deltas = [closes[i] - closes[i - 1] for i in range(1, len(closes))]
    if len(deltas) < period:
        return []

    gains = [max(d, 0.0) for d in deltas]
    losses = [abs(min(d, 0.0)) for d in deltas]

    def _rsi_from_avgs(ag: float, al: float) -> float:
        if al == 0:
            # Flat window: no momentum either way
            return 50.0 if ag == 0 else 100.0
        rs = ag / al
        return 100.0 - 100.0 / (1.0 + rs)

    def _row(index: int, value: float) -> RSIResult:
        return RSIResult(
            timestamp=candles[index].timestamp,
            value=value,
            is_overbought=value >= overbought,
            is_oversold=value <= oversold,
        )

    avg_gain = sum(gains[:period]) / period
    avg_loss = sum(losses[:period]) / period
    results = [_row(period, _rsi_from_avgs(avg_gain, avg_loss))]

    for i in range(period, len(deltas)):
        avg_gain = (avg_gain * (period - 1) + gains[i]) / period
        avg_loss = (avg_loss * (period - 1) + losses[i]) / period
        # deltas are offset by one from candles
        results.append(_row(i + 1, _rsi_from_avgs(avg_gain, avg_loss)))

    return results


# ── MACD ─────────────────────────────────────────────────────────────────


def calculate_macd(
    candles: list[CandleData],
    fast_period: int = 12,
    slow_period: int = 26,
    signal_period: int = 9,
) -> list[MACDResult]:
    """Calculate MACD line, signal line and histogram.

    MACD      = EMA(close, fast) − EMA(close, slow)
    Signal    = EMA(MACD, signal)
    Histogram = MACD − Signal

    Rows start once the signal line exists.  ``is_bullish`` /
    ``is_bearish`` compare each histogram value with the preceding one
    (the first row has no predecessor and is neither).

    Requires at least ``slow_period + signal_period`` candles.
    """
    longest = max(fast_period, slow_period)
    min_candles = longest + signal_period
    if len(candles) < min_candles:
        raise InsufficientDataError(
            f"MACD({fast_period},{slow_period},{signal_period})",
            min_candles,
            len(candles),
        )

    closes = [c.close for c in candles]
    fast = ema_series(closes, fast_period)
    slow = ema_series(closes, slow_period)

    # Align both EMAs to the candle index where the longer one starts
    start = longest - 1
    fast = fast[start - (fast_period - 1):]
    slow = slow[start - (slow_period - 1):]
    macd_line = [f - s for f, s in zip(fast, slow)]

    signal_line = ema_series(macd_line, signal_period)
    offset = len(macd_line) - len(signal_line)
    first_index = start + offset

    results: list[MACDResult] = []
    prev_hist: float | None = None
    for j, signal in enumerate(signal_line):
        macd = macd_line[offset + j]
        hist = macd - signal
        results.append(
            MACDResult(
                timestamp=candles[first_index + j].timestamp,
                macd=macd,
                signal=signal,
                histogram=hist,
                is_bullish=prev_hist is not None and hist > prev_hist,
                is_bearish=prev_hist is not None and hist < prev_hist,
            )
        )
        prev_hist = hist

    return results


# ── Bollinger Bands ──────────────────────────────────────────────────────


def calculate_bollinger(
    candles: list[CandleData],
    period: int = 20,
    std_dev: float = 2.0,
) -> list[BollingerResult]:
    """Calculate Bollinger Bands.

    Middle    = SMA(close, *period*)
    Upper     = middle + *std_dev* × σ
    Lower     = middle − *std_dev* × σ
    Bandwidth = (upper − lower) / middle

    Requires at least *period* candles.
    """
    if len(candles) < period:
        raise InsufficientDataError(f"Bollinger({period})", period, len(candles))

    closes = [c.close for c in candles]
    results: list[BollingerResult] = []

    for i in range(period - 1, len(closes)):
        window = closes[i - period + 1 : i + 1]
        sma = sum(window) / period
        variance = sum((x - sma) ** 2 for x in window) / period
        sigma = math.sqrt(variance)

        upper = sma + std_dev * sigma
        lower = sma - std_dev * sigma
        bandwidth = (upper - lower) / sma if sma != 0 else 0.0

        results.append(
            BollingerResult(
                timestamp=candles[i].timestamp,
                upper=upper,
                middle=sma,
                lower=lower,
                bandwidth=abs(bandwidth),
                is_above_upper=closes[i] > upper,
                is_below_lower=closes[i] < lower,
            )
        )

    return results


# ── EMA cross ────────────────────────────────────────────────────────────


def calculate_ema_cross(
    candles: list[CandleData],
    fast_period: int = 9,
    slow_period: int = 21,
) -> EMACrossSummary:
    """Detect fast/slow EMA crossings.

    A crossover on bar *i* means ``fast[i-1] <= slow[i-1]`` and
    ``fast[i] > slow[i]``; a crossunder is the mirror.  Both EMA series are
    truncated to the same length before comparison.

    Requires at least ``max(fast_period, slow_period) + 5`` candles.
    """
    longest = max(fast_period, slow_period)
    min_candles = longest + 5
    if len(candles) < min_candles:
        raise InsufficientDataError(
            f"EMA cross {fast_period}/{slow_period}", min_candles, len(candles)
        )

    closes = [c.close for c in candles]
    fast = ema_series(closes, fast_period)
    slow = ema_series(closes, slow_period)
    length = min(len(fast), len(slow))
    fast = fast[-length:]
    slow = slow[-length:]
    first_index = len(candles) - length

    series: list[EMACrossResult] = []
    for i in range(1, length):
        prev_fast, prev_slow = fast[i - 1], slow[i - 1]
        cur_fast, cur_slow = fast[i], slow[i]
        series.append(
            EMACrossResult(
                timestamp=candles[first_index + i].timestamp,
                fast_ema=cur_fast,
                slow_ema=cur_slow,
                is_cross_over=prev_fast <= prev_slow and cur_fast > cur_slow,
                is_cross_under=prev_fast >= prev_slow and cur_fast < cur_slow,
            )
        )

    return EMACrossSummary(
        fast_period=fast_period,
        slow_period=slow_period,
        latest=series[-1],
        series=series,
    )


# ── Volume ───────────────────────────────────────────────────────────────


def calculate_volume_profile(
    candles: list[CandleData],
    period: int = 20,
    high_volume_ratio: float = 1.5,
) -> list[VolumeResult]:
    """Compare each bar's volume with its trailing SMA.

    ``volume_change_pct`` is the percentage deviation from the average;
    ``is_high_volume`` flags bars above ``high_volume_ratio × average``.
    """
    if len(candles) < period:
        raise InsufficientDataError(f"Volume({period})", period, len(candles))

    volumes = [c.volume for c in candles]
    averages = sma_series(volumes, period)
    first_index = period - 1

    results: list[VolumeResult] = []
    for j, average in enumerate(averages):
        index = first_index + j
        volume = volumes[index]
        change = ((volume - average) / average) * 100.0 if average else 0.0
        results.append(
            VolumeResult(
                timestamp=candles[index].timestamp,
                volume=volume,
                average_volume=average,
                volume_change_pct=change,
                is_high_volume=volume > average * high_volume_ratio,
            )
        )
    return results
