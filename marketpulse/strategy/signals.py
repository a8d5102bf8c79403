"""Market analysis — turns indicator series into discrete signals and a scored summary.

``analyze_market`` is deterministic and side-effect free: the same candle
window and the same ``IndicatorConfig`` always yield the same result.
"""

import logging
import math
from typing import Optional

from marketpulse.config import IndicatorConfig
from marketpulse.errors import InsufficientDataError
from marketpulse.strategy.indicators import (
    calculate_bollinger,
    calculate_ema_cross,
    calculate_macd,
    calculate_rsi,
    calculate_volume_profile,
)
from marketpulse.strategy.models import (
    BEARISH,
    BULLISH,
    BUY,
    HOLD,
    NEUTRAL,
    SELL,
    WATCH,
    AnalysisResult,
    AnalysisSummary,
    BollingerResult,
    CandleData,
    EMACrossSummary,
    IndicatorSnapshot,
    MACDResult,
    MarketSignal,
    RSIResult,
    VolumeResult,
)

logger = logging.getLogger("marketpulse.analysis")

MIN_CANDLES = 50
DEFAULT_WINDOW = 100

DIVERGENCE_LOOKBACK = 5
SQUEEZE_LOOKBACK = 10
SQUEEZE_RATIO = 0.8

# Strength by EMA horizon: short, medium, long
_EMA_STRENGTHS = (5, 7, 9)


class _SignalFactory:
    """Stamps instrument/timeframe/bar onto every signal of one pass."""

    def __init__(self, instrument: str, timeframe: str, timestamp: int, price: float) -> None:
        self.instrument = instrument
        self.timeframe = timeframe
        self.timestamp = timestamp
        self.price = price

    def __call__(
        self,
        signal_type: str,
        indicator: str,
        strength: int,
        message: str,
        action: str,
    ) -> MarketSignal:
        return MarketSignal(
            instrument=self.instrument,
            timeframe=self.timeframe,
            timestamp=self.timestamp,
            price=self.price,
            signal_type=signal_type,
            indicator=indicator,
            strength=strength,
            message=message,
            action=action,
        )


# ── Per-indicator signal rules ───────────────────────────────────────────


def rsi_signals(
    make: _SignalFactory,
    candles: list[CandleData],
    rsi: list[RSIResult],
) -> list[MarketSignal]:
    """Oversold/overbought plus a 5-bar price/RSI divergence check."""
    if not rsi:
        return []
    signals: list[MarketSignal] = []
    latest = rsi[-1]

    if latest.is_oversold:
        signals.append(make(
            "OVERSOLD", "RSI", 7, f"RSI is oversold ({latest.value:.2f})", BUY,
        ))
    elif latest.is_overbought:
        signals.append(make(
            "OVERBOUGHT", "RSI", 7, f"RSI is overbought ({latest.value:.2f})", SELL,
        ))

    if len(rsi) > DIVERGENCE_LOOKBACK:
        price_now = candles[-1].close
        price_then = candles[-DIVERGENCE_LOOKBACK].close
        rsi_now = rsi[-1].value
        rsi_then = rsi[-DIVERGENCE_LOOKBACK].value

        if price_now < price_then and rsi_now > rsi_then:
            signals.append(make(
                "BULLISH_DIVERGENCE", "RSI", 8,
                "Bullish divergence detected (price down, RSI up)", BUY,
            ))
        elif price_now > price_then and rsi_now < rsi_then:
            signals.append(make(
                "BEARISH_DIVERGENCE", "RSI", 8,
                "Bearish divergence detected (price up, RSI down)", SELL,
            ))

    return signals


def macd_signals(make: _SignalFactory, macd: list[MACDResult]) -> list[MarketSignal]:
    """Histogram sign change on the latest bar."""
    if len(macd) < 2:
        return []
    current = macd[-1].histogram
    previous = macd[-2].histogram

    if current > 0 and previous <= 0:
        return [make("BULLISH_CROSS", "MACD", 6, "MACD bullish cross detected", BUY)]
    if current < 0 and previous >= 0:
        return [make("BEARISH_CROSS", "MACD", 6, "MACD bearish cross detected", SELL)]
    return []


def is_bollinger_squeeze(
    bollinger: list[BollingerResult],
    lookback: int = SQUEEZE_LOOKBACK,
    ratio: float = SQUEEZE_RATIO,
) -> bool:
    """``True`` when bandwidth fell below *ratio* of its value *lookback* bars back.

    The comparison bar is ``bollinger[-lookback]``, so a window of
    *lookback* bars (inclusive of the latest) is inspected.
    """
    if len(bollinger) < lookback:
        return False
    current = bollinger[-1].bandwidth
    earlier = bollinger[-lookback].bandwidth
    if earlier <= 0:
        return False
    return current < earlier * ratio


def bollinger_signals(make: _SignalFactory, bollinger: list[BollingerResult]) -> list[MarketSignal]:
    """Band breaches and volatility squeeze."""
    if not bollinger:
        return []
    signals: list[MarketSignal] = []
    latest = bollinger[-1]

    if latest.is_above_upper:
        signals.append(make(
            "PRICE_ABOVE_UPPER_BAND", "BOLLINGER", 5,
            "Price above upper Bollinger Band", SELL,
        ))
    elif latest.is_below_lower:
        signals.append(make(
            "PRICE_BELOW_LOWER_BAND", "BOLLINGER", 5,
            "Price below lower Bollinger Band", BUY,
        ))

    if is_bollinger_squeeze(bollinger):
        signals.append(make(
            "BOLLINGER_SQUEEZE", "BOLLINGER", 7,
            "Bollinger Bands squeezing (potential breakout)", WATCH,
        ))

    return signals


def ema_cross_signals(
    make: _SignalFactory,
    crosses: list[Optional[EMACrossSummary]],
) -> list[MarketSignal]:
    """One signal per EMA pair whose latest bar crossed.

    *crosses* is ordered short → long horizon; ``None`` marks a pair that
    could not be computed for this window.
    """
    signals: list[MarketSignal] = []
    for index, cross in enumerate(crosses):
        if cross is None:
            continue
        strength = _EMA_STRENGTHS[min(index, len(_EMA_STRENGTHS) - 1)]
        indicator = f"EMA_{cross.label}"
        if cross.latest.is_cross_over:
            signals.append(make(
                "EMA_CROSS_OVER", indicator, strength,
                f"EMA {cross.label} bullish crossover", BUY,
            ))
        elif cross.latest.is_cross_under:
            signals.append(make(
                "EMA_CROSS_UNDER", indicator, strength,
                f"EMA {cross.label} bearish crossunder", SELL,
            ))
    return signals


def volume_signals(
    make: _SignalFactory,
    candles: list[CandleData],
    volume: list[VolumeResult],
) -> list[MarketSignal]:
    """High-volume bar classified by the direction of the close."""
    if not volume or not volume[-1].is_high_volume or len(candles) < 2:
        return []
    latest = volume[-1]
    rising = candles[-1].close > candles[-2].close
    return [make(
        "HIGH_VOLUME_BULLISH" if rising else "HIGH_VOLUME_BEARISH",
        "VOLUME",
        6,
        f"High volume detected ({latest.volume_change_pct:.2f}% above average)",
        BUY if rising else SELL,
    )]


# ── Aggregation ──────────────────────────────────────────────────────────


def confidence_score(signals: list[MarketSignal]) -> int:
    """``round(100 × Σstrength / (10 × count))``, rounding halves up; 0 for no signals."""
    if not signals:
        return 0
    total = sum(s.strength for s in signals)
    score = math.floor(total * 100.0 / (len(signals) * 10) + 0.5)
    return max(0, min(100, int(score)))


def summarize(signals: list[MarketSignal]) -> AnalysisSummary:
    """Count signals by action and derive sentiment and confidence."""
    bullish = sum(1 for s in signals if s.action == BUY)
    bearish = sum(1 for s in signals if s.action == SELL)
    neutral = sum(1 for s in signals if s.action in (WATCH, HOLD))

    if bullish > bearish * 1.5:
        sentiment = BULLISH
    elif bearish > bullish * 1.5:
        sentiment = BEARISH
    else:
        sentiment = NEUTRAL

    return AnalysisSummary(
        bullish_count=bullish,
        bearish_count=bearish,
        neutral_count=neutral,
        sentiment=sentiment,
        confidence_score=confidence_score(signals),
    )


def analyze_market(
    instrument: str,
    timeframe: str,
    candles: list[CandleData],
    indicators: Optional[IndicatorConfig] = None,
    window: int = DEFAULT_WINDOW,
) -> AnalysisResult:
    """Run every indicator over the latest *window* candles and score the result.

    Raises ``InsufficientDataError`` when fewer than 50 candles are given.
    EMA pairs whose slow period does not fit the window are skipped rather
    than failing the whole analysis.
    """
    if len(candles) < MIN_CANDLES:
        raise InsufficientDataError("market analysis", MIN_CANDLES, len(candles))

    cfg = indicators or IndicatorConfig()
    candles = candles[-max(window, MIN_CANDLES):]
    latest = candles[-1]
    make = _SignalFactory(instrument, timeframe, latest.timestamp, latest.close)

    rsi = calculate_rsi(candles, cfg.rsi_period, cfg.rsi_overbought, cfg.rsi_oversold)
    macd = calculate_macd(candles, cfg.macd_fast, cfg.macd_slow, cfg.macd_signal)
    bollinger = calculate_bollinger(candles, cfg.bollinger_period, cfg.bollinger_std_dev)
    volume = calculate_volume_profile(candles, cfg.volume_period)

    crosses: list[Optional[EMACrossSummary]] = []
    for fast, slow in cfg.ema_pairs:
        try:
            crosses.append(calculate_ema_cross(candles, fast, slow))
        except InsufficientDataError as exc:
            logger.debug("%s %s — skipping EMA %d/%d: %s", instrument, timeframe, fast, slow, exc)
            crosses.append(None)

    signals: list[MarketSignal] = []
    signals += rsi_signals(make, candles, rsi)
    signals += macd_signals(make, macd)
    signals += bollinger_signals(make, bollinger)
    signals += ema_cross_signals(make, crosses)
    signals += volume_signals(make, candles, volume)

    snapshot = IndicatorSnapshot(
        rsi=rsi[-1] if rsi else None,
        macd=macd[-1] if macd else None,
        bollinger=bollinger[-1] if bollinger else None,
        ema_crosses=tuple(c for c in crosses if c is not None),
        volume=volume[-1] if volume else None,
    )

    return AnalysisResult(
        instrument=instrument,
        timeframe=timeframe,
        timestamp=latest.timestamp,
        price=latest.close,
        indicators=snapshot,
        signals=signals,
        summary=summarize(signals),
    )
