"""Analysis data models — typed representations for indicator and signal outputs."""

from dataclasses import dataclass, field
from typing import Optional


# ── Actions / sentiment ──────────────────────────────────────────────────

BUY = "BUY"
SELL = "SELL"
HOLD = "HOLD"
WATCH = "WATCH"

BULLISH = "BULLISH"
BEARISH = "BEARISH"
NEUTRAL = "NEUTRAL"


@dataclass(frozen=True)
class CandleData:
    """A single OHLCV bar. ``timestamp`` is epoch milliseconds."""

    timestamp: int
    open: float
    high: float
    low: float
    close: float
    volume: float


# ── Indicator rows ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class RSIResult:
    timestamp: int
    value: float
    is_overbought: bool
    is_oversold: bool


@dataclass(frozen=True)
class MACDResult:
    timestamp: int
    macd: float
    signal: float
    histogram: float
    is_bullish: bool
    is_bearish: bool


@dataclass(frozen=True)
class BollingerResult:
    timestamp: int
    upper: float
    middle: float
    lower: float
    bandwidth: float
    is_above_upper: bool
    is_below_lower: bool


@dataclass(frozen=True)
class EMACrossResult:
    timestamp: int
    fast_ema: float
    slow_ema: float
    is_cross_over: bool
    is_cross_under: bool


@dataclass(frozen=True)
class EMACrossSummary:
    """Latest bar transition of one fast/slow EMA pair."""

    fast_period: int
    slow_period: int
    latest: EMACrossResult
    series: list[EMACrossResult] = field(default_factory=list)

    @property
    def label(self) -> str:
        return f"{self.fast_period}/{self.slow_period}"


@dataclass(frozen=True)
class VolumeResult:
    timestamp: int
    volume: float
    average_volume: float
    volume_change_pct: float
    is_high_volume: bool


# ── Signals and analysis ─────────────────────────────────────────────────


@dataclass(frozen=True)
class MarketSignal:
    """One discrete observation produced by the analyzer or the alerter."""

    instrument: str
    timeframe: str
    timestamp: int
    price: float
    signal_type: str  # e.g. "OVERSOLD", "BULLISH_CROSS", "BOLLINGER_SQUEEZE"
    indicator: str  # e.g. "RSI", "MACD", "EMA_9/21"
    strength: int  # 1-10
    message: str
    action: str  # BUY / SELL / HOLD / WATCH


@dataclass(frozen=True)
class IndicatorSnapshot:
    """Latest value of every indicator at the analysed bar."""

    rsi: Optional[RSIResult] = None
    macd: Optional[MACDResult] = None
    bollinger: Optional[BollingerResult] = None
    ema_crosses: tuple[EMACrossSummary, ...] = ()
    volume: Optional[VolumeResult] = None


@dataclass(frozen=True)
class AnalysisSummary:
    bullish_count: int
    bearish_count: int
    neutral_count: int
    sentiment: str  # BULLISH / BEARISH / NEUTRAL
    confidence_score: int  # 0-100


@dataclass(frozen=True)
class AnalysisResult:
    """Full output of one analysis pass over an (instrument, timeframe)."""

    instrument: str
    timeframe: str
    timestamp: int
    price: float
    indicators: IndicatorSnapshot
    signals: list[MarketSignal]
    summary: AnalysisSummary

    @property
    def key(self) -> tuple[str, str]:
        return (self.instrument, self.timeframe)
