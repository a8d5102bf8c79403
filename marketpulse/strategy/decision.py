"""Decision engine — turns an analysis into a sized, pending TradeSignal.

Pure computation: persistence and execution happen downstream, so a
crash after ``decide`` never leaves a half-submitted order behind.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Optional

from marketpulse.models.trade import TradeSignal
from marketpulse.risk.position_sizer import PositionSizer
from marketpulse.strategy.models import BEARISH, BUY, NEUTRAL, SELL, AnalysisResult
from marketpulse.strategy.rules import (
    STRATEGY_RULES,
    Rule,
    bandwidth,
    macd_histogram,
    rsi_value,
    select_strategy,
)

logger = logging.getLogger("marketpulse.decision")

MIN_RISK_FACTOR = 0.5
MAX_RISK_FACTOR = 1.5
MAX_SIGNAL_LEVERAGE = 10
MANUAL_STRATEGY = "MANUAL"

_NEUTRAL_POLICIES = ("skip", "buy")


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def market_risk_factor(analysis: AnalysisResult, activation_threshold: float) -> float:
    """Size multiplier from volatility, momentum, and confidence.

    Starts at 1.0 and is clamped to [0.5, 1.5]::

        × (1 − bandwidth)      if bandwidth > 0.05, else × 1.1
        × 0.8                  if RSI < 30 or RSI > 70
        × 1.1                  if 45 ≤ RSI ≤ 55
        × (1 + min(0.3, |histogram| / 5))
        × (1 + (confidence − activation_threshold) / 100)
    """
    snapshot = analysis.indicators
    factor = 1.0

    bw = bandwidth(snapshot)
    factor *= (1 - bw) if bw > 0.05 else 1.1

    rsi = rsi_value(snapshot)
    if rsi < 30 or rsi > 70:
        factor *= 0.8
    elif 45 <= rsi <= 55:
        factor *= 1.1

    factor *= 1 + min(0.3, abs(macd_histogram(snapshot)) / 5)
    factor *= 1 + (analysis.summary.confidence_score - activation_threshold) / 100.0

    return max(MIN_RISK_FACTOR, min(MAX_RISK_FACTOR, factor))


class DecisionEngine:
    """Gate, direction, strategy label, and risk-adjusted sizing.

    Args:
        sizer: Shared position sizer; its policy is read at call time.
        activation_threshold: Minimum confidence score that may trade.
        neutral_policy: ``"skip"`` drops NEUTRAL analyses, ``"buy"`` trades
            them long.
        rules: Strategy selection table.
    """

    def __init__(
        self,
        sizer: PositionSizer,
        activation_threshold: float = 65.0,
        neutral_policy: str = "skip",
        rules: Optional[list[Rule]] = None,
    ) -> None:
        if neutral_policy not in _NEUTRAL_POLICIES:
            raise ValueError(f"neutral_policy must be one of {_NEUTRAL_POLICIES}, got {neutral_policy!r}")
        self._sizer = sizer
        self._activation_threshold = activation_threshold
        self._neutral_policy = neutral_policy
        self._rules = rules if rules is not None else STRATEGY_RULES

    @property
    def activation_threshold(self) -> float:
        return self._activation_threshold

    def direction(self, sentiment: str) -> Optional[str]:
        if sentiment == BEARISH:
            return SELL
        if sentiment == NEUTRAL and self._neutral_policy == "skip":
            return None
        return BUY

    def decide(self, instrument: str, analysis: AnalysisResult) -> Optional[TradeSignal]:
        """Return a PENDING TradeSignal, or ``None`` when the analysis does not qualify."""
        score = analysis.summary.confidence_score
        if score < self._activation_threshold:
            logger.debug(
                "%s confidence %d below activation threshold %.0f",
                instrument, score, self._activation_threshold,
            )
            return None

        direction = self.direction(analysis.summary.sentiment)
        if direction is None:
            logger.debug("%s sentiment NEUTRAL — skipped by policy", instrument)
            return None

        strategy = select_strategy(analysis.indicators, self._rules)
        factor = market_risk_factor(analysis, self._activation_threshold)

        notional = _round_half_up(self._sizer.position_size(score) * factor)
        leverage = max(
            1, min(MAX_SIGNAL_LEVERAGE, _round_half_up(self._sizer.leverage(score) * factor)),
        )

        signal = TradeSignal(
            instrument=instrument,
            direction=direction,
            price=analysis.price,
            strategy=strategy,
            strength=score / 100.0,
            position_size_notional=float(notional),
            leverage=int(leverage),
            timestamp=_now_iso(),
            metadata={
                "timeframe": analysis.timeframe,
                "sentiment": analysis.summary.sentiment,
                "confidence_score": score,
                "risk_factor": round(factor, 4),
                "rsi": rsi_value(analysis.indicators),
                "macd_histogram": macd_histogram(analysis.indicators),
                "bandwidth": bandwidth(analysis.indicators),
            },
        )
        logger.info(
            "Decision: %s %s via %s (confidence=%d, notional=%.0f, leverage=%dx)",
            direction, instrument, strategy, score, notional, leverage,
        )
        return signal

    def create_manual_signal(
        self,
        instrument: str,
        direction: str,
        price: float,
        position_size_notional: Optional[float] = None,
        leverage: Optional[int] = None,
    ) -> TradeSignal:
        """Forced signal at *price* with full strength, bypassing every gate."""
        if direction not in (BUY, SELL):
            raise ValueError(f"direction must be {BUY} or {SELL}, got {direction!r}")
        if price <= 0:
            raise ValueError(f"price must be positive, got {price}")
        return TradeSignal(
            instrument=instrument,
            direction=direction,
            price=price,
            strategy=MANUAL_STRATEGY,
            strength=1.0,
            position_size_notional=float(
                position_size_notional
                if position_size_notional is not None
                else self._sizer.default_position_notional
            ),
            leverage=int(leverage if leverage is not None else self._sizer.leverage(100)),
            timestamp=_now_iso(),
            metadata={"manual": True},
        )
