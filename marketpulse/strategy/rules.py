"""Strategy selection table — ordered (predicate, label) rules, first match wins.

Each predicate receives the indicator snapshot of an analysis and returns
``True`` when its label applies.  A missing RSI reads as 50 and a missing
MACD histogram as 0, so a sparse snapshot falls through to the default.
"""

from typing import Callable

from marketpulse.strategy.models import IndicatorSnapshot

Rule = tuple[Callable[[IndicatorSnapshot], bool], str]

RSI_OVERSOLD_LEVEL = 30.0
RSI_OVERBOUGHT_LEVEL = 70.0
MACD_HISTOGRAM_TRIGGER = 0.5
DEFAULT_STRATEGY = "TREND_FOLLOWING"


def rsi_value(snapshot: IndicatorSnapshot) -> float:
    return snapshot.rsi.value if snapshot.rsi is not None else 50.0


def macd_histogram(snapshot: IndicatorSnapshot) -> float:
    return snapshot.macd.histogram if snapshot.macd is not None else 0.0


def bandwidth(snapshot: IndicatorSnapshot) -> float:
    return snapshot.bollinger.bandwidth if snapshot.bollinger is not None else 0.0


STRATEGY_RULES: list[Rule] = [
    (lambda s: rsi_value(s) <= RSI_OVERSOLD_LEVEL, "RSI_OVERSOLD"),
    (lambda s: rsi_value(s) >= RSI_OVERBOUGHT_LEVEL, "RSI_OVERBOUGHT"),
    (lambda s: macd_histogram(s) > MACD_HISTOGRAM_TRIGGER, "MACD_BULLISH"),
    (lambda s: macd_histogram(s) < -MACD_HISTOGRAM_TRIGGER, "MACD_BEARISH"),
]


def select_strategy(
    snapshot: IndicatorSnapshot,
    rules: list[Rule] = STRATEGY_RULES,
    default: str = DEFAULT_STRATEGY,
) -> str:
    """Label of the first rule whose predicate holds, else *default*."""
    for predicate, label in rules:
        if predicate(snapshot):
            return label
    return default
