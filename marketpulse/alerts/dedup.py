"""Alert deduplication — emits only what changed since the last analysis of a pair.

The cache holds exactly one ``AnalysisResult`` per (instrument, timeframe)
and is replaced on every evaluation.  The first observation of a pair is
stored silently so a restart does not flood the channel with stale alerts.
"""

import logging
from typing import Optional

from marketpulse.alerts.notifier import format_alert
from marketpulse.strategy.models import (
    BEARISH,
    BULLISH,
    BUY,
    SELL,
    WATCH,
    AnalysisResult,
    MarketSignal,
)

logger = logging.getLogger("marketpulse.alerts")

SENTIMENT_CHANGE_STRENGTH = 8
PRICE_MOVE_STRENGTH = 7
PRICE_MOVE_THRESHOLD_PCT = 3.0


class AnalysisCache:
    """Last-seen analysis per (instrument, timeframe)."""

    def __init__(self) -> None:
        self._entries: dict[tuple[str, str], AnalysisResult] = {}

    def get(self, instrument: str, timeframe: str) -> Optional[AnalysisResult]:
        return self._entries.get((instrument, timeframe))

    def put(self, analysis: AnalysisResult) -> None:
        self._entries[analysis.key] = analysis

    def clear(self) -> None:
        """Forget every pair; the next evaluation of each pair is a cold start."""
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class AlertDeduplicator:
    """Turns successive analyses into new-occurrence alerts.

    Args:
        threshold: Minimum signal strength that may alert.
        cache: Analysis store; a private one is created when omitted.
        notifiers: Channels that receive every dispatched alert.
    """

    def __init__(
        self,
        threshold: float = 5.0,
        cache: Optional[AnalysisCache] = None,
        notifiers: Optional[list] = None,
    ) -> None:
        self._threshold = threshold
        self._cache = cache if cache is not None else AnalysisCache()
        self._notifiers = list(notifiers or [])

    @property
    def cache(self) -> AnalysisCache:
        return self._cache

    def clear(self) -> None:
        self._cache.clear()

    # ── Evaluation ───────────────────────────────────────────────────────

    def evaluate(self, analysis: AnalysisResult) -> list[MarketSignal]:
        """Compare *analysis* with the cached one and return the alerts to send.

        Always replaces the cache entry with *analysis* before returning.
        """
        previous = self._cache.get(analysis.instrument, analysis.timeframe)
        self._cache.put(analysis)

        if previous is None:
            logger.debug(
                "%s %s — first analysis cached, no alerts", analysis.instrument, analysis.timeframe,
            )
            return []

        seen = {(s.indicator, s.signal_type) for s in previous.signals}
        alerts = [
            s for s in analysis.signals
            if s.strength >= self._threshold and (s.indicator, s.signal_type) not in seen
        ]

        old_sentiment = previous.summary.sentiment
        new_sentiment = analysis.summary.sentiment
        if old_sentiment != new_sentiment:
            alerts.append(MarketSignal(
                instrument=analysis.instrument,
                timeframe=analysis.timeframe,
                timestamp=analysis.timestamp,
                price=analysis.price,
                signal_type="SENTIMENT_CHANGE",
                indicator="COMBINED",
                strength=SENTIMENT_CHANGE_STRENGTH,
                message=f"Market sentiment changed from {old_sentiment} to {new_sentiment}",
                action=BUY if new_sentiment == BULLISH else SELL if new_sentiment == BEARISH else WATCH,
            ))

        if previous.price:
            change_pct = (analysis.price - previous.price) / previous.price * 100.0
            if abs(change_pct) >= PRICE_MOVE_THRESHOLD_PCT:
                alerts.append(MarketSignal(
                    instrument=analysis.instrument,
                    timeframe=analysis.timeframe,
                    timestamp=analysis.timestamp,
                    price=analysis.price,
                    signal_type="PRICE_MOVEMENT",
                    indicator="PRICE",
                    strength=PRICE_MOVE_STRENGTH,
                    message=(
                        f"Significant price movement: {change_pct:.2f}% "
                        f"in {analysis.timeframe} timeframe"
                    ),
                    action=BUY if change_pct > 0 else SELL,
                ))

        return alerts

    # ── Dispatch ─────────────────────────────────────────────────────────

    async def dispatch(self, alerts: list[MarketSignal]) -> int:
        """Send every alert to every channel; returns the number delivered.

        A failing channel is logged and skipped, never raised.
        """
        delivered = 0
        for alert in alerts:
            text = format_alert(alert)
            for notifier in self._notifiers:
                try:
                    await notifier.send(text)
                    delivered += 1
                except Exception as exc:
                    logger.warning(
                        "Alert channel %s failed for %s %s: %s",
                        type(notifier).__name__, alert.instrument, alert.signal_type, exc,
                    )
        return delivered

    async def process(self, analysis: AnalysisResult) -> list[MarketSignal]:
        """Evaluate and dispatch in one step."""
        alerts = self.evaluate(analysis)
        if alerts:
            logger.info(
                "Generated %d alert(s) for %s %s",
                len(alerts), analysis.instrument, analysis.timeframe,
            )
            await self.dispatch(alerts)
        return alerts
