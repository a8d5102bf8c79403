"""Market monitor — one analysis pass over every configured pair.

Per (instrument, timeframe): fetch candles → analyze → alert dedup →
(auto-trading) gate → decide → persist → execute.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from marketpulse.alerts.dedup import AlertDeduplicator
from marketpulse.config import Config
from marketpulse.executor import TradeExecutor
from marketpulse.repos.signal_repo import SignalRepo
from marketpulse.strategy.decision import DecisionEngine
from marketpulse.strategy.models import AnalysisResult
from marketpulse.strategy.signals import MIN_CANDLES, analyze_market

logger = logging.getLogger("marketpulse.monitor")


def _age_seconds(timestamp: str, now: datetime) -> Optional[float]:
    try:
        created = datetime.fromisoformat(timestamp)
    except ValueError:
        return None
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return (now - created).total_seconds()


class MarketMonitor:
    """Runs the analysis pipeline for each configured pair.

    Args:
        config: Application configuration.
        broker: A ``BybitClient`` (or compatible duck-type / mock).
        deduplicator: Alert deduplicator shared across cycles.
        decision_engine: Turns qualifying analyses into TradeSignals.
        signal_repo: Signal store.
        executor: Submits orders for freshly created signals.
    """

    def __init__(
        self,
        config: Config,
        broker,
        deduplicator: AlertDeduplicator,
        decision_engine: DecisionEngine,
        signal_repo: SignalRepo,
        executor: TradeExecutor,
    ) -> None:
        self._config = config
        self._broker = broker
        self._deduplicator = deduplicator
        self._decision = decision_engine
        self._signal_repo = signal_repo
        self._executor = executor
        self._auto_trading = config.auto_trading
        self._cycle_count = 0
        self._last_cycle_at: Optional[str] = None

    # ── Runtime controls ─────────────────────────────────────────────────

    @property
    def auto_trading(self) -> bool:
        return self._auto_trading

    def set_auto_trading(self, enabled: bool) -> None:
        self._auto_trading = enabled
        logger.info("Auto-trading %s", "enabled" if enabled else "disabled")

    @property
    def cycle_count(self) -> int:
        return self._cycle_count

    @property
    def last_cycle_at(self) -> Optional[str]:
        return self._last_cycle_at

    # ── Analysis ─────────────────────────────────────────────────────────

    async def analyze(self, instrument: str, timeframe: str) -> Optional[AnalysisResult]:
        """Fetch candles and analyze one pair; ``None`` when data is short."""
        candles = await self._broker.get_candles(
            instrument, timeframe, self._config.candle_limit,
        )
        if len(candles) < MIN_CANDLES:
            logger.warning(
                "Not enough candles for %s %s (%d < %d) — skipping",
                instrument, timeframe, len(candles), MIN_CANDLES,
            )
            return None
        return analyze_market(
            instrument,
            timeframe,
            candles,
            indicators=self._config.indicators,
            window=self._config.analysis_window,
        )

    async def process_pair(self, instrument: str, timeframe: str) -> dict:
        """Run the full pipeline for one pair.

        Returns a dict describing the action taken:

        - ``{"action": "skipped", "reason": "..."}``
        - ``{"action": "analyzed", ...}``
        - ``{"action": "signal_created", ...}``
        - ``{"action": "order_placed", ...}``
        """
        analysis = await self.analyze(instrument, timeframe)
        if analysis is None:
            return {"action": "skipped", "reason": "insufficient_data"}

        alerts = await self._deduplicator.process(analysis)
        summary = analysis.summary
        logger.info(
            "%s %s | sentiment=%s score=%d%% | bull=%d bear=%d neutral=%d",
            instrument, timeframe, summary.sentiment, summary.confidence_score,
            summary.bullish_count, summary.bearish_count, summary.neutral_count,
        )

        result = {
            "action": "analyzed",
            "instrument": instrument,
            "timeframe": timeframe,
            "sentiment": summary.sentiment,
            "confidence_score": summary.confidence_score,
            "alerts": len(alerts),
        }
        if not self._auto_trading:
            return result
        return await self._trade(analysis, result)

    async def _trade(self, analysis: AnalysisResult, result: dict) -> dict:
        instrument = analysis.instrument
        score = analysis.summary.confidence_score

        if score < self._decision.activation_threshold:
            return {**result, "action": "skipped", "reason": "below_threshold"}

        bollinger = analysis.indicators.bollinger
        if bollinger is not None and bollinger.bandwidth > self._config.max_entry_bandwidth:
            logger.debug(
                "%s bandwidth %.3f above %.3f — too volatile to enter",
                instrument, bollinger.bandwidth, self._config.max_entry_bandwidth,
            )
            return {**result, "action": "skipped", "reason": "high_volatility"}

        latest = self._signal_repo.latest_for_instrument(instrument)
        if latest is not None:
            age = _age_seconds(latest.timestamp, datetime.now(timezone.utc))
            if age is not None and age < self._config.signal_cooldown_seconds:
                logger.info(
                    "%s last signal %.0fs ago — within cooldown, skipping", instrument, age,
                )
                return {**result, "action": "skipped", "reason": "cooldown"}

        signal = self._decision.decide(instrument, analysis)
        if signal is None:
            return {**result, "action": "skipped", "reason": "no_signal"}

        signal = self._signal_repo.create_signal(signal)
        logger.info(
            "Signal %d created: %s %s (%s, %dx, $%.0f)",
            signal.id, signal.direction, instrument, signal.strategy,
            signal.leverage, signal.position_size_notional,
        )

        try:
            execution = await self._executor.execute_signal(signal)
        except Exception as exc:
            logger.error(
                "Signal %d execution failed, left pending for sweep: %s", signal.id, exc,
            )
            return {**result, "action": "signal_created", "signal_id": signal.id, "reason": str(exc)}
        return {**result, **execution}

    # ── Cycle ────────────────────────────────────────────────────────────

    async def run_cycle(self) -> list[dict]:
        """Process every configured pair in order; per-pair errors are logged."""
        self._cycle_count += 1
        self._last_cycle_at = datetime.now(timezone.utc).isoformat()
        logger.info("Monitor cycle %d started", self._cycle_count)

        results: list[dict] = []
        for instrument, timeframe in self._config.monitored_pairs:
            try:
                results.append(await self.process_pair(instrument, timeframe))
            except Exception as exc:
                logger.error("Error analyzing %s %s: %s", instrument, timeframe, exc)
                results.append({
                    "action": "error",
                    "instrument": instrument,
                    "timeframe": timeframe,
                    "reason": str(exc),
                })
        return results
