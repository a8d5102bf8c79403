"""Internal API routers — /status, /signals, /orders, /monitor, /sizing, /analyze endpoints.

No business logic, no SQL. Delegates to repos, the monitor, the scheduler,
and the executor injected at startup.
"""

import dataclasses
import logging
from typing import Optional

from fastapi import APIRouter, Query

from marketpulse.errors import MarketPulseError
from marketpulse.models.trade import TradeSignal

logger = logging.getLogger("marketpulse.api")
router = APIRouter()

# ── Shared state (set during app startup) ────────────────────────────────

_signal_repo = None      # Set via configure_routers()
_order_repo = None       # Set via configure_routers()
_monitor = None          # Set via configure_routers()
_scheduler = None        # Set via configure_routers()
_executor = None         # Set via configure_routers()
_sizer = None            # Set via configure_routers()
_decision_engine = None  # Set via configure_routers()
_deduplicator = None     # Set via configure_routers()
_broker = None           # Set via configure_routers()


def configure_routers(
    signal_repo=None,
    order_repo=None,
    monitor=None,
    scheduler=None,
    executor=None,
    sizer=None,
    decision_engine=None,
    deduplicator=None,
    broker=None,
) -> None:
    """Inject dependencies from the application startup.

    Every argument accepts a duck-type, so tests can wire only what they hit.
    """
    global _signal_repo, _order_repo, _monitor, _scheduler, _executor  # noqa: PLW0603
    global _sizer, _decision_engine, _deduplicator, _broker  # noqa: PLW0603
    _signal_repo = signal_repo
    _order_repo = order_repo
    _monitor = monitor
    _scheduler = scheduler
    _executor = executor
    _sizer = sizer
    _decision_engine = decision_engine
    _deduplicator = deduplicator
    _broker = broker


def _signal_dict(signal: TradeSignal) -> dict:
    return {**dataclasses.asdict(signal), "state": signal.state}


# ── Status ───────────────────────────────────────────────────────────────


@router.get("/status")
async def get_status():
    """Loop state, auto-trading flag, sizing policy, and cycle counters."""
    return {
        "loops": _scheduler.status() if _scheduler else {},
        "auto_trading": _monitor.auto_trading if _monitor else False,
        "cycle_count": _monitor.cycle_count if _monitor else 0,
        "last_cycle_at": _monitor.last_cycle_at if _monitor else None,
        "sizing": _sizer.snapshot() if _sizer else {},
        "cached_pairs": len(_deduplicator.cache) if _deduplicator else 0,
    }


# ── Signals & orders ─────────────────────────────────────────────────────


@router.get("/signals")
async def get_signals(
    limit: int = Query(default=20, ge=1, le=200),
    pending: Optional[bool] = Query(default=None),
    instrument: Optional[str] = Query(default=None),
):
    """Recent trade signals, newest first."""
    if _signal_repo is None:
        return {"signals": []}
    executed = None if pending is None else not pending
    signals = _signal_repo.recent(limit=limit, executed=executed, instrument=instrument)
    return {"signals": [_signal_dict(s) for s in signals]}


@router.get("/orders")
async def get_orders(
    limit: int = Query(default=20, ge=1, le=200),
    signal_id: Optional[int] = Query(default=None),
):
    """Recent orders, newest first, or every order of one signal."""
    if _order_repo is None:
        return {"orders": []}
    if signal_id is not None:
        orders = _order_repo.get_by_signal(signal_id)
    else:
        orders = _order_repo.recent(limit=limit)
    return {"orders": [dataclasses.asdict(o) for o in orders]}


@router.post("/signals/process")
async def process_signals():
    """Run one pending-signal sweep now."""
    if _executor is None:
        return {"error": "No executor"}
    results = await _executor.process_pending()
    return {"processed": len(results), "results": results}


@router.post("/signals/manual")
async def create_manual_signal(body: dict):
    """Create a forced PENDING signal at the current price.

    Body: ``{"instrument": "BTCUSDT", "direction": "BUY", "notional": 100, "leverage": 2}``
    (``notional`` and ``leverage`` optional).
    """
    if _decision_engine is None or _signal_repo is None or _broker is None:
        return {"error": "Trading not configured"}
    instrument = body.get("instrument")
    direction = str(body.get("direction", "")).upper()
    if not instrument:
        return {"error": "instrument is required"}
    try:
        price = await _broker.get_current_price(instrument)
        signal = _decision_engine.create_manual_signal(
            instrument,
            direction,
            price,
            position_size_notional=body.get("notional"),
            leverage=body.get("leverage"),
        )
        signal = _signal_repo.create_signal(signal)
    except (MarketPulseError, ValueError) as exc:
        return {"error": str(exc)}
    logger.info("Manual %s signal %d created for %s via API", direction, signal.id, instrument)
    return {"signal": _signal_dict(signal)}


# ── Controls ─────────────────────────────────────────────────────────────


@router.post("/monitor/start")
async def start_monitor():
    if _scheduler is None:
        return {"error": "No scheduler"}
    started = _scheduler.monitor_loop.start()
    return {"status": "started" if started else "already_running"}


@router.post("/monitor/stop")
async def stop_monitor():
    if _scheduler is None:
        return {"error": "No scheduler"}
    stopped = _scheduler.monitor_loop.stop()
    return {"status": "stopped" if stopped else "not_running"}


@router.post("/autotrading")
async def set_autotrading(body: dict):
    """Body: ``{"enabled": true}``."""
    if _monitor is None:
        return {"error": "No monitor"}
    enabled = body.get("enabled")
    if not isinstance(enabled, bool):
        return {"error": "enabled must be a boolean"}
    _monitor.set_auto_trading(enabled)
    return {"auto_trading": enabled}


@router.post("/sizing")
async def update_sizing(body: dict):
    """Body: ``{"account_size": 2000, "max_risk_per_trade_pct": 1.5}`` (either key optional)."""
    if _sizer is None:
        return {"error": "No position sizer"}
    try:
        if "account_size" in body:
            _sizer.set_account_size(float(body["account_size"]))
        if "max_risk_per_trade_pct" in body:
            _sizer.set_max_risk_per_trade(float(body["max_risk_per_trade_pct"]))
    except (TypeError, ValueError) as exc:
        return {"error": str(exc)}
    logger.info("Sizing policy updated via API: %s", _sizer.snapshot())
    return {"sizing": _sizer.snapshot()}


@router.post("/alerts/clear")
async def clear_alert_cache():
    """Forget cached analyses; the next cycle is a cold start for every pair."""
    if _deduplicator is None:
        return {"error": "No alert deduplicator"}
    _deduplicator.clear()
    return {"status": "cleared"}


# ── On-demand analysis ───────────────────────────────────────────────────


@router.post("/analyze")
async def analyze(body: dict):
    """Analyze one pair without alerting or trading.

    Body: ``{"instrument": "BTCUSDT", "timeframe": "1h"}``.
    """
    if _monitor is None:
        return {"error": "No monitor"}
    instrument = body.get("instrument")
    timeframe = body.get("timeframe")
    if not instrument or not timeframe:
        return {"error": "instrument and timeframe are required"}
    try:
        analysis = await _monitor.analyze(instrument, timeframe)
    except MarketPulseError as exc:
        return {"error": str(exc)}
    if analysis is None:
        return {"error": f"Not enough candles for {instrument} {timeframe}"}
    return {"analysis": dataclasses.asdict(analysis)}
