"""Trade executor — submits orders for pending TradeSignals.

A signal moves PENDING → EXECUTED only after its order is on the exchange
and recorded locally.  Any failing step leaves it PENDING for the next
sweep; there is no failed state.
"""

import asyncio
import logging
import math
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from marketpulse.broker.models import (
    BUY_SIDE,
    LIMIT,
    SELL_SIDE,
    InstrumentInfo,
    OrderRequest,
    closing_order,
)
from marketpulse.errors import ExternalServiceError, PersistenceError
from marketpulse.models.trade import Order, TradeSignal
from marketpulse.repos.order_repo import OrderRepo
from marketpulse.repos.signal_repo import SignalRepo
from marketpulse.risk.sl_tp import calculate_risk_levels
from marketpulse.strategy.models import BUY

logger = logging.getLogger("marketpulse.executor")

LIMIT_PRICE_OFFSET = 0.001
NEW_ORDER_STATUS = "NEW"


def link_id_for(signal_id: int, purpose: str = "") -> str:
    """Deterministic client order id, so a resubmitted order is recognised."""
    return f"mp-{purpose}-{signal_id}" if purpose else f"mp-{signal_id}"


def calculate_order_qty(notional: float, price: float, info: InstrumentInfo) -> float:
    """Exchange quantity for a USD *notional* at *price*.

    Floored to the qty step, raised to the minimum order qty, then rounded
    to the step's precision.  Inverse contracts are quoted in USD, so their
    quantity is the notional itself.
    """
    if price <= 0:
        raise ValueError(f"price must be positive, got {price}")
    raw = notional if info.category == "inverse" else notional / price
    # small epsilon so 0.003 / 0.001 does not floor to 2
    qty = math.floor(raw / info.qty_step + 1e-9) * info.qty_step
    if qty < info.min_order_qty:
        qty = info.min_order_qty
    return round(qty, info.qty_precision)


def limit_price(price: float, side: str) -> float:
    """Price a limit order slightly inside the last trade."""
    if side == BUY_SIDE:
        return price * (1 - LIMIT_PRICE_OFFSET)
    return price * (1 + LIMIT_PRICE_OFFSET)


class TradeExecutor:
    """Drives a TradeSignal through position flip, sizing, and submission.

    Args:
        broker: A ``BybitClient`` (or compatible duck-type / mock).
        signal_repo: Signal store; the executed flag there is authoritative.
        order_repo: Order store.
        order_type: ``"Market"`` or ``"Limit"``.
        take_profit_pct: TP distance from entry, in percent.
        stop_loss_pct: SL distance from entry, in percent.
        close_backoff_seconds: Pause after closing an existing position.
        order_pacing_seconds: Pause between signals in one sweep.
        sleep: Awaitable delay, replaceable in tests.
    """

    def __init__(
        self,
        broker,
        signal_repo: SignalRepo,
        order_repo: OrderRepo,
        order_type: str = "Market",
        take_profit_pct: float = 3.0,
        stop_loss_pct: float = 1.5,
        close_backoff_seconds: float = 1.0,
        order_pacing_seconds: float = 2.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._broker = broker
        self._signal_repo = signal_repo
        self._order_repo = order_repo
        self._order_type = order_type
        self._take_profit_pct = take_profit_pct
        self._stop_loss_pct = stop_loss_pct
        self._close_backoff_seconds = close_backoff_seconds
        self._order_pacing_seconds = order_pacing_seconds
        self._sleep = sleep
        self._in_flight: set[int] = set()

    # ── Single signal ────────────────────────────────────────────────────

    async def execute_signal(self, signal: TradeSignal) -> dict:
        """Execute one signal.

        Returns a dict describing the action taken:

        - ``{"action": "skipped", "reason": "..."}``
        - ``{"action": "order_placed", ...}``

        Raises:
            ExternalServiceError: an exchange call failed; signal stays PENDING.
            PersistenceError: the store failed; signal stays PENDING.
        """
        if signal.id is None:
            raise ValueError("signal must be persisted before execution")
        if signal.id in self._in_flight:
            logger.warning("Signal %d already executing — skipped", signal.id)
            return {"action": "skipped", "reason": "in_flight", "signal_id": signal.id}

        self._in_flight.add(signal.id)
        try:
            current = self._signal_repo.get_signal(signal.id)
            if current is None:
                raise PersistenceError(f"Signal {signal.id} not found")
            if current.executed:
                return {"action": "skipped", "reason": "already_executed", "signal_id": signal.id}
            return await self._execute(current)
        finally:
            self._in_flight.discard(signal.id)

    async def _execute(self, signal: TradeSignal) -> dict:
        instrument = signal.instrument
        side = BUY_SIDE if signal.direction == BUY else SELL_SIDE

        # 0 — An order already recorded means only the executed flag was lost
        recorded = self._order_repo.get_by_signal(signal.id)
        if recorded:
            self._signal_repo.mark_executed(signal.id)
            logger.warning(
                "Signal %d already has order %d — marked executed without resubmitting",
                signal.id, recorded[-1].id,
            )
            return {
                "action": "skipped",
                "reason": "order_exists",
                "signal_id": signal.id,
                "order_id": recorded[-1].id,
            }

        # 1 — Flip, never stack: flatten any open position first
        position = await self._broker.get_position(instrument)
        if position is not None and position.is_open:
            logger.info(
                "Closing open %s position on %s (size=%s) before new %s",
                position.side, instrument, position.size, side,
            )
            await self._broker.submit_order(
                closing_order(position, link_id_for(signal.id, "close")),
            )
            self._close_local_orders(instrument, position.unrealised_pnl)
            await self._sleep(self._close_backoff_seconds)

        # 2 — Quantity from notional
        price = await self._broker.get_current_price(instrument)
        info = await self._broker.get_instrument_info(instrument)
        qty = calculate_order_qty(signal.position_size_notional, price, info)

        # 3 — Entry and exits
        entry = limit_price(price, side) if self._order_type == LIMIT else price
        levels = calculate_risk_levels(
            entry, side, self._take_profit_pct, self._stop_loss_pct,
        )

        # 4 — Leverage, then the order
        if info.category != "spot":
            try:
                await self._broker.set_leverage(instrument, signal.leverage)
            except ExternalServiceError as exc:
                logger.warning(
                    "Leverage %dx not applied on %s: %s", signal.leverage, instrument, exc,
                )

        request = OrderRequest(
            instrument=instrument,
            side=side,
            order_type=self._order_type,
            qty=qty,
            price=entry if self._order_type == LIMIT else None,
            take_profit=levels.take_profit,
            stop_loss=levels.stop_loss,
            order_link_id=link_id_for(signal.id),
        )
        ack = await self._broker.submit_order(request)

        # 5 — Record, then flip the signal
        order = self._order_repo.create_order(Order(
            signal_id=signal.id,
            instrument=instrument,
            side=side,
            order_type=self._order_type,
            price=entry,
            quantity=qty,
            exchange_order_id=ack.order_id,
            status=NEW_ORDER_STATUS,
            timestamp=datetime.now(timezone.utc).isoformat(),
        ))
        self._signal_repo.mark_executed(signal.id)

        logger.info(
            "Signal %d executed: %s %s qty=%s @ %.5f (TP=%.5f SL=%.5f) order=%s",
            signal.id, side, instrument, qty, entry,
            levels.take_profit, levels.stop_loss, ack.order_id,
        )
        return {
            "action": "order_placed",
            "signal_id": signal.id,
            "order_id": order.id,
            "exchange_order_id": ack.order_id,
            "instrument": instrument,
            "side": side,
            "qty": qty,
            "price": entry,
            "take_profit": levels.take_profit,
            "stop_loss": levels.stop_loss,
        }

    def _close_local_orders(self, instrument: str, profit_loss: Optional[float]) -> None:
        """Mark open local orders closed; the position P&L goes on the newest."""
        open_orders = self._order_repo.open_for_instrument(instrument)
        for idx, order in enumerate(open_orders):
            is_newest = idx == len(open_orders) - 1
            self._order_repo.close_order(order.id, profit_loss if is_newest else None)

    # ── Sweep ────────────────────────────────────────────────────────────

    async def process_pending(self) -> list[dict]:
        """Attempt every PENDING signal, oldest first, one at a time.

        A failing signal is logged and left PENDING; the sweep continues.
        """
        pending = self._signal_repo.list_pending()
        if not pending:
            return []

        logger.info("Processing %d pending signal(s)", len(pending))
        results: list[dict] = []
        for idx, signal in enumerate(pending):
            if idx > 0:
                await self._sleep(self._order_pacing_seconds)
            try:
                results.append(await self.execute_signal(signal))
            except Exception as exc:
                logger.error(
                    "Signal %d (%s %s) failed: %s",
                    signal.id, signal.direction, signal.instrument, exc,
                )
                results.append({
                    "action": "error",
                    "signal_id": signal.id,
                    "reason": str(exc),
                })
        return results
