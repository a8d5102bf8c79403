"""Broker data models — typed representations of Bybit v5 API objects.

Each type is built by a ``from_payload`` parser that validates the raw
``result`` dict at the boundary and raises ``ExternalServiceError`` when a
field is missing or malformed.
"""

from dataclasses import dataclass
from typing import Optional

from marketpulse.errors import ExternalServiceError

BUY_SIDE = "Buy"
SELL_SIDE = "Sell"

MARKET = "Market"
LIMIT = "Limit"


def opposite_side(side: str) -> str:
    return SELL_SIDE if side == BUY_SIDE else BUY_SIDE


def _field(payload: dict, key: str, kind: str) -> str:
    try:
        value = payload[key]
    except (KeyError, TypeError):
        raise ExternalServiceError(f"{kind} payload missing '{key}'") from None
    if value is None or value == "":
        raise ExternalServiceError(f"{kind} payload has empty '{key}'")
    return value


def _number(payload: dict, key: str, kind: str) -> float:
    raw = _field(payload, key, kind)
    try:
        return float(raw)
    except (TypeError, ValueError):
        raise ExternalServiceError(f"{kind} field '{key}' is not numeric: {raw!r}") from None


@dataclass(frozen=True)
class Ticker:
    """Latest traded price for an instrument."""

    instrument: str
    last_price: float

    @classmethod
    def from_payload(cls, instrument: str, payload: dict) -> "Ticker":
        key = "lastPrice" if "lastPrice" in payload else "last"
        price = _number(payload, key, "ticker")
        if price <= 0:
            raise ExternalServiceError(f"ticker for {instrument} has non-positive price {price}")
        return cls(instrument=instrument, last_price=price)


@dataclass(frozen=True)
class InstrumentInfo:
    """Lot-size rules for order quantities."""

    instrument: str
    category: str
    qty_step: float
    min_order_qty: float
    qty_precision: int

    @classmethod
    def from_payload(cls, instrument: str, category: str, payload: dict) -> "InstrumentInfo":
        lot = payload.get("lotSizeFilter") if isinstance(payload, dict) else None
        if not isinstance(lot, dict):
            raise ExternalServiceError(f"instrument info for {instrument} missing lotSizeFilter")
        step_key = "basePrecision" if category == "spot" else "qtyStep"
        step_raw = str(lot.get(step_key) or "0.001")
        try:
            qty_step = float(step_raw)
            min_qty = float(lot.get("minOrderQty") or "0.001")
        except ValueError:
            raise ExternalServiceError(f"instrument info for {instrument} has malformed lot sizes") from None
        if qty_step <= 0:
            raise ExternalServiceError(f"instrument info for {instrument} has qty step {qty_step}")
        precision = len(step_raw.split(".")[1].rstrip("0")) if "." in step_raw else 0
        return cls(
            instrument=instrument,
            category=category,
            qty_step=qty_step,
            min_order_qty=min_qty,
            qty_precision=precision,
        )


@dataclass(frozen=True)
class PositionInfo:
    """Net open position for an instrument. ``size`` is always non-negative."""

    instrument: str
    side: str  # "Buy" / "Sell" / "" when flat
    size: float
    avg_price: float = 0.0
    unrealised_pnl: float = 0.0

    @property
    def is_open(self) -> bool:
        return self.size != 0

    @classmethod
    def from_payload(cls, instrument: str, payload: dict) -> "PositionInfo":
        return cls(
            instrument=instrument,
            side=str(payload.get("side") or ""),
            size=abs(_number(payload, "size", "position")),
            avg_price=float(payload.get("avgPrice") or 0.0),
            unrealised_pnl=float(payload.get("unrealisedPnl") or 0.0),
        )


@dataclass(frozen=True)
class OrderRequest:
    """An order submission payload."""

    instrument: str
    side: str  # "Buy" / "Sell"
    order_type: str  # "Market" / "Limit"
    qty: float
    price: Optional[float] = None
    take_profit: Optional[float] = None
    stop_loss: Optional[float] = None
    reduce_only: bool = False
    order_link_id: str = ""  # client id; makes a resubmission idempotent


@dataclass(frozen=True)
class OrderAck:
    """Exchange acknowledgement of a submitted order."""

    order_id: str
    order_link_id: str = ""

    @classmethod
    def from_payload(cls, payload: dict) -> "OrderAck":
        return cls(
            order_id=str(_field(payload, "orderId", "order")),
            order_link_id=str(payload.get("orderLinkId") or ""),
        )


def closing_order(position: PositionInfo, order_link_id: str = "") -> OrderRequest:
    """Reduce-only market order that flattens *position* in full."""
    return OrderRequest(
        instrument=position.instrument,
        side=opposite_side(position.side),
        order_type=MARKET,
        qty=position.size,
        reduce_only=True,
        order_link_id=order_link_id,
    )
