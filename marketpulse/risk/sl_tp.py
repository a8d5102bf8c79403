"""Stop-loss and take-profit calculation — pure math, no I/O.

Percentage-based exits around the entry price:
    long  → TP above entry, SL below entry
    short → TP below entry, SL above entry
"""

from dataclasses import dataclass

from marketpulse.broker.models import BUY_SIDE, SELL_SIDE


@dataclass(frozen=True)
class RiskLevels:
    """Computed stop-loss and take-profit for an order."""

    take_profit: float
    stop_loss: float


def calculate_tp(entry_price: float, side: str, pct: float) -> float:
    """Take-profit *pct* percent away from entry in the profit direction."""
    _check_side(side)
    if side == BUY_SIDE:
        return entry_price * (1 + pct / 100.0)
    return entry_price * (1 - pct / 100.0)


def calculate_sl(entry_price: float, side: str, pct: float) -> float:
    """Stop-loss *pct* percent away from entry in the loss direction."""
    _check_side(side)
    if side == BUY_SIDE:
        return entry_price * (1 - pct / 100.0)
    return entry_price * (1 + pct / 100.0)


def calculate_risk_levels(
    entry_price: float,
    side: str,
    take_profit_pct: float,
    stop_loss_pct: float,
) -> RiskLevels:
    if entry_price <= 0:
        raise ValueError(f"entry_price must be positive, got {entry_price}")
    return RiskLevels(
        take_profit=calculate_tp(entry_price, side, take_profit_pct),
        stop_loss=calculate_sl(entry_price, side, stop_loss_pct),
    )


def _check_side(side: str) -> None:
    if side not in (BUY_SIDE, SELL_SIDE):
        raise ValueError(f"side must be '{BUY_SIDE}' or '{SELL_SIDE}', got {side!r}")
