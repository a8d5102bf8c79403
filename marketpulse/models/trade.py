"""Trade records — the persisted outputs of the decision and execution stages."""

from dataclasses import dataclass, field
from typing import Optional

PENDING = "PENDING"
EXECUTED = "EXECUTED"


@dataclass(frozen=True)
class TradeSignal:
    """A sized trade decision awaiting (or past) execution.

    Immutable except for ``executed``, which flips once from ``False`` to
    ``True`` through the signal repository and never back.
    """

    instrument: str
    direction: str  # "BUY" or "SELL"
    price: float
    strategy: str  # e.g. "RSI_OVERSOLD", "TREND_FOLLOWING", "MANUAL"
    strength: float  # 0.0-1.0
    position_size_notional: float
    leverage: int
    timestamp: str
    executed: bool = False
    id: Optional[int] = None
    metadata: dict = field(default_factory=dict)

    @property
    def state(self) -> str:
        return EXECUTED if self.executed else PENDING


@dataclass(frozen=True)
class Order:
    """A local record of one order submitted for a ``TradeSignal``."""

    signal_id: int
    instrument: str
    side: str  # "Buy" or "Sell"
    order_type: str  # "Market" or "Limit"
    price: float
    quantity: float
    exchange_order_id: str
    status: str
    timestamp: str
    profit_loss: Optional[float] = None
    closed: bool = False
    id: Optional[int] = None
