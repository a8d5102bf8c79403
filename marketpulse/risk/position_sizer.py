"""Position sizing — pure math, no I/O.

Maps an analysis confidence score to a USD notional and a leverage using
a five-bucket step table.  Account size and risk percentage are mutable
at runtime; each call reads the values current at call time.
"""

import math

# (minimum confidence, fraction) — first match wins, top to bottom
CONFIDENCE_BUCKETS: tuple[tuple[float, float], ...] = (
    (90.0, 1.0),
    (80.0, 0.8),
    (70.0, 0.6),
    (60.0, 0.4),
)
FLOOR_FRACTION = 0.2
MAX_ACCOUNT_FRACTION = 0.10


def confidence_fraction(confidence_score: float) -> float:
    """Return the bucket fraction for *confidence_score*."""
    for threshold, fraction in CONFIDENCE_BUCKETS:
        if confidence_score >= threshold:
            return fraction
    return FLOOR_FRACTION


class PositionSizer:
    """Risk-based position size and leverage from a confidence score.

    Args:
        account_size: Account equity in USD (e.g. 1_000.0).
        max_risk_per_trade_pct: Percentage of equity at risk per trade
            (e.g. 2.0 for 2 %).
        default_position_notional: Floor for every computed notional.
        max_leverage: Upper bound for leverage.
    """

    def __init__(
        self,
        account_size: float = 1000.0,
        max_risk_per_trade_pct: float = 2.0,
        default_position_notional: float = 50.0,
        max_leverage: int = 5,
    ) -> None:
        if max_leverage < 1:
            raise ValueError(f"max_leverage must be >= 1, got {max_leverage}")
        self._account_size = account_size
        self._max_risk_per_trade_pct = max_risk_per_trade_pct
        self._default_position_notional = default_position_notional
        self._max_leverage = max_leverage

    # ── Policy ───────────────────────────────────────────────────────────

    @property
    def account_size(self) -> float:
        return self._account_size

    @property
    def max_risk_per_trade_pct(self) -> float:
        return self._max_risk_per_trade_pct

    @property
    def default_position_notional(self) -> float:
        return self._default_position_notional

    @property
    def max_leverage(self) -> int:
        return self._max_leverage

    def set_account_size(self, account_size: float) -> None:
        if not math.isfinite(account_size) or account_size <= 0:
            raise ValueError(f"account_size must be a positive number, got {account_size}")
        self._account_size = account_size

    def set_max_risk_per_trade(self, risk_pct: float) -> None:
        if not math.isfinite(risk_pct) or risk_pct <= 0:
            raise ValueError(f"risk_pct must be a positive number, got {risk_pct}")
        self._max_risk_per_trade_pct = risk_pct

    # ── Sizing ───────────────────────────────────────────────────────────

    def leverage(self, confidence_score: float) -> int:
        """Leverage for *confidence_score*, floored and clamped to [1, max_leverage]."""
        raw = math.floor(self._max_leverage * confidence_fraction(confidence_score))
        return max(1, min(int(raw), self._max_leverage))

    def position_size(self, confidence_score: float) -> float:
        """USD notional for *confidence_score*.

        Formula::

            risk_amount = account_size × (max_risk_per_trade_pct / 100)
            notional    = risk_amount × bucket_fraction
            result      = max(default_notional, min(notional, account_size × 0.10))
        """
        risk_amount = self._account_size * (self._max_risk_per_trade_pct / 100.0)
        notional = risk_amount * confidence_fraction(confidence_score)
        cap = self._account_size * MAX_ACCOUNT_FRACTION
        return max(self._default_position_notional, min(notional, cap))

    def snapshot(self) -> dict:
        return {
            "account_size": self._account_size,
            "max_risk_per_trade_pct": self._max_risk_per_trade_pct,
            "default_position_notional": self._default_position_notional,
            "max_leverage": self._max_leverage,
        }
