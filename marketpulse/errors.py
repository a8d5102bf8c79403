"""MarketPulse exception hierarchy.

Every error raised by the pipeline derives from :class:`MarketPulseError`
so the scheduler loops can tell pipeline failures from programming bugs.
"""

from __future__ import annotations


class MarketPulseError(Exception):
    """Base exception for all MarketPulse errors."""


class InsufficientDataError(MarketPulseError, ValueError):
    """Candle window shorter than an indicator's or the analyzer's minimum."""

    def __init__(self, what: str, needed: int, got: int) -> None:
        super().__init__(f"Need at least {needed} candles for {what}, got {got}")
        self.what = what
        self.needed = needed
        self.got = got


class ExternalServiceError(MarketPulseError):
    """Exchange or notification call failed (transport, HTTP, or retCode).

    ``ret_code`` carries the exchange's non-zero retCode when there is one.
    """

    def __init__(self, message: str, ret_code: int | None = None) -> None:
        super().__init__(message)
        self.ret_code = ret_code


class PersistenceError(MarketPulseError):
    """The signal/order store is unavailable or rejected a write."""


class ConfigurationError(MarketPulseError, ValueError):
    """Invalid or missing configuration (e.g. an unmapped timeframe)."""
