"""Notification channels for market alerts."""

import logging
from datetime import datetime, timezone

import httpx

from marketpulse.errors import ExternalServiceError
from marketpulse.strategy.models import BUY, SELL, WATCH, MarketSignal

logger = logging.getLogger("marketpulse.alerts")

_ACTION_MARKERS = {BUY: "🟢", SELL: "🔴", WATCH: "👀"}


def format_alert(signal: MarketSignal) -> str:
    """Render *signal* as a Markdown alert body."""
    marker = _ACTION_MARKERS.get(signal.action, "⚠️")
    when = datetime.fromtimestamp(signal.timestamp / 1000, tz=timezone.utc).isoformat()
    return (
        f"{marker} *{signal.instrument}* - {signal.timeframe}\n"
        f"Signal: *{signal.signal_type}* ({signal.indicator})\n"
        f"Message: {signal.message}\n"
        f"Action: *{signal.action}*\n"
        f"Price: ${signal.price:.2f}\n"
        f"Strength: {signal.strength}/10\n"
        f"Time: {when}"
    )


class LogNotifier:
    """Writes alerts to the application log."""

    async def send(self, text: str) -> None:
        logger.info("ALERT\n%s", text)


class TelegramNotifier:
    """Posts alerts to a Telegram chat through the Bot API."""

    def __init__(self, bot_token: str, chat_id: str, timeout: float = 10.0) -> None:
        self._url = f"https://api.telegram.org/bot{bot_token}/sendMessage"
        self._chat_id = chat_id
        self._timeout = timeout

    async def send(self, text: str) -> None:
        body = {"chat_id": self._chat_id, "text": text, "parse_mode": "Markdown"}
        try:
            async with httpx.AsyncClient() as client:
                resp = await client.post(self._url, json=body, timeout=self._timeout)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise ExternalServiceError(f"Telegram send failed: {exc}") from exc


def build_notifiers(telegram_bot_token: str = "", telegram_chat_id: str = "") -> list:
    """Log channel always; Telegram when both credentials are present."""
    notifiers: list = [LogNotifier()]
    if telegram_bot_token and telegram_chat_id:
        notifiers.append(TelegramNotifier(telegram_bot_token, telegram_chat_id))
    return notifiers
