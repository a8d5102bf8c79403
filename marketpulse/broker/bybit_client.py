"""Bybit v5 REST API async client.

Handles all communication with Bybit: candle fetching, tickers, instrument
lot-size rules, position queries, leverage, and order placement.
"""

import asyncio
import hashlib
import hmac
import json
import logging
import time
from typing import Optional
from urllib.parse import urlencode

import httpx

from marketpulse.broker.models import (
    LIMIT,
    InstrumentInfo,
    OrderAck,
    OrderRequest,
    PositionInfo,
    Ticker,
)
from marketpulse.config import Config
from marketpulse.errors import ConfigurationError, ExternalServiceError
from marketpulse.strategy.models import CandleData

logger = logging.getLogger("marketpulse.broker")

# Retry settings
_MAX_RETRIES = 3
_RETRY_BASE_DELAY = 2.0  # seconds; doubles each attempt
_RETRYABLE_STATUS_CODES = {502, 503, 504, 429}

_RECV_WINDOW = "5000"

# retCode for an orderLinkId the exchange has already accepted
_DUPLICATE_ORDER_LINK_ID = 110072

TIMEFRAME_MAP = {
    "1m": "1",
    "3m": "3",
    "5m": "5",
    "15m": "15",
    "30m": "30",
    "1h": "60",
    "2h": "120",
    "4h": "240",
    "6h": "360",
    "12h": "720",
    "1d": "D",
    "1w": "W",
    "1M": "M",
}


def to_interval(timeframe: str) -> str:
    """Translate a timeframe label (``"15m"``, ``"4h"``) to a kline interval."""
    try:
        return TIMEFRAME_MAP[timeframe]
    except KeyError:
        raise ConfigurationError(f"Unsupported timeframe: {timeframe!r}") from None


def category_for(symbol: str) -> str:
    """Product category implied by the symbol's quote currency."""
    if symbol.endswith("USDT") or symbol.endswith("USDC"):
        return "linear"
    if symbol.endswith("USD"):
        return "inverse"
    return "spot"


def _fmt(value: float) -> str:
    """Decimal string without exponent or trailing zeros, as Bybit expects."""
    text = f"{value:.10f}".rstrip("0").rstrip(".")
    return text or "0"


class BybitClient:
    """Async client wrapping the Bybit v5 REST API."""

    def __init__(self, config: Config) -> None:
        self._config = config
        self._base_url = config.bybit_base_url
        self._api_key = config.bybit_api_key
        self._api_secret = config.bybit_api_secret

    # ── Signing ──────────────────────────────────────────────────────────

    def _sign(self, timestamp: str, payload: str) -> str:
        message = f"{timestamp}{self._api_key}{_RECV_WINDOW}{payload}"
        return hmac.new(
            self._api_secret.encode("utf-8"),
            message.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def _headers(self, payload: str) -> dict:
        timestamp = str(int(time.time() * 1000))
        return {
            "X-BAPI-API-KEY": self._api_key,
            "X-BAPI-TIMESTAMP": timestamp,
            "X-BAPI-RECV-WINDOW": _RECV_WINDOW,
            "X-BAPI-SIGN": self._sign(timestamp, payload),
            "Content-Type": "application/json",
        }

    # ── Retry helper ─────────────────────────────────────────────────────

    async def _request_with_retry(
        self,
        method: str,
        url: str,
        payload: str,
        **kwargs,
    ) -> httpx.Response:
        """Execute a signed HTTP request with exponential-backoff retry.

        Retries on transient server errors (502, 503, 504) and rate-limits
        (429).  Non-retryable errors are raised immediately.  Each attempt
        is signed afresh so a retry stays inside the recv window.
        """
        last_exc: Optional[Exception] = None

        for attempt in range(_MAX_RETRIES):
            try:
                async with httpx.AsyncClient() as client:
                    resp = await getattr(client, method)(
                        url,
                        headers=self._headers(payload),
                        timeout=30.0,
                        **kwargs,
                    )

                if resp.status_code in _RETRYABLE_STATUS_CODES:
                    delay = _RETRY_BASE_DELAY * (2 ** attempt)
                    logger.warning(
                        "Bybit %s %s returned %d — retry %d/%d in %.1fs",
                        method.upper(), url, resp.status_code,
                        attempt + 1, _MAX_RETRIES, delay,
                    )
                    last_exc = httpx.HTTPStatusError(
                        f"Server error '{resp.status_code}'",
                        request=resp.request,
                        response=resp,
                    )
                    await asyncio.sleep(delay)
                    continue

                resp.raise_for_status()
                return resp

            except httpx.HTTPStatusError as exc:
                raise ExternalServiceError(
                    f"Bybit {method.upper()} {url} failed: {exc}"
                ) from exc
            except httpx.TransportError as exc:
                delay = _RETRY_BASE_DELAY * (2 ** attempt)
                logger.warning(
                    "Bybit %s %s transport error (%s) — retry %d/%d in %.1fs",
                    method.upper(), url, exc,
                    attempt + 1, _MAX_RETRIES, delay,
                )
                last_exc = exc
                await asyncio.sleep(delay)

        raise ExternalServiceError(
            f"Bybit {method.upper()} {url} failed after {_MAX_RETRIES} attempts: {last_exc}"
        ) from last_exc

    async def _call(self, method: str, path: str, params: dict) -> dict:
        """Signed request returning the ``result`` object of a v5 envelope."""
        if method == "get":
            query = urlencode(params)
            url = f"{self._base_url}{path}?{query}" if query else f"{self._base_url}{path}"
            resp = await self._request_with_retry("get", url, query)
        else:
            body = json.dumps(params)
            url = f"{self._base_url}{path}"
            resp = await self._request_with_retry(
                "post", url, body, content=body,
            )

        try:
            data = resp.json()
        except ValueError as exc:
            raise ExternalServiceError(f"Bybit {path} returned non-JSON body") from exc

        ret_code = data.get("retCode")
        if ret_code != 0:
            raise ExternalServiceError(
                f"Bybit {path} error {ret_code}: {data.get('retMsg', 'unknown error')}",
                ret_code=ret_code,
            )
        return data.get("result") or {}

    # ── Market data ──────────────────────────────────────────────────────

    async def get_candles(
        self,
        symbol: str,
        timeframe: str,
        limit: int = 100,
    ) -> list[CandleData]:
        """Fetch kline data from Bybit.

        Args:
            symbol: e.g. ``"BTCUSDT"``
            timeframe: e.g. ``"15m"``, ``"4h"``, ``"1d"``
            limit: number of candles to request (max 1000)

        Returns:
            List of ``CandleData`` objects ordered oldest-first.
        """
        params = {
            "category": category_for(symbol),
            "symbol": symbol,
            "interval": to_interval(timeframe),
            "limit": limit,
        }
        result = await self._call("get", "/v5/market/kline", params)

        candles: list[CandleData] = []
        for row in result.get("list", []):
            try:
                candles.append(
                    CandleData(
                        timestamp=int(row[0]),
                        open=float(row[1]),
                        high=float(row[2]),
                        low=float(row[3]),
                        close=float(row[4]),
                        volume=float(row[5]),
                    )
                )
            except (IndexError, TypeError, ValueError):
                raise ExternalServiceError(
                    f"Malformed kline row for {symbol} {timeframe}: {row!r}"
                ) from None
        # Bybit returns newest-first
        candles.sort(key=lambda c: c.timestamp)
        return candles

    async def get_ticker(self, symbol: str) -> Ticker:
        params = {"category": category_for(symbol), "symbol": symbol}
        result = await self._call("get", "/v5/market/tickers", params)
        rows = result.get("list") or []
        if not rows:
            raise ExternalServiceError(f"No ticker returned for {symbol}")
        return Ticker.from_payload(symbol, rows[0])

    async def get_current_price(self, symbol: str) -> float:
        return (await self.get_ticker(symbol)).last_price

    async def get_instrument_info(self, symbol: str) -> InstrumentInfo:
        """Lot-size rules (qty step, minimum qty) for *symbol*."""
        category = category_for(symbol)
        result = await self._call(
            "get", "/v5/market/instruments-info", {"category": category, "symbol": symbol},
        )
        rows = result.get("list") or []
        if not rows:
            raise ExternalServiceError(f"No instrument info returned for {symbol}")
        return InstrumentInfo.from_payload(symbol, category, rows[0])

    # ── Positions ────────────────────────────────────────────────────────

    async def get_position(self, symbol: str) -> Optional[PositionInfo]:
        """Net open position for *symbol*, or ``None`` when flat.

        Spot symbols never hold a position.
        """
        category = category_for(symbol)
        if category == "spot":
            return None
        result = await self._call(
            "get", "/v5/position/list", {"category": category, "symbol": symbol},
        )
        for row in result.get("list") or []:
            position = PositionInfo.from_payload(symbol, row)
            if position.is_open:
                return position
        return None

    async def set_leverage(self, symbol: str, leverage: int) -> None:
        """Apply *leverage* to both sides of *symbol*."""
        body = {
            "category": category_for(symbol),
            "symbol": symbol,
            "buyLeverage": str(leverage),
            "sellLeverage": str(leverage),
        }
        await self._call("post", "/v5/position/set-leverage", body)

    # ── Orders ───────────────────────────────────────────────────────────

    async def submit_order(self, order: OrderRequest) -> OrderAck:
        """Place a market or limit order, with TP/SL when given.

        Raises:
            ExternalServiceError: on transport failure or a non-zero retCode.
        """
        body = {
            "category": category_for(order.instrument),
            "symbol": order.instrument,
            "side": order.side,
            "orderType": order.order_type,
            "qty": _fmt(order.qty),
        }
        if order.order_type == LIMIT:
            if order.price is None:
                raise ValueError("Limit orders require a price")
            body["price"] = _fmt(order.price)
            body["timeInForce"] = "GTC"
        if order.take_profit is not None:
            body["takeProfit"] = _fmt(order.take_profit)
        if order.stop_loss is not None:
            body["stopLoss"] = _fmt(order.stop_loss)
        if order.reduce_only:
            body["reduceOnly"] = True
            body["closeOnTrigger"] = True
        if order.order_link_id:
            body["orderLinkId"] = order.order_link_id

        try:
            result = await self._call("post", "/v5/order/create", body)
        except ExternalServiceError as exc:
            if exc.ret_code != _DUPLICATE_ORDER_LINK_ID or not order.order_link_id:
                raise
            # a retried or re-swept submission the exchange already holds
            logger.warning(
                "Order %s already accepted by Bybit — reusing it", order.order_link_id,
            )
            return await self.get_order_by_link_id(order.instrument, order.order_link_id)
        ack = OrderAck.from_payload(result)
        logger.info(
            "Order %s placed: %s %s %s qty=%s",
            ack.order_id, order.order_type, order.side, order.instrument, _fmt(order.qty),
        )
        return ack

    async def get_order_by_link_id(self, symbol: str, order_link_id: str) -> OrderAck:
        """Look up an order by its client-side ``orderLinkId``."""
        params = {
            "category": category_for(symbol),
            "symbol": symbol,
            "orderLinkId": order_link_id,
        }
        result = await self._call("get", "/v5/order/realtime", params)
        rows = result.get("list") or []
        if not rows:
            raise ExternalServiceError(f"No order found for link id {order_link_id}")
        return OrderAck.from_payload(rows[0])
