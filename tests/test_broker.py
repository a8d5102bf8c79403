"""Tests for marketpulse.broker — Bybit v5 client with mocked HTTP responses."""

import hashlib
import hmac
import json
from types import SimpleNamespace
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

import marketpulse.broker.bybit_client as bybit_client
from marketpulse.broker.bybit_client import BybitClient, _fmt, category_for, to_interval
from marketpulse.broker.models import (
    InstrumentInfo,
    OrderAck,
    OrderRequest,
    PositionInfo,
    closing_order,
)
from marketpulse.config import Config
from marketpulse.errors import ConfigurationError, ExternalServiceError


def _make_config(testnet: bool = False) -> Config:
    return Config(
        bybit_api_key="test-key",
        bybit_api_secret="test-secret",
        bybit_testnet=testnet,
        symbols=("BTCUSDT",),
        timeframes=("1h",),
    )


def _envelope(result: dict, ret_code: int = 0, msg: str = "OK") -> dict:
    return {"retCode": ret_code, "retMsg": msg, "result": result}


# ── Mock Bybit responses ─────────────────────────────────────────────────

MOCK_KLINE_RESPONSE = _envelope({
    "category": "linear",
    "symbol": "BTCUSDT",
    "list": [
        ["1700003600000", "30100", "30300", "30000", "30250", "12.5", "378125"],
        ["1700000000000", "30000", "30200", "29900", "30100", "10.0", "301000"],
    ],
})

MOCK_TICKER_RESPONSE = _envelope({
    "category": "linear",
    "list": [{"symbol": "BTCUSDT", "lastPrice": "30250.5"}],
})

MOCK_INSTRUMENT_RESPONSE = _envelope({
    "category": "linear",
    "list": [{
        "symbol": "BTCUSDT",
        "lotSizeFilter": {"qtyStep": "0.001", "minOrderQty": "0.001", "maxOrderQty": "100"},
    }],
})

MOCK_POSITION_RESPONSE = _envelope({
    "category": "linear",
    "list": [{
        "symbol": "BTCUSDT",
        "side": "Buy",
        "size": "0.25",
        "avgPrice": "29800",
        "unrealisedPnl": "112.5",
    }],
})

MOCK_ORDER_RESPONSE = _envelope({"orderId": "1321003749386327552", "orderLinkId": ""})


def _patch_get(monkeypatch, payload, captured=None, status=200):
    async def _mock_get(self, url, *, headers=None, timeout=None):
        if captured is not None:
            captured.append({"url": url, "headers": headers})
        return httpx.Response(status, json=payload, request=httpx.Request("GET", url))

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)


def _patch_post(monkeypatch, payload, captured):
    async def _mock_post(self, url, *, headers=None, content=None, timeout=None):
        captured.append({"url": url, "headers": headers, "body": json.loads(content)})
        return httpx.Response(200, json=payload, request=httpx.Request("POST", url))

    monkeypatch.setattr(httpx.AsyncClient, "post", _mock_post)


# ── Helpers ──────────────────────────────────────────────────────────────


class TestHelpers:
    def test_interval_mapping(self):
        assert to_interval("15m") == "15"
        assert to_interval("4h") == "240"
        assert to_interval("1d") == "D"

    def test_unmapped_timeframe(self):
        with pytest.raises(ConfigurationError):
            to_interval("7m")

    @pytest.mark.parametrize(
        "symbol, category",
        [("BTCUSDT", "linear"), ("ETHUSDC", "linear"), ("BTCUSD", "inverse"), ("BTCEUR", "spot")],
    )
    def test_category_for(self, symbol, category):
        assert category_for(symbol) == category

    def test_fmt_strips_trailing_zeros(self):
        assert _fmt(0.5) == "0.5"
        assert _fmt(30000.0) == "30000"
        assert _fmt(0.001) == "0.001"

    def test_environment_switching(self):
        assert BybitClient(_make_config())._base_url == "https://api.bybit.com"
        assert BybitClient(_make_config(True))._base_url == "https://api-testnet.bybit.com"

    def test_closing_order_for_long(self):
        order = closing_order(PositionInfo("BTCUSDT", "Buy", 10.0))
        assert (order.side, order.qty, order.order_type, order.reduce_only) == ("Sell", 10.0, "Market", True)


# ── Market data ──────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_candles_sorted_oldest_first(monkeypatch):
    client = BybitClient(_make_config())
    captured = []
    _patch_get(monkeypatch, MOCK_KLINE_RESPONSE, captured)

    candles = await client.get_candles("BTCUSDT", "1h", limit=2)

    assert [c.timestamp for c in candles] == [1_700_000_000_000, 1_700_003_600_000]
    c = candles[0]
    assert c.open == pytest.approx(30000.0)
    assert c.high == pytest.approx(30200.0)
    assert c.low == pytest.approx(29900.0)
    assert c.close == pytest.approx(30100.0)
    assert c.volume == pytest.approx(10.0)

    query = parse_qs(urlparse(captured[0]["url"]).query)
    assert query == {"category": ["linear"], "symbol": ["BTCUSDT"], "interval": ["60"], "limit": ["2"]}


@pytest.mark.asyncio
async def test_request_signature(monkeypatch):
    """X-BAPI-SIGN is HMAC-SHA256 over timestamp + key + recv window + query."""
    client = BybitClient(_make_config())
    captured = []
    _patch_get(monkeypatch, MOCK_TICKER_RESPONSE, captured)

    await client.get_ticker("BTCUSDT")

    headers = captured[0]["headers"]
    query = urlparse(captured[0]["url"]).query
    message = f"{headers['X-BAPI-TIMESTAMP']}test-key5000{query}"
    expected = hmac.new(b"test-secret", message.encode("utf-8"), hashlib.sha256).hexdigest()
    assert headers["X-BAPI-API-KEY"] == "test-key"
    assert headers["X-BAPI-RECV-WINDOW"] == "5000"
    assert headers["X-BAPI-SIGN"] == expected


@pytest.mark.asyncio
async def test_current_price(monkeypatch):
    client = BybitClient(_make_config())
    _patch_get(monkeypatch, MOCK_TICKER_RESPONSE)
    assert await client.get_current_price("BTCUSDT") == pytest.approx(30250.5)


@pytest.mark.asyncio
async def test_nonzero_ret_code_raises(monkeypatch):
    client = BybitClient(_make_config())
    _patch_get(monkeypatch, _envelope({}, ret_code=10001, msg="params error"))

    with pytest.raises(ExternalServiceError, match="10001"):
        await client.get_candles("BTCUSDT", "1h")


@pytest.mark.asyncio
async def test_malformed_kline_row_raises(monkeypatch):
    client = BybitClient(_make_config())
    _patch_get(monkeypatch, _envelope({"list": [["1700000000000", "abc"]]}))

    with pytest.raises(ExternalServiceError):
        await client.get_candles("BTCUSDT", "1h")


@pytest.mark.asyncio
async def test_instrument_info_precision(monkeypatch):
    client = BybitClient(_make_config())
    _patch_get(monkeypatch, MOCK_INSTRUMENT_RESPONSE)

    info = await client.get_instrument_info("BTCUSDT")

    assert isinstance(info, InstrumentInfo)
    assert info.category == "linear"
    assert info.qty_step == pytest.approx(0.001)
    assert info.min_order_qty == pytest.approx(0.001)
    assert info.qty_precision == 3


# ── Retry ────────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_retries_transient_status(monkeypatch):
    client = BybitClient(_make_config())
    delays = []
    statuses = iter([503, 200])

    async def _no_sleep(seconds):
        delays.append(seconds)

    async def _mock_get(self, url, *, headers=None, timeout=None):
        status = next(statuses)
        payload = MOCK_TICKER_RESPONSE if status == 200 else {}
        return httpx.Response(status, json=payload, request=httpx.Request("GET", url))

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)
    monkeypatch.setattr("marketpulse.broker.bybit_client.asyncio.sleep", _no_sleep)

    assert await client.get_current_price("BTCUSDT") == pytest.approx(30250.5)
    assert delays == [2.0]


@pytest.mark.asyncio
async def test_retries_exhausted(monkeypatch):
    client = BybitClient(_make_config())
    delays = []

    async def _no_sleep(seconds):
        delays.append(seconds)

    async def _mock_get(self, url, *, headers=None, timeout=None):
        raise httpx.ConnectError("connection refused")

    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)
    monkeypatch.setattr("marketpulse.broker.bybit_client.asyncio.sleep", _no_sleep)

    with pytest.raises(ExternalServiceError, match="after 3 attempts"):
        await client.get_current_price("BTCUSDT")
    assert delays == [2.0, 4.0, 8.0]


@pytest.mark.asyncio
async def test_client_error_not_retried(monkeypatch):
    client = BybitClient(_make_config())
    captured = []
    _patch_get(monkeypatch, {}, captured, status=401)

    with pytest.raises(ExternalServiceError):
        await client.get_current_price("BTCUSDT")
    assert len(captured) == 1


# ── Positions ────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_open_position(monkeypatch):
    client = BybitClient(_make_config())
    _patch_get(monkeypatch, MOCK_POSITION_RESPONSE)

    pos = await client.get_position("BTCUSDT")

    assert isinstance(pos, PositionInfo)
    assert pos.side == "Buy"
    assert pos.size == pytest.approx(0.25)
    assert pos.avg_price == pytest.approx(29800.0)
    assert pos.unrealised_pnl == pytest.approx(112.5)


@pytest.mark.asyncio
async def test_flat_position_is_none(monkeypatch):
    client = BybitClient(_make_config())
    _patch_get(monkeypatch, _envelope({"list": [{"symbol": "BTCUSDT", "side": "", "size": "0"}]}))
    assert await client.get_position("BTCUSDT") is None


@pytest.mark.asyncio
async def test_spot_has_no_position(monkeypatch):
    client = BybitClient(_make_config())
    captured = []
    _patch_get(monkeypatch, MOCK_POSITION_RESPONSE, captured)

    assert await client.get_position("BTCEUR") is None
    assert captured == []


@pytest.mark.asyncio
async def test_set_leverage_payload(monkeypatch):
    client = BybitClient(_make_config())
    captured = []
    _patch_post(monkeypatch, _envelope({}), captured)

    await client.set_leverage("BTCUSDT", 5)

    assert captured[0]["url"].endswith("/v5/position/set-leverage")
    assert captured[0]["body"] == {
        "category": "linear", "symbol": "BTCUSDT", "buyLeverage": "5", "sellLeverage": "5",
    }


# ── Orders ───────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_market_order_payload(monkeypatch):
    client = BybitClient(_make_config())
    captured = []
    _patch_post(monkeypatch, MOCK_ORDER_RESPONSE, captured)

    ack = await client.submit_order(OrderRequest(
        instrument="BTCUSDT", side="Buy", order_type="Market", qty=0.5,
        take_profit=31000.0, stop_loss=29550.5,
    ))

    assert isinstance(ack, OrderAck)
    assert ack.order_id == "1321003749386327552"
    assert captured[0]["url"] == "https://api.bybit.com/v5/order/create"
    assert captured[0]["body"] == {
        "category": "linear",
        "symbol": "BTCUSDT",
        "side": "Buy",
        "orderType": "Market",
        "qty": "0.5",
        "takeProfit": "31000",
        "stopLoss": "29550.5",
    }


@pytest.mark.asyncio
async def test_post_signature_covers_body(monkeypatch):
    client = BybitClient(_make_config())
    captured = []
    _patch_post(monkeypatch, MOCK_ORDER_RESPONSE, captured)

    await client.submit_order(OrderRequest("BTCUSDT", "Sell", "Market", 1.0))

    headers = captured[0]["headers"]
    body = json.dumps(captured[0]["body"])
    message = f"{headers['X-BAPI-TIMESTAMP']}test-key5000{body}"
    expected = hmac.new(b"test-secret", message.encode("utf-8"), hashlib.sha256).hexdigest()
    assert headers["X-BAPI-SIGN"] == expected


@pytest.mark.asyncio
async def test_limit_order_payload(monkeypatch):
    client = BybitClient(_make_config())
    captured = []
    _patch_post(monkeypatch, MOCK_ORDER_RESPONSE, captured)

    await client.submit_order(OrderRequest("BTCUSDT", "Buy", "Limit", 0.01, price=29970.0))

    body = captured[0]["body"]
    assert body["orderType"] == "Limit"
    assert body["price"] == "29970"
    assert body["timeInForce"] == "GTC"


@pytest.mark.asyncio
async def test_limit_order_requires_price():
    client = BybitClient(_make_config())
    with pytest.raises(ValueError):
        await client.submit_order(OrderRequest("BTCUSDT", "Buy", "Limit", 0.01))


@pytest.mark.asyncio
async def test_reduce_only_close(monkeypatch):
    client = BybitClient(_make_config())
    captured = []
    _patch_post(monkeypatch, MOCK_ORDER_RESPONSE, captured)

    await client.submit_order(closing_order(PositionInfo("BTCUSDT", "Sell", 0.25)))

    body = captured[0]["body"]
    assert body["side"] == "Buy"
    assert body["qty"] == "0.25"
    assert body["reduceOnly"] is True
    assert body["closeOnTrigger"] is True


@pytest.mark.asyncio
async def test_rejected_order_raises(monkeypatch):
    client = BybitClient(_make_config())
    captured = []
    _patch_post(monkeypatch, _envelope({}, ret_code=110007, msg="insufficient balance"), captured)

    with pytest.raises(ExternalServiceError, match="insufficient balance"):
        await client.submit_order(OrderRequest("BTCUSDT", "Buy", "Market", 0.5))


@pytest.mark.asyncio
async def test_retry_signed_afresh(monkeypatch):
    """Each attempt carries a timestamp inside the recv window."""
    client = BybitClient(_make_config())
    clock = [1_700_000_000.0]
    statuses = iter([503, 503, 200])
    sent = []

    async def _advance(seconds):
        clock[0] += seconds

    async def _mock_get(self, url, *, headers=None, timeout=None):
        sent.append((clock[0], headers))
        status = next(statuses)
        payload = MOCK_TICKER_RESPONSE if status == 200 else {}
        return httpx.Response(status, json=payload, request=httpx.Request("GET", url))

    monkeypatch.setattr(bybit_client, "time", SimpleNamespace(time=lambda: clock[0]))
    monkeypatch.setattr("marketpulse.broker.bybit_client.asyncio.sleep", _advance)
    monkeypatch.setattr(httpx.AsyncClient, "get", _mock_get)

    await client.get_current_price("BTCUSDT")

    assert len(sent) == 3
    for sent_at, headers in sent:
        signed_at = int(headers["X-BAPI-TIMESTAMP"])
        assert int(sent_at * 1000) - signed_at < 5000
    assert sent[0][1]["X-BAPI-SIGN"] != sent[2][1]["X-BAPI-SIGN"]


@pytest.mark.asyncio
async def test_order_retry_reuses_link_id(monkeypatch):
    client = BybitClient(_make_config())
    bodies = []

    async def _no_sleep(seconds):
        pass

    async def _mock_post(self, url, *, headers=None, content=None, timeout=None):
        bodies.append(json.loads(content))
        if len(bodies) == 1:
            raise httpx.ReadTimeout("read timed out")
        return httpx.Response(200, json=MOCK_ORDER_RESPONSE, request=httpx.Request("POST", url))

    monkeypatch.setattr(httpx.AsyncClient, "post", _mock_post)
    monkeypatch.setattr("marketpulse.broker.bybit_client.asyncio.sleep", _no_sleep)

    await client.submit_order(OrderRequest("BTCUSDT", "Buy", "Market", 0.5, order_link_id="mp-7"))

    assert len(bodies) == 2
    assert [b["orderLinkId"] for b in bodies] == ["mp-7", "mp-7"]


@pytest.mark.asyncio
async def test_duplicate_link_id_returns_existing_order(monkeypatch):
    client = BybitClient(_make_config())
    posted = []
    looked_up = []
    _patch_post(monkeypatch, _envelope({}, ret_code=110072, msg="OrderLinkedID is duplicate"), posted)
    _patch_get(monkeypatch, _envelope({"list": [{"orderId": "abc-1", "orderLinkId": "mp-7"}]}), looked_up)

    ack = await client.submit_order(OrderRequest("BTCUSDT", "Buy", "Market", 0.5, order_link_id="mp-7"))

    assert ack == OrderAck(order_id="abc-1", order_link_id="mp-7")
    assert len(posted) == 1
    query = parse_qs(urlparse(looked_up[0]["url"]).query)
    assert query["orderLinkId"] == ["mp-7"]
    assert urlparse(looked_up[0]["url"]).path == "/v5/order/realtime"


@pytest.mark.asyncio
async def test_duplicate_without_link_id_raises(monkeypatch):
    client = BybitClient(_make_config())
    _patch_post(monkeypatch, _envelope({}, ret_code=110072, msg="duplicate"), [])

    with pytest.raises(ExternalServiceError) as excinfo:
        await client.submit_order(OrderRequest("BTCUSDT", "Buy", "Market", 0.5))
    assert excinfo.value.ret_code == 110072
