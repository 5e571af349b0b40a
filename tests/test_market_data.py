"""Binance client parsing and error mapping over a mocked transport."""

import json

import httpx
import pytest

from dca_monitor.clients.market_data import MarketDataClient
from dca_monitor.core.errors import UnknownInstrument, UpstreamUnavailable

WATCHLIST = ("BTCUSDT", "ETHUSDT", "SOLUSDT")


def _kline(open_time_ms: int, close: float) -> list:
    return [open_time_ms, str(close - 5), str(close + 10), str(close - 10), str(close), "12.5", open_time_ms + 3_599_999]


def _client(handler) -> MarketDataClient:
    http = httpx.Client(transport=httpx.MockTransport(handler), base_url="https://api.binance.test")
    return MarketDataClient(http, watchlist=WATCHLIST, interval="1h", quote_asset="USDT")


def test_list_instruments_keeps_watchlist_order_and_display_fields() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["symbols"] = json.loads(request.url.params["symbols"])
        return httpx.Response(
            200,
            json=[
                {"symbol": "ETHUSDT", "lastPrice": "3450.20", "priceChangePercent": "-1.2"},
                {"symbol": "BTCUSDT", "lastPrice": "65420.50", "priceChangePercent": "2.5"},
                {"symbol": "SOLUSDT", "lastPrice": "not-a-number", "priceChangePercent": "5.8"},
            ],
        )

    instruments = _client(handler).list_instruments()

    assert seen == {"path": "/api/v3/ticker/24hr", "symbols": list(WATCHLIST)}
    assert [instrument.id for instrument in instruments] == ["BTCUSDT", "ETHUSDT"]
    btc = instruments[0]
    assert btc.symbol == "BTC"
    assert btc.name == "Bitcoin"
    assert btc.price == 65420.50
    assert btc.change_24h_pct == 2.5
    assert btc.label == "Bitcoin (BTCUSDT)"


def test_get_recent_bars_returns_oldest_first_within_window() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(request.url.params)
        rows = [_kline(1_700_000_000_000 + idx * 3_600_000, 65000.0 + idx) for idx in range(5)]
        return httpx.Response(200, json=list(reversed(rows)))

    bars = _client(handler).get_recent_bars("btcusdt", 3)

    assert seen == {"symbol": "BTCUSDT", "interval": "1h", "limit": "3"}
    assert len(bars) == 3
    assert [bar.close for bar in bars] == [65002.0, 65003.0, 65004.0]
    assert bars[0].time == "2023-11-15T00:13:20+00:00"
    assert bars[-1].high == 65014.0
    assert bars[-1].volume == 12.5


def test_window_size_must_be_positive() -> None:
    client = _client(lambda request: httpx.Response(200, json=[]))

    with pytest.raises(ValueError):
        client.get_recent_bars("BTCUSDT", 0)


def test_invalid_symbol_maps_to_unknown_instrument() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"code": -1121, "msg": "Invalid symbol."})

    with pytest.raises(UnknownInstrument) as excinfo:
        _client(handler).get_recent_bars("NOPEUSDT")

    assert excinfo.value.instrument_id == "NOPEUSDT"


@pytest.mark.parametrize("status_code", [429, 500, 503])
def test_error_status_maps_to_upstream_unavailable(status_code) -> None:
    client = _client(lambda request: httpx.Response(status_code, json={"code": -1003, "msg": "busy"}))

    with pytest.raises(UpstreamUnavailable):
        client.get_recent_bars("BTCUSDT")
    with pytest.raises(UpstreamUnavailable):
        client.list_instruments()


def test_timeout_maps_to_upstream_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(UpstreamUnavailable):
        _client(handler).get_recent_bars("BTCUSDT")


def test_unparseable_kline_row_is_rejected() -> None:
    client = _client(lambda request: httpx.Response(200, json=[[1_700_000_000_000, "x", "1", "1", "1", "1"]]))

    with pytest.raises(UpstreamUnavailable):
        client.get_recent_bars("BTCUSDT")
