"""Binance spot REST client for watchlist tickers and recent kline windows."""

import json
import logging
import math
from typing import Any

import httpx

from dca_monitor.core.errors import UnknownInstrument, UpstreamUnavailable
from dca_monitor.core.time_utils import ms_to_iso
from dca_monitor.core.types import Instrument, PriceBar

_KLINES_PATH = "/api/v3/klines"
_TICKER_PATH = "/api/v3/ticker/24hr"
_BINANCE_INVALID_SYMBOL = -1121
_BINANCE_MAX_LIMIT = 1000
DEFAULT_WINDOW_SIZE = 100

_DISPLAY_NAMES = {
    "BTC": "Bitcoin",
    "ETH": "Ethereum",
    "SOL": "Solana",
    "BNB": "BNB",
    "ADA": "Cardano",
    "XRP": "XRP",
    "DOGE": "Dogecoin",
}

logger = logging.getLogger(__name__)


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        numeric_value = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(numeric_value):
        return None
    return numeric_value


class MarketDataClient:
    """Stateless request/response access to a fixed watchlist."""

    def __init__(
        self,
        client: httpx.Client,
        watchlist: tuple[str, ...],
        interval: str = "1h",
        quote_asset: str = "USDT",
    ) -> None:
        self._client = client
        self.watchlist = tuple(symbol.upper() for symbol in watchlist)
        self.interval = interval
        self.quote_asset = quote_asset.upper()

    def display_symbol(self, instrument_id: str) -> str:
        instrument_id = instrument_id.upper()
        if self.quote_asset and instrument_id.endswith(self.quote_asset) and instrument_id != self.quote_asset:
            return instrument_id[: -len(self.quote_asset)]
        return instrument_id

    def display_name(self, instrument_id: str) -> str:
        symbol = self.display_symbol(instrument_id)
        return _DISPLAY_NAMES.get(symbol, instrument_id.upper())

    def list_instruments(self) -> tuple[Instrument, ...]:
        """Return the watchlist with fresh price and 24h change, in watchlist order."""

        if not self.watchlist:
            return ()

        symbols_param = json.dumps(list(self.watchlist), separators=(",", ":"))
        payload = self._get_json(_TICKER_PATH, params={"symbols": symbols_param})
        if not isinstance(payload, list):
            raise UpstreamUnavailable("ticker response is not a list")

        by_symbol: dict[str, Instrument] = {}
        for row in payload:
            if not isinstance(row, dict):
                continue
            instrument_id = str(row.get("symbol", "")).upper()
            price = _as_float(row.get("lastPrice"))
            change = _as_float(row.get("priceChangePercent"))
            if not instrument_id or price is None or change is None:
                logger.warning("market_data_ticker_row_skipped", extra={"symbol": instrument_id or None})
                continue
            by_symbol[instrument_id] = Instrument(
                id=instrument_id,
                symbol=self.display_symbol(instrument_id),
                name=self.display_name(instrument_id),
                price=price,
                change_24h_pct=change,
            )

        return tuple(by_symbol[symbol] for symbol in self.watchlist if symbol in by_symbol)

    def get_recent_bars(self, instrument_id: str, window_size: int = DEFAULT_WINDOW_SIZE) -> tuple[PriceBar, ...]:
        """Return at most `window_size` bars for the instrument, oldest first."""

        if window_size <= 0:
            raise ValueError("window_size must be a positive integer")

        instrument_id = instrument_id.upper()
        payload = self._get_json(
            _KLINES_PATH,
            params={
                "symbol": instrument_id,
                "interval": self.interval,
                "limit": min(window_size, _BINANCE_MAX_LIMIT),
            },
            instrument_id=instrument_id,
        )
        if not isinstance(payload, list):
            raise UpstreamUnavailable("klines response is not a list")

        bars = [self._parse_kline(row) for row in payload]
        bars.sort(key=lambda bar: bar[0])
        return tuple(bar for _, bar in bars[-window_size:])

    @staticmethod
    def _parse_kline(row: Any) -> tuple[int, PriceBar]:
        if not isinstance(row, list) or len(row) < 6:
            raise UpstreamUnavailable("kline row has unexpected shape")

        try:
            open_time_ms = int(row[0])
        except (TypeError, ValueError) as exc:
            raise UpstreamUnavailable("kline row has invalid open time") from exc

        o, h, l, c = (_as_float(value) for value in row[1:5])
        if o is None or h is None or l is None or c is None:
            raise UpstreamUnavailable("kline row has invalid prices")

        return open_time_ms, PriceBar(
            time=ms_to_iso(open_time_ms),
            open=o,
            high=h,
            low=l,
            close=c,
            volume=_as_float(row[5]),
        )

    def _get_json(self, path: str, params: dict[str, Any], instrument_id: str | None = None) -> Any:
        try:
            response = self._client.get(path, params=params)
        except httpx.HTTPError as exc:
            logger.warning("market_data_request_failed", extra={"path": path, "error": str(exc)})
            raise UpstreamUnavailable(f"market data request failed: {exc}") from exc

        if response.status_code == 400 and instrument_id is not None:
            if self._error_code(response) == _BINANCE_INVALID_SYMBOL:
                raise UnknownInstrument(instrument_id)

        if not response.is_success:
            logger.warning(
                "market_data_bad_status",
                extra={"path": path, "status_code": response.status_code},
            )
            raise UpstreamUnavailable(f"market data returned HTTP {response.status_code}")

        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamUnavailable("market data returned invalid JSON") from exc

    @staticmethod
    def _error_code(response: httpx.Response) -> int | None:
        try:
            body = response.json()
        except ValueError:
            return None
        if not isinstance(body, dict):
            return None
        code = body.get("code")
        return code if isinstance(code, int) else None
