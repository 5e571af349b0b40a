"""In-memory collaborators and a controllable clock for monitor-loop tests."""

import json
from typing import Any, Callable, Sequence

import pytest

from dca_monitor.clients.classifier import parse_verdict
from dca_monitor.core.errors import StoreReadFailed
from dca_monitor.core.types import Instrument, PriceBar, RunState, SignalRecord, Verdict
from dca_monitor.services.monitor.loop import MonitorLoop

INTERVAL_S = 3600.0


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_bars(count: int = 100, start: float = 64000.0, step: float = 10.0) -> tuple[PriceBar, ...]:
    bars = []
    for idx in range(count):
        close = start + idx * step
        bars.append(
            PriceBar(
                time=f"bar-{idx:03d}",
                open=close - step,
                high=close + step,
                low=close - 2 * step,
                close=close,
                volume=100.0 + idx,
            )
        )
    return tuple(bars)


class FakeMarketData:
    def __init__(self) -> None:
        self.bars = make_bars()
        self.error: Exception | None = None
        self.calls: list[tuple[str, int]] = []

    def list_instruments(self) -> tuple[Instrument, ...]:
        return (
            Instrument(id="BTCUSDT", symbol="BTC", name="Bitcoin", price=65420.50, change_24h_pct=2.5),
            Instrument(id="ETHUSDT", symbol="ETH", name="Ethereum", price=3450.20, change_24h_pct=-1.2),
        )

    def get_recent_bars(self, instrument_id: str, window_size: int = 100) -> tuple[PriceBar, ...]:
        self.calls.append((instrument_id, window_size))
        if self.error is not None:
            raise self.error
        return self.bars[-window_size:]

    def display_name(self, instrument_id: str) -> str:
        return {"BTCUSDT": "Bitcoin", "ETHUSDT": "Ethereum"}.get(instrument_id, instrument_id)

    def display_symbol(self, instrument_id: str) -> str:
        return instrument_id.removesuffix("USDT")


class FakeClassifier:
    """Returns `payload` through the real verdict parser so malformed payloads fail the same way."""

    def __init__(self, payload: dict[str, Any]) -> None:
        self.payload = payload
        self.error: Exception | None = None
        self.on_classify: Callable[[], None] | None = None
        self.calls: list[tuple[str, int]] = []

    def classify(self, instrument_name: str, bars: Sequence[PriceBar]) -> Verdict:
        self.calls.append((instrument_name, len(bars)))
        if self.on_classify is not None:
            self.on_classify()
        if self.error is not None:
            raise self.error
        return parse_verdict(json.dumps(self.payload))


class FakeStore:
    def __init__(self) -> None:
        self.records: list[SignalRecord] = []
        self.run_state = RunState()
        self.append_ok = True
        self.write_ok = True
        self.read_error = False
        self.writes: list[tuple[bool, str | None]] = []

    def append(self, record: SignalRecord) -> bool:
        if not self.append_ok:
            return False
        self.records.append(record)
        return True

    def list_recent(self, limit: int = 5) -> tuple[SignalRecord, ...]:
        return tuple(reversed(self.records))[:limit]

    def read_run_state(self) -> RunState:
        if self.read_error:
            raise StoreReadFailed("store offline")
        return self.run_state

    def write_run_state(self, enabled: bool, active_instrument_id: str | None) -> bool:
        self.writes.append((enabled, active_instrument_id))
        if self.write_ok:
            self.run_state = RunState(enabled=enabled, active_instrument_id=active_instrument_id)
        return self.write_ok


class FakeDispatcher:
    def __init__(self) -> None:
        self.ok = True
        self.calls: list[tuple[str, Verdict, float]] = []

    def dispatch(self, instrument_name: str, verdict: Verdict, observed_price: float) -> bool:
        self.calls.append((instrument_name, verdict, observed_price))
        return self.ok


@pytest.fixture
def verdict_payload() -> Callable[..., dict[str, Any]]:
    def build(**overrides: Any) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "sentiment": "Bullish",
            "recommendation": "BUY (DCA)",
            "detectedPattern": "Bullish engulfing",
            "reasoning": "Higher lows on rising volume above support.",
            "supportLevel": 63800.0,
            "resistanceLevel": 67200.0,
            "entryPoint": 64250.5,
            "takeProfit": 68900.0,
            "stopLoss": 62100.25,
        }
        payload.update(overrides)
        return {key: value for key, value in payload.items() if value is not None}

    return build


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def market_data() -> FakeMarketData:
    return FakeMarketData()


@pytest.fixture
def classifier(verdict_payload: Callable[..., dict[str, Any]]) -> FakeClassifier:
    return FakeClassifier(verdict_payload())


@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def dispatcher() -> FakeDispatcher:
    return FakeDispatcher()


@pytest.fixture
def monitor(
    market_data: FakeMarketData,
    classifier: FakeClassifier,
    store: FakeStore,
    dispatcher: FakeDispatcher,
    clock: FakeClock,
) -> MonitorLoop:
    return MonitorLoop(
        market_data,
        classifier,
        store,
        dispatcher,
        interval_s=INTERVAL_S,
        window_size=100,
        status_clear_s=3.0,
        clock=clock,
    )


@pytest.fixture
def make_price_bars() -> Callable[..., tuple[PriceBar, ...]]:
    return make_bars
