"""Signal log and RunState row handling against a mocked PostgREST endpoint."""

import json
import re
from pathlib import Path

import httpx
import pytest

from dca_monitor.clients.store import RUN_STATE_COLUMNS, SIGNAL_COLUMNS, SignalStore
from dca_monitor.core.errors import StoreReadFailed
from dca_monitor.core.types import RunState, SignalRecord, Verdict


def _store(handler) -> SignalStore:
    http = httpx.Client(transport=httpx.MockTransport(handler), base_url="https://store.test")
    return SignalStore(http, api_key="anon-key", run_state_id="global")


def _record(verdict_payload) -> SignalRecord:
    return SignalRecord(
        instrument_id="BTCUSDT",
        instrument_name="Bitcoin",
        symbol="BTC",
        observed_price=65420.5,
        verdict=Verdict.model_validate(verdict_payload()),
    )


def _row(created_at: str, **overrides) -> dict:
    row = {
        "id": 1,
        "instrument_id": "BTCUSDT",
        "coin_name": "Bitcoin",
        "symbol": "BTC",
        "current_price": 65420.5,
        "recommendation": "BUY (DCA)",
        "sentiment": "Bullish",
        "detected_pattern": "Double bottom",
        "reasoning": "Support held twice.",
        "support_level": 63800,
        "resistance_level": 67200,
        "entry_point": 64250.5,
        "take_profit": 68900,
        "stop_loss": 62100.25,
        "created_at": created_at,
    }
    row.update(overrides)
    return row


def test_append_posts_signal_row(verdict_payload) -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(201)

    assert _store(handler).append(_record(verdict_payload)) is True

    assert seen["method"] == "POST"
    assert seen["path"] == "/rest/v1/signals"
    assert seen["headers"]["apikey"] == "anon-key"
    assert seen["headers"]["authorization"] == "Bearer anon-key"
    assert seen["headers"]["prefer"] == "return=minimal"
    body = seen["body"]
    assert body["instrument_id"] == "BTCUSDT"
    assert body["recommendation"] == "BUY (DCA)"
    assert body["stop_loss"] == 62100.25
    assert "created_at" not in body


def test_append_reports_failures_without_raising(verdict_payload) -> None:
    assert _store(lambda request: httpx.Response(500)).append(_record(verdict_payload)) is False

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    assert _store(handler).append(_record(verdict_payload)) is False


def test_list_recent_parses_rows_and_skips_bad_ones() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(request.url.params)
        return httpx.Response(
            200,
            json=[
                _row("2026-10-19T10:00:00+00:00"),
                _row("2026-10-19T09:00:00+00:00", stop_loss=None),
                _row("2026-10-19T08:00:00", recommendation="WAIT", id=3),
            ],
        )

    records = _store(handler).list_recent(3)

    assert seen == {"select": "*", "order": "created_at.desc", "limit": "3"}
    assert len(records) == 2
    assert records[0].verdict.take_profit == 68900.0
    assert records[0].created_at.hour == 10
    assert records[1].verdict.recommendation.value == "WAIT"
    assert records[1].created_at.tzinfo is not None


def test_list_recent_returns_empty_on_failure() -> None:
    assert _store(lambda request: httpx.Response(503)).list_recent(5) == ()


def test_read_run_state_defaults_when_no_row_exists() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(request.url.params)
        return httpx.Response(200, json=[])

    assert _store(handler).read_run_state() == RunState()
    assert seen["id"] == "eq.global"


def test_read_run_state_parses_row() -> None:
    row = {"id": "global", "is_auto_active": True, "last_selected_coin": "ethusdt", "updated_at": "2026-10-19T12:00:00Z"}

    state = _store(lambda request: httpx.Response(200, json=[row])).read_run_state()

    assert state.enabled is True
    assert state.active_instrument_id == "ETHUSDT"
    assert state.updated_at.year == 2026


def test_read_run_state_raises_when_store_unreachable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(StoreReadFailed):
        _store(handler).read_run_state()


def test_write_run_state_upserts_whole_row() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["prefer"] = request.headers["prefer"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(201)

    assert _store(handler).write_run_state(True, "BTCUSDT") is True

    assert seen["path"] == "/rest/v1/configs"
    assert "resolution=merge-duplicates" in seen["prefer"]
    assert set(seen["body"]) == {"id", "is_auto_active", "last_selected_coin", "updated_at"}
    assert seen["body"]["id"] == "global"
    assert seen["body"]["is_auto_active"] is True


def test_write_run_state_reports_failure() -> None:
    assert _store(lambda request: httpx.Response(401)).write_run_state(False, None) is False


_SCHEMA_SQL = Path(__file__).resolve().parents[1] / "sql" / "schema.sql"


def _table_columns(table: str) -> set[str]:
    ddl = _SCHEMA_SQL.read_text(encoding="utf-8")
    match = re.search(rf"create table if not exists public\.{table} \((.*?)\n\);", ddl, re.DOTALL)
    assert match is not None, f"{table} is not defined in schema.sql"
    return {line.split()[0] for line in match.group(1).strip().splitlines()}


def test_signal_row_columns_are_pinned(verdict_payload) -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["body"] = json.loads(request.content)
        return httpx.Response(201)

    _store(handler).append(_record(verdict_payload))

    assert set(seen["body"]) == {
        "instrument_id",
        "coin_name",
        "symbol",
        "current_price",
        "recommendation",
        "sentiment",
        "detected_pattern",
        "reasoning",
        "support_level",
        "resistance_level",
        "entry_point",
        "take_profit",
        "stop_loss",
    }
    assert tuple(seen["body"]) == SIGNAL_COLUMNS


def test_schema_defines_every_written_column() -> None:
    signal_columns = _table_columns("signals")
    assert set(SIGNAL_COLUMNS) <= signal_columns
    assert {"id", "created_at"} <= signal_columns

    assert _table_columns("configs") == set(RUN_STATE_COLUMNS)
