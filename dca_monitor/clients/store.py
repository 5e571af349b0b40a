"""PostgREST-backed signal log and shared run-state row.

Rows are public-read/public-write through the anon key; no per-user access
control is attempted here.
"""

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from dca_monitor.core.errors import StoreReadFailed
from dca_monitor.core.time_utils import parse_timestamp, utc_now
from dca_monitor.core.types import RunState, SignalRecord, Verdict

_SIGNALS_PATH = "/rest/v1/signals"
_CONFIGS_PATH = "/rest/v1/configs"

# Insert columns of the signals table; sql/schema.sql defines them.
SIGNAL_COLUMNS = (
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
)
RUN_STATE_COLUMNS = ("id", "is_auto_active", "last_selected_coin", "updated_at")

logger = logging.getLogger(__name__)


def signal_row(record: SignalRecord) -> dict[str, Any]:
    verdict = record.verdict
    return {
        "instrument_id": record.instrument_id,
        "coin_name": record.instrument_name,
        "symbol": record.symbol,
        "current_price": record.observed_price,
        "recommendation": verdict.recommendation.value,
        "sentiment": verdict.sentiment.value,
        "detected_pattern": verdict.detected_pattern,
        "reasoning": verdict.reasoning,
        "support_level": verdict.support_level,
        "resistance_level": verdict.resistance_level,
        "entry_point": verdict.entry_point,
        "take_profit": verdict.take_profit,
        "stop_loss": verdict.stop_loss,
    }


def record_from_row(row: dict[str, Any]) -> SignalRecord:
    verdict = Verdict(
        sentiment=row["sentiment"],
        recommendation=row["recommendation"],
        detected_pattern=row.get("detected_pattern") or "",
        reasoning=row.get("reasoning") or "",
        support_level=float(row["support_level"]),
        resistance_level=float(row["resistance_level"]),
        entry_point=float(row["entry_point"]),
        take_profit=float(row["take_profit"]),
        stop_loss=float(row["stop_loss"]),
    )
    symbol = str(row.get("symbol") or "")
    return SignalRecord(
        instrument_id=str(row.get("instrument_id") or symbol),
        instrument_name=str(row.get("coin_name") or symbol),
        symbol=symbol,
        observed_price=float(row["current_price"]),
        verdict=verdict,
        created_at=parse_timestamp(row.get("created_at")),
    )


class SignalStore:
    """Append-only signal log plus the singleton RunState row keyed by `run_state_id`."""

    def __init__(self, client: httpx.Client, api_key: str, run_state_id: str = "global") -> None:
        self._client = client
        self._api_key = api_key
        self.run_state_id = run_state_id

    def _headers(self, prefer: str | None = None) -> dict[str, str]:
        headers = {"apikey": self._api_key, "Authorization": f"Bearer {self._api_key}"}
        if prefer:
            headers["Prefer"] = prefer
        return headers

    def append(self, record: SignalRecord) -> bool:
        """Insert one signal row; failures are logged and reported as False."""

        try:
            response = self._client.post(
                _SIGNALS_PATH,
                json=signal_row(record),
                headers=self._headers(prefer="return=minimal"),
            )
        except httpx.HTTPError as exc:
            logger.warning(
                "store_append_failed",
                extra={"instrument_id": record.instrument_id, "error": str(exc)},
            )
            return False

        if not response.is_success:
            logger.warning(
                "store_append_failed",
                extra={"instrument_id": record.instrument_id, "status_code": response.status_code},
            )
            return False
        return True

    def list_recent(self, limit: int = 5) -> tuple[SignalRecord, ...]:
        """Return up to `limit` records, newest first; empty on any read failure."""

        if limit <= 0:
            return ()

        try:
            response = self._client.get(
                _SIGNALS_PATH,
                params={"select": "*", "order": "created_at.desc", "limit": str(limit)},
                headers=self._headers(),
            )
            response.raise_for_status()
            rows = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("store_list_failed", extra={"error": str(exc)})
            return ()

        if not isinstance(rows, list):
            return ()

        records: list[SignalRecord] = []
        for row in rows[:limit]:
            try:
                records.append(record_from_row(row))
            except (KeyError, TypeError, ValueError, ValidationError):
                logger.warning("store_signal_row_skipped", extra={"row_id": row.get("id") if isinstance(row, dict) else None})
        return tuple(records)

    def read_run_state(self) -> RunState:
        """Return the shared RunState, or the disabled default when no row exists yet."""

        try:
            response = self._client.get(
                _CONFIGS_PATH,
                params={"id": f"eq.{self.run_state_id}", "select": "*"},
                headers=self._headers(),
            )
            response.raise_for_status()
            rows = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("store_run_state_read_failed", extra={"error": str(exc)})
            raise StoreReadFailed(f"run state read failed: {exc}") from exc

        if not isinstance(rows, list) or not rows or not isinstance(rows[0], dict):
            return RunState()

        row = rows[0]
        instrument_id = row.get("last_selected_coin")
        return RunState(
            enabled=row.get("is_auto_active") is True,
            active_instrument_id=str(instrument_id).upper() if instrument_id else None,
            updated_at=parse_timestamp(row.get("updated_at")),
        )

    def write_run_state(self, enabled: bool, active_instrument_id: str | None) -> bool:
        """Replace the whole RunState row; concurrent writers are last-write-wins."""

        row = {
            "id": self.run_state_id,
            "is_auto_active": enabled,
            "last_selected_coin": active_instrument_id,
            "updated_at": utc_now().isoformat(),
        }
        try:
            response = self._client.post(
                _CONFIGS_PATH,
                json=row,
                headers=self._headers(prefer="resolution=merge-duplicates,return=minimal"),
            )
        except httpx.HTTPError as exc:
            logger.warning("store_run_state_write_failed", extra={"error": str(exc)})
            return False

        if not response.is_success:
            logger.warning(
                "store_run_state_write_failed",
                extra={"status_code": response.status_code},
            )
            return False
        return True
