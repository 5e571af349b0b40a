"""FastAPI binding for the auto-monitor: status, toggles, manual analysis and signal history."""

import logging
import threading
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict
from functools import lru_cache
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Query
from pydantic import BaseModel

from dca_monitor.clients.factory import Upstreams, build_upstreams
from dca_monitor.core.config import get_settings
from dca_monitor.core.errors import UnknownInstrument, UpstreamUnavailable
from dca_monitor.core.logging import configure_logging
from dca_monitor.core.types import SignalRecord, Verdict
from dca_monitor.services.monitor.loop import CycleResult, MonitorLoop, build_monitor_loop
from dca_monitor.services.monitor.main import run_until_shutdown

settings = get_settings()
configure_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def get_upstreams() -> Upstreams:
    return build_upstreams(settings)


@lru_cache(maxsize=1)
def get_monitor() -> MonitorLoop:
    return build_monitor_loop(settings, get_upstreams())


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start the timer thread when this process drives the monitor; stop it and release upstreams on shutdown."""

    logger.info(
        "api_startup",
        extra={
            "service": "api",
            "env": settings.ENV,
            "version": settings.VERSION,
            "drive_monitor": settings.API_DRIVE_MONITOR,
        },
    )
    shutdown_event = threading.Event()
    ticker = None
    if settings.API_DRIVE_MONITOR:
        monitor = app.dependency_overrides.get(get_monitor, get_monitor)()
        monitor.start()
        ticker = threading.Thread(
            target=run_until_shutdown,
            args=(monitor, shutdown_event, float(max(1, settings.RUN_STATE_SYNC_SECONDS)), logger),
            name="monitor-ticker",
            daemon=True,
        )
        ticker.start()
    app.state.monitor_ticker = ticker

    yield

    shutdown_event.set()
    if ticker is not None:
        ticker.join(timeout=5.0)
    if get_upstreams.cache_info().currsize:
        get_upstreams().close()


app = FastAPI(title=settings.APP_NAME, version=settings.VERSION, lifespan=lifespan)


class InstrumentRequest(BaseModel):
    instrument_id: str | None = None


def _verdict_payload(verdict: Verdict | None) -> dict[str, Any] | None:
    if verdict is None:
        return None
    return verdict.model_dump(mode="json", by_alias=True)


def _cycle_payload(result: CycleResult | None) -> dict[str, Any] | None:
    if result is None:
        return None
    return {
        "instrument_id": result.instrument_id,
        "trigger": result.trigger.value,
        "completed": result.completed,
        "verdict": _verdict_payload(result.verdict),
        "observed_price": result.observed_price,
        "stored": result.stored,
        "alerted": result.alerted,
        "alert_suppressed": result.alert_suppressed,
        "error": result.error,
        "warnings": list(result.warnings),
    }


def _signal_payload(record: SignalRecord) -> dict[str, Any]:
    return {
        "instrument_id": record.instrument_id,
        "instrument_name": record.instrument_name,
        "symbol": record.symbol,
        "observed_price": record.observed_price,
        "created_at": record.created_at.isoformat() if record.created_at else None,
        "verdict": _verdict_payload(record.verdict),
    }


@app.get("/health")
def health() -> dict[str, str]:
    """Return process liveness status."""

    return {"status": "ok"}


@app.get("/version")
def version() -> dict[str, str]:
    """Return application metadata from shared settings."""

    return {
        "name": settings.APP_NAME,
        "version": settings.VERSION,
        "env": settings.ENV,
    }


@app.get("/instruments")
def list_instruments(monitor: MonitorLoop = Depends(get_monitor)) -> list[dict[str, Any]]:
    try:
        instruments = monitor.market_data.list_instruments()
    except UpstreamUnavailable as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    if not instruments:
        raise HTTPException(status_code=503, detail="watchlist returned no instruments")
    return [asdict(instrument) for instrument in instruments]


@app.get("/instruments/{instrument_id}/bars")
def recent_bars(
    instrument_id: str,
    limit: int = Query(default=100, ge=1, le=1000),
    monitor: MonitorLoop = Depends(get_monitor),
) -> list[dict[str, Any]]:
    try:
        bars = monitor.market_data.get_recent_bars(instrument_id, limit)
    except UnknownInstrument as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except UpstreamUnavailable as exc:
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    return [asdict(bar) for bar in bars]


@app.get("/monitor")
def monitor_status(monitor: MonitorLoop = Depends(get_monitor)) -> dict[str, Any]:
    """Report the loop; when this process drives it, a countdown that already elapsed runs first."""

    monitor.sync_run_state()
    if settings.API_DRIVE_MONITOR:
        monitor.poll()
    status = monitor.status()
    current = status.current
    return {
        "state": status.state.value,
        "enabled": status.enabled,
        "active_instrument_id": status.active_instrument_id,
        "scheduled_by": "api" if settings.API_DRIVE_MONITOR else "monitor",
        "countdown_s": status.countdown_s if settings.API_DRIVE_MONITOR else None,
        "countdown": status.countdown if settings.API_DRIVE_MONITOR else "-",
        "current": None
        if current is None
        else {
            "instrument_id": current.instrument_id,
            "instrument_name": current.instrument_name,
            "observed_price": current.observed_price,
            "verdict": _verdict_payload(current.verdict),
        },
        "last_result": _cycle_payload(status.last_result),
        "indicators": status.indicators,
    }


@app.post("/monitor/enable")
def enable_monitor(request: InstrumentRequest, monitor: MonitorLoop = Depends(get_monitor)) -> dict[str, Any]:
    try:
        persisted = monitor.enable(request.instrument_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return {"enabled": True, "active_instrument_id": monitor.active_instrument_id, "persisted": persisted}


@app.post("/monitor/disable")
def disable_monitor(monitor: MonitorLoop = Depends(get_monitor)) -> dict[str, Any]:
    persisted = monitor.disable()
    return {"enabled": False, "active_instrument_id": monitor.active_instrument_id, "persisted": persisted}


@app.post("/monitor/select")
def select_instrument(request: InstrumentRequest, monitor: MonitorLoop = Depends(get_monitor)) -> dict[str, Any]:
    if not request.instrument_id:
        raise HTTPException(status_code=400, detail="instrument_id is required")
    persisted = monitor.select_instrument(request.instrument_id)
    return {"active_instrument_id": monitor.active_instrument_id, "persisted": persisted}


@app.post("/monitor/analyze")
def analyze_now(request: InstrumentRequest, monitor: MonitorLoop = Depends(get_monitor)) -> dict[str, Any]:
    try:
        result = monitor.analyze_now(request.instrument_id)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return _cycle_payload(result)


@app.post("/monitor/alert")
def push_alert(monitor: MonitorLoop = Depends(get_monitor)) -> dict[str, bool]:
    if monitor.current is None:
        raise HTTPException(status_code=409, detail="no verdict to send")
    return {"sent": monitor.push_alert()}


@app.get("/signals")
def recent_signals(
    limit: int = Query(default=5, ge=1, le=100),
    monitor: MonitorLoop = Depends(get_monitor),
) -> list[dict[str, Any]]:
    return [_signal_payload(record) for record in monitor.store.list_recent(limit)]


@app.get("/cron")
def scheduled_scan(monitor: MonitorLoop = Depends(get_monitor)) -> dict[str, Any]:
    """Run one background cycle when RunState says monitoring is on."""

    result = monitor.run_scheduled()
    if result.completed:
        status = "success"
    elif result.error == "MonitorDisabled":
        status = "skipped"
    else:
        status = "error"
    return {"status": status, "result": _cycle_payload(result)}
