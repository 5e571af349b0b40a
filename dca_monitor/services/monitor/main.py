"""Long-running auto-monitor process: polls the countdown and follows shared RunState."""

import logging
import signal
import threading
import time

from dca_monitor.clients.factory import build_upstreams
from dca_monitor.core.config import get_settings
from dca_monitor.core.logging import configure_logging
from dca_monitor.services.monitor.loop import MonitorLoop, build_monitor_loop

_POLL_SLEEP_S = 1.0


def _request_shutdown(shutdown_event: threading.Event, logger: logging.Logger, signal_name: str) -> None:
    if shutdown_event.is_set():
        return
    logger.info("monitor_shutdown_signal", extra={"signal": signal_name})
    shutdown_event.set()


def _install_signal_handlers(shutdown_event: threading.Event, logger: logging.Logger) -> None:
    for sig in (signal.SIGINT, signal.SIGTERM):
        signal_name = sig.name
        signal.signal(
            sig,
            lambda *_args, signal_name=signal_name: _request_shutdown(
                shutdown_event,
                logger,
                signal_name,
            ),
        )


def run_until_shutdown(
    monitor: MonitorLoop,
    shutdown_event: threading.Event,
    sync_every_s: float,
    logger: logging.Logger,
    clock=time.monotonic,
    poll_sleep_s: float = _POLL_SLEEP_S,
) -> int:
    """Drive the monitor until `shutdown_event` is set; returns the number of timer cycles run."""

    cycles = 0
    next_sync = clock() + sync_every_s
    while not shutdown_event.is_set():
        if clock() >= next_sync:
            monitor.sync_run_state()
            next_sync = clock() + sync_every_s

        try:
            result = monitor.poll()
        except Exception:  # noqa: BLE001
            logger.exception("monitor_poll_crashed")
            result = None

        if result is not None:
            cycles += 1
            continue

        shutdown_event.wait(poll_sleep_s)
    return cycles


def main() -> int:
    """Run the auto-monitor until interrupted."""

    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    logger = logging.getLogger(__name__)
    shutdown_event = threading.Event()

    upstreams = build_upstreams(settings)
    monitor = build_monitor_loop(settings, upstreams)

    _install_signal_handlers(shutdown_event, logger)
    logger.info(
        "monitor_startup",
        extra={
            "watchlist": list(settings.watchlist()),
            "interval_s": settings.poll_interval_s(),
            "window_size": settings.bar_window_size(),
            "run_state_id": settings.STORE_RUN_STATE_ID,
        },
    )

    cycles = 0
    try:
        monitor.start()
        cycles = run_until_shutdown(
            monitor,
            shutdown_event,
            sync_every_s=float(max(1, settings.RUN_STATE_SYNC_SECONDS)),
            logger=logger,
        )
    finally:
        upstreams.close()

    logger.info("monitor_shutdown", extra={"timer_cycles": cycles})
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
