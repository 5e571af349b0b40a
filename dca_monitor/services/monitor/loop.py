"""Auto-monitor controller: countdown timer plus the fetch, classify, store, maybe-alert cycle.

States are Idle (no countdown), Armed (counting down) and Running (a cycle is
in flight). Cycles never overlap inside one process; a trigger that arrives
while one is running is skipped rather than queued. RunState lives in the
store and may be flipped by another process at any time, so it is re-read
right before every alert decision and written back as a whole record.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol, Sequence

from dca_monitor.clients.factory import Upstreams
from dca_monitor.core.config import Settings
from dca_monitor.core.errors import (
    DispatchFailed,
    MalformedResponse,
    StoreWriteFailed,
    UnknownInstrument,
    UpstreamUnavailable,
)
from dca_monitor.core.scheduler import Clock, RepeatingTask
from dca_monitor.core.time_utils import format_countdown
from dca_monitor.core.types import (
    Instrument,
    PriceBar,
    RunState,
    SignalRecord,
    Verdict,
    instrument_label,
)

logger = logging.getLogger(__name__)


class MarketDataSource(Protocol):
    def list_instruments(self) -> tuple[Instrument, ...]: ...

    def get_recent_bars(self, instrument_id: str, window_size: int = ...) -> tuple[PriceBar, ...]: ...

    def display_name(self, instrument_id: str) -> str: ...

    def display_symbol(self, instrument_id: str) -> str: ...


class Classifier(Protocol):
    def classify(self, instrument_name: str, bars: Sequence[PriceBar]) -> Verdict: ...


class Store(Protocol):
    def append(self, record: SignalRecord) -> bool: ...

    def list_recent(self, limit: int = ...) -> tuple[SignalRecord, ...]: ...

    def read_run_state(self) -> RunState: ...

    def write_run_state(self, enabled: bool, active_instrument_id: str | None) -> bool: ...


class Dispatcher(Protocol):
    def dispatch(self, instrument_name: str, verdict: Verdict, observed_price: float) -> bool: ...


class MonitorState(str, Enum):
    IDLE = "idle"
    ARMED = "armed"
    RUNNING = "running"


class Trigger(str, Enum):
    TIMER = "timer"
    MANUAL = "manual"
    SCHEDULED = "scheduled"


@dataclass(frozen=True, slots=True)
class DisplayedVerdict:
    instrument_id: str
    instrument_name: str
    verdict: Verdict
    observed_price: float


@dataclass(frozen=True, slots=True)
class CycleResult:
    """Outcome of one cycle; `error` names the failure that aborted it, if any."""

    instrument_id: str | None
    trigger: Trigger
    completed: bool
    verdict: Verdict | None = None
    observed_price: float | None = None
    stored: bool = False
    alerted: bool = False
    alert_suppressed: bool = False
    error: str | None = None
    warnings: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class MonitorStatus:
    state: MonitorState
    enabled: bool
    active_instrument_id: str | None
    countdown_s: float | None
    countdown: str
    current: DisplayedVerdict | None
    last_result: CycleResult | None
    indicators: dict[str, str] = field(default_factory=dict)


class StatusBoard:
    """Per-subsystem indicator; success and error settle back to idle after `clear_after_s`."""

    SUBSYSTEMS = ("analysis", "store", "alert")

    def __init__(self, clear_after_s: float, clock: Clock) -> None:
        self.clear_after_s = clear_after_s
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}

    def set(self, subsystem: str, status: str) -> None:
        self._entries[subsystem] = (status, self._clock())

    def get(self, subsystem: str) -> str:
        entry = self._entries.get(subsystem)
        if entry is None:
            return "idle"
        status, set_at = entry
        if status in ("success", "error") and self._clock() - set_at >= self.clear_after_s:
            return "idle"
        return status

    def snapshot(self) -> dict[str, str]:
        return {subsystem: self.get(subsystem) for subsystem in self.SUBSYSTEMS}


class MonitorLoop:
    """Owns the countdown and the displayed verdict; every collaborator is injected."""

    def __init__(
        self,
        market_data: MarketDataSource,
        classifier: Classifier,
        store: Store,
        dispatcher: Dispatcher,
        interval_s: float,
        window_size: int = 100,
        status_clear_s: float = 3.0,
        clock: Clock = time.monotonic,
    ) -> None:
        if window_size <= 0:
            raise ValueError("window_size must be a positive integer")
        self.market_data = market_data
        self.classifier = classifier
        self.store = store
        self.dispatcher = dispatcher
        self.window_size = window_size
        self._task = RepeatingTask(interval_s, clock)
        self._statuses = StatusBoard(status_clear_s, clock)
        self._cycle_lock = threading.Lock()
        # Guards _state, _enabled, _active_instrument_id, _toggle_generation and the task.
        # Never held across an upstream call.
        self._state_lock = threading.Lock()
        self._state = MonitorState.IDLE
        self._enabled = False
        self._active_instrument_id: str | None = None
        self._toggle_generation = 0
        self._current: DisplayedVerdict | None = None
        self._last_result: CycleResult | None = None

    @property
    def state(self) -> MonitorState:
        return self._state

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def active_instrument_id(self) -> str | None:
        return self._active_instrument_id

    @property
    def current(self) -> DisplayedVerdict | None:
        return self._current

    def status(self) -> MonitorStatus:
        with self._state_lock:
            remaining = self._task.remaining_s()
            return MonitorStatus(
                state=self._state,
                enabled=self._enabled,
                active_instrument_id=self._active_instrument_id,
                countdown_s=remaining,
                countdown=format_countdown(remaining),
                current=self._current,
                last_result=self._last_result,
                indicators=self._statuses.snapshot(),
            )

    def start(self) -> RunState | None:
        """Adopt the persisted RunState; arms the countdown when it says monitoring is on."""

        run_state = self.sync_run_state()
        logger.info(
            "monitor_started",
            extra={"state": self._state.value, "active_instrument_id": self._active_instrument_id},
        )
        return run_state

    def sync_run_state(self) -> RunState | None:
        """Re-read RunState and follow toggles made by other processes."""

        try:
            run_state = self.store.read_run_state()
        except UpstreamUnavailable as exc:
            logger.warning("monitor_run_state_unavailable", extra={"error": str(exc)})
            return None

        with self._state_lock:
            if run_state.active_instrument_id:
                self._active_instrument_id = run_state.active_instrument_id

            if run_state.enabled and self._active_instrument_id:
                if not self._enabled:
                    self._enabled = True
                    self._arm()
                    logger.info("monitor_enabled_externally", extra={"instrument_id": self._active_instrument_id})
            elif self._enabled:
                self._enabled = False
                self._toggle_generation += 1
                self._disarm()
                logger.info("monitor_disabled_externally")
        return run_state

    def enable(self, instrument_id: str | None = None) -> bool:
        """Turn monitoring on and reset the countdown; returns whether RunState was persisted."""

        with self._state_lock:
            if instrument_id:
                self._active_instrument_id = instrument_id.upper()
            if not self._active_instrument_id:
                raise ValueError("an active instrument is required to enable monitoring")
            self._enabled = True
            self._arm()
            active = self._active_instrument_id

        persisted = self.store.write_run_state(True, active)
        logger.info("monitor_enabled", extra={"instrument_id": active, "persisted": persisted})
        return persisted

    def disable(self) -> bool:
        """Stop future ticks; a cycle already running finishes but will not alert."""

        with self._state_lock:
            self._enabled = False
            self._toggle_generation += 1
            self._disarm()
            active = self._active_instrument_id

        persisted = self.store.write_run_state(False, active)
        logger.info("monitor_disabled", extra={"instrument_id": active, "persisted": persisted})
        return persisted

    def select_instrument(self, instrument_id: str) -> bool:
        """Change the active instrument; does not classify, but restarts a running countdown."""

        with self._state_lock:
            self._active_instrument_id = instrument_id.upper()
            self._current = None
            if self._state is MonitorState.ARMED:
                self._task.restart()
            enabled = self._enabled
            active = self._active_instrument_id
        return self.store.write_run_state(enabled, active)

    def poll(self) -> CycleResult | None:
        """Run a timer cycle if the countdown has elapsed; otherwise do nothing."""

        if not self._cycle_lock.acquire(blocking=False):
            return None
        try:
            with self._state_lock:
                if self._state is not MonitorState.ARMED or not self._task.is_due():
                    return None
                instrument_id = self._active_instrument_id
                generation = self._begin_cycle()
            return self._cycle(Trigger.TIMER, instrument_id, generation)
        finally:
            self._cycle_lock.release()

    def analyze_now(self, instrument_id: str | None = None) -> CycleResult:
        """Run the cycle immediately, from Idle or Armed."""

        target = instrument_id.upper() if instrument_id else self._active_instrument_id
        if not target:
            raise ValueError("no instrument selected")
        return self._run(Trigger.MANUAL, target)

    def run_scheduled(self) -> CycleResult:
        """One background cycle gated on the persisted RunState, for external schedulers."""

        run_state = self.sync_run_state()
        if run_state is None:
            return CycleResult(None, Trigger.SCHEDULED, completed=False, error=UpstreamUnavailable.__name__)
        if not run_state.enabled or not run_state.active_instrument_id:
            logger.info("monitor_scheduled_skipped", extra={"enabled": run_state.enabled})
            return CycleResult(run_state.active_instrument_id, Trigger.SCHEDULED, completed=False, error="MonitorDisabled")
        return self._run(Trigger.SCHEDULED, run_state.active_instrument_id)

    def push_alert(self) -> bool:
        """Send the currently displayed verdict on demand, whatever its recommendation."""

        current = self._current
        if current is None:
            logger.info("monitor_push_without_verdict")
            return False
        return self._send_alert(current.instrument_name, current.verdict, current.observed_price)

    # _arm, _disarm and _begin_cycle expect _state_lock to be held.
    def _arm(self) -> None:
        self._task.restart()
        if self._state is not MonitorState.RUNNING:
            self._state = MonitorState.ARMED

    def _disarm(self) -> None:
        self._task.cancel()
        if self._state is not MonitorState.RUNNING:
            self._state = MonitorState.IDLE

    def _begin_cycle(self) -> int:
        self._state = MonitorState.RUNNING
        return self._toggle_generation

    def _run(self, trigger: Trigger, instrument_id: str | None) -> CycleResult:
        if instrument_id is None:
            return CycleResult(None, trigger, completed=False, error="NoActiveInstrument")

        if not self._cycle_lock.acquire(blocking=False):
            logger.info("monitor_cycle_busy", extra={"trigger": trigger.value, "instrument_id": instrument_id})
            return CycleResult(instrument_id, trigger, completed=False, error="CycleInProgress")

        try:
            with self._state_lock:
                generation = self._begin_cycle()
            return self._cycle(trigger, instrument_id, generation)
        finally:
            self._cycle_lock.release()

    def _cycle(self, trigger: Trigger, instrument_id: str, generation: int) -> CycleResult:
        try:
            result = self._execute(trigger, instrument_id, generation)
            self._last_result = result
            return result
        finally:
            with self._state_lock:
                if self._enabled:
                    self._state = MonitorState.ARMED
                    self._task.restart()
                else:
                    self._state = MonitorState.IDLE
                    self._task.cancel()

    def _execute(self, trigger: Trigger, instrument_id: str, generation: int) -> CycleResult:
        name = self.market_data.display_name(instrument_id)
        label = instrument_label(instrument_id, name)
        context = {"trigger": trigger.value, "instrument_id": instrument_id}

        self._statuses.set("analysis", "working")
        try:
            bars = self.market_data.get_recent_bars(instrument_id, self.window_size)
            if not bars:
                raise UpstreamUnavailable("empty bar window")
            verdict = self.classifier.classify(label, bars)
        except (UpstreamUnavailable, UnknownInstrument, MalformedResponse) as exc:
            self._statuses.set("analysis", "error")
            logger.warning(
                "monitor_cycle_aborted",
                extra={**context, "error_kind": type(exc).__name__, "error": str(exc)},
            )
            return CycleResult(instrument_id, trigger, completed=False, error=type(exc).__name__)
        self._statuses.set("analysis", "success")

        observed_price = bars[-1].close
        self._current = DisplayedVerdict(instrument_id, label, verdict, observed_price)
        warnings: list[str] = []

        self._statuses.set("store", "working")
        stored = self.store.append(
            SignalRecord(
                instrument_id=instrument_id,
                instrument_name=name,
                symbol=self.market_data.display_symbol(instrument_id),
                observed_price=observed_price,
                verdict=verdict,
            )
        )
        self._statuses.set("store", "success" if stored else "error")
        if not stored:
            warnings.append(StoreWriteFailed.__name__)
            logger.warning("monitor_store_failed", extra=context)

        alerted = False
        suppressed = False
        if verdict.is_buy:
            if self._alerts_allowed(generation):
                alerted = self._send_alert(label, verdict, observed_price)
                if not alerted:
                    warnings.append(DispatchFailed.__name__)
            else:
                suppressed = True
                logger.info("monitor_alert_suppressed", extra=context)

        logger.info(
            "monitor_cycle_completed",
            extra={
                **context,
                "recommendation": verdict.recommendation.value,
                "observed_price": observed_price,
                "stored": stored,
                "alerted": alerted,
            },
        )
        return CycleResult(
            instrument_id,
            trigger,
            completed=True,
            verdict=verdict,
            observed_price=observed_price,
            stored=stored,
            alerted=alerted,
            alert_suppressed=suppressed,
            warnings=tuple(warnings),
        )

    def _alerts_allowed(self, generation: int) -> bool:
        with self._state_lock:
            if generation != self._toggle_generation and not self._enabled:
                return False
        try:
            return self.store.read_run_state().enabled
        except UpstreamUnavailable as exc:
            logger.warning("monitor_run_state_recheck_failed", extra={"error": str(exc)})
            return self._enabled

    def _send_alert(self, instrument_name: str, verdict: Verdict, observed_price: float) -> bool:
        self._statuses.set("alert", "working")
        sent = self.dispatcher.dispatch(instrument_name, verdict, observed_price)
        self._statuses.set("alert", "success" if sent else "error")
        return sent


def build_monitor_loop(settings: Settings, upstreams: Upstreams) -> MonitorLoop:
    return MonitorLoop(
        upstreams.market_data,
        upstreams.classifier,
        upstreams.store,
        upstreams.dispatcher,
        interval_s=settings.poll_interval_s(),
        window_size=settings.bar_window_size(),
        status_clear_s=settings.STATUS_CLEAR_SECONDS,
    )
