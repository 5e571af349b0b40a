"""Cancellable repeating countdown driven by an injectable monotonic clock."""

import time
from typing import Callable

Clock = Callable[[], float]


class RepeatingTask:
    """Countdown to the next tick; the owner polls `is_due` and calls `restart` after running.

    Nothing here sleeps or spawns threads. The monitor process polls it from its
    wait loop and tests advance a fake clock instead of waiting on wall time.
    """

    def __init__(self, interval_s: float, clock: Clock = time.monotonic) -> None:
        if interval_s <= 0:
            raise ValueError("interval_s must be positive")
        self.interval_s = float(interval_s)
        self._clock = clock
        self._deadline: float | None = None

    @property
    def armed(self) -> bool:
        return self._deadline is not None

    def restart(self) -> None:
        """Arm the task with a full interval from now."""

        self._deadline = self._clock() + self.interval_s

    def cancel(self) -> None:
        self._deadline = None

    def remaining_s(self) -> float | None:
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - self._clock())

    def is_due(self) -> bool:
        return self._deadline is not None and self._clock() >= self._deadline
