"""Explicit interval timers for the update thread."""

from __future__ import annotations

import time
from typing import Callable, Optional


class IntervalTimer:
    """Fires at most once per ``interval_s`` on the caller's clock.

    ``due`` does not sleep or spawn anything; the update loop asks each timer
    whether its interval has elapsed and acts on the answer.
    """

    def __init__(
        self,
        interval_s: float,
        *,
        time_fn: Callable[[], float] = time.perf_counter,
        fire_immediately: bool = False,
    ) -> None:
        if interval_s < 0:
            raise ValueError(f"interval must be non-negative, got {interval_s}")
        self.interval_s = float(interval_s)
        self._time_fn = time_fn
        self._last: Optional[float] = None if fire_immediately else time_fn()
        self.fired = 0

    def due(self, now: Optional[float] = None) -> bool:
        ts = self._time_fn() if now is None else float(now)
        if self._last is not None and ts - self._last < self.interval_s:
            return False
        self._last = ts
        self.fired += 1
        return True

    def reset(self, now: Optional[float] = None) -> None:
        self._last = self._time_fn() if now is None else float(now)

    def remaining(self, now: Optional[float] = None) -> float:
        if self._last is None:
            return 0.0
        ts = self._time_fn() if now is None else float(now)
        return max(0.0, self.interval_s - (ts - self._last))


__all__ = ["IntervalTimer"]
