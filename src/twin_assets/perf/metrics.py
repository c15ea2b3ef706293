"""
Lightweight JSON metrics for twin-assets.

A small aggregator that supports:
- counters (monotonic totals)
- gauges (latest value)
- histograms (rolling window with basic stats and percentiles)

All timings are expected in milliseconds by convention (e.g., *_ms).
The aggregator exposes a `snapshot()` that returns a JSON-ready dict and is
safe to call from any thread.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict

import numpy as np


@dataclass
class _Hist:
    window: int
    values: Deque[float] = field(default_factory=deque)
    last: float = 0.0
    count: int = 0
    min_v: float = float("inf")
    max_v: float = float("-inf")

    def observe(self, v: float) -> None:
        self.last = float(v)
        self.values.append(self.last)
        if self.last < self.min_v:
            self.min_v = self.last
        if self.last > self.max_v:
            self.max_v = self.last
        self.count += 1

    def stats(self) -> Dict[str, float]:
        if not self.values:
            return {
                "last_ms": 0.0,
                "mean_ms": 0.0,
                "p50_ms": 0.0,
                "p90_ms": 0.0,
                "p99_ms": 0.0,
                "min_ms": 0.0,
                "max_ms": 0.0,
                "count": 0,
            }
        arr = np.fromiter(self.values, dtype=np.float64)
        p50, p90, p99 = np.percentile(arr, [50.0, 90.0, 99.0])
        return {
            "last_ms": self.last,
            "mean_ms": float(arr.mean()),
            "p50_ms": float(p50),
            "p90_ms": float(p90),
            "p99_ms": float(p99),
            "min_ms": self.min_v,
            "max_ms": self.max_v,
            "count": self.count,
        }


class Metrics:
    """Small metrics aggregator with JSON snapshot."""

    def __init__(self, *, window: int = 512, time_fn: Callable[[], float] = time.time) -> None:
        self._window = max(16, int(window))
        self._time_fn = time_fn
        self._counters: Dict[str, float] = {}
        self._gauges: Dict[str, float] = {}
        self._hists: Dict[str, _Hist] = {}
        self._lock = threading.Lock()

    def inc(self, name: str, value: float = 1.0) -> None:
        with self._lock:
            self._counters[name] = self._counters.get(name, 0.0) + float(value)

    def set(self, name: str, value: float) -> None:
        with self._lock:
            self._gauges[name] = float(value)

    def observe_ms(self, name: str, value_ms: float) -> None:
        with self._lock:
            h = self._hists.get(name)
            if h is None:
                h = _Hist(window=self._window, values=deque(maxlen=self._window))
                self._hists[name] = h
            h.observe(float(value_ms))

    def counter(self, name: str) -> float:
        with self._lock:
            return self._counters.get(name, 0.0)

    def gauge(self, name: str) -> float:
        with self._lock:
            return self._gauges.get(name, 0.0)

    def snapshot(self) -> Dict[str, object]:
        with self._lock:
            gauges = {k: float(v) for k, v in self._gauges.items()}
            counters = {k: int(v) if float(v).is_integer() else float(v) for k, v in self._counters.items()}
            hist = {k: v.stats() for k, v in self._hists.items()}
        return {
            "version": "v1",
            "ts": self._time_fn(),
            "gauges": gauges,
            "counters": counters,
            "histograms": hist,
        }


__all__ = ["Metrics"]
