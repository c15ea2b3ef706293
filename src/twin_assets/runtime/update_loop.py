"""Per-frame driver for the update thread.

The host renderer calls :meth:`UpdateLoop.on_frame` once per frame. The loop
records frame stats, closes performance intervals, ticks the LOD controller
on its own interval and runs the cache TTL sweep on a slower one. Nothing in
here blocks on I/O; reloads are handed to the load coordinator.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from twin_assets.cache.store import AssetStore
from twin_assets.lod.controller import LODController
from twin_assets.lod.notifications import LODEvent
from twin_assets.perf.monitor import PerformanceMonitor, PerformanceSample
from twin_assets.runtime.scheduling import IntervalTimer

logger = logging.getLogger(__name__)


@dataclass
class FrameOutcome:
    sample: Optional[PerformanceSample] = None
    lod_events: List[LODEvent] = field(default_factory=list)
    expired: List[str] = field(default_factory=list)
    lod_ticked: bool = False


class UpdateLoop:
    def __init__(
        self,
        monitor: PerformanceMonitor,
        controller: LODController,
        store: AssetStore,
        *,
        lod_interval_s: float = 0.1,
        sweep_interval_s: float = 300.0,
        time_fn: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._monitor = monitor
        self._controller = controller
        self._store = store
        self._time_fn = time_fn
        self._lod_timer = IntervalTimer(lod_interval_s, time_fn=time_fn, fire_immediately=True)
        self._sweep_timer = IntervalTimer(sweep_interval_s, time_fn=time_fn)
        self.frames = 0

    @property
    def lod_timer(self) -> IntervalTimer:
        return self._lod_timer

    @property
    def sweep_timer(self) -> IntervalTimer:
        return self._sweep_timer

    def on_frame(
        self,
        frame_time_ms: Optional[float] = None,
        *,
        draw_calls: int = 0,
        triangles: int = 0,
        textures: int = 0,
        memory_mb: float = 0.0,
        now: Optional[float] = None,
    ) -> FrameOutcome:
        ts = self._time_fn() if now is None else float(now)
        self.frames += 1
        self._monitor.record_frame(
            frame_time_ms,
            draw_calls=draw_calls,
            triangles=triangles,
            textures=textures,
            memory_mb=memory_mb,
        )
        outcome = FrameOutcome(sample=self._monitor.poll(ts))
        if self._lod_timer.due(ts):
            self._controller.tick(ts, self._monitor.latest())
            outcome.lod_ticked = True
        # Includes events from set_level calls made between frames.
        outcome.lod_events = self._controller.drain_events()
        if self._sweep_timer.due(ts):
            # The store keeps its own clock for entry ages.
            outcome.expired = self._store.sweep_expired()
            if outcome.expired:
                logger.debug("ttl sweep dropped %d entries", len(outcome.expired))
        return outcome


__all__ = ["FrameOutcome", "UpdateLoop"]
