"""Fixed-interval frame statistics and advisory suggestions.

``record_frame`` is called once per rendered frame and only accumulates.
``poll`` closes the current interval once ``sample_interval_s`` has passed,
appends a :class:`PerformanceSample` to a bounded history and re-evaluates
the threshold suggestions. Suggestions are advisory; nothing here changes
rendering behaviour.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from dataclasses import asdict, dataclass
from typing import Callable, Deque, Dict, List, Optional

from twin_assets.config.models import PerformanceConfig, PerformanceThresholds

logger = logging.getLogger(__name__)

# Average fps floor per recommended quality tier, best first.
QUALITY_TIERS = (("ultra", 55.0), ("high", 45.0), ("medium", 30.0), ("low", 20.0))


@dataclass(frozen=True)
class PerformanceSample:
    fps: float
    frame_time_ms: float
    draw_calls: int
    triangles: int
    textures: int
    memory_mb: float
    timestamp: float

    def to_dict(self) -> Dict[str, float]:
        return asdict(self)


@dataclass(frozen=True)
class Suggestion:
    category: str  # "fps" | "memory" | "draw_calls"
    severity: str  # "warning" | "critical"
    message: str
    action: str


@dataclass(frozen=True)
class PerformanceReport:
    samples: int
    average_fps: float
    min_fps: float
    max_fps: float
    average_frame_time_ms: float
    recommended_quality: str
    suggestions: tuple

    def to_dict(self) -> Dict[str, object]:
        out = asdict(self)
        out["suggestions"] = [asdict(s) for s in self.suggestions]
        return out


def recommend_quality(average_fps: float) -> str:
    for name, floor in QUALITY_TIERS:
        if average_fps >= floor:
            return name
    return "minimal"


def evaluate_suggestions(sample: PerformanceSample, thresholds: PerformanceThresholds) -> List[Suggestion]:
    out: List[Suggestion] = []
    if sample.fps < thresholds.fps_critical:
        out.append(
            Suggestion(
                "fps",
                "critical",
                f"frame rate {sample.fps:.1f} fps is critically low",
                "reduce LOD quality and disable non-essential effects",
            )
        )
    elif sample.fps < thresholds.fps_warning:
        out.append(
            Suggestion(
                "fps",
                "warning",
                f"frame rate {sample.fps:.1f} fps is below target",
                "lower LOD distances or shadow quality",
            )
        )
    if sample.memory_mb > thresholds.memory_critical_mb:
        out.append(
            Suggestion(
                "memory",
                "critical",
                f"memory use {sample.memory_mb:.0f} MB is critically high",
                "clear the asset cache and reduce texture sizes",
            )
        )
    elif sample.memory_mb > thresholds.memory_warning_mb:
        out.append(
            Suggestion(
                "memory",
                "warning",
                f"memory use {sample.memory_mb:.0f} MB is high",
                "evict unused assets",
            )
        )
    if sample.draw_calls > thresholds.draw_calls_critical:
        out.append(
            Suggestion(
                "draw_calls",
                "critical",
                f"{sample.draw_calls} draw calls per frame",
                "merge geometries and use instancing",
            )
        )
    elif sample.draw_calls > thresholds.draw_calls_warning:
        out.append(
            Suggestion(
                "draw_calls",
                "warning",
                f"{sample.draw_calls} draw calls per frame",
                "batch static meshes",
            )
        )
    return out


class PerformanceMonitor:
    def __init__(
        self,
        config: PerformanceConfig = PerformanceConfig(),
        *,
        time_fn: Callable[[], float] = time.perf_counter,
        log_suggestions: bool = False,
    ) -> None:
        self._config = config
        self._time_fn = time_fn
        self._log_suggestions = bool(log_suggestions)
        self._history: Deque[PerformanceSample] = deque(maxlen=max(1, int(config.history_size)))
        self._suggestions: List[Suggestion] = []
        self._lock = threading.Lock()
        self._interval_start = time_fn()
        self._frames = 0
        self._frame_ms_total = 0.0
        self._timed_frames = 0
        self._draw_calls = 0
        self._triangles = 0
        self._textures = 0
        self._memory_mb = 0.0

    @property
    def config(self) -> PerformanceConfig:
        return self._config

    def record_frame(
        self,
        frame_time_ms: Optional[float] = None,
        *,
        draw_calls: int = 0,
        triangles: int = 0,
        textures: int = 0,
        memory_mb: float = 0.0,
    ) -> None:
        with self._lock:
            self._frames += 1
            if frame_time_ms is not None:
                self._frame_ms_total += float(frame_time_ms)
                self._timed_frames += 1
            # Renderer counters are per-frame snapshots; keep the latest.
            self._draw_calls = int(draw_calls)
            self._triangles = int(triangles)
            self._textures = int(textures)
            self._memory_mb = float(memory_mb)

    def poll(self, now: Optional[float] = None) -> Optional[PerformanceSample]:
        """Close the interval and return a new sample once it has elapsed."""

        with self._lock:
            ts = self._time_fn() if now is None else float(now)
            elapsed = ts - self._interval_start
            if elapsed < self._config.sample_interval_s or elapsed <= 0.0:
                return None
            frames = self._frames
            fps = frames / elapsed
            if self._timed_frames:
                frame_ms = self._frame_ms_total / self._timed_frames
            elif frames:
                frame_ms = elapsed * 1000.0 / frames
            else:
                frame_ms = 0.0
            sample = PerformanceSample(
                fps=fps,
                frame_time_ms=frame_ms,
                draw_calls=self._draw_calls,
                triangles=self._triangles,
                textures=self._textures,
                memory_mb=self._memory_mb,
                timestamp=ts,
            )
            self._history.append(sample)
            self._interval_start = ts
            self._frames = 0
            self._frame_ms_total = 0.0
            self._timed_frames = 0
            suggestions = evaluate_suggestions(sample, self._config.thresholds)
            self._suggestions = suggestions
        if self._log_suggestions:
            for s in suggestions:
                logger.info("performance %s (%s): %s; %s", s.category, s.severity, s.message, s.action)
        return sample

    def latest(self) -> Optional[PerformanceSample]:
        with self._lock:
            return self._history[-1] if self._history else None

    def history(self) -> List[PerformanceSample]:
        with self._lock:
            return list(self._history)

    def suggestions(self) -> List[Suggestion]:
        with self._lock:
            return list(self._suggestions)

    def report(self) -> PerformanceReport:
        with self._lock:
            samples = list(self._history)
            suggestions = tuple(self._suggestions)
        if not samples:
            return PerformanceReport(0, 0.0, 0.0, 0.0, 0.0, "minimal", suggestions)
        fps = [s.fps for s in samples]
        avg = sum(fps) / len(fps)
        return PerformanceReport(
            samples=len(samples),
            average_fps=avg,
            min_fps=min(fps),
            max_fps=max(fps),
            average_frame_time_ms=sum(s.frame_time_ms for s in samples) / len(samples),
            recommended_quality=recommend_quality(avg),
            suggestions=suggestions,
        )

    def reset(self) -> None:
        with self._lock:
            self._history.clear()
            self._suggestions = []
            self._interval_start = self._time_fn()
            self._frames = 0
            self._frame_ms_total = 0.0
            self._timed_frames = 0


__all__ = [
    "PerformanceMonitor",
    "PerformanceReport",
    "PerformanceSample",
    "QUALITY_TIERS",
    "Suggestion",
    "evaluate_suggestions",
    "recommend_quality",
]
