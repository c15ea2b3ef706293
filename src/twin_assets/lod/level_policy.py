"""Pure helpers for level-of-detail selection.

Levels are indices into an object's handle tuple; 0 is the most detailed.
A candidate level combines the camera-distance level and the live
performance level (the coarser of the two wins), and the hysteresis gate
decides whether the object may actually switch to it this tick.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence

from twin_assets.config.models import LODConfig
from twin_assets.perf.monitor import PerformanceSample


# ---------------------------------------------------------------------------
# Data containers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LevelPolicyInputs:
    current_level: int
    n_levels: int
    distance: float
    last_committed_distance: Optional[float]
    performance_bound: bool = False
    sample: Optional[PerformanceSample] = None
    min_level: int = 0
    max_level: Optional[int] = None


@dataclass(frozen=True)
class LevelPolicyDecision:
    distance_level: int
    performance_level: int
    desired_level: int
    selected_level: int
    should_switch: bool
    reason: str
    blocked_reason: Optional[str] = None
    performance_bound: bool = False


# ---------------------------------------------------------------------------
# Level estimates
# ---------------------------------------------------------------------------


def _clamp_level(value: int, *, max_level: int) -> int:
    return max(0, min(int(value), int(max_level)))


def distance_level(distance: float, thresholds: Sequence[float], n_levels: int) -> int:
    """Number of thresholds at or below ``distance``, clamped to the coarsest level."""

    level = sum(1 for t in thresholds if float(t) <= float(distance))
    return _clamp_level(level, max_level=max(0, n_levels - 1))


def performance_level(sample: Optional[PerformanceSample], config: LODConfig, n_levels: int) -> int:
    last = max(0, n_levels - 1)
    if sample is None:
        return 0
    target = float(config.performance_target_fps)
    fps = float(sample.fps)
    if fps >= target:
        # On target: refine further only while the triangle budget allows it.
        level = sum(1 for budget in config.triangle_budgets if sample.triangles >= budget)
    elif fps >= config.fair_fps_ratio * target:
        level = config.fair_level
    elif fps >= config.poor_fps_ratio * target:
        level = config.poor_level
    else:
        level = last
    return _clamp_level(level, max_level=last)


def clamp_to_policy(level: int, n_levels: int, min_level: int = 0, max_level: Optional[int] = None) -> int:
    coarsest = n_levels - 1 if max_level is None else min(int(max_level), n_levels - 1)
    finest = max(0, min(int(min_level), coarsest))
    return max(finest, min(int(level), coarsest))


def hysteresis_boundary(current: int, candidate: int, thresholds: Sequence[float]) -> float:
    if not thresholds:
        return 0.0
    idx = min(int(current), int(candidate), len(thresholds) - 1)
    return float(thresholds[idx])


# ---------------------------------------------------------------------------
# Policy evaluation
# ---------------------------------------------------------------------------


def select_level(
    config: LODConfig,
    inputs: LevelPolicyInputs,
    *,
    strategy: Optional[str] = None,
) -> LevelPolicyDecision:
    strategy = (strategy or config.strategy).lower()
    n = max(1, int(inputs.n_levels))
    current = int(inputs.current_level)
    d_level = distance_level(inputs.distance, config.distance_thresholds, n)
    p_level = performance_level(inputs.sample, config, n)

    if strategy == "manual":
        return LevelPolicyDecision(
            distance_level=d_level,
            performance_level=p_level,
            desired_level=current,
            selected_level=current,
            should_switch=False,
            reason="manual",
            blocked_reason="manual",
            performance_bound=inputs.performance_bound,
        )
    if strategy == "distance":
        raw, bound = d_level, False
    elif strategy == "performance":
        raw, bound = p_level, True
    else:
        raw, bound = max(d_level, p_level), p_level > d_level

    desired = clamp_to_policy(raw, n, inputs.min_level, inputs.max_level)
    if desired == current:
        return LevelPolicyDecision(
            distance_level=d_level,
            performance_level=p_level,
            desired_level=desired,
            selected_level=current,
            should_switch=False,
            reason="steady",
            performance_bound=inputs.performance_bound,
        )

    if inputs.last_committed_distance is None:
        reason = "initial"
    elif bound:
        reason = "performance"
    elif inputs.performance_bound:
        # Performance stopped binding; let distance take over without waiting.
        reason = "recovery"
    else:
        moved = abs(float(inputs.distance) - float(inputs.last_committed_distance))
        margin = float(config.hysteresis) * hysteresis_boundary(current, desired, config.distance_thresholds)
        if moved <= margin:
            return LevelPolicyDecision(
                distance_level=d_level,
                performance_level=p_level,
                desired_level=desired,
                selected_level=current,
                should_switch=False,
                reason="distance",
                blocked_reason="hysteresis",
                performance_bound=inputs.performance_bound,
            )
        reason = "distance"

    return LevelPolicyDecision(
        distance_level=d_level,
        performance_level=p_level,
        desired_level=desired,
        selected_level=desired,
        should_switch=True,
        reason=reason,
        performance_bound=bound,
    )


__all__ = [
    "LevelPolicyDecision",
    "LevelPolicyInputs",
    "clamp_to_policy",
    "distance_level",
    "hysteresis_boundary",
    "performance_level",
    "select_level",
]
