"""Configuration dataclasses shared across the twin-assets package."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Tuple

from twin_assets.config.logging_policy import LoggingToggles


EVICTION_STRATEGIES = ("lru", "lfu", "fifo", "size_based")
LOD_STRATEGIES = ("hybrid", "distance", "performance", "manual")


@dataclass(frozen=True)
class CacheConfig:
    """Capacity and eviction settings for the asset store."""

    max_size_bytes: int = 500 * 1024 * 1024
    max_items: int = 100
    ttl_s: float = 30 * 60.0
    eviction_strategy: str = "lru"  # "lru" | "lfu" | "fifo" | "size_based"
    preload_enabled: bool = True
    sweep_interval_s: float = 5 * 60.0


@dataclass(frozen=True)
class LoaderConfig:
    """Worker pool and streaming settings for asset loads."""

    max_workers: int = 4
    chunk_size: int = 256 * 1024
    preload_concurrency: int = 3
    preload_distance: float = 200.0


@dataclass(frozen=True)
class LODConfig:
    """Level selection thresholds for the LOD controller.

    ``distance_thresholds`` are the distances at which detail steps down one
    level: with ``(50, 100, 200, 500)`` an object at 75 units sits on level 1.
    """

    distance_thresholds: Tuple[float, ...] = (50.0, 100.0, 200.0, 500.0)
    hysteresis: float = 0.1
    performance_target_fps: float = 60.0
    fair_fps_ratio: float = 0.8
    poor_fps_ratio: float = 0.6
    fair_level: int = 2
    poor_level: int = 3
    triangle_budgets: Tuple[int, ...] = (100_000, 200_000)
    update_interval_s: float = 0.1
    strategy: str = "hybrid"  # "hybrid" | "distance" | "performance" | "manual"


@dataclass(frozen=True)
class PerformanceThresholds:
    """Advisory thresholds for the performance monitor (warning, critical)."""

    fps_warning: float = 30.0
    fps_critical: float = 15.0
    memory_warning_mb: float = 1024.0
    memory_critical_mb: float = 1536.0
    draw_calls_warning: int = 1000
    draw_calls_critical: int = 2000


@dataclass(frozen=True)
class PerformanceConfig:
    sample_interval_s: float = 1.0
    history_size: int = 100
    thresholds: PerformanceThresholds = field(default_factory=PerformanceThresholds)


@dataclass(frozen=True)
class TwinAssetsConfig:
    """Top-level configuration bundle resolved once at startup."""

    cache: CacheConfig = field(default_factory=CacheConfig)
    loader: LoaderConfig = field(default_factory=LoaderConfig)
    lod: LODConfig = field(default_factory=LODConfig)
    performance: PerformanceConfig = field(default_factory=PerformanceConfig)
    logging: LoggingToggles = field(default_factory=LoggingToggles)
    asset_root: str = "assets"
    metrics_port: int = 0


__all__ = [
    "CacheConfig",
    "EVICTION_STRATEGIES",
    "LODConfig",
    "LOD_STRATEGIES",
    "LoaderConfig",
    "PerformanceConfig",
    "PerformanceThresholds",
    "TwinAssetsConfig",
]
