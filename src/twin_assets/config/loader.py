"""Resolve :class:`TwinAssetsConfig` from the environment.

The core never reads ``os.environ``; applications call :func:`load_config`
once at startup and pass the resulting dataclasses down.

Environment keys consulted:
- TWIN_ASSETS_ASSET_ROOT, TWIN_ASSETS_METRICS_PORT
- TWIN_ASSETS_CACHE_MAX_MB, TWIN_ASSETS_CACHE_MAX_ITEMS, TWIN_ASSETS_CACHE_STRATEGY
- TWIN_ASSETS_CACHE_CONFIG (JSON cache overrides)
- TWIN_ASSETS_LOADER_CONFIG (JSON worker pool / preload overrides)
- TWIN_ASSETS_LOD_CONFIG (JSON thresholds, hysteresis, target fps)
- TWIN_ASSETS_PERF_CONFIG (JSON sampling interval and advisory thresholds)
- TWIN_ASSETS_LOG_* (see :mod:`twin_assets.config.logging_policy`)
"""

from __future__ import annotations

import json
import logging
import os
from typing import Mapping, Optional, Sequence, Tuple

from twin_assets.config.logging_policy import load_logging_toggles
from twin_assets.config.models import (
    EVICTION_STRATEGIES,
    LOD_STRATEGIES,
    CacheConfig,
    LoaderConfig,
    LODConfig,
    PerformanceConfig,
    PerformanceThresholds,
    TwinAssetsConfig,
)
from twin_assets.utils.env import env_choice, env_int, env_str

logger = logging.getLogger(__name__)


# ---- Helpers -----------------------------------------------------------------


def _cfg_bool(value: object, default: bool) -> bool:
    if value is None:
        return bool(default)
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        val = value.strip().lower()
        if val in {"1", "true", "yes", "on"}:
            return True
        if val in {"0", "false", "no", "off", ""}:
            return False
    return bool(default)


def _cfg_int(value: object, default: int) -> int:
    if value is None:
        return int(default)
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return int(default)
    return int(default)


def _cfg_float(value: object, default: float) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        return float(int(value))
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            return float(default)
    return float(default)


def _cfg_choice(value: object, choices: Sequence[str], default: str) -> str:
    if not isinstance(value, str):
        return default
    key = value.strip().lower()
    if key in choices:
        return key
    logger.warning("unknown option %r (expected one of %s); using %s", value, ", ".join(choices), default)
    return default


def _cfg_float_tuple(value: object, default: Tuple[float, ...]) -> Tuple[float, ...]:
    if not isinstance(value, (list, tuple)):
        return default
    try:
        values = tuple(float(v) for v in value)
    except (TypeError, ValueError):
        return default
    if any(b < a for a, b in zip(values, values[1:])):
        logger.warning("thresholds must be ascending; ignoring %r", value)
        return default
    return values


def _load_json_config(env: Mapping[str, str], name: str) -> dict[str, object]:
    raw = env.get(name)
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except ValueError:
        logger.warning("Failed to parse %s; ignoring", name, exc_info=True)
        return {}
    if isinstance(data, dict):
        return data
    logger.warning("%s must be a JSON object; ignoring", name)
    return {}


# ---- Sections ----------------------------------------------------------------


def cache_config_from_mapping(data: Mapping[str, object], base: CacheConfig = CacheConfig()) -> CacheConfig:
    max_size = base.max_size_bytes
    if "max_size_mb" in data:
        max_size = int(_cfg_float(data.get("max_size_mb"), base.max_size_bytes / (1024 * 1024)) * 1024 * 1024)
    max_size = _cfg_int(data.get("max_size_bytes"), max_size)
    return CacheConfig(
        max_size_bytes=max(1, max_size),
        max_items=max(1, _cfg_int(data.get("max_items"), base.max_items)),
        ttl_s=max(0.0, _cfg_float(data.get("ttl_s"), base.ttl_s)),
        eviction_strategy=_cfg_choice(data.get("eviction_strategy"), EVICTION_STRATEGIES, base.eviction_strategy),
        preload_enabled=_cfg_bool(data.get("preload_enabled"), base.preload_enabled),
        sweep_interval_s=max(0.0, _cfg_float(data.get("sweep_interval_s"), base.sweep_interval_s)),
    )


def loader_config_from_mapping(data: Mapping[str, object], base: LoaderConfig = LoaderConfig()) -> LoaderConfig:
    return LoaderConfig(
        max_workers=max(1, _cfg_int(data.get("max_workers"), base.max_workers)),
        chunk_size=max(1, _cfg_int(data.get("chunk_size"), base.chunk_size)),
        preload_concurrency=max(1, _cfg_int(data.get("preload_concurrency"), base.preload_concurrency)),
        preload_distance=max(0.0, _cfg_float(data.get("preload_distance"), base.preload_distance)),
    )


def lod_config_from_mapping(data: Mapping[str, object], base: LODConfig = LODConfig()) -> LODConfig:
    budgets_raw = data.get("triangle_budgets")
    budgets = base.triangle_budgets
    if isinstance(budgets_raw, (list, tuple)):
        budgets = tuple(int(v) for v in _cfg_float_tuple(budgets_raw, tuple(float(b) for b in base.triangle_budgets)))
    return LODConfig(
        distance_thresholds=_cfg_float_tuple(data.get("distance_thresholds"), base.distance_thresholds),
        hysteresis=max(0.0, _cfg_float(data.get("hysteresis"), base.hysteresis)),
        performance_target_fps=max(1.0, _cfg_float(data.get("performance_target_fps"), base.performance_target_fps)),
        fair_fps_ratio=_cfg_float(data.get("fair_fps_ratio"), base.fair_fps_ratio),
        poor_fps_ratio=_cfg_float(data.get("poor_fps_ratio"), base.poor_fps_ratio),
        fair_level=max(0, _cfg_int(data.get("fair_level"), base.fair_level)),
        poor_level=max(0, _cfg_int(data.get("poor_level"), base.poor_level)),
        triangle_budgets=budgets,
        update_interval_s=max(0.0, _cfg_float(data.get("update_interval_s"), base.update_interval_s)),
        strategy=_cfg_choice(data.get("strategy"), LOD_STRATEGIES, base.strategy),
    )


def performance_config_from_mapping(
    data: Mapping[str, object],
    base: PerformanceConfig = PerformanceConfig(),
) -> PerformanceConfig:
    thr_raw = data.get("thresholds")
    thr = thr_raw if isinstance(thr_raw, Mapping) else {}
    bt = base.thresholds
    thresholds = PerformanceThresholds(
        fps_warning=_cfg_float(thr.get("fps_warning"), bt.fps_warning),
        fps_critical=_cfg_float(thr.get("fps_critical"), bt.fps_critical),
        memory_warning_mb=_cfg_float(thr.get("memory_warning_mb"), bt.memory_warning_mb),
        memory_critical_mb=_cfg_float(thr.get("memory_critical_mb"), bt.memory_critical_mb),
        draw_calls_warning=_cfg_int(thr.get("draw_calls_warning"), bt.draw_calls_warning),
        draw_calls_critical=_cfg_int(thr.get("draw_calls_critical"), bt.draw_calls_critical),
    )
    return PerformanceConfig(
        sample_interval_s=max(0.01, _cfg_float(data.get("sample_interval_s"), base.sample_interval_s)),
        history_size=max(1, _cfg_int(data.get("history_size"), base.history_size)),
        thresholds=thresholds,
    )


def load_config(env: Optional[Mapping[str, str]] = None) -> TwinAssetsConfig:
    """Build a :class:`TwinAssetsConfig` by reading the environment once.

    Side-effect free: the process environment is not mutated.
    """

    env = env if env is not None else os.environ

    cache_data = _load_json_config(env, "TWIN_ASSETS_CACHE_CONFIG")
    base_cache = CacheConfig(
        max_size_bytes=env_int(env, "TWIN_ASSETS_CACHE_MAX_MB", CacheConfig.max_size_bytes // (1024 * 1024)) * 1024 * 1024,
        max_items=env_int(env, "TWIN_ASSETS_CACHE_MAX_ITEMS", CacheConfig.max_items),
        eviction_strategy=env_choice(env, "TWIN_ASSETS_CACHE_STRATEGY", EVICTION_STRATEGIES, "lru"),
    )
    cache = cache_config_from_mapping(cache_data, base_cache)
    loader = loader_config_from_mapping(_load_json_config(env, "TWIN_ASSETS_LOADER_CONFIG"))
    lod = lod_config_from_mapping(_load_json_config(env, "TWIN_ASSETS_LOD_CONFIG"))
    performance = performance_config_from_mapping(_load_json_config(env, "TWIN_ASSETS_PERF_CONFIG"))

    return TwinAssetsConfig(
        cache=cache,
        loader=loader,
        lod=lod,
        performance=performance,
        logging=load_logging_toggles(env),
        asset_root=env_str(env, "TWIN_ASSETS_ASSET_ROOT", "assets") or "assets",
        metrics_port=max(0, env_int(env, "TWIN_ASSETS_METRICS_PORT", 0)),
    )


__all__ = [
    "cache_config_from_mapping",
    "load_config",
    "loader_config_from_mapping",
    "lod_config_from_mapping",
    "performance_config_from_mapping",
]
