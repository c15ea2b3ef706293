"""Shared configuration dataclasses for twin-assets."""

from .loader import load_config
from .logging_policy import LoggingToggles, load_logging_toggles
from .models import (
    CacheConfig,
    LoaderConfig,
    LODConfig,
    PerformanceConfig,
    PerformanceThresholds,
    TwinAssetsConfig,
)

__all__ = [
    "CacheConfig",
    "LODConfig",
    "LoaderConfig",
    "LoggingToggles",
    "PerformanceConfig",
    "PerformanceThresholds",
    "TwinAssetsConfig",
    "load_config",
    "load_logging_toggles",
]
