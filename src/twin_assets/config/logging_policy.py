"""Centralised logging toggles for the twin-assets stack.

All env var parsing happens here so the cache, loader and LOD layers can
depend on a structured policy rather than scattered ``os.getenv`` calls.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from twin_assets.utils.env import env_bool, env_str


@dataclass(frozen=True)
class LoggingToggles:
    """Verbose info-level logging switches."""

    log_evictions: bool = False
    log_loads: bool = False
    log_lod_eval: bool = False
    log_suggestions: bool = False
    level: str = "INFO"


def load_logging_toggles(env: Optional[Mapping[str, str]] = None) -> LoggingToggles:
    """Read logging flags from the provided environment mapping."""

    if env is None:
        env = os.environ

    debug_all = env_bool(env, "TWIN_ASSETS_DEBUG", False)
    level = (env_str(env, "TWIN_ASSETS_LOG_LEVEL", "DEBUG" if debug_all else "INFO") or "INFO").upper()
    return LoggingToggles(
        log_evictions=env_bool(env, "TWIN_ASSETS_LOG_EVICTIONS", debug_all),
        log_loads=env_bool(env, "TWIN_ASSETS_LOG_LOADS", debug_all),
        log_lod_eval=env_bool(env, "TWIN_ASSETS_LOG_LOD_EVAL", debug_all),
        log_suggestions=env_bool(env, "TWIN_ASSETS_LOG_SUGGESTIONS", debug_all),
        level=level,
    )


__all__ = ["LoggingToggles", "load_logging_toggles"]
