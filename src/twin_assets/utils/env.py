from __future__ import annotations

from typing import Iterable, Mapping, Optional


def env_str(env: Mapping[str, str], name: str, default: Optional[str] = None) -> Optional[str]:
    v = env.get(name)
    if v is None:
        return default
    v = v.strip()
    return v if v != "" else default


def env_bool(env: Mapping[str, str], name: str, default: bool = False) -> bool:
    v = env.get(name)
    if v is None:
        return default
    s = v.strip().lower()
    if s in ("1", "true", "yes", "on"):
        return True
    if s in ("0", "false", "no", "off"):
        return False
    return default


def env_int(env: Mapping[str, str], name: str, default: int) -> int:
    v = env.get(name)
    if not v:
        return default
    try:
        return int(v, 10)
    except ValueError:
        return default


def env_choice(env: Mapping[str, str], name: str, choices: Iterable[str], default: str) -> str:
    v = env.get(name)
    if not v:
        return default
    key = v.strip().lower()
    table = {c.lower(): c for c in choices}
    return table.get(key, default)
