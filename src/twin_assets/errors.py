"""Error taxonomy shared by the cache, loader and LOD layers."""

from __future__ import annotations

from typing import Optional


class LoadError(RuntimeError):
    """Raised when an asset cannot be fetched or decoded."""

    kind = "load"

    def __init__(self, message: str, *, uri: Optional[str] = None) -> None:
        super().__init__(message)
        self.uri = uri


class AssetNotFoundError(LoadError):
    kind = "not_found"


class AssetNetworkError(LoadError):
    kind = "network"


class AssetDecodeError(LoadError):
    kind = "decode"


class LoadAborted(LoadError):
    """Raised when a load is cancelled through its token."""

    kind = "aborted"


class CacheError(RuntimeError):
    """Base class for asset store failures."""


class KeyCollisionError(CacheError):
    """Raised when inserting a key that is already live in the store."""

    def __init__(self, key: str) -> None:
        super().__init__(f"cache key already present: {key}")
        self.key = key


__all__ = [
    "AssetDecodeError",
    "AssetNetworkError",
    "AssetNotFoundError",
    "CacheError",
    "KeyCollisionError",
    "LoadAborted",
    "LoadError",
]
