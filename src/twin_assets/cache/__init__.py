"""Asset cache: keys, eviction strategies and the store."""

from .eviction import EvictionStrategy, get_strategy
from .keys import AssetHandle, make_cache_key
from .store import AssetStore, CacheEntry, CacheStats

__all__ = [
    "AssetHandle",
    "AssetStore",
    "CacheEntry",
    "CacheStats",
    "EvictionStrategy",
    "get_strategy",
    "make_cache_key",
]
