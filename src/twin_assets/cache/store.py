"""Keyed store of decoded asset payloads with size accounting and eviction.

The store is the single owner of payloads. Callers receive the stored object
(read-only by convention; decoded arrays are frozen) and take explicit clones
when they need to mutate. Entries lent out to LOD objects carry a reference
count and are never chosen as eviction victims.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, Optional

from twin_assets.cache.eviction import EvictionStrategy, get_strategy
from twin_assets.config.models import CacheConfig
from twin_assets.errors import CacheError, KeyCollisionError

logger = logging.getLogger(__name__)


@dataclass
class CacheEntry:
    key: str
    payload: Any
    size_bytes: int
    created_at: float
    last_accessed_at: float
    access_count: int = 1
    ref_count: int = 0


@dataclass(frozen=True)
class CacheStats:
    count: int
    total_size_bytes: int
    hit_count: int
    miss_count: int
    hit_rate: float
    evictions: int
    expirations: int
    over_capacity: bool
    max_items: int
    max_size_bytes: int

    def to_dict(self) -> Dict[str, object]:
        return {
            "count": self.count,
            "total_size_bytes": self.total_size_bytes,
            "total_size_mb": round(self.total_size_bytes / (1024 * 1024), 2),
            "max_size_mb": round(self.max_size_bytes / (1024 * 1024), 2),
            "max_items": self.max_items,
            "hit_count": self.hit_count,
            "miss_count": self.miss_count,
            "hit_rate": self.hit_rate,
            "evictions": self.evictions,
            "expirations": self.expirations,
            "over_capacity": self.over_capacity,
        }


def _payload_size(payload: Any) -> int:
    sizer = getattr(payload, "size_bytes", None)
    if callable(sizer):
        return int(sizer())
    return 0


class AssetStore:
    """Thread-safe asset cache; every mutation runs under one lock."""

    def __init__(
        self,
        config: CacheConfig = CacheConfig(),
        *,
        time_fn: Callable[[], float] = time.monotonic,
        log_evictions: bool = False,
    ) -> None:
        self._config = config
        self._strategy: EvictionStrategy = get_strategy(config.eviction_strategy)
        self._time_fn = time_fn
        self._log_evictions = bool(log_evictions)
        self._entries: Dict[str, CacheEntry] = {}
        self._total_size = 0
        self._hits = 0
        self._misses = 0
        self._evictions = 0
        self._expirations = 0
        self._over_capacity = False
        self._lock = threading.Lock()

    @property
    def config(self) -> CacheConfig:
        return self._config

    @property
    def strategy(self) -> EvictionStrategy:
        return self._strategy

    @property
    def total_size_bytes(self) -> int:
        with self._lock:
            return self._total_size

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    # ---- lookups ---------------------------------------------------------

    def get(self, key: str) -> Optional[Any]:
        """Return the payload for ``key`` and record the access, or None."""

        with self._lock:
            now = self._time_fn()
            entry = self._entries.get(key)
            if entry is not None and entry.ref_count == 0 and self._is_expired(entry, now):
                self._remove_locked(key)
                self._expirations += 1
                entry = None
            if entry is None:
                self._misses += 1
                return None
            entry.last_accessed_at = now
            entry.access_count += 1
            self._hits += 1
            return entry.payload

    def peek(self, key: str) -> Optional[Any]:
        """Return the payload without touching access stats."""

        with self._lock:
            entry = self._entries.get(key)
            return entry.payload if entry is not None else None

    def contains(self, key: str) -> bool:
        return key in self

    def entry(self, key: str) -> Optional[CacheEntry]:
        """Return a copy of the bookkeeping record for ``key``."""

        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            return CacheEntry(**vars(entry))

    # ---- mutations -------------------------------------------------------

    def put(self, key: str, payload: Any, size_bytes: Optional[int] = None, *, replace: bool = False) -> None:
        """Insert ``payload`` under ``key``, evicting first when at capacity."""

        size = int(size_bytes) if size_bytes is not None else _payload_size(payload)
        if size < 0:
            raise CacheError(f"negative size for {key}: {size}")
        with self._lock:
            now = self._time_fn()
            existing = self._entries.get(key)
            if existing is not None:
                if not replace:
                    raise KeyCollisionError(key)
                refs = existing.ref_count
                self._remove_locked(key)
            else:
                refs = 0
            if self._needs_eviction_locked(size):
                self._evict_locked(size)
            self._entries[key] = CacheEntry(
                key=key,
                payload=payload,
                size_bytes=size,
                created_at=now,
                last_accessed_at=now,
                ref_count=refs,
            )
            self._total_size += size
            self._over_capacity = self._exceeds_limits_locked()

    def remove(self, key: str) -> bool:
        with self._lock:
            if key not in self._entries:
                return False
            self._remove_locked(key)
            self._over_capacity = self._exceeds_limits_locked()
            return True

    def clear(self) -> int:
        """Drop every entry (including referenced ones); returns the count."""

        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            self._total_size = 0
            self._over_capacity = False
            return count

    def sweep_expired(self, now: Optional[float] = None) -> list[str]:
        """Remove unreferenced entries older than the configured TTL."""

        with self._lock:
            ts = self._time_fn() if now is None else float(now)
            expired = [
                key
                for key, entry in self._entries.items()
                if entry.ref_count == 0 and self._is_expired(entry, ts)
            ]
            for key in expired:
                self._remove_locked(key)
            self._expirations += len(expired)
            if expired:
                self._over_capacity = self._exceeds_limits_locked()
        if expired and self._log_evictions:
            logger.info("ttl sweep removed %d entries", len(expired))
        return expired

    # ---- leases ----------------------------------------------------------

    def acquire(self, key: str) -> bool:
        """Pin ``key`` against eviction; returns False when it is not cached."""

        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return False
            entry.ref_count += 1
            return True

    def release(self, key: str) -> None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return
            if entry.ref_count <= 0:
                logger.debug("release without matching acquire: key=%s", key)
                return
            entry.ref_count -= 1

    def ref_count(self, key: str) -> int:
        with self._lock:
            entry = self._entries.get(key)
            return entry.ref_count if entry is not None else 0

    # ---- stats -----------------------------------------------------------

    def stats(self) -> CacheStats:
        with self._lock:
            lookups = self._hits + self._misses
            return CacheStats(
                count=len(self._entries),
                total_size_bytes=self._total_size,
                hit_count=self._hits,
                miss_count=self._misses,
                hit_rate=(self._hits / lookups) if lookups else 0.0,
                evictions=self._evictions,
                expirations=self._expirations,
                over_capacity=self._over_capacity,
                max_items=self._config.max_items,
                max_size_bytes=self._config.max_size_bytes,
            )

    def __iter__(self) -> Iterator[str]:
        return iter(self.keys())

    # ---- internals (lock held) -------------------------------------------

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        ttl = self._config.ttl_s
        return ttl > 0 and (now - entry.created_at) > ttl

    def _exceeds_limits_locked(self) -> bool:
        return (
            len(self._entries) > self._config.max_items
            or self._total_size > self._config.max_size_bytes
        )

    def _needs_eviction_locked(self, incoming_size: int) -> bool:
        return (
            len(self._entries) >= self._config.max_items
            or self._total_size + incoming_size > self._config.max_size_bytes
        )

    def _remove_locked(self, key: str) -> CacheEntry:
        entry = self._entries.pop(key)
        self._total_size -= entry.size_bytes
        return entry

    def _evict_locked(self, incoming_size: int) -> None:
        victims, skipped = self._strategy.select(list(self._entries.values()))
        for victim in victims:
            self._remove_locked(victim.key)
        self._evictions += len(victims)
        if self._log_evictions and victims:
            logger.info(
                "evicted %d entries (strategy=%s skipped_referenced=%d total=%d bytes)",
                len(victims),
                self._strategy.name,
                skipped,
                self._total_size,
            )
        if not victims and self._entries:
            logger.warning(
                "asset store over capacity: all %d candidates referenced (strategy=%s incoming=%d bytes)",
                len(self._entries),
                self._strategy.name,
                incoming_size,
            )


__all__ = ["AssetStore", "CacheEntry", "CacheStats"]
