"""Victim selection strategies for the asset store."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Iterable, Protocol, Sequence


class EvictionCandidate(Protocol):
    key: str
    size_bytes: int
    created_at: float
    last_accessed_at: float
    access_count: int
    ref_count: int


@dataclass(frozen=True)
class EvictionStrategy:
    """Rank entries worst-first and take a fraction of the current count."""

    name: str
    fraction: float
    sort_key: Callable[[EvictionCandidate], float]
    reverse: bool = False

    def target_count(self, count: int) -> int:
        if count <= 0:
            return 0
        return max(1, math.ceil(count * self.fraction))

    def rank(self, entries: Iterable[EvictionCandidate]) -> list[EvictionCandidate]:
        return sorted(entries, key=self.sort_key, reverse=self.reverse)

    def select(self, entries: Sequence[EvictionCandidate]) -> tuple[list[EvictionCandidate], int]:
        """Return ``(victims, skipped_referenced)``.

        Referenced entries are passed over and the next-ranked unreferenced
        entry takes their slot, so the victim set may come up short only when
        too few unreferenced entries exist.
        """

        want = self.target_count(len(entries))
        victims: list[EvictionCandidate] = []
        skipped = 0
        for entry in self.rank(entries):
            if len(victims) >= want:
                break
            if entry.ref_count > 0:
                skipped += 1
                continue
            victims.append(entry)
        return victims, skipped


LRU = EvictionStrategy("lru", 0.2, lambda e: e.last_accessed_at)
LFU = EvictionStrategy("lfu", 0.2, lambda e: e.access_count)
FIFO = EvictionStrategy("fifo", 0.2, lambda e: e.created_at)
SIZE_BASED = EvictionStrategy("size_based", 0.1, lambda e: e.size_bytes, reverse=True)

_STRATEGIES = {s.name: s for s in (LRU, LFU, FIFO, SIZE_BASED)}


def get_strategy(name: str) -> EvictionStrategy:
    try:
        return _STRATEGIES[name.strip().lower()]
    except KeyError:
        raise ValueError(f"unknown eviction strategy: {name!r}") from None


__all__ = ["EvictionCandidate", "EvictionStrategy", "FIFO", "LFU", "LRU", "SIZE_BASED", "get_strategy"]
