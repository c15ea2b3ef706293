"""Background preloading of assets likely to be needed soon.

Candidates are ordered by priority (highest first) and then by distance to
the viewer (closest first). The preloader goes through the coordinator, so a
candidate that is already loading is joined rather than loaded twice, and
failures only count against the report.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from twin_assets.cache.keys import AssetHandle
from twin_assets.errors import LoadError
from twin_assets.loading.coordinator import LoadCoordinator

logger = logging.getLogger(__name__)

PRIORITY_NAMES = {"high": 3, "normal": 2, "low": 1}
LOD_VARIANT_SUFFIXES = ("_lod1", "_lod2")

Vec3 = Tuple[float, float, float]


def priority_value(priority: Union[str, int, float]) -> float:
    if isinstance(priority, str):
        try:
            return float(PRIORITY_NAMES[priority.strip().lower()])
        except KeyError:
            raise ValueError(f"unknown preload priority: {priority!r}") from None
    return float(priority)


@dataclass(frozen=True)
class PreloadCandidate:
    handle: AssetHandle
    priority: float = 2.0
    distance: float = 0.0

    @classmethod
    def for_uri(
        cls,
        uri: str,
        *,
        priority: Union[str, int, float] = "normal",
        distance: float = 0.0,
        options: Optional[Mapping[str, Any]] = None,
    ) -> "PreloadCandidate":
        return cls(AssetHandle.for_uri(uri, options), priority_value(priority), float(distance))

    def sort_key(self) -> Tuple[float, float]:
        return (-self.priority, self.distance)


@dataclass
class PreloadReport:
    requested: int = 0
    loaded: int = 0
    skipped_cached: int = 0
    failed: int = 0
    failures: List[Tuple[str, str]] = field(default_factory=list)


@dataclass(frozen=True)
class SceneSite:
    """A building or device with a position and a base model URI.

    ``kind`` is ``"building"`` or ``"device"``; devices are preloaded over
    half the building radius and have no LOD variants.
    """

    id: str
    position: Vec3
    model_uri: str
    kind: str = "building"


def lod_variant_uri(uri: str, level: int) -> str:
    """``models/tower.npz`` level 1 -> ``models/tower_lod1.npz``."""

    if level <= 0:
        return uri
    stem, dot, ext = uri.rpartition(".")
    if not dot or "/" in ext:
        return f"{uri}_lod{level}"
    return f"{stem}_lod{level}.{ext}"


def suggest_candidates(
    viewer_position: Sequence[float],
    sites: Iterable[SceneSite],
    preload_distance: float = 200.0,
    *,
    include_variants: bool = True,
) -> List[PreloadCandidate]:
    """Candidates for every site near the viewer.

    Buildings within ``preload_distance`` are ``high`` priority inside half
    that radius and ``normal`` beyond it; their LOD variants are ``low``.
    Devices use half the radius, and ``high`` inside a quarter of it.
    """

    out: List[PreloadCandidate] = []
    vx, vy, vz = (float(c) for c in viewer_position)
    for site in sites:
        px, py, pz = site.position
        dist = math.sqrt((px - vx) ** 2 + (py - vy) ** 2 + (pz - vz) ** 2)
        radius = preload_distance / 2 if site.kind == "device" else preload_distance
        if dist > radius:
            continue
        priority = "high" if dist < radius / 2 else "normal"
        out.append(PreloadCandidate.for_uri(site.model_uri, priority=priority, distance=dist))
        if include_variants and site.kind != "device":
            for level in range(1, len(LOD_VARIANT_SUFFIXES) + 1):
                out.append(
                    PreloadCandidate.for_uri(lod_variant_uri(site.model_uri, level), priority="low", distance=dist)
                )
    out.sort(key=PreloadCandidate.sort_key)
    return out


class Preloader:
    def __init__(
        self,
        coordinator: LoadCoordinator,
        *,
        enabled: bool = True,
        max_concurrent: int = 3,
    ) -> None:
        self._coordinator = coordinator
        self._enabled = bool(enabled)
        self._max_concurrent = max(1, int(max_concurrent))
        self._queue: List[PreloadCandidate] = []
        self._task: Optional[asyncio.Task] = None
        self.last_report: Optional[PreloadReport] = None

    @property
    def enabled(self) -> bool:
        return self._enabled

    def pending(self) -> List[PreloadCandidate]:
        return list(self._queue)

    def enqueue(self, candidates: Iterable[PreloadCandidate]) -> int:
        """Add candidates, keeping the best priority seen per key. Returns new count."""

        by_key = {c.handle.key: c for c in self._queue}
        added = 0
        for cand in candidates:
            current = by_key.get(cand.handle.key)
            if current is None:
                added += 1
                by_key[cand.handle.key] = cand
            elif cand.sort_key() < current.sort_key():
                by_key[cand.handle.key] = cand
        self._queue = sorted(by_key.values(), key=PreloadCandidate.sort_key)
        return added

    def clear(self) -> None:
        self._queue.clear()

    async def run(self, max_concurrent: Optional[int] = None) -> PreloadReport:
        """Drain the queue; never raises for individual load failures."""

        report = PreloadReport()
        if not self._enabled:
            logger.debug("preloading disabled; %d candidates left queued", len(self._queue))
            self.last_report = report
            return report
        batch, self._queue = self._queue, []
        report.requested = len(batch)
        store = self._coordinator.store
        limit = asyncio.Semaphore(max(1, int(max_concurrent or self._max_concurrent)))

        async def _one(cand: PreloadCandidate) -> None:
            if store.contains(cand.handle.key):
                report.skipped_cached += 1
                return
            async with limit:
                try:
                    await self._coordinator.fetch(cand.handle)
                except LoadError as exc:
                    report.failed += 1
                    report.failures.append((cand.handle.uri, exc.kind))
                    logger.warning("preload failed uri=%s kind=%s: %s", cand.handle.uri, exc.kind, exc)
                    return
                except Exception as exc:
                    report.failed += 1
                    report.failures.append((cand.handle.uri, type(exc).__name__))
                    logger.exception("preload failed uri=%s", cand.handle.uri)
                    return
            report.loaded += 1

        await asyncio.gather(*(_one(c) for c in batch))
        logger.debug(
            "preload pass: requested=%d loaded=%d cached=%d failed=%d",
            report.requested,
            report.loaded,
            report.skipped_cached,
            report.failed,
        )
        self.last_report = report
        return report

    def start(self, max_concurrent: Optional[int] = None) -> asyncio.Task:
        """Run a preload pass in the background on the current loop."""

        if self._task is not None and not self._task.done():
            return self._task
        self._task = asyncio.get_running_loop().create_task(self.run(max_concurrent))
        return self._task

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass


__all__ = [
    "LOD_VARIANT_SUFFIXES",
    "PRIORITY_NAMES",
    "PreloadCandidate",
    "PreloadReport",
    "Preloader",
    "SceneSite",
    "lod_variant_uri",
    "suggest_candidates",
]
