"""Prometheus exposure of twin-assets state.

The collector is pull-only: it reads ``stats()`` from each attached
component when scraped and keeps no state of its own.
"""

from __future__ import annotations

import logging
from typing import Iterator, Optional

from prometheus_client import CollectorRegistry, generate_latest, start_http_server
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily
from prometheus_client.registry import Collector

from twin_assets.cache.store import AssetStore
from twin_assets.loading.coordinator import LoadCoordinator
from twin_assets.lod.controller import LODController
from twin_assets.perf.metrics import Metrics
from twin_assets.perf.monitor import PerformanceMonitor

logger = logging.getLogger(__name__)


class TwinAssetsCollector(Collector):
    def __init__(
        self,
        *,
        store: Optional[AssetStore] = None,
        coordinator: Optional[LoadCoordinator] = None,
        controller: Optional[LODController] = None,
        monitor: Optional[PerformanceMonitor] = None,
        metrics: Optional[Metrics] = None,
        prefix: str = "twin_assets",
    ) -> None:
        self._store = store
        self._coordinator = coordinator
        self._controller = controller
        self._monitor = monitor
        self._metrics = metrics
        self._prefix = prefix

    def _name(self, suffix: str) -> str:
        return f"{self._prefix}_{suffix}"

    def collect(self) -> Iterator[object]:
        if self._store is not None:
            yield from self._cache_families()
        if self._coordinator is not None:
            yield from self._loader_families()
        if self._controller is not None:
            yield from self._lod_families()
        if self._monitor is not None:
            yield from self._performance_families()
        if self._metrics is not None:
            yield from self._metric_families()

    def _cache_families(self) -> Iterator[object]:
        stats = self._store.stats()
        yield GaugeMetricFamily(self._name("cache_entries"), "Entries held by the asset store", value=stats.count)
        yield GaugeMetricFamily(self._name("cache_bytes"), "Bytes held by the asset store", value=stats.total_size_bytes)
        yield GaugeMetricFamily(self._name("cache_hit_rate"), "Asset store hit rate", value=stats.hit_rate)
        yield GaugeMetricFamily(
            self._name("cache_over_capacity"),
            "1 when every eviction candidate was referenced",
            value=1.0 if stats.over_capacity else 0.0,
        )
        yield CounterMetricFamily(self._name("cache_hits"), "Asset store hits", value=stats.hit_count)
        yield CounterMetricFamily(self._name("cache_misses"), "Asset store misses", value=stats.miss_count)
        yield CounterMetricFamily(self._name("cache_evictions"), "Entries evicted", value=stats.evictions)
        yield CounterMetricFamily(self._name("cache_expirations"), "Entries expired by TTL", value=stats.expirations)

    def _loader_families(self) -> Iterator[object]:
        stats = self._coordinator.stats()
        yield GaugeMetricFamily(self._name("loads_in_flight"), "Loads currently running", value=stats.in_flight)
        loads = CounterMetricFamily(self._name("fetches"), "Coordinator fetch outcomes", labels=["outcome"])
        loads.add_metric(["cache_hit"], stats.cache_hits)
        loads.add_metric(["loaded"], stats.loads_started)
        loads.add_metric(["deduplicated"], stats.deduplicated)
        loads.add_metric(["error"], stats.errors)
        loads.add_metric(["aborted"], stats.aborted)
        yield loads

    def _lod_families(self) -> Iterator[object]:
        stats = self._controller.statistics()
        yield GaugeMetricFamily(self._name("lod_objects"), "Registered LOD objects", value=stats.total_objects)
        yield GaugeMetricFamily(self._name("lod_average_level"), "Mean LOD level", value=stats.average_level)
        yield CounterMetricFamily(self._name("lod_switches"), "Committed level switches", value=stats.switches)
        yield CounterMetricFamily(self._name("lod_failures"), "Failed level changes", value=stats.failures)
        yield CounterMetricFamily(self._name("lod_events_dropped"), "LOD events dropped from a full queue", value=stats.events_dropped)
        dist = GaugeMetricFamily(self._name("lod_level_objects"), "Objects per LOD level", labels=["level"])
        for level, count in sorted(stats.level_distribution.items()):
            dist.add_metric([str(level)], count)
        yield dist

    def _performance_families(self) -> Iterator[object]:
        sample = self._monitor.latest()
        if sample is None:
            return
        yield GaugeMetricFamily(self._name("fps"), "Frames per second over the last interval", value=sample.fps)
        yield GaugeMetricFamily(self._name("frame_time_ms"), "Mean frame time", value=sample.frame_time_ms)
        yield GaugeMetricFamily(self._name("draw_calls"), "Draw calls in the last frame", value=sample.draw_calls)
        yield GaugeMetricFamily(self._name("memory_mb"), "Renderer memory use", value=sample.memory_mb)

    def _metric_families(self) -> Iterator[object]:
        snap = self._metrics.snapshot()
        for name, stats in snap["histograms"].items():
            family = GaugeMetricFamily(name, f"{name} rolling window", labels=["stat"])
            for stat in ("mean_ms", "p50_ms", "p90_ms", "p99_ms"):
                family.add_metric([stat], stats[stat])
            yield family


def build_registry(collector: TwinAssetsCollector) -> CollectorRegistry:
    registry = CollectorRegistry(auto_describe=False)
    registry.register(collector)
    return registry


def render_latest(registry: CollectorRegistry) -> str:
    return generate_latest(registry).decode("utf-8")


def serve_metrics(port: int, registry: CollectorRegistry, *, addr: str = "0.0.0.0") -> None:
    """Expose ``registry`` over HTTP on ``port`` (background thread)."""

    start_http_server(port, addr=addr, registry=registry)
    logger.info("prometheus metrics on %s:%d", addr, port)


__all__ = ["TwinAssetsCollector", "build_registry", "render_latest", "serve_metrics"]
