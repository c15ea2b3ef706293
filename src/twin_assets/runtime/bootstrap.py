"""Wire the cache, loader, LOD and performance components together."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from prometheus_client import CollectorRegistry

from twin_assets.cache.store import AssetStore
from twin_assets.config.models import TwinAssetsConfig
from twin_assets.loading.coordinator import LoadCoordinator
from twin_assets.loading.loader import Loader
from twin_assets.loading.preloader import Preloader
from twin_assets.loading.sources import AssetSource, FileAssetSource
from twin_assets.lod.controller import LODController
from twin_assets.perf.metrics import Metrics
from twin_assets.perf.monitor import PerformanceMonitor
from twin_assets.perf.telemetry import TwinAssetsCollector, build_registry, serve_metrics
from twin_assets.runtime.loop_thread import LoopThread
from twin_assets.runtime.update_loop import UpdateLoop

logger = logging.getLogger(__name__)


@dataclass
class TwinAssetsRuntime:
    config: TwinAssetsConfig
    metrics: Metrics
    store: AssetStore
    loader: Loader
    coordinator: LoadCoordinator
    preloader: Preloader
    monitor: PerformanceMonitor
    controller: LODController
    update_loop: UpdateLoop
    registry: CollectorRegistry
    loop_thread: Optional[LoopThread] = None

    def stats(self) -> Dict[str, object]:
        """Read-only snapshot of every component's counters."""

        return {
            "cache": self.store.stats().to_dict(),
            "loader": self.coordinator.stats().to_dict(),
            "lod": self.controller.statistics().to_dict(),
            "performance": self.monitor.report().to_dict(),
            "metrics": self.metrics.snapshot(),
        }

    async def aclose(self) -> None:
        await self.coordinator.close()

    def close(self, timeout: float = 5.0) -> None:
        """Shut down when the runtime owns its loop thread."""

        if self.loop_thread is None:
            raise RuntimeError("runtime runs on an external loop; await aclose() there")
        self.loop_thread.submit(self.coordinator.close()).result(timeout)
        self.loop_thread.stop()


def build_runtime(
    config: Optional[TwinAssetsConfig] = None,
    *,
    source: Optional[AssetSource] = None,
    loop: Optional[asyncio.AbstractEventLoop] = None,
    start_loop_thread: bool = True,
    time_fn: Callable[[], float] = time.perf_counter,
) -> TwinAssetsRuntime:
    """Build a runtime from ``config``.

    With no ``loop`` the coordinator gets its own loop thread (unless
    ``start_loop_thread`` is False, in which case it binds to whichever loop
    first awaits ``fetch``).
    """

    config = config or TwinAssetsConfig()
    toggles = config.logging
    metrics = Metrics(time_fn=time.time)
    if source is None:
        source = FileAssetSource(config.asset_root, chunk_size=config.loader.chunk_size)
    store = AssetStore(config.cache, time_fn=time_fn, log_evictions=toggles.log_evictions)
    loader = Loader(source, metrics=metrics, log_loads=toggles.log_loads)

    loop_thread: Optional[LoopThread] = None
    if loop is None and start_loop_thread:
        loop_thread = LoopThread()
        loop = loop_thread.start()
    coordinator = LoadCoordinator(
        store,
        loader,
        max_workers=config.loader.max_workers,
        loop=loop,
        metrics=metrics,
        log_loads=toggles.log_loads,
    )
    preloader = Preloader(
        coordinator,
        enabled=config.cache.preload_enabled,
        max_concurrent=config.loader.preload_concurrency,
    )
    monitor = PerformanceMonitor(config.performance, time_fn=time_fn, log_suggestions=toggles.log_suggestions)
    controller = LODController(
        store,
        coordinator,
        config.lod,
        sample_fn=monitor.latest,
        time_fn=time_fn,
        log_lod_eval=toggles.log_lod_eval,
    )
    update_loop = UpdateLoop(
        monitor,
        controller,
        store,
        lod_interval_s=config.lod.update_interval_s,
        sweep_interval_s=config.cache.sweep_interval_s,
        time_fn=time_fn,
    )
    registry = build_registry(
        TwinAssetsCollector(
            store=store,
            coordinator=coordinator,
            controller=controller,
            monitor=monitor,
            metrics=metrics,
        )
    )
    if config.metrics_port > 0:
        serve_metrics(config.metrics_port, registry)
    logger.debug(
        "runtime ready: cache=%d MiB/%d items strategy=%s lod=%s",
        config.cache.max_size_bytes // (1024 * 1024),
        config.cache.max_items,
        config.cache.eviction_strategy,
        config.lod.strategy,
    )
    return TwinAssetsRuntime(
        config=config,
        metrics=metrics,
        store=store,
        loader=loader,
        coordinator=coordinator,
        preloader=preloader,
        monitor=monitor,
        controller=controller,
        update_loop=update_loop,
        registry=registry,
        loop_thread=loop_thread,
    )


__all__ = ["TwinAssetsRuntime", "build_runtime"]
