from prometheus_client.parser import text_string_to_metric_families

from twin_assets.cache.keys import AssetHandle
from twin_assets.cache.store import AssetStore
from twin_assets.loading.coordinator import LoadCoordinator
from twin_assets.loading.loader import Loader
from twin_assets.loading.sources import MemoryAssetSource
from twin_assets.lod.controller import LODController
from twin_assets.perf.metrics import Metrics
from twin_assets.perf.monitor import PerformanceMonitor
from twin_assets.perf.telemetry import TwinAssetsCollector, build_registry, render_latest


def _samples(text):
    out = {}
    for family in text_string_to_metric_families(text):
        for sample in family.samples:
            out[(sample.name, tuple(sorted(sample.labels.items())))] = sample.value
    return out


def test_collector_reads_component_stats_on_scrape():
    store = AssetStore()
    handles = [AssetHandle.for_uri(f"t_lod{i}.npz") for i in range(3)]
    for h in handles:
        store.put(h.key, h.uri, size_bytes=100)
    store.get(handles[0].key)
    store.get("missing")

    coordinator = LoadCoordinator(store, Loader(MemoryAssetSource()), max_workers=1)
    controller = LODController(store)
    controller.register_object(handles, distance=0.0)
    controller.tick()
    clock = iter([0.0, 1.0])
    monitor = PerformanceMonitor(time_fn=lambda: next(clock))
    for _ in range(42):
        monitor.record_frame(draw_calls=7)
    monitor.poll()
    metrics = Metrics()
    metrics.observe_ms("twin_assets_load_ms", 12.0)

    registry = build_registry(
        TwinAssetsCollector(
            store=store,
            coordinator=coordinator,
            controller=controller,
            monitor=monitor,
            metrics=metrics,
        )
    )
    values = _samples(render_latest(registry))

    assert values[("twin_assets_cache_entries", ())] == 3
    assert values[("twin_assets_cache_bytes", ())] == 300
    assert values[("twin_assets_cache_hit_rate", ())] == 0.5
    assert values[("twin_assets_cache_hits_total", ())] == 1
    assert values[("twin_assets_fetches_total", (("outcome", "loaded"),))] == 0
    assert values[("twin_assets_lod_objects", ())] == 1
    assert values[("twin_assets_lod_switches_total", ())] == 1
    assert values[("twin_assets_lod_level_objects", (("level", "0"),))] == 1
    assert values[("twin_assets_fps", ())] == 42
    assert values[("twin_assets_draw_calls", ())] == 7
    assert values[("twin_assets_load_ms", (("stat", "p50_ms"),))] == 12.0

    # pull-only: a later scrape sees new state
    store.clear()
    assert _samples(render_latest(registry))[("twin_assets_cache_entries", ())] == 0


def test_collector_with_nothing_attached_is_empty():
    registry = build_registry(TwinAssetsCollector())
    assert render_latest(registry) == ""
