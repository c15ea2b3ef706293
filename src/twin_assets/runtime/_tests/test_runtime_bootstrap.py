import json
import time

import numpy as np

from twin_assets.cache.keys import AssetHandle
from twin_assets.config.models import CacheConfig, TwinAssetsConfig
from twin_assets.loading.asset import encode_asset, make_asset
from twin_assets.loading.sources import MemoryAssetSource
from twin_assets.runtime.bootstrap import build_runtime


def _blob(rows: int) -> bytes:
    return encode_asset(make_asset({"m": {"position": np.zeros((rows, 3), dtype=np.float32)}}))


def test_reload_crosses_from_update_thread_to_loop_thread_and_back():
    uris = [f"tower_lod{i}.npz" for i in range(3)]
    source = MemoryAssetSource({uri: _blob(30 - 9 * i) for i, uri in enumerate(uris)})
    runtime = build_runtime(TwinAssetsConfig(cache=CacheConfig(ttl_s=0)), source=source)
    try:
        fut = runtime.coordinator.schedule(AssetHandle.for_uri(uris[0]))
        assert fut.result(timeout=5.0).triangle_count() == 10

        controller = runtime.controller
        oid = controller.register_object(uris, distance=10.0)
        obj = controller.get_object(oid)
        deadline = time.monotonic() + 5.0
        while obj.current_level != 0 and time.monotonic() < deadline:
            controller.tick()
            time.sleep(0.01)
        assert obj.current_level == 0

        controller.update_distance(oid, 75.0)
        deadline = time.monotonic() + 5.0
        while obj.current_level != 1 and time.monotonic() < deadline:
            controller.tick()
            time.sleep(0.01)
        assert obj.current_level == 1
        assert runtime.store.ref_count(AssetHandle.for_uri(uris[1]).key) == 1

        stats = runtime.stats()
        json.dumps(stats, default=str)
        assert stats["loader"]["loads_started"] >= 2
        assert stats["lod"]["total_objects"] == 1
    finally:
        runtime.close()
    assert runtime.loop_thread.thread is None


def test_registry_exposes_runtime_state():
    runtime = build_runtime(source=MemoryAssetSource(), start_loop_thread=False)
    assert runtime.loop_thread is None
    assert runtime.registry.get_sample_value("twin_assets_cache_entries") == 0.0
    assert runtime.registry.get_sample_value("twin_assets_lod_objects") == 0.0
