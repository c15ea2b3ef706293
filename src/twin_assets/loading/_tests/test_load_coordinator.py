import asyncio
import threading

import numpy as np
import pytest

from twin_assets.cache.keys import AssetHandle
from twin_assets.cache.store import AssetStore
from twin_assets.errors import AssetNotFoundError, LoadAborted
from twin_assets.loading.asset import encode_asset, make_asset
from twin_assets.loading.coordinator import LoadCoordinator
from twin_assets.loading.loader import Loader
from twin_assets.loading.sources import MemoryAssetSource


def _blob(rows: int = 12) -> bytes:
    return encode_asset(make_asset({"m": {"position": np.zeros((rows, 3), dtype=np.float32)}}))


class _GatedSource:
    """Memory source whose ``open`` blocks until the test releases the gate."""

    def __init__(self, blobs, *, chunk_size: int = 64) -> None:
        self.gate = threading.Event()
        self.inner = MemoryAssetSource(blobs, chunk_size=chunk_size)
        self._lock = threading.Lock()
        self.opens = 0

    def open(self, uri):
        with self._lock:
            self.opens += 1
        assert self.gate.wait(5.0), "gate never released"
        return self.inner.open(uri)


def _coordinator(source, store=None):
    return LoadCoordinator(store if store is not None else AssetStore(), Loader(source), max_workers=4)


def test_concurrent_fetches_share_one_load():
    source = _GatedSource({"a.npz": _blob()})
    coord = _coordinator(source)
    handle = AssetHandle.for_uri("a.npz")

    async def _run():
        tasks = [asyncio.ensure_future(coord.fetch(handle)) for _ in range(8)]
        await asyncio.sleep(0)
        assert coord.in_flight(handle.key)
        source.gate.set()
        results = await asyncio.gather(*tasks)
        await coord.close()
        return results

    results = asyncio.run(_run())
    assert source.opens == 1
    assert all(r is results[0] for r in results)
    stats = coord.stats()
    assert stats.loads_started == 1
    assert stats.deduplicated == 7
    assert stats.in_flight == 0
    assert coord.store.peek(handle.key) is results[0]


def test_concurrent_fetches_share_the_same_error():
    source = _GatedSource({})
    coord = _coordinator(source)
    handle = AssetHandle.for_uri("missing.npz")

    async def _run():
        tasks = [asyncio.ensure_future(coord.fetch(handle)) for _ in range(5)]
        await asyncio.sleep(0)
        source.gate.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)
        await coord.close()
        return results

    results = asyncio.run(_run())
    assert source.opens == 1
    assert all(isinstance(r, AssetNotFoundError) for r in results)
    assert all(r is results[0] for r in results)
    assert not coord.in_flight(handle.key)
    assert coord.stats().errors == 1


def test_failed_load_is_not_retried_but_next_fetch_loads_again():
    source = _GatedSource({})
    source.gate.set()
    coord = _coordinator(source)
    handle = AssetHandle.for_uri("late.npz")

    async def _run():
        with pytest.raises(AssetNotFoundError):
            await coord.fetch(handle)
        assert source.opens == 1
        source.inner.add("late.npz", _blob())
        asset = await coord.fetch(handle)
        await coord.close()
        return asset

    asset = asyncio.run(_run())
    assert asset.triangle_count() == 4
    assert source.opens == 2


def test_cached_fetch_skips_loader_and_clone_is_independent():
    source = _GatedSource({"a.npz": _blob()})
    source.gate.set()
    coord = _coordinator(source)

    async def _run():
        first = await coord.fetch_uri("a.npz")
        second = await coord.fetch_uri("a.npz")
        copy = await coord.fetch_uri("a.npz", clone=True)
        await coord.close()
        return first, second, copy

    first, second, copy = asyncio.run(_run())
    assert first is second
    assert copy is not first
    assert copy.meshes[0].position.flags.writeable
    assert source.opens == 1
    assert coord.stats().cache_hits == 2


def test_cancel_aborts_every_waiter_and_inserts_nothing():
    source = _GatedSource({"a.npz": _blob(300)}, chunk_size=8)
    coord = _coordinator(source)
    handle = AssetHandle.for_uri("a.npz")

    async def _run():
        tasks = [asyncio.ensure_future(coord.fetch(handle)) for _ in range(3)]
        await asyncio.sleep(0)
        assert coord.cancel(handle.key) is True
        source.gate.set()
        results = await asyncio.gather(*tasks, return_exceptions=True)
        await coord.close()
        return results

    results = asyncio.run(_run())
    assert all(isinstance(r, LoadAborted) for r in results)
    assert handle.key not in coord.store
    assert coord.stats().aborted == 1
    assert coord.cancel(handle.key) is False


def test_one_waiter_giving_up_does_not_cancel_the_shared_load():
    source = _GatedSource({"a.npz": _blob()})
    coord = _coordinator(source)
    handle = AssetHandle.for_uri("a.npz")

    async def _run():
        impatient = asyncio.ensure_future(coord.fetch(handle))
        patient = asyncio.ensure_future(coord.fetch(handle))
        await asyncio.sleep(0)
        impatient.cancel()
        source.gate.set()
        asset = await patient
        with pytest.raises(asyncio.CancelledError):
            await impatient
        await coord.close()
        return asset

    asset = asyncio.run(_run())
    assert asset.triangle_count() == 4
    assert handle.key in coord.store


def test_progress_listeners_see_completion():
    source = _GatedSource({"a.npz": _blob(200)}, chunk_size=32)
    source.gate.set()
    coord = _coordinator(source)
    seen = []

    async def _run():
        await coord.fetch(AssetHandle.for_uri("a.npz"), on_progress=seen.append)
        await coord.close()

    asyncio.run(_run())
    assert seen
    assert seen[-1] == 1.0


def test_concurrent_insert_keeps_the_stored_payload():
    source = _GatedSource({"a.npz": _blob()})
    store = AssetStore()
    coord = _coordinator(source, store)
    handle = AssetHandle.for_uri("a.npz")

    async def _run():
        task = asyncio.ensure_future(coord.fetch(handle))
        await asyncio.sleep(0)
        store.put(handle.key, "already-there", size_bytes=1)
        source.gate.set()
        result = await task
        await coord.close()
        return result

    assert asyncio.run(_run()) == "already-there"
    assert store.peek(handle.key) == "already-there"
    assert len(store) == 1


def test_schedule_requires_a_bound_loop():
    coord = _coordinator(MemoryAssetSource())
    with pytest.raises(RuntimeError, match="not bound"):
        coord.schedule(AssetHandle.for_uri("a.npz"))


def test_fetch_after_close_is_rejected():
    coord = _coordinator(MemoryAssetSource())

    async def _run():
        await coord.close()
        with pytest.raises(RuntimeError, match="closed"):
            await coord.fetch_uri("a.npz")

    asyncio.run(_run())
