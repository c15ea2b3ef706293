import numpy as np
import pytest

from twin_assets.errors import AssetDecodeError, AssetNetworkError, AssetNotFoundError, LoadAborted
from twin_assets.loading.asset import encode_asset, make_asset
from twin_assets.loading.loader import CancelToken, Loader
from twin_assets.loading.sources import MemoryAssetSource, SourceStream
from twin_assets.perf.metrics import Metrics


def _blob() -> bytes:
    return encode_asset(make_asset({"m": {"position": np.zeros((30, 3), dtype=np.float32)}}))


class _FlakySource:
    def open(self, uri):
        def chunks():
            yield b"partial"
            raise ConnectionResetError("peer went away")

        return SourceStream(total_bytes=100, chunks=chunks())


def test_load_reports_monotonic_progress_ending_at_one():
    blob = _blob()
    source = MemoryAssetSource({"m.npz": blob}, chunk_size=max(1, len(blob) // 5))
    seen = []
    asset = Loader(source).load("m.npz", progress=seen.append)
    assert asset.triangle_count() == 10
    assert seen[-1] == 1.0
    assert seen == sorted(seen)
    assert all(0.0 <= f <= 1.0 for f in seen)
    assert len(seen) >= 3


def test_cancel_before_start_aborts_without_reading():
    source = MemoryAssetSource({"m.npz": _blob()})
    token = CancelToken()
    token.cancel()
    with pytest.raises(LoadAborted) as info:
        Loader(source).load("m.npz", token=token)
    assert info.value.kind == "aborted"
    assert source.open_count == 0


def test_cancel_mid_transfer_stops_at_next_chunk():
    blob = _blob()
    source = MemoryAssetSource({"m.npz": blob}, chunk_size=16)
    token = CancelToken()
    calls = []

    def progress(fraction):
        calls.append(fraction)
        if len(calls) == 2:
            token.cancel()

    with pytest.raises(LoadAborted, match="read"):
        Loader(source).load("m.npz", progress=progress, token=token)
    assert len(calls) == 2


def test_error_kinds_and_metrics():
    metrics = Metrics()
    loader = Loader(MemoryAssetSource({"bad.npz": b"garbage"}), metrics=metrics)
    with pytest.raises(AssetNotFoundError):
        loader.load("missing.npz")
    with pytest.raises(AssetDecodeError):
        loader.load("bad.npz")
    assert metrics.counter("twin_assets_load_errors_total") == 2
    assert metrics.counter("twin_assets_load_not_found_total") == 1
    assert metrics.counter("twin_assets_load_decode_total") == 1


def test_transfer_failure_is_a_network_error():
    with pytest.raises(AssetNetworkError, match="peer went away"):
        Loader(_FlakySource()).load("remote.npz")


def test_foreign_decoder_failure_is_wrapped():
    def decoder(blob, *, uri=None):
        raise KeyError("vertex stream")

    loader = Loader(MemoryAssetSource({"a": b"x"}), decoder=decoder)
    with pytest.raises(AssetDecodeError) as info:
        loader.load("a")
    assert info.value.uri == "a"


def test_successful_load_records_latency():
    metrics = Metrics()
    Loader(MemoryAssetSource({"m.npz": _blob()}), metrics=metrics).load("m.npz")
    snap = metrics.snapshot()
    assert snap["counters"]["twin_assets_loads_total"] == 1
    assert snap["histograms"]["twin_assets_load_ms"]["count"] == 1
