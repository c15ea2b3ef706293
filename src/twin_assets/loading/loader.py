"""Blocking asset loader: fetch a blob from a source and decode it.

Runs on a worker thread. A :class:`CancelToken` is checked between I/O
phases (open, every chunk, decode) so a cancelled load stops at the next
boundary and raises :class:`LoadAborted`.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Mapping, Optional

from twin_assets.errors import AssetDecodeError, AssetNetworkError, AssetNotFoundError, LoadAborted, LoadError
from twin_assets.loading.asset import Asset, decode_asset
from twin_assets.loading.sources import AssetSource
from twin_assets.perf.metrics import Metrics

logger = logging.getLogger(__name__)

ProgressFn = Callable[[float], None]
DecodeFn = Callable[..., Asset]

# Share of the progress range reported while bytes arrive; decode fills the rest.
_READ_SHARE = 0.9


class CancelToken:
    """Thread-safe one-shot cancellation flag."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, uri: str, phase: str) -> None:
        if self._event.is_set():
            raise LoadAborted(f"load of {uri} cancelled during {phase}", uri=uri)


class Loader:
    def __init__(
        self,
        source: AssetSource,
        *,
        decoder: DecodeFn = decode_asset,
        metrics: Optional[Metrics] = None,
        log_loads: bool = False,
    ) -> None:
        self._source = source
        self._decoder = decoder
        self._metrics = metrics
        self._log_loads = bool(log_loads)

    @property
    def source(self) -> AssetSource:
        return self._source

    def load(
        self,
        uri: str,
        options: Optional[Mapping[str, Any]] = None,
        *,
        progress: Optional[ProgressFn] = None,
        token: Optional[CancelToken] = None,
    ) -> Asset:
        token = token or CancelToken()
        start = time.perf_counter()
        try:
            asset = self._load(uri, progress, token)
        except LoadError as exc:
            self._record("twin_assets_load_errors_total")
            self._record(f"twin_assets_load_{exc.kind}_total")
            raise
        elapsed_ms = (time.perf_counter() - start) * 1000.0
        if self._metrics is not None:
            self._metrics.observe_ms("twin_assets_load_ms", elapsed_ms)
        self._record("twin_assets_loads_total")
        if self._log_loads:
            logger.info(
                "loaded %s options=%s bytes=%d triangles=%d in %.1f ms",
                uri,
                dict(options or {}),
                asset.size_bytes(),
                asset.triangle_count(),
                elapsed_ms,
            )
        return asset

    def _load(self, uri: str, progress: Optional[ProgressFn], token: CancelToken) -> Asset:
        token.raise_if_cancelled(uri, "open")
        try:
            stream = self._source.open(uri)
        except LoadError:
            raise
        except OSError as exc:
            raise AssetNetworkError(f"cannot open {uri}: {exc}", uri=uri) from exc
        except ValueError as exc:
            raise AssetNotFoundError(f"invalid asset uri {uri!r}: {exc}", uri=uri) from exc

        parts: list[bytes] = []
        received = 0
        total = stream.total_bytes
        try:
            for chunk in stream.chunks:
                token.raise_if_cancelled(uri, "read")
                parts.append(chunk)
                received += len(chunk)
                if progress is not None and total:
                    self._report(progress, _READ_SHARE * min(1.0, received / total))
        except LoadError:
            raise
        except OSError as exc:
            raise AssetNetworkError(f"transfer failed for {uri}: {exc}", uri=uri) from exc
        finally:
            close = getattr(stream.chunks, "close", None)
            if callable(close):
                close()

        token.raise_if_cancelled(uri, "decode")
        try:
            asset = self._decoder(b"".join(parts), uri=uri)
        except LoadError:
            raise
        except Exception as exc:
            raise AssetDecodeError(f"decoder failed for {uri}: {exc}", uri=uri) from exc
        token.raise_if_cancelled(uri, "commit")
        if progress is not None:
            self._report(progress, 1.0)
        return asset

    def _report(self, progress: ProgressFn, fraction: float) -> None:
        try:
            progress(fraction)
        except Exception:
            logger.debug("progress callback failed", exc_info=True)

    def _record(self, name: str) -> None:
        if self._metrics is not None:
            self._metrics.inc(name)


__all__ = ["CancelToken", "Loader", "ProgressFn"]
