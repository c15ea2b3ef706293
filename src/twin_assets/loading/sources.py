"""Asset sources: where raw blobs come from.

A source turns a URI into a :class:`SourceStream` of byte chunks. Transport
is deliberately thin; failures are mapped onto the loader error taxonomy.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Mapping, MutableMapping, Optional, Protocol, Union

from twin_assets.errors import AssetNetworkError, AssetNotFoundError

logger = logging.getLogger(__name__)

_FILE_SCHEME = "file://"


@dataclass
class SourceStream:
    """Chunked body of one asset; ``total_bytes`` is None when unknown."""

    total_bytes: Optional[int]
    chunks: Iterator[bytes]


class AssetSource(Protocol):
    def open(self, uri: str) -> SourceStream: ...


def _iter_bytes(data: bytes, chunk_size: int) -> Iterator[bytes]:
    for offset in range(0, len(data), chunk_size):
        yield data[offset : offset + chunk_size]


class MemoryAssetSource:
    """Serve blobs from an in-memory mapping (fixtures, embedded assets)."""

    def __init__(self, blobs: Optional[Mapping[str, bytes]] = None, *, chunk_size: int = 64 * 1024) -> None:
        self._blobs: MutableMapping[str, bytes] = dict(blobs or {})
        self._chunk_size = max(1, int(chunk_size))
        self._lock = threading.Lock()
        self.open_count = 0

    def add(self, uri: str, blob: bytes) -> None:
        with self._lock:
            self._blobs[uri] = bytes(blob)

    def discard(self, uri: str) -> None:
        with self._lock:
            self._blobs.pop(uri, None)

    def open(self, uri: str) -> SourceStream:
        with self._lock:
            self.open_count += 1
            blob = self._blobs.get(uri)
        if blob is None:
            raise AssetNotFoundError(f"no asset registered for {uri}", uri=uri)
        return SourceStream(total_bytes=len(blob), chunks=_iter_bytes(blob, self._chunk_size))


class FileAssetSource:
    """Serve blobs from files below ``root``; accepts plain paths and file:// URIs."""

    def __init__(self, root: Union[str, Path], *, chunk_size: int = 256 * 1024) -> None:
        self._root = Path(root).resolve()
        self._chunk_size = max(1, int(chunk_size))

    @property
    def root(self) -> Path:
        return self._root

    def resolve(self, uri: str) -> Path:
        raw = uri[len(_FILE_SCHEME):] if uri.startswith(_FILE_SCHEME) else uri
        path = Path(raw)
        if not path.is_absolute():
            path = self._root / raw.lstrip("/")
        try:
            path = path.resolve()
        except ValueError as exc:
            raise AssetNotFoundError(f"invalid asset uri {uri!r}: {exc}", uri=uri) from None
        try:
            path.relative_to(self._root)
        except ValueError:
            raise AssetNotFoundError(f"{uri} resolves outside asset root", uri=uri) from None
        return path

    def open(self, uri: str) -> SourceStream:
        path = self.resolve(uri)
        try:
            total = path.stat().st_size
            fh = path.open("rb")
        except (FileNotFoundError, ValueError):
            raise AssetNotFoundError(f"asset not found: {uri}", uri=uri) from None
        except OSError as exc:
            raise AssetNetworkError(f"cannot open {uri}: {exc}", uri=uri) from exc
        return SourceStream(total_bytes=total, chunks=self._read_chunks(fh, uri))

    def _read_chunks(self, fh, uri: str) -> Iterator[bytes]:
        with fh:
            while True:
                try:
                    chunk = fh.read(self._chunk_size)
                except OSError as exc:
                    raise AssetNetworkError(f"read failed for {uri}: {exc}", uri=uri) from exc
                if not chunk:
                    return
                yield chunk


__all__ = ["AssetSource", "FileAssetSource", "MemoryAssetSource", "SourceStream"]
