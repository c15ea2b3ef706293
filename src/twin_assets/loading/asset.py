"""Decoded asset payloads.

An :class:`Asset` is a set of named meshes (geometry buffers) plus textures
bound to explicit :class:`TextureSlot` values. Slots are resolved once at
decode time, so nothing downstream scans material properties to find
textures.

The on-disk blob is a numpy ``.npz`` archive laid out as::

    mesh/<name>/position   float32 (V, 3)
    mesh/<name>/normal     float32 (V, 3)    optional
    mesh/<name>/uv         float32 (V, 2)    optional
    mesh/<name>/index      uint32  (T*3,)    optional
    texture/<slot>         uint8   (H, W, C)
    __meta__               uint8   JSON bytes optional
"""

from __future__ import annotations

import enum
import io
import json
import zipfile
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

import numpy as np

from twin_assets.errors import AssetDecodeError

_GEOMETRY_ATTRIBUTES = ("position", "normal", "uv", "index")
_META_KEY = "__meta__"


class TextureSlot(enum.Enum):
    BASE = "base"
    NORMAL = "normal"
    ROUGHNESS = "roughness"
    METALNESS = "metalness"
    EMISSIVE = "emissive"
    OCCLUSION = "occlusion"


def _frozen(arr: np.ndarray) -> np.ndarray:
    out = np.ascontiguousarray(arr)
    out.setflags(write=False)
    return out


@dataclass(frozen=True)
class MeshData:
    name: str
    position: np.ndarray
    normal: Optional[np.ndarray] = None
    uv: Optional[np.ndarray] = None
    index: Optional[np.ndarray] = None

    def buffers(self) -> Dict[str, np.ndarray]:
        out = {"position": self.position}
        for attr in ("normal", "uv", "index"):
            value = getattr(self, attr)
            if value is not None:
                out[attr] = value
        return out

    def nbytes(self) -> int:
        return int(sum(buf.nbytes for buf in self.buffers().values()))

    def triangle_count(self) -> int:
        if self.index is not None:
            return int(self.index.size // 3)
        return int(self.position.shape[0] // 3)


@dataclass(frozen=True)
class TextureData:
    slot: TextureSlot
    pixels: np.ndarray

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    def nbytes(self) -> int:
        # GPU upload is RGBA8 regardless of the stored channel count
        return self.width * self.height * 4


@dataclass(frozen=True)
class Asset:
    meshes: Tuple[MeshData, ...] = ()
    textures: Mapping[TextureSlot, TextureData] = field(default_factory=dict)
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def size_bytes(self) -> int:
        """Estimated memory footprint: geometry buffers plus texture pixels."""

        geometry = sum(mesh.nbytes() for mesh in self.meshes)
        pixels = sum(tex.nbytes() for tex in self.textures.values())
        return int(geometry + pixels)

    def triangle_count(self) -> int:
        return sum(mesh.triangle_count() for mesh in self.meshes)

    def texture(self, slot: TextureSlot) -> Optional[TextureData]:
        return self.textures.get(slot)

    def clone(self) -> "Asset":
        """Deep, writable copy for callers that need to mutate buffers."""

        meshes = tuple(
            MeshData(
                name=mesh.name,
                **{attr: np.array(buf, copy=True) for attr, buf in mesh.buffers().items()},
            )
            for mesh in self.meshes
        )
        textures = {
            slot: TextureData(slot=slot, pixels=np.array(tex.pixels, copy=True))
            for slot, tex in self.textures.items()
        }
        return Asset(meshes=meshes, textures=textures, metadata=dict(self.metadata))


def make_asset(
    meshes: Mapping[str, Mapping[str, Any]],
    textures: Optional[Mapping[TextureSlot, Any]] = None,
    metadata: Optional[Mapping[str, Any]] = None,
) -> Asset:
    """Build a read-only :class:`Asset` from plain arrays."""

    mesh_list = []
    for name, attrs in meshes.items():
        if "position" not in attrs:
            raise AssetDecodeError(f"mesh {name!r} has no position buffer")
        buffers = {
            attr: _frozen(np.asarray(attrs[attr]))
            for attr in _GEOMETRY_ATTRIBUTES
            if attrs.get(attr) is not None
        }
        mesh_list.append(MeshData(name=str(name), **buffers))
    tex_map: Dict[TextureSlot, TextureData] = {}
    for slot, pixels in (textures or {}).items():
        arr = np.asarray(pixels)
        if arr.ndim not in (2, 3):
            raise AssetDecodeError(f"texture {slot.value!r} must be 2D or 3D, got shape {arr.shape}")
        tex_map[slot] = TextureData(slot=slot, pixels=_frozen(arr))
    return Asset(meshes=tuple(mesh_list), textures=tex_map, metadata=dict(metadata or {}))


def decode_asset(blob: bytes, *, uri: Optional[str] = None) -> Asset:
    """Decode an ``.npz`` asset blob."""

    try:
        loaded = np.load(io.BytesIO(blob), allow_pickle=False)
        if not hasattr(loaded, "files"):
            raise AssetDecodeError("expected an .npz archive, got a bare array", uri=uri)
        with loaded as archive:
            arrays = {name: archive[name] for name in archive.files}
    except (zipfile.BadZipFile, ValueError, OSError, EOFError) as exc:
        raise AssetDecodeError(f"not a valid asset archive: {exc}", uri=uri) from exc

    meshes: Dict[str, Dict[str, np.ndarray]] = {}
    textures: Dict[TextureSlot, np.ndarray] = {}
    metadata: Dict[str, Any] = {}
    for name, arr in arrays.items():
        if name == _META_KEY:
            try:
                metadata = json.loads(arr.tobytes().decode("utf-8"))
            except ValueError as exc:
                raise AssetDecodeError("invalid metadata block", uri=uri) from exc
            continue
        kind, _, rest = name.partition("/")
        if kind == "mesh":
            mesh_name, _, attr = rest.rpartition("/")
            if not mesh_name or attr not in _GEOMETRY_ATTRIBUTES:
                raise AssetDecodeError(f"unexpected geometry entry {name!r}", uri=uri)
            meshes.setdefault(mesh_name, {})[attr] = arr
        elif kind == "texture":
            try:
                slot = TextureSlot(rest)
            except ValueError:
                raise AssetDecodeError(f"unknown texture slot {rest!r}", uri=uri) from None
            textures[slot] = arr
        else:
            raise AssetDecodeError(f"unexpected entry {name!r}", uri=uri)

    if not meshes:
        raise AssetDecodeError("asset contains no meshes", uri=uri)
    try:
        return make_asset(meshes, textures, metadata)
    except AssetDecodeError as exc:
        exc.uri = uri
        raise


def encode_asset(asset: Asset) -> bytes:
    """Serialize ``asset`` into the ``.npz`` layout read by :func:`decode_asset`."""

    arrays: Dict[str, np.ndarray] = {}
    for mesh in asset.meshes:
        for attr, buf in mesh.buffers().items():
            arrays[f"mesh/{mesh.name}/{attr}"] = buf
    for slot, tex in asset.textures.items():
        arrays[f"texture/{slot.value}"] = tex.pixels
    if asset.metadata:
        arrays[_META_KEY] = np.frombuffer(json.dumps(dict(asset.metadata)).encode("utf-8"), dtype=np.uint8)
    buf = io.BytesIO()
    np.savez_compressed(buf, **arrays)
    return buf.getvalue()


__all__ = [
    "Asset",
    "MeshData",
    "TextureData",
    "TextureSlot",
    "decode_asset",
    "encode_asset",
    "make_asset",
]
