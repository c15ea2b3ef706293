"""Asset payloads, sources, the blocking loader and its async coordination."""

from .asset import Asset, MeshData, TextureData, TextureSlot, decode_asset, encode_asset, make_asset
from .coordinator import CoordinatorStats, LoadCoordinator
from .loader import CancelToken, Loader
from .preloader import PreloadCandidate, Preloader, PreloadReport, SceneSite, suggest_candidates
from .sources import AssetSource, FileAssetSource, MemoryAssetSource, SourceStream

__all__ = [
    "Asset",
    "AssetSource",
    "CancelToken",
    "CoordinatorStats",
    "FileAssetSource",
    "LoadCoordinator",
    "Loader",
    "MemoryAssetSource",
    "MeshData",
    "PreloadCandidate",
    "PreloadReport",
    "Preloader",
    "SceneSite",
    "SourceStream",
    "TextureData",
    "TextureSlot",
    "decode_asset",
    "encode_asset",
    "make_asset",
    "suggest_candidates",
]
