"""
twin-assets: asset cache and adaptive level-of-detail control for digital-twin scenes.
"""

from twin_assets.cache import AssetHandle, AssetStore
from twin_assets.config import TwinAssetsConfig, load_config
from twin_assets.errors import KeyCollisionError, LoadError

__version__ = "0.1.0"

__all__ = [
    "AssetHandle",
    "AssetStore",
    "KeyCollisionError",
    "LoadError",
    "TwinAssetsConfig",
    "__version__",
    "load_config",
]
