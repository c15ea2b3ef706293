"""Cache keys and asset handles."""

from __future__ import annotations

import base64
import json
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional


def canonical_options(options: Optional[Mapping[str, Any]]) -> str:
    """Return a stable JSON encoding of load options (sorted keys, compact)."""

    return json.dumps(dict(options or {}), sort_keys=True, separators=(",", ":"), default=str)


def make_cache_key(uri: str, options: Optional[Mapping[str, Any]] = None) -> str:
    """Derive the store key for ``uri`` loaded with ``options``.

    The options blob is base64url encoded so the trailing ``:`` segment never
    contains another colon; splitting on the last colon recovers both parts,
    which makes distinct (uri, options) pairs map to distinct keys.
    """

    blob = base64.urlsafe_b64encode(canonical_options(options).encode("utf-8")).decode("ascii")
    return f"{uri}:{blob}"


def split_cache_key(key: str) -> tuple[str, dict[str, Any]]:
    uri, _, blob = key.rpartition(":")
    options = json.loads(base64.urlsafe_b64decode(blob.encode("ascii")).decode("utf-8"))
    return uri, options


@dataclass(frozen=True)
class AssetHandle:
    """Lookup key for a cached asset.

    Holding a handle does not guarantee that the asset is loaded.
    """

    key: str
    uri: str
    options: Mapping[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @classmethod
    def for_uri(cls, uri: str, options: Optional[Mapping[str, Any]] = None) -> "AssetHandle":
        opts = dict(options or {})
        return cls(key=make_cache_key(uri, opts), uri=uri, options=opts)


__all__ = ["AssetHandle", "canonical_options", "make_cache_key", "split_cache_key"]
