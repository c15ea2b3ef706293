"""Command line entry point: ``twin-assets warm <dir>``."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Sequence

from twin_assets.config import load_config, load_logging_toggles
from twin_assets.config.models import EVICTION_STRATEGIES
from twin_assets.loading.preloader import PreloadCandidate
from twin_assets.loading.sources import FileAssetSource
from twin_assets.runtime.bootstrap import build_runtime

logger = logging.getLogger("twin_assets")


def _asset_uris(root: Path, pattern: str) -> list[str]:
    return sorted(str(p.relative_to(root)) for p in root.rglob(pattern) if p.is_file())


async def _warm(args: argparse.Namespace) -> int:
    root = Path(args.directory).expanduser().resolve()
    if not root.is_dir():
        logger.error("not a directory: %s", root)
        return 2
    cfg = load_config()
    cache_cfg = cfg.cache
    if args.max_mb is not None:
        cache_cfg = dataclasses.replace(cache_cfg, max_size_bytes=int(args.max_mb) * 1024 * 1024)
    if args.strategy is not None:
        cache_cfg = dataclasses.replace(cache_cfg, eviction_strategy=args.strategy)
    cfg = dataclasses.replace(cfg, cache=cache_cfg, asset_root=str(root))

    runtime = build_runtime(
        cfg,
        source=FileAssetSource(root, chunk_size=cfg.loader.chunk_size),
        loop=asyncio.get_running_loop(),
    )
    uris = _asset_uris(root, args.pattern)
    logger.info("warming %d assets from %s", len(uris), root)
    runtime.preloader.enqueue(PreloadCandidate.for_uri(uri) for uri in uris)
    try:
        report = await runtime.preloader.run(args.concurrency or cfg.loader.preload_concurrency)
    finally:
        await runtime.aclose()

    out = runtime.stats()
    out["preload"] = dataclasses.asdict(report)
    json.dump(out, sys.stdout, indent=2, default=str)
    sys.stdout.write("\n")
    return 1 if report.failed else 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="twin-assets", description="twin-assets cache tooling")
    parser.add_argument('--debug', action='store_true', help='Enable DEBUG logging for twin_assets')
    sub = parser.add_subparsers(dest="command", required=True)

    warm = sub.add_parser("warm", help="Load every asset below a directory and print cache stats as JSON")
    warm.add_argument("directory")
    warm.add_argument("--pattern", default="*.npz", help="Glob for asset files (default: *.npz)")
    warm.add_argument("--max-mb", type=int, default=None, help="Cache size limit in MiB")
    warm.add_argument("--strategy", choices=EVICTION_STRATEGIES, default=None)
    warm.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Concurrent loads (default: loader.preload_concurrency from config)",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format='[%(asctime)s] %(name)s - %(levelname)s - %(message)s')
    level = "DEBUG" if args.debug else load_logging_toggles().level
    logging.getLogger("twin_assets").setLevel(level)

    if args.command == "warm":
        return asyncio.run(_warm(args))
    parser.error(f"unknown command {args.command!r}")
    return 2


if __name__ == "__main__":
    sys.exit(main())
