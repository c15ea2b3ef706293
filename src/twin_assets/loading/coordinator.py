"""Single-flight load coordination.

``LoadCoordinator.fetch`` returns cached assets immediately, attaches to an
in-flight load when one exists for the same key, and otherwise runs exactly
one :class:`Loader` invocation on a bounded worker pool. The result (or the
error) is shared by every caller waiting on that key.

The in-flight map lives on the event loop thread. Other threads (the render
update thread in particular) enter through :meth:`LoadCoordinator.schedule`,
which hands the fetch to the loop and returns a ``concurrent.futures.Future``.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import functools
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from twin_assets.cache.keys import AssetHandle
from twin_assets.cache.store import AssetStore
from twin_assets.errors import KeyCollisionError, LoadAborted, LoadError
from twin_assets.loading.asset import Asset
from twin_assets.loading.loader import CancelToken, Loader, ProgressFn
from twin_assets.perf.metrics import Metrics

logger = logging.getLogger(__name__)


@dataclass
class LoadRequest:
    """In-flight state for one key."""

    handle: AssetHandle
    future: "asyncio.Future[Asset]"
    token: CancelToken = field(default_factory=CancelToken)
    listeners: List[ProgressFn] = field(default_factory=list)
    waiters: int = 1
    started_at: float = field(default_factory=time.perf_counter)

    @property
    def key(self) -> str:
        return self.handle.key


@dataclass(frozen=True)
class CoordinatorStats:
    fetches: int
    cache_hits: int
    loads_started: int
    deduplicated: int
    errors: int
    aborted: int
    in_flight: int

    def to_dict(self) -> Dict[str, int]:
        return {
            "fetches": self.fetches,
            "cache_hits": self.cache_hits,
            "loads_started": self.loads_started,
            "deduplicated": self.deduplicated,
            "errors": self.errors,
            "aborted": self.aborted,
            "in_flight": self.in_flight,
        }


def _mark_retrieved(future: "asyncio.Future[Asset]") -> None:
    # Waiters may all have gone away; keep asyncio from reporting the error as unhandled.
    if not future.cancelled():
        future.exception()


class LoadCoordinator:
    def __init__(
        self,
        store: AssetStore,
        loader: Loader,
        *,
        max_workers: int = 4,
        executor: Optional[concurrent.futures.Executor] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
        metrics: Optional[Metrics] = None,
        log_loads: bool = False,
    ) -> None:
        self._store = store
        self._loader = loader
        self._owns_executor = executor is None
        self._executor = executor or concurrent.futures.ThreadPoolExecutor(
            max_workers=max(1, int(max_workers)),
            thread_name_prefix="twin-assets-load",
        )
        self._loop = loop
        self._metrics = metrics
        self._log_loads = bool(log_loads)
        self._inflight: Dict[str, LoadRequest] = {}
        self._tasks: set[asyncio.Task] = set()
        self._fetches = 0
        self._hits = 0
        self._loads = 0
        self._dedup = 0
        self._errors = 0
        self._aborted = 0
        self._closed = False

    @property
    def store(self) -> AssetStore:
        return self._store

    @property
    def loop(self) -> Optional[asyncio.AbstractEventLoop]:
        return self._loop

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    # ---- public API ------------------------------------------------------

    async def fetch(
        self,
        handle: AssetHandle,
        *,
        clone: bool = False,
        on_progress: Optional[ProgressFn] = None,
    ) -> Asset:
        """Return the asset for ``handle``, loading it at most once per key."""

        if self._closed:
            raise RuntimeError("LoadCoordinator is closed")
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        self._fetches += 1

        cached = self._store.get(handle.key)
        if cached is not None:
            self._hits += 1
            return cached.clone() if clone else cached

        request = self._inflight.get(handle.key)
        if request is None:
            request = self._start(handle)
        else:
            request.waiters += 1
            self._dedup += 1
            if self._metrics is not None:
                self._metrics.inc("twin_assets_fetch_deduplicated_total")
        if on_progress is not None:
            request.listeners.append(on_progress)

        # Shielded so one caller giving up does not cancel the shared load.
        asset = await asyncio.shield(request.future)
        return asset.clone() if clone else asset

    async def fetch_uri(
        self,
        uri: str,
        options: Optional[Mapping[str, Any]] = None,
        *,
        clone: bool = False,
        on_progress: Optional[ProgressFn] = None,
    ) -> Asset:
        return await self.fetch(AssetHandle.for_uri(uri, options), clone=clone, on_progress=on_progress)

    def schedule(self, handle: AssetHandle) -> "concurrent.futures.Future[Asset]":
        """Thread-safe: submit ``fetch(handle)`` to the coordinator's loop."""

        if self._loop is None:
            raise RuntimeError("LoadCoordinator is not bound to an event loop")
        return asyncio.run_coroutine_threadsafe(self.fetch(handle), self._loop)

    def in_flight(self, key: str) -> bool:
        return key in self._inflight

    def cancel(self, key: str) -> bool:
        """Abort the in-flight load for ``key``; every waiter sees LoadAborted."""

        request = self._inflight.get(key)
        if request is None:
            return False
        request.token.cancel()
        return True

    def stats(self) -> CoordinatorStats:
        return CoordinatorStats(
            fetches=self._fetches,
            cache_hits=self._hits,
            loads_started=self._loads,
            deduplicated=self._dedup,
            errors=self._errors,
            aborted=self._aborted,
            in_flight=len(self._inflight),
        )

    async def close(self) -> None:
        """Abort pending loads and shut the worker pool down."""

        self._closed = True
        for request in list(self._inflight.values()):
            request.token.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self._owns_executor:
            self._executor.shutdown(wait=False)

    # ---- internals -------------------------------------------------------

    def _start(self, handle: AssetHandle) -> LoadRequest:
        loop = asyncio.get_running_loop()
        future: "asyncio.Future[Asset]" = loop.create_future()
        future.add_done_callback(_mark_retrieved)
        request = LoadRequest(handle=handle, future=future)
        self._inflight[handle.key] = request
        self._loads += 1
        if self._metrics is not None:
            self._metrics.inc("twin_assets_fetch_loads_total")
        task = loop.create_task(self._run(request))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return request

    def _dispatch_progress(self, request: LoadRequest, fraction: float) -> None:
        for listener in list(request.listeners):
            try:
                listener(fraction)
            except Exception:
                logger.debug("progress listener failed for %s", request.key, exc_info=True)

    async def _run(self, request: LoadRequest) -> None:
        loop = asyncio.get_running_loop()
        handle = request.handle

        def progress(fraction: float) -> None:
            loop.call_soon_threadsafe(self._dispatch_progress, request, fraction)

        try:
            asset = await loop.run_in_executor(
                self._executor,
                functools.partial(
                    self._loader.load,
                    handle.uri,
                    handle.options,
                    progress=progress,
                    token=request.token,
                ),
            )
            # Last await point before the commit; a late cancel must not insert.
            request.token.raise_if_cancelled(handle.uri, "commit")
            asset = self._commit(handle, asset)
        except (LoadError, asyncio.CancelledError) as exc:
            self._inflight.pop(handle.key, None)
            self._fail(request, exc)
            if isinstance(exc, asyncio.CancelledError):
                raise
            return
        except Exception as exc:
            self._inflight.pop(handle.key, None)
            logger.exception("unexpected failure loading %s", handle.uri)
            self._fail(request, exc)
            return

        self._inflight.pop(handle.key, None)
        if self._log_loads:
            logger.info(
                "fetch complete key=%s waiters=%d in %.1f ms",
                handle.key,
                request.waiters,
                (time.perf_counter() - request.started_at) * 1000.0,
            )
        if not request.future.done():
            request.future.set_result(asset)

    def _commit(self, handle: AssetHandle, asset: Asset) -> Asset:
        try:
            self._store.put(handle.key, asset)
        except KeyCollisionError:
            existing = self._store.peek(handle.key)
            if existing is not None:
                logger.debug("key %s inserted concurrently; keeping stored copy", handle.key)
                return existing
            self._store.put(handle.key, asset, replace=True)
        return asset

    def _fail(self, request: LoadRequest, exc: BaseException) -> None:
        if isinstance(exc, asyncio.CancelledError):
            exc = LoadAborted(f"load of {request.handle.uri} cancelled", uri=request.handle.uri)
        if isinstance(exc, LoadAborted):
            self._aborted += 1
        else:
            self._errors += 1
        logger.warning("load failed uri=%s waiters=%d: %s", request.handle.uri, request.waiters, exc)
        if not request.future.done():
            request.future.set_exception(exc)


__all__ = ["CoordinatorStats", "LoadCoordinator", "LoadRequest"]
