"""A dedicated asyncio loop thread for hosts without an event loop of their own."""

from __future__ import annotations

import asyncio
import concurrent.futures
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Coroutine, Optional

logger = logging.getLogger(__name__)


@dataclass
class LoopThread:
    """Own an event loop running on a daemon thread."""

    name: str = "twin-assets-loop"
    loop: Optional[asyncio.AbstractEventLoop] = None
    thread: Optional[threading.Thread] = None
    ready_event: threading.Event = field(default_factory=threading.Event)

    def start(self, timeout: float = 5.0) -> asyncio.AbstractEventLoop:
        if self.thread and self.thread.is_alive():
            raise RuntimeError("loop thread already running")
        self.ready_event.clear()
        self.loop = asyncio.new_event_loop()

        def _run() -> None:
            asyncio.set_event_loop(self.loop)
            self.loop.call_soon(self.ready_event.set)
            try:
                self.loop.run_forever()
            finally:
                self.loop.close()

        self.thread = threading.Thread(target=_run, name=self.name, daemon=True)
        self.thread.start()
        if not self.ready_event.wait(timeout):
            raise RuntimeError("event loop thread failed to start")
        logger.debug("loop thread %s started", self.name)
        return self.loop

    def submit(self, coro: Coroutine[Any, Any, Any]) -> "concurrent.futures.Future[Any]":
        if self.loop is None or not self.loop.is_running():
            coro.close()
            raise RuntimeError("loop thread is not running")
        return asyncio.run_coroutine_threadsafe(coro, self.loop)

    def stop(self, timeout: float = 2.0) -> None:
        loop, thread = self.loop, self.thread
        if loop is None or thread is None:
            return
        if loop.is_running():
            loop.call_soon_threadsafe(loop.stop)
        thread.join(timeout=timeout)
        if thread.is_alive():
            logger.warning("loop thread %s did not stop within %.1fs", self.name, timeout)
        self.thread = None


__all__ = ["LoopThread"]
