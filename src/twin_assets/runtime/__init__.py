"""Update-thread driving and component wiring."""

from .bootstrap import TwinAssetsRuntime, build_runtime
from .loop_thread import LoopThread
from .scheduling import IntervalTimer
from .update_loop import FrameOutcome, UpdateLoop

__all__ = [
    "FrameOutcome",
    "IntervalTimer",
    "LoopThread",
    "TwinAssetsRuntime",
    "UpdateLoop",
    "build_runtime",
]
