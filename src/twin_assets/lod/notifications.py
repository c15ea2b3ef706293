"""LOD events and the thread-safe mailboxes that carry them."""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Generic, Literal, Optional, TypeVar, Union

ObjectId = int

T = TypeVar("T")


@dataclass(frozen=True)
class LevelChanged:
    """An object switched levels; ``reason`` names the policy that drove it."""

    object_id: ObjectId
    old_level: int
    new_level: int
    reason: str
    timestamp: Optional[float] = None


@dataclass(frozen=True)
class LevelChangeFailed:
    """A reload for ``level`` failed; the object keeps its last-good level."""

    object_id: ObjectId
    level: int
    error: BaseException
    timestamp: Optional[float] = None


LODEvent = Union[LevelChanged, LevelChangeFailed]


@dataclass(frozen=True)
class ReloadCompletion:
    """Loader-side outcome for a pending level, posted from a foreign thread."""

    kind: Literal["loaded", "failed"]
    object_id: ObjectId
    level: int
    key: str
    error: Optional[BaseException] = None


class NotificationQueue(Generic[T]):
    """Thread-safe FIFO drained by the update thread.

    With ``maxlen`` the oldest items are dropped once the queue is full and
    counted in ``dropped``.
    """

    def __init__(self, maxlen: Optional[int] = None) -> None:
        self._lock = threading.Lock()
        self._items: Deque[T] = deque(maxlen=maxlen)
        self.dropped = 0

    @property
    def maxlen(self) -> Optional[int]:
        return self._items.maxlen

    def push(self, item: T) -> None:
        with self._lock:
            if self._items.maxlen is not None and len(self._items) == self._items.maxlen:
                self.dropped += 1
            self._items.append(item)

    def discard(self, predicate: Callable[[T], bool]) -> None:
        with self._lock:
            if not self._items:
                return
            self._items = deque((item for item in self._items if not predicate(item)), maxlen=self._items.maxlen)

    def drain(self) -> list[T]:
        with self._lock:
            if not self._items:
                return []
            items = list(self._items)
            self._items.clear()
            return items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


__all__ = [
    "LODEvent",
    "LevelChangeFailed",
    "LevelChanged",
    "NotificationQueue",
    "ObjectId",
    "ReloadCompletion",
]
