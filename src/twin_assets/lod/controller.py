"""Per-object level-of-detail control.

The controller runs on the update thread. Each :meth:`LODController.tick`
drains reload completions posted by the load coordinator, then evaluates
every enabled object through :func:`select_level`. A switch commits only
when the target level's asset is already in the store; otherwise the
controller schedules a reload, marks the level pending and holds the
current level until the completion arrives on a later tick.

Committed levels are leased in the store (``acquire``/``release``) so the
asset an object is showing is never evicted underneath it.
"""

from __future__ import annotations

import concurrent.futures
import itertools
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Set, Union

from twin_assets.cache.keys import AssetHandle
from twin_assets.cache.store import AssetStore
from twin_assets.config.models import LOD_STRATEGIES, LODConfig
from twin_assets.lod.level_policy import LevelPolicyDecision, LevelPolicyInputs, clamp_to_policy, select_level
from twin_assets.lod.notifications import (
    LevelChanged,
    LevelChangeFailed,
    LODEvent,
    NotificationQueue,
    ObjectId,
    ReloadCompletion,
)
from twin_assets.perf.monitor import PerformanceSample

logger = logging.getLogger(__name__)

LevelSpec = Union[AssetHandle, str]
LevelsBuilder = Union[Sequence[LevelSpec], Callable[[], Sequence[LevelSpec]]]
EventCallback = Callable[[LODEvent], None]


class ReloadScheduler(Protocol):
    def schedule(self, handle: AssetHandle) -> "concurrent.futures.Future": ...


@dataclass(frozen=True)
class LODPolicy:
    """Per-object bounds: ``min_level`` is the finest and ``max_level`` the coarsest allowed."""

    min_level: int = 0
    max_level: Optional[int] = None
    enabled: bool = True


@dataclass(frozen=True)
class PendingSwitch:
    level: int
    key: str
    reason: str


@dataclass
class LODObject:
    id: ObjectId
    levels: tuple[AssetHandle, ...]
    current_level: int
    distance: float = 0.0
    policy: LODPolicy = field(default_factory=LODPolicy)
    last_switch_at: Optional[float] = None
    last_committed_distance: Optional[float] = None
    performance_bound: bool = False
    pending: Optional[PendingSwitch] = None
    failed_levels: Set[int] = field(default_factory=set)
    pinned: bool = False
    leased_key: Optional[str] = None
    on_level_changed: Optional[EventCallback] = None

    @property
    def n_levels(self) -> int:
        return len(self.levels)

    @property
    def handle(self) -> AssetHandle:
        return self.levels[self.current_level]

    @property
    def pending_level(self) -> Optional[int]:
        return self.pending.level if self.pending is not None else None


@dataclass(frozen=True)
class LODStatistics:
    total_objects: int
    active_objects: int
    switches: int
    failures: int
    pending: int
    level_distribution: Dict[int, int]
    average_level: float
    strategy: str
    events_dropped: int = 0

    def to_dict(self) -> Dict[str, object]:
        return {
            "total_objects": self.total_objects,
            "active_objects": self.active_objects,
            "switches": self.switches,
            "failures": self.failures,
            "pending": self.pending,
            "level_distribution": {str(k): v for k, v in sorted(self.level_distribution.items())},
            "average_level": self.average_level,
            "strategy": self.strategy,
            "events_dropped": self.events_dropped,
        }


def _as_handles(levels: LevelsBuilder) -> tuple[AssetHandle, ...]:
    items = levels() if callable(levels) else levels
    handles = tuple(item if isinstance(item, AssetHandle) else AssetHandle.for_uri(str(item)) for item in items)
    if not handles:
        raise ValueError("an LOD object needs at least one level")
    return handles


class LODController:
    def __init__(
        self,
        store: AssetStore,
        scheduler: Optional[ReloadScheduler] = None,
        config: LODConfig = LODConfig(),
        *,
        sample_fn: Optional[Callable[[], Optional[PerformanceSample]]] = None,
        on_event: Optional[EventCallback] = None,
        time_fn: Callable[[], float] = time.perf_counter,
        log_lod_eval: bool = False,
        event_backlog: Optional[int] = 1024,
    ) -> None:
        if config.strategy not in LOD_STRATEGIES:
            raise ValueError(f"unknown LOD strategy: {config.strategy!r}")
        self._store = store
        self._scheduler = scheduler
        self._config = config
        self._strategy = config.strategy
        self._sample_fn = sample_fn
        self._on_event = on_event
        self._time_fn = time_fn
        self._log_lod_eval = bool(log_lod_eval)
        self._objects: Dict[ObjectId, LODObject] = {}
        self._ids = itertools.count(1)
        self._completions: NotificationQueue[ReloadCompletion] = NotificationQueue()
        # Oldest events are dropped when nobody drains the queue.
        self.events: NotificationQueue[LODEvent] = NotificationQueue(maxlen=event_backlog)
        self._switches = 0
        self._failures = 0

    @property
    def config(self) -> LODConfig:
        return self._config

    @property
    def strategy(self) -> str:
        return self._strategy

    def set_strategy(self, strategy: str) -> None:
        name = strategy.strip().lower()
        if name not in LOD_STRATEGIES:
            raise ValueError(f"unknown LOD strategy: {strategy!r}")
        self._strategy = name

    # ---- registration ----------------------------------------------------

    def register_object(
        self,
        levels_builder: LevelsBuilder,
        policy: Optional[LODPolicy] = None,
        *,
        distance: float = 0.0,
        initial_level: Optional[int] = None,
        on_level_changed: Optional[EventCallback] = None,
    ) -> ObjectId:
        """Register an object; it starts on its coarsest allowed level unless told otherwise."""

        handles = _as_handles(levels_builder)
        policy = policy or LODPolicy()
        n = len(handles)
        start = n - 1 if initial_level is None else int(initial_level)
        start = clamp_to_policy(start, n, policy.min_level, policy.max_level)
        obj = LODObject(
            id=next(self._ids),
            levels=handles,
            current_level=start,
            distance=float(distance),
            policy=policy,
            on_level_changed=on_level_changed,
        )
        if self._store.acquire(obj.handle.key):
            obj.leased_key = obj.handle.key
        self._objects[obj.id] = obj
        return obj.id

    def unregister_object(self, object_id: ObjectId) -> bool:
        obj = self._objects.pop(object_id, None)
        if obj is None:
            return False
        if obj.leased_key is not None:
            self._store.release(obj.leased_key)
            obj.leased_key = None
        self._completions.discard(lambda c: c.object_id == object_id)
        return True

    def get_object(self, object_id: ObjectId) -> Optional[LODObject]:
        return self._objects.get(object_id)

    def objects(self) -> List[LODObject]:
        return list(self._objects.values())

    def update_distance(self, object_id: ObjectId, distance: float) -> None:
        self._objects[object_id].distance = float(distance)

    def set_policy(self, object_id: ObjectId, policy: LODPolicy) -> None:
        self._objects[object_id].policy = policy

    def clear_failures(self, object_id: ObjectId) -> None:
        self._objects[object_id].failed_levels.clear()

    def set_level(self, object_id: ObjectId, level: int, *, pin: bool = True) -> bool:
        """Move an object to ``level`` explicitly.

        Returns True when the switch committed right away and False when the
        asset had to be reloaded first (the switch then lands on a later
        tick). With ``pin`` the object is excluded from automatic updates
        until :meth:`unpin`.
        """

        obj = self._objects[object_id]
        if not 0 <= int(level) < obj.n_levels:
            raise ValueError(f"level {level} out of range for object {object_id} ({obj.n_levels} levels)")
        obj.pinned = bool(pin)
        obj.failed_levels.discard(int(level))
        if int(level) == obj.current_level:
            return True
        return self._switch(obj, int(level), "manual", performance_bound=False)

    def unpin(self, object_id: ObjectId) -> None:
        """Return an object to automatic control; the next tick re-evaluates it from scratch."""

        obj = self._objects[object_id]
        obj.pinned = False
        obj.last_committed_distance = None

    # ---- update ----------------------------------------------------------

    def tick(self, now: Optional[float] = None, sample: Optional[PerformanceSample] = None) -> List[LODEvent]:
        """Apply reload outcomes, then evaluate every automatic object once."""

        ts = self._time_fn() if now is None else float(now)
        emitted: List[LODEvent] = []
        for completion in self._completions.drain():
            self._apply_completion(completion, ts, emitted)

        if self._strategy == "manual":
            return emitted
        if sample is None and self._sample_fn is not None:
            sample = self._sample_fn()

        for obj in list(self._objects.values()):
            if not obj.policy.enabled or obj.pinned:
                continue
            if obj.leased_key is None and self._store.acquire(obj.handle.key):
                obj.leased_key = obj.handle.key
            decision = select_level(
                self._config,
                LevelPolicyInputs(
                    current_level=obj.current_level,
                    n_levels=obj.n_levels,
                    distance=obj.distance,
                    last_committed_distance=obj.last_committed_distance,
                    performance_bound=obj.performance_bound,
                    sample=sample,
                    min_level=obj.policy.min_level,
                    max_level=obj.policy.max_level,
                ),
                strategy=self._strategy,
            )
            if self._log_lod_eval:
                logger.info(
                    "lod eval id=%d current=%d distance=%.1f d_level=%d p_level=%d desired=%d switch=%s reason=%s blocked=%s",
                    obj.id,
                    obj.current_level,
                    obj.distance,
                    decision.distance_level,
                    decision.performance_level,
                    decision.desired_level,
                    decision.should_switch,
                    decision.reason,
                    decision.blocked_reason,
                )
            if obj.pending is not None:
                self._preempt_pending(obj, decision, ts, emitted)
                continue
            if not decision.should_switch:
                if obj.leased_key is None and obj.current_level not in obj.failed_levels:
                    # Resting on a level whose asset is not resident yet.
                    self._request_reload(obj, obj.current_level, obj.handle, "initial", ts, emitted)
                continue
            if decision.selected_level in obj.failed_levels:
                continue
            self._switch(
                obj,
                decision.selected_level,
                decision.reason,
                performance_bound=decision.performance_bound,
                now=ts,
                emitted=emitted,
            )
        return emitted

    # ---- stats -----------------------------------------------------------

    def statistics(self) -> LODStatistics:
        objs = list(self._objects.values())
        distribution: Dict[int, int] = {}
        for obj in objs:
            distribution[obj.current_level] = distribution.get(obj.current_level, 0) + 1
        average = sum(o.current_level for o in objs) / len(objs) if objs else 0.0
        return LODStatistics(
            total_objects=len(objs),
            active_objects=sum(1 for o in objs if o.policy.enabled and not o.pinned),
            switches=self._switches,
            failures=self._failures,
            pending=sum(1 for o in objs if o.pending is not None),
            level_distribution=distribution,
            average_level=average,
            strategy=self._strategy,
            events_dropped=self.events.dropped,
        )

    def drain_events(self) -> List[LODEvent]:
        return self.events.drain()

    # ---- internals -------------------------------------------------------

    def _switch(
        self,
        obj: LODObject,
        level: int,
        reason: str,
        *,
        performance_bound: bool,
        now: Optional[float] = None,
        emitted: Optional[List[LODEvent]] = None,
    ) -> bool:
        ts = self._time_fn() if now is None else now
        handle = obj.levels[level]
        if self._store.acquire(handle.key):
            self._commit(obj, level, reason, performance_bound, ts, emitted)
            return True
        self._request_reload(obj, level, handle, reason, ts, emitted)
        return False

    def _commit(
        self,
        obj: LODObject,
        level: int,
        reason: str,
        performance_bound: bool,
        ts: float,
        emitted: Optional[List[LODEvent]],
    ) -> None:
        # Caller already holds the lease on the new level's key.
        old = obj.current_level
        if obj.leased_key is not None:
            self._store.release(obj.leased_key)
        obj.leased_key = obj.levels[level].key
        obj.current_level = level
        obj.last_switch_at = ts
        obj.last_committed_distance = obj.distance
        obj.performance_bound = performance_bound
        obj.pending = None
        self._switches += 1
        logger.debug("object %d level %d -> %d (%s)", obj.id, old, level, reason)
        self._emit(obj, LevelChanged(obj.id, old, level, reason, ts), emitted)

    def _request_reload(
        self,
        obj: LODObject,
        level: int,
        handle: AssetHandle,
        reason: str,
        ts: float,
        emitted: Optional[List[LODEvent]],
    ) -> None:
        if self._scheduler is None:
            self._fail(obj, level, LookupError(f"{handle.uri} is not cached and no loader is attached"), ts, emitted)
            return
        try:
            future = self._scheduler.schedule(handle)
        except RuntimeError as exc:
            self._fail(obj, level, exc, ts, emitted)
            return
        obj.pending = PendingSwitch(level=level, key=handle.key, reason=reason)
        object_id = obj.id

        def _done(fut: "concurrent.futures.Future") -> None:
            if fut.cancelled():
                error: Optional[BaseException] = RuntimeError(f"reload of {handle.uri} cancelled")
            else:
                error = fut.exception()
            kind = "loaded" if error is None else "failed"
            self._completions.push(ReloadCompletion(kind, object_id, level, handle.key, error))

        future.add_done_callback(_done)
        logger.debug("object %d waiting for level %d (%s)", obj.id, level, handle.uri)

    def _preempt_pending(
        self,
        obj: LODObject,
        decision: LevelPolicyDecision,
        ts: float,
        emitted: List[LODEvent],
    ) -> None:
        # Only a performance-forced change overrides a reload still in flight.
        if not (decision.should_switch and decision.performance_bound):
            return
        level = decision.selected_level
        if level == obj.pending.level or level in obj.failed_levels:
            return
        logger.debug("object %d drops pending level %d for level %d (performance)", obj.id, obj.pending.level, level)
        obj.pending = None
        self._switch(obj, level, decision.reason, performance_bound=True, now=ts, emitted=emitted)

    def _apply_completion(self, completion: ReloadCompletion, ts: float, emitted: List[LODEvent]) -> None:
        obj = self._objects.get(completion.object_id)
        if obj is None or obj.pending is None or obj.pending.level != completion.level:
            return
        pending = obj.pending
        obj.pending = None
        if completion.kind == "failed":
            self._fail(obj, completion.level, completion.error, ts, emitted)
            return
        if pending.reason == "manual" and pending.level != obj.current_level:
            # Explicit requests land as soon as the asset arrives.
            self._switch(obj, pending.level, pending.reason, performance_bound=False, now=ts, emitted=emitted)
        # Automatic objects re-run the policy on this tick against the now-cached level.

    def _fail(
        self,
        obj: LODObject,
        level: int,
        error: Optional[BaseException],
        ts: float,
        emitted: Optional[List[LODEvent]],
    ) -> None:
        obj.failed_levels.add(level)
        self._failures += 1
        logger.warning("object %d failed to reach level %d: %s", obj.id, level, error)
        self._emit(obj, LevelChangeFailed(obj.id, level, error or RuntimeError("unknown failure"), ts), emitted)

    def _emit(self, obj: LODObject, event: LODEvent, emitted: Optional[List[LODEvent]]) -> None:
        self.events.push(event)
        if emitted is not None:
            emitted.append(event)
        for callback in (obj.on_level_changed, self._on_event):
            if callback is None:
                continue
            try:
                callback(event)
            except Exception:
                logger.exception("LOD event callback failed for object %d", obj.id)


__all__ = [
    "LODController",
    "LODObject",
    "LODPolicy",
    "LODStatistics",
    "PendingSwitch",
    "ReloadScheduler",
]
