import concurrent.futures

import pytest

from twin_assets.cache.keys import AssetHandle
from twin_assets.cache.store import AssetStore
from twin_assets.config.models import CacheConfig, LODConfig
from twin_assets.errors import AssetNotFoundError
from twin_assets.lod.controller import LODController, LODPolicy
from twin_assets.lod.notifications import LevelChanged, LevelChangeFailed
from twin_assets.perf.monitor import PerformanceSample


class _Scheduler:
    def __init__(self) -> None:
        self.requests = []

    def schedule(self, handle):
        fut = concurrent.futures.Future()
        self.requests.append((handle, fut))
        return fut


def _levels(name: str, n: int = 5):
    return [AssetHandle.for_uri(f"{name}_lod{i}.npz") for i in range(n)]


def _store(handles) -> AssetStore:
    store = AssetStore(CacheConfig(ttl_s=0))
    for h in handles:
        store.put(h.key, h.uri, size_bytes=1)
    return store


def _sample(fps: float, triangles: int = 10_000) -> PerformanceSample:
    return PerformanceSample(fps, 1000.0 / fps, 100, triangles, 8, 256.0, 0.0)


def _controller(store, scheduler=None, **kwargs):
    ticks = iter(range(1, 10_000))
    return LODController(store, scheduler, LODConfig(), time_fn=lambda: float(next(ticks)), **kwargs)


def test_first_tick_commits_and_moves_the_lease():
    handles = _levels("tower")
    store = _store(handles)
    ctl = _controller(store)
    oid = ctl.register_object(handles, distance=40.0)
    obj = ctl.get_object(oid)
    assert obj.current_level == 4
    assert store.ref_count(handles[4].key) == 1

    events = ctl.tick()
    assert events == [LevelChanged(oid, 4, 0, "initial", events[0].timestamp)]
    assert obj.current_level == 0
    assert obj.last_committed_distance == 40.0
    assert store.ref_count(handles[0].key) == 1
    assert store.ref_count(handles[4].key) == 0
    assert ctl.drain_events() == events


def test_fps_drop_forces_the_coarsest_level_on_the_next_tick():
    handles = _levels("plant")
    store = _store(handles)
    ctl = _controller(store)
    oid = ctl.register_object(handles, distance=40.0)

    ctl.tick(sample=_sample(60.0))
    assert ctl.get_object(oid).current_level == 0

    events = ctl.tick(sample=_sample(10.0))
    assert ctl.get_object(oid).current_level == 4
    assert events[-1].reason == "performance"
    assert ctl.get_object(oid).performance_bound is True

    # Performance recovers: distance takes over again without waiting out the dead band.
    ctl.tick(sample=_sample(60.0))
    assert ctl.get_object(oid).current_level == 0


def test_oscillating_inside_the_dead_band_does_not_flap():
    handles = _levels("meter")
    store = _store(handles)
    ctl = _controller(store)
    oid = ctl.register_object(handles, distance=47.0)
    ctl.tick()
    assert ctl.get_object(oid).current_level == 0

    for _ in range(20):
        for distance in (51.0, 47.0):
            ctl.update_distance(oid, distance)
            ctl.tick()
    assert ctl.get_object(oid).current_level == 0
    assert ctl.statistics().switches == 1

    ctl.update_distance(oid, 60.0)
    ctl.tick()
    assert ctl.get_object(oid).current_level == 1
    ctl.update_distance(oid, 57.0)
    ctl.tick()
    assert ctl.get_object(oid).current_level == 1


def test_missing_level_is_reloaded_while_holding_the_current_one():
    handles = _levels("substation")
    store = _store([h for i, h in enumerate(handles) if i != 1])
    scheduler = _Scheduler()
    ctl = _controller(store, scheduler)
    oid = ctl.register_object(handles, distance=10.0)
    ctl.tick()
    obj = ctl.get_object(oid)
    assert obj.current_level == 0

    ctl.update_distance(oid, 75.0)
    assert ctl.tick() == []
    assert obj.current_level == 0
    assert obj.pending_level == 1
    ((requested, fut),) = scheduler.requests
    assert requested == handles[1]

    # Still loading: nothing changes and no duplicate request goes out.
    ctl.tick()
    assert len(scheduler.requests) == 1

    store.put(handles[1].key, "loaded", size_bytes=1)
    fut.set_result("loaded")
    events = ctl.tick()
    assert [type(e) for e in events] == [LevelChanged]
    assert obj.current_level == 1
    assert obj.pending_level is None
    assert store.ref_count(handles[1].key) == 1
    assert store.ref_count(handles[0].key) == 0


def test_failed_reload_keeps_last_good_level_until_cleared():
    handles = _levels("tower")
    store = _store([h for i, h in enumerate(handles) if i != 1])
    scheduler = _Scheduler()
    seen = []
    ctl = _controller(store, scheduler)
    oid = ctl.register_object(handles, distance=10.0, on_level_changed=seen.append)
    ctl.tick()

    ctl.update_distance(oid, 75.0)
    ctl.tick()
    _, fut = scheduler.requests[-1]
    error = AssetNotFoundError("gone", uri=handles[1].uri)
    fut.set_exception(error)

    events = ctl.tick()
    failed = [e for e in events if isinstance(e, LevelChangeFailed)]
    assert len(failed) == 1
    assert failed[0].level == 1
    assert failed[0].error is error
    assert isinstance(seen[-1], LevelChangeFailed)
    obj = ctl.get_object(oid)
    assert obj.current_level == 0
    assert obj.failed_levels == {1}

    ctl.tick()
    assert len(scheduler.requests) == 1

    ctl.clear_failures(oid)
    ctl.tick()
    assert len(scheduler.requests) == 2
    assert ctl.statistics().failures == 1


def test_no_scheduler_reports_failure_immediately():
    handles = _levels("tower", 2)
    store = _store(handles[:1])
    ctl = _controller(store)
    oid = ctl.register_object(handles, distance=0.0)
    ctl.tick()
    ctl.update_distance(oid, 90.0)
    events = ctl.tick()
    assert isinstance(events[-1], LevelChangeFailed)
    assert isinstance(events[-1].error, LookupError)
    assert ctl.get_object(oid).current_level == 0


def test_disabled_object_is_left_alone():
    handles = _levels("meter")
    store = _store(handles)
    ctl = _controller(store)
    oid = ctl.register_object(handles, LODPolicy(enabled=False), distance=0.0)
    ctl.tick(sample=_sample(5.0))
    assert ctl.get_object(oid).current_level == 4
    assert ctl.statistics().active_objects == 0


def test_policy_bounds_limit_the_level():
    handles = _levels("meter")
    store = _store(handles)
    ctl = _controller(store)
    oid = ctl.register_object(handles, LODPolicy(min_level=1, max_level=3), distance=0.0)
    assert ctl.get_object(oid).current_level == 3
    ctl.tick()
    assert ctl.get_object(oid).current_level == 1
    ctl.tick(sample=_sample(5.0))
    assert ctl.get_object(oid).current_level == 3


def test_set_level_pins_until_unpinned():
    handles = _levels("plant")
    store = _store(handles)
    ctl = _controller(store)
    oid = ctl.register_object(handles, distance=0.0)
    assert ctl.set_level(oid, 2) is True
    obj = ctl.get_object(oid)
    assert obj.current_level == 2
    ctl.tick()
    assert obj.current_level == 2
    ctl.unpin(oid)
    ctl.tick()
    assert obj.current_level == 0
    with pytest.raises(ValueError):
        ctl.set_level(oid, 9)


def test_manual_strategy_suspends_automatic_updates():
    handles = _levels("plant")
    store = _store(handles)
    ctl = _controller(store)
    oid = ctl.register_object(handles, distance=0.0)
    ctl.set_strategy("manual")
    ctl.tick()
    assert ctl.get_object(oid).current_level == 4
    ctl.set_strategy("distance")
    ctl.tick(sample=_sample(5.0))
    assert ctl.get_object(oid).current_level == 0
    with pytest.raises(ValueError):
        ctl.set_strategy("random")


def test_unregister_releases_the_lease_and_statistics_follow():
    a, b = _levels("a"), _levels("b")
    store = _store(a + b)
    listener = []
    ctl = _controller(store, on_event=listener.append)
    oid_a = ctl.register_object(a, distance=0.0)
    ctl.register_object([h.uri for h in b], distance=600.0)
    ctl.tick()

    stats = ctl.statistics()
    assert stats.total_objects == 2
    assert stats.level_distribution == {0: 1, 4: 1}
    assert stats.average_level == 2.0
    assert len(listener) == 1

    assert ctl.unregister_object(oid_a) is True
    assert ctl.unregister_object(oid_a) is False
    assert store.ref_count(a[0].key) == 0
    assert ctl.statistics().total_objects == 1


def test_register_requires_levels_and_accepts_builders():
    store = _store([])
    ctl = _controller(store)
    with pytest.raises(ValueError):
        ctl.register_object([])
    oid = ctl.register_object(lambda: ["x_lod0.npz", "x_lod1.npz"])
    assert ctl.get_object(oid).n_levels == 2


def test_fps_drop_overrides_a_reload_still_in_flight():
    handles = _levels("turbine")
    store = _store(handles[1:])
    scheduler = _Scheduler()
    ctl = _controller(store, scheduler)
    oid = ctl.register_object(handles, distance=40.0, initial_level=1)
    obj = ctl.get_object(oid)

    ctl.tick(sample=_sample(60.0))
    assert obj.pending_level == 0
    ((_, fut),) = scheduler.requests

    # Level 0 never arrives in time; the coarsest level is resident.
    events = ctl.tick(sample=_sample(10.0))
    assert obj.current_level == 4
    assert obj.pending_level is None
    assert obj.performance_bound is True
    assert [(e.old_level, e.new_level) for e in events] == [(1, 4)]
    assert store.ref_count(handles[4].key) == 1
    assert store.ref_count(handles[1].key) == 0

    # The late completion is stale and changes nothing.
    store.put(handles[0].key, "loaded", size_bytes=1)
    fut.set_result("loaded")
    assert ctl.tick(sample=_sample(10.0)) == []
    assert obj.current_level == 4


def test_distance_changes_wait_for_the_pending_reload():
    handles = _levels("depot")
    store = _store([h for i, h in enumerate(handles) if i != 1])
    scheduler = _Scheduler()
    ctl = _controller(store, scheduler)
    oid = ctl.register_object(handles, distance=10.0)
    ctl.tick()
    ctl.update_distance(oid, 75.0)
    ctl.tick()
    assert ctl.get_object(oid).pending_level == 1

    ctl.update_distance(oid, 150.0)
    assert ctl.tick() == []
    assert ctl.get_object(oid).pending_level == 1
    assert ctl.get_object(oid).current_level == 0


def test_undrained_events_are_bounded():
    handles = _levels("feeder")
    store = _store(handles)
    ticks = iter(range(1, 10_000))
    ctl = LODController(store, None, LODConfig(), time_fn=lambda: float(next(ticks)), event_backlog=3)
    oid = ctl.register_object(handles, distance=0.0)
    for i in range(10):
        ctl.update_distance(oid, 600.0 if i % 2 else 0.0)
        ctl.tick()
    assert len(ctl.events) == 3
    stats = ctl.statistics()
    assert stats.switches == 10
    assert stats.events_dropped == 7
    assert stats.to_dict()["events_dropped"] == 7
    assert [e.new_level for e in ctl.drain_events()] == [4, 0, 4]
