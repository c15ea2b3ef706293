from dataclasses import dataclass

import pytest

from twin_assets.cache.eviction import FIFO, LFU, LRU, SIZE_BASED, get_strategy


@dataclass
class _Entry:
    key: str
    size_bytes: int = 10
    created_at: float = 0.0
    last_accessed_at: float = 0.0
    access_count: int = 1
    ref_count: int = 0


def test_target_count_rounds_up():
    assert LRU.target_count(0) == 0
    assert LRU.target_count(1) == 1
    assert LRU.target_count(5) == 1
    assert LRU.target_count(6) == 2
    assert SIZE_BASED.target_count(10) == 1
    assert SIZE_BASED.target_count(11) == 2


def test_rankings():
    entries = [
        _Entry("a", size_bytes=5, created_at=3, last_accessed_at=9, access_count=1),
        _Entry("b", size_bytes=50, created_at=1, last_accessed_at=2, access_count=7),
        _Entry("c", size_bytes=20, created_at=2, last_accessed_at=5, access_count=3),
    ]
    assert [e.key for e in LRU.rank(entries)] == ["b", "c", "a"]
    assert [e.key for e in LFU.rank(entries)] == ["a", "c", "b"]
    assert [e.key for e in FIFO.rank(entries)] == ["b", "c", "a"]
    assert [e.key for e in SIZE_BASED.rank(entries)] == ["b", "c", "a"]


def test_referenced_entries_are_passed_over():
    entries = [
        _Entry("old", last_accessed_at=1, ref_count=2),
        _Entry("mid", last_accessed_at=2),
        _Entry("new", last_accessed_at=3),
    ]
    victims, skipped = LRU.select(entries)
    assert [v.key for v in victims] == ["mid"]
    assert skipped == 1


def test_all_referenced_yields_no_victims():
    entries = [_Entry("a", ref_count=1), _Entry("b", ref_count=1)]
    victims, skipped = FIFO.select(entries)
    assert victims == []
    assert skipped == 2


def test_get_strategy_by_name():
    assert get_strategy("LRU") is LRU
    assert get_strategy(" size_based ") is SIZE_BASED
    with pytest.raises(ValueError):
        get_strategy("mru")
