"""Tests for tidings.services.asset_cache."""

import threading

import pytest

from tidings.services.asset_cache import MAX_BACKOFF_S, AssetCache
from tidings.types.errors import CacheComputeError


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


# ---------------------------------------------------------------------------
# 1. Hits, misses and the byte budget
# ---------------------------------------------------------------------------

def test_compute_once_then_hit():
    cache = AssetCache(1024)
    calls = []
    compute = lambda: calls.append(1) or b"abc"
    assert cache.get_or_compute("k", compute) == b"abc"
    assert cache.get_or_compute("k", compute) == b"abc"
    assert len(calls) == 1
    stats = cache.stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["bytes"] == 3


def test_lru_eviction_respects_budget():
    cache = AssetCache(10)
    cache.get_or_compute("a", lambda: b"x" * 4)
    cache.get_or_compute("b", lambda: b"x" * 4)
    cache.get("a")                              # a is now most recent
    cache.get_or_compute("c", lambda: b"x" * 4)
    assert "a" in cache
    assert "b" not in cache
    assert cache.total_bytes <= 10


def test_oversized_value_not_cached():
    cache = AssetCache(4)
    assert cache.get_or_compute("big", lambda: b"x" * 10) == b"x" * 10
    assert "big" not in cache
    assert cache.total_bytes == 0


def test_set_budget_evicts():
    cache = AssetCache(100)
    for key in "abc":
        cache.get_or_compute(key, lambda: b"x" * 20)
    cache.set_budget(30)
    assert cache.stats()["entries"] == 1
    assert "c" in cache


def test_invalidate():
    cache = AssetCache(100)
    cache.get_or_compute(("p", 1), lambda: b"old")
    cache.get_or_compute(("p", 2), lambda: b"new")
    cache.get_or_compute(("q", 1), lambda: b"other")
    assert cache.invalidate_where(lambda key: key[0] == "p") == 2
    assert cache.invalidate(("q", 1)) is True
    assert cache.invalidate(("q", 1)) is False
    assert cache.total_bytes == 0


# ---------------------------------------------------------------------------
# 2. Negative entries
# ---------------------------------------------------------------------------

def _failing(calls):
    def compute():
        calls.append(1)
        raise CacheComputeError("broken")
    return compute


def test_failure_returns_placeholder_and_backs_off(clock):
    cache = AssetCache(100, clock=clock)
    calls = []
    assert cache.get_or_compute("k", _failing(calls), placeholder="fallback") == "fallback"
    assert cache.get_or_compute("k", _failing(calls), placeholder="fallback") == "fallback"
    assert len(calls) == 1

    clock.now += 1.0
    cache.get_or_compute("k", _failing(calls))
    assert len(calls) == 2
    # Backoff doubled to 2 s
    clock.now += 1.5
    cache.get_or_compute("k", _failing(calls))
    assert len(calls) == 2


def test_backoff_capped(clock):
    cache = AssetCache(100, clock=clock)
    calls = []
    for _ in range(10):
        cache.get_or_compute("k", _failing(calls))
        clock.now += MAX_BACKOFF_S
    assert cache._failures["k"].backoff == MAX_BACKOFF_S
    assert len(calls) == 10


def test_success_clears_failure(clock):
    cache = AssetCache(100, clock=clock)
    cache.get_or_compute("k", _failing([]))
    clock.now += 1.0
    assert cache.get_or_compute("k", lambda: b"ok") == b"ok"
    assert cache.stats()["failures"] == 0


def test_other_exceptions_propagate():
    cache = AssetCache(100)

    def boom():
        raise RuntimeError("bug")

    with pytest.raises(RuntimeError):
        cache.get_or_compute("k", boom)
    assert cache.stats()["failures"] == 0


# ---------------------------------------------------------------------------
# 3. Single flight
# ---------------------------------------------------------------------------

def test_concurrent_callers_share_one_compute():
    cache = AssetCache(1024)
    release = threading.Event()
    started = threading.Event()
    calls = []

    def slow():
        calls.append(1)
        started.set()
        release.wait(2)
        return b"value"

    results = []
    threads = [
        threading.Thread(target=lambda: results.append(cache.get_or_compute("k", slow)))
        for _ in range(4)
    ]
    threads[0].start()
    started.wait(2)
    for t in threads[1:]:
        t.start()
    release.set()
    for t in threads:
        t.join()

    assert calls == [1]
    assert results == [b"value"] * 4


def test_waiters_get_placeholder_on_failure():
    cache = AssetCache(1024)
    release = threading.Event()
    started = threading.Event()

    def failing():
        started.set()
        release.wait(2)
        raise CacheComputeError("nope")

    results = []
    owner = threading.Thread(target=lambda: results.append(cache.get_or_compute("k", failing, "ph")))
    owner.start()
    started.wait(2)
    waiter = threading.Thread(target=lambda: results.append(cache.get_or_compute("k", failing, "ph")))
    waiter.start()
    release.set()
    owner.join()
    waiter.join()
    assert results == ["ph", "ph"]
