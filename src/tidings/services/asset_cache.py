"""Byte-budgeted LRU cache with single-flight computation."""

import logging
import sys
import threading
import time
from collections import OrderedDict
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any, Callable, Hashable

from tidings.types.errors import CacheComputeError

logger = logging.getLogger(__name__)

INITIAL_BACKOFF_S = 1.0
MAX_BACKOFF_S = 60.0

_FAILED = object()


def default_sizeof(value: Any) -> int:
    nbytes = getattr(value, "nbytes", None)
    if isinstance(nbytes, int):
        return nbytes
    if isinstance(value, (bytes, bytearray)):
        return len(value)
    if isinstance(value, str):
        return len(value.encode("utf-8"))
    return sys.getsizeof(value)


@dataclass
class _Entry:
    value: Any
    size: int


@dataclass
class _Failure:
    error: str
    backoff: float
    retry_at: float


class AssetCache:
    """LRU cache whose resident size never exceeds `budget_bytes`.

    Concurrent get_or_compute() calls for the same key share one
    computation. A compute that raises CacheComputeError leaves a negative
    entry: callers get the placeholder until the retry backoff elapses.
    """

    def __init__(
        self,
        budget_bytes: int,
        name: str = "cache",
        sizeof: Callable[[Any], int] = default_sizeof,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._name = name
        self._budget = max(0, budget_bytes)
        self._sizeof = sizeof
        self._clock = clock
        self._lock = threading.Lock()
        self._entries: OrderedDict[Hashable, _Entry] = OrderedDict()
        self._failures: dict[Hashable, _Failure] = {}
        self._inflight: dict[Hashable, Future] = {}
        self._total = 0
        self._hits = 0
        self._misses = 0
        self._computes = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def total_bytes(self) -> int:
        with self._lock:
            return self._total

    def get(self, key: Hashable) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            self._entries.move_to_end(key)
            return entry.value

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._entries

    def get_or_compute(self, key: Hashable, compute_fn: Callable[[], Any], placeholder=None):
        owner = False
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                self._entries.move_to_end(key)
                self._hits += 1
                return entry.value
            failure = self._failures.get(key)
            if failure is not None and self._clock() < failure.retry_at:
                return placeholder
            future = self._inflight.get(key)
            if future is None:
                future = Future()
                self._inflight[key] = future
                self._misses += 1
                self._computes += 1
                owner = True

        if not owner:
            value = future.result()
            return placeholder if value is _FAILED else value

        try:
            value = compute_fn()
        except CacheComputeError as e:
            self._record_failure(key, str(e))
            future.set_result(_FAILED)
            return placeholder
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            # Store before leaving the in-flight table so no caller recomputes
            self._store(key, value)
        finally:
            with self._lock:
                self._inflight.pop(key, None)

        future.set_result(value)
        return value

    def invalidate(self, key: Hashable) -> bool:
        with self._lock:
            self._failures.pop(key, None)
            entry = self._entries.pop(key, None)
            if entry is None:
                return False
            self._total -= entry.size
            return True

    def invalidate_where(self, predicate: Callable[[Hashable], bool]) -> int:
        with self._lock:
            keys = [k for k in self._entries if predicate(k)]
            for key in keys:
                self._total -= self._entries.pop(key).size
            for key in [k for k in self._failures if predicate(k)]:
                del self._failures[key]
            return len(keys)

    def clear(self):
        with self._lock:
            self._entries.clear()
            self._failures.clear()
            self._total = 0

    def set_budget(self, budget_bytes: int):
        with self._lock:
            self._budget = max(0, budget_bytes)
            self._evict_locked()

    def stats(self) -> dict:
        with self._lock:
            return {
                "name": self._name,
                "entries": len(self._entries),
                "bytes": self._total,
                "budget": self._budget,
                "hits": self._hits,
                "misses": self._misses,
                "computes": self._computes,
                "failures": len(self._failures),
            }

    def _store(self, key: Hashable, value: Any):
        size = self._sizeof(value)
        with self._lock:
            self._failures.pop(key, None)
            if size > self._budget:
                logger.debug("%s: %d byte value exceeds budget, not cached", self._name, size)
                return
            previous = self._entries.pop(key, None)
            if previous is not None:
                self._total -= previous.size
            self._entries[key] = _Entry(value, size)
            self._total += size
            self._evict_locked()

    def _evict_locked(self):
        while self._total > self._budget and self._entries:
            _key, entry = self._entries.popitem(last=False)
            self._total -= entry.size

    def _record_failure(self, key: Hashable, error: str):
        with self._lock:
            previous = self._failures.get(key)
            backoff = INITIAL_BACKOFF_S if previous is None else min(previous.backoff * 2, MAX_BACKOFF_S)
            self._failures[key] = _Failure(error, backoff, self._clock() + backoff)
        logger.debug("%s: compute failed, retry in %.0fs: %s", self._name, backoff, error)
