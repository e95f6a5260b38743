# SPDX-License-Identifier: MPL-2.0
# Copyright (c) 2025-2026 Aryan Ameri
#
# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.
"""
Bounded result caches and single-flight request deduplication.

Cache keys are fingerprints (image identity plus the settings that affect a
result). A settings change produces a new key, so entries are never
invalidated explicitly; old ones simply age out under the count/cost limits.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from collections.abc import Callable, Hashable
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Final, Generic, TypeVar

from .errors import ComputationCancelled

__all__: Final[list[str]] = [
    "CacheStats",
    "BoundedCache",
    "SingleFlight",
    "fingerprint",
]

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


def fingerprint(image_id: str, *parts: str) -> str:
    """Join image identity and settings fragments into a cache key."""
    return "|".join((image_id, *parts))


@dataclass(slots=True)
class CacheStats:
    """Hit/miss/eviction counters of a BoundedCache."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0

    @property
    def hit_ratio(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class BoundedCache(Generic[K, V]):
    """Thread-safe LRU map bounded by entry count and/or total cost.

    Args:
        name: Used in log messages
        count_limit: Maximum number of entries (0 = unlimited)
        cost_limit: Maximum summed cost (0 = unlimited)
        cost: Cost function for values (default: every entry costs 1)
    """

    def __init__(
        self,
        name: str,
        *,
        count_limit: int = 0,
        cost_limit: float = 0,
        cost: Callable[[V], float] | None = None,
    ) -> None:
        if count_limit < 0 or cost_limit < 0:
            msg = f"cache limits must be >= 0, got count={count_limit} cost={cost_limit}"
            raise ValueError(msg)
        self.name = name
        self.count_limit = count_limit
        self.cost_limit = cost_limit
        self._cost = cost or (lambda _value: 1.0)
        self._entries: OrderedDict[K, tuple[V, float]] = OrderedDict()
        self._total_cost = 0.0
        self._lock = threading.Lock()
        self.stats = CacheStats()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    @property
    def total_cost(self) -> float:
        with self._lock:
            return self._total_cost

    def get(self, key: K) -> V | None:
        """Return the cached value (and mark it recently used) or None."""
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.stats.misses += 1
                return None
            self._entries.move_to_end(key)
            self.stats.hits += 1
            return entry[0]

    def peek(self, key: K) -> V | None:
        """Return the cached value without touching LRU order or stats."""
        with self._lock:
            entry = self._entries.get(key)
            return entry[0] if entry is not None else None

    def put(self, key: K, value: V) -> None:
        """Insert or replace *key*, then evict least recently used entries over the limits."""
        cost = float(self._cost(value))
        with self._lock:
            old = self._entries.pop(key, None)
            if old is not None:
                self._total_cost -= old[1]
            self._entries[key] = (value, cost)
            self._total_cost += cost
            self._evict_locked()

    def discard(self, key: K) -> bool:
        with self._lock:
            old = self._entries.pop(key, None)
            if old is None:
                return False
            self._total_cost -= old[1]
            return True

    def discard_where(self, predicate: Callable[[K], bool]) -> int:
        """Drop every entry whose key matches *predicate*; returns how many."""
        with self._lock:
            stale = [key for key in self._entries if predicate(key)]
            for key in stale:
                _value, cost = self._entries.pop(key)
                self._total_cost -= cost
            return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._total_cost = 0.0

    def _evict_locked(self) -> None:
        # The newest entry is kept even if it alone exceeds cost_limit
        while len(self._entries) > 1 and self._over_limit():
            key, (_value, cost) = self._entries.popitem(last=False)
            self._total_cost -= cost
            self.stats.evictions += 1
            logger.debug("%s cache: evicted %s", self.name, key)

    def _over_limit(self) -> bool:
        if self.count_limit and len(self._entries) > self.count_limit:
            return True
        return bool(self.cost_limit) and self._total_cost > self.cost_limit


class SingleFlight(Generic[K, V]):
    """Collapse concurrent calls with the same key into one execution.

    The first caller (the leader) runs the function; callers arriving while
    it runs wait for its outcome. If the leader was cancelled, waiting
    callers retry and one of them becomes the new leader.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self._calls: dict[K, Future[V]] = {}
        self._lock = threading.Lock()

    def in_flight(self, key: K) -> bool:
        with self._lock:
            return key in self._calls

    def do(self, key: K, fn: Callable[[], V]) -> V:
        while True:
            with self._lock:
                future = self._calls.get(key)
                leader = future is None
                if future is None:
                    future = Future()
                    self._calls[key] = future

            if leader:
                return self._lead(key, future, fn)

            logger.debug("%s: joining in-flight computation for %s", self.name, key)
            try:
                return future.result()
            except ComputationCancelled:
                logger.debug("%s: leader for %s was cancelled, retrying", self.name, key)

    def _lead(self, key: K, future: Future[V], fn: Callable[[], V]) -> V:
        try:
            result = fn()
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(result)
            return result
        finally:
            with self._lock:
                self._calls.pop(key, None)
