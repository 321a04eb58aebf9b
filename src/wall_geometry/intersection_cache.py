"""Memoization of junction resolutions with in-flight de-duplication.

Keys embed each participant's version stamp and a digest of its baseline, so a
bumped version or a re-added wall with new geometry simply misses;
``invalidate_wall`` drops the stale entries for that wall.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from collections import OrderedDict
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Callable, Dict, Generic, Optional, Sequence, Tuple, TypeVar

import numpy as np

from wall_geometry.primitives import Curve
from wall_geometry.tolerance import AdaptiveToleranceManager
from wall_geometry.wall_solid import WallSolid

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CacheKey:
    participants: Tuple[Tuple[str, int], ...]
    thickness_signature: Tuple[str, ...]
    tolerance_signature: str
    node_signature: str = ""
    geometry_signature: Tuple[str, ...] = ()

    @property
    def wall_ids(self) -> Tuple[str, ...]:
        return tuple(wall_id for wall_id, _ in self.participants)


def baseline_digest(baseline: Curve) -> str:
    coords = np.asarray([p.xy for p in baseline.points], dtype=np.float64)
    digest = hashlib.sha256(coords.tobytes())
    digest.update(b"closed" if baseline.is_closed else b"open")
    return digest.hexdigest()[:16]


def make_key(
    walls: Sequence[WallSolid],
    tolerance: float,
    node_xy: Optional[Tuple[float, float]] = None,
    variant: str = "",
) -> CacheKey:
    ordered = sorted(walls, key=lambda w: w.id)
    return CacheKey(
        participants=tuple((w.id, w.version) for w in ordered),
        thickness_signature=tuple(f"{w.thickness:.6f}" for w in ordered),
        tolerance_signature=AdaptiveToleranceManager.signature(tolerance),
        node_signature=(f"{node_xy[0]:.6f},{node_xy[1]:.6f}" if node_xy else "") + (f"|{variant}" if variant else ""),
        geometry_signature=tuple(baseline_digest(w.baseline) for w in ordered),
    )


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    computations: int = 0
    in_flight_waits: int = 0
    evictions: int = 0
    invalidations: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        return self.hits / total if total else 0.0


class IntersectionCache(Generic[T]):
    """Thread-safe LRU keyed by :class:`CacheKey`.

    ``get_or_compute`` runs the compute function at most once per key while it
    is in flight; concurrent callers block on the same future.
    """

    def __init__(self, max_entries: int = 512):
        self.max_entries = max(1, int(max_entries))
        self._entries: "OrderedDict[CacheKey, T]" = OrderedDict()
        self._in_flight: Dict[CacheKey, Future] = {}
        self._lock = threading.Lock()
        self._stats = CacheStats()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: CacheKey) -> bool:
        with self._lock:
            return key in self._entries

    def get(self, key: CacheKey) -> Optional[T]:
        with self._lock:
            value = self._entries.get(key)
            if value is not None:
                self._entries.move_to_end(key)
            return value

    def get_or_compute(self, key: CacheKey, compute: Callable[[], T]) -> T:
        with self._lock:
            if key in self._entries:
                self._stats.hits += 1
                self._entries.move_to_end(key)
                return self._entries[key]
            self._stats.misses += 1
            future = self._in_flight.get(key)
            owner = future is None
            if owner:
                future = Future()
                self._in_flight[key] = future
            else:
                self._stats.in_flight_waits += 1

        if not owner:
            return future.result()

        try:
            value = compute()
        except BaseException as exc:
            with self._lock:
                self._in_flight.pop(key, None)
            future.set_exception(exc)
            raise

        with self._lock:
            self._stats.computations += 1
            self._entries[key] = value
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)
                self._stats.evictions += 1
            self._in_flight.pop(key, None)
        future.set_result(value)
        return value

    def invalidate(self, key: CacheKey) -> bool:
        with self._lock:
            removed = self._entries.pop(key, None) is not None
            if removed:
                self._stats.invalidations += 1
            return removed

    def invalidate_wall(self, wall_id: str) -> int:
        """Drop every entry that involves *wall_id*; returns the count removed."""
        with self._lock:
            stale = [k for k in self._entries if wall_id in k.wall_ids]
            for key in stale:
                del self._entries[key]
            self._stats.invalidations += len(stale)
        if stale:
            logger.debug("Invalidated %d cached intersection(s) for wall %s", len(stale), wall_id)
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(**vars(self._stats))
