"""Tests for intersection_cache.py: keys, de-duplication and invalidation."""
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from conftest import make_solid
from wall_geometry.intersection_cache import IntersectionCache, make_key


@pytest.fixture
def walls():
    return (
        make_solid("A", [(0, 0), (1000, 0)]),
        make_solid("B", [(1000, 0), (1000, 1000)]),
        make_solid("C", [(0, 0), (0, 1000)]),
    )


class TestMakeKey:
    def test_participant_order_does_not_matter(self, walls):
        a, b, _ = walls
        assert make_key([a, b], 1e-3) == make_key([b, a], 1e-3)

    def test_version_bump_changes_key(self, walls):
        a, b, _ = walls
        bumped = a.with_updates()
        assert make_key([a, b], 1e-3) != make_key([bumped, b], 1e-3)

    def test_tolerance_and_node_are_part_of_key(self, walls):
        a, b, _ = walls
        base = make_key([a, b], 1e-3, (1000.0, 0.0))
        assert base != make_key([a, b], 2e-3, (1000.0, 0.0))
        assert base != make_key([a, b], 1e-3, (0.0, 0.0))
        assert base != make_key([a, b], 1e-3, (1000.0, 0.0), variant="bevel")

    def test_moved_baseline_changes_key(self, walls):
        a, b, _ = walls
        moved = make_solid("A", [(0, 500), (1000, 0)])
        assert moved.version == a.version
        assert make_key([a, b], 1e-3) != make_key([moved, b], 1e-3)

    def test_identical_geometry_shares_key(self, walls):
        a, b, _ = walls
        again = make_solid("A", [(0, 0), (1000, 0)])
        assert make_key([a, b], 1e-3) == make_key([again, b], 1e-3)

    def test_wall_ids(self, walls):
        a, b, _ = walls
        assert make_key([b, a], 1e-3).wall_ids == ("A", "B")


class TestIntersectionCache:
    def test_second_lookup_is_a_hit(self, walls):
        cache = IntersectionCache()
        key = make_key(walls[:2], 1e-3)
        calls = []
        for _ in range(3):
            assert cache.get_or_compute(key, lambda: calls.append(1) or "resolved") == "resolved"
        stats = cache.stats()
        assert len(calls) == 1
        assert stats.hits == 2
        assert stats.misses == 1
        assert stats.hit_rate == pytest.approx(2 / 3)

    def test_concurrent_requests_compute_once(self, walls):
        cache = IntersectionCache()
        key = make_key(walls[:2], 1e-3)
        calls = []
        lock = threading.Lock()

        def compute():
            with lock:
                calls.append(1)
            time.sleep(0.05)
            return "resolved"

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: cache.get_or_compute(key, compute), range(16)))
        assert results == ["resolved"] * 16
        assert len(calls) == 1
        assert cache.stats().computations == 1

    def test_invalidate_wall_is_targeted(self, walls):
        a, b, c = walls
        cache = IntersectionCache()
        ab = make_key([a, b], 1e-3)
        ac = make_key([a, c], 1e-3)
        bc = make_key([b, c], 1e-3)
        for key in (ab, ac, bc):
            cache.get_or_compute(key, lambda: "x")
        assert cache.invalidate_wall("A") == 2
        assert ab not in cache
        assert ac not in cache
        assert bc in cache
        assert len(cache) == 1

    def test_failed_computation_is_not_cached(self, walls):
        cache = IntersectionCache()
        key = make_key(walls[:2], 1e-3)

        def boom():
            raise ValueError("bad junction")

        with pytest.raises(ValueError):
            cache.get_or_compute(key, boom)
        assert key not in cache
        assert cache.get_or_compute(key, lambda: "ok") == "ok"

    def test_lru_eviction(self, walls):
        a, b, c = walls
        cache = IntersectionCache(max_entries=2)
        keys = [make_key([a, b], 1e-3), make_key([a, c], 1e-3), make_key([b, c], 1e-3)]
        for key in keys:
            cache.get_or_compute(key, lambda: "x")
        assert len(cache) == 2
        assert keys[0] not in cache
        assert cache.stats().evictions == 1

    def test_clear(self, walls):
        cache = IntersectionCache()
        cache.get_or_compute(make_key(walls[:2], 1e-3), lambda: "x")
        cache.clear()
        assert len(cache) == 0
