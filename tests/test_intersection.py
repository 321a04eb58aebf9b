"""Tests for intersection.py: junction classification and resolution."""
import math

import pytest

from conftest import make_solid
from wall_geometry.contracts import EngineConfig, IntersectionType, JoinType
from wall_geometry.errors import GeometricError, GeometricErrorType
from wall_geometry.intersection import IntersectionManager, collect_arms
from wall_geometry.primitives import Point2D, point_line_distance


@pytest.fixture
def manager():
    return IntersectionManager(EngineConfig())


class TestCornerResolution:
    """Two 200mm walls meeting at (10, 0) at a right angle."""

    def test_corner_is_mitered(self, manager, corner_solids):
        data = manager.resolve_intersection(list(corner_solids), Point2D(10, 0))
        assert data.type is IntersectionType.CORNER
        assert data.resolution_method is JoinType.MITER
        assert data.participating_walls == ("A", "B")
        assert data.geometric_accuracy > 0.8
        assert data.validated

    def test_miter_apex_on_both_envelopes(self, manager, corner_solids):
        data = manager.resolve_intersection(list(corner_solids), Point2D(10, 0))
        apex = data.miter_apex.xy
        assert apex == pytest.approx((110.0, -100.0))
        # On the outer face of both walls: one half thickness from each baseline.
        assert point_line_distance(apex, (0, 0), (1, 0)) == pytest.approx(100.0)
        assert point_line_distance(apex, (10, 0), (0, 1)) == pytest.approx(100.0)

    def test_resolved_geometry_covers_corner(self, manager, corner_solids):
        data = manager.resolve_intersection(list(corner_solids), Point2D(10, 0))
        geom = data.resolved_geometry
        assert geom is not None
        assert geom.is_valid
        shape = geom.to_shapely()
        from shapely.geometry import Point

        assert shape.buffer(1e-6).contains(Point(10, 0))
        assert shape.buffer(1e-6).contains(Point(109, -99))

    def test_order_independent(self, corner_solids):
        a, b = corner_solids
        first = IntersectionManager().resolve_intersection([a, b], Point2D(10, 0))
        second = IntersectionManager().resolve_intersection([b, a], Point2D(10, 0))
        assert first.id == second.id
        assert first.type is second.type
        assert first.resolution_method is second.resolution_method
        assert first.miter_apex.xy == pytest.approx(second.miter_apex.xy)
        assert first.geometric_accuracy == pytest.approx(second.geometric_accuracy)
        assert first.resolved_geometry.almost_equals(second.resolved_geometry)

    def test_repeat_resolution_hits_cache(self, manager, corner_solids):
        manager.resolve_intersection(list(corner_solids), Point2D(10, 0))
        manager.resolve_intersection(list(reversed(corner_solids)), Point2D(10, 0))
        stats = manager.cache.stats()
        assert stats.computations == 1
        assert stats.hits == 1

    def test_acute_corner_bevels(self, manager):
        a = make_solid("A", [(0, 0), (1000, 0)])
        b = make_solid("B", [(1000, 0), (0, 176)])
        resolution = manager.resolve_with_diagnostics([a, b], Point2D(1000, 0))
        data = resolution.data
        assert data.type is IntersectionType.CORNER
        assert data.resolution_method is JoinType.BEVEL
        assert data.miter_apex is None
        assert any(n.fallback_method == "bevel_join" for n in resolution.notifications)

    def test_butt_request(self, manager, corner_solids):
        data = manager.resolve_intersection(list(corner_solids), Point2D(10, 0), JoinType.BUTT)
        assert data.resolution_method is JoinType.BUTT
        assert data.miter_apex is None
        assert data.resolved_geometry is not None


class TestClassification:
    def test_t_junction(self, manager):
        a = make_solid("A", [(0, 0), (2000, 0)])
        b = make_solid("B", [(1000, 0), (1000, 1000)])
        data = manager.resolve_intersection([a, b], Point2D(1000, 0))
        assert data.type is IntersectionType.T_JUNCTION
        assert data.resolution_method is JoinType.BUTT
        assert data.resolved_geometry.is_valid

    def test_cross(self, manager):
        a = make_solid("A", [(0, 0), (2000, 0)])
        b = make_solid("B", [(1000, -1000), (1000, 1000)])
        data = manager.resolve_intersection([a, b], Point2D(1000, 0))
        assert data.type is IntersectionType.CROSS
        assert len(data.offset_intersections) == 4

    def test_collinear_walls_are_parallel(self, manager):
        a = make_solid("A", [(0, 0), (1000, 0)])
        b = make_solid("B", [(1000, 0), (2000, 0)])
        resolution = manager.resolve_with_diagnostics([a, b], Point2D(1000, 0))
        assert resolution.data.type is IntersectionType.PARALLEL
        assert resolution.data.resolution_method is JoinType.BUTT
        assert resolution.data.geometric_accuracy <= 0.75
        assert resolution.notifications

    def test_collect_arms_sorted_ccw(self):
        a = make_solid("A", [(0, 0), (2000, 0)])
        b = make_solid("B", [(1000, 0), (1000, 1000)])
        arms, warnings = collect_arms([a, b], (1000.0, 0.0), 1.0)
        assert warnings == []
        angles = [math.degrees(arm.angle) for arm in arms]
        assert angles == pytest.approx([0.0, 90.0, 180.0])

    def test_wall_missing_the_node_is_reported(self, manager):
        a = make_solid("A", [(0, 0), (1000, 0)])
        b = make_solid("B", [(1000, 0), (1000, 1000)])
        c = make_solid("C", [(5000, 5000), (6000, 5000)])
        data = manager.resolve_intersection([a, b, c], Point2D(1000, 0))
        assert any("C does not reach" in w for w in data.warnings)


class TestStructuralRejection:
    def test_no_walls(self, manager):
        with pytest.raises(GeometricError) as exc:
            manager.resolve_intersection([], Point2D(0, 0))
        assert not exc.value.recoverable
        assert exc.value.error_type is GeometricErrorType.DEGENERATE_GEOMETRY

    def test_same_wall_twice(self, manager, corner_solids):
        a, _ = corner_solids
        with pytest.raises(GeometricError):
            manager.resolve_intersection([a, a], Point2D(10, 0))

    def test_non_positive_thickness(self, manager):
        a = make_solid("A", [(0, 0), (10, 0)], thickness=0.0)
        b = make_solid("B", [(10, 0), (10, 10)])
        with pytest.raises(GeometricError) as exc:
            manager.resolve_intersection([a, b], Point2D(10, 0))
        assert exc.value.metadata["wall_id"] == "A"


class TestRegistry:
    def test_lookup_and_removal(self, manager, corner_solids):
        t_a = make_solid("C", [(0, 0), (2000, 0)])
        t_b = make_solid("D", [(1000, 0), (1000, 1000)])
        manager.resolve_intersection(list(corner_solids), Point2D(10, 0))
        manager.resolve_intersection([t_a, t_b], Point2D(1000, 0))

        assert len(manager.all_intersections()) == 2
        assert [d.participating_walls for d in manager.find_by_wall("A")] == [("A", "B")]
        assert len(manager.find_by_type(IntersectionType.T_JUNCTION)) == 1

        assert manager.remove_for_wall("A") == 1
        assert manager.find_by_wall("A") == []
        assert len(manager.cache) == 1

    def test_version_bump_recomputes(self, manager, corner_solids):
        a, b = corner_solids
        manager.resolve_intersection([a, b], Point2D(10, 0))
        manager.resolve_intersection([a.with_updates(), b], Point2D(10, 0))
        assert manager.cache.stats().computations == 2
