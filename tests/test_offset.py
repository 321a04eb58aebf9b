"""Tests for offset.py: baseline offsetting and join handling."""
import math

import pytest

from wall_geometry.contracts import EngineConfig, JoinType
from wall_geometry.offset import RobustOffsetEngine
from wall_geometry.primitives import Curve


@pytest.fixture
def offset_engine():
    return RobustOffsetEngine(EngineConfig())


def _has_point(curve, xy, tol=1e-6):
    return any(math.hypot(p.x - xy[0], p.y - xy[1]) <= tol for p in curve.points)


class TestStraightOffset:
    """A straight baseline offsets to two parallel lines."""

    def test_offsets_at_half_thickness(self, offset_engine):
        result = offset_engine.offset_curve(Curve.from_coords([(0, 0), (10, 0)]), 100.0)
        assert result.success
        assert all(p.y == pytest.approx(100.0) for p in result.left_offset.points)
        assert all(p.y == pytest.approx(-100.0) for p in result.right_offset.points)
        assert len(result.left_offset.points) == 2
        assert result.warnings == []
        assert not result.fallback_used

    def test_collinear_vertex_adds_no_join_geometry(self, offset_engine):
        result = offset_engine.offset_curve(Curve.from_coords([(0, 0), (5, 0), (10, 0)]), 50.0)
        assert len(result.left_offset.points) == 3
        assert result.joins[0].outer_side == "none"

    def test_solid_polygon_area(self, offset_engine):
        result = offset_engine.offset_curve(Curve.from_coords([(0, 0), (1000, 0)]), 100.0)
        polygon = offset_engine.build_solid_polygon(result.left_offset, result.right_offset)
        assert polygon.is_valid
        assert polygon.area == pytest.approx(200000.0)


class TestJoins:
    """Inner trimming and outer join shapes at a left turn."""

    baseline = Curve.from_coords([(0, 0), (1000, 0), (1000, 1000)])

    def test_miter_apex_on_outer_side(self, offset_engine):
        result = offset_engine.offset_curve(self.baseline, 100.0, JoinType.MITER)
        assert result.success
        assert _has_point(result.left_offset, (900.0, 100.0))
        assert _has_point(result.right_offset, (1100.0, -100.0))
        join = result.joins[0]
        assert join.applied is JoinType.MITER
        assert join.outer_side == "right"
        assert join.apex.xy == pytest.approx((1100.0, -100.0))

    def test_miter_limit_falls_back_to_bevel(self, offset_engine):
        result = offset_engine.offset_curve(self.baseline, 100.0, JoinType.MITER, miter_limit=1.0)
        assert result.success
        assert result.fallback_used
        assert result.joins[0].applied is JoinType.BEVEL
        assert _has_point(result.right_offset, (1000.0, -100.0))
        assert _has_point(result.right_offset, (1100.0, 0.0))
        assert any("fell back" in w for w in result.warnings)

    def test_bevel_join(self, offset_engine):
        result = offset_engine.offset_curve(self.baseline, 100.0, JoinType.BEVEL)
        assert len(result.right_offset.points) == 4
        assert not result.fallback_used

    def test_round_join_stays_on_arc(self, offset_engine):
        result = offset_engine.offset_curve(self.baseline, 100.0, JoinType.ROUND)
        right = result.right_offset.points
        assert len(right) > 4
        arc = right[1:-1]
        for p in arc:
            assert math.hypot(p.x - 1000.0, p.y) == pytest.approx(100.0)

    def test_offset_distance_is_preserved_along_segments(self, offset_engine):
        result = offset_engine.offset_curve(self.baseline, 100.0)
        line = self.baseline.to_linestring()
        from shapely.geometry import Point

        for curve in (result.left_offset, result.right_offset):
            for p in curve.points:
                assert line.distance(Point(p.xy)) >= 100.0 - 1e-6


class TestDegenerateInput:
    """Degenerate baselines report failures instead of raising."""

    def test_zero_length_segment_is_removed(self, offset_engine):
        result = offset_engine.offset_curve(Curve.from_coords([(0, 0), (0, 0), (1000, 0)]), 100.0)
        assert result.success
        assert any("zero-length" in w for w in result.warnings)
        assert len(result.left_offset.points) == 2

    def test_single_point(self, offset_engine):
        result = offset_engine.offset_curve(Curve.from_coords([(0, 0)]), 100.0)
        assert not result.success
        assert result.left_offset is None

    def test_collapsed_baseline(self, offset_engine):
        result = offset_engine.offset_curve(Curve.from_coords([(5, 5), (5, 5)]), 100.0)
        assert not result.success
        assert any("zero-length" in w for w in result.warnings)

    def test_non_positive_half_thickness(self, offset_engine):
        result = offset_engine.offset_curve(Curve.from_coords([(0, 0), (10, 0)]), -50.0)
        assert not result.success

    def test_non_finite_coordinates(self, offset_engine):
        result = offset_engine.offset_curve(Curve.from_coords([(0, 0), (math.inf, 0)]), 50.0)
        assert not result.success


class TestClosedLoop:
    def test_square_room_becomes_annulus(self, offset_engine):
        square = Curve.from_coords([(0, 0), (1000, 0), (1000, 1000), (0, 1000)], is_closed=True)
        result = offset_engine.offset_curve(square, 100.0)
        assert result.success
        assert result.is_closed
        polygon = offset_engine.build_solid_polygon(result.left_offset, result.right_offset, closed=True)
        assert len(polygon.holes) == 1
        assert polygon.area == pytest.approx(1200.0**2 - 800.0**2)


class TestSelectOptimalJoinType:
    def test_right_angle_miters(self, offset_engine):
        assert offset_engine.select_optimal_join_type(math.pi / 2, 200.0) is JoinType.MITER

    def test_hairpin_rounds(self, offset_engine):
        assert offset_engine.select_optimal_join_type(math.radians(170), 200.0) is JoinType.ROUND

    def test_short_segment_bevels(self, offset_engine):
        assert offset_engine.select_optimal_join_type(math.pi / 2, 200.0, 50.0) is JoinType.BEVEL

    def test_miter_limit_bevels(self):
        engine = RobustOffsetEngine(EngineConfig(miter_limit=1.2))
        assert engine.select_optimal_join_type(math.pi / 2, 200.0) is JoinType.BEVEL


class TestHairpinClipping:
    """Inner joins at near-reversals must not run off along the offset lines."""

    HAIRPIN = [(0, 0), (1000, 0), (0, 0.5)]

    def test_inner_join_is_clipped(self, offset_engine):
        result = offset_engine.offset_curve(Curve.from_coords(self.HAIRPIN), 100.0, JoinType.BEVEL)
        assert result.success
        assert result.fallback_used
        assert result.clipped_vertices == [1]
        assert result.needs_swept_outline
        assert any("clipped" in w for w in result.warnings)

    def test_offset_stays_near_the_baseline(self, offset_engine):
        result = offset_engine.offset_curve(Curve.from_coords(self.HAIRPIN), 100.0, JoinType.BEVEL)
        for curve in (result.left_offset, result.right_offset):
            for p in curve.points:
                assert -1.0 <= p.x <= 1001.0
                assert abs(p.y) <= 101.0

    def test_right_angle_is_not_clipped(self, offset_engine):
        result = offset_engine.offset_curve(Curve.from_coords([(0, 0), (1000, 0), (1000, 1000)]), 100.0)
        assert result.clipped_vertices == []
        assert not result.needs_swept_outline
        assert _has_point(result.left_offset, (900.0, 100.0))


class TestSweptPolygon:
    def test_straight_wall(self, offset_engine):
        polygon = offset_engine.swept_polygon(Curve.from_coords([(0, 0), (1000, 0)]), 100.0)
        assert polygon.area == pytest.approx(200000.0)
        assert polygon.creation_method == "swept"

    def test_hairpin_is_one_simple_polygon(self, offset_engine):
        polygon = offset_engine.swept_polygon(
            Curve.from_coords(TestHairpinClipping.HAIRPIN), 100.0, JoinType.BEVEL, polygon_id="w_solid"
        )
        assert polygon.is_valid
        assert polygon.id == "w_solid"
        assert polygon.area < 1.5 * 215935.0

    def test_degenerate_input(self, offset_engine):
        assert offset_engine.swept_polygon(Curve.from_coords([(0, 0), (10, 0)]), 0.0) is None
        assert offset_engine.swept_polygon(Curve.from_coords([(0, 0)]), 50.0) is None
