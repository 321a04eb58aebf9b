"""Tests for edge_cases.py: detection and planning around hard inputs."""
import pytest

from conftest import make_solid
from wall_geometry.contracts import EngineConfig, JoinType, Severity
from wall_geometry.edge_cases import (
    EdgeCase,
    EdgeCaseDetector,
    EdgeCaseHandler,
    EdgeCaseType,
    prioritize,
)
from wall_geometry.fallback import FallbackMechanisms
from wall_geometry.primitives import Curve, Point2D


@pytest.fixture
def detector():
    return EdgeCaseDetector(EngineConfig())


@pytest.fixture
def handler(detector):
    return EdgeCaseHandler(detector, FallbackMechanisms(detector.config))


def _types(cases):
    return {c.case_type for c in cases}


class TestCurveDetection:
    def test_zero_length_segment(self, detector):
        cases = detector.detect_curve(Curve.from_coords([(0, 0), (0, 0), (10, 0)]), 1e-3)
        assert EdgeCaseType.ZERO_LENGTH_SEGMENT in _types(cases)

    def test_closed_loop_by_coincident_ends(self, detector):
        curve = Curve.from_coords([(0, 0), (10, 0), (10, 10), (0, 0)])
        assert EdgeCaseType.CLOSED_LOOP in _types(detector.detect_curve(curve, 1e-3))

    def test_spike_recommends_bevel(self, detector):
        cases = detector.detect_curve(Curve.from_coords([(0, 0), (1000, 0), (0, 1)]), 1e-3)
        spike = [c for c in cases if c.case_type is EdgeCaseType.EXTREME_ANGLE]
        assert len(spike) == 1
        assert spike[0].recommended_join is JoinType.BEVEL
        assert spike[0].metadata["vertex_index"] == 1

    def test_non_finite_point(self, detector):
        cases = detector.detect_curve(Curve.from_coords([(0, 0), (float("inf"), 0), (10, 0)]), 1e-3)
        assert EdgeCaseType.NUMERICAL_INSTABILITY in _types(cases)

    def test_clean_curve(self, detector):
        assert detector.detect_curve(Curve.from_coords([(0, 0), (10, 0), (10, 10)]), 1e-3) == []


class TestWallAndNodeDetection:
    def test_thick_short_segment(self, detector):
        baseline = Curve.from_coords([(0, 0), (1000, 0), (1000, 50), (2000, 50)])
        cases = detector.detect_wall("W", baseline, 200.0)
        short = [c for c in cases if c.case_type is EdgeCaseType.THICK_SHORT_SEGMENT]
        assert short and short[0].metadata["segments"] == [1]

    def test_near_parallel_node(self, detector):
        a = make_solid("A", [(0, 0), (1000, 0)])
        b = make_solid("B", [(1000, 0), (2000, 50)])
        cases = detector.detect_node([a, b], Point2D(1000, 0))
        assert [c.case_type for c in cases] == [EdgeCaseType.NEAR_PARALLEL]
        assert cases[0].recommended_join is JoinType.BUTT

    def test_right_angle_node_is_clean(self, detector, corner_solids):
        assert detector.detect_node(list(corner_solids), Point2D(10, 0)) == []

    def test_duplicate_walls(self, detector):
        a = make_solid("A", [(0, 0), (1000, 0)])
        b = make_solid("B", [(1000, 0), (0, 0)])
        c = make_solid("C", [(0, 500), (1000, 500)])
        cases = detector.detect_network([a, b, c])
        assert [c.affected_elements for c in cases] == [("A", "B")]
        assert not cases[0].can_auto_fix


class TestPrioritize:
    def test_severity_order(self):
        cases = [
            EdgeCase(EdgeCaseType.CLOSED_LOOP, Severity.WARNING, "loop"),
            EdgeCase(EdgeCaseType.NUMERICAL_INSTABILITY, Severity.ERROR, "nan"),
            EdgeCase(EdgeCaseType.DUPLICATE_WALL, Severity.CRITICAL, "dup"),
        ]
        assert [c.severity for c in prioritize(cases)] == [
            Severity.CRITICAL, Severity.ERROR, Severity.WARNING,
        ]


class TestEdgeCaseHandler:
    def test_clean_curve_merges_points(self, handler):
        curve = Curve.from_coords([(0, 0), (0, 0.0001), (float("nan"), 0), (10, 0)])
        cleaned, removed = handler.clean_curve(curve, 1e-3)
        assert removed == 2
        assert [p.xy for p in cleaned.points] == [(0, 0), (10, 0)]

    def test_plan_wall_bevels_short_segments(self, handler):
        baseline = Curve.from_coords([(0, 0), (1000, 0), (1000, 50), (2000, 50)])
        plan = handler.plan_wall("W", baseline, 200.0, JoinType.MITER, 1e-3)
        assert plan.join_type is JoinType.BEVEL
        assert len(plan.notifications) == 1
        assert plan.notifications[0].fallback_method == "bevel_join"

    def test_plan_wall_keeps_explicit_join(self, handler):
        baseline = Curve.from_coords([(0, 0), (1000, 0), (1000, 50), (2000, 50)])
        plan = handler.plan_wall("W", baseline, 200.0, JoinType.ROUND, 1e-3)
        assert plan.join_type is JoinType.ROUND
        assert plan.notifications == []

    def test_plan_wall_closes_loop(self, handler):
        baseline = Curve.from_coords([(0, 0), (1000, 0), (1000, 1000), (0, 1000), (0, 0)])
        plan = handler.plan_wall("W", baseline, 200.0, JoinType.MITER, 1e-3)
        assert plan.is_closed
        assert len(plan.baseline.points) == 4

    def test_plan_node_butts_near_parallel(self, handler):
        a = make_solid("A", [(0, 0), (1000, 0)])
        b = make_solid("B", [(1000, 0), (2000, 50)])
        plan = handler.plan_node([a, b], Point2D(1000, 0), JoinType.MITER)
        assert plan.join_type is JoinType.BUTT
        assert plan.notifications[0].fallback_method == "butt_join"
