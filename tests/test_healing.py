"""Tests for healing.py: slivers, micro-gaps and invalid polygons."""
import pytest

from conftest import make_solid
from wall_geometry.healing import ShapeHealer, count_micro_gaps
from wall_geometry.primitives import Polygon2D


def _rect(x0, y0, x1, y1):
    return Polygon2D.from_coords([(x0, y0), (x1, y0), (x1, y1), (x0, y1)])


@pytest.fixture
def healer():
    return ShapeHealer()


@pytest.fixture
def base_solid():
    return make_solid("W", [(0, 50), (100, 50)], thickness=100.0)


class TestShapeHealer:
    """Each healing pass records what it did."""

    def test_bowtie_becomes_valid(self, healer, base_solid):
        bowtie = Polygon2D.from_coords([(0, 0), (100, 100), (100, 0), (0, 100)])
        result = healer.heal(base_solid.with_updates(solid_geometry=[bowtie]))
        assert result.success
        assert result.solid.solid_geometry
        assert all(p.is_valid for p in result.solid.solid_geometry)
        fix = result.operations[0]
        assert fix.operation == "fix_self_intersections"
        assert fix.issues_fixed == 1

    def test_sliver_removed(self, healer, base_solid):
        solid = base_solid.with_updates(
            solid_geometry=[_rect(0, 0, 100, 100), _rect(500, 0, 510, 0.1)]
        )
        result = healer.heal(solid)
        assert result.slivers_removed == 1
        assert len(result.solid.solid_geometry) == 1
        assert result.solid.area == pytest.approx(10000.0)

    def test_lone_sliver_is_kept(self, healer, base_solid):
        solid = base_solid.with_updates(solid_geometry=[_rect(0, 0, 10, 0.1)])
        result = healer.heal(solid)
        assert len(result.solid.solid_geometry) == 1

    def test_micro_gap_closed(self, healer, base_solid):
        solid = base_solid.with_updates(
            solid_geometry=[_rect(0, 0, 100, 100), _rect(100.001, 0, 200, 100)]
        )
        result = healer.heal(solid)
        assert result.micro_gaps_closed == 1
        assert len(result.solid.solid_geometry) == 1
        assert result.solid.area == pytest.approx(20000.0, rel=1e-4)

    def test_history_is_appended(self, healer, base_solid):
        solid = base_solid.with_updates(solid_geometry=[_rect(0, 0, 100, 100)])
        once = healer.heal(solid).solid
        twice = healer.heal(once).solid
        assert len(once.healing_history) == 5
        assert len(twice.healing_history) == 10
        assert twice.version == solid.version + 2

    def test_clean_solid_untouched(self, healer, base_solid):
        solid = base_solid.with_updates(solid_geometry=[_rect(0, 0, 100, 100)])
        result = healer.heal(solid)
        assert result.issues_fixed == 0
        assert result.solid.solid_geometry[0].almost_equals(solid.solid_geometry[0])


class TestCountMicroGaps:
    def test_far_apart_shapes_are_not_gaps(self):
        a = _rect(0, 0, 10, 10).to_shapely()
        b = _rect(20, 0, 30, 10).to_shapely()
        assert count_micro_gaps([a, b], 0.01, 1.0) == 0

    def test_close_shapes_count(self):
        a = _rect(0, 0, 10, 10).to_shapely()
        b = _rect(10.005, 0, 20, 10).to_shapely()
        assert count_micro_gaps([a, b], 0.01, 1.0) == 1

    def test_row_of_shapes_counts_each_neighbour_pair_once(self):
        shapes = [_rect(10.005 * i, 0, 10.005 * i + 10, 10).to_shapely() for i in range(200)]
        assert count_micro_gaps(shapes, 0.01, 1.0) == 199
