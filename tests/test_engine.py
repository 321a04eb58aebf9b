"""Tests for engine.py: the wall pipeline and network processing."""
import pytest

from conftest import make_wall
from wall_geometry.contracts import EngineConfig, IntersectionType, JoinType
from wall_geometry.engine import WallGeometryEngine, run_monitored
from wall_geometry.errors import GeometricErrorType
from wall_geometry.network import WallNetwork


class TestBuildWallSolid:
    """Single-wall pipeline: offset, normalize, heal, validate."""

    def test_straight_wall(self, engine):
        result = engine.build_wall_solid(make_wall("W", [(0, 0), (10, 0)]))
        assert result.success
        solid = result.solid
        assert all(p.y == pytest.approx(100.0) for p in solid.left_offset.points)
        assert all(p.y == pytest.approx(-100.0) for p in solid.right_offset.points)
        assert len(solid.solid_geometry) == 1
        assert solid.area == pytest.approx(10.0 * 200.0)
        assert result.errors == []
        assert result.notifications == []
        assert result.validation.is_valid
        assert solid.last_validated is not None

    def test_version_follows_input(self, engine):
        result = engine.build_wall_solid(make_wall("W", [(0, 0), (1000, 0)], version=3))
        assert result.solid.version == 3

    def test_corner_records_join_types(self, engine):
        wall = make_wall("W", [(0, 0), (1000, 0), (1000, 1000)])
        solid = engine.build_wall_solid(wall).solid
        assert list(solid.join_types.values()) == [JoinType.MITER]
        assert solid.solid_geometry[0].is_valid

    def test_non_positive_thickness_is_rejected(self, engine):
        result = engine.build_wall_solid(make_wall("W", [(0, 0), (10, 0)], thickness=-100))
        assert not result.success
        assert result.solid is None
        assert not result.errors[0].recoverable
        assert "thickness" in result.errors[0].message

    def test_single_point_is_rejected(self, engine):
        result = engine.build_wall_solid(make_wall("W", [(0, 0)]))
        assert not result.success
        assert result.errors[0].error_type is GeometricErrorType.DEGENERATE_GEOMETRY

    def test_collapsed_baseline_degrades(self, engine):
        result = engine.build_wall_solid(make_wall("W", [(5, 5), (5, 5)]))
        assert result.success
        assert result.degraded
        assert result.solid.solid_geometry
        assert any(e.recoverable for e in result.errors)
        assert any(n.fallback_method == "point_footprint" for n in result.notifications)

    def test_short_segments_are_bevelled(self, engine):
        wall = make_wall("W", [(0, 0), (1000, 0), (1000, 50), (2000, 50)])
        result = engine.build_wall_solid(wall)
        assert result.success
        assert set(result.solid.join_types.values()) == {JoinType.BEVEL}
        assert result.notifications
        assert result.solid.solid_geometry[0].is_valid

    def test_zero_length_segment_warning(self, engine):
        result = engine.build_wall_solid(make_wall("W", [(0, 0), (0, 0.0000001), (1000, 0)]))
        assert result.success
        assert result.solid.solid_geometry[0].is_valid
        assert any(w.rule == "zero_length_segments" for w in result.validation.warnings)

    def test_explicit_join_type(self, engine):
        wall = make_wall("W", [(0, 0), (1000, 0), (1000, 1000)], join_type=JoinType.ROUND)
        solid = engine.build_wall_solid(wall).solid
        assert list(solid.join_types.values()) == [JoinType.ROUND]


class TestFoldedOutlines:
    """Near-reversals and very short segments are swept instead of offset."""

    def test_hairpin_area_stays_bounded(self, engine):
        result = engine.build_wall_solid(make_wall("W", [(0, 0), (1000, 0), (0, 0.5)]))
        assert result.success
        solid = result.solid
        assert len(solid.solid_geometry) == 1
        assert solid.solid_geometry[0].is_valid
        assert 190000.0 < solid.area < 1.5 * 215935.0
        assert any(n.fallback_method == "swept_outline" for n in result.notifications)
        assert any(e.metadata.get("fallback_method") == "swept_outline" for e in result.errors)

    def test_sharp_turn_area_matches_buffer(self, engine):
        result = engine.build_wall_solid(make_wall("W", [(0, 0), (1000, 0), (0, 80)]))
        assert result.success
        assert 200000.0 < result.solid.area < 1.1 * 256019.0

    def test_dense_zigzag_is_one_piece(self, engine):
        coords = [(10.0 * i, 10.0 * (i % 2)) for i in range(50)]
        result = engine.build_wall_solid(make_wall("W", coords))
        assert result.success
        assert len(result.solid.solid_geometry) == 1
        assert result.solid.solid_geometry[0].is_valid
        assert result.solid.geometric_quality.topological_consistency == pytest.approx(1.0)


class TestProcessNetwork:
    def test_l_corner(self, engine, l_shaped_walls):
        result = engine.process_network(WallNetwork(l_shaped_walls))
        assert result.success
        assert len(result.intersections) == 1
        data = result.intersections[0]
        assert data.type is IntersectionType.CORNER
        assert data.resolution_method is JoinType.MITER
        assert data.miter_apex.xy == pytest.approx((1100.0, -100.0))
        for solid in result.solids.values():
            assert [d.id for d in solid.intersection_data] == [data.id]
            assert solid.join_types["node_0"] is JoinType.MITER
            assert solid.version == 0
        assert len(result.combined_geometry) == 1
        assert result.validation.is_valid
        assert result.validation.isolated_walls == []

    def test_combined_geometry_fills_corner(self, engine, l_shaped_walls):
        result = engine.process_network(WallNetwork(l_shaped_walls))
        from shapely.geometry import Point

        combined = result.combined_geometry[0].to_shapely()
        assert combined.buffer(1e-6).contains(Point(1099, -99))

    def test_bad_wall_does_not_stop_network(self, engine, l_shaped_walls):
        walls = l_shaped_walls + [make_wall("bad", [(0, 0), (0, 500)], thickness=0)]
        result = engine.process_network(WallNetwork(walls))
        assert not result.success
        assert set(result.solids) == {"A", "B"}
        assert any(not e.recoverable for e in result.errors)
        assert len(result.intersections) == 1

    def test_near_parallel_walls_are_butted(self, engine):
        walls = [
            make_wall("A", [(0, 0), (1000, 0)]),
            make_wall("B", [(1000, 0), (2000, 50)]),
        ]
        result = engine.process_network(WallNetwork(walls))
        assert result.intersections[0].resolution_method is JoinType.BUTT
        assert result.notifications

    def test_update_invalidates_junctions(self, engine, l_shaped_walls):
        network = WallNetwork(l_shaped_walls)
        engine.process_network(network)
        network.update_wall("A", thickness=300.0)
        assert engine.invalidate_wall("A") == 1
        result = engine.process_network(network)
        assert result.solids["A"].version == 1
        assert engine.cache.stats().computations == 2
        assert result.validation.inconsistent_intersections == [result.intersections[0].id]

    def test_unchanged_network_reuses_cache(self, engine, l_shaped_walls):
        network = WallNetwork(l_shaped_walls)
        engine.process_network(network)
        engine.process_network(network)
        assert engine.cache.stats().computations == 1

    def test_rebuilt_network_with_moved_wall_recomputes(self, engine, l_shaped_walls):
        first = engine.process_network(WallNetwork(l_shaped_walls))
        moved = [make_wall("A", [(-1000, 0), (1000, 0)]), l_shaped_walls[1]]
        second = engine.process_network(WallNetwork(moved))
        assert engine.cache.stats().computations == 2
        assert second.solids["A"].version == first.solids["A"].version
        assert second.combined_geometry[0].area > first.combined_geometry[0].area

    def test_to_dict_is_json_ready(self, engine, l_shaped_walls):
        import json

        data = engine.process_network(WallNetwork(l_shaped_walls)).to_dict()
        text = json.dumps(data)
        assert '"intersections"' in text


class _RecordingMonitor:
    def __init__(self):
        self.events = []

    def start_operation(self, operation_type, input_complexity):
        self.events.append(("start", operation_type, input_complexity))
        return "op-1"

    def end_operation(self, operation_id, output_complexity, success, error_type=None):
        self.events.append(("end", operation_id, success, error_type))


class TestRunMonitored:
    def test_wraps_engine_call(self, engine):
        monitor = _RecordingMonitor()
        wall = make_wall("W", [(0, 0), (1000, 0)])
        result = run_monitored(monitor, "build_wall_solid", 2, engine.build_wall_solid, wall)
        assert result.success
        assert monitor.events[0] == ("start", "build_wall_solid", 2)
        assert monitor.events[1] == ("end", "op-1", True, None)

    def test_reports_exceptions(self):
        monitor = _RecordingMonitor()

        def explode():
            raise ValueError("boom")

        with pytest.raises(ValueError):
            run_monitored(monitor, "explode", 0, explode)
        assert monitor.events[-1] == ("end", "op-1", False, "ValueError")

    def test_without_monitor(self):
        assert run_monitored(None, "noop", 0, lambda: 42) == 42


class TestEngineConfig:
    def test_repair_can_be_disabled(self):
        engine = WallGeometryEngine(EngineConfig(repair_enabled=False))
        assert not engine.validator.repair_enabled
