"""Tests for tolerance module."""
import math

import pytest

from wall_geometry.contracts import EngineConfig, ToleranceContext
from wall_geometry.tolerance import (
    CONTEXT_PROFILES,
    AdaptiveToleranceManager,
    angle_factor,
    calculate_tolerance,
)

THICKNESSES = [0.5, 1, 10, 50, 100, 200, 350, 1000, 5000, 100000]


class TestCalculateTolerance:
    """Bounds and monotonicity of the pure tolerance function."""

    @pytest.mark.parametrize("context", list(ToleranceContext))
    def test_non_decreasing_in_thickness(self, context):
        values = [calculate_tolerance(t, 1e-3, None, context) for t in THICKNESSES]
        assert all(b >= a for a, b in zip(values, values[1:]))

    @pytest.mark.parametrize("context", list(ToleranceContext))
    @pytest.mark.parametrize("angle", [None, 0.0, 0.1, 0.4, 1.0, math.pi / 2, math.pi - 0.05])
    def test_bounded_by_precision_and_ceiling(self, context, angle):
        ceiling = 1e-3 * CONTEXT_PROFILES[context].ceiling_factor
        for t in THICKNESSES:
            value = calculate_tolerance(t, 1e-3, angle, context)
            assert 1e-3 <= value <= ceiling

    def test_near_parallel_angle_loosens_tolerance(self):
        perpendicular = calculate_tolerance(100, 1e-3, math.pi / 2, ToleranceContext.OFFSET)
        shallow = calculate_tolerance(100, 1e-3, math.radians(5), ToleranceContext.OFFSET)
        assert perpendicular == pytest.approx(1e-3)
        assert shallow == pytest.approx(5e-3)

    def test_invalid_precision_falls_back_to_default(self):
        value = calculate_tolerance(100, -1.0, None, ToleranceContext.OFFSET)
        assert value == pytest.approx(1e-3)

    def test_angle_factor_steps(self):
        assert angle_factor(math.radians(10)) == 5.0
        assert angle_factor(math.radians(20)) == 3.0
        assert angle_factor(math.radians(45)) == 1.5
        assert angle_factor(math.radians(90)) == 1.0
        # Close to anti-parallel counts as near-parallel too.
        assert angle_factor(math.pi - math.radians(10)) == 5.0


class TestAdaptiveToleranceManager:
    def test_uses_config_precision(self):
        manager = AdaptiveToleranceManager(EngineConfig(document_precision=0.01))
        assert manager.calculate_tolerance(100) >= 0.01

    def test_memoized_value_is_stable(self):
        manager = AdaptiveToleranceManager()
        first = manager.calculate_tolerance(350, None, 0.3, ToleranceContext.BOOLEAN_OPERATION)
        second = manager.calculate_tolerance(350, None, 0.3, ToleranceContext.BOOLEAN_OPERATION)
        assert first == second

    def test_boolean_tolerance_grows_with_complexity(self):
        manager = AdaptiveToleranceManager()
        assert manager.boolean_tolerance(200, 1000) > manager.boolean_tolerance(200, 1)

    def test_offset_tolerance_grows_with_curvature(self):
        manager = AdaptiveToleranceManager()
        assert manager.offset_tolerance(200, 0.01) > manager.offset_tolerance(200, 0.0)

    def test_tiers_are_coarser_by_factor(self):
        manager = AdaptiveToleranceManager()
        tiers = manager.tolerance_tiers(1e-3, 3)
        assert tiers == pytest.approx([1e-3, 1e-2, 1e-1])
        assert manager.next_tier(1e-3) == pytest.approx(1e-2)

    def test_validate_tolerance(self):
        manager = AdaptiveToleranceManager()
        assert manager.validate_tolerance(2e-3, ToleranceContext.OFFSET) == []
        assert manager.validate_tolerance(1e-6, ToleranceContext.OFFSET)
        assert manager.validate_tolerance(1.0, ToleranceContext.VERTEX_MERGE)
        assert manager.validate_tolerance(-1.0, ToleranceContext.OFFSET) == [
            "Tolerance must be a positive finite number"
        ]

    def test_signature_is_stable_text(self):
        assert AdaptiveToleranceManager.signature(0.0015) == "1.500000e-03"
