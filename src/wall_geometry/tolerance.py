"""Adaptive tolerance selection.

A tolerance depends on wall thickness, document precision, the local angle
between baselines and the algorithm that consumes it.  The mapping is pure so
its output can double as a cache-key component.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

from wall_geometry.contracts import EngineConfig, ToleranceContext

logger = logging.getLogger(__name__)

DEFAULT_DOCUMENT_PRECISION = 1e-3
REFERENCE_THICKNESS = 100.0
MIN_THICKNESS_SCALE = 0.5
MAX_THICKNESS_SCALE = 4.0


@dataclass(frozen=True)
class ContextProfile:
    scale: float
    floor_factor: float
    ceiling_factor: float


CONTEXT_PROFILES: Dict[ToleranceContext, ContextProfile] = {
    ToleranceContext.VERTEX_MERGE: ContextProfile(2.0, 1.0, 10.0),
    ToleranceContext.OFFSET: ContextProfile(1.0, 1.0, 50.0),
    ToleranceContext.BOOLEAN_OPERATION: ContextProfile(1.5, 1.0, 100.0),
    ToleranceContext.SHAPE_HEALING: ContextProfile(3.0, 1.0, 200.0),
}

# (upper bound on deviation from parallel in degrees, factor)
ANGLE_FACTORS: Tuple[Tuple[float, float], ...] = (
    (15.0, 5.0),
    (30.0, 3.0),
    (60.0, 1.5),
)


def angle_deviation(local_angle: Optional[float]) -> float:
    """Distance in radians of *local_angle* from the nearest of 0 and pi."""
    if local_angle is None or not math.isfinite(local_angle):
        return math.pi / 2
    a = abs(local_angle) % math.pi
    return min(a, math.pi - a)


def angle_factor(local_angle: Optional[float]) -> float:
    deviation = math.degrees(angle_deviation(local_angle))
    for limit, factor in ANGLE_FACTORS:
        if deviation < limit:
            return factor
    return 1.0


def thickness_scale(thickness: float) -> float:
    if not math.isfinite(thickness) or thickness <= 0:
        return MIN_THICKNESS_SCALE
    return min(MAX_THICKNESS_SCALE, max(MIN_THICKNESS_SCALE, math.sqrt(thickness / REFERENCE_THICKNESS)))


def _precision(document_precision: float) -> float:
    if not math.isfinite(document_precision) or document_precision <= 0:
        return DEFAULT_DOCUMENT_PRECISION
    return document_precision


def calculate_tolerance(
    thickness: float,
    document_precision: float,
    local_angle: Optional[float],
    context: ToleranceContext,
) -> float:
    """Tolerance for one computation.

    Non-decreasing in thickness, never below ``document_precision`` and never
    above the context ceiling.
    """
    precision = _precision(document_precision)
    profile = CONTEXT_PROFILES[context]
    raw = precision * thickness_scale(thickness) * profile.scale * angle_factor(local_angle)
    floor = precision * profile.floor_factor
    ceiling = precision * profile.ceiling_factor
    return min(ceiling, max(floor, raw))


class AdaptiveToleranceManager:
    """Memoizing front end over :func:`calculate_tolerance`."""

    def __init__(self, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()
        self._memo: Dict[Tuple[float, float, Optional[float], ToleranceContext], float] = {}

    def calculate_tolerance(
        self,
        thickness: float,
        document_precision: Optional[float] = None,
        local_angle: Optional[float] = None,
        context: ToleranceContext = ToleranceContext.OFFSET,
    ) -> float:
        precision = (
            self.config.document_precision if document_precision is None else document_precision
        )
        key = (thickness, precision, local_angle, context)
        cached = self._memo.get(key)
        if cached is not None:
            return cached
        value = calculate_tolerance(thickness, precision, local_angle, context)
        if len(self._memo) > 4096:
            self._memo.clear()
        self._memo[key] = value
        return value

    def vertex_merge_tolerance(self, thickness: float, local_angle: Optional[float] = None) -> float:
        return self.calculate_tolerance(thickness, None, local_angle, ToleranceContext.VERTEX_MERGE)

    def offset_tolerance(self, thickness: float, curvature: float = 0.0) -> float:
        """Offset tolerance grown for curved baselines."""
        base = self.calculate_tolerance(thickness, None, None, ToleranceContext.OFFSET)
        if curvature <= 0 or not math.isfinite(curvature):
            return base
        return base * (1.0 + math.log10(1.0 + curvature * 1000.0))

    def boolean_tolerance(self, thickness: float, complexity: int = 1) -> float:
        """Boolean tolerance grown with the vertex count of the operands."""
        base = self.calculate_tolerance(thickness, None, None, ToleranceContext.BOOLEAN_OPERATION)
        if complexity <= 1:
            return base
        return base * (1.0 + math.log10(complexity))

    def tolerance_tiers(self, tolerance: float, count: int = 3) -> List[float]:
        """Retry ladder starting at *tolerance*, each tier coarser by the tier factor."""
        factor = max(self.config.tolerance_tier_factor, 1.0 + 1e-9)
        return [tolerance * factor**i for i in range(max(1, count))]

    def next_tier(self, tolerance: float) -> float:
        return self.tolerance_tiers(tolerance, 2)[1]

    def adjust_for_failure(self, tolerance: float, attempt: int) -> float:
        adjusted = tolerance * (2.0 ** max(attempt, 0))
        logger.debug("Tolerance %.3e adjusted to %.3e after %d failures", tolerance, adjusted, attempt)
        return adjusted

    def bounds(self, context: ToleranceContext) -> Tuple[float, float]:
        precision = _precision(self.config.document_precision)
        profile = CONTEXT_PROFILES[context]
        return precision * profile.floor_factor, precision * profile.ceiling_factor

    def validate_tolerance(self, tolerance: float, context: ToleranceContext) -> List[str]:
        """Problems with a tolerance for *context*; empty when acceptable."""
        problems: List[str] = []
        if not math.isfinite(tolerance) or tolerance <= 0:
            problems.append("Tolerance must be a positive finite number")
            return problems
        low, high = self.bounds(context)
        if tolerance < low:
            problems.append(f"Tolerance {tolerance:.3e} below {context.value} floor {low:.3e}")
        if tolerance > high:
            problems.append(f"Tolerance {tolerance:.3e} above {context.value} ceiling {high:.3e}")
        return problems

    @staticmethod
    def signature(tolerance: float) -> str:
        return f"{tolerance:.6e}"
