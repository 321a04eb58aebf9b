"""Fallback strategies and the notifications they emit.

Each executed fallback yields a :class:`FallbackNotification` and a
recoverable :class:`GeometricError`.  Notifications are returned with the
result and pushed to subscribers; presentation is the subscriber's business.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import shapely
from shapely.errors import GEOSException
from shapely.geometry import LineString

from wall_geometry.boolean_ops import BooleanOperationsEngine, extract_polygons
from wall_geometry.contracts import BooleanOp, EngineConfig, JoinType, Severity
from wall_geometry.errors import GeometricError, GeometricErrorType
from wall_geometry.offset import OffsetResult, RobustOffsetEngine
from wall_geometry.primitives import Curve, Point2D, Polygon2D, left_normal, unit

logger = logging.getLogger(__name__)

SIMPLIFY_DISTANCE = 1.0
REDUCED_PRECISION_FACTOR = 100.0
REDUCED_MITER_LIMIT = 2.0
FOOTPRINT_QUALITY_IMPACT = 0.7
SWEPT_QUALITY_IMPACT = 0.15


@dataclass(frozen=True)
class FallbackNotification:
    operation: str
    original_error: str
    fallback_method: str
    quality_impact: float
    user_guidance: Tuple[str, ...] = ()
    can_retry: bool = True
    alternative_approaches: Tuple[str, ...] = ()
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "operation": self.operation,
            "original_error": self.original_error,
            "fallback_method": self.fallback_method,
            "quality_impact": self.quality_impact,
            "user_guidance": list(self.user_guidance),
            "can_retry": self.can_retry,
            "alternative_approaches": list(self.alternative_approaches),
            "timestamp": self.timestamp,
        }


@dataclass
class FallbackStrategy:
    name: str
    operation: str
    priority: int
    quality_impact: float
    execute: Callable[..., Any]
    user_guidance: Tuple[str, ...] = ()
    can_handle: Callable[[GeometricError], bool] = lambda error: True


@dataclass
class FallbackOutcome:
    success: bool
    value: Any = None
    strategy: Optional[str] = None
    notification: Optional[FallbackNotification] = None
    error: Optional[GeometricError] = None
    attempts: List[str] = field(default_factory=list)

    @property
    def quality(self) -> float:
        return 1.0 - self.notification.quality_impact if self.notification else 1.0


class FallbackMechanisms:
    """Ordered recovery strategies for failed offsets and booleans, with notifications."""

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        offset_engine: Optional[RobustOffsetEngine] = None,
        boolean_engine: Optional[BooleanOperationsEngine] = None,
    ):
        self.config = config or EngineConfig()
        self.offset_engine = offset_engine or RobustOffsetEngine(self.config)
        self.boolean_engine = boolean_engine or BooleanOperationsEngine(
            self.config, self.offset_engine.tolerances
        )
        self._subscribers: List[Callable[[FallbackNotification], None]] = []
        self._strategies: Dict[str, List[FallbackStrategy]] = {}
        for strategy in self._default_strategies():
            self.register_strategy(strategy)

    # ── registry and notifications ───────────────────────────────────────────

    def register_strategy(self, strategy: FallbackStrategy) -> None:
        bucket = [s for s in self._strategies.get(strategy.operation, []) if s.name != strategy.name]
        bucket.append(strategy)
        bucket.sort(key=lambda s: s.priority)
        self._strategies[strategy.operation] = bucket

    def strategies_for(self, operation: str) -> List[FallbackStrategy]:
        return list(self._strategies.get(operation, []))

    def subscribe(self, callback: Callable[[FallbackNotification], None]) -> None:
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[FallbackNotification], None]) -> None:
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    def emit(self, notification: FallbackNotification) -> FallbackNotification:
        logger.info(
            "Fallback for %s: %s (quality impact %.2f)",
            notification.operation, notification.fallback_method, notification.quality_impact,
        )
        for callback in list(self._subscribers):
            try:
                callback(notification)
            except Exception as exc:  # subscribers never interrupt geometry work
                logger.warning("Fallback subscriber %r failed: %s", callback, exc)
        return notification

    def notify(
        self,
        operation: str,
        original_error: str,
        fallback_method: str,
        quality_impact: float,
        user_guidance: Sequence[str] = (),
        alternatives: Sequence[str] = (),
        can_retry: bool = True,
    ) -> FallbackNotification:
        return self.emit(
            FallbackNotification(
                operation=operation,
                original_error=original_error,
                fallback_method=fallback_method,
                quality_impact=min(1.0, max(0.0, quality_impact)),
                user_guidance=tuple(user_guidance),
                can_retry=can_retry,
                alternative_approaches=tuple(alternatives),
            )
        )

    # ── execution ────────────────────────────────────────────────────────────

    def execute_offset_fallback(
        self,
        baseline: Curve,
        half_thickness: float,
        error: GeometricError,
        tolerance: Optional[float] = None,
    ) -> FallbackOutcome:
        def accept(result: Any) -> bool:
            return isinstance(result, OffsetResult) and result.success

        return self._run("offset", error, accept, baseline, half_thickness, tolerance)

    def execute_boolean_fallback(
        self,
        polygon_sets: Sequence[Sequence[Polygon2D]],
        op: BooleanOp,
        thickness: float,
        error: GeometricError,
    ) -> FallbackOutcome:
        def accept(result: Any) -> bool:
            return bool(result)

        return self._run("boolean", error, accept, polygon_sets, op, thickness)

    def degraded_footprint(
        self, baseline: Curve, thickness: float, wall_id: str, error: GeometricError
    ) -> FallbackOutcome:
        """Last rung: a chord rectangle, or a square around a collapsed baseline."""
        pts = [p for p in baseline.points if p.is_finite]
        h = thickness / 2.0 if math.isfinite(thickness) and thickness > 0 else self.config.min_sane_thickness / 2.0
        if not pts:
            pts = [Point2D(0.0, 0.0)]
        a, b = _farthest_pair(pts)
        d = unit(b.x - a.x, b.y - a.y)
        if d is None:
            coords = [(a.x - h, a.y - h), (a.x + h, a.y - h), (a.x + h, a.y + h), (a.x - h, a.y + h)]
            method = "point_footprint"
        else:
            n = left_normal(d)
            coords = [
                (a.x - n[0] * h, a.y - n[1] * h),
                (b.x - n[0] * h, b.y - n[1] * h),
                (b.x + n[0] * h, b.y + n[1] * h),
                (a.x + n[0] * h, a.y + n[1] * h),
            ]
            method = "chord_footprint"
        polygon = Polygon2D.from_coords(coords, polygon_id=f"{wall_id}_footprint", creation_method="fallback")
        notification = self.notify(
            operation="wall_solid",
            original_error=error.message,
            fallback_method=method,
            quality_impact=FOOTPRINT_QUALITY_IMPACT,
            user_guidance=(
                "The wall was replaced by a simplified footprint",
                "Check the baseline for overlapping or coincident points",
            ),
            alternatives=("Redraw the wall baseline",),
        )
        recorded = GeometricError(
            error.error_type,
            f"{error.message}; replaced by {method}",
            severity=error.severity,
            operation=error.operation,
            metadata={**error.metadata, "fallback_method": method, "wall_id": wall_id},
            recoverable=True,
            suggested_fix=error.suggested_fix,
        )
        return FallbackOutcome(True, polygon, method, notification, recorded, [method])

    def swept_outline(
        self, baseline: Curve, half_thickness: float, join_type: JoinType, wall_id: str, reason: str
    ) -> FallbackOutcome:
        """Replace a folded offset outline with the buffered baseline."""
        polygon = self.offset_engine.swept_polygon(
            baseline, half_thickness, join_type, polygon_id=f"{wall_id}_solid"
        )
        if polygon is None:
            return FallbackOutcome(False, attempts=["swept_outline"])
        notification = self.notify(
            operation="wall_solid",
            original_error=reason,
            fallback_method="swept_outline",
            quality_impact=SWEPT_QUALITY_IMPACT,
            user_guidance=(f"Wall {wall_id} outline was rebuilt by sweeping its baseline",),
            alternatives=("Lengthen short segments", "Reduce the wall thickness"),
        )
        error = GeometricError.self_intersection(
            f"{reason}; replaced by swept_outline",
            severity=Severity.WARNING,
            operation="build_wall_solid",
            metadata={"wall_id": wall_id, "fallback_method": "swept_outline"},
        )
        return FallbackOutcome(True, polygon, "swept_outline", notification, error, ["swept_outline"])

    def _run(
        self, operation: str, error: GeometricError, accept: Callable[[Any], bool], *args: Any
    ) -> FallbackOutcome:
        attempts: List[str] = []
        strategies = [s for s in self.strategies_for(operation) if s.can_handle(error)]
        for strategy in strategies:
            attempts.append(strategy.name)
            try:
                value = strategy.execute(*args)
            except Exception as exc:  # a failing strategy moves on to the next one
                logger.warning("Fallback strategy %s failed: %s", strategy.name, exc)
                continue
            if not accept(value):
                logger.debug("Fallback strategy %s produced no usable result", strategy.name)
                continue
            if 1.0 - strategy.quality_impact < self.config.fallback_quality_threshold:
                logger.warning(
                    "Fallback %s is below the quality threshold %.2f",
                    strategy.name, self.config.fallback_quality_threshold,
                )
            notification = self.notify(
                operation=operation,
                original_error=error.message,
                fallback_method=strategy.name,
                quality_impact=strategy.quality_impact,
                user_guidance=strategy.user_guidance,
                alternatives=[s.name for s in strategies if s.name != strategy.name],
            )
            recorded = GeometricError(
                error.error_type,
                error.message,
                severity=error.severity,
                operation=error.operation,
                metadata={**error.metadata, "fallback_method": strategy.name},
                recoverable=True,
                suggested_fix=error.suggested_fix,
            )
            return FallbackOutcome(True, value, strategy.name, notification, recorded, attempts)
        return FallbackOutcome(False, None, None, None, error, attempts)

    # ── built-in strategies ──────────────────────────────────────────────────

    def _default_strategies(self) -> List[FallbackStrategy]:
        def is_geometry_error(error: GeometricError) -> bool:
            return error.error_type is not GeometricErrorType.TOLERANCE_EXCEEDED

        return [
            FallbackStrategy(
                "simplified_baseline", "offset", 1, 0.1, self._offset_simplified,
                ("Near-collinear baseline points were removed",),
            ),
            FallbackStrategy(
                "reduced_precision", "offset", 2, 0.2, self._offset_reduced_precision,
                ("Joins were bevelled at a coarser tolerance",),
            ),
            FallbackStrategy(
                "segmented_offset", "offset", 3, 0.3, self._offset_segmented,
                ("Each segment was offset independently without joins",),
                is_geometry_error,
            ),
            FallbackStrategy(
                "endpoint_chord", "offset", 4, 0.5, self._offset_chord,
                ("The wall was straightened between its end points",),
            ),
            FallbackStrategy(
                "buffered_geometry", "boolean", 1, 0.1, self._boolean_buffered,
                ("Invalid input polygons were repaired before clipping",),
            ),
            FallbackStrategy(
                "simplified_geometry", "boolean", 2, 0.2, self._boolean_simplified,
                ("Input polygons were simplified before clipping",),
            ),
            FallbackStrategy(
                "disjoint_collection", "boolean", 3, 0.4, self._boolean_disjoint,
                ("Solids were kept separate because clipping failed",),
            ),
        ]

    def _offset_simplified(self, baseline: Curve, h: float, tolerance: Optional[float]) -> OffsetResult:
        coords = [p.xy for p in baseline.points if p.is_finite]
        if len(coords) < 2:
            return OffsetResult(False, None, None, JoinType.BEVEL, ["Too few finite points"])
        simple = LineString(coords).simplify(SIMPLIFY_DISTANCE, preserve_topology=False)
        curve = Curve.from_coords(list(simple.coords), is_closed=baseline.is_closed, creation_method="simplified")
        return self.offset_engine.offset_curve(curve, h, JoinType.BEVEL, tolerance)

    def _offset_reduced_precision(self, baseline: Curve, h: float, tolerance: Optional[float]) -> OffsetResult:
        base = tolerance or self.config.document_precision
        return self.offset_engine.offset_curve(
            baseline, h, JoinType.BEVEL, base * REDUCED_PRECISION_FACTOR, miter_limit=REDUCED_MITER_LIMIT
        )

    def _offset_segmented(self, baseline: Curve, h: float, tolerance: Optional[float]) -> OffsetResult:
        tol = tolerance or self.config.document_precision
        left: List[Tuple[float, float]] = []
        right: List[Tuple[float, float]] = []
        for a, b in baseline.segments():
            if not (a.is_finite and b.is_finite):
                continue
            d = unit(b.x - a.x, b.y - a.y)
            if d is None or a.distance_to(b) < tol:
                continue
            n = left_normal(d)
            left.extend([(a.x + n[0] * h, a.y + n[1] * h), (b.x + n[0] * h, b.y + n[1] * h)])
            right.extend([(a.x - n[0] * h, a.y - n[1] * h), (b.x - n[0] * h, b.y - n[1] * h)])
        if not left:
            return OffsetResult(False, None, None, JoinType.BUTT, ["No offsettable segment"])
        return OffsetResult(
            True,
            Curve.from_coords(left, creation_method="offset"),
            Curve.from_coords(right, creation_method="offset"),
            JoinType.BUTT,
            ["Segments offset independently"],
            fallback_used=True,
            tolerance=tol,
        )

    def _offset_chord(self, baseline: Curve, h: float, tolerance: Optional[float]) -> OffsetResult:
        pts = [p for p in baseline.points if p.is_finite]
        if len(pts) < 2:
            return OffsetResult(False, None, None, JoinType.BUTT, ["Too few finite points"])
        a, b = _farthest_pair(pts)
        result = self.offset_engine.offset_curve(Curve((a, b)), h, JoinType.BUTT, tolerance)
        result.fallback_used = True
        return result

    def _boolean_buffered(self, polygon_sets, op: BooleanOp, thickness: float) -> List[Polygon2D]:
        repaired = [[_repair(p) for p in polys] for polys in polygon_sets]
        repaired = [[p for ps in polys for p in ps] for polys in repaired]
        result = self.boolean_engine.combine_polygons(repaired, op, thickness)
        return result.polygons if result.success else []

    def _boolean_simplified(self, polygon_sets, op: BooleanOp, thickness: float) -> List[Polygon2D]:
        tol = self.boolean_engine.tolerances.boolean_tolerance(thickness) * 10.0
        simplified = []
        for polys in polygon_sets:
            out: List[Polygon2D] = []
            for p in polys:
                geom = p.to_shapely()
                if geom.is_empty:
                    continue
                for part in extract_polygons(shapely.make_valid(geom.simplify(tol))):
                    out.append(Polygon2D.from_shapely(part, creation_method="fallback"))
            simplified.append(out)
        result = self.boolean_engine.combine_polygons(simplified, op, thickness)
        return result.polygons if result.success else []

    def _boolean_disjoint(self, polygon_sets, op: BooleanOp, thickness: float) -> List[Polygon2D]:
        sets = polygon_sets if op is BooleanOp.UNION else polygon_sets[:1]
        return [p for polys in sets for p0 in polys for p in _repair(p0)]


def _repair(polygon: Polygon2D) -> List[Polygon2D]:
    geom = polygon.to_shapely()
    if geom.is_empty:
        return []
    if geom.is_valid:
        return [polygon]
    try:
        parts = extract_polygons(shapely.make_valid(geom)) or extract_polygons(geom.buffer(0))
    except GEOSException as exc:
        logger.warning("Could not repair polygon %s: %s", polygon.id, exc)
        return []
    return [
        Polygon2D.from_shapely(part, polygon_id=f"{polygon.id}_r{i}", creation_method="fallback")
        for i, part in enumerate(parts)
    ]


def _farthest_pair(points: Sequence[Point2D]) -> Tuple[Point2D, Point2D]:
    """First point and the point farthest from it (end points for a simple wall)."""
    first = points[0]
    far = max(points, key=lambda p: p.distance_to(first))
    return first, far
