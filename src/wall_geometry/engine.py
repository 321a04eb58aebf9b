"""Wall geometry pipeline: offset -> boolean -> heal -> validate.

``WallGeometryEngine`` is the entry point hosts call.  It never raises for
geometric trouble; every degradation is reported through the result's
``errors`` and ``notifications``.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Mapping, Optional, TypeVar

from wall_geometry.boolean_ops import BooleanOperationsEngine
from wall_geometry.contracts import BooleanOp, EngineConfig, JoinType, OperationMonitor, ToleranceContext
from wall_geometry.edge_cases import EdgeCase, EdgeCaseDetector, EdgeCaseHandler
from wall_geometry.errors import GeometricError
from wall_geometry.fallback import FallbackMechanisms, FallbackNotification
from wall_geometry.healing import ShapeHealer
from wall_geometry.intersection import IntersectionManager
from wall_geometry.intersection_cache import IntersectionCache
from wall_geometry.network import SharedNode, WallInput, WallNetwork
from wall_geometry.offset import OffsetResult, RobustOffsetEngine
from wall_geometry.primitives import Polygon2D
from wall_geometry.tolerance import AdaptiveToleranceManager, angle_deviation
from wall_geometry.validation import GeometryValidator, NetworkValidationResult, ValidationResult
from wall_geometry.wall_solid import IntersectionData, WallSolid

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class WallProcessingResult:
    wall_id: str
    success: bool
    solid: Optional[WallSolid] = None
    errors: List[GeometricError] = field(default_factory=list)
    notifications: List[FallbackNotification] = field(default_factory=list)
    edge_cases: List[EdgeCase] = field(default_factory=list)
    validation: Optional[ValidationResult] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.notifications)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "wall_id": self.wall_id,
            "success": self.success,
            "solid": self.solid.to_dict() if self.solid else None,
            "errors": [e.to_dict() for e in self.errors],
            "notifications": [n.to_dict() for n in self.notifications],
            "edge_cases": [c.to_dict() for c in self.edge_cases],
            "validation": self.validation.to_dict() if self.validation else None,
            "warnings": list(self.warnings),
        }


@dataclass
class NodeResult:
    node_id: str
    data: Optional[IntersectionData] = None
    errors: List[GeometricError] = field(default_factory=list)
    notifications: List[FallbackNotification] = field(default_factory=list)
    edge_cases: List[EdgeCase] = field(default_factory=list)
    validation: Optional[ValidationResult] = None

    @property
    def success(self) -> bool:
        return self.data is not None


@dataclass
class NetworkResult:
    solids: Dict[str, WallSolid]
    intersections: List[IntersectionData]
    wall_results: Dict[str, WallProcessingResult]
    combined_geometry: List[Polygon2D] = field(default_factory=list)
    validation: Optional[NetworkValidationResult] = None
    errors: List[GeometricError] = field(default_factory=list)
    notifications: List[FallbackNotification] = field(default_factory=list)
    edge_cases: List[EdgeCase] = field(default_factory=list)
    processing_time: float = 0.0

    @property
    def success(self) -> bool:
        return all(r.success for r in self.wall_results.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "solids": {k: v.to_dict() for k, v in self.solids.items()},
            "intersections": [d.to_dict() for d in self.intersections],
            "combined_geometry": [p.to_dict() for p in self.combined_geometry],
            "validation": self.validation.to_dict() if self.validation else None,
            "errors": [e.to_dict() for e in self.errors],
            "notifications": [n.to_dict() for n in self.notifications],
            "edge_cases": [c.to_dict() for c in self.edge_cases],
            "processing_time": self.processing_time,
        }


class WallGeometryEngine:
    """Builds wall solids and resolves their junctions across a network.

    Owns one instance of each stage (offset, boolean, healing, validation,
    fallback) and the intersection cache shared between network runs.
    """

    def __init__(self, config: Optional[EngineConfig] = None, cache: Optional[IntersectionCache] = None):
        self.config = config or EngineConfig()
        self.tolerances = AdaptiveToleranceManager(self.config)
        self.offset_engine = RobustOffsetEngine(self.config, self.tolerances)
        self.boolean_engine = BooleanOperationsEngine(self.config, self.tolerances)
        self.healer = ShapeHealer(self.config, self.tolerances)
        self.validator = GeometryValidator(self.config, self.tolerances)
        self.fallback = FallbackMechanisms(self.config, self.offset_engine, self.boolean_engine)
        self.detector = EdgeCaseDetector(self.config, self.tolerances)
        self.handler = EdgeCaseHandler(self.detector, self.fallback)
        self.cache = cache if cache is not None else IntersectionCache(self.config.cache_max_entries)
        self.intersections = IntersectionManager(
            self.config, self.tolerances, self.boolean_engine, self.fallback, self.cache
        )

    # ── single wall ──────────────────────────────────────────────────────────

    def build_wall_solid(self, wall: WallInput) -> WallProcessingResult:
        start = time.perf_counter()
        rejection = self._structural_error(wall)
        if rejection is not None:
            logger.warning("Rejected wall %s: %s", wall.id, rejection.message)
            return WallProcessingResult(wall.id, False, errors=[rejection])
        try:
            return self._build(wall, start)
        except Exception as exc:  # last-resort guard: the wall must still exist
            logger.exception("Wall pipeline crashed for %s", wall.id)
            error = GeometricError.numerical_instability(
                f"Wall pipeline failed: {exc}", operation="build_wall_solid", metadata={"wall_id": wall.id}
            )
            outcome = self.fallback.degraded_footprint(wall.baseline, wall.thickness, wall.id, error)
            solid = WallSolid(
                id=wall.id,
                baseline=wall.baseline,
                thickness=wall.thickness,
                wall_type=wall.wall_type,
                solid_geometry=(outcome.value,),
                processing_time=time.perf_counter() - start,
                version=wall.version,
            )
            return WallProcessingResult(
                wall.id, True, solid, [outcome.error], [outcome.notification],
                warnings=[str(exc)],
            )

    def _structural_error(self, wall: WallInput) -> Optional[GeometricError]:
        if len(wall.baseline.points) < 2:
            return GeometricError.invalid_input(
                "Baseline has fewer than 2 points", operation="build_wall_solid", metadata={"wall_id": wall.id}
            )
        if not math.isfinite(wall.thickness) or wall.thickness <= 0:
            return GeometricError.invalid_input(
                f"Wall thickness must be positive, got {wall.thickness}",
                operation="build_wall_solid",
                metadata={"wall_id": wall.id},
            )
        if sum(1 for p in wall.baseline.points if p.is_finite) < 2:
            return GeometricError.invalid_input(
                "Baseline has fewer than 2 finite points", operation="build_wall_solid",
                metadata={"wall_id": wall.id},
            )
        return None

    def _build(self, wall: WallInput, start: float) -> WallProcessingResult:
        errors: List[GeometricError] = []
        notes: List[FallbackNotification] = []
        warnings: List[str] = []
        h = wall.thickness / 2.0
        requested = wall.join_type or self.config.default_join_type

        merge_tol = self.tolerances.vertex_merge_tolerance(wall.thickness)
        plan = self.handler.plan_wall(wall.id, wall.baseline, wall.thickness, requested, merge_tol)
        notes.extend(plan.notifications)

        tol = self.tolerances.calculate_tolerance(
            wall.thickness, None, _most_degenerate_turn(plan.baseline), ToleranceContext.OFFSET
        )

        offset = self.offset_engine.offset_curve(plan.baseline, h, plan.join_type, tol)
        if not offset.success:
            warnings.extend(offset.warnings)
            offset = self.offset_engine.offset_curve(
                plan.baseline, h, plan.join_type, self.tolerances.next_tier(tol)
            )
        if not offset.success:
            warnings.extend(offset.warnings)
            error = GeometricError.offset_failure(
                "; ".join(offset.warnings) or "Offset failed", metadata={"wall_id": wall.id}
            )
            outcome = self.fallback.execute_offset_fallback(plan.baseline, h, error, tol)
            if outcome.success:
                offset = outcome.value
                errors.append(outcome.error)
                notes.append(outcome.notification)
            else:
                errors.append(error)
        warnings.extend(w for w in offset.warnings if w not in warnings)

        polygon: Optional[Polygon2D] = None
        if offset.success:
            polygon = self.offset_engine.build_solid_polygon(
                offset.left_offset, offset.right_offset, offset.is_closed, polygon_id=f"{wall.id}_solid"
            )
        folded = offset.needs_swept_outline or (polygon is not None and not polygon.is_valid)
        if offset.success and folded:
            reason = next(
                (w for w in offset.warnings if "clipped" in w or "self-intersect" in w),
                "Offset outline is not a simple polygon",
            )
            outcome = self.fallback.swept_outline(plan.baseline, h, plan.join_type, wall.id, reason)
            if outcome.success:
                polygon = outcome.value
                errors.append(outcome.error)
                notes.append(outcome.notification)
        if polygon is None:
            error = GeometricError.degenerate_geometry(
                "No offset outline could be built", operation="build_wall_solid", metadata={"wall_id": wall.id}
            )
            outcome = self.fallback.degraded_footprint(plan.baseline, wall.thickness, wall.id, error)
            polygon = outcome.value
            errors.append(outcome.error)
            notes.append(outcome.notification)

        solid = WallSolid(
            id=wall.id,
            baseline=wall.baseline,
            thickness=wall.thickness,
            wall_type=wall.wall_type,
            left_offset=offset.left_offset if offset.success else None,
            right_offset=offset.right_offset if offset.success else None,
            solid_geometry=(polygon,),
            join_types=_join_map(offset),
            version=wall.version,
        )

        solid, requires_healing = self._normalize(solid, errors, notes, warnings)
        if requires_healing:
            healed = self.healer.heal(solid)
            solid = healed.solid
            warnings.extend(healed.warnings)
            if not healed.success:
                errors.append(GeometricError.self_intersection(
                    "Healing left invalid geometry", operation="heal", metadata={"wall_id": wall.id}
                ))
        if len(solid.solid_geometry) > 1:
            # one baseline sweeps one connected footprint
            outcome = self.fallback.swept_outline(
                plan.baseline, h, plan.join_type, wall.id,
                f"Wall outline split into {len(solid.solid_geometry)} parts",
            )
            if outcome.success:
                solid = solid.with_updates(solid_geometry=[outcome.value])
                errors.append(outcome.error)
                notes.append(outcome.notification)

        validation = self.validator.validate_wall_solid(solid)
        if not validation.is_valid and self.validator.repair_enabled:
            repair = self.validator.repair_invalid_geometry(solid)
            if repair.repaired_geometry is not None and repair.issues_fixed:
                solid = repair.repaired_geometry
                validation = self.validator.validate_wall_solid(solid)
        if not solid.solid_geometry:
            error = GeometricError.degenerate_geometry(
                "Wall geometry vanished during repair", operation="repair", metadata={"wall_id": wall.id}
            )
            outcome = self.fallback.degraded_footprint(plan.baseline, wall.thickness, wall.id, error)
            solid = solid.with_updates(solid_geometry=[outcome.value])
            errors.append(outcome.error)
            notes.append(outcome.notification)
            validation = self.validator.validate_wall_solid(solid)

        elapsed = time.perf_counter() - start
        metrics = self.validator.compute_quality_metrics(solid, validation.issues, elapsed)
        solid = solid.with_updates(
            geometric_quality=metrics,
            last_validated=time.time(),
            processing_time=elapsed,
            complexity=solid.vertex_count,
            version=wall.version,
        )
        validation = replace(validation, quality_metrics=metrics)
        logger.debug(
            "Built wall %s in %.4fs (%d polygon(s), %d fallback(s))",
            wall.id, elapsed, len(solid.solid_geometry), len(notes),
        )
        return WallProcessingResult(wall.id, True, solid, errors, notes, plan.cases, validation, warnings)

    def _normalize(self, solid, errors, notes, warnings):
        """Self-union of the raw outline; returns (solid, requires_healing)."""
        result = self.boolean_engine.combine([solid], BooleanOp.UNION)
        warnings.extend(result.warnings)
        if result.success and result.polygons:
            return result.result_solid, result.requires_healing
        error = GeometricError.boolean_failure(
            "Normalizing the wall outline failed", metadata={"wall_id": solid.id}
        )
        outcome = self.fallback.execute_boolean_fallback(
            [solid.solid_geometry], BooleanOp.UNION, solid.thickness, error
        )
        if outcome.success:
            errors.append(outcome.error)
            notes.append(outcome.notification)
            return solid.with_updates(solid_geometry=outcome.value), True
        errors.append(error)
        return solid, True

    # ── junctions and networks ───────────────────────────────────────────────

    def resolve_node(
        self, solids: Mapping[str, WallSolid], node: SharedNode, join_type: Optional[JoinType] = None
    ) -> NodeResult:
        participants = [solids[w] for w in node.wall_ids if w in solids]
        requested = join_type or self.config.default_join_type
        result = NodeResult(node.id)
        if len(participants) >= 2:
            plan = self.handler.plan_node(participants, node.point, requested)
            requested = plan.join_type
            result.notifications.extend(plan.notifications)
            result.edge_cases.extend(plan.cases)
        try:
            resolution = self.intersections.resolve_with_diagnostics(participants, node.point, requested)
        except GeometricError as exc:
            logger.warning("Node %s rejected: %s", node.id, exc.message)
            result.errors.append(exc)
            return result
        result.data = resolution.data
        result.notifications.extend(resolution.notifications)
        result.errors.extend(resolution.errors)
        result.validation = self.validator.validate_intersection(resolution.data)
        return result

    def process_network(self, network: WallNetwork) -> NetworkResult:
        start = time.perf_counter()
        wall_results = {w.id: self.build_wall_solid(w) for w in network.walls}
        solids = {k: r.solid for k, r in wall_results.items() if r.solid is not None}
        errors = [e for r in wall_results.values() for e in r.errors]
        notes = [n for r in wall_results.values() for n in r.notifications]
        cases = [c for r in wall_results.values() for c in r.edge_cases]
        cases.extend(self.detector.detect_network(list(solids.values())))

        intersections: List[IntersectionData] = []
        joins: Dict[str, Dict[str, JoinType]] = {k: {} for k in solids}
        for node in network.shared_nodes(self.config.node_snap_tolerance):
            if sum(1 for w in node.wall_ids if w in solids) < 2:
                logger.debug("Skipping node %s: fewer than two built walls", node.id)
                continue
            node_result = self.resolve_node(solids, node)
            errors.extend(node_result.errors)
            notes.extend(node_result.notifications)
            cases.extend(node_result.edge_cases)
            if node_result.data is None:
                continue
            data = node_result.data
            intersections.append(data)
            for wall_id in data.participating_walls:
                joins.setdefault(wall_id, {})[node.id] = data.resolution_method

        for wall_id, solid in list(solids.items()):
            related = [d for d in intersections if d.involves(wall_id)]
            if not related and not joins.get(wall_id):
                continue
            merged = dict(solid.join_types)
            merged.update(joins.get(wall_id, {}))
            solids[wall_id] = solid.with_updates(
                intersection_data=related, join_types=merged, version=solid.version
            )
            wall_results[wall_id].solid = solids[wall_id]

        combined = self._combine_network(solids, intersections, errors, notes)
        validation = self.validator.validate_wall_network(list(solids.values()), intersections)
        elapsed = time.perf_counter() - start
        logger.info(
            "Processed %d wall(s), %d junction(s) in %.3fs (%d error(s), %d fallback(s))",
            len(solids), len(intersections), elapsed, len(errors), len(notes),
        )
        return NetworkResult(
            solids=solids,
            intersections=intersections,
            wall_results=wall_results,
            combined_geometry=combined,
            validation=validation,
            errors=errors,
            notifications=notes,
            edge_cases=cases,
            processing_time=elapsed,
        )

    def _combine_network(self, solids, intersections, errors, notes) -> List[Polygon2D]:
        sets = [list(s.solid_geometry) for s in solids.values() if s.solid_geometry]
        sets.extend([d.resolved_geometry] for d in intersections if d.resolved_geometry is not None)
        if not sets:
            return []
        thickness = min(s.thickness for s in solids.values())
        result = self.boolean_engine.combine_polygons(sets, BooleanOp.UNION, thickness, id_prefix="network")
        if result.success:
            return result.polygons
        error = GeometricError.boolean_failure("Network union failed", operation="process_network")
        outcome = self.fallback.execute_boolean_fallback(sets, BooleanOp.UNION, thickness, error)
        if outcome.success:
            errors.append(outcome.error)
            notes.append(outcome.notification)
            return list(outcome.value)
        errors.append(error)
        return [p for polys in sets for p in polys]

    def invalidate_wall(self, wall_id: str) -> int:
        return self.intersections.remove_for_wall(wall_id)


def run_monitored(
    monitor: Optional[OperationMonitor],
    operation_type: str,
    input_complexity: int,
    fn: Callable[..., T],
    *args: Any,
    **kwargs: Any,
) -> T:
    """Call *fn* between a monitor's start/end hooks."""
    if monitor is None:
        return fn(*args, **kwargs)
    op_id = monitor.start_operation(operation_type, input_complexity)
    try:
        result = fn(*args, **kwargs)
    except Exception as exc:
        monitor.end_operation(op_id, 0, False, type(exc).__name__)
        raise
    monitor.end_operation(op_id, _output_complexity(result), bool(getattr(result, "success", True)))
    return result


def _output_complexity(result: Any) -> int:
    solid = getattr(result, "solid", None)
    if isinstance(solid, WallSolid):
        return solid.complexity
    solids = getattr(result, "solids", None)
    if isinstance(solids, dict):
        return sum(s.complexity for s in solids.values())
    return 0


def _join_map(offset: OffsetResult) -> Dict[str, JoinType]:
    return {j.vertex_id: j.applied for j in offset.joins} if offset.success else {}


def _most_degenerate_turn(baseline) -> Optional[float]:
    turns = baseline.vertex_turn_angles()
    if not turns:
        return None
    return min(turns, key=angle_deviation)
