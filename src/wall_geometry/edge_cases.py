"""Detection of known-hard wall configurations and the plans that route
around them before the primary algorithms run."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

from shapely.geometry import LineString

from wall_geometry.contracts import EngineConfig, JoinType, Severity, ToleranceContext
from wall_geometry.fallback import FallbackMechanisms, FallbackNotification
from wall_geometry.intersection import collect_arms
from wall_geometry.primitives import Curve, Point2D, angle_between
from wall_geometry.tolerance import AdaptiveToleranceManager
from wall_geometry.wall_solid import WallSolid

logger = logging.getLogger(__name__)


class EdgeCaseType(Enum):
    NEAR_PARALLEL = "near_parallel"
    THICK_SHORT_SEGMENT = "thick_short_segment"
    CLOSED_LOOP = "closed_loop"
    DUPLICATE_WALL = "duplicate_wall"
    ZERO_LENGTH_SEGMENT = "zero_length_segment"
    EXTREME_ANGLE = "extreme_angle"
    NUMERICAL_INSTABILITY = "numerical_instability"


SEVERITY_RANK = {Severity.CRITICAL: 0, Severity.ERROR: 1, Severity.WARNING: 2}


@dataclass(frozen=True)
class EdgeCase:
    case_type: EdgeCaseType
    severity: Severity
    description: str
    affected_elements: Tuple[str, ...] = ()
    suggested_fix: str = ""
    can_auto_fix: bool = True
    recommended_join: Optional[JoinType] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.case_type.value,
            "severity": self.severity.value,
            "description": self.description,
            "affected_elements": list(self.affected_elements),
            "suggested_fix": self.suggested_fix,
            "can_auto_fix": self.can_auto_fix,
            "recommended_join": self.recommended_join.value if self.recommended_join else None,
            "metadata": dict(self.metadata),
        }


class EdgeCaseDetector:
    """Finds degenerate baselines and junctions and plans the adjustments to apply."""

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        tolerance_manager: Optional[AdaptiveToleranceManager] = None,
    ):
        self.config = config or EngineConfig()
        self.tolerances = tolerance_manager or AdaptiveToleranceManager(self.config)

    @property
    def near_parallel(self) -> float:
        return math.radians(self.config.near_parallel_angle_deg)

    def detect_curve(self, curve: Curve, tolerance: float) -> List[EdgeCase]:
        cases: List[EdgeCase] = []
        bad = [p.id for p in curve.points if not p.is_finite]
        if bad:
            cases.append(EdgeCase(
                EdgeCaseType.NUMERICAL_INSTABILITY, Severity.ERROR,
                f"{len(bad)} point(s) have non-finite coordinates",
                tuple(bad), "Remove the non-finite points",
            ))
        finite = curve.with_points([p for p in curve.points if p.is_finite])

        coincident = finite.coincident_vertex_indices(tolerance)
        if coincident:
            cases.append(EdgeCase(
                EdgeCaseType.ZERO_LENGTH_SEGMENT, Severity.WARNING,
                f"{len(coincident)} zero-length segment(s)",
                tuple(finite.points[i].id for i in coincident),
                "Merge coincident points",
            ))

        if len(finite.points) >= 3 and (
            finite.is_closed or finite.points[0].equals(finite.points[-1], tolerance)
        ):
            cases.append(EdgeCase(
                EdgeCaseType.CLOSED_LOOP, Severity.WARNING,
                "Baseline forms a closed loop",
                (curve.id,), "Offset as a closed ring",
            ))

        for i, turn in enumerate(finite.vertex_turn_angles(), start=1):
            if abs(turn) > math.pi - self.near_parallel:
                cases.append(EdgeCase(
                    EdgeCaseType.EXTREME_ANGLE, Severity.WARNING,
                    f"Baseline folds back on itself at vertex {i}",
                    (finite.points[i].id,), "Use a bevel join at the spike",
                    recommended_join=JoinType.BEVEL,
                    metadata={"vertex_index": i, "turn_deg": math.degrees(turn)},
                ))
        return cases

    def detect_wall(
        self, wall_id: str, baseline: Curve, thickness: float, tolerance: Optional[float] = None
    ) -> List[EdgeCase]:
        tol = tolerance or self.tolerances.calculate_tolerance(
            thickness, None, None, ToleranceContext.VERTEX_MERGE
        )
        cases = self.detect_curve(baseline, tol)
        if len(baseline.points) >= 3 and math.isfinite(thickness) and thickness > 0:
            lengths = baseline.segment_lengths()
            limit = thickness * self.config.short_segment_ratio
            short = [i for i, length in enumerate(lengths) if tol < length < limit]
            if short:
                cases.append(EdgeCase(
                    EdgeCaseType.THICK_SHORT_SEGMENT, Severity.WARNING,
                    f"Wall {wall_id}: {len(short)} segment(s) shorter than the wall thickness",
                    (wall_id,), "Use bevel joins to avoid overlapping offsets",
                    recommended_join=JoinType.BEVEL,
                    metadata={"segments": short, "thickness": thickness},
                ))
        return cases

    def detect_node(self, walls: Sequence[WallSolid], node: Point2D) -> List[EdgeCase]:
        snap = max(self.config.node_snap_tolerance, self.config.document_precision)
        arms, _ = collect_arms(sorted(walls, key=lambda w: w.id), node.xy, snap)
        cases: List[EdgeCase] = []
        for i, a in enumerate(arms):
            for b in arms[i + 1:]:
                if a.wall_id == b.wall_id:
                    continue
                angle = angle_between(a.direction, b.direction)
                if angle < self.near_parallel or angle > math.pi - self.near_parallel:
                    cases.append(EdgeCase(
                        EdgeCaseType.NEAR_PARALLEL, Severity.WARNING,
                        f"Walls {a.wall_id} and {b.wall_id} are near-parallel at the node",
                        (a.wall_id, b.wall_id), "Butt the walls instead of mitering",
                        recommended_join=JoinType.BUTT,
                        metadata={"angle_deg": math.degrees(angle), "node": node.xy},
                    ))
        return cases

    def detect_network(self, walls: Sequence[Any], tolerance: Optional[float] = None) -> List[EdgeCase]:
        """Duplicate overlapping walls; *walls* are any objects with id, baseline and thickness."""
        cases: List[EdgeCase] = []
        lines = []
        for w in walls:
            coords = [p.xy for p in w.baseline.points if p.is_finite]
            if len(coords) >= 2:
                lines.append((w, LineString(coords)))
        for i, (a, la) in enumerate(lines):
            for b, lb in lines[i + 1:]:
                tol = tolerance or max(self.config.node_snap_tolerance, min(a.thickness, b.thickness) * 0.01)
                if la.hausdorff_distance(lb) <= tol:
                    cases.append(EdgeCase(
                        EdgeCaseType.DUPLICATE_WALL, Severity.WARNING,
                        f"Walls {a.id} and {b.id} overlap",
                        (a.id, b.id), "Delete one of the duplicate walls",
                        can_auto_fix=False,
                    ))
        return cases


def prioritize(cases: Sequence[EdgeCase]) -> List[EdgeCase]:
    return sorted(cases, key=lambda c: (SEVERITY_RANK[c.severity], c.case_type.value))


@dataclass
class WallPlan:
    baseline: Curve
    join_type: JoinType
    is_closed: bool
    cases: List[EdgeCase] = field(default_factory=list)
    notifications: List[FallbackNotification] = field(default_factory=list)
    removed_points: int = 0


@dataclass
class NodePlan:
    join_type: JoinType
    cases: List[EdgeCase] = field(default_factory=list)
    notifications: List[FallbackNotification] = field(default_factory=list)


class EdgeCaseHandler:
    def __init__(self, detector: EdgeCaseDetector, fallback: FallbackMechanisms):
        self.detector = detector
        self.fallback = fallback

    def clean_curve(self, curve: Curve, tolerance: float) -> Tuple[Curve, int]:
        """Drop non-finite points and merge coincident neighbours."""
        kept: List[Point2D] = []
        for p in curve.points:
            if not p.is_finite:
                continue
            if kept and p.equals(kept[-1], tolerance):
                continue
            kept.append(p)
        removed = len(curve.points) - len(kept)
        if removed:
            logger.debug("Cleaned %d point(s) from curve %s", removed, curve.id)
        return curve.with_points(kept), removed

    def plan_wall(
        self,
        wall_id: str,
        baseline: Curve,
        thickness: float,
        requested: JoinType,
        tolerance: float,
    ) -> WallPlan:
        cases = prioritize(self.detector.detect_wall(wall_id, baseline, thickness, tolerance))
        cleaned, removed = self.clean_curve(baseline, tolerance)
        closed = any(c.case_type is EdgeCaseType.CLOSED_LOOP for c in cases)
        if closed and len(cleaned.points) >= 2 and cleaned.points[0].equals(cleaned.points[-1], tolerance):
            cleaned = cleaned.with_points(cleaned.points[:-1])
        cleaned = cleaned.with_points(cleaned.points, is_closed=closed or cleaned.is_closed)

        join = requested
        notes: List[FallbackNotification] = []
        overrides = [c for c in cases if c.recommended_join is not None]
        if requested is JoinType.MITER and overrides:
            join = overrides[0].recommended_join
            notes.append(self.fallback.notify(
                operation="offset_curve",
                original_error=overrides[0].description,
                fallback_method=f"{join.value}_join",
                quality_impact=0.1,
                user_guidance=(f"Wall {wall_id} uses {join.value} joins instead of miter",),
                alternatives=("Lengthen short segments", "Reduce the wall thickness"),
            ))
        return WallPlan(cleaned, join, cleaned.is_closed, list(cases), notes, removed)

    def plan_node(self, walls: Sequence[WallSolid], node: Point2D, requested: JoinType) -> NodePlan:
        cases = prioritize(self.detector.detect_node(walls, node))
        join = requested
        notes: List[FallbackNotification] = []
        if cases and requested is not JoinType.BUTT:
            join = JoinType.BUTT
            notes.append(self.fallback.notify(
                operation="resolve_intersection",
                original_error=cases[0].description,
                fallback_method="butt_join",
                quality_impact=0.25,
                user_guidance=("Near-parallel walls were butted together",),
                alternatives=("Merge the walls into a single baseline",),
            ))
        return NodePlan(join, list(cases), notes)
