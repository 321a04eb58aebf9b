"""Junction classification and resolution where wall baselines share a node.

Every participant contributes one "arm" per direction its baseline leaves the
node: one for a wall ending at the node, two for a wall passing through it.
Arms are ordered counter-clockwise, and the faces bounding each sector between
neighbouring arms meet at the sector's offset intersection.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from wall_geometry.boolean_ops import BooleanOperationsEngine
from wall_geometry.contracts import BooleanOp, EngineConfig, IntersectionType, JoinType, ToleranceContext
from wall_geometry.errors import GeometricError
from wall_geometry.fallback import FallbackMechanisms, FallbackNotification
from wall_geometry.intersection_cache import IntersectionCache, make_key
from wall_geometry.primitives import (
    Point2D,
    Polygon2D,
    Vec2,
    angle_between,
    left_normal,
    line_intersection,
    point_line_distance,
    point_segment_distance,
    unit,
)
from wall_geometry.tolerance import AdaptiveToleranceManager
from wall_geometry.wall_solid import IntersectionData, WallSolid

logger = logging.getLogger(__name__)

TWO_PI = 2.0 * math.pi
# Arm rectangles reach this many wall thicknesses away from the node.
LOCAL_REACH_FACTOR = 2.0

METHOD_BASE_ACCURACY = {
    JoinType.MITER: 1.0,
    JoinType.BEVEL: 0.9,
    JoinType.BUTT: 0.95,
}
PARALLEL_ACCURACY = 0.75
FALLBACK_PENALTY = 0.1
BOOLEAN_FALLBACK_PENALTY = 0.2
HEALING_PENALTY = 0.05
MISSING_ARM_PENALTY = 0.1


@dataclass(frozen=True)
class Arm:
    wall_id: str
    direction: Vec2
    half_thickness: float
    length: float

    @property
    def angle(self) -> float:
        return math.atan2(self.direction[1], self.direction[0]) % TWO_PI

    @property
    def normal(self) -> Vec2:
        return left_normal(self.direction)


@dataclass
class IntersectionResolution:
    data: IntersectionData
    notifications: List[FallbackNotification] = field(default_factory=list)
    errors: List[GeometricError] = field(default_factory=list)


def collect_arms(
    walls: Sequence[WallSolid], node: Vec2, snap: float
) -> Tuple[List[Arm], List[str]]:
    """Arms leaving *node*, sorted counter-clockwise, plus warnings for walls
    that do not reach the node."""
    arms: List[Arm] = []
    warnings: List[str] = []
    for wall in walls:
        wall_arms = _wall_arms(wall, node, snap)
        if not wall_arms:
            warnings.append(f"Wall {wall.id} does not reach the shared node")
        arms.extend(wall_arms)
    arms.sort(key=lambda a: (a.angle, a.wall_id))
    return arms, warnings


def _wall_arms(wall: WallSolid, node: Vec2, snap: float) -> List[Arm]:
    pts: List[Vec2] = []
    for p in wall.baseline.points:
        if not p.is_finite:
            continue
        if pts and math.hypot(p.x - pts[-1][0], p.y - pts[-1][1]) <= 1e-12:
            continue
        pts.append(p.xy)
    closed = wall.baseline.is_closed
    if len(pts) >= 3 and math.hypot(pts[0][0] - pts[-1][0], pts[0][1] - pts[-1][1]) <= snap:
        closed = True
        pts = pts[:-1]
    if len(pts) < 2:
        return []
    h = wall.half_thickness
    n = len(pts)

    def arm_to(target: Vec2, origin: Vec2) -> Optional[Arm]:
        d = unit(target[0] - origin[0], target[1] - origin[1])
        if d is None:
            return None
        length = math.hypot(target[0] - origin[0], target[1] - origin[1])
        return Arm(wall.id, d, h, length)

    for i, p in enumerate(pts):
        if math.hypot(p[0] - node[0], p[1] - node[1]) > snap:
            continue
        neighbours = []
        if i > 0 or closed:
            neighbours.append(pts[i - 1])
        if i < n - 1 or closed:
            neighbours.append(pts[(i + 1) % n])
        return [a for a in (arm_to(q, p) for q in neighbours) if a is not None]

    seg_count = n if closed else n - 1
    for i in range(seg_count):
        a, b = pts[i], pts[(i + 1) % n]
        dist, t = point_segment_distance(node, a, b)
        if dist <= snap and 0.0 < t < 1.0:
            return [x for x in (arm_to(b, node), arm_to(a, node)) if x is not None]
    return []


class IntersectionManager:
    """Resolves shared nodes into corner, T and cross junctions, trimming participant solids."""

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        tolerance_manager: Optional[AdaptiveToleranceManager] = None,
        boolean_engine: Optional[BooleanOperationsEngine] = None,
        fallback: Optional[FallbackMechanisms] = None,
        cache: Optional[IntersectionCache] = None,
    ):
        self.config = config or EngineConfig()
        self.tolerances = tolerance_manager or AdaptiveToleranceManager(self.config)
        self.boolean_engine = boolean_engine or BooleanOperationsEngine(self.config, self.tolerances)
        self.fallback = fallback or FallbackMechanisms(self.config, boolean_engine=self.boolean_engine)
        self.cache = cache if cache is not None else IntersectionCache(self.config.cache_max_entries)
        self._registry: Dict[str, IntersectionData] = {}
        self._registry_lock = threading.Lock()

    # ── resolution ───────────────────────────────────────────────────────────

    def resolve_intersection(
        self,
        participating_walls: Sequence[WallSolid],
        shared_node: Point2D,
        join_type: Optional[JoinType] = None,
    ) -> IntersectionData:
        return self.resolve_with_diagnostics(participating_walls, shared_node, join_type).data

    def resolve_with_diagnostics(
        self,
        participating_walls: Sequence[WallSolid],
        shared_node: Point2D,
        join_type: Optional[JoinType] = None,
    ) -> IntersectionResolution:
        """Resolve a junction.

        Raises a non-recoverable GeometricError only for structurally invalid
        input: no participants, fewer than two distinct walls, or a
        non-positive thickness.
        """
        if not participating_walls:
            raise GeometricError.invalid_input(
                "Intersection requires participating walls", operation="resolve_intersection"
            )
        if len({w.id for w in participating_walls}) < 2:
            raise GeometricError.invalid_input(
                "Intersection requires at least two distinct walls", operation="resolve_intersection"
            )
        for wall in participating_walls:
            if not math.isfinite(wall.thickness) or wall.thickness <= 0:
                raise GeometricError.invalid_input(
                    f"Wall {wall.id} has non-positive thickness {wall.thickness}",
                    operation="resolve_intersection",
                    metadata={"wall_id": wall.id},
                )

        ordered = sorted(participating_walls, key=lambda w: w.id)
        requested = join_type or self.config.default_join_type
        node = shared_node.xy
        max_thickness = max(w.thickness for w in ordered)
        snap = max(self.config.node_snap_tolerance, self.config.document_precision)
        arms, warnings = collect_arms(ordered, node, snap)

        tol = self.tolerances.calculate_tolerance(
            max_thickness, None, _min_arm_angle(arms), ToleranceContext.OFFSET
        )
        key = make_key(ordered, tol, node, variant=requested.value)
        resolution = self.cache.get_or_compute(
            key, lambda: self._compute(ordered, shared_node, arms, warnings, tol, requested)
        )
        with self._registry_lock:
            self._registry[resolution.data.id] = resolution.data
        return resolution

    def _compute(
        self,
        walls: Sequence[WallSolid],
        shared_node: Point2D,
        arms: Sequence[Arm],
        warnings: Sequence[str],
        tol: float,
        requested: JoinType,
    ) -> IntersectionResolution:
        node = shared_node.xy
        ids = tuple(w.id for w in walls)
        ix_id = "ix_" + "+".join(ids) + f"@{node[0]:.3f},{node[1]:.3f}"
        notes: List[FallbackNotification] = []
        errors: List[GeometricError] = []
        warn = list(warnings)
        node_point = Point2D(node[0], node[1], id=f"{ix_id}_node", tolerance=tol, creation_method="intersection")

        if len(arms) < 2:
            warn.append("Fewer than two arms reach the node; junction left unresolved")
            return IntersectionResolution(
                IntersectionData(
                    id=ix_id, type=IntersectionType.CORNER, participating_walls=ids,
                    intersection_point=node_point, resolved_geometry=None,
                    resolution_method=JoinType.BUTT, geometric_accuracy=0.0,
                    validated=False, warnings=tuple(warn), tolerance=tol,
                ),
                notes, errors,
            )

        ix_type = self._classify(arms)
        sectors = _sector_hits(arms, node)
        offset_hits = tuple(
            Point2D(h[0], h[1], id=f"{ix_id}_o{i}", tolerance=tol, creation_method="offset_intersection")
            for i, (_, _, _, h) in enumerate(sectors)
            if h is not None
        )

        method, apex, reflex = self._resolution_method(ix_type, requested, arms, sectors, node)
        accuracy = PARALLEL_ACCURACY if ix_type is IntersectionType.PARALLEL else METHOD_BASE_ACCURACY[method]

        if ix_type is IntersectionType.PARALLEL and requested is not JoinType.BUTT:
            notes.append(self.fallback.notify(
                operation="resolve_intersection",
                original_error="Near-parallel walls share a node",
                fallback_method="butt_join",
                quality_impact=1.0 - PARALLEL_ACCURACY,
                user_guidance=("Walls meeting almost in line were butted instead of mitered",),
                alternatives=("Merge the walls into one baseline",),
            ))
        elif ix_type is IntersectionType.CORNER and requested is JoinType.MITER and method is not JoinType.MITER:
            accuracy -= FALLBACK_PENALTY
            warn.append("Miter apex exceeds the miter limit; bevel used")
            notes.append(self.fallback.notify(
                operation="resolve_intersection",
                original_error="Miter apex beyond miter limit",
                fallback_method="bevel_join",
                quality_impact=FALLBACK_PENALTY,
                user_guidance=("A sharp corner was bevelled",),
                alternatives=("Increase the miter limit",),
            ))

        if apex is not None and reflex is not None:
            deviation = max(
                abs(point_line_distance(apex, node, arm.direction) - arm.half_thickness) / arm.half_thickness
                for arm in reflex
            )
            accuracy -= min(0.3, deviation)

        accuracy -= MISSING_ARM_PENALTY * len(warnings)

        contributions = self._local_contributions(arms, node, method, ix_type, apex, reflex)
        thickness = min(w.thickness for w in walls)
        combined = self.boolean_engine.combine_polygons(
            contributions, BooleanOp.UNION, thickness, id_prefix=ix_id
        )
        polygons = combined.polygons if combined.success else []
        if combined.requires_healing:
            accuracy -= HEALING_PENALTY
        warn.extend(combined.warnings)
        if not combined.success or not polygons:
            error = GeometricError.boolean_failure(
                "Junction union failed", metadata={"intersection_id": ix_id}
            )
            outcome = self.fallback.execute_boolean_fallback(contributions, BooleanOp.UNION, thickness, error)
            accuracy -= BOOLEAN_FALLBACK_PENALTY
            if outcome.success:
                polygons = outcome.value
                notes.append(outcome.notification)
                errors.append(outcome.error)
            else:
                errors.append(error)

        if len(polygons) > 1:
            warn.append(f"Junction union produced {len(polygons)} parts; keeping the largest")
        resolved = max(polygons, key=lambda p: p.area) if polygons else None
        accuracy = min(1.0, max(0.0, accuracy))
        validated = (
            resolved is not None
            and resolved.is_valid
            and accuracy >= self.config.fallback_quality_threshold
        )

        data = IntersectionData(
            id=ix_id,
            type=ix_type,
            participating_walls=ids,
            intersection_point=node_point,
            resolved_geometry=resolved,
            resolution_method=method,
            geometric_accuracy=accuracy,
            validated=validated,
            miter_apex=(
                Point2D(apex[0], apex[1], id=f"{ix_id}_apex", tolerance=tol, creation_method="miter_apex")
                if apex is not None
                else None
            ),
            offset_intersections=offset_hits,
            warnings=tuple(warn),
            tolerance=tol,
        )
        logger.debug(
            "Resolved %s as %s/%s (accuracy %.3f)", ix_id, ix_type.value, method.value, accuracy
        )
        return IntersectionResolution(data, notes, errors)

    def _classify(self, arms: Sequence[Arm]) -> IntersectionType:
        near = math.radians(self.config.near_parallel_angle_deg)
        for i, a in enumerate(arms):
            for b in arms[i + 1:]:
                if a.wall_id != b.wall_id and angle_between(a.direction, b.direction) < near:
                    return IntersectionType.PARALLEL
        degree = len(arms)
        if degree == 2:
            if angle_between(arms[0].direction, arms[1].direction) > math.pi - near:
                return IntersectionType.PARALLEL
            return IntersectionType.CORNER
        if degree == 3:
            return IntersectionType.T_JUNCTION
        return IntersectionType.CROSS

    def _resolution_method(
        self,
        ix_type: IntersectionType,
        requested: JoinType,
        arms: Sequence[Arm],
        sectors: Sequence[Tuple[Arm, Arm, float, Optional[Vec2]]],
        node: Vec2,
    ) -> Tuple[JoinType, Optional[Vec2], Optional[Tuple[Arm, Arm]]]:
        if ix_type is not IntersectionType.CORNER:
            return JoinType.BUTT, None, None
        reflex = max(sectors, key=lambda s: s[2])
        pair = (reflex[0], reflex[1])
        if requested is JoinType.BUTT:
            return JoinType.BUTT, None, None
        if requested is not JoinType.MITER:
            return JoinType.BEVEL, None, pair
        apex = reflex[3]
        limit = self.config.miter_limit * max(a.half_thickness for a in arms)
        if apex is None or math.hypot(apex[0] - node[0], apex[1] - node[1]) > limit:
            return JoinType.BEVEL, None, pair
        return JoinType.MITER, apex, pair

    def _local_contributions(
        self,
        arms: Sequence[Arm],
        node: Vec2,
        method: JoinType,
        ix_type: IntersectionType,
        apex: Optional[Vec2],
        reflex: Optional[Tuple[Arm, Arm]],
    ) -> List[List[Polygon2D]]:
        reach = LOCAL_REACH_FACTOR * 2.0 * max(a.half_thickness for a in arms)
        butt_corner = ix_type is IntersectionType.CORNER and method is JoinType.BUTT
        primary = min(arms, key=lambda a: (-a.half_thickness, a.wall_id)) if butt_corner else None
        other_h = max((a.half_thickness for a in arms if a is not primary), default=0.0)

        by_wall: Dict[str, List[Polygon2D]] = {}
        for arm in arms:
            length = max(min(arm.length, reach), 1e-9)
            back = other_h if arm is primary else 0.0
            d, n, h = arm.direction, arm.normal, arm.half_thickness
            sx, sy = node[0] - d[0] * back, node[1] - d[1] * back
            ex, ey = node[0] + d[0] * length, node[1] + d[1] * length
            rect = [
                (sx + n[0] * h, sy + n[1] * h),
                (ex + n[0] * h, ey + n[1] * h),
                (ex - n[0] * h, ey - n[1] * h),
                (sx - n[0] * h, sy - n[1] * h),
            ]
            by_wall.setdefault(arm.wall_id, []).append(Polygon2D.from_coords(rect, creation_method="intersection"))

        contributions = [by_wall[k] for k in sorted(by_wall)]
        if not butt_corner:
            hub = _hub_polygon(arms, node)
            if hub is not None:
                contributions.append([hub])
        if method is JoinType.MITER and apex is not None and reflex is not None:
            first, second = reflex
            wedge = [
                node,
                (node[0] + first.normal[0] * first.half_thickness, node[1] + first.normal[1] * first.half_thickness),
                apex,
                (node[0] - second.normal[0] * second.half_thickness, node[1] - second.normal[1] * second.half_thickness),
            ]
            contributions.append([Polygon2D.from_coords(wedge, creation_method="miter")])
        return contributions

    # ── registry ─────────────────────────────────────────────────────────────

    def all_intersections(self) -> List[IntersectionData]:
        with self._registry_lock:
            return sorted(self._registry.values(), key=lambda d: d.id)

    def find_by_wall(self, wall_id: str) -> List[IntersectionData]:
        return [d for d in self.all_intersections() if d.involves(wall_id)]

    def find_by_type(self, ix_type: IntersectionType) -> List[IntersectionData]:
        return [d for d in self.all_intersections() if d.type is ix_type]

    def remove_for_wall(self, wall_id: str) -> int:
        """Forget every junction involving *wall_id*, in the registry and the cache."""
        with self._registry_lock:
            stale = [k for k, d in self._registry.items() if d.involves(wall_id)]
            for k in stale:
                del self._registry[k]
        self.cache.invalidate_wall(wall_id)
        return len(stale)


def _min_arm_angle(arms: Sequence[Arm]) -> Optional[float]:
    """Smallest angular distance of any arm pair from parallel or collinear."""
    best: Optional[Tuple[float, float]] = None
    for i, a in enumerate(arms):
        for b in arms[i + 1:]:
            if a.wall_id == b.wall_id:
                continue
            angle = angle_between(a.direction, b.direction)
            dev = min(angle, math.pi - angle)
            if best is None or dev < best[0]:
                best = (dev, angle)
    return best[1] if best is not None else None


def _sector_hits(arms: Sequence[Arm], node: Vec2) -> List[Tuple[Arm, Arm, float, Optional[Vec2]]]:
    """(arm, next arm CCW, sector angle, face intersection) for every sector."""
    out = []
    n = len(arms)
    for k in range(n):
        a = arms[k]
        b = arms[(k + 1) % n]
        sweep = (b.angle - a.angle) % TWO_PI
        if sweep == 0.0:
            sweep = TWO_PI if n == 1 else 0.0
        pa = (node[0] + a.normal[0] * a.half_thickness, node[1] + a.normal[1] * a.half_thickness)
        pb = (node[0] - b.normal[0] * b.half_thickness, node[1] - b.normal[1] * b.half_thickness)
        out.append((a, b, sweep, line_intersection(pa, a.direction, pb, b.direction)))
    return out


def _hub_polygon(arms: Sequence[Arm], node: Vec2) -> Optional[Polygon2D]:
    """Polygon through the face points of every arm at the node, in angular order."""
    pts: List[Tuple[float, Vec2]] = []
    for arm in arms:
        n, h = arm.normal, arm.half_thickness
        for sign in (1.0, -1.0):
            p = (node[0] + sign * n[0] * h, node[1] + sign * n[1] * h)
            pts.append((math.atan2(p[1] - node[1], p[0] - node[0]), p))
    pts.sort(key=lambda item: item[0])
    ring = [p for _, p in pts]
    if len(ring) < 3:
        return None
    hub = Polygon2D.from_coords(ring, creation_method="intersection")
    geom = hub.to_shapely()
    if geom.is_empty or not geom.is_valid or geom.area <= 1e-9:
        return None
    return hub
