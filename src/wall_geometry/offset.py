"""Parallel offsetting of wall baselines with miter/bevel/round joins."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from shapely.geometry import LinearRing, LineString
from shapely.geometry import Polygon as ShapelyPolygon

from wall_geometry.contracts import EngineConfig, JoinType, ToleranceContext
from wall_geometry.primitives import (
    Curve,
    Point2D,
    Polygon2D,
    Vec2,
    cross,
    dot,
    left_normal,
    line_intersection,
    unit,
)
from wall_geometry.tolerance import AdaptiveToleranceManager

logger = logging.getLogger(__name__)

# Sine of the angle below which two segment directions count as collinear.
COLLINEAR_SINE = 1e-9

BUFFER_JOIN_STYLE = {
    JoinType.MITER: "mitre",
    JoinType.BEVEL: "bevel",
    JoinType.BUTT: "bevel",
    JoinType.ROUND: "round",
}


@dataclass
class JoinRecord:
    vertex_index: int
    vertex_id: str
    requested: JoinType
    applied: JoinType
    outer_side: str  # "left", "right" or "none" for collinear vertices
    apex: Optional[Point2D] = None


@dataclass
class OffsetResult:
    success: bool
    left_offset: Optional[Curve]
    right_offset: Optional[Curve]
    join_type: JoinType
    warnings: List[str] = field(default_factory=list)
    fallback_used: bool = False
    joins: List[JoinRecord] = field(default_factory=list)
    tolerance: float = 0.0
    is_closed: bool = False
    clipped_vertices: List[int] = field(default_factory=list)

    @property
    def self_intersecting(self) -> bool:
        return any("self-intersect" in w for w in self.warnings)

    @property
    def needs_swept_outline(self) -> bool:
        """The two offsets no longer bound the wall; sweep the baseline instead."""
        return self.success and (bool(self.clipped_vertices) or self.self_intersecting)


@dataclass
class _SideBuild:
    coords: List[Vec2]
    joins: Dict[int, Tuple[JoinType, Optional[Vec2]]]
    fallback_used: bool = False
    clipped: List[int] = field(default_factory=list)


class RobustOffsetEngine:
    """Offsets a baseline by a half thickness on both sides.

    The left side lies along ``(-dy, dx)`` of each segment direction.  Inner
    joins are trimmed to the offset-line intersection unless the trim would
    overrun an adjacent segment; such vertices keep both offset points and are
    reported in ``clipped_vertices``.  The requested join type only shapes the
    outer side of each turn.
    """

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        tolerance_manager: Optional[AdaptiveToleranceManager] = None,
    ):
        self.config = config or EngineConfig()
        self.tolerances = tolerance_manager or AdaptiveToleranceManager(self.config)

    # ── public API ───────────────────────────────────────────────────────────

    def offset_curve(
        self,
        baseline: Curve,
        half_thickness: float,
        join_type: Optional[JoinType] = None,
        tolerance: Optional[float] = None,
        miter_limit: Optional[float] = None,
    ) -> OffsetResult:
        join = join_type or self.config.default_join_type
        limit = self.config.miter_limit if miter_limit is None else miter_limit

        if len(baseline.points) < 2:
            return self._failure(join, ["Baseline has fewer than 2 points"])
        if not math.isfinite(half_thickness) or half_thickness <= 0:
            return self._failure(join, [f"Half thickness must be positive, got {half_thickness}"])
        if not all(p.is_finite for p in baseline.points):
            return self._failure(join, ["Baseline contains non-finite coordinates"])

        tol = tolerance
        if tol is None or not math.isfinite(tol) or tol <= 0:
            tol = self.tolerances.calculate_tolerance(
                2.0 * half_thickness, None, None, ToleranceContext.OFFSET
            )

        warnings: List[str] = []
        try:
            return self._offset(baseline, half_thickness, join, tol, limit, warnings)
        except Exception as exc:  # numerical failures must not escape the stage
            logger.warning("Offset of %s failed: %s", baseline.id, exc)
            warnings.append(f"Offset computation failed: {exc}")
            return self._failure(join, warnings, tol)

    def select_optimal_join_type(
        self, turn_angle: float, thickness: float, min_segment_length: float = math.inf
    ) -> JoinType:
        """Pick the join that keeps a turn of *turn_angle* radians well formed."""
        turn = abs(turn_angle)
        if turn >= math.radians(150):
            return JoinType.ROUND
        if min_segment_length < thickness * self.config.short_segment_ratio:
            return JoinType.BEVEL
        half = turn / 2.0
        if math.cos(half) <= 0 or 1.0 / math.cos(half) > self.config.miter_limit:
            return JoinType.BEVEL
        return JoinType.MITER

    @staticmethod
    def build_solid_polygon(
        left: Curve, right: Curve, closed: bool = False, polygon_id: Optional[str] = None
    ) -> Optional[Polygon2D]:
        """Join both offsets into the wall outline (an annulus for closed loops)."""
        lc = [p.xy for p in left.points]
        rc = [p.xy for p in right.points]
        if closed:
            if len(lc) < 3 or len(rc) < 3:
                return None
            a = ShapelyPolygon(lc)
            b = ShapelyPolygon(rc)
            outer, inner = (lc, rc) if abs(a.area) >= abs(b.area) else (rc, lc)
            return Polygon2D.from_coords(outer, [inner], polygon_id=polygon_id)
        ring = lc + list(reversed(rc))
        if len(ring) < 3:
            return None
        return Polygon2D.from_coords(ring, polygon_id=polygon_id)

    def swept_polygon(
        self,
        baseline: Curve,
        half_thickness: float,
        join_type: Optional[JoinType] = None,
        miter_limit: Optional[float] = None,
        polygon_id: Optional[str] = None,
    ) -> Optional[Polygon2D]:
        """Wall outline as the flat-capped buffer of the baseline.

        Always a single piece for a connected baseline, so it stands in for the
        offset outline when that folds over itself (hairpins, segments shorter
        than the wall is thick).
        """
        coords = [p.xy for p in baseline.points if p.is_finite]
        if len(coords) < 2 or not math.isfinite(half_thickness) or half_thickness <= 0:
            return None
        join = join_type or self.config.default_join_type
        limit = self.config.miter_limit if miter_limit is None else miter_limit
        closed = baseline.is_closed and len(coords) >= 3
        line = LinearRing(coords) if closed else LineString(coords)
        shape = line.buffer(
            half_thickness,
            quad_segs=max(1, self.config.round_segments // 2),
            cap_style="flat",
            join_style=BUFFER_JOIN_STYLE[join],
            mitre_limit=limit,
        )
        if shape.is_empty:
            return None
        if shape.geom_type != "Polygon":
            shape = max(shape.geoms, key=lambda g: g.area)
        return Polygon2D.from_shapely(shape, polygon_id=polygon_id, creation_method="swept")

    # ── internals ────────────────────────────────────────────────────────────

    def _failure(self, join: JoinType, warnings: List[str], tol: float = 0.0) -> OffsetResult:
        for w in warnings:
            logger.debug("offset: %s", w)
        return OffsetResult(False, None, None, join, list(warnings), tolerance=tol)

    def _clean(self, baseline: Curve, tol: float) -> Tuple[List[Point2D], int]:
        kept: List[Point2D] = []
        removed = 0
        for p in baseline.points:
            if kept and p.equals(kept[-1], tol):
                removed += 1
                continue
            kept.append(p)
        return kept, removed

    def _offset(
        self,
        baseline: Curve,
        h: float,
        join: JoinType,
        tol: float,
        limit: float,
        warnings: List[str],
    ) -> OffsetResult:
        pts, removed = self._clean(baseline, tol)
        if removed:
            warnings.append(f"Removed {removed} zero-length segment(s) from baseline")

        closed = baseline.is_closed
        if len(pts) >= 3 and pts[0].equals(pts[-1], tol):
            closed = True
            pts = pts[:-1]
        if len(pts) < 2 or (closed and len(pts) < 3):
            warnings.append("Degenerate baseline: tangent undefined because all segments are zero-length")
            return self._failure(join, warnings, tol)

        seg_count = len(pts) if closed else len(pts) - 1
        dirs: List[Vec2] = []
        for i in range(seg_count):
            a = pts[i]
            b = pts[(i + 1) % len(pts)]
            d = unit(b.x - a.x, b.y - a.y)
            if d is None:
                warnings.append(f"NaN tangent on segment {i}")
                return self._failure(join, warnings, tol)
            dirs.append(d)

        coords = [p.xy for p in pts]
        sides: Dict[str, _SideBuild] = {}
        for name, sign in (("left", 1.0), ("right", -1.0)):
            build = self._offset_side(coords, dirs, sign * h, join, closed, limit)
            if join is JoinType.MITER and not _is_simple(build.coords, closed):
                rebuilt = self._offset_side(coords, dirs, sign * h, JoinType.BEVEL, closed, limit)
                rebuilt.fallback_used = True
                warnings.append(f"Mitered {name} offset self-intersects; using bevel joins")
                build = rebuilt
            if not _is_simple(build.coords, closed):
                warnings.append(
                    f"{name.capitalize()} offset self-intersects; thickness is large relative to segment length"
                )
            sides[name] = build

        fallback = any(build.fallback_used for build in sides.values())
        clipped = sorted({i for build in sides.values() for i in build.clipped})
        for i in clipped:
            fallback = True
            warnings.append(
                f"Inner join at vertex {i} clipped: the trimmed offset would overrun an adjacent segment"
            )

        joins: List[JoinRecord] = []
        vertex_indices = range(len(pts)) if closed else range(1, len(pts) - 1)
        for i in vertex_indices:
            left_join = sides["left"].joins.get(i)
            right_join = sides["right"].joins.get(i)
            outer_name, outer = ("none", None)
            if left_join is not None:
                outer_name, outer = "left", left_join
            elif right_join is not None:
                outer_name, outer = "right", right_join
            applied = outer[0] if outer else join
            apex = (
                Point2D(outer[1][0], outer[1][1], creation_method="miter_apex", tolerance=tol)
                if outer and outer[1] is not None
                else None
            )
            joins.append(JoinRecord(i, pts[i].id, join, applied, outer_name, apex))
            if outer and applied is not join and not (join is JoinType.BUTT and applied is JoinType.BEVEL):
                fallback = True
                msg = f"Join at vertex {i} fell back from {join.value} to {applied.value}"
                if msg not in warnings:
                    warnings.append(msg)

        left_curve = _to_curve(sides["left"].coords, closed, tol)
        right_curve = _to_curve(sides["right"].coords, closed, tol)
        logger.debug(
            "Offset %s: %d vertices, join=%s, fallback=%s", baseline.id, len(pts), join.value, fallback
        )
        return OffsetResult(
            success=True,
            left_offset=left_curve,
            right_offset=right_curve,
            join_type=join,
            warnings=warnings,
            fallback_used=fallback,
            joins=joins,
            tolerance=tol,
            is_closed=closed,
            clipped_vertices=clipped,
        )

    def _offset_side(
        self,
        coords: Sequence[Vec2],
        dirs: Sequence[Vec2],
        s: float,
        join: JoinType,
        closed: bool,
        limit: float,
    ) -> _SideBuild:
        n = len(coords)
        out: List[Vec2] = []
        joins: Dict[int, Tuple[JoinType, Optional[Vec2]]] = {}
        clipped: List[int] = []
        lengths = [
            math.hypot(coords[(i + 1) % n][0] - coords[i][0], coords[(i + 1) % n][1] - coords[i][1])
            for i in range(len(dirs))
        ]

        if not closed:
            n0 = left_normal(dirs[0])
            out.append((coords[0][0] + n0[0] * s, coords[0][1] + n0[1] * s))

        vertex_indices = range(n) if closed else range(1, n - 1)
        for i in vertex_indices:
            d1 = dirs[i - 1]
            d2 = dirs[i % len(dirs)]
            reach = (lengths[i - 1], lengths[i % len(dirs)])
            pts, outer, was_clipped = self._join(coords[i], d1, d2, s, join, limit, reach)
            out.extend(pts)
            if outer is not None:
                joins[i] = outer
            if was_clipped:
                clipped.append(i)

        if not closed:
            nl = left_normal(dirs[-1])
            out.append((coords[-1][0] + nl[0] * s, coords[-1][1] + nl[1] * s))
        return _SideBuild(out, joins, clipped=clipped)

    def _join(
        self,
        v: Vec2,
        d1: Vec2,
        d2: Vec2,
        s: float,
        join: JoinType,
        limit: float,
        reach: Tuple[float, float] = (math.inf, math.inf),
    ) -> Tuple[List[Vec2], Optional[Tuple[JoinType, Optional[Vec2]]], bool]:
        """Offset points at one vertex, (applied join, apex) on the outer side,
        and whether the inner trim had to be clipped."""
        n1 = left_normal(d1)
        n2 = left_normal(d2)
        a1 = (v[0] + n1[0] * s, v[1] + n1[1] * s)
        a2 = (v[0] + n2[0] * s, v[1] + n2[1] * s)
        turn = cross(d1, d2)
        reversal = abs(turn) <= COLLINEAR_SINE and dot(d1, d2) < 0

        if abs(turn) <= COLLINEAR_SINE and not reversal:
            return [a1], None, False

        if not reversal and turn * s > 0:
            hit = line_intersection(a1, d1, a2, d2)
            if hit is not None and _trim_fits(hit, a1, a2, d1, d2, reach):
                return [hit], None, False
            return [a1, a2], None, True

        h = abs(s)
        if join is JoinType.MITER:
            apex = None if reversal else line_intersection(a1, d1, a2, d2)
            if apex is not None and math.hypot(apex[0] - v[0], apex[1] - v[1]) <= limit * h:
                return [apex], (JoinType.MITER, apex), False
            return [a1, a2], (JoinType.BEVEL, None), False
        if join is JoinType.ROUND:
            return self._arc(v, a1, a2, d1, h), (JoinType.ROUND, None), False
        return [a1, a2], (JoinType.BEVEL if join is JoinType.BUTT else join, None), False

    def _arc(self, v: Vec2, a1: Vec2, a2: Vec2, d1: Vec2, h: float) -> List[Vec2]:
        t1 = math.atan2(a1[1] - v[1], a1[0] - v[0])
        t2 = math.atan2(a2[1] - v[1], a2[0] - v[0])
        delta = (t2 - t1 + math.pi) % (2 * math.pi) - math.pi
        if abs(abs(delta) - math.pi) <= 1e-9:
            # Reversal: sweep through the forward direction of the incoming segment.
            mid = t1 + delta / 2.0
            if math.cos(mid) * d1[0] + math.sin(mid) * d1[1] < 0:
                delta = -delta
        steps = max(1, int(math.ceil(self.config.round_segments * abs(delta) / math.pi)))
        return [
            (v[0] + h * math.cos(t1 + delta * k / steps), v[1] + h * math.sin(t1 + delta * k / steps))
            for k in range(steps + 1)
        ]


def _trim_fits(hit: Vec2, a1: Vec2, a2: Vec2, d1: Vec2, d2: Vec2, reach: Tuple[float, float]) -> bool:
    """The inner trim may shorten each adjacent segment by at most its length."""
    back = dot((a1[0] - hit[0], a1[1] - hit[1]), d1)
    ahead = dot((hit[0] - a2[0], hit[1] - a2[1]), d2)
    return back <= reach[0] and ahead <= reach[1]


def _is_simple(coords: Sequence[Vec2], closed: bool) -> bool:
    if len(coords) < 2:
        return True
    ring = list(coords) + ([coords[0]] if closed else [])
    return bool(LineString(ring).is_simple)


def _to_curve(coords: Sequence[Vec2], closed: bool, tol: float) -> Curve:
    return Curve(
        tuple(Point2D(x, y, tolerance=tol, creation_method="offset") for x, y in coords),
        is_closed=closed,
    )
