"""Shape healing: slivers, micro-gaps, duplicate vertices, self-intersections."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import shapely
from shapely import STRtree
from shapely.errors import GEOSException
from shapely.geometry import Polygon as ShapelyPolygon

from wall_geometry.boolean_ops import SLIVER_AREA_FACTOR, extract_polygons
from wall_geometry.contracts import EngineConfig, ToleranceContext
from wall_geometry.primitives import Polygon2D
from wall_geometry.tolerance import AdaptiveToleranceManager
from wall_geometry.wall_solid import HealingRecord, WallSolid

logger = logging.getLogger(__name__)


@dataclass
class HealingResult:
    success: bool
    solid: WallSolid
    operations: List[HealingRecord] = field(default_factory=list)
    issues_fixed: int = 0
    slivers_removed: int = 0
    micro_gaps_closed: int = 0
    warnings: List[str] = field(default_factory=list)


def count_micro_gaps(shapes: Sequence[ShapelyPolygon], gap: float, area_tol: float) -> int:
    """Tiny holes plus pairs of disjoint parts closer than *gap*."""
    shapes = list(shapes)
    count = sum(1 for s in shapes for r in s.interiors if ShapelyPolygon(r).area < area_tol)
    if len(shapes) < 2:
        return count
    left, right = STRtree(shapes).query(shapes, predicate="dwithin", distance=gap)
    for i, j in zip(left.tolist(), right.tolist()):
        a, b = shapes[i], shapes[j]
        if i < j and not a.intersects(b) and a.distance(b) < gap:
            count += 1
    return count


class ShapeHealer:
    """Post-boolean cleanup: self-intersections, duplicate vertices, micro-gaps and slivers."""

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        tolerance_manager: Optional[AdaptiveToleranceManager] = None,
    ):
        self.config = config or EngineConfig()
        self.tolerances = tolerance_manager or AdaptiveToleranceManager(self.config)

    def healing_tolerance(self, thickness: float) -> float:
        return self.tolerances.calculate_tolerance(
            thickness, None, None, ToleranceContext.SHAPE_HEALING
        )

    def heal(self, solid: WallSolid, tolerance: Optional[float] = None) -> HealingResult:
        tol = tolerance if tolerance and tolerance > 0 else self.healing_tolerance(solid.thickness)
        area_tol = max(solid.thickness, 0.0) * tol * SLIVER_AREA_FACTOR
        shapes = [p.to_shapely() for p in solid.solid_geometry]
        shapes = [s for s in shapes if not s.is_empty]
        records: List[HealingRecord] = []
        warnings: List[str] = []

        try:
            shapes, fixed = self._fix_self_intersections(shapes)
            records.append(HealingRecord("fix_self_intersections", True, f"{fixed} polygon(s) made valid", fixed))

            shapes, merged = self._merge_duplicate_vertices(shapes, tol)
            records.append(HealingRecord("merge_duplicate_vertices", True, f"{merged} vertex(es) merged", merged))

            shapes, gaps = self._close_micro_gaps(shapes, tol, area_tol)
            records.append(HealingRecord("eliminate_micro_gaps", True, f"{gaps} micro-gap(s) closed", gaps))

            shapes, slivers = self._remove_slivers(shapes, area_tol)
            records.append(HealingRecord("remove_sliver_faces", True, f"{slivers} sliver(s) removed", slivers))

            shapes, simplified = self._simplify(shapes, tol)
            records.append(HealingRecord("simplify_collinear", True, f"{simplified} vertex(es) removed", simplified))
        except (GEOSException, ValueError) as exc:
            logger.warning("Healing of %s stopped early: %s", solid.id, exc)
            warnings.append(f"Healing stopped early: {exc}")
            records.append(HealingRecord("heal", False, str(exc)))
            gaps = slivers = 0

        polygons = [
            Polygon2D.from_shapely(s, polygon_id=f"{solid.id}_healed_{i}", creation_method="healing")
            for i, s in enumerate(shapes)
        ]
        issues_fixed = sum(r.issues_fixed for r in records)
        success = all(p.is_valid for p in polygons) and all(r.success for r in records)
        for record in records:
            if record.issues_fixed:
                logger.info("Healed %s: %s (%s)", solid.id, record.operation, record.details)

        healed = solid.with_updates(
            solid_geometry=polygons,
            healing_history=solid.healing_history + tuple(records),
            complexity=sum(p.vertex_count for p in polygons),
        )
        return HealingResult(
            success=success,
            solid=healed,
            operations=records,
            issues_fixed=issues_fixed,
            slivers_removed=slivers,
            micro_gaps_closed=gaps,
            warnings=warnings,
        )

    # ── individual operations ────────────────────────────────────────────────

    @staticmethod
    def _fix_self_intersections(shapes: List[ShapelyPolygon]) -> Tuple[List[ShapelyPolygon], int]:
        out: List[ShapelyPolygon] = []
        fixed = 0
        for s in shapes:
            if s.is_valid:
                out.append(s)
                continue
            fixed += 1
            repaired = extract_polygons(shapely.make_valid(s))
            if not repaired:
                repaired = extract_polygons(s.buffer(0))
            out.extend(repaired)
        return out, fixed

    @staticmethod
    def _merge_duplicate_vertices(shapes: List[ShapelyPolygon], tol: float) -> Tuple[List[ShapelyPolygon], int]:
        out: List[ShapelyPolygon] = []
        merged = 0
        for s in shapes:
            before = shapely.get_num_coordinates(s)
            cleaned = shapely.remove_repeated_points(s, tolerance=tol)
            parts = extract_polygons(cleaned) if cleaned.is_valid else [s]
            if not parts:
                out.append(s)
                continue
            merged += max(0, int(before) - sum(int(shapely.get_num_coordinates(p)) for p in parts))
            out.extend(parts)
        return out, merged

    @staticmethod
    def _close_micro_gaps(
        shapes: List[ShapelyPolygon], tol: float, area_tol: float
    ) -> Tuple[List[ShapelyPolygon], int]:
        gaps = count_micro_gaps(shapes, 2.0 * tol, area_tol)
        if not gaps:
            return shapes, 0
        merged = shapely.union_all(shapes)
        closed = merged.buffer(tol, join_style="mitre").buffer(-tol, join_style="mitre")
        out = extract_polygons(closed)
        # Drop tiny holes that survived the closing.
        cleaned = [
            ShapelyPolygon(s.exterior, [r for r in s.interiors if ShapelyPolygon(r).area >= area_tol])
            for s in out
        ]
        return (cleaned or shapes), gaps

    @staticmethod
    def _remove_slivers(shapes: List[ShapelyPolygon], area_tol: float) -> Tuple[List[ShapelyPolygon], int]:
        if not shapes:
            return shapes, 0
        keep = [s for s in shapes if s.area >= area_tol]
        if not keep:
            # Never heal a wall out of existence; keep its largest piece.
            keep = [max(shapes, key=lambda s: s.area)]
        return keep, len(shapes) - len(keep)

    @staticmethod
    def _simplify(shapes: List[ShapelyPolygon], tol: float) -> Tuple[List[ShapelyPolygon], int]:
        out: List[ShapelyPolygon] = []
        removed = 0
        for s in shapes:
            simple = s.simplify(tol, preserve_topology=True)
            parts = extract_polygons(simple)
            if len(parts) != 1 or not parts[0].is_valid:
                out.append(s)
                continue
            removed += max(0, int(shapely.get_num_coordinates(s)) - int(shapely.get_num_coordinates(parts[0])))
            out.append(parts[0])
        return out, removed
