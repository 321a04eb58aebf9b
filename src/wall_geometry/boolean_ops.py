"""Boolean combination of wall solids on top of shapely/GEOS overlay.

Clipping snaps to the boolean tolerance grid.  Healing is not done here: the
degeneracy scan only reports what the healer has to fix.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import numpy as np
import shapely
from shapely.errors import GEOSException
from shapely.geometry import GeometryCollection, MultiPolygon
from shapely.geometry import Polygon as ShapelyPolygon
from shapely.geometry.base import BaseGeometry

from wall_geometry.contracts import BooleanOp, EngineConfig
from wall_geometry.primitives import Polygon2D
from wall_geometry.tolerance import AdaptiveToleranceManager
from wall_geometry.wall_solid import WallSolid

logger = logging.getLogger(__name__)

SLIVER_AREA_FACTOR = 10.0
BATCH_DIRECT_LIMIT = 10


@dataclass
class DegeneracyReport:
    sliver_faces: int = 0
    duplicate_vertices: int = 0
    self_intersections: int = 0

    @property
    def found(self) -> bool:
        return bool(self.sliver_faces or self.duplicate_vertices or self.self_intersections)


@dataclass
class BooleanResult:
    success: bool
    operation: BooleanOp
    polygons: List[Polygon2D] = field(default_factory=list)
    result_solid: Optional[WallSolid] = None
    processing_time: float = 0.0
    warnings: List[str] = field(default_factory=list)
    requires_healing: bool = False
    tolerance_used: float = 0.0
    degeneracies: DegeneracyReport = field(default_factory=DegeneracyReport)
    retried: bool = False


def extract_polygons(geom: Optional[BaseGeometry]) -> List[ShapelyPolygon]:
    """Flatten any overlay output into its non-empty polygons."""
    if geom is None or geom.is_empty:
        return []
    if isinstance(geom, ShapelyPolygon):
        return [geom] if geom.area > 0 else []
    if isinstance(geom, (MultiPolygon, GeometryCollection)):
        out: List[ShapelyPolygon] = []
        for part in geom.geoms:
            out.extend(extract_polygons(part))
        return out
    return []


def snap_grid(tolerance: float) -> float:
    """Largest power of ten not above *tolerance*; keeps round input coordinates exact."""
    if not math.isfinite(tolerance) or tolerance <= 0:
        return tolerance
    return 10.0 ** math.floor(math.log10(tolerance))


def _finite(geom: BaseGeometry) -> bool:
    coords = shapely.get_coordinates(geom)
    return bool(np.isfinite(coords).all())


class BooleanOperationsEngine:
    """Grid-snapped shapely union, intersection and difference over wall polygons."""

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        tolerance_manager: Optional[AdaptiveToleranceManager] = None,
    ):
        self.config = config or EngineConfig()
        self.tolerances = tolerance_manager or AdaptiveToleranceManager(self.config)

    def combine(
        self,
        solids: Sequence[WallSolid],
        op: BooleanOp = BooleanOp.UNION,
        tolerance: Optional[float] = None,
    ) -> BooleanResult:
        """Combine the solid geometry of *solids*; the result keeps the first solid's identity."""
        if not solids:
            return BooleanResult(False, op, warnings=["No solids to combine"])
        thicknesses = [s.thickness for s in solids if s.thickness > 0]
        thickness = min(thicknesses) if thicknesses else self.config.document_precision
        result = self.combine_polygons(
            [s.solid_geometry for s in solids], op, thickness, tolerance, id_prefix=solids[0].id
        )
        if result.success:
            result.result_solid = solids[0].with_updates(
                solid_geometry=result.polygons,
                complexity=sum(p.vertex_count for p in result.polygons),
            )
        return result

    def combine_polygons(
        self,
        polygon_sets: Sequence[Sequence[Polygon2D]],
        op: BooleanOp,
        thickness: float,
        tolerance: Optional[float] = None,
        id_prefix: Optional[str] = None,
    ) -> BooleanResult:
        start = time.perf_counter()
        warnings: List[str] = []
        if not polygon_sets:
            return BooleanResult(False, op, warnings=["No polygon sets to combine"])

        complexity = sum(p.vertex_count for polys in polygon_sets for p in polys)
        tol = tolerance if tolerance and tolerance > 0 else self.tolerances.boolean_tolerance(
            thickness, complexity
        )
        tiers = [tol, self.tolerances.next_tier(tol)]

        shapes: Optional[List[ShapelyPolygon]] = None
        used = tol
        for attempt, grid in enumerate(tiers):
            try:
                geom = self._clip(polygon_sets, op, snap_grid(grid))
                if not _finite(geom):
                    raise FloatingPointError("non-finite coordinates in overlay result")
                shapes = extract_polygons(geom)
                used = grid
                break
            except (GEOSException, ValueError, FloatingPointError) as exc:
                logger.warning(
                    "Boolean %s failed at tolerance %.3e (attempt %d): %s",
                    op.value, grid, attempt + 1, exc,
                )
                warnings.append(f"{op.value} failed at tolerance {grid:.3e}: {exc}")

        elapsed = time.perf_counter() - start
        if shapes is None:
            return BooleanResult(
                False, op, processing_time=elapsed, warnings=warnings, tolerance_used=used, retried=True
            )

        polygons = [
            Polygon2D.from_shapely(
                s,
                polygon_id=f"{id_prefix}_{op.value}_{i}" if id_prefix else None,
            )
            for i, s in enumerate(shapes)
        ]
        report = self.scan_degeneracies(polygons, thickness, used)
        if report.found:
            warnings.append(
                f"Degeneracies found: {report.sliver_faces} sliver(s), "
                f"{report.duplicate_vertices} duplicate vertex(es), "
                f"{report.self_intersections} self-intersection(s)"
            )
        if not polygons and op is BooleanOp.UNION:
            warnings.append("Union produced empty geometry")
        logger.debug(
            "Boolean %s: %d set(s) -> %d polygon(s) in %.4fs", op.value, len(polygon_sets), len(polygons), elapsed
        )
        return BooleanResult(
            success=True,
            operation=op,
            polygons=polygons,
            processing_time=elapsed,
            warnings=warnings,
            requires_healing=report.found,
            tolerance_used=used,
            degeneracies=report,
            retried=used != tol,
        )

    def batch_union(self, solids: Sequence[WallSolid], tolerance: Optional[float] = None) -> BooleanResult:
        """Union many solids, smallest first, pairwise above the direct limit."""
        if len(solids) <= BATCH_DIRECT_LIMIT:
            return self.combine(solids, BooleanOp.UNION, tolerance)
        ordered = sorted(solids, key=lambda s: (s.vertex_count, s.id))
        thickness = min((s.thickness for s in ordered if s.thickness > 0), default=1.0)
        layer: List[List[Polygon2D]] = [list(s.solid_geometry) for s in ordered]
        warnings: List[str] = []
        while len(layer) > 1:
            merged: List[List[Polygon2D]] = []
            for i in range(0, len(layer), 2):
                pair = layer[i:i + 2]
                if len(pair) == 1:
                    merged.append(pair[0])
                    continue
                step = self.combine_polygons(pair, BooleanOp.UNION, thickness, tolerance)
                warnings.extend(step.warnings)
                # A failed pair is carried forward unclipped rather than dropped.
                merged.append(step.polygons if step.success else pair[0] + pair[1])
            layer = merged
        result = self.combine_polygons(layer, BooleanOp.UNION, thickness, tolerance, id_prefix="batch")
        result.warnings = warnings + result.warnings
        return result

    def scan_degeneracies(
        self, polygons: Sequence[Polygon2D], thickness: float, tolerance: float
    ) -> DegeneracyReport:
        report = DegeneracyReport()
        area_tol = max(thickness, 0.0) * tolerance * SLIVER_AREA_FACTOR
        for poly in polygons:
            if poly.area < area_tol:
                report.sliver_faces += 1
            for ring in (poly.outer, *poly.holes):
                n = len(ring)
                for i in range(n):
                    if ring[i].distance_to(ring[(i + 1) % n]) < tolerance:
                        report.duplicate_vertices += 1
            if not poly.is_valid:
                report.self_intersections += 1
        return report

    # ── internals ────────────────────────────────────────────────────────────

    def _operand(self, polygons: Sequence[Polygon2D], grid: float) -> BaseGeometry:
        geoms = [p.to_shapely() for p in polygons]
        geoms = [g for g in geoms if not g.is_empty]
        for g in geoms:
            if not _finite(g):
                raise FloatingPointError("non-finite input coordinates")
        if not geoms:
            return ShapelyPolygon()
        if len(geoms) == 1:
            return geoms[0]
        return shapely.union_all(geoms, grid_size=grid)

    def _clip(self, polygon_sets: Sequence[Sequence[Polygon2D]], op: BooleanOp, grid: float) -> BaseGeometry:
        operands = [self._operand(polys, grid) for polys in polygon_sets]
        if op is BooleanOp.UNION:
            return shapely.union_all(operands, grid_size=grid)
        acc = operands[0]
        for other in operands[1:]:
            if op is BooleanOp.INTERSECTION:
                acc = shapely.intersection(acc, other, grid_size=grid)
            else:
                acc = shapely.difference(acc, other, grid_size=grid)
        if math.isfinite(grid) and len(operands) == 1:
            acc = shapely.set_precision(acc, grid)
        return acc
