"""Immutable 2D geometric primitives and the vector helpers built on them.

Points are never compared with ``==``; use :meth:`Point2D.equals` with an
explicit tolerance.  Curves and polygons convert to shapely geometry for the
clipping and validity work done elsewhere in the package.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from functools import cached_property
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np
from shapely.geometry import LineString
from shapely.geometry import Polygon as ShapelyPolygon
from shapely.geometry.polygon import orient

from wall_geometry.contracts import CurveType

DEFAULT_POINT_TOLERANCE = 1e-6

Vec2 = Tuple[float, float]


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True, eq=False)
class Point2D:
    x: float
    y: float
    id: str = field(default_factory=lambda: _new_id("pt"))
    tolerance: float = DEFAULT_POINT_TOLERANCE
    creation_method: str = "manual"
    accuracy: float = 1.0
    validated: bool = False

    @property
    def xy(self) -> Vec2:
        return (self.x, self.y)

    @property
    def is_finite(self) -> bool:
        return math.isfinite(self.x) and math.isfinite(self.y)

    def distance_to(self, other: "Point2D") -> float:
        return math.hypot(self.x - other.x, self.y - other.y)

    def equals(self, other: "Point2D", tolerance: Optional[float] = None) -> bool:
        tol = self.tolerance if tolerance is None else tolerance
        return self.distance_to(other) <= tol

    def translated(self, dx: float, dy: float, creation_method: str = "offset") -> "Point2D":
        return Point2D(
            self.x + dx,
            self.y + dy,
            tolerance=self.tolerance,
            creation_method=creation_method,
        )

    def to_dict(self) -> dict:
        return {
            "x": self.x,
            "y": self.y,
            "id": self.id,
            "tolerance": self.tolerance,
            "creation_method": self.creation_method,
            "accuracy": self.accuracy,
            "validated": self.validated,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Point2D":
        return cls(
            x=float(data["x"]),
            y=float(data["y"]),
            id=str(data.get("id") or _new_id("pt")),
            tolerance=float(data.get("tolerance", DEFAULT_POINT_TOLERANCE)),
            creation_method=str(data.get("creation_method", "manual")),
            accuracy=float(data.get("accuracy", 1.0)),
            validated=bool(data.get("validated", False)),
        )


@dataclass(frozen=True)
class BoundingBox:
    min_x: float
    min_y: float
    max_x: float
    max_y: float

    @property
    def width(self) -> float:
        return self.max_x - self.min_x

    @property
    def height(self) -> float:
        return self.max_y - self.min_y


@dataclass(frozen=True, eq=False)
class Curve:
    """Ordered point sequence.  Fewer than two points is representable so the
    validator can report it; geometric properties then degrade to zero."""

    points: Tuple[Point2D, ...]
    curve_type: CurveType = CurveType.POLYLINE
    is_closed: bool = False
    id: str = field(default_factory=lambda: _new_id("crv"))

    def __post_init__(self) -> None:
        if not isinstance(self.points, tuple):
            object.__setattr__(self, "points", tuple(self.points))

    @classmethod
    def from_coords(
        cls,
        coords: Iterable[Sequence[float]],
        *,
        is_closed: bool = False,
        curve_type: CurveType = CurveType.POLYLINE,
        creation_method: str = "manual",
        curve_id: Optional[str] = None,
    ) -> "Curve":
        points = tuple(
            Point2D(float(c[0]), float(c[1]), creation_method=creation_method)
            for c in coords
        )
        kwargs = {"id": curve_id} if curve_id else {}
        return cls(points, curve_type=curve_type, is_closed=is_closed, **kwargs)

    def __len__(self) -> int:
        return len(self.points)

    @cached_property
    def coords(self) -> np.ndarray:
        if not self.points:
            return np.zeros((0, 2), dtype=float)
        return np.array([p.xy for p in self.points], dtype=float)

    def _path_coords(self) -> np.ndarray:
        pts = self.coords
        if self.is_closed and len(pts) >= 2 and not np.allclose(pts[0], pts[-1]):
            pts = np.vstack([pts, pts[:1]])
        return pts

    @cached_property
    def length(self) -> float:
        pts = self._path_coords()
        if len(pts) < 2:
            return 0.0
        return float(np.linalg.norm(np.diff(pts, axis=0), axis=1).sum())

    @cached_property
    def bounding_box(self) -> BoundingBox:
        pts = self.coords
        if len(pts) == 0:
            return BoundingBox(0.0, 0.0, 0.0, 0.0)
        lo = pts.min(axis=0)
        hi = pts.max(axis=0)
        return BoundingBox(float(lo[0]), float(lo[1]), float(hi[0]), float(hi[1]))

    def segments(self) -> List[Tuple[Point2D, Point2D]]:
        pts = list(self.points)
        segs = list(zip(pts[:-1], pts[1:]))
        if self.is_closed and len(pts) >= 3 and not pts[0].equals(pts[-1]):
            segs.append((pts[-1], pts[0]))
        return segs

    def segment_lengths(self) -> np.ndarray:
        pts = self._path_coords()
        if len(pts) < 2:
            return np.zeros(0, dtype=float)
        return np.linalg.norm(np.diff(pts, axis=0), axis=1)

    @cached_property
    def tangents(self) -> List[Vec2]:
        """Unit tangent per point; NaN where every adjacent segment is degenerate."""
        pts = self.coords
        n = len(pts)
        out: List[Vec2] = []
        for i in range(n):
            prev_d = pts[i] - pts[i - 1] if i > 0 else None
            next_d = pts[i + 1] - pts[i] if i < n - 1 else None
            acc = np.zeros(2)
            for d in (prev_d, next_d):
                if d is None:
                    continue
                norm = float(np.linalg.norm(d))
                if norm > DEFAULT_POINT_TOLERANCE:
                    acc = acc + d / norm
            norm = float(np.linalg.norm(acc))
            if norm <= DEFAULT_POINT_TOLERANCE:
                out.append((math.nan, math.nan))
            else:
                out.append((float(acc[0] / norm), float(acc[1] / norm)))
        return out

    @cached_property
    def curvature(self) -> List[float]:
        """Discrete curvature: turning angle over mean adjacent segment length."""
        pts = self.coords
        n = len(pts)
        values = [0.0] * n
        for i in range(1, n - 1):
            a = pts[i] - pts[i - 1]
            b = pts[i + 1] - pts[i]
            la = float(np.linalg.norm(a))
            lb = float(np.linalg.norm(b))
            if la <= DEFAULT_POINT_TOLERANCE or lb <= DEFAULT_POINT_TOLERANCE:
                continue
            turn = abs(math.atan2(a[0] * b[1] - a[1] * b[0], float(np.dot(a, b))))
            values[i] = turn / (0.5 * (la + lb))
        return values

    def coincident_vertex_indices(self, tolerance: float) -> List[int]:
        """Indices ``i`` where point ``i`` coincides with point ``i - 1``."""
        return [
            i
            for i in range(1, len(self.points))
            if self.points[i].equals(self.points[i - 1], tolerance)
        ]

    def vertex_turn_angles(self) -> List[float]:
        """Signed turn angle at each interior vertex (CCW positive)."""
        pts = self.coords
        out: List[float] = []
        for i in range(1, len(pts) - 1):
            a = pts[i] - pts[i - 1]
            b = pts[i + 1] - pts[i]
            out.append(math.atan2(a[0] * b[1] - a[1] * b[0], float(np.dot(a, b))))
        return out

    def to_linestring(self) -> LineString:
        return LineString(self._path_coords())

    def with_points(self, points: Sequence[Point2D], **changes) -> "Curve":
        return Curve(
            tuple(points),
            curve_type=changes.get("curve_type", self.curve_type),
            is_closed=changes.get("is_closed", self.is_closed),
            id=changes.get("id", self.id),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "curve_type": self.curve_type.value,
            "is_closed": self.is_closed,
            "points": [p.to_dict() for p in self.points],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Curve":
        return cls(
            tuple(Point2D.from_dict(p) for p in data.get("points", [])),
            curve_type=CurveType(data.get("curve_type", CurveType.POLYLINE.value)),
            is_closed=bool(data.get("is_closed", False)),
            id=str(data.get("id") or _new_id("crv")),
        )


@dataclass(frozen=True, eq=False)
class Polygon2D:
    """Outer ring plus holes.  Rings are stored open (no repeated first point)."""

    outer: Tuple[Point2D, ...]
    holes: Tuple[Tuple[Point2D, ...], ...] = ()
    id: str = field(default_factory=lambda: _new_id("poly"))
    creation_method: str = "offset"

    def __post_init__(self) -> None:
        if not isinstance(self.outer, tuple):
            object.__setattr__(self, "outer", tuple(self.outer))
        if not isinstance(self.holes, tuple) or any(
            not isinstance(h, tuple) for h in self.holes
        ):
            object.__setattr__(self, "holes", tuple(tuple(h) for h in self.holes))

    @classmethod
    def from_coords(
        cls,
        outer: Iterable[Sequence[float]],
        holes: Iterable[Iterable[Sequence[float]]] = (),
        *,
        polygon_id: Optional[str] = None,
        creation_method: str = "offset",
    ) -> "Polygon2D":
        def ring(coords: Iterable[Sequence[float]]) -> Tuple[Point2D, ...]:
            pts = [
                Point2D(float(c[0]), float(c[1]), creation_method=creation_method)
                for c in coords
            ]
            if len(pts) >= 2 and pts[0].equals(pts[-1], 0.0):
                pts = pts[:-1]
            return tuple(pts)

        kwargs = {"id": polygon_id} if polygon_id else {}
        return cls(
            ring(outer),
            tuple(ring(h) for h in holes),
            creation_method=creation_method,
            **kwargs,
        )

    @classmethod
    def from_shapely(
        cls,
        geom: ShapelyPolygon,
        *,
        polygon_id: Optional[str] = None,
        creation_method: str = "boolean",
    ) -> "Polygon2D":
        geom = orient(geom, sign=1.0)
        return cls.from_coords(
            list(geom.exterior.coords),
            [list(r.coords) for r in geom.interiors],
            polygon_id=polygon_id,
            creation_method=creation_method,
        )

    def outer_coords(self) -> List[Vec2]:
        return [p.xy for p in self.outer]

    def hole_coords(self) -> List[List[Vec2]]:
        return [[p.xy for p in h] for h in self.holes]

    def to_shapely(self) -> ShapelyPolygon:
        if len(self.outer) < 3:
            return ShapelyPolygon()
        holes = [h for h in self.hole_coords() if len(h) >= 3]
        return ShapelyPolygon(self.outer_coords(), holes)

    @property
    def vertex_count(self) -> int:
        return len(self.outer) + sum(len(h) for h in self.holes)

    @property
    def area(self) -> float:
        return float(self.to_shapely().area)

    @property
    def is_finite(self) -> bool:
        return all(p.is_finite for p in self.outer) and all(
            p.is_finite for h in self.holes for p in h
        )

    @property
    def is_valid(self) -> bool:
        if len(self.outer) < 3 or any(len(h) < 3 for h in self.holes):
            return False
        if not self.is_finite:
            return False
        return bool(self.to_shapely().is_valid)

    def almost_equals(self, other: "Polygon2D", tolerance: float = 1e-6) -> bool:
        """Geometric equality within *tolerance*, independent of ring start."""
        a = self.to_shapely()
        b = other.to_shapely()
        if a.is_empty or b.is_empty:
            return a.is_empty and b.is_empty
        return bool(a.symmetric_difference(b).area <= tolerance * max(a.length, 1.0))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "creation_method": self.creation_method,
            "outer": [p.to_dict() for p in self.outer],
            "holes": [[p.to_dict() for p in h] for h in self.holes],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Polygon2D":
        return cls(
            tuple(Point2D.from_dict(p) for p in data.get("outer", [])),
            tuple(tuple(Point2D.from_dict(p) for p in h) for h in data.get("holes", [])),
            id=str(data.get("id") or _new_id("poly")),
            creation_method=str(data.get("creation_method", "offset")),
        )


# ─── Vector helpers ──────────────────────────────────────────────────────────


def unit(dx: float, dy: float) -> Optional[Vec2]:
    norm = math.hypot(dx, dy)
    if norm <= 0.0 or not math.isfinite(norm):
        return None
    return (dx / norm, dy / norm)


def left_normal(d: Vec2) -> Vec2:
    return (-d[1], d[0])


def cross(a: Vec2, b: Vec2) -> float:
    return a[0] * b[1] - a[1] * b[0]


def dot(a: Vec2, b: Vec2) -> float:
    return a[0] * b[0] + a[1] * b[1]


def angle_between(a: Vec2, b: Vec2) -> float:
    """Unsigned angle in [0, pi] between two direction vectors."""
    return abs(math.atan2(cross(a, b), dot(a, b)))


def line_intersection(
    p: Vec2, d: Vec2, q: Vec2, e: Vec2, eps: float = 1e-12
) -> Optional[Vec2]:
    """Intersect the infinite lines ``p + t*d`` and ``q + s*e``.

    Returns None when the lines are parallel within *eps* (on the sine of the
    angle between them).
    """
    denom = cross(d, e)
    scale = math.hypot(*d) * math.hypot(*e)
    if scale <= 0.0 or abs(denom) <= eps * scale:
        return None
    w = (q[0] - p[0], q[1] - p[1])
    t = cross(w, e) / denom
    x = p[0] + t * d[0]
    y = p[1] + t * d[1]
    if not (math.isfinite(x) and math.isfinite(y)):
        return None
    return (x, y)


def point_line_distance(pt: Vec2, origin: Vec2, direction: Vec2) -> float:
    """Perpendicular distance from *pt* to the infinite line through *origin*."""
    norm = math.hypot(*direction)
    if norm <= 0.0:
        return math.hypot(pt[0] - origin[0], pt[1] - origin[1])
    return abs(cross(direction, (pt[0] - origin[0], pt[1] - origin[1]))) / norm


def point_segment_distance(pt: Vec2, a: Vec2, b: Vec2) -> Tuple[float, float]:
    """Return (distance, parameter t in [0, 1]) from *pt* to segment ab."""
    ab = (b[0] - a[0], b[1] - a[1])
    len_sq = dot(ab, ab)
    if len_sq <= 0.0:
        return math.hypot(pt[0] - a[0], pt[1] - a[1]), 0.0
    t = dot((pt[0] - a[0], pt[1] - a[1]), ab) / len_sq
    t = max(0.0, min(1.0, t))
    proj = (a[0] + t * ab[0], a[1] + t * ab[1])
    return math.hypot(pt[0] - proj[0], pt[1] - proj[1]), t
