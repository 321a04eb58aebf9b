"""Wall solid data model and its dictionary round trip."""

from __future__ import annotations

import dataclasses
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Tuple

from wall_geometry.contracts import IntersectionType, JoinType
from wall_geometry.primitives import Curve, Point2D, Polygon2D

SCHEMA_VERSION = "wall_geometry.wall_solid.v1"


@dataclass(frozen=True)
class QualityMetrics:
    geometric_accuracy: float = 1.0
    topological_consistency: float = 1.0
    manufacturability: float = 1.0
    architectural_compliance: float = 1.0
    sliver_face_count: int = 0
    micro_gap_count: int = 0
    self_intersection_count: int = 0
    degenerate_element_count: int = 0
    complexity: int = 0
    processing_time: float = 0.0
    memory_usage: int = 0

    @property
    def overall(self) -> float:
        return (
            0.4 * self.geometric_accuracy
            + 0.3 * self.topological_consistency
            + 0.2 * self.manufacturability
            + 0.1 * self.architectural_compliance
        )

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "QualityMetrics":
        names = {f.name for f in dataclasses.fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in names})


@dataclass(frozen=True)
class HealingRecord:
    operation: str
    success: bool
    details: str = ""
    issues_fixed: int = 0
    id: str = field(default_factory=lambda: f"heal_{uuid.uuid4().hex[:12]}")
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "HealingRecord":
        return cls(
            operation=str(data["operation"]),
            success=bool(data["success"]),
            details=str(data.get("details", "")),
            issues_fixed=int(data.get("issues_fixed", 0)),
            id=str(data.get("id") or f"heal_{uuid.uuid4().hex[:12]}"),
            timestamp=float(data.get("timestamp", time.time())),
        )


@dataclass(frozen=True)
class IntersectionData:
    id: str
    type: IntersectionType
    participating_walls: Tuple[str, ...]
    intersection_point: Point2D
    resolved_geometry: Optional[Polygon2D]
    resolution_method: JoinType
    geometric_accuracy: float
    validated: bool = False
    miter_apex: Optional[Point2D] = None
    offset_intersections: Tuple[Point2D, ...] = ()
    warnings: Tuple[str, ...] = ()
    tolerance: float = 0.0

    def involves(self, wall_id: str) -> bool:
        return wall_id in self.participating_walls

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "participating_walls": list(self.participating_walls),
            "intersection_point": self.intersection_point.to_dict(),
            "miter_apex": self.miter_apex.to_dict() if self.miter_apex else None,
            "offset_intersections": [p.to_dict() for p in self.offset_intersections],
            "resolved_geometry": (
                self.resolved_geometry.to_dict() if self.resolved_geometry else None
            ),
            "resolution_method": self.resolution_method.value,
            "geometric_accuracy": self.geometric_accuracy,
            "validated": self.validated,
            "warnings": list(self.warnings),
            "tolerance": self.tolerance,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "IntersectionData":
        return cls(
            id=str(data["id"]),
            type=IntersectionType(data["type"]),
            participating_walls=tuple(data["participating_walls"]),
            intersection_point=Point2D.from_dict(data["intersection_point"]),
            miter_apex=Point2D.from_dict(data["miter_apex"]) if data.get("miter_apex") else None,
            offset_intersections=tuple(
                Point2D.from_dict(p) for p in data.get("offset_intersections", [])
            ),
            resolved_geometry=(
                Polygon2D.from_dict(data["resolved_geometry"])
                if data.get("resolved_geometry")
                else None
            ),
            resolution_method=JoinType(data["resolution_method"]),
            geometric_accuracy=float(data["geometric_accuracy"]),
            validated=bool(data.get("validated", False)),
            warnings=tuple(data.get("warnings", [])),
            tolerance=float(data.get("tolerance", 0.0)),
        )


@dataclass(frozen=True)
class WallSolid:
    """Solid geometry of one wall.

    Instances are immutable; pipeline stages hand back new solids via
    :meth:`with_updates`, which also bumps :attr:`version`.
    """

    id: str
    baseline: Curve
    thickness: float
    wall_type: str
    left_offset: Optional[Curve] = None
    right_offset: Optional[Curve] = None
    solid_geometry: Tuple[Polygon2D, ...] = ()
    join_types: Mapping[str, JoinType] = field(default_factory=dict)
    intersection_data: Tuple[IntersectionData, ...] = ()
    healing_history: Tuple[HealingRecord, ...] = ()
    geometric_quality: QualityMetrics = field(default_factory=QualityMetrics)
    last_validated: Optional[float] = None
    processing_time: float = 0.0
    complexity: int = 0
    version: int = 0

    def with_updates(self, **changes: Any) -> "WallSolid":
        changes.setdefault("version", self.version + 1)
        for key in ("solid_geometry", "intersection_data", "healing_history"):
            if key in changes:
                changes[key] = tuple(changes[key])
        return dataclasses.replace(self, **changes)

    @property
    def half_thickness(self) -> float:
        return self.thickness / 2.0

    @property
    def area(self) -> float:
        return sum(p.area for p in self.solid_geometry)

    @property
    def vertex_count(self) -> int:
        return sum(p.vertex_count for p in self.solid_geometry)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "schema_version": SCHEMA_VERSION,
            "id": self.id,
            "baseline": self.baseline.to_dict(),
            "thickness": self.thickness,
            "wall_type": self.wall_type,
            "left_offset": self.left_offset.to_dict() if self.left_offset else None,
            "right_offset": self.right_offset.to_dict() if self.right_offset else None,
            "solid_geometry": [p.to_dict() for p in self.solid_geometry],
            "join_types": {k: v.value for k, v in self.join_types.items()},
            "intersection_data": [d.to_dict() for d in self.intersection_data],
            "healing_history": [h.to_dict() for h in self.healing_history],
            "geometric_quality": self.geometric_quality.to_dict(),
            "last_validated": self.last_validated,
            "processing_time": self.processing_time,
            "complexity": self.complexity,
            "version": self.version,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "WallSolid":
        schema = data.get("schema_version", SCHEMA_VERSION)
        if schema != SCHEMA_VERSION:
            raise ValueError(f"Unsupported wall solid schema {schema!r}")
        return cls(
            id=str(data["id"]),
            baseline=Curve.from_dict(data["baseline"]),
            thickness=float(data["thickness"]),
            wall_type=str(data["wall_type"]),
            left_offset=Curve.from_dict(data["left_offset"]) if data.get("left_offset") else None,
            right_offset=Curve.from_dict(data["right_offset"]) if data.get("right_offset") else None,
            solid_geometry=tuple(Polygon2D.from_dict(p) for p in data.get("solid_geometry", [])),
            join_types={k: JoinType(v) for k, v in data.get("join_types", {}).items()},
            intersection_data=tuple(
                IntersectionData.from_dict(d) for d in data.get("intersection_data", [])
            ),
            healing_history=tuple(
                HealingRecord.from_dict(h) for h in data.get("healing_history", [])
            ),
            geometric_quality=QualityMetrics.from_dict(data.get("geometric_quality", {})),
            last_validated=data.get("last_validated"),
            processing_time=float(data.get("processing_time", 0.0)),
            complexity=int(data.get("complexity", 0)),
            version=int(data.get("version", 0)),
        )
