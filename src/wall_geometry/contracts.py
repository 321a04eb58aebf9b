"""Shared enums, engine configuration and collaborator protocols."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Mapping, Optional, Protocol


class JoinType(Enum):
    MITER = "miter"
    BEVEL = "bevel"
    ROUND = "round"
    BUTT = "butt"


class CurveType(Enum):
    POLYLINE = "polyline"
    ARC = "arc"


class IntersectionType(Enum):
    CORNER = "corner"
    T_JUNCTION = "t_junction"
    CROSS = "cross"
    PARALLEL = "parallel"


class ToleranceContext(Enum):
    VERTEX_MERGE = "vertex_merge"
    BOOLEAN_OPERATION = "boolean_operation"
    OFFSET = "offset"
    SHAPE_HEALING = "shape_healing"


class Severity(Enum):
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def blocking(self) -> bool:
        return self is not Severity.WARNING


class BooleanOp(Enum):
    UNION = "union"
    INTERSECTION = "intersection"
    DIFFERENCE = "difference"


DEFAULT_WALL_TYPE_THICKNESS: Dict[str, float] = {
    "layout": 350.0,
    "zone": 250.0,
    "area": 150.0,
}


@dataclass(frozen=True)
class EngineConfig:
    """Configuration passed explicitly into every engine component.

    Lengths are in document units (millimetres for the floor-plan host).
    """

    document_precision: float = 1e-3
    miter_limit: float = 8.0
    default_join_type: JoinType = JoinType.MITER
    repair_enabled: bool = True
    round_segments: int = 8
    wall_type_thickness: Mapping[str, float] = field(
        default_factory=lambda: dict(DEFAULT_WALL_TYPE_THICKNESS)
    )
    min_sane_thickness: float = 10.0
    max_sane_thickness: float = 1000.0
    near_parallel_angle_deg: float = 5.0
    # Segments shorter than thickness * ratio are "short" for join planning.
    short_segment_ratio: float = 1.0
    node_snap_tolerance: float = 1.0
    tolerance_tier_factor: float = 10.0
    cache_max_entries: int = 512
    fallback_quality_threshold: float = 0.5

    def thickness_for(self, wall_type: str) -> float:
        try:
            return float(self.wall_type_thickness[wall_type])
        except KeyError:
            raise KeyError(
                f"Unknown wall type {wall_type!r}; expected one of "
                f"{sorted(self.wall_type_thickness)}"
            ) from None

    def to_dict(self) -> dict:
        return {
            "document_precision": self.document_precision,
            "miter_limit": self.miter_limit,
            "default_join_type": self.default_join_type.value,
            "repair_enabled": self.repair_enabled,
            "round_segments": self.round_segments,
            "wall_type_thickness": dict(self.wall_type_thickness),
            "min_sane_thickness": self.min_sane_thickness,
            "max_sane_thickness": self.max_sane_thickness,
            "near_parallel_angle_deg": self.near_parallel_angle_deg,
            "short_segment_ratio": self.short_segment_ratio,
            "node_snap_tolerance": self.node_snap_tolerance,
            "tolerance_tier_factor": self.tolerance_tier_factor,
            "cache_max_entries": self.cache_max_entries,
            "fallback_quality_threshold": self.fallback_quality_threshold,
        }


class OperationMonitor(Protocol):
    """Hooks a monitoring collaborator implements to wrap engine calls."""

    def start_operation(self, operation_type: str, input_complexity: int) -> str:
        ...

    def end_operation(
        self,
        operation_id: str,
        output_complexity: int,
        success: bool,
        error_type: Optional[str] = None,
    ) -> None:
        ...
