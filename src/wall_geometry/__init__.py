"""Public API for the robust wall geometry engine."""

from wall_geometry.adapters import LegacyConversionError, network_from_legacy, solid_to_legacy_outline
from wall_geometry.boolean_ops import BooleanOperationsEngine, BooleanResult
from wall_geometry.contracts import (
    BooleanOp,
    CurveType,
    EngineConfig,
    IntersectionType,
    JoinType,
    OperationMonitor,
    Severity,
    ToleranceContext,
)
from wall_geometry.edge_cases import EdgeCase, EdgeCaseDetector, EdgeCaseHandler, EdgeCaseType
from wall_geometry.engine import (
    NetworkResult,
    NodeResult,
    WallGeometryEngine,
    WallProcessingResult,
    run_monitored,
)
from wall_geometry.errors import GeometricError, GeometricErrorType
from wall_geometry.fallback import FallbackMechanisms, FallbackNotification
from wall_geometry.healing import HealingResult, ShapeHealer
from wall_geometry.intersection import IntersectionManager
from wall_geometry.intersection_cache import CacheKey, IntersectionCache, make_key
from wall_geometry.network import SharedNode, WallInput, WallNetwork
from wall_geometry.offset import OffsetResult, RobustOffsetEngine
from wall_geometry.primitives import Curve, Point2D, Polygon2D
from wall_geometry.tolerance import AdaptiveToleranceManager, calculate_tolerance
from wall_geometry.validation import (
    GeometryValidator,
    ValidationIssue,
    ValidationReport,
    ValidationResult,
    ValidationRule,
)
from wall_geometry.wall_solid import HealingRecord, IntersectionData, QualityMetrics, WallSolid

__all__ = [
    "AdaptiveToleranceManager",
    "BooleanOp",
    "BooleanOperationsEngine",
    "BooleanResult",
    "CacheKey",
    "Curve",
    "CurveType",
    "EdgeCase",
    "EdgeCaseDetector",
    "EdgeCaseHandler",
    "EdgeCaseType",
    "EngineConfig",
    "FallbackMechanisms",
    "FallbackNotification",
    "GeometricError",
    "GeometricErrorType",
    "GeometryValidator",
    "HealingRecord",
    "HealingResult",
    "IntersectionCache",
    "IntersectionData",
    "IntersectionManager",
    "IntersectionType",
    "JoinType",
    "LegacyConversionError",
    "NetworkResult",
    "NodeResult",
    "OffsetResult",
    "OperationMonitor",
    "Point2D",
    "Polygon2D",
    "QualityMetrics",
    "RobustOffsetEngine",
    "Severity",
    "ShapeHealer",
    "SharedNode",
    "ToleranceContext",
    "ValidationIssue",
    "ValidationReport",
    "ValidationResult",
    "ValidationRule",
    "WallGeometryEngine",
    "WallInput",
    "WallNetwork",
    "WallProcessingResult",
    "WallSolid",
    "calculate_tolerance",
    "make_key",
    "network_from_legacy",
    "run_monitored",
    "solid_to_legacy_outline",
]
