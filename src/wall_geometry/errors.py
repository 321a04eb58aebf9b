"""Geometric error taxonomy carried in engine results."""

from __future__ import annotations

import time
from enum import Enum
from typing import Any, Dict, Optional

from wall_geometry.contracts import Severity


class GeometricErrorType(Enum):
    OFFSET_FAILURE = "offset_failure"
    BOOLEAN_FAILURE = "boolean_failure"
    SELF_INTERSECTION = "self_intersection"
    DEGENERATE_GEOMETRY = "degenerate_geometry"
    TOLERANCE_EXCEEDED = "tolerance_exceeded"
    NUMERICAL_INSTABILITY = "numerical_instability"


class GeometricError(Exception):
    """A classified geometry failure.

    Stages record these in their results instead of raising them; only the
    structural preconditions of the low-level APIs raise a non-recoverable one.
    """

    def __init__(
        self,
        error_type: GeometricErrorType,
        message: str,
        *,
        severity: Severity = Severity.ERROR,
        operation: str = "unknown",
        metadata: Optional[Dict[str, Any]] = None,
        recoverable: bool = True,
        suggested_fix: str = "",
    ) -> None:
        super().__init__(message)
        self.error_type = error_type
        self.message = message
        self.severity = severity
        self.operation = operation
        self.metadata: Dict[str, Any] = dict(metadata or {})
        self.recoverable = recoverable
        self.suggested_fix = suggested_fix
        self.timestamp = time.time()

    def __repr__(self) -> str:
        return (
            f"GeometricError({self.error_type.value}, {self.message!r}, "
            f"operation={self.operation!r}, recoverable={self.recoverable})"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.error_type.value,
            "message": self.message,
            "severity": self.severity.value,
            "operation": self.operation,
            "metadata": dict(self.metadata),
            "recoverable": self.recoverable,
            "suggested_fix": self.suggested_fix,
            "timestamp": self.timestamp,
        }

    # ── factories ────────────────────────────────────────────────────────────

    @classmethod
    def offset_failure(cls, message: str, **kwargs: Any) -> "GeometricError":
        kwargs.setdefault("operation", "offset_curve")
        kwargs.setdefault(
            "suggested_fix", "Simplify the baseline or use a bevel join"
        )
        return cls(GeometricErrorType.OFFSET_FAILURE, message, **kwargs)

    @classmethod
    def boolean_failure(cls, message: str, **kwargs: Any) -> "GeometricError":
        kwargs.setdefault("operation", "boolean_combine")
        kwargs.setdefault(
            "suggested_fix", "Heal the input polygons or coarsen the tolerance"
        )
        return cls(GeometricErrorType.BOOLEAN_FAILURE, message, **kwargs)

    @classmethod
    def self_intersection(cls, message: str, **kwargs: Any) -> "GeometricError":
        kwargs.setdefault("suggested_fix", "Run shape healing on the result")
        return cls(GeometricErrorType.SELF_INTERSECTION, message, **kwargs)

    @classmethod
    def degenerate_geometry(cls, message: str, **kwargs: Any) -> "GeometricError":
        kwargs.setdefault("suggested_fix", "Remove coincident or zero-length elements")
        return cls(GeometricErrorType.DEGENERATE_GEOMETRY, message, **kwargs)

    @classmethod
    def tolerance_exceeded(cls, message: str, **kwargs: Any) -> "GeometricError":
        kwargs.setdefault("severity", Severity.WARNING)
        kwargs.setdefault("suggested_fix", "Increase the document precision")
        return cls(GeometricErrorType.TOLERANCE_EXCEEDED, message, **kwargs)

    @classmethod
    def numerical_instability(cls, message: str, **kwargs: Any) -> "GeometricError":
        kwargs.setdefault("suggested_fix", "Retry with a coarser tolerance tier")
        return cls(GeometricErrorType.NUMERICAL_INSTABILITY, message, **kwargs)

    @classmethod
    def invalid_input(cls, message: str, **kwargs: Any) -> "GeometricError":
        """Structurally invalid input, rejected before any stage runs."""
        kwargs["recoverable"] = False
        kwargs.setdefault("severity", Severity.CRITICAL)
        return cls(GeometricErrorType.DEGENERATE_GEOMETRY, message, **kwargs)
