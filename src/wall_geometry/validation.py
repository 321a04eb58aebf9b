"""Rule-based validation, repair and quality scoring of wall geometry.

Rules live in one ordered registry.  Each rule has a scope (``curve``,
``wall``, ``intersection`` or ``network``) and is evaluated in registration
order against entities of that scope.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field, replace
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np
import shapely
from shapely.geometry import Point as ShapelyPoint
from shapely.geometry import Polygon as ShapelyPolygon
from shapely.geometry.polygon import LinearRing

from wall_geometry.boolean_ops import SLIVER_AREA_FACTOR, extract_polygons
from wall_geometry.contracts import EngineConfig, JoinType, Severity, ToleranceContext
from wall_geometry.healing import count_micro_gaps
from wall_geometry.primitives import Curve, Polygon2D
from wall_geometry.tolerance import AdaptiveToleranceManager
from wall_geometry.wall_solid import HealingRecord, IntersectionData, QualityMetrics, WallSolid

logger = logging.getLogger(__name__)

SCOPES = ("curve", "wall", "intersection", "network")
NETWORK_ISSUE_PENALTY = 0.05
THICKNESS_MISMATCH_RATIO = 0.01


@dataclass(frozen=True)
class ValidationIssue:
    rule: str
    severity: Severity
    message: str
    category: str = "General"
    suggestion: str = ""
    auto_fixable: bool = False
    entity_id: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule": self.rule,
            "severity": self.severity.value,
            "message": self.message,
            "category": self.category,
            "suggestion": self.suggestion,
            "auto_fixable": self.auto_fixable,
            "entity_id": self.entity_id,
        }


@dataclass
class ValidationRule:
    name: str
    description: str
    severity: Severity
    category: str
    evaluate: Callable[[Any], List[ValidationIssue]]
    scope: str = "wall"
    auto_fixable: bool = False

    def issue(self, message: str, *, severity: Optional[Severity] = None, entity_id: str = "",
              suggestion: str = "") -> ValidationIssue:
        return ValidationIssue(
            rule=self.name,
            severity=severity or self.severity,
            message=message,
            category=self.category,
            suggestion=suggestion,
            auto_fixable=self.auto_fixable,
            entity_id=entity_id,
        )


@dataclass
class ValidationResult:
    is_valid: bool = True
    errors: List[ValidationIssue] = field(default_factory=list)
    warnings: List[ValidationIssue] = field(default_factory=list)
    quality_metrics: QualityMetrics = field(default_factory=QualityMetrics)
    suggestions: List[str] = field(default_factory=list)
    issues: List[ValidationIssue] = field(default_factory=list)

    @classmethod
    def from_issues(cls, issues: Sequence[ValidationIssue], metrics: QualityMetrics, **extra: Any):
        errors = [i for i in issues if i.severity.blocking]
        warnings = [i for i in issues if not i.severity.blocking]
        suggestions: List[str] = []
        for issue in issues:
            if issue.suggestion and issue.suggestion not in suggestions:
                suggestions.append(issue.suggestion)
        return cls(
            is_valid=not errors,
            errors=errors,
            warnings=warnings,
            quality_metrics=metrics,
            suggestions=suggestions,
            issues=list(issues),
            **extra,
        )

    def messages(self) -> List[str]:
        return [i.message for i in self.issues]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "errors": [i.to_dict() for i in self.errors],
            "warnings": [i.to_dict() for i in self.warnings],
            "quality_metrics": self.quality_metrics.to_dict(),
            "suggestions": list(self.suggestions),
        }


@dataclass
class TopologyValidationResult(ValidationResult):
    connectivity_ok: bool = True
    orientation_ok: bool = True


@dataclass
class NetworkValidationResult(ValidationResult):
    isolated_walls: List[str] = field(default_factory=list)
    inconsistent_intersections: List[str] = field(default_factory=list)


@dataclass
class NetworkView:
    """The entity network-scope rules evaluate."""

    walls: Sequence[WallSolid]
    intersections: Sequence[IntersectionData]


@dataclass
class RepairResult:
    success: bool
    issues_fixed: int
    repair_operations: List[str] = field(default_factory=list)
    repaired_geometry: Optional[WallSolid] = None
    remaining_issues: List[ValidationIssue] = field(default_factory=list)


@dataclass
class DetailedQualityMetrics:
    base: QualityMetrics
    polygon_quality: List[float]
    intersection_quality: List[float]
    baseline_quality: float
    offset_quality: float
    healing_effectiveness: float
    overall_score: float


@dataclass
class Recommendation:
    priority: str  # high | medium | low
    category: str
    message: str
    action: str = ""


@dataclass
class ValidationReport:
    overall_health: str
    total_issues: int
    critical_issues: int
    error_issues: int
    warning_issues: int
    detailed_issues: Dict[str, List[ValidationIssue]]
    recommendations: List[Recommendation]
    quality_metrics: DetailedQualityMetrics
    validation: ValidationResult


PRIORITY_RANK = {"high": 0, "medium": 1, "low": 2}


def classify_health(critical: int, errors: int, warnings: int) -> str:
    if critical > 0:
        return "critical"
    if errors > 5:
        return "poor"
    if errors > 0:
        return "fair"
    if warnings > 10:
        return "fair"
    if warnings > 0:
        return "good"
    return "excellent"


def _clamp(value: float) -> float:
    return min(1.0, max(0.0, value))


def _connected_parts(shapes: Sequence[Any]) -> int:
    """Number of separate pieces left after merging valid shapes."""
    if len(shapes) < 2:
        return len(shapes)
    return len(extract_polygons(shapely.union_all(shapes)))


class GeometryValidator:
    """Rule registry plus topology checks, repair and quality scoring for wall solids."""

    def __init__(
        self,
        config: Optional[EngineConfig] = None,
        tolerance_manager: Optional[AdaptiveToleranceManager] = None,
        repair_enabled: Optional[bool] = None,
    ):
        self.config = config or EngineConfig()
        self.tolerances = tolerance_manager or AdaptiveToleranceManager(self.config)
        self.repair_enabled = self.config.repair_enabled if repair_enabled is None else repair_enabled
        self._rules: List[ValidationRule] = []
        for rule in self._default_rules():
            self.add_validation_rule(rule)

    # ── registry ─────────────────────────────────────────────────────────────

    def add_validation_rule(self, rule: ValidationRule) -> None:
        """Register *rule*; a rule with the same name is replaced in place."""
        if rule.scope not in SCOPES:
            raise ValueError(f"Unknown rule scope {rule.scope!r}")
        for i, existing in enumerate(self._rules):
            if existing.name == rule.name:
                self._rules[i] = rule
                return
        self._rules.append(rule)

    def remove_validation_rule(self, name: str) -> bool:
        before = len(self._rules)
        self._rules = [r for r in self._rules if r.name != name]
        return len(self._rules) != before

    def get_validation_rules(self, scope: Optional[str] = None) -> List[ValidationRule]:
        return [r for r in self._rules if scope is None or r.scope == scope]

    def _evaluate(self, scope: str, entity: Any) -> List[ValidationIssue]:
        issues: List[ValidationIssue] = []
        for rule in self.get_validation_rules(scope):
            try:
                issues.extend(rule.evaluate(entity))
            except Exception as exc:  # a broken rule is reported, not propagated
                logger.warning("Validation rule %s failed: %s", rule.name, exc)
                issues.append(rule.issue(
                    f"Validation rule '{rule.name}' failed: {exc}", severity=Severity.ERROR
                ))
        return issues

    # ── validation entry points ──────────────────────────────────────────────

    def validate_curve(self, curve: Curve) -> ValidationResult:
        issues = self._evaluate("curve", curve)
        metrics = QualityMetrics(
            geometric_accuracy=self._accuracy(issues),
            degenerate_element_count=len(curve.coincident_vertex_indices(self._point_tolerance(curve))),
            complexity=len(curve.points),
        )
        return ValidationResult.from_issues(issues, metrics)

    def validate_wall_solid(self, solid: WallSolid) -> ValidationResult:
        issues = self._evaluate("curve", solid.baseline) + self._evaluate("wall", solid)
        issues = [i if i.entity_id else replace(i, entity_id=solid.id) for i in issues]
        return ValidationResult.from_issues(issues, self.compute_quality_metrics(solid, issues))

    def validate_intersection(self, data: IntersectionData) -> ValidationResult:
        issues = self._evaluate("intersection", data)
        metrics = QualityMetrics(
            geometric_accuracy=_clamp(min(data.geometric_accuracy, self._accuracy(issues))),
            complexity=data.resolved_geometry.vertex_count if data.resolved_geometry else 0,
        )
        return ValidationResult.from_issues(issues, metrics)

    def validate_wall_network(
        self, walls: Sequence[WallSolid], intersections: Sequence[IntersectionData] = ()
    ) -> NetworkValidationResult:
        view = NetworkView(list(walls), list(intersections))
        issues = self._evaluate("network", view)
        isolated = [i.entity_id for i in issues if i.rule == "isolated_walls"]
        inconsistent = [i.entity_id for i in issues if i.rule == "thickness_consistency"]
        penalty = NETWORK_ISSUE_PENALTY * len(issues)
        metrics = QualityMetrics(
            geometric_accuracy=_clamp(
                float(np.mean([w.geometric_quality.geometric_accuracy for w in walls])) if walls else 1.0
            ),
            topological_consistency=_clamp(1.0 - penalty),
            complexity=sum(w.complexity for w in walls),
        )
        return NetworkValidationResult.from_issues(
            issues, metrics, isolated_walls=isolated, inconsistent_intersections=inconsistent
        )

    def validate_topology(self, solid: WallSolid) -> TopologyValidationResult:
        issues: List[ValidationIssue] = []
        orientation_ok = True
        connectivity_ok = True

        def topo(rule: str, severity: Severity, message: str, suggestion: str, fixable: bool = False) -> None:
            issues.append(ValidationIssue(rule, severity, message, "Topology", suggestion, fixable, solid.id))

        for idx, poly in enumerate(solid.solid_geometry):
            if len(poly.outer) >= 3 and not LinearRing(poly.outer_coords()).is_ccw:
                orientation_ok = False
                topo("ring_orientation", Severity.WARNING,
                     f"Polygon {idx} outer ring is clockwise", "Reorient the outer ring counter-clockwise", True)
            outer = ShapelyPolygon(poly.outer_coords()) if len(poly.outer) >= 3 else ShapelyPolygon()
            for h_idx, hole in enumerate(poly.hole_coords()):
                if len(hole) < 3:
                    continue
                if LinearRing(hole).is_ccw:
                    orientation_ok = False
                    topo("ring_orientation", Severity.WARNING,
                         f"Polygon {idx} hole {h_idx} is counter-clockwise", "Reorient holes clockwise", True)
                if outer.is_empty or not outer.buffer(1e-9).contains(ShapelyPolygon(hole)):
                    topo("hole_containment", Severity.ERROR,
                         f"Polygon {idx} hole {h_idx} lies outside its outer ring", "Drop the stray hole", True)

        shapes = [p.to_shapely() for p in solid.solid_geometry]
        shapes = [s for s in shapes if not s.is_empty and s.is_valid]
        parts = _connected_parts(shapes)
        if parts > 1:
            connectivity_ok = False
            topo("connectivity", Severity.WARNING,
                 f"Wall solid has {parts} disconnected parts", "Heal micro-gaps between parts")

        for data in solid.intersection_data:
            if not data.involves(solid.id):
                topo("intersection_reference", Severity.ERROR,
                     f"Intersection {data.id} does not reference wall {solid.id}",
                     "Remove the foreign intersection record", True)

        metrics = QualityMetrics(
            geometric_accuracy=self._accuracy(issues),
            topological_consistency=_clamp(1.0 - 0.25 * len(issues)),
            complexity=solid.vertex_count,
        )
        return TopologyValidationResult.from_issues(
            issues, metrics, connectivity_ok=connectivity_ok, orientation_ok=orientation_ok
        )

    # ── repair ───────────────────────────────────────────────────────────────

    def repair_invalid_geometry(self, solid: WallSolid) -> RepairResult:
        if not self.repair_enabled:
            return RepairResult(False, 0, [], solid)

        operations: List[str] = []
        fixed = 0
        thickness = solid.thickness
        if not math.isfinite(thickness) or thickness <= 0:
            if solid.wall_type in self.config.wall_type_thickness:
                thickness = self.config.thickness_for(solid.wall_type)
            else:
                thickness = self.config.min_sane_thickness
            operations.append(f"reset_thickness:{solid.thickness}->{thickness}")
            fixed += 1

        polygons: List[Polygon2D] = []
        for poly in solid.solid_geometry:
            if len(poly.outer) < 3:
                operations.append(f"drop_degenerate_polygon:{poly.id}")
                fixed += 1
                continue
            outer = ShapelyPolygon(poly.outer_coords())
            holes = []
            for hole in poly.holes:
                coords = [p.xy for p in hole]
                if len(coords) < 3 or not outer.buffer(1e-9).contains(ShapelyPolygon(coords)):
                    operations.append(f"drop_invalid_hole:{poly.id}")
                    fixed += 1
                    continue
                holes.append(hole)
            candidate = Polygon2D(poly.outer, tuple(holes), id=poly.id, creation_method=poly.creation_method)
            if candidate.is_valid:
                polygons.append(candidate)
                continue
            parts = extract_polygons(shapely.make_valid(candidate.to_shapely()))
            operations.append(f"make_valid_polygon:{poly.id}")
            fixed += 1
            polygons.extend(
                Polygon2D.from_shapely(part, polygon_id=f"{poly.id}_v{i}", creation_method="repair")
                for i, part in enumerate(parts)
            )

        intersections = []
        for data in solid.intersection_data:
            broken = (
                not data.involves(solid.id)
                or len(set(data.participating_walls)) < 2
                or (data.resolved_geometry is not None and not data.resolved_geometry.is_valid)
            )
            if broken:
                operations.append(f"remove_invalid_intersection:{data.id}")
                fixed += 1
                continue
            intersections.append(data)

        if not polygons and solid.solid_geometry:
            operations.append("all_polygons_dropped")
            fixed += 1

        for op in operations:
            logger.info("Repair %s: %s", solid.id, op)
        repaired = solid.with_updates(
            thickness=thickness,
            solid_geometry=polygons,
            intersection_data=intersections,
            healing_history=solid.healing_history + tuple(
                HealingRecord("repair", True, op, 1) for op in operations
            ),
        )
        remaining = [i for i in self.validate_wall_solid(repaired).issues if i.severity.blocking]
        return RepairResult(not remaining, fixed, operations, repaired, remaining)

    # ── quality ──────────────────────────────────────────────────────────────

    def compute_quality_metrics(
        self, solid: WallSolid, issues: Sequence[ValidationIssue] = (), processing_time: float = 0.0
    ) -> QualityMetrics:
        thickness = solid.thickness if math.isfinite(solid.thickness) and solid.thickness > 0 else 1.0
        tol = self.tolerances.calculate_tolerance(thickness, None, None, ToleranceContext.SHAPE_HEALING)
        area_tol = thickness * tol * SLIVER_AREA_FACTOR
        shapes = [p.to_shapely() for p in solid.solid_geometry]
        slivers = sum(1 for s in shapes if not s.is_empty and s.area < area_tol)
        self_ix = sum(1 for p in solid.solid_geometry if len(p.outer) >= 3 and not p.to_shapely().is_valid)
        valid_shapes = [s for s in shapes if not s.is_empty and s.is_valid]
        micro_gaps = count_micro_gaps(valid_shapes, 2.0 * tol, area_tol)
        extra_parts = max(0, _connected_parts(valid_shapes) - 1)
        degenerate = len(solid.baseline.coincident_vertex_indices(self._point_tolerance(solid.baseline)))
        degenerate += sum(
            1 for p in solid.solid_geometry for ring in (p.outer, *p.holes) if len(ring) < 3
        )
        valid_fraction = (
            sum(1 for p in solid.solid_geometry if p.is_valid) / len(solid.solid_geometry)
            if solid.solid_geometry else 0.0
        )
        compliant = 1.0
        if not (self.config.min_sane_thickness <= solid.thickness <= self.config.max_sane_thickness):
            compliant -= 0.5
        if solid.wall_type not in self.config.wall_type_thickness:
            compliant -= 0.3
        vertices = solid.vertex_count + len(solid.baseline.points)
        return QualityMetrics(
            geometric_accuracy=self._accuracy(issues),
            topological_consistency=_clamp(valid_fraction - 0.1 * micro_gaps - 0.25 * extra_parts),
            manufacturability=_clamp(1.0 - 0.1 * slivers - 0.05 * micro_gaps - 0.1 * degenerate - 0.25 * self_ix),
            architectural_compliance=_clamp(compliant),
            sliver_face_count=slivers,
            micro_gap_count=micro_gaps,
            self_intersection_count=self_ix,
            degenerate_element_count=degenerate,
            complexity=solid.vertex_count,
            processing_time=processing_time or solid.processing_time,
            memory_usage=vertices * 2 * 8,
        )

    def calculate_detailed_quality_metrics(self, solid: WallSolid) -> DetailedQualityMetrics:
        validation = self.validate_wall_solid(solid)
        base = validation.quality_metrics
        polygon_quality = [self._polygon_quality(p, solid.thickness) for p in solid.solid_geometry]
        intersection_quality = [
            d.geometric_accuracy * (1.0 if d.validated else 0.8) for d in solid.intersection_data
        ]
        baseline_quality = self._baseline_quality(solid.baseline)
        offset_quality = self._offset_quality(solid)
        history = solid.healing_history
        healing = sum(1 for h in history if h.success) / len(history) if history else 1.0
        overall = (
            0.3 * base.overall
            + 0.2 * (float(np.mean(polygon_quality)) if polygon_quality else 0.0)
            + 0.15 * (float(np.mean(intersection_quality)) if intersection_quality else 1.0)
            + 0.15 * baseline_quality
            + 0.1 * offset_quality
            + 0.1 * healing
        )
        return DetailedQualityMetrics(
            base=base,
            polygon_quality=polygon_quality,
            intersection_quality=intersection_quality,
            baseline_quality=baseline_quality,
            offset_quality=offset_quality,
            healing_effectiveness=healing,
            overall_score=_clamp(overall),
        )

    def generate_validation_report(self, solid: WallSolid) -> ValidationReport:
        validation = self.validate_wall_solid(solid)
        topology = self.validate_topology(solid)
        issues = validation.issues + topology.issues
        critical = sum(1 for i in issues if i.severity is Severity.CRITICAL)
        errors = sum(1 for i in issues if i.severity is Severity.ERROR)
        warnings = sum(1 for i in issues if i.severity is Severity.WARNING)
        detailed: Dict[str, List[ValidationIssue]] = {}
        for issue in issues:
            detailed.setdefault(issue.category, []).append(issue)
        metrics = self.calculate_detailed_quality_metrics(solid)
        return ValidationReport(
            overall_health=classify_health(critical, errors, warnings),
            total_issues=len(issues),
            critical_issues=critical,
            error_issues=errors,
            warning_issues=warnings,
            detailed_issues=detailed,
            recommendations=self._recommendations(detailed, metrics),
            quality_metrics=metrics,
            validation=validation,
        )

    # ── helpers ──────────────────────────────────────────────────────────────

    @staticmethod
    def _accuracy(issues: Sequence[ValidationIssue]) -> float:
        critical = sum(1 for i in issues if i.severity is Severity.CRITICAL)
        errors = sum(1 for i in issues if i.severity is Severity.ERROR)
        warnings = sum(1 for i in issues if i.severity is Severity.WARNING)
        return _clamp(1.0 - 0.5 * critical - 0.2 * errors - 0.05 * warnings)

    @staticmethod
    def _point_tolerance(curve: Curve) -> float:
        return max((p.tolerance for p in curve.points), default=1e-6)

    def _polygon_quality(self, polygon: Polygon2D, thickness: float) -> float:
        if not polygon.is_valid:
            return 0.0
        score = 1.0
        tol = self.tolerances.calculate_tolerance(max(thickness, 1.0), None, None, ToleranceContext.SHAPE_HEALING)
        if polygon.area < max(thickness, 1.0) * tol * SLIVER_AREA_FACTOR:
            score -= 0.5
        if any(ShapelyPolygon([p.xy for p in h]).area < tol * tol * 100 for h in polygon.holes if len(h) >= 3):
            score -= 0.3
        return _clamp(score)

    @staticmethod
    def _baseline_quality(baseline: Curve) -> float:
        if len(baseline.points) < 2:
            return 0.0
        turns = baseline.vertex_turn_angles()
        smoothness = 1.0 - 0.5 * (float(np.mean(np.abs(turns))) / math.pi if turns else 0.0)
        coincident = len(baseline.coincident_vertex_indices(GeometryValidator._point_tolerance(baseline)))
        return _clamp(smoothness - 0.1 * coincident)

    def _offset_quality(self, solid: WallSolid) -> float:
        """Fraction of offset vertices no closer than half the thickness to the
        baseline and within the miter reach."""
        offsets = [c for c in (solid.left_offset, solid.right_offset) if c is not None]
        if not offsets or len(solid.baseline.points) < 2 or solid.thickness <= 0:
            return 0.0
        line = solid.baseline.to_linestring()
        h = solid.half_thickness
        tol = max(self.config.document_precision, h * 1e-6)
        distances = [line.distance(ShapelyPoint(p.xy)) for c in offsets for p in c.points]
        if not distances:
            return 0.0
        good = sum(1 for d in distances if h - tol <= d <= self.config.miter_limit * h + tol)
        return good / len(distances)

    @staticmethod
    def _recommendations(
        detailed: Dict[str, List[ValidationIssue]], metrics: DetailedQualityMetrics
    ) -> List[Recommendation]:
        recs: List[Recommendation] = []
        for category, issues in detailed.items():
            worst = min(issues, key=lambda i: 0 if i.severity.blocking else 1)
            if worst.severity.blocking:
                recs.append(Recommendation(
                    "high", category, f"Fix {len(issues)} {category.lower()} issue(s)",
                    worst.suggestion or "Run geometry repair",
                ))
            else:
                recs.append(Recommendation(
                    "medium", category, f"Review {len(issues)} {category.lower()} warning(s)",
                    worst.suggestion,
                ))
        if metrics.base.sliver_face_count:
            recs.append(Recommendation(
                "medium", "Geometry", f"{metrics.base.sliver_face_count} sliver face(s) present",
                "Run shape healing",
            ))
        if metrics.overall_score < 0.7:
            recs.append(Recommendation(
                "low", "General", "Overall quality is low", "Simplify the baseline or reduce thickness",
            ))
        recs.sort(key=lambda r: PRIORITY_RANK[r.priority])
        return recs

    # ── built-in rules ───────────────────────────────────────────────────────

    def _default_rules(self) -> List[ValidationRule]:
        cfg = self.config
        rules: List[ValidationRule] = []

        def rule(name: str, description: str, severity: Severity, category: str, scope: str,
                 auto_fixable: bool = False):
            def register(fn: Callable[[ValidationRule, Any], List[ValidationIssue]]):
                r = ValidationRule(name, description, severity, category, fn, scope, auto_fixable)
                r.evaluate = partial(fn, r)
                rules.append(r)
                return fn
            return register

        @rule("point_count", "Curves need at least two points", Severity.ERROR, "Geometry", "curve")
        def _point_count(r: ValidationRule, curve: Curve) -> List[ValidationIssue]:
            if len(curve.points) < 2:
                return [r.issue(f"Baseline must have at least 2 points, found {len(curve.points)}",
                                entity_id=curve.id, suggestion="Add points to the baseline")]
            return []

        @rule("finite_coordinates", "Coordinates must be finite", Severity.CRITICAL, "Geometry", "curve")
        def _finite(r: ValidationRule, curve: Curve) -> List[ValidationIssue]:
            bad = sum(1 for p in curve.points if not p.is_finite)
            return [r.issue(f"{bad} point(s) have non-finite coordinates", entity_id=curve.id)] if bad else []

        @rule("duplicate_points", "Consecutive points must not coincide", Severity.WARNING, "Geometry",
              "curve", auto_fixable=True)
        def _duplicates(r: ValidationRule, curve: Curve) -> List[ValidationIssue]:
            dupes = curve.coincident_vertex_indices(self._point_tolerance(curve))
            if dupes:
                return [r.issue(f"Found {len(dupes)} duplicate consecutive point(s)", entity_id=curve.id,
                                suggestion="Merge duplicate points")]
            return []

        @rule("zero_length_segments", "Segments must have measurable length", Severity.WARNING,
              "Geometry", "curve", auto_fixable=True)
        def _zero_length(r: ValidationRule, curve: Curve) -> List[ValidationIssue]:
            lengths = curve.segment_lengths()
            short = int(np.count_nonzero(lengths < cfg.document_precision)) if len(lengths) else 0
            if short:
                return [r.issue(f"Found {short} zero-length segment(s) shorter than {cfg.document_precision:g}",
                                entity_id=curve.id, suggestion="Remove zero-length segments")]
            return []

        @rule("curve_length", "Curves must have non-zero total length", Severity.ERROR, "Geometry", "curve")
        def _length(r: ValidationRule, curve: Curve) -> List[ValidationIssue]:
            if len(curve.points) >= 2 and curve.length < cfg.document_precision:
                return [r.issue(f"Curve length {curve.length:.3g} is below the document precision",
                                entity_id=curve.id)]
            return []

        @rule("thickness_validity", "Wall thickness must be positive and plausible", Severity.ERROR,
              "Parameters", "wall", auto_fixable=True)
        def _thickness(r: ValidationRule, solid: WallSolid) -> List[ValidationIssue]:
            t = solid.thickness
            if not math.isfinite(t) or t <= 0:
                return [r.issue(f"Wall thickness must be positive, got {t}",
                                suggestion="Set a positive thickness value")]
            if t < cfg.min_sane_thickness or t > cfg.max_sane_thickness:
                return [r.issue(
                    f"Wall thickness {t} is outside the expected range "
                    f"[{cfg.min_sane_thickness}, {cfg.max_sane_thickness}]",
                    severity=Severity.WARNING, suggestion="Check the wall thickness")]
            return []

        @rule("solid_presence", "Walls should carry solid geometry", Severity.WARNING, "Geometry", "wall")
        def _presence(r: ValidationRule, solid: WallSolid) -> List[ValidationIssue]:
            if not solid.solid_geometry:
                return [r.issue("Wall has no solid geometry", suggestion="Regenerate the wall solid")]
            return []

        @rule("polygon_holes", "Holes need at least three vertices", Severity.ERROR, "Geometry", "wall",
              auto_fixable=True)
        def _holes(r: ValidationRule, solid: WallSolid) -> List[ValidationIssue]:
            out = []
            for poly in solid.solid_geometry:
                for idx, hole in enumerate(poly.holes):
                    if len(hole) < 3:
                        out.append(r.issue(f"Polygon {poly.id} hole {idx} has {len(hole)} vertices; need 3",
                                           suggestion="Drop invalid holes"))
            return out

        @rule("polygon_validity", "Solid polygons must be valid", Severity.ERROR, "Geometry", "wall",
              auto_fixable=True)
        def _validity(r: ValidationRule, solid: WallSolid) -> List[ValidationIssue]:
            out = []
            for poly in solid.solid_geometry:
                if len(poly.outer) < 3:
                    out.append(r.issue(f"Polygon {poly.id} outer ring has fewer than 3 vertices",
                                       suggestion="Drop degenerate polygons"))
                elif not poly.is_finite:
                    out.append(r.issue(f"Polygon {poly.id} has non-finite coordinates",
                                       severity=Severity.CRITICAL))
                else:
                    reason = shapely.is_valid_reason(poly.to_shapely())
                    if reason != "Valid Geometry":
                        out.append(r.issue(f"Polygon {poly.id} is invalid: {reason}",
                                           suggestion="Run geometry repair"))
            return out

        @rule("participants", "Intersections need two distinct walls", Severity.ERROR, "Intersections",
              "intersection")
        def _participants(r: ValidationRule, data: IntersectionData) -> List[ValidationIssue]:
            if len(set(data.participating_walls)) < 2:
                return [r.issue(f"Intersection {data.id} has fewer than two distinct walls", entity_id=data.id)]
            return []

        @rule("resolved_geometry", "Resolved junction geometry must be valid", Severity.ERROR,
              "Intersections", "intersection")
        def _resolved(r: ValidationRule, data: IntersectionData) -> List[ValidationIssue]:
            if data.resolved_geometry is None:
                return [r.issue(f"Intersection {data.id} has no resolved geometry",
                                severity=Severity.WARNING, entity_id=data.id)]
            if not data.resolved_geometry.is_valid:
                return [r.issue(f"Intersection {data.id} resolved geometry is invalid", entity_id=data.id)]
            return []

        @rule("accuracy", "Junction accuracy must be in range", Severity.WARNING, "Intersections",
              "intersection")
        def _accuracy(r: ValidationRule, data: IntersectionData) -> List[ValidationIssue]:
            acc = data.geometric_accuracy
            if not 0.0 <= acc <= 1.0:
                return [r.issue(f"Accuracy {acc} outside [0, 1]", severity=Severity.ERROR, entity_id=data.id)]
            if acc < cfg.fallback_quality_threshold:
                return [r.issue(f"Intersection {data.id} accuracy {acc:.2f} is low", entity_id=data.id)]
            return []

        @rule("miter_apex", "Miter resolutions carry an apex", Severity.ERROR, "Intersections",
              "intersection")
        def _apex(r: ValidationRule, data: IntersectionData) -> List[ValidationIssue]:
            if data.resolution_method is JoinType.MITER and data.miter_apex is None:
                return [r.issue(f"Mitered intersection {data.id} has no apex", entity_id=data.id)]
            if data.resolution_method is not JoinType.MITER and data.miter_apex is not None:
                return [r.issue(f"Intersection {data.id} has an apex but is not mitered",
                                severity=Severity.WARNING, entity_id=data.id)]
            return []

        @rule("isolated_walls", "Walls in a network should meet another wall", Severity.WARNING,
              "Topology", "network")
        def _isolated(r: ValidationRule, view: NetworkView) -> List[ValidationIssue]:
            if len(view.walls) < 2:
                return []
            connected = {wid for d in view.intersections for wid in d.participating_walls}
            return [
                r.issue(f"Wall {w.id} is isolated", entity_id=w.id, suggestion="Connect the wall or remove it")
                for w in view.walls
                if w.id not in connected
            ]

        @rule("thickness_consistency", "Walls sharing a junction should share thickness", Severity.WARNING,
              "Parameters", "network")
        def _consistency(r: ValidationRule, view: NetworkView) -> List[ValidationIssue]:
            by_id = {w.id: w for w in view.walls}
            out = []
            for data in view.intersections:
                values = [by_id[w].thickness for w in data.participating_walls if w in by_id]
                if len(values) >= 2 and max(values) - min(values) > THICKNESS_MISMATCH_RATIO * max(values):
                    out.append(r.issue(
                        f"Walls at {data.id} have inconsistent thickness ({min(values)}-{max(values)})",
                        entity_id=data.id, suggestion="Align wall thicknesses at the junction"))
            return out

        return rules
