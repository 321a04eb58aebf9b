"""Conversion between the older node/segment/wall model and engine types.

This module is the only place that accepts loosely typed payloads.  Anything
malformed raises :class:`LegacyConversionError` here, before the engine sees it.
"""

from __future__ import annotations

import logging
import math
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from wall_geometry.contracts import EngineConfig, JoinType
from wall_geometry.network import SharedNode, WallInput, WallNetwork
from wall_geometry.primitives import Curve, Point2D
from wall_geometry.wall_solid import WallSolid

logger = logging.getLogger(__name__)


class LegacyConversionError(ValueError):
    pass


def _as_mapping(items: Any, kind: str) -> Dict[str, Mapping[str, Any]]:
    """Accept either ``{id: record}`` or ``[{"id": ..., ...}]``."""
    if items is None:
        return {}
    if isinstance(items, Mapping):
        out = {}
        for key, value in items.items():
            if not isinstance(value, Mapping):
                raise LegacyConversionError(f"{kind} {key!r} is not an object")
            out[str(key)] = value
        return out
    if isinstance(items, (list, tuple)):
        out = {}
        for value in items:
            if not isinstance(value, Mapping) or "id" not in value:
                raise LegacyConversionError(f"{kind} entries need an 'id' field")
            out[str(value["id"])] = value
        return out
    raise LegacyConversionError(f"{kind} must be an object or a list")


def _number(record: Mapping[str, Any], key: str, kind: str, record_id: str) -> float:
    value = record.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise LegacyConversionError(f"{kind} {record_id!r} field {key!r} must be a number, got {value!r}")
    value = float(value)
    if not math.isfinite(value):
        raise LegacyConversionError(f"{kind} {record_id!r} field {key!r} is not finite")
    return value


def _node_ref(record: Mapping[str, Any], key: str, seg_id: str) -> str:
    value = record.get(key)
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise LegacyConversionError(f"Segment {seg_id!r} field {key!r} must be a node id, got {value!r}")
    return str(value)


def _join_type(value: Any, wall_id: str) -> Optional[JoinType]:
    if not value:
        return None
    try:
        return JoinType(value)
    except (ValueError, TypeError):
        choices = ", ".join(j.value for j in JoinType)
        raise LegacyConversionError(
            f"Wall {wall_id!r} has unknown joinType {value!r}; expected one of {choices}"
        ) from None


def _chain(wall_id: str, segments: Sequence[Tuple[str, str]]) -> List[str]:
    """Order (start, end) node pairs into one continuous node path."""
    remaining = list(segments)
    if not remaining:
        raise LegacyConversionError(f"Wall {wall_id!r} has no segments")
    degree: Dict[str, int] = {}
    for a, b in remaining:
        degree[a] = degree.get(a, 0) + 1
        degree[b] = degree.get(b, 0) + 1
    if any(d > 2 for d in degree.values()):
        raise LegacyConversionError(f"Wall {wall_id!r} branches; split it into separate walls")
    ends = [n for n, d in degree.items() if d == 1]
    # Prefer an end that is a segment start so drawing order survives.
    starts = [a for a, _ in remaining if a in ends]
    start = starts[0] if starts else (ends[0] if ends else remaining[0][0])
    path = [start]
    while remaining:
        current = path[-1]
        for i, (a, b) in enumerate(remaining):
            if a == current or b == current:
                path.append(b if a == current else a)
                remaining.pop(i)
                break
        else:
            raise LegacyConversionError(f"Wall {wall_id!r} segments do not form a continuous chain")
    return path


def network_from_legacy(payload: Mapping[str, Any], config: Optional[EngineConfig] = None) -> WallNetwork:
    """Build a :class:`WallNetwork` from ``{"nodes", "segments", "walls"}``.

    Baseline points keep the legacy node ids, and nodes touched by two or more
    walls become explicit shared nodes.
    """
    config = config or EngineConfig()
    if not isinstance(payload, Mapping):
        raise LegacyConversionError("Payload must be an object")
    nodes = _as_mapping(payload.get("nodes"), "node")
    segments = _as_mapping(payload.get("segments"), "segment")
    walls = _as_mapping(payload.get("walls"), "wall")

    points: Dict[str, Point2D] = {}
    for node_id, record in nodes.items():
        points[node_id] = Point2D(
            _number(record, "x", "node", node_id),
            _number(record, "y", "node", node_id),
            id=node_id,
            creation_method="legacy",
        )

    segment_ends: Dict[str, Tuple[str, str, Optional[str]]] = {}
    for seg_id, record in segments.items():
        a = _node_ref(record, "startNodeId", seg_id)
        b = _node_ref(record, "endNodeId", seg_id)
        if a not in points or b not in points:
            raise LegacyConversionError(f"Segment {seg_id!r} references unknown nodes {a!r}/{b!r}")
        wall_ref = record.get("wallId")
        segment_ends[seg_id] = (a, b, str(wall_ref) if wall_ref is not None else None)

    network = WallNetwork()
    node_walls: Dict[str, set] = {}
    for wall_id, record in walls.items():
        wall_type = str(record.get("type", "layout"))
        seg_ids = record.get("segmentIds")
        if not isinstance(seg_ids, (list, tuple)):
            raise LegacyConversionError(f"Wall {wall_id!r} needs a 'segmentIds' list")
        pairs = []
        for seg_id in seg_ids:
            if str(seg_id) not in segment_ends:
                raise LegacyConversionError(f"Wall {wall_id!r} references unknown segment {seg_id!r}")
            a, b, _ = segment_ends[str(seg_id)]
            pairs.append((a, b))
        path = _chain(wall_id, pairs)
        closed = len(path) > 2 and path[0] == path[-1]
        if closed:
            path = path[:-1]
        for node_id in set(path):
            node_walls.setdefault(node_id, set()).add(wall_id)

        if "thickness" in record and record["thickness"] is not None:
            thickness = _number(record, "thickness", "wall", wall_id)
        else:
            try:
                thickness = config.thickness_for(wall_type)
            except KeyError as exc:
                raise LegacyConversionError(str(exc)) from None
        join = _join_type(record.get("joinType"), wall_id)
        network.add_wall(
            WallInput(
                id=wall_id,
                baseline=Curve(tuple(points[n] for n in path), is_closed=closed, id=f"{wall_id}_baseline"),
                thickness=thickness,
                wall_type=wall_type,
                join_type=join,
            )
        )

    shared = [
        SharedNode(node_id, points[node_id], tuple(sorted(wall_ids)))
        for node_id, wall_ids in sorted(node_walls.items())
        if len(wall_ids) >= 2
    ]
    network.set_nodes(shared)
    logger.debug("Converted %d legacy wall(s), %d shared node(s)", len(network), len(shared))
    return network


def solid_to_legacy_outline(solid: WallSolid) -> Dict[str, Any]:
    """Plain outline payload for the rendering layer."""
    return {
        "wallId": solid.id,
        "type": solid.wall_type,
        "thickness": solid.thickness,
        "outlines": [
            {
                "outer": [[p.x, p.y] for p in poly.outer],
                "holes": [[[p.x, p.y] for p in hole] for hole in poly.holes],
            }
            for poly in solid.solid_geometry
        ],
        "quality": solid.geometric_quality.overall,
    }
