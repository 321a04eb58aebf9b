"""Host-side wall records, version stamps and shared-node detection."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import numpy as np
from scipy.spatial import KDTree
from shapely import STRtree
from shapely.geometry import LineString
from shapely.geometry import Point as ShapelyPoint

from wall_geometry.contracts import JoinType
from wall_geometry.primitives import Curve, Point2D

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WallInput:
    """One wall as supplied by the host model."""

    id: str
    baseline: Curve
    thickness: float
    wall_type: str = "layout"
    join_type: Optional[JoinType] = None
    version: int = 0


@dataclass(frozen=True)
class SharedNode:
    id: str
    point: Point2D
    wall_ids: Tuple[str, ...]


class WallNetwork:
    """Walls plus optional explicit adjacency.

    Every change made through :meth:`update_wall` bumps the wall's version,
    which in turn changes every intersection cache key that wall takes part in.
    """

    def __init__(self, walls: Iterable[WallInput] = (), nodes: Optional[Sequence[SharedNode]] = None):
        self._walls: Dict[str, WallInput] = {}
        for wall in walls:
            self.add_wall(wall)
        self._nodes: Optional[List[SharedNode]] = list(nodes) if nodes is not None else None

    def __len__(self) -> int:
        return len(self._walls)

    def __contains__(self, wall_id: str) -> bool:
        return wall_id in self._walls

    @property
    def walls(self) -> List[WallInput]:
        return list(self._walls.values())

    def get(self, wall_id: str) -> WallInput:
        return self._walls[wall_id]

    def add_wall(self, wall: WallInput) -> None:
        if wall.id in self._walls:
            raise ValueError(f"Duplicate wall id {wall.id!r}")
        self._walls[wall.id] = wall

    def remove_wall(self, wall_id: str) -> WallInput:
        wall = self._walls.pop(wall_id)
        if self._nodes is not None:
            self._nodes = [
                dataclasses.replace(n, wall_ids=tuple(w for w in n.wall_ids if w != wall_id))
                for n in self._nodes
            ]
            self._nodes = [n for n in self._nodes if len(n.wall_ids) >= 2]
        return wall

    def update_wall(
        self,
        wall_id: str,
        *,
        baseline: Optional[Curve] = None,
        thickness: Optional[float] = None,
        wall_type: Optional[str] = None,
        join_type: Optional[JoinType] = None,
    ) -> WallInput:
        current = self._walls[wall_id]
        changes = {
            k: v
            for k, v in (
                ("baseline", baseline),
                ("thickness", thickness),
                ("wall_type", wall_type),
                ("join_type", join_type),
            )
            if v is not None
        }
        updated = dataclasses.replace(current, version=current.version + 1, **changes)
        self._walls[wall_id] = updated
        logger.debug("Wall %s updated to version %d", wall_id, updated.version)
        return updated

    def set_nodes(self, nodes: Sequence[SharedNode]) -> None:
        self._nodes = list(nodes)

    def shared_nodes(self, tolerance: float) -> List[SharedNode]:
        """Explicit host adjacency when given, otherwise detected nodes."""
        if self._nodes is not None:
            return [n for n in self._nodes if len(n.wall_ids) >= 2]
        return self.detect_nodes(tolerance)

    def detect_nodes(self, tolerance: float) -> List[SharedNode]:
        """Cluster wall end points within *tolerance* and attach walls whose
        interior passes through a cluster (T-junctions).

        End points are grouped with a KD-tree around the first unassigned end
        in wall-id order, so node ids are stable across runs.
        """
        walls = sorted(self._walls.values(), key=lambda w: w.id)
        ends: List[Tuple[float, float]] = []
        owners: List[str] = []
        for wall in walls:
            pts = [p for p in wall.baseline.points if p.is_finite]
            if len(pts) < 2:
                continue
            if wall.baseline.is_closed or pts[0].equals(pts[-1], tolerance):
                continue
            for p in (pts[0], pts[-1]):
                ends.append(p.xy)
                owners.append(wall.id)
        if not ends:
            return []

        coords = np.asarray(ends, dtype=float)
        neighbours = KDTree(coords).query_ball_point(coords, r=tolerance)
        assigned = np.zeros(len(ends), dtype=bool)
        clusters: List[List[int]] = []
        for i in range(len(ends)):
            if assigned[i]:
                continue
            members = [j for j in sorted(neighbours[i]) if not assigned[j]]
            assigned[members] = True
            clusters.append(members)

        indexed = [(wall.id, line) for wall in walls if (line := _baseline_line(wall.baseline)) is not None]
        tree = STRtree([line for _, line in indexed])

        nodes: List[SharedNode] = []
        for members in clusters:
            cx, cy = (float(v) for v in coords[members].mean(axis=0))
            ids: List[str] = []
            for j in members:
                if owners[j] not in ids:
                    ids.append(owners[j])
            hits = tree.query(ShapelyPoint(cx, cy), predicate="dwithin", distance=tolerance)
            for k in sorted(int(k) for k in hits):
                wall_id = indexed[k][0]
                if wall_id not in ids:
                    ids.append(wall_id)
            if len(ids) >= 2:
                node_id = f"node_{len(nodes)}"
                nodes.append(
                    SharedNode(
                        id=node_id,
                        point=Point2D(cx, cy, id=node_id, creation_method="detected"),
                        wall_ids=tuple(sorted(ids)),
                    )
                )
        logger.debug("Detected %d shared node(s) among %d wall(s)", len(nodes), len(self._walls))
        return nodes


def _baseline_line(baseline: Curve) -> Optional[LineString]:
    pts = [p.xy for p in baseline.points if p.is_finite]
    if len(pts) < 2:
        return None
    if baseline.is_closed and len(pts) >= 3:
        pts.append(pts[0])
    return LineString(pts)
