"""
Shared test fixtures for the wall geometry engine tests.
"""
import sys
from pathlib import Path

import pytest

# Add src/ to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from wall_geometry import (
    Curve,
    EngineConfig,
    WallGeometryEngine,
    WallInput,
    WallSolid,
)


def make_solid(wall_id, coords, thickness=200.0, wall_type="layout", version=0, closed=False):
    """Bare WallSolid around a baseline; enough for junction and cache work."""
    return WallSolid(
        id=wall_id,
        baseline=Curve.from_coords(coords, is_closed=closed, curve_id=f"{wall_id}_baseline"),
        thickness=thickness,
        wall_type=wall_type,
        version=version,
    )


def make_wall(wall_id, coords, thickness=200.0, **kwargs):
    return WallInput(
        id=wall_id,
        baseline=Curve.from_coords(coords, curve_id=f"{wall_id}_baseline"),
        thickness=thickness,
        **kwargs,
    )


@pytest.fixture
def config():
    """Default engine configuration."""
    return EngineConfig()


@pytest.fixture
def engine(config):
    return WallGeometryEngine(config)


@pytest.fixture
def corner_solids():
    """Two 200mm walls meeting at (10, 0) at a right angle."""
    a = make_solid("A", [(0, 0), (10, 0)])
    b = make_solid("B", [(10, 0), (10, 10)])
    return a, b


@pytest.fixture
def l_shaped_walls():
    """Two 1m walls forming an L with the shared end at (1000, 0)."""
    return [
        make_wall("A", [(0, 0), (1000, 0)]),
        make_wall("B", [(1000, 0), (1000, 1000)]),
    ]


@pytest.fixture
def legacy_payload():
    """A legacy node/segment/wall document with one L-corner."""
    return {
        "nodes": [
            {"id": "n1", "x": 0, "y": 0},
            {"id": "n2", "x": 4000, "y": 0},
            {"id": "n3", "x": 4000, "y": 3000},
        ],
        "segments": [
            {"id": "s1", "startNodeId": "n1", "endNodeId": "n2", "wallId": "w1"},
            {"id": "s2", "startNodeId": "n2", "endNodeId": "n3", "wallId": "w2"},
        ],
        "walls": [
            {"id": "w1", "type": "layout", "segmentIds": ["s1"]},
            {"id": "w2", "type": "zone", "segmentIds": ["s2"]},
        ],
    }
