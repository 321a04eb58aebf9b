from __future__ import annotations

import json
import subprocess
import sys
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parent.parent
SCRIPT = REPO_ROOT / "scripts" / "resolve_wall_network.py"


def test_cli_resolves_legacy_network(legacy_payload, tmp_path: Path):
    input_path = tmp_path / "plan.json"
    input_path.write_text(json.dumps(legacy_payload), encoding="utf-8")
    output_path = tmp_path / "out" / "solids.json"

    cmd = [
        sys.executable,
        str(SCRIPT),
        "--input",
        str(input_path),
        "--output",
        str(output_path),
        "--join-type",
        "miter",
    ]
    proc = subprocess.run(cmd, capture_output=True, text=True)
    assert proc.returncode == 0, proc.stderr
    assert "Walls: 2" in proc.stdout
    assert "Junctions: 1" in proc.stdout

    document = json.loads(output_path.read_text(encoding="utf-8"))
    assert set(document["solids"]) == {"w1", "w2"}
    assert document["intersections"][0]["type"] == "corner"
    assert document["config"]["default_join_type"] == "miter"
    assert len(document["outlines"]) == 2


def test_cli_default_output_path(legacy_payload, tmp_path: Path):
    input_path = tmp_path / "plan.json"
    input_path.write_text(json.dumps(legacy_payload), encoding="utf-8")
    proc = subprocess.run(
        [sys.executable, str(SCRIPT), "--input", str(input_path), "--no-repair"],
        capture_output=True,
        text=True,
    )
    assert proc.returncode == 0, proc.stderr
    assert (tmp_path / "plan_solids.json").exists()


def test_cli_rejects_malformed_input(tmp_path: Path):
    input_path = tmp_path / "broken.json"
    input_path.write_text(json.dumps({"walls": [{"id": "w"}]}), encoding="utf-8")
    proc = subprocess.run(
        [sys.executable, str(SCRIPT), "--input", str(input_path)],
        capture_output=True,
        text=True,
    )
    assert proc.returncode == 2
    assert "segmentIds" in proc.stderr


def test_cli_rejects_unknown_join_type(legacy_payload, tmp_path: Path):
    legacy_payload["walls"][0]["joinType"] = "mitre"
    input_path = tmp_path / "plan.json"
    input_path.write_text(json.dumps(legacy_payload), encoding="utf-8")
    proc = subprocess.run(
        [sys.executable, str(SCRIPT), "--input", str(input_path)],
        capture_output=True,
        text=True,
    )
    assert proc.returncode == 2
    assert "mitre" in proc.stderr
