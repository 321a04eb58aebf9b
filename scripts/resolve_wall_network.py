#!/usr/bin/env python3
"""Resolve a legacy wall network JSON file into wall solids and junctions."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from wall_geometry import (
    EngineConfig,
    JoinType,
    LegacyConversionError,
    WallGeometryEngine,
    network_from_legacy,
    solid_to_legacy_outline,
)

logger = logging.getLogger("resolve_wall_network")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Build wall solids and resolve junctions for a legacy wall network"
    )
    parser.add_argument("--input", required=True, help="Legacy JSON with nodes/segments/walls")
    parser.add_argument(
        "--output",
        default=None,
        help="Result JSON path (default: <input>_solids.json next to the input)",
    )
    parser.add_argument(
        "--precision", type=float, default=1e-3, help="Document precision in mm"
    )
    parser.add_argument("--miter-limit", type=float, default=8.0, help="Miter limit")
    parser.add_argument(
        "--join-type",
        choices=[j.value for j in JoinType],
        default=JoinType.MITER.value,
        help="Default join type",
    )
    parser.add_argument(
        "--no-repair", action="store_true", help="Disable automatic geometry repair"
    )
    parser.add_argument("--verbose", action="store_true", help="Verbose logging")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    input_path = Path(args.input)
    output_path = (
        Path(args.output)
        if args.output
        else input_path.with_name(f"{input_path.stem}_solids.json")
    )
    config = EngineConfig(
        document_precision=args.precision,
        miter_limit=args.miter_limit,
        default_join_type=JoinType(args.join_type),
        repair_enabled=not args.no_repair,
    )

    try:
        payload = json.loads(input_path.read_text(encoding="utf-8"))
        network = network_from_legacy(payload, config)
    except (OSError, json.JSONDecodeError, LegacyConversionError) as exc:
        logger.error("Cannot read %s: %s", input_path, exc)
        return 2

    result = WallGeometryEngine(config).process_network(network)
    document = result.to_dict()
    document["config"] = config.to_dict()
    document["outlines"] = [solid_to_legacy_outline(s) for s in result.solids.values()]

    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("w", encoding="utf-8") as f:
        json.dump(document, f, indent=2)

    warnings = len(result.validation.warnings) if result.validation else 0
    print(f"Status: {'OK' if result.success else 'DEGRADED'}")
    print(f"Walls: {len(result.solids)}")
    print(f"Junctions: {len(result.intersections)}")
    print(f"Errors: {len(result.errors)}")
    print(f"Fallbacks: {len(result.notifications)}")
    print(f"Network warnings: {warnings}")
    print(f"Output: {output_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
