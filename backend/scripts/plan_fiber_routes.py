from __future__ import annotations

import argparse
import json
import uuid
from pathlib import Path
from typing import Any, Sequence

from fiber_planner.input_loader import load_points_csv, load_road_segments_geojson
from fiber_planner.models import PlanningConfig, PlanningRequest
from fiber_planner.planner import run_planning
from fiber_planner.planning_errors import PlanningError, normalize_reason_code
from fiber_planner.run_store import write_manifest, write_run_artifacts
from fiber_planner.settings import settings


def _config_from_args(args: argparse.Namespace) -> PlanningConfig:
    overrides: dict[str, Any] = {
        "dedup_tolerance": args.dedup_tolerance,
        "max_snap_radius": args.max_snap_radius,
        "concurrency": args.concurrency,
        "coordinate_reference": args.crs,
        "timeout_s": args.timeout_s,
    }
    return PlanningConfig(**{k: v for k, v in overrides.items() if v is not None})


def run_plan(args: argparse.Namespace) -> dict[str, Any]:
    run_id = str(args.run_id).strip() if args.run_id else str(uuid.uuid4())
    if not run_id:
        raise ValueError("run_id must not be empty")

    old_out_dir = settings.out_dir
    if args.out_dir:
        settings.out_dir = str(args.out_dir)
    try:
        roads = load_road_segments_geojson(args.roads)
        request = PlanningRequest(
            roads=roads.segments,
            served=load_points_csv(args.served),
            unserved=load_points_csv(args.unserved),
            config=_config_from_args(args),
        )
        result = run_planning(request, run_id=run_id)
        artifacts = write_run_artifacts(
            result,
            metadata={
                "road_features": roads.feature_count,
                "skipped_road_features": roads.skipped_features,
            },
        )
        manifest_path = write_manifest(
            result,
            inputs={
                "roads": str(Path(args.roads).resolve()),
                "served": str(Path(args.served).resolve()),
                "unserved": str(Path(args.unserved).resolve()),
            },
        )
    finally:
        settings.out_dir = old_out_dir

    totals = result.route_set.totals
    return {
        "run_id": run_id,
        "manifest": str(manifest_path),
        "artifacts": {name: str(path) for name, path in artifacts.items()},
        "connected_count": totals.connected_count,
        "unreachable_count": totals.unreachable_count,
        "excluded_served_count": totals.excluded_served_count,
        "total_unique_length": round(totals.total_unique_length, 3),
        "total_route_cost": round(totals.total_route_cost, 3),
    }


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Connect unserved locations to the nearest served location along a road network."
    )
    parser.add_argument("--roads", required=True, help="GeoJSON FeatureCollection of road lines")
    parser.add_argument("--served", required=True, help="CSV with point_id,x,y")
    parser.add_argument("--unserved", required=True, help="CSV with point_id,x,y")
    parser.add_argument("--out-dir", default=None)
    parser.add_argument("--run-id", default=None)
    parser.add_argument("--dedup-tolerance", type=float, default=None)
    parser.add_argument("--max-snap-radius", type=float, default=None)
    parser.add_argument("--concurrency", type=int, default=None)
    parser.add_argument("--crs", choices=("planar", "wgs84"), default=None)
    parser.add_argument("--timeout-s", type=float, default=None)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(list(argv) if argv is not None else None)
    try:
        payload = run_plan(args)
    except PlanningError as e:
        print(
            json.dumps(
                {
                    "reason_code": normalize_reason_code(e.reason_code),
                    "message": e.message,
                    "details": e.details,
                },
                indent=2,
            )
        )
        return 2
    print(json.dumps(payload, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
