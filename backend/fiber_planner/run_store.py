from __future__ import annotations

import csv
import json
from dataclasses import asdict
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from .planner import PlanningResult
from .reporting import SUMMARY_CSV_COLUMNS, route_set_geojson, route_set_payload, summary_csv_rows
from .settings import settings


def run_paths(run_id: str) -> dict[str, Path]:
    """Where a run's manifest and artifacts live under ``settings.out_dir``."""
    root = Path(settings.out_dir)
    artifacts = root / "artifacts" / run_id
    return {
        "manifest": root / "manifests" / f"{run_id}.json",
        "results.json": artifacts / "results.json",
        "routes.geojson": artifacts / "routes.geojson",
        "results.csv": artifacts / "results.csv",
        "metadata.json": artifacts / "metadata.json",
    }


def _dump_json(path: Path, payload: dict[str, Any]) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return path


def build_manifest(result: PlanningResult, *, inputs: dict[str, str] | None = None) -> dict[str, Any]:
    graph = result.graph
    return {
        "run_id": result.run_id,
        "type": "fiber_route_plan",
        "created_at": datetime.now(UTC).isoformat(),
        "inputs": dict(inputs or {}),
        "config": result.config.model_dump(),
        "graph": {
            "node_count": graph.node_count,
            "edge_count": graph.edge_count,
            "component_count": graph.component_count,
            "graph_fragmented": graph.graph_fragmented,
        },
        "totals": asdict(result.route_set.totals),
        "duration_ms": result.duration_ms,
    }


def write_manifest(result: PlanningResult, *, inputs: dict[str, str] | None = None) -> Path:
    return _dump_json(run_paths(result.run_id)["manifest"], build_manifest(result, inputs=inputs))


def write_run_artifacts(
    result: PlanningResult,
    *,
    metadata: dict[str, Any] | None = None,
) -> dict[str, Path]:
    """Write results.json, routes.geojson, results.csv and metadata.json for one run."""
    paths = run_paths(result.run_id)
    route_set = result.route_set

    _dump_json(paths["results.json"], route_set_payload(route_set, result.graph, result.projection))
    _dump_json(paths["routes.geojson"], route_set_geojson(route_set, result.graph, result.projection))
    _dump_json(
        paths["metadata.json"],
        {
            "run_id": result.run_id,
            "duration_ms": result.duration_ms,
            "config": result.config.model_dump(),
            "node_count": result.graph.node_count,
            "edge_count": result.graph.edge_count,
            "graph_fragmented": result.graph.graph_fragmented,
            "segment_count": route_set.totals.segment_count,
            "run_count": len(route_set.runs),
            **(metadata or {}),
        },
    )

    csv_path = paths["results.csv"]
    with csv_path.open("w", encoding="utf-8", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=list(SUMMARY_CSV_COLUMNS))
        writer.writeheader()
        writer.writerows(summary_csv_rows(route_set))

    return {name: path for name, path in paths.items() if name != "manifest"}
