from __future__ import annotations

import csv
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import ijson
from pydantic import ValidationError

from .logging_utils import log_event
from .models import PlanningPointIn, RoadSegmentIn
from .planning_errors import InvalidPointInputError, MalformedGeometryError

_X_COLUMNS = ("x", "lon", "longitude")
_Y_COLUMNS = ("y", "lat", "latitude")


@dataclass
class LoadedRoads:
    segments: list[RoadSegmentIn] = field(default_factory=list)
    feature_count: int = 0
    skipped_features: int = 0


def _line_parts(geometry: Any) -> list[list[Any]] | None:
    if not isinstance(geometry, dict):
        return None
    kind = str(geometry.get("type", ""))
    coords = geometry.get("coordinates")
    if not isinstance(coords, list):
        return None
    if kind == "LineString":
        return [coords]
    if kind == "MultiLineString":
        return [part for part in coords if isinstance(part, list)]
    return None


def _segment_id(props: dict[str, Any], feature: dict[str, Any]) -> str | None:
    raw = props.get("segment_id", props.get("id", feature.get("id")))
    if raw is None:
        return None
    text = str(raw).strip()
    return text or None


def _road_class(props: dict[str, Any]) -> str:
    return str(props.get("road_class") or props.get("highway") or "unclassified")


def load_road_segments_geojson(path: str | Path) -> LoadedRoads:
    """Stream LineString/MultiLineString features out of a GeoJSON FeatureCollection.

    Features with any other geometry are skipped and counted. Coordinates keep
    only their first two components.
    """
    p = Path(path)
    loaded = LoadedRoads()
    with p.open("rb") as fh:
        for feature in ijson.items(fh, "features.item", use_float=True):
            loaded.feature_count += 1
            if not isinstance(feature, dict):
                loaded.skipped_features += 1
                continue
            parts = _line_parts(feature.get("geometry"))
            if parts is None:
                loaded.skipped_features += 1
                continue
            props = feature.get("properties") if isinstance(feature.get("properties"), dict) else {}
            base_id = _segment_id(props, feature)
            road_class = _road_class(props)
            for part_idx, part in enumerate(parts):
                segment_id = base_id
                if base_id is not None and len(parts) > 1:
                    segment_id = f"{base_id}#{part_idx}"
                try:
                    loaded.segments.append(
                        RoadSegmentIn(
                            segment_id=segment_id,
                            vertices=[(coord[0], coord[1]) for coord in part],
                            road_class=road_class,
                        )
                    )
                except (ValidationError, TypeError, IndexError, KeyError) as exc:
                    raise MalformedGeometryError(
                        f"feature {loaded.feature_count - 1} has unreadable coordinates",
                        segment_index=len(loaded.segments),
                        segment_id=segment_id,
                    ) from exc

    log_event(
        "road_segments_loaded",
        path=str(p),
        feature_count=loaded.feature_count,
        segment_count=len(loaded.segments),
        skipped_features=loaded.skipped_features,
    )
    return loaded


def _pick_column(fieldnames: list[str], candidates: tuple[str, ...]) -> str | None:
    lowered = {name.strip().lower(): name for name in fieldnames}
    for candidate in candidates:
        if candidate in lowered:
            return lowered[candidate]
    return None


def load_points_csv(path: str | Path) -> list[PlanningPointIn]:
    p = Path(path)
    points: list[PlanningPointIn] = []
    with p.open("r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        fieldnames = list(reader.fieldnames or [])
        id_col = _pick_column(fieldnames, ("point_id", "id"))
        x_col = _pick_column(fieldnames, _X_COLUMNS)
        y_col = _pick_column(fieldnames, _Y_COLUMNS)
        missing = [
            name
            for name, col in (("point_id", id_col), ("x", x_col), ("y", y_col))
            if col is None
        ]
        if missing:
            raise InvalidPointInputError(f"points CSV schema mismatch ({p}); missing columns: {', '.join(missing)}")
        for row in reader:
            point_id = str(row.get(id_col, "") or "").strip()
            if not point_id:
                continue
            try:
                points.append(
                    PlanningPointIn(
                        point_id=point_id,
                        x=float(row.get(x_col, "") or "nan"),
                        y=float(row.get(y_col, "") or "nan"),
                    )
                )
            except ValueError as exc:
                # ValidationError is a ValueError too (non-finite coordinates).
                raise InvalidPointInputError(
                    f"points CSV row {reader.line_num} has an unreadable or non-finite coordinate ({p})",
                    row_number=reader.line_num,
                    point_id=point_id,
                ) from exc
    log_event("planning_points_loaded", path=str(p), point_count=len(points))
    return points
