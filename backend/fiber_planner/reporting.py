from __future__ import annotations

from dataclasses import asdict
from typing import Any

from .geo import LocalProjection
from .route_aggregator import MergedSegment, RouteSet
from .routing_graph import RouteGraph

SUMMARY_CSV_COLUMNS: tuple[str, ...] = (
    "point_id",
    "status",
    "reason_code",
    "target_node",
    "served_point_ids",
    "cost",
    "snap_distance",
    "edge_count",
)


def _coord(graph: RouteGraph, node_id: int, projection: LocalProjection | None) -> list[float]:
    node = graph.nodes[node_id]
    if projection is None:
        return [node.x, node.y]
    lon, lat = projection.to_geographic(node.x, node.y)
    return [lon, lat]


def _segment_feature(
    segment: MergedSegment,
    graph: RouteGraph,
    projection: LocalProjection | None,
) -> dict[str, Any]:
    return {
        "type": "Feature",
        "geometry": {
            "type": "LineString",
            "coordinates": [
                _coord(graph, segment.u, projection),
                _coord(graph, segment.v, projection),
            ],
        },
        "properties": {
            "edge_id": segment.edge_id,
            "u": segment.u,
            "v": segment.v,
            "length": segment.length,
            "route_count": segment.route_count,
            "point_ids": list(segment.point_ids),
            "road_class": segment.road_class,
            "segment_id": segment.segment_id,
        },
    }


def route_set_geojson(
    route_set: RouteSet,
    graph: RouteGraph,
    projection: LocalProjection | None = None,
) -> dict[str, Any]:
    """Merged segments as a FeatureCollection, in the coordinate reference the input used."""
    return {
        "type": "FeatureCollection",
        "features": [_segment_feature(s, graph, projection) for s in route_set.segments],
    }


def route_set_payload(
    route_set: RouteSet,
    graph: RouteGraph,
    projection: LocalProjection | None = None,
) -> dict[str, Any]:
    routes: list[dict[str, Any]] = []
    for route in route_set.routes:
        routes.append(
            {
                "point_id": route.point_id,
                "source_node": route.source_node,
                "target_node": route.target_node,
                "served_point_ids": list(route.served_point_ids),
                "cost": route.cost,
                "snap_distance": route.snap_distance,
                "edge_ids": list(route.edge_ids),
                "coordinates": [_coord(graph, n, projection) for n in route.nodes],
                "explored_states": route.explored_states,
            }
        )
    return {
        "totals": asdict(route_set.totals),
        "routes": routes,
        "segments": [asdict(s) for s in route_set.segments],
        "runs": [asdict(run) for run in route_set.runs],
        "unreachable": [asdict(f) for f in route_set.unreachable],
        "excluded_served": [asdict(f) for f in route_set.excluded_served],
        "graph": {
            "node_count": graph.node_count,
            "edge_count": graph.edge_count,
            "component_count": graph.component_count,
            "largest_component_ratio": graph.largest_component_ratio,
            "graph_fragmented": graph.graph_fragmented,
        },
        "coordinate_reference": "wgs84" if projection is not None else "planar",
    }


def summary_csv_rows(route_set: RouteSet) -> list[dict[str, Any]]:
    """One row per unserved point, connected or not, ordered by point id."""
    rows: list[dict[str, Any]] = []
    for route in route_set.routes:
        rows.append(
            {
                "point_id": route.point_id,
                "status": "connected",
                "reason_code": "",
                "target_node": route.target_node,
                "served_point_ids": ";".join(route.served_point_ids),
                "cost": round(route.cost, 6),
                "snap_distance": round(route.snap_distance, 6),
                "edge_count": len(route.edge_ids),
            }
        )
    for failure in route_set.unreachable:
        rows.append(
            {
                "point_id": failure.point_id,
                "status": "unreachable",
                "reason_code": failure.reason_code,
                "target_node": "",
                "served_point_ids": "",
                "cost": "",
                "snap_distance": "" if failure.snap_distance is None else round(failure.snap_distance, 6),
                "edge_count": "",
            }
        )
    rows.sort(key=lambda row: str(row["point_id"]))
    return rows
