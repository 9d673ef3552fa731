from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from .route_solver import Route
from .routing_graph import RouteGraph
from .spatial_index import PointFailure


@dataclass(frozen=True)
class MergedSegment:
    edge_id: int
    u: int
    v: int
    length: float
    route_count: int
    point_ids: tuple[str, ...]
    road_class: str
    segment_id: str | None

    def other(self, node_id: int) -> int:
        return self.v if node_id == self.u else self.u


@dataclass(frozen=True)
class ConstructionRun:
    """Consecutive merged segments that carry exactly the same routes."""

    nodes: tuple[int, ...]
    edge_ids: tuple[int, ...]
    length: float
    route_count: int
    point_ids: tuple[str, ...]


@dataclass(frozen=True)
class RouteSetTotals:
    total_unique_length: float
    total_route_cost: float
    shared_length: float
    connected_count: int
    unreachable_count: int
    snap_failure_count: int
    excluded_served_count: int
    segment_count: int


@dataclass(frozen=True)
class RouteSet:
    routes: tuple[Route, ...]
    segments: tuple[MergedSegment, ...]
    runs: tuple[ConstructionRun, ...]
    unreachable: tuple[PointFailure, ...]
    excluded_served: tuple[PointFailure, ...]
    totals: RouteSetTotals


def merge_segments(graph: RouteGraph, routes: Sequence[Route]) -> list[MergedSegment]:
    usage: dict[int, list[str]] = {}
    for route in routes:
        for edge_id in dict.fromkeys(route.edge_ids):
            usage.setdefault(edge_id, []).append(route.point_id)
    segments: list[MergedSegment] = []
    for edge_id, point_ids in usage.items():
        edge = graph.edges[edge_id]
        segments.append(
            MergedSegment(
                edge_id=edge_id,
                u=edge.u,
                v=edge.v,
                length=edge.length,
                route_count=len(point_ids),
                point_ids=tuple(sorted(point_ids)),
                road_class=edge.road_class,
                segment_id=edge.segment_id,
            )
        )
    # Most-shared trunks first.
    segments.sort(key=lambda s: (-s.route_count, s.u, s.v))
    return segments


def construction_runs(segments: Sequence[MergedSegment]) -> list[ConstructionRun]:
    groups: dict[tuple[str, ...], list[MergedSegment]] = {}
    for segment in segments:
        groups.setdefault(segment.point_ids, []).append(segment)

    runs: list[ConstructionRun] = []
    for point_ids, members in groups.items():
        incident: dict[int, list[MergedSegment]] = {}
        for segment in members:
            incident.setdefault(segment.u, []).append(segment)
            incident.setdefault(segment.v, []).append(segment)
        visited: set[int] = set()
        for seed in members:
            if seed.edge_id in visited:
                continue
            visited.add(seed.edge_id)
            nodes: deque[int] = deque([seed.u, seed.v])
            edge_ids: deque[int] = deque([seed.edge_id])
            length = seed.length
            for at_tail in (True, False):
                while True:
                    end = nodes[-1] if at_tail else nodes[0]
                    touching = incident[end]
                    if len(touching) != 2:
                        break
                    nxt = next((s for s in touching if s.edge_id not in visited), None)
                    if nxt is None:
                        break
                    visited.add(nxt.edge_id)
                    length += nxt.length
                    if at_tail:
                        nodes.append(nxt.other(end))
                        edge_ids.append(nxt.edge_id)
                    else:
                        nodes.appendleft(nxt.other(end))
                        edge_ids.appendleft(nxt.edge_id)
            node_seq = tuple(nodes)
            edge_seq = tuple(edge_ids)
            if node_seq[0] > node_seq[-1]:
                node_seq = node_seq[::-1]
                edge_seq = edge_seq[::-1]
            runs.append(
                ConstructionRun(
                    nodes=node_seq,
                    edge_ids=edge_seq,
                    length=float(length),
                    route_count=len(point_ids),
                    point_ids=point_ids,
                )
            )
    runs.sort(key=lambda r: (-r.route_count, r.nodes[0], r.nodes[-1], r.edge_ids))
    return runs


def aggregate_routes(
    routes: Iterable[Route],
    *,
    graph: RouteGraph,
    unreachable: Iterable[PointFailure] = (),
    excluded_served: Iterable[PointFailure] = (),
) -> RouteSet:
    """Collapse per-point routes into a RouteSet; each edge is counted once however many routes use it."""
    ordered_routes = tuple(sorted(routes, key=lambda r: r.point_id))
    ordered_unreachable = tuple(sorted(unreachable, key=lambda f: f.point_id))
    ordered_excluded = tuple(sorted(excluded_served, key=lambda f: f.point_id))

    segments = merge_segments(graph, ordered_routes)
    runs = construction_runs(segments)

    totals = RouteSetTotals(
        total_unique_length=float(sum(s.length for s in segments)),
        total_route_cost=float(sum(r.cost for r in ordered_routes)),
        shared_length=float(sum(s.length for s in segments if s.route_count > 1)),
        connected_count=len(ordered_routes),
        unreachable_count=len(ordered_unreachable),
        snap_failure_count=sum(1 for f in ordered_unreachable if f.reason_code == "snap_failure"),
        excluded_served_count=len(ordered_excluded),
        segment_count=len(segments),
    )
    return RouteSet(
        routes=ordered_routes,
        segments=tuple(segments),
        runs=tuple(runs),
        unreachable=ordered_unreachable,
        excluded_served=ordered_excluded,
        totals=totals,
    )
