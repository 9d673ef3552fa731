from __future__ import annotations

import math
from collections import deque
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from pydantic import ValidationError

from .geo import planar_distance
from .logging_utils import log_event, log_warning_event
from .models import RoadSegmentIn
from .planning_errors import MalformedGeometryError, PlanningConfigError
from .settings import settings


@dataclass(frozen=True)
class GraphNode:
    node_id: int
    x: float
    y: float


@dataclass(frozen=True)
class GraphEdge:
    edge_id: int
    u: int  # always < v
    v: int
    length: float
    road_class: str = "unclassified"
    segment_id: str | None = None


@dataclass(frozen=True)
class RouteGraph:
    nodes: tuple[GraphNode, ...]
    edges: tuple[GraphEdge, ...]
    # adjacency[node_id] -> ((neighbor_id, edge_id), ...) sorted by neighbor id
    adjacency: tuple[tuple[tuple[int, int], ...], ...]
    edge_by_pair: dict[tuple[int, int], int]
    component_by_node: tuple[int, ...]
    component_sizes: dict[int, int]
    component_count: int
    largest_component_nodes: int
    largest_component_ratio: float
    graph_fragmented: bool
    dedup_tolerance: float

    @property
    def node_count(self) -> int:
        return len(self.nodes)

    @property
    def edge_count(self) -> int:
        return len(self.edges)

    def neighbors(self, node_id: int) -> tuple[tuple[int, int], ...]:
        return self.adjacency[node_id]

    def edge_between(self, u: int, v: int) -> GraphEdge | None:
        edge_id = self.edge_by_pair.get((u, v) if u < v else (v, u))
        if edge_id is None:
            return None
        return self.edges[edge_id]


def path_edge_ids(graph: RouteGraph, nodes: Sequence[int]) -> tuple[int, ...]:
    out: list[int] = []
    for idx in range(1, len(nodes)):
        edge = graph.edge_between(nodes[idx - 1], nodes[idx])
        if edge is None:
            raise KeyError(f"nodes {nodes[idx - 1]} and {nodes[idx]} are not adjacent")
        out.append(edge.edge_id)
    return tuple(out)


def path_length(graph: RouteGraph, nodes: Sequence[int]) -> float:
    return float(sum(graph.edges[edge_id].length for edge_id in path_edge_ids(graph, nodes)))


_MIN_CELL_FRACTION = 2.0**-40


def _grid_key(x: float, y: float, cell: float) -> tuple[int, int]:
    return (int(math.floor(x / cell)), int(math.floor(y / cell)))


class _NodeDeduplicator:
    """Registry of first-seen vertices.

    A vertex within tolerance of an existing node reuses the lowest such node id,
    so the outcome depends only on input order.
    """

    def __init__(self, tolerance: float, *, coordinate_bound: float = 0.0) -> None:
        self.tolerance = tolerance
        # cell >= tolerance keeps the 3x3 scan exact; the magnitude floor bounds x / cell.
        self.cell = max(tolerance, float(coordinate_bound) * _MIN_CELL_FRACTION)
        self.coords: list[tuple[float, float]] = []
        self._exact: dict[tuple[float, float], int] = {}
        self._grid: dict[tuple[int, int], list[int]] = {}

    def _append(self, x: float, y: float) -> int:
        self.coords.append((x, y))
        return len(self.coords) - 1

    def node_for(self, x: float, y: float) -> int:
        if self.tolerance <= 0.0:
            existing = self._exact.get((x, y))
            if existing is not None:
                return existing
            node_id = self._append(x, y)
            self._exact[(x, y)] = node_id
            return node_id

        cx, cy = _grid_key(x, y, self.cell)
        best: int | None = None
        for dx in (-1, 0, 1):
            for dy in (-1, 0, 1):
                for node_id in self._grid.get((cx + dx, cy + dy), ()):
                    if best is not None and node_id >= best:
                        continue
                    nx, ny = self.coords[node_id]
                    if planar_distance(x, y, nx, ny) <= self.tolerance:
                        best = node_id
        if best is not None:
            return best
        node_id = self._append(x, y)
        self._grid.setdefault((cx, cy), []).append(node_id)
        return node_id


def _coerce_segment(raw: RoadSegmentIn | Mapping[str, object], index: int) -> RoadSegmentIn:
    if isinstance(raw, RoadSegmentIn):
        return raw
    try:
        return RoadSegmentIn.model_validate(raw)
    except ValidationError as exc:
        segment_id = raw.get("segment_id") if isinstance(raw, Mapping) else None
        raise MalformedGeometryError(
            f"segment {index} is not a valid road segment: {exc.error_count()} validation error(s)",
            segment_index=index,
            segment_id=str(segment_id) if segment_id is not None else None,
        ) from exc


def _validate_segments(
    raw_segments: Sequence[RoadSegmentIn | Mapping[str, object]],
) -> list[RoadSegmentIn]:
    segments: list[RoadSegmentIn] = []
    for index, raw in enumerate(raw_segments):
        segment = _coerce_segment(raw, index)
        if len(segment.vertices) < 2:
            raise MalformedGeometryError(
                f"segment {index} has {len(segment.vertices)} vertices; at least two are required",
                segment_index=index,
                segment_id=segment.segment_id,
            )
        for x, y in segment.vertices:
            if not (math.isfinite(x) and math.isfinite(y)):
                raise MalformedGeometryError(
                    f"segment {index} has a non-finite coordinate",
                    segment_index=index,
                    segment_id=segment.segment_id,
                )
        segments.append(segment)
    return segments


def _compute_component_index(
    node_count: int,
    adjacency: Sequence[Sequence[tuple[int, int]]],
) -> tuple[tuple[int, ...], dict[int, int], int, int, float]:
    component_by_node = [0] * node_count
    component_sizes: dict[int, int] = {}
    component_idx = 0
    for node_id in range(node_count):
        if component_by_node[node_id]:
            continue
        component_idx += 1
        q: deque[int] = deque([node_id])
        component_by_node[node_id] = component_idx
        size = 0
        while q:
            current = q.popleft()
            size += 1
            for nxt, _edge_id in adjacency[current]:
                if not component_by_node[nxt]:
                    component_by_node[nxt] = component_idx
                    q.append(nxt)
        component_sizes[component_idx] = size
    largest_component_nodes = max(component_sizes.values(), default=0)
    largest_component_ratio = (
        float(largest_component_nodes) / float(max(1, node_count))
        if node_count
        else 0.0
    )
    return (
        tuple(component_by_node),
        component_sizes,
        int(component_idx),
        int(largest_component_nodes),
        float(largest_component_ratio),
    )


def build_route_graph(
    segments: Sequence[RoadSegmentIn | Mapping[str, object]],
    *,
    dedup_tolerance: float,
) -> RouteGraph:
    """Turn road polylines into an undirected, read-only routing graph.

    Raises MalformedGeometryError before any node is created if a segment has
    fewer than two vertices or a non-finite coordinate.
    """
    tolerance = float(dedup_tolerance)
    if not math.isfinite(tolerance) or tolerance < 0.0:
        raise PlanningConfigError(
            "dedup_tolerance must be a finite, non-negative distance",
            dedup_tolerance=dedup_tolerance,
        )
    validated = _validate_segments(segments)

    coordinate_bound = max((max(abs(x), abs(y)) for s in validated for x, y in s.vertices), default=0.0)
    dedup = _NodeDeduplicator(tolerance, coordinate_bound=coordinate_bound)
    # (length, road_class, segment_id); dict order is first-seen pair order
    best_by_pair: dict[tuple[int, int], tuple[float, str, str | None]] = {}
    vertices_seen = 0
    collapsed_steps = 0
    for segment in validated:
        previous: int | None = None
        for x, y in segment.vertices:
            vertices_seen += 1
            node_id = dedup.node_for(float(x), float(y))
            if previous is not None:
                if node_id == previous:
                    collapsed_steps += 1
                else:
                    key = (previous, node_id) if previous < node_id else (node_id, previous)
                    ux, uy = dedup.coords[key[0]]
                    vx, vy = dedup.coords[key[1]]
                    length = planar_distance(ux, uy, vx, vy)
                    prior = best_by_pair.get(key)
                    if prior is None or length < prior[0]:
                        best_by_pair[key] = (length, segment.road_class, segment.segment_id)
            previous = node_id

    nodes = tuple(
        GraphNode(node_id=node_id, x=x, y=y) for node_id, (x, y) in enumerate(dedup.coords)
    )
    edges: list[GraphEdge] = []
    edge_by_pair: dict[tuple[int, int], int] = {}
    adjacency_mut: list[list[tuple[int, int]]] = [[] for _ in nodes]
    for (u, v), (length, road_class, segment_id) in best_by_pair.items():
        edge = GraphEdge(
            edge_id=len(edges),
            u=u,
            v=v,
            length=length,
            road_class=road_class,
            segment_id=segment_id,
        )
        edges.append(edge)
        edge_by_pair[(u, v)] = edge.edge_id
        adjacency_mut[u].append((v, edge.edge_id))
        adjacency_mut[v].append((u, edge.edge_id))
    adjacency = tuple(tuple(sorted(row)) for row in adjacency_mut)

    component_by_node, component_sizes, component_count, largest_component_nodes, largest_component_ratio = (
        _compute_component_index(len(nodes), adjacency)
    )
    graph_fragmented = bool(
        nodes and largest_component_ratio < float(settings.fragmentation_warn_ratio)
    )
    graph = RouteGraph(
        nodes=nodes,
        edges=tuple(edges),
        adjacency=adjacency,
        edge_by_pair=edge_by_pair,
        component_by_node=component_by_node,
        component_sizes=component_sizes,
        component_count=component_count,
        largest_component_nodes=largest_component_nodes,
        largest_component_ratio=largest_component_ratio,
        graph_fragmented=graph_fragmented,
        dedup_tolerance=tolerance,
    )
    log_event(
        "route_graph_built",
        segment_count=len(validated),
        vertices_seen=vertices_seen,
        collapsed_steps=collapsed_steps,
        node_count=graph.node_count,
        edge_count=graph.edge_count,
        component_count=component_count,
        largest_component_nodes=largest_component_nodes,
        largest_component_ratio=round(largest_component_ratio, 6),
    )
    if graph_fragmented:
        log_warning_event(
            "route_graph_fragmented",
            component_count=component_count,
            largest_component_nodes=largest_component_nodes,
            largest_component_ratio=round(largest_component_ratio, 6),
        )
    return graph
