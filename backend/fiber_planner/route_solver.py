from __future__ import annotations

import heapq
import threading
import time
from collections.abc import Iterable
from dataclasses import dataclass

from .planning_errors import PlanningCancelledError
from .routing_graph import RouteGraph, path_edge_ids
from .spatial_index import PointFailure, SnappedPoint

# Settled-node interval between cancellation/deadline checks.
CANCEL_CHECK_INTERVAL = 256


@dataclass(frozen=True)
class PathResult:
    nodes: tuple[int, ...]
    cost: float


class PathNotFoundError(ValueError):
    pass


@dataclass(frozen=True)
class ServedTargets:
    nodes: frozenset[int]
    components: frozenset[int]
    point_ids_by_node: dict[int, tuple[str, ...]]

    @classmethod
    def from_snapped(cls, graph: RouteGraph, snapped: Iterable[SnappedPoint]) -> "ServedTargets":
        by_node: dict[int, list[str]] = {}
        for point in snapped:
            by_node.setdefault(point.node_id, []).append(point.point_id)
        return cls(
            nodes=frozenset(by_node),
            components=frozenset(graph.component_by_node[node_id] for node_id in by_node),
            point_ids_by_node={node_id: tuple(sorted(ids)) for node_id, ids in by_node.items()},
        )


@dataclass(frozen=True)
class Route:
    point_id: str
    source_node: int
    target_node: int
    nodes: tuple[int, ...]
    edge_ids: tuple[int, ...]
    cost: float
    snap_distance: float
    served_point_ids: tuple[str, ...]
    explored_states: int = 0


@dataclass(frozen=True)
class RouteOutcome:
    point_id: str
    route: Route | None = None
    failure: PointFailure | None = None


def raise_if_cancelled(
    cancel_event: threading.Event | None,
    deadline_monotonic_s: float | None,
) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise PlanningCancelledError(cause="cancel_event")
    if deadline_monotonic_s is not None and time.monotonic() >= float(deadline_monotonic_s):
        raise PlanningCancelledError("planning run deadline exceeded", cause="timeout")


def shortest_path_to_nearest_target(
    graph: RouteGraph,
    *,
    source: int,
    targets: frozenset[int] | set[int],
    tie_epsilon: float = 1e-9,
    target_components: frozenset[int] | set[int] | None = None,
    explored_counter: list[int] | None = None,
    deadline_monotonic_s: float | None = None,
    cancel_event: threading.Event | None = None,
) -> PathResult:
    """Dijkstra from ``source`` that stops at the first settled target.

    Targets settled within ``tie_epsilon`` of the first one compete on node id,
    smallest wins. Equal-cost predecessors also resolve to the smaller node id.
    """
    if not targets:
        raise PathNotFoundError("no targets")
    if source in targets:
        return PathResult(nodes=(source,), cost=0.0)
    components = (
        target_components
        if target_components is not None
        else {graph.component_by_node[t] for t in targets}
    )
    if graph.component_by_node[source] not in components:
        raise PathNotFoundError("no served node in source component")
    raise_if_cancelled(cancel_event, deadline_monotonic_s)

    dist: dict[int, float] = {source: 0.0}
    pred: dict[int, int] = {}
    settled: set[int] = set()
    heap: list[tuple[float, int]] = [(0.0, source)]
    found_cost: float | None = None
    found: list[int] = []
    while heap:
        cost, node = heapq.heappop(heap)
        if node in settled:
            continue
        if found_cost is not None and cost > found_cost + tie_epsilon:
            break
        settled.add(node)
        if explored_counter is not None:
            explored_counter[0] += 1
        if len(settled) % CANCEL_CHECK_INTERVAL == 0:
            raise_if_cancelled(cancel_event, deadline_monotonic_s)
        if node in targets:
            if found_cost is None:
                found_cost = cost
            found.append(node)
            continue
        for nxt, edge_id in graph.adjacency[node]:
            if nxt in settled:
                continue
            new_cost = cost + graph.edges[edge_id].length
            prior = dist.get(nxt)
            if prior is None or new_cost < prior - tie_epsilon:
                dist[nxt] = new_cost
                pred[nxt] = node
                heapq.heappush(heap, (new_cost, nxt))
            elif new_cost <= prior + tie_epsilon and node < pred.get(nxt, node):
                pred[nxt] = node
                if new_cost < prior:
                    dist[nxt] = new_cost
                    heapq.heappush(heap, (new_cost, nxt))

    if not found:
        raise PathNotFoundError("no path")
    target = min(found)
    path = [target]
    while path[-1] != source:
        path.append(pred[path[-1]])
    path.reverse()
    nodes = tuple(path)
    edge_ids = path_edge_ids(graph, nodes)
    return PathResult(nodes=nodes, cost=float(sum(graph.edges[e].length for e in edge_ids)))


def solve_unserved_point(
    graph: RouteGraph,
    point: SnappedPoint,
    targets: ServedTargets,
    *,
    tie_epsilon: float = 1e-9,
    deadline_monotonic_s: float | None = None,
    cancel_event: threading.Event | None = None,
) -> RouteOutcome:
    explored_counter = [0]
    try:
        result = shortest_path_to_nearest_target(
            graph,
            source=point.node_id,
            targets=targets.nodes,
            tie_epsilon=tie_epsilon,
            target_components=targets.components,
            explored_counter=explored_counter,
            deadline_monotonic_s=deadline_monotonic_s,
            cancel_event=cancel_event,
        )
    except PathNotFoundError as exc:
        return RouteOutcome(
            point_id=point.point_id,
            failure=PointFailure(
                point_id=point.point_id,
                role=point.role,
                reason_code="unreachable",
                detail=str(exc).strip() or "no path",
                snap_distance=point.snap_distance,
                node_id=point.node_id,
            ),
        )
    target_node = result.nodes[-1]
    return RouteOutcome(
        point_id=point.point_id,
        route=Route(
            point_id=point.point_id,
            source_node=point.node_id,
            target_node=target_node,
            nodes=result.nodes,
            edge_ids=path_edge_ids(graph, result.nodes),
            cost=result.cost,
            snap_distance=point.snap_distance,
            served_point_ids=targets.point_ids_by_node.get(target_node, ()),
            explored_states=int(explored_counter[0]),
        ),
    )
