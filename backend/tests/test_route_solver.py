from __future__ import annotations

import math
import random
import threading
import time

import pytest

from fiber_planner.planning_errors import PlanningCancelledError
from fiber_planner.route_solver import (
    PathNotFoundError,
    ServedTargets,
    shortest_path_to_nearest_target,
    solve_unserved_point,
)
from fiber_planner.routing_graph import RouteGraph, build_route_graph, path_length
from fiber_planner.spatial_index import SnappedPoint


def _square() -> RouteGraph:
    # A=0 (0,0), B=1 (1,0), C=2 (1,1), D=3 (0,1)
    return build_route_graph(
        [{"vertices": [[0, 0], [1, 0], [1, 1], [0, 1], [0, 0]]}],
        dedup_tolerance=0.0,
    )


def _random_graph(rng: random.Random) -> RouteGraph:
    points = [(rng.uniform(0.0, 100.0), rng.uniform(0.0, 100.0)) for _ in range(rng.randint(4, 12))]
    segments = []
    for _ in range(rng.randint(3, 20)):
        a, b = rng.sample(range(len(points)), 2)
        segments.append({"vertices": [points[a], points[b]]})
    return build_route_graph(segments, dedup_tolerance=0.0)


def _floyd_warshall(graph: RouteGraph) -> list[list[float]]:
    n = graph.node_count
    dist = [[0.0 if i == j else math.inf for j in range(n)] for i in range(n)]
    for edge in graph.edges:
        dist[edge.u][edge.v] = min(dist[edge.u][edge.v], edge.length)
        dist[edge.v][edge.u] = min(dist[edge.v][edge.u], edge.length)
    for k in range(n):
        for i in range(n):
            for j in range(n):
                if dist[i][k] + dist[k][j] < dist[i][j]:
                    dist[i][j] = dist[i][k] + dist[k][j]
    return dist


def test_square_picks_smaller_intermediate_corner_on_tie() -> None:
    graph = _square()

    result = shortest_path_to_nearest_target(graph, source=2, targets={0})

    assert result.cost == pytest.approx(2.0)
    assert result.nodes == (2, 1, 0)


def test_source_on_target_is_zero_cost() -> None:
    result = shortest_path_to_nearest_target(_square(), source=3, targets={3, 1})
    assert result.nodes == (3,)
    assert result.cost == 0.0


def test_equal_cost_targets_resolve_to_smallest_id() -> None:
    # From C both B and D are one unit away.
    result = shortest_path_to_nearest_target(_square(), source=2, targets={3, 1})
    assert result.nodes == (2, 1)


def test_matches_floyd_warshall_on_random_graphs() -> None:
    for seed in range(30):
        rng = random.Random(seed)
        graph = _random_graph(rng)
        n = graph.node_count
        dist = _floyd_warshall(graph)
        targets = set(rng.sample(range(n), k=rng.randint(1, min(3, n))))

        for source in range(n):
            expected = min(dist[source][t] for t in targets)
            if math.isinf(expected):
                with pytest.raises(PathNotFoundError):
                    shortest_path_to_nearest_target(graph, source=source, targets=targets)
                continue

            result = shortest_path_to_nearest_target(graph, source=source, targets=targets)
            target = result.nodes[-1]
            assert result.nodes[0] == source
            assert result.cost == pytest.approx(expected, abs=1e-9)
            assert path_length(graph, result.nodes) == pytest.approx(result.cost, abs=1e-12)
            assert target == min(t for t in targets if dist[source][t] <= expected + 1e-9)


def test_component_without_targets_is_not_found() -> None:
    graph = build_route_graph(
        [{"vertices": [[0, 0], [1, 0]]}, {"vertices": [[10, 0], [11, 0]]}],
        dedup_tolerance=0.0,
    )
    with pytest.raises(PathNotFoundError, match="source component"):
        shortest_path_to_nearest_target(graph, source=2, targets={0})
    with pytest.raises(PathNotFoundError):
        shortest_path_to_nearest_target(graph, source=2, targets=set())


def test_solve_unserved_point_maps_missing_path_to_unreachable() -> None:
    graph = build_route_graph(
        [{"vertices": [[0, 0], [1, 0]]}, {"vertices": [[10, 0], [11, 0]]}],
        dedup_tolerance=0.0,
    )
    targets = ServedTargets.from_snapped(
        graph, [SnappedPoint(point_id="s1", role="served", node_id=0, snap_distance=0.0)]
    )
    point = SnappedPoint(point_id="u1", role="unserved", node_id=3, snap_distance=0.25)

    outcome = solve_unserved_point(graph, point, targets)

    assert outcome.route is None
    assert outcome.failure is not None
    assert outcome.failure.reason_code == "unreachable"
    assert outcome.failure.node_id == 3
    assert outcome.failure.snap_distance == 0.25


def test_solve_unserved_point_builds_route() -> None:
    graph = _square()
    targets = ServedTargets.from_snapped(
        graph,
        [
            SnappedPoint(point_id="s-b", role="served", node_id=0, snap_distance=0.0),
            SnappedPoint(point_id="s-a", role="served", node_id=0, snap_distance=0.1),
        ],
    )
    point = SnappedPoint(point_id="u1", role="unserved", node_id=2, snap_distance=0.0)

    outcome = solve_unserved_point(graph, point, targets)

    assert outcome.failure is None
    route = outcome.route
    assert route is not None
    assert route.target_node == 0
    assert route.served_point_ids == ("s-a", "s-b")
    assert route.edge_ids == (graph.edge_between(2, 1).edge_id, graph.edge_between(1, 0).edge_id)
    assert route.cost == pytest.approx(2.0)
    assert route.explored_states > 0


def test_cancel_event_stops_search() -> None:
    event = threading.Event()
    event.set()
    with pytest.raises(PlanningCancelledError) as excinfo:
        shortest_path_to_nearest_target(_square(), source=2, targets={0}, cancel_event=event)
    assert excinfo.value.reason_code == "planning_cancelled"
    assert excinfo.value.details == {"cause": "cancel_event"}


def test_expired_deadline_stops_search() -> None:
    with pytest.raises(PlanningCancelledError) as excinfo:
        shortest_path_to_nearest_target(
            _square(),
            source=2,
            targets={0},
            deadline_monotonic_s=time.monotonic() - 1.0,
        )
    assert excinfo.value.details == {"cause": "timeout"}
