from __future__ import annotations

import math

import pytest

from fiber_planner.route_aggregator import aggregate_routes
from fiber_planner.route_solver import ServedTargets, solve_unserved_point
from fiber_planner.routing_graph import RouteGraph, build_route_graph
from fiber_planner.spatial_index import PointFailure, SnappedPoint


def _y_graph() -> RouteGraph:
    # Trunk 0-1-2 along the x axis, branches 2-3 and 2-4.
    return build_route_graph(
        [
            {"segment_id": "trunk", "vertices": [[0, 0], [5, 0], [10, 0]]},
            {"segment_id": "north", "vertices": [[10, 0], [20, 5]]},
            {"segment_id": "south", "vertices": [[10, 0], [20, -5]]},
        ],
        dedup_tolerance=0.0,
    )


def _routes(graph: RouteGraph):
    targets = ServedTargets.from_snapped(
        graph, [SnappedPoint(point_id="hub", role="served", node_id=0, snap_distance=0.0)]
    )
    outcomes = [
        solve_unserved_point(graph, SnappedPoint(point_id=pid, role="unserved", node_id=node, snap_distance=0.0), targets)
        for pid, node in (("u-north", 3), ("u-south", 4))
    ]
    return [o.route for o in outcomes if o.route is not None]


def test_shared_edges_counted_once_and_ranked_first() -> None:
    graph = _y_graph()
    routes = _routes(graph)
    branch = math.hypot(10.0, 5.0)

    route_set = aggregate_routes(routes, graph=graph)
    totals = route_set.totals

    assert totals.total_unique_length == pytest.approx(10.0 + 2 * branch)
    assert totals.total_route_cost == pytest.approx(2 * (10.0 + branch))
    assert totals.shared_length == pytest.approx(10.0)
    assert totals.connected_count == 2
    assert totals.segment_count == 4

    ranked = [(s.u, s.v, s.route_count) for s in route_set.segments]
    assert ranked == [(0, 1, 2), (1, 2, 2), (2, 3, 1), (2, 4, 1)]
    assert route_set.segments[0].point_ids == ("u-north", "u-south")
    assert route_set.segments[0].segment_id == "trunk"


def test_unique_length_is_strictly_less_when_edges_are_shared() -> None:
    graph = _y_graph()
    totals = aggregate_routes(_routes(graph), graph=graph).totals
    assert totals.total_unique_length < totals.total_route_cost

    solo = aggregate_routes(_routes(graph)[:1], graph=graph).totals
    assert solo.total_unique_length == pytest.approx(solo.total_route_cost)
    assert solo.shared_length == 0.0


def test_runs_chain_segments_with_the_same_routes() -> None:
    graph = _y_graph()
    route_set = aggregate_routes(_routes(graph), graph=graph)

    runs = [(r.nodes, r.route_count, r.point_ids) for r in route_set.runs]
    assert runs == [
        ((0, 1, 2), 2, ("u-north", "u-south")),
        ((2, 3), 1, ("u-north",)),
        ((2, 4), 1, ("u-south",)),
    ]
    assert route_set.runs[0].length == pytest.approx(10.0)
    assert route_set.runs[0].edge_ids == (0, 1)


def test_input_order_does_not_change_the_result() -> None:
    graph = _y_graph()
    routes = _routes(graph)
    failures = [
        PointFailure(point_id="z", role="unserved", reason_code="unreachable", detail="no path"),
        PointFailure(point_id="a", role="unserved", reason_code="snap_failure", detail="too far"),
    ]

    forward = aggregate_routes(routes, graph=graph, unreachable=failures)
    backward = aggregate_routes(list(reversed(routes)), graph=graph, unreachable=list(reversed(failures)))

    assert forward == backward
    assert [f.point_id for f in forward.unreachable] == ["a", "z"]
    assert forward.totals.unreachable_count == 2
    assert forward.totals.snap_failure_count == 1


def test_empty_route_set() -> None:
    graph = _y_graph()
    excluded = [PointFailure(point_id="s9", role="served", reason_code="snap_failure", detail="too far")]

    route_set = aggregate_routes([], graph=graph, excluded_served=excluded)

    assert route_set.routes == ()
    assert route_set.segments == ()
    assert route_set.runs == ()
    assert route_set.totals.total_unique_length == 0.0
    assert route_set.totals.excluded_served_count == 1
