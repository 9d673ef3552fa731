from __future__ import annotations

import asyncio
import threading
import time
import uuid
from dataclasses import dataclass

from .geo import LocalProjection, projection_for
from .logging_utils import log_event, log_warning_event
from .models import PlanningConfig, PlanningPointIn, PlanningRequest, RoadSegmentIn
from .planning_errors import PlanningCancelledError
from .route_aggregator import RouteSet, aggregate_routes
from .route_solver import RouteOutcome, ServedTargets, raise_if_cancelled, solve_unserved_point
from .routing_graph import RouteGraph, build_route_graph
from .spatial_index import NodeSpatialIndex, PointFailure, SnappedPoint


@dataclass(frozen=True)
class PreparedRun:
    """Everything shared read-only by the per-point solves of one run."""

    run_id: str
    config: PlanningConfig
    graph: RouteGraph
    projection: LocalProjection | None
    targets: ServedTargets
    unserved: tuple[SnappedPoint, ...]
    excluded_served: tuple[PointFailure, ...]
    snap_failures: tuple[PointFailure, ...]
    deadline_monotonic_s: float | None
    started_at: float


@dataclass(frozen=True)
class PlanningResult:
    run_id: str
    route_set: RouteSet
    graph: RouteGraph
    projection: LocalProjection | None
    config: PlanningConfig
    duration_ms: float


def _project_request(
    request: PlanningRequest,
) -> tuple[list[RoadSegmentIn], list[PlanningPointIn], list[PlanningPointIn], LocalProjection | None]:
    if request.config.coordinate_reference != "wgs84":
        return list(request.roads), list(request.served), list(request.unserved), None

    projection = projection_for(vertex for road in request.roads for vertex in road.vertices)
    roads = [
        road.model_copy(update={"vertices": [projection.to_planar(lon, lat) for lon, lat in road.vertices]})
        for road in request.roads
    ]

    def project_points(points: list[PlanningPointIn]) -> list[PlanningPointIn]:
        out: list[PlanningPointIn] = []
        for point in points:
            x, y = projection.to_planar(point.x, point.y)
            out.append(PlanningPointIn(point_id=point.point_id, x=x, y=y))
        return out

    return roads, project_points(request.served), project_points(request.unserved), projection


def prepare_run(
    request: PlanningRequest,
    *,
    run_id: str | None = None,
    cancel_event: threading.Event | None = None,
) -> PreparedRun:
    config = request.config
    started_at = time.perf_counter()
    deadline = time.monotonic() + float(config.timeout_s) if config.timeout_s is not None else None
    rid = run_id or str(uuid.uuid4())
    log_event(
        "planning_run_started",
        run_id=rid,
        road_count=len(request.roads),
        served_count=len(request.served),
        unserved_count=len(request.unserved),
        coordinate_reference=config.coordinate_reference,
        dedup_tolerance=config.dedup_tolerance,
        max_snap_radius=config.max_snap_radius,
        concurrency=config.concurrency,
        timeout_s=config.timeout_s,
    )

    roads, served, unserved, projection = _project_request(request)
    graph = build_route_graph(roads, dedup_tolerance=config.dedup_tolerance)
    raise_if_cancelled(cancel_event, deadline)

    index = NodeSpatialIndex(graph, tie_epsilon=config.tie_epsilon)
    served_snapped, served_failures = index.snap_points(
        served, role="served", max_radius=config.max_snap_radius
    )
    unserved_snapped, unserved_failures = index.snap_points(
        unserved, role="unserved", max_radius=config.max_snap_radius
    )
    return PreparedRun(
        run_id=rid,
        config=config,
        graph=graph,
        projection=projection,
        targets=ServedTargets.from_snapped(graph, served_snapped),
        unserved=tuple(sorted(unserved_snapped, key=lambda p: p.point_id)),
        excluded_served=tuple(served_failures),
        snap_failures=tuple(unserved_failures),
        deadline_monotonic_s=deadline,
        started_at=started_at,
    )


def _solve(prepared: PreparedRun, point: SnappedPoint, cancel_event: threading.Event | None) -> RouteOutcome:
    raise_if_cancelled(cancel_event, prepared.deadline_monotonic_s)
    return solve_unserved_point(
        prepared.graph,
        point,
        prepared.targets,
        tie_epsilon=prepared.config.tie_epsilon,
        deadline_monotonic_s=prepared.deadline_monotonic_s,
        cancel_event=cancel_event,
    )


def _finish(prepared: PreparedRun, outcomes: list[RouteOutcome]) -> PlanningResult:
    routes = [o.route for o in outcomes if o.route is not None]
    unreachable = [o.failure for o in outcomes if o.failure is not None]
    route_set = aggregate_routes(
        routes,
        graph=prepared.graph,
        unreachable=[*prepared.snap_failures, *unreachable],
        excluded_served=prepared.excluded_served,
    )
    duration_ms = round((time.perf_counter() - prepared.started_at) * 1000, 2)
    totals = route_set.totals
    log_event(
        "planning_run_completed",
        run_id=prepared.run_id,
        node_count=prepared.graph.node_count,
        edge_count=prepared.graph.edge_count,
        connected_count=totals.connected_count,
        unreachable_count=totals.unreachable_count,
        excluded_served_count=totals.excluded_served_count,
        total_unique_length=round(totals.total_unique_length, 6),
        duration_ms=duration_ms,
    )
    return PlanningResult(
        run_id=prepared.run_id,
        route_set=route_set,
        graph=prepared.graph,
        projection=prepared.projection,
        config=prepared.config,
        duration_ms=duration_ms,
    )


def _log_cancelled(run_id: str, cause: str) -> None:
    log_warning_event("planning_run_cancelled", run_id=run_id, cause=cause)


def run_planning(
    request: PlanningRequest,
    *,
    cancel_event: threading.Event | None = None,
    run_id: str | None = None,
) -> PlanningResult:
    rid = run_id or str(uuid.uuid4())
    try:
        prepared = prepare_run(request, run_id=rid, cancel_event=cancel_event)
        outcomes = [_solve(prepared, point, cancel_event) for point in prepared.unserved]
        raise_if_cancelled(cancel_event, prepared.deadline_monotonic_s)
    except PlanningCancelledError as exc:
        _log_cancelled(rid, str((exc.details or {}).get("cause", "cancel_event")))
        raise
    return _finish(prepared, outcomes)


async def run_planning_async(
    request: PlanningRequest,
    *,
    cancel_event: threading.Event | None = None,
    run_id: str | None = None,
) -> PlanningResult:
    """Solve unserved points in worker threads, at most ``config.concurrency`` at a time.

    Cancelling the awaiting task sets the shared cancel event so solves still
    running in threads stop at their next check.
    """
    rid = run_id or str(uuid.uuid4())
    event = cancel_event if cancel_event is not None else threading.Event()
    try:
        prepared = await asyncio.to_thread(prepare_run, request, run_id=rid, cancel_event=event)
        sem = asyncio.Semaphore(prepared.config.concurrency)

        async def one(point: SnappedPoint) -> RouteOutcome:
            async with sem:
                return await asyncio.to_thread(_solve, prepared, point, event)

        results = await asyncio.gather(*[one(p) for p in prepared.unserved], return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                event.set()
                raise result
        raise_if_cancelled(event, prepared.deadline_monotonic_s)
    except asyncio.CancelledError:
        event.set()
        _log_cancelled(rid, "task_cancelled")
        raise
    except PlanningCancelledError as exc:
        event.set()
        _log_cancelled(rid, str((exc.details or {}).get("cause", "cancel_event")))
        raise
    return _finish(prepared, [r for r in results if isinstance(r, RouteOutcome)])


def plan_routes(
    request: PlanningRequest,
    *,
    cancel_event: threading.Event | None = None,
) -> RouteSet:
    return run_planning(request, cancel_event=cancel_event).route_set


async def plan_routes_async(
    request: PlanningRequest,
    *,
    cancel_event: threading.Event | None = None,
) -> RouteSet:
    result = await run_planning_async(request, cancel_event=cancel_event)
    return result.route_set
