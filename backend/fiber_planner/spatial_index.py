from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Literal

import numpy as np
from scipy.spatial import cKDTree

from .models import PlanningPointIn
from .planning_errors import PlanningConfigError
from .routing_graph import RouteGraph

PointRole = Literal["served", "unserved"]


@dataclass(frozen=True)
class SnapMatch:
    node_id: int
    distance: float


@dataclass(frozen=True)
class SnappedPoint:
    point_id: str
    role: PointRole
    node_id: int
    snap_distance: float


@dataclass(frozen=True)
class PointFailure:
    point_id: str
    role: PointRole
    reason_code: str  # snap_failure | unreachable
    detail: str
    snap_distance: float | None = None
    node_id: int | None = None


class NodeSpatialIndex:
    """Nearest-node lookup over a graph's node coordinates.

    Backed by a k-d tree; immutable once built, so concurrent queries need no locking.
    """

    def __init__(self, graph: RouteGraph, *, tie_epsilon: float = 1e-9) -> None:
        self.tie_epsilon = float(tie_epsilon)
        self.node_count = graph.node_count
        coords = np.array([(node.x, node.y) for node in graph.nodes], dtype=float).reshape(-1, 2)
        self._coords = coords
        self._tree = cKDTree(coords) if self.node_count else None

    def nearest(self, coordinate: tuple[float, float], max_radius: float) -> SnapMatch | None:
        radius = float(max_radius)
        if not math.isfinite(radius) or radius < 0.0:
            raise PlanningConfigError("max_radius must be a finite, non-negative distance", max_radius=max_radius)
        x, y = float(coordinate[0]), float(coordinate[1])
        if self._tree is None or not (math.isfinite(x) and math.isfinite(y)):
            return None

        bound = radius + self.tie_epsilon
        dist, idx = self._tree.query((x, y), k=1, distance_upper_bound=float(np.nextafter(bound, np.inf)))
        best_dist = float(dist)
        if not math.isfinite(best_dist) or int(idx) >= self.node_count or best_dist > bound:
            return None

        # Equidistant nodes (within epsilon) resolve to the smallest node id.
        tied = self._tree.query_ball_point((x, y), r=best_dist + self.tie_epsilon)
        node_id = min(int(i) for i in tied) if len(tied) else int(idx)
        nx, ny = self._coords[node_id]
        return SnapMatch(node_id=node_id, distance=float(math.hypot(float(nx) - x, float(ny) - y)))

    def snap_points(
        self,
        points: Sequence[PlanningPointIn],
        *,
        role: PointRole,
        max_radius: float,
    ) -> tuple[list[SnappedPoint], list[PointFailure]]:
        snapped: list[SnappedPoint] = []
        failures: list[PointFailure] = []
        for point in points:
            match = self.nearest((point.x, point.y), max_radius)
            if match is None:
                failures.append(
                    PointFailure(
                        point_id=point.point_id,
                        role=role,
                        reason_code="snap_failure",
                        detail=f"no graph node within {float(max_radius):g} of ({point.x:g}, {point.y:g})",
                    )
                )
                continue
            snapped.append(
                SnappedPoint(
                    point_id=point.point_id,
                    role=role,
                    node_id=match.node_id,
                    snap_distance=match.distance,
                )
            )
        return snapped, failures
