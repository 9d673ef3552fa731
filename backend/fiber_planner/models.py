from __future__ import annotations

import math
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .settings import settings

CoordinateReference = Literal["planar", "wgs84"]


class RoadSegmentIn(BaseModel):
    """One road polyline. Shape checks are left to the graph builder so that a bad
    segment surfaces as MalformedGeometryError rather than a validation error."""

    segment_id: str | None = None
    vertices: list[tuple[float, float]] = Field(default_factory=list)
    road_class: str = "unclassified"

    @field_validator("road_class", mode="before")
    @classmethod
    def normalise_road_class(cls, v: object) -> str:
        text = str(v or "").strip().lower()
        return text or "unclassified"


class PlanningPointIn(BaseModel):
    point_id: str = Field(..., min_length=1)
    x: float
    y: float

    @field_validator("x", "y")
    @classmethod
    def finite(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError("point coordinate must be finite")
        return v


class PlanningConfig(BaseModel):
    """Per-run configuration. Defaults come from env settings, callers override per run."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    dedup_tolerance: float = Field(default_factory=lambda: settings.dedup_tolerance, ge=0.0)
    max_snap_radius: float = Field(default_factory=lambda: settings.max_snap_radius, ge=0.0)
    concurrency: int = Field(default_factory=lambda: settings.solver_concurrency, ge=1, le=256)
    tie_epsilon: float = Field(default_factory=lambda: settings.tie_epsilon, gt=0.0)
    timeout_s: float | None = Field(
        default_factory=lambda: settings.plan_timeout_s if settings.plan_timeout_s > 0 else None,
        gt=0.0,
    )
    coordinate_reference: CoordinateReference = Field(
        default_factory=lambda: settings.coordinate_reference,
    )

    @field_validator("dedup_tolerance", "max_snap_radius", "tie_epsilon")
    @classmethod
    def finite(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError("distance settings must be finite")
        return v


class PlanningRequest(BaseModel):
    roads: list[RoadSegmentIn] = Field(default_factory=list)
    served: list[PlanningPointIn] = Field(default_factory=list)
    unserved: list[PlanningPointIn] = Field(default_factory=list)
    config: PlanningConfig = Field(default_factory=PlanningConfig)

    @model_validator(mode="after")
    def unique_point_ids(self) -> "PlanningRequest":
        for role, points in (("served", self.served), ("unserved", self.unserved)):
            seen: set[str] = set()
            for point in points:
                if point.point_id in seen:
                    raise ValueError(f"duplicate {role} point_id: {point.point_id}")
                seen.add(point.point_id)
        return self
