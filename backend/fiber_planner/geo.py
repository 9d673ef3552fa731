from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable

EARTH_RADIUS_M = 6_371_000.0


def planar_distance(x1: float, y1: float, x2: float, y2: float) -> float:
    return math.hypot(x2 - x1, y2 - y1)


@dataclass(frozen=True)
class LocalProjection:
    """Equirectangular projection around a reference point, in metres.

    Accurate to well under a metre across the few-kilometre extents of a
    planning area; not intended for continental-scale inputs.
    """

    ref_lon: float
    ref_lat: float

    @property
    def _metres_per_deg_lat(self) -> float:
        return math.radians(1.0) * EARTH_RADIUS_M

    @property
    def _metres_per_deg_lon(self) -> float:
        return self._metres_per_deg_lat * math.cos(math.radians(self.ref_lat))

    def to_planar(self, lon: float, lat: float) -> tuple[float, float]:
        return (
            (lon - self.ref_lon) * self._metres_per_deg_lon,
            (lat - self.ref_lat) * self._metres_per_deg_lat,
        )

    def to_geographic(self, x: float, y: float) -> tuple[float, float]:
        per_lon = self._metres_per_deg_lon
        lon = self.ref_lon + (x / per_lon if per_lon else 0.0)
        lat = self.ref_lat + y / self._metres_per_deg_lat
        return lon, lat


def projection_for(coords: Iterable[tuple[float, float]]) -> LocalProjection:
    """Centre a projection on the mean of the finite (lon, lat) pairs given."""
    sum_lon = 0.0
    sum_lat = 0.0
    count = 0
    for lon, lat in coords:
        if not (math.isfinite(lon) and math.isfinite(lat)):
            continue
        sum_lon += lon
        sum_lat += lat
        count += 1
    if count == 0:
        return LocalProjection(ref_lon=0.0, ref_lat=0.0)
    return LocalProjection(ref_lon=sum_lon / count, ref_lat=sum_lat / count)
