# tourmap/api/distance.py
"""Great-circle distances between tour venues."""

from __future__ import annotations

import math
from typing import Dict, Iterable, List, Sequence

from tourmap.api.models import Route, Venue

EARTH_RADIUS_KM = 6371.0
KM_TO_MILES = 0.621371


def _round1(value: float) -> float:
    return round(value, 1)


def distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine distance in kilometres, rounded to one decimal place."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlmb = math.radians(lon2 - lon1)

    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlmb / 2) ** 2
    # Float noise can push a a hair past 1 for antipodal points.
    a = min(1.0, a)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return _round1(EARTH_RADIUS_KM * c)


def km_to_miles(km: float) -> float:
    return _round1(km * KM_TO_MILES)


def routes_from_venues(ordered_venues: Sequence[Venue]) -> List[Route]:
    """Build one route per consecutive pair, in the order given."""
    routes = []
    for i in range(len(ordered_venues) - 1):
        a = ordered_venues[i]
        b = ordered_venues[i + 1]
        km = distance(a.latitude, a.longitude, b.latitude, b.longitude)
        routes.append(
            Route(from_venue=a, to_venue=b, distance_km=km, distance_miles=km_to_miles(km))
        )
    return routes


def total_distance(routes: Iterable[Route]) -> Dict[str, float]:
    """Sum per-route kilometres and, separately, per-route miles."""
    routes = list(routes)
    return {
        "km": _round1(sum(route.distance_km for route in routes)),
        "miles": _round1(sum(route.distance_miles for route in routes)),
    }


__all__ = ["distance", "km_to_miles", "routes_from_venues", "total_distance"]
