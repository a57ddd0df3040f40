"""Bounding boxes and distance helpers shared by pricing, eligibility and validation."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Dict, Iterable

from ridefare.domain import Coordinates, RouteMetrics, ServiceType

EARTH_RADIUS_KM = 6371.0
ROUTING_FACTOR = 1.4  # straight line -> typical driving distance
MINUTES_PER_KM = 1.8


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned lat/lon box, inclusive on every edge."""
    min_lat: float
    max_lat: float
    min_lon: float
    max_lon: float

    def contains(self, coords: Coordinates) -> bool:
        lon, lat = coords
        return self.min_lat <= lat <= self.max_lat and self.min_lon <= lon <= self.max_lon


DOWNTOWN_AREAS: Dict[str, BoundingBox] = {
    "sf_financial_district": BoundingBox(min_lat=37.785, max_lat=37.805, min_lon=-122.415, max_lon=-122.395),
    "downtown_san_jose": BoundingBox(min_lat=37.325, max_lat=37.345, min_lon=-121.895, max_lon=-121.875),
}

SERVICE_AREAS: Dict[ServiceType, Dict[str, BoundingBox]] = {
    ServiceType.WAYMO: {
        "san_francisco": BoundingBox(min_lat=37.7, max_lat=37.82, min_lon=-122.52, max_lon=-122.35),
        "peninsula": BoundingBox(min_lat=37.4, max_lat=37.7, min_lon=-122.5, max_lon=-122.1),
    },
}

# Region accepted at the request boundary (Bay Area).
SERVICE_REGION = BoundingBox(min_lat=36.5, max_lat=38.5, min_lon=-123.5, max_lon=-121.0)


def _in_any(coords: Coordinates, boxes: Iterable[BoundingBox]) -> bool:
    return any(box.contains(coords) for box in boxes)


def is_downtown(coords: Coordinates) -> bool:
    """Return True if coords fall in a configured downtown box."""
    return _in_any(coords, DOWNTOWN_AREAS.values())


def in_service_area(service: ServiceType, coords: Coordinates) -> bool:
    """Return True if a geofenced service operates at coords; non-geofenced services always do."""
    areas = SERVICE_AREAS.get(service)
    if areas is None:
        return True
    return _in_any(coords, areas.values())


def haversine_km(a: Coordinates, b: Coordinates) -> float:
    """Great-circle distance between two (lon, lat) points in kilometres."""
    lon1, lat1 = a
    lon2, lat2 = b
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    h = (math.sin(d_lat / 2) ** 2
         + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2)
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def estimate_route_metrics(pickup: Coordinates, destination: Coordinates) -> RouteMetrics:
    """Straight-line fallback when the router is unavailable.

    Distance is the haversine distance scaled by a routing factor; duration
    assumes 1.8 minutes per km. Identical endpoints still yield a small positive
    trip so downstream math never divides by zero.
    """
    distance_km = max(haversine_km(pickup, destination) * ROUTING_FACTOR, 0.1)
    return RouteMetrics(distance_km=distance_km, duration_min=distance_km * MINUTES_PER_KM)
