"""Driving routes from an OSRM /route endpoint."""
from __future__ import annotations

from ridefare.domain import Coordinates, RouteMetrics
from ridefare.errors import RoutingError
from ridefare.http_client import ResilientFetcher
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="osrm_client")

OSRM_ROUTE_URL = "https://router.project-osrm.org/route/v1/driving"


def format_coordinates(pickup: Coordinates, destination: Coordinates) -> str:
    """OSRM expects 'lon,lat;lon,lat'."""
    return f"{pickup[0]},{pickup[1]};{destination[0]},{destination[1]}"


class OSRMRouter:
    """Normalize OSRM route responses into RouteMetrics."""

    def __init__(self, fetcher: ResilientFetcher, base_url: str = OSRM_ROUTE_URL) -> None:
        self.fetcher = fetcher
        self.base_url = base_url

    def route(self, pickup: Coordinates, destination: Coordinates) -> RouteMetrics:
        """
        Call OSRM for the first route between two points.

        Raises RoutingError on non-2xx, a non-"Ok" code or an empty route list.
        Transport errors from the fetcher propagate unchanged after retries.
        """
        url = f"{self.base_url}/{format_coordinates(pickup, destination)}"
        resp = self.fetcher.fetch(url, params={"overview": "false"})
        if not resp.ok:
            raise RoutingError(f"OSRM request failed with status {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as exc:
            raise RoutingError("OSRM returned invalid JSON") from exc

        routes = data.get("routes") or []
        if data.get("code") != "Ok" or not routes:
            raise RoutingError(f"OSRM response invalid: {data.get('code')}")

        route = routes[0]
        metrics = RouteMetrics(
            distance_km=route["distance"] / 1000,
            duration_min=route["duration"] / 60,
            provider_duration_sec=route["duration"],
        )
        logger.debug(
            "Fetched route",
            extra={"distance_km": metrics.distance_km, "duration_min": metrics.duration_min},
        )
        return metrics
