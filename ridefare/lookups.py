"""Cache-or-fetch wrappers around the geocoder and router."""

from __future__ import annotations

from typing import Optional

import requests

from ridefare.airports import get_airport_by_code, parse_airport_code
from ridefare.cache import TTLCache
from ridefare.data_sources.base import Geocoder, Router
from ridefare.domain import Coordinates, RouteMetrics
from ridefare.errors import RoutingError
from ridefare.geo import estimate_route_metrics
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="lookups")


def route_cache_key(pickup: Coordinates, destination: Coordinates) -> str:
    return f"{pickup[0]},{pickup[1]}-{destination[0]},{destination[1]}"


class GeocodeLookup:
    """Resolve addresses to coordinates through a TTL cache.

    Returns None for addresses the geocoder does not know. Transport failures
    surface as GeocodingUnavailableError from the geocoder and are not cached.
    """

    def __init__(self, geocoder: Geocoder, cache: TTLCache[Coordinates]) -> None:
        self.geocoder = geocoder
        self.cache = cache

    def get(self, address: str) -> Optional[Coordinates]:
        key = address.strip().lower()
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("Geocode cache hit", extra={"address": key})
            return cached

        code = parse_airport_code(address)
        airport = get_airport_by_code(code) if code else None
        if airport is not None:
            self.cache.set(key, airport.coordinates)
            return airport.coordinates

        logger.debug("Geocode cache miss", extra={"address": key})
        candidates = self.geocoder.search(address)
        if not candidates:
            logger.info("Address could not be resolved", extra={"address": key})
            return None
        coords = candidates[0]
        self.cache.set(key, coords)
        return coords


class RouteMetricsLookup:
    """Route metrics through a TTL cache keyed by both endpoints."""

    def __init__(self, router: Router, cache: TTLCache[RouteMetrics]) -> None:
        self.router = router
        self.cache = cache

    def get(self, pickup: Coordinates, destination: Coordinates) -> RouteMetrics:
        """Return cached or freshly routed metrics; router failures propagate."""
        key = route_cache_key(pickup, destination)
        cached = self.cache.get(key)
        if cached is not None:
            logger.debug("Route cache hit", extra={"route": key})
            return cached
        logger.debug("Route cache miss", extra={"route": key})
        metrics = self.router.route(pickup, destination)
        self.cache.set(key, metrics)
        return metrics

    def get_or_estimate(self, pickup: Coordinates, destination: Coordinates) -> RouteMetrics:
        """Like get(), but fall back to the straight-line estimate when routing fails.

        Estimates are not cached so the router is tried again on the next call.
        """
        try:
            return self.get(pickup, destination)
        except (RoutingError, requests.RequestException) as exc:
            logger.warning("Routing failed; using straight-line estimate", extra={"error": str(exc)})
            return estimate_route_metrics(pickup, destination)
