"""Interfaces for the external geocoding and routing providers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Protocol

from ridefare.domain import Coordinates, RouteMetrics


class Geocoder(Protocol):
    """Anything that can turn a free-text address into candidate coordinates."""

    def search(self, address: str) -> List[Coordinates]:
        """Return candidates best-first; an empty list means the address is unknown."""
        ...


class Router(Protocol):
    """Anything that can measure a driving route between two points."""

    def route(self, pickup: Coordinates, destination: Coordinates) -> RouteMetrics:
        """Return route metrics or raise RoutingError / requests.RequestException."""
        ...


@dataclass
class CallableGeocoder(Geocoder):
    """Wrap a plain function so it can stand in for a geocoder backend."""

    search_fn: Callable[[str], List[Coordinates]]

    def search(self, address: str) -> List[Coordinates]:
        """Delegate to the configured callable."""
        return self.search_fn(address)


@dataclass
class CallableRouter(Router):
    """Wrap a plain function so it can stand in for a router backend."""

    route_fn: Callable[[Coordinates, Coordinates], RouteMetrics]

    def route(self, pickup: Coordinates, destination: Coordinates) -> RouteMetrics:
        """Delegate to the configured callable."""
        return self.route_fn(pickup, destination)
