"""Persistence collaborators notified after a comparison is computed.

Only the route lookup is awaited (its id is part of the response); price
snapshots and search logs are handed to a background executor whose failures
are logged and never reach the caller.
"""

from __future__ import annotations

import hashlib
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Protocol

from ridefare.domain import Coordinates, RideResult, ServiceType, TrafficLevel
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="recorders")


@dataclass(frozen=True)
class RouteRecord:
    pickup_address: str
    pickup: Coordinates
    destination_address: str
    destination: Coordinates
    distance_km: float
    duration_min: float


@dataclass(frozen=True)
class PriceSnapshot:
    route_id: str
    service: ServiceType
    final_fare: float
    surge_multiplier: float
    wait_minutes: int
    surge_reason: str
    traffic_level: TrafficLevel


class ComparisonRecorder(Protocol):
    """Protocol for comparison persistence backends."""

    def record_route(self, route: RouteRecord) -> Optional[str]:
        """Find or create the route and return its id, or None when not stored."""

    def record_price_snapshot(self, snapshot: PriceSnapshot) -> None:
        """Store one per-service price observation."""

    def record_search(
        self,
        route_id: str,
        user_id: Optional[str],
        results: Mapping[ServiceType, RideResult],
        session_id: Optional[str] = None,
    ) -> None:
        """Store that a comparison was requested."""


class NullRecorder(ComparisonRecorder):
    """Records nothing; comparisons come back without a route id."""

    def record_route(self, route: RouteRecord) -> Optional[str]:
        return None

    def record_price_snapshot(self, snapshot: PriceSnapshot) -> None:
        return None

    def record_search(self, route_id, user_id, results, session_id=None) -> None:
        return None


class LoggingRecorder(ComparisonRecorder):
    """Writes routes, snapshots and searches to the application log."""

    @staticmethod
    def route_id_for(route: RouteRecord) -> str:
        """Stable id for a pickup/destination pair."""
        raw = f"{route.pickup[0]:.5f},{route.pickup[1]:.5f}|{route.destination[0]:.5f},{route.destination[1]:.5f}"
        return "route_" + hashlib.sha1(raw.encode("utf-8")).hexdigest()[:12]

    def record_route(self, route: RouteRecord) -> Optional[str]:
        route_id = self.route_id_for(route)
        logger.info(
            "Route recorded",
            extra={
                "route_id": route_id,
                "pickup_address": route.pickup_address,
                "destination_address": route.destination_address,
                "distance_km": round(route.distance_km, 2),
                "duration_min": round(route.duration_min, 2),
            },
        )
        return route_id

    def record_price_snapshot(self, snapshot: PriceSnapshot) -> None:
        logger.info(
            "Price snapshot",
            extra={
                "route_id": snapshot.route_id,
                "service": snapshot.service.value,
                "final_fare": round(snapshot.final_fare, 2),
                "surge_multiplier": snapshot.surge_multiplier,
                "wait_minutes": snapshot.wait_minutes,
                "traffic_level": snapshot.traffic_level.value,
            },
        )

    def record_search(self, route_id, user_id, results, session_id=None) -> None:
        logger.info(
            "Search recorded",
            extra={
                "route_id": route_id,
                "user_id": user_id,
                "session_id": session_id,
                "services": sorted(s.value for s in results),
            },
        )


class BackgroundDispatcher:
    """Fire-and-forget executor for recorder calls."""

    def __init__(self, max_workers: int = 2) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="recorder")

    def submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        """Schedule fn; any exception it raises is logged at WARNING and dropped."""
        future = self._executor.submit(fn, *args, **kwargs)
        name = getattr(fn, "__name__", repr(fn))
        future.add_done_callback(lambda f: _log_failure(f, name))
        return future

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


def _log_failure(future: Future, name: str) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.warning("Background recorder call failed", extra={"call": name, "error": str(exc)})


def build_recorder(kind: str) -> ComparisonRecorder:
    """Return the recorder named by settings.recorder ("logging" or "none")."""
    kind = (kind or "none").lower()
    if kind == "logging":
        return LoggingRecorder()
    if kind != "none":
        logger.warning("Unknown recorder; recording disabled", extra={"recorder": kind})
    return NullRecorder()
