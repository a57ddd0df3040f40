"""Orchestrate a multi-service fare comparison for one trip.

The service is built once at startup with its caches, lookups, pricing engine
and recorder, and passed to the HTTP layer. Tests build isolated instances with
fake providers.
"""

from __future__ import annotations

import datetime as dt
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from ridefare import config
from ridefare.cache import TTLCache
from ridefare.data_sources import Geocoder, Router, build_providers
from ridefare.domain import (
    DEFAULT_SERVICES,
    GEOFENCED_SERVICES,
    SERVICE_LABELS,
    ComparisonComputation,
    Coordinates,
    Place,
    PricingResult,
    RideResult,
    RouteMetrics,
    ServiceType,
    SurgeInfo,
    TrafficLevel,
)
from ridefare.errors import UnsupportedServiceError
from ridefare.geo import in_service_area
from ridefare.lookups import GeocodeLookup, RouteMetricsLookup
from ridefare.popular_routes import find_popular_route
from ridefare.pricing_config import load_pricing_config
from ridefare.pricing_engine import PricingEngine
from ridefare.recorders import (
    BackgroundDispatcher,
    ComparisonRecorder,
    NullRecorder,
    PriceSnapshot,
    RouteRecord,
    build_recorder,
)
from ridefare.validation import sanitize_string
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="comparison_service")

SURGE_ACTIVE_THRESHOLD = 1.05
NO_SERVICES_MESSAGE = "No ride services available for this route."

_BASE_WAIT_MINUTES = {ServiceType.UBER: 4, ServiceType.LYFT: 4, ServiceType.TAXI: 6, ServiceType.WAYMO: 7}
_MAX_WAIT_MINUTES = {ServiceType.WAYMO: 22}
_BASE_DRIVERS = {ServiceType.UBER: 5, ServiceType.LYFT: 4, ServiceType.TAXI: 3, ServiceType.WAYMO: 2}


@dataclass(frozen=True)
class ComparisonOptions:
    user_id: Optional[str] = None
    session_id: Optional[str] = None
    persist: bool = True
    pickup_address: Optional[str] = None
    destination_address: Optional[str] = None
    precomputed_metrics: Optional[RouteMetrics] = None
    popular_route_id: Optional[str] = None


def derive_wait_minutes(service: ServiceType, surge_multiplier: float, duration_min: float) -> int:
    """Service base wait plus a surge-band penalty and a trip-length term, clamped."""
    if surge_multiplier > 1.4:
        demand_penalty = 3
    elif surge_multiplier > 1.2:
        demand_penalty = 2
    elif surge_multiplier > SURGE_ACTIVE_THRESHOLD:
        demand_penalty = 1
    else:
        demand_penalty = 0
    trip_complexity = min(4, round(duration_min / 15))
    max_wait = _MAX_WAIT_MINUTES.get(service, 18)
    return max(2, min(max_wait, _BASE_WAIT_MINUTES[service] + demand_penalty + trip_complexity))


def derive_drivers_nearby(service: ServiceType, surge_multiplier: float, distance_km: float) -> int:
    if surge_multiplier > 1.4:
        surge_penalty = 2
    elif surge_multiplier > 1.2:
        surge_penalty = 1
    else:
        surge_penalty = 0
    distance_penalty = 1 if distance_km > 30 else 0
    return max(1, _BASE_DRIVERS[service] - surge_penalty - distance_penalty)


def snapshot_traffic_level(traffic_multiplier: float) -> TrafficLevel:
    """Bucket an applied traffic multiplier for price snapshots."""
    if traffic_multiplier <= 1.1:
        return TrafficLevel.LIGHT
    if traffic_multiplier <= 1.25:
        return TrafficLevel.MODERATE
    if traffic_multiplier <= 1.4:
        return TrafficLevel.HEAVY
    return TrafficLevel.SEVERE


def format_currency(amount: float) -> str:
    return f"${amount:.2f}"


def build_ride_result(service: ServiceType, pricing: PricingResult, metrics: RouteMetrics) -> RideResult:
    surge = pricing.breakdown.surge_multiplier
    wait_minutes = derive_wait_minutes(service, surge, metrics.duration_min)
    return RideResult(
        service=SERVICE_LABELS[service],
        price=format_currency(pricing.price),
        wait_time=f"{wait_minutes} min",
        wait_minutes=wait_minutes,
        drivers_nearby=derive_drivers_nearby(service, surge, metrics.distance_km),
        surge_multiplier=f"{surge:.2f}x" if surge > SURGE_ACTIVE_THRESHOLD else None,
        confidence=pricing.confidence,
    )


def generate_recommendation(results: Dict[ServiceType, RideResult], prices: Dict[ServiceType, float]) -> str:
    """One-paragraph pick: best weighted score, plus the cheapest and fastest if different."""
    if not results:
        return NO_SERVICES_MESSAGE

    def score(service: ServiceType) -> float:
        return prices[service] * 0.7 + results[service].wait_minutes * 0.3

    # min() keeps the first of equal candidates, so ties resolve in request order
    best = min(results, key=score)
    cheapest = min(results, key=lambda s: prices[s])
    fastest = min(results, key=lambda s: results[s].wait_minutes)

    sentences = [f"Based on price and wait time, {best.value.capitalize()} looks like the best overall choice."]
    if cheapest != best:
        sentences.append(f"{cheapest.value.capitalize()} is the most budget-friendly ride today.")
    if fastest != best:
        sentences.append(f"{fastest.value.capitalize()} should arrive the quickest.")
    return " ".join(sentences)


def normalize_services(services: Iterable[ServiceType | str] | None) -> List[ServiceType]:
    """Lower-case, de-duplicate (keeping order) and parse; unknown names raise."""
    out: List[ServiceType] = []
    for raw in services or ():
        value = raw.value if isinstance(raw, ServiceType) else str(raw).strip().lower()
        try:
            service = ServiceType(value)
        except ValueError:
            raise UnsupportedServiceError(raw)
        if service not in out:
            out.append(service)
    return out or list(DEFAULT_SERVICES)


def filter_eligible_services(
    services: Sequence[ServiceType], pickup: Coordinates, destination: Coordinates
) -> List[ServiceType]:
    """Drop geofenced services unless both endpoints are inside their area."""
    eligible = [s for s in services if in_service_area(s, pickup) and in_service_area(s, destination)]
    if eligible:
        return eligible
    logger.info("No eligible services requested; using defaults", extra={"requested": [s.value for s in services]})
    return [s for s in DEFAULT_SERVICES if s not in GEOFENCED_SERVICES]


class RideComparisonService:
    """Resolve, route, price and summarize a trip across services."""

    def __init__(
        self,
        geocode_lookup: GeocodeLookup,
        route_lookup: RouteMetricsLookup,
        comparison_cache: TTLCache[ComparisonComputation],
        pricing_engine: PricingEngine | None = None,
        recorder: ComparisonRecorder | None = None,
        dispatcher: BackgroundDispatcher | None = None,
        popular_route_ttl_seconds: float = 1800,
        timezone: str = "America/Los_Angeles",
    ) -> None:
        self.geocode_lookup = geocode_lookup
        self.route_lookup = route_lookup
        self.comparison_cache = comparison_cache
        self.pricing_engine = pricing_engine or PricingEngine()
        self.recorder = recorder or NullRecorder()
        self.dispatcher = dispatcher or BackgroundDispatcher()
        self.popular_route_ttl = popular_route_ttl_seconds
        self.tz = ZoneInfo(timezone)

    def now(self) -> dt.datetime:
        """Current wall-clock time in the pricing region."""
        return dt.datetime.now(self.tz)

    def compare_rides_by_addresses(
        self,
        pickup_address: str,
        destination_address: str,
        services: Iterable[ServiceType | str] | None = None,
        timestamp: dt.datetime | None = None,
        options: ComparisonOptions | None = None,
    ) -> Optional[ComparisonComputation]:
        """Compare services for two free-text addresses.

        Returns None when either address cannot be resolved. Raises
        GeocodingUnavailableError when the geocoder is down and RoutingError (or
        the underlying requests error) when no route can be measured.
        """
        options = options or ComparisonOptions()
        pickup_text = sanitize_string(pickup_address)
        destination_text = sanitize_string(destination_address)

        cache_key = f"{pickup_text.lower()}-{destination_text.lower()}"
        cached = self.comparison_cache.get(cache_key)
        if cached is not None:
            logger.debug("Comparison cache hit", extra={"cache_key": cache_key})
            return cached

        popular = find_popular_route(pickup_text, destination_text)
        if popular is not None:
            pickup_coords, destination_coords = popular.pickup.coordinates, popular.destination.coordinates
            metrics = popular.metrics
            logger.debug("Using precomputed route", extra={"route": popular.route_id})
        else:
            pickup_coords, destination_coords = self._geocode_pair(pickup_text, destination_text)
            metrics = options.precomputed_metrics
            if pickup_coords is None or destination_coords is None:
                logger.info(
                    "Comparison skipped; address unresolved",
                    extra={"pickup_resolved": pickup_coords is not None,
                           "destination_resolved": destination_coords is not None},
                )
                return None

        result = self.compare_rides_by_coordinates(
            Place(pickup_text, pickup_coords),
            Place(destination_text, destination_coords),
            services,
            timestamp,
            ComparisonOptions(
                user_id=options.user_id,
                session_id=options.session_id,
                persist=options.persist,
                pickup_address=pickup_text,
                destination_address=destination_text,
                precomputed_metrics=metrics,
                popular_route_id=popular.route_id if popular is not None else None,
            ),
        )
        ttl = self.popular_route_ttl if popular is not None else None
        self.comparison_cache.set(cache_key, result, ttl_seconds=ttl)
        return result

    def _geocode_pair(self, pickup: str, destination: str) -> Tuple[Optional[Coordinates], Optional[Coordinates]]:
        """Geocode the pickup on this thread and the destination on a per-call worker."""
        with ThreadPoolExecutor(max_workers=1, thread_name_prefix="geocode") as pool:
            destination_future = pool.submit(self.geocode_lookup.get, destination)
            pickup_coords = self.geocode_lookup.get(pickup)
            return pickup_coords, destination_future.result()

    def compare_rides_by_coordinates(
        self,
        pickup: Place,
        destination: Place,
        services: Iterable[ServiceType | str] | None = None,
        timestamp: dt.datetime | None = None,
        options: ComparisonOptions | None = None,
    ) -> ComparisonComputation:
        """Price every eligible service for a trip between two known points."""
        options = options or ComparisonOptions()
        timestamp = timestamp or self.now()
        requested = normalize_services(services)
        eligible = filter_eligible_services(requested, pickup.coordinates, destination.coordinates)

        metrics = options.precomputed_metrics or self.route_lookup.get(pickup.coordinates, destination.coordinates)

        route_id = None
        if options.persist:
            route_id = self._record_route(pickup, destination, metrics, options)

        pricings: Dict[ServiceType, PricingResult] = {}
        results: Dict[ServiceType, RideResult] = {}
        for service in eligible:
            pricing = self.pricing_engine.calculate_fare(
                service,
                pickup.coordinates,
                destination.coordinates,
                metrics.distance_km,
                metrics.duration_min,
                timestamp,
                provider_duration_sec=metrics.provider_duration_sec,
                expected_duration_sec=metrics.duration_min * 60,
            )
            pricings[service] = pricing
            results[service] = build_ride_result(service, pricing, metrics)

        multiplier, reason = self.pricing_engine.calculate_surge(
            pickup.coordinates, destination.coordinates, timestamp
        )
        surge_info = SurgeInfo(multiplier=multiplier, reason=reason, is_active=multiplier > SURGE_ACTIVE_THRESHOLD)

        if options.persist and route_id:
            self._dispatch_snapshots(route_id, pricings, results, options)

        computation = ComparisonComputation(
            route_id=route_id,
            popular_route_id=options.popular_route_id,
            results=results,
            surge_info=surge_info,
            time_recommendations=self.pricing_engine.best_time_recommendations(timestamp),
            pickup=pickup.coordinates,
            destination=destination.coordinates,
            insights=generate_recommendation(results, {s: p.price for s, p in pricings.items()}),
        )
        logger.info(
            "Comparison computed",
            extra={
                "services": [s.value for s in results],
                "distance_km": round(metrics.distance_km, 2),
                "surge_multiplier": multiplier,
                "route_id": route_id,
            },
        )
        return computation

    def _record_route(
        self, pickup: Place, destination: Place, metrics: RouteMetrics, options: ComparisonOptions
    ) -> Optional[str]:
        record = RouteRecord(
            pickup_address=options.pickup_address or pickup.name,
            pickup=pickup.coordinates,
            destination_address=options.destination_address or destination.name,
            destination=destination.coordinates,
            distance_km=metrics.distance_km,
            duration_min=metrics.duration_min,
        )
        try:
            return self.recorder.record_route(record)
        except Exception as exc:  # recorder failures never fail a comparison
            logger.warning("Route recording failed", extra={"error": str(exc)})
            return None

    def _dispatch_snapshots(
        self,
        route_id: str,
        pricings: Dict[ServiceType, PricingResult],
        results: Dict[ServiceType, RideResult],
        options: ComparisonOptions,
    ) -> None:
        for service, pricing in pricings.items():
            snapshot = PriceSnapshot(
                route_id=route_id,
                service=service,
                final_fare=pricing.breakdown.final_fare,
                surge_multiplier=pricing.breakdown.surge_multiplier,
                wait_minutes=results[service].wait_minutes,
                surge_reason=pricing.surge_reason,
                traffic_level=snapshot_traffic_level(pricing.breakdown.traffic_multiplier),
            )
            self.dispatcher.submit(self.recorder.record_price_snapshot, snapshot)
        self.dispatcher.submit(
            self.recorder.record_search, route_id, options.user_id, dict(results), options.session_id
        )

    def close(self) -> None:
        self.dispatcher.shutdown(wait=False)


def build_comparison_service(
    settings: config.Settings | None = None,
    geocoder: Geocoder | None = None,
    router: Router | None = None,
) -> RideComparisonService:
    """Wire caches, providers, fare model and recorder from settings."""
    settings = settings or config.settings
    if geocoder is None or router is None:
        default_geocoder, default_router = build_providers(settings)
        geocoder = geocoder or default_geocoder
        router = router or default_router

    def cache(name: str, ttl: float) -> TTLCache:
        return TTLCache(name, ttl, max_entries=settings.cache_max_entries,
                        cleanup_threshold=settings.cache_cleanup_threshold)

    return RideComparisonService(
        geocode_lookup=GeocodeLookup(geocoder, cache("geocode", settings.geocode_cache_ttl_seconds)),
        route_lookup=RouteMetricsLookup(router, cache("route", settings.route_cache_ttl_seconds)),
        comparison_cache=cache("comparison", settings.comparison_cache_ttl_seconds),
        pricing_engine=PricingEngine(load_pricing_config(settings.pricing_config_path)),
        recorder=build_recorder(settings.recorder),
        dispatcher=BackgroundDispatcher(max_workers=settings.recorder_workers),
        popular_route_ttl_seconds=settings.popular_route_cache_ttl_seconds,
        timezone=settings.timezone,
    )
