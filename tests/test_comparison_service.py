import datetime as dt
import threading
import unittest
from zoneinfo import ZoneInfo

from ridefare.cache import TTLCache
from ridefare.comparison_service import (
    NO_SERVICES_MESSAGE,
    ComparisonOptions,
    RideComparisonService,
    build_comparison_service,
    derive_drivers_nearby,
    derive_wait_minutes,
    generate_recommendation,
    normalize_services,
    snapshot_traffic_level,
)
from ridefare.config import Settings
from ridefare.data_sources import CallableGeocoder, CallableRouter
from ridefare.domain import DEFAULT_SERVICES, Place, RideResult, RouteMetrics, ServiceType, TrafficLevel
from ridefare.errors import RoutingError, UnsupportedServiceError
from ridefare.lookups import GeocodeLookup, RouteMetricsLookup
from ridefare.popular_routes import get_popular_route
from ridefare.recorders import LoggingRecorder, NullRecorder

PACIFIC = ZoneInfo("America/Los_Angeles")
WEDNESDAY_AFTERNOON = dt.datetime(2024, 1, 10, 14, 15, tzinfo=PACIFIC)

MARKET_ST = (-122.3949, 37.7946)
DOLORES_PARK = (-122.4269, 37.7596)
DOWNTOWN_OAKLAND = (-122.2711, 37.8044)
LAKE_MERRITT = (-122.2585, 37.8025)

KNOWN_ADDRESSES = {
    "1 Market St, San Francisco": MARKET_ST,
    "Mission Dolores Park": DOLORES_PARK,
    "Broadway, Oakland": DOWNTOWN_OAKLAND,
    "Lake Merritt": LAKE_MERRITT,
}


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class RecordingRecorder:
    def __init__(self, route_id="route_1", fail_route=False, fail_snapshots=False):
        self.route_id = route_id
        self.fail_route = fail_route
        self.fail_snapshots = fail_snapshots
        self.routes = []
        self.snapshots = []
        self.searches = []

    def record_route(self, route):
        self.routes.append(route)
        if self.fail_route:
            raise RuntimeError("database unavailable")
        return self.route_id

    def record_price_snapshot(self, snapshot):
        if self.fail_snapshots:
            raise RuntimeError("write failed")
        self.snapshots.append(snapshot)

    def record_search(self, route_id, user_id, results, session_id=None):
        self.searches.append((route_id, user_id, sorted(s.value for s in results), session_id))


class TestRideComparisonService(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.geocode_calls = []
        self.route_calls = []
        self.route_error = None

    def _geocode(self, address):
        self.geocode_calls.append(address)
        coords = KNOWN_ADDRESSES.get(address)
        return [coords] if coords else []

    def _route(self, pickup, destination):
        self.route_calls.append((pickup, destination))
        if self.route_error is not None:
            raise self.route_error
        return RouteMetrics(distance_km=4.2, duration_min=14.0, provider_duration_sec=840)

    def _service(self, recorder=None, geocode=None):
        service = RideComparisonService(
            geocode_lookup=GeocodeLookup(CallableGeocoder(geocode or self._geocode), TTLCache("geo", 300, clock=self.clock)),
            route_lookup=RouteMetricsLookup(CallableRouter(self._route), TTLCache("route", 600, clock=self.clock)),
            comparison_cache=TTLCache("comparison", 45, clock=self.clock),
            recorder=recorder,
            popular_route_ttl_seconds=1800,
        )
        self.addCleanup(service.close)
        return service

    def test_compares_default_services_inside_waymo_area(self):
        service = self._service()
        result = service.compare_rides_by_addresses(
            "1 Market St, San Francisco", "Mission Dolores Park", timestamp=WEDNESDAY_AFTERNOON
        )
        self.assertEqual(list(result.results), list(DEFAULT_SERVICES))
        self.assertEqual(result.pickup, MARKET_ST)
        self.assertEqual(result.destination, DOLORES_PARK)
        self.assertIsNone(result.popular_route_id)
        self.assertIsNone(result.route_id)
        self.assertEqual(result.results[ServiceType.UBER].service, "UberX")
        self.assertTrue(result.results[ServiceType.TAXI].price.startswith("$"))
        self.assertEqual(result.time_recommendations[0], "Great timing! You're booking during off-peak hours")
        self.assertTrue(result.insights.startswith("Based on price and wait time,"))

    def test_comparison_is_cached_by_address_pair(self):
        service = self._service()
        first = service.compare_rides_by_addresses("1 Market St, San Francisco", "Mission Dolores Park",
                                                   timestamp=WEDNESDAY_AFTERNOON)
        second = service.compare_rides_by_addresses("1 market st, san francisco", "MISSION DOLORES PARK",
                                                    timestamp=WEDNESDAY_AFTERNOON)
        self.assertIs(first, second)
        self.assertEqual(len(self.geocode_calls), 2)
        self.assertEqual(len(self.route_calls), 1)

        self.clock.now = 46
        service.compare_rides_by_addresses("1 Market St, San Francisco", "Mission Dolores Park",
                                           timestamp=WEDNESDAY_AFTERNOON)
        # geocodes and route are still cached; only the comparison is rebuilt
        self.assertEqual(len(self.geocode_calls), 2)
        self.assertEqual(len(self.route_calls), 1)

    def test_unresolved_address_returns_none(self):
        service = self._service()
        self.assertIsNone(service.compare_rides_by_addresses("1 Market St, San Francisco", "Nowhere Land"))
        self.assertEqual(self.route_calls, [])

    def test_popular_route_skips_geocoding_and_routing(self):
        service = self._service()
        result = service.compare_rides_by_addresses("SFO", "Downtown San Francisco", timestamp=WEDNESDAY_AFTERNOON)
        popular = get_popular_route("sfo-downtown")
        self.assertEqual(self.geocode_calls, [])
        self.assertEqual(self.route_calls, [])
        self.assertEqual(result.pickup, popular.pickup.coordinates)
        self.assertEqual(result.destination, popular.destination.coordinates)
        self.assertEqual(result.surge_info.reason, "Airport route")
        self.assertEqual(result.popular_route_id, "sfo-downtown")

        self.clock.now = 600
        again = service.compare_rides_by_addresses("SFO", "Downtown San Francisco", timestamp=WEDNESDAY_AFTERNOON)
        self.assertIs(result, again)

    def test_waymo_dropped_outside_service_area(self):
        service = self._service()
        result = service.compare_rides_by_addresses(
            "Broadway, Oakland", "Lake Merritt", services=["uber", "waymo"], timestamp=WEDNESDAY_AFTERNOON
        )
        self.assertEqual(list(result.results), [ServiceType.UBER])

    def test_only_ineligible_services_fall_back_to_defaults(self):
        service = self._service()
        result = service.compare_rides_by_addresses(
            "Broadway, Oakland", "Lake Merritt", services=["waymo"], timestamp=WEDNESDAY_AFTERNOON
        )
        self.assertEqual(list(result.results), [ServiceType.UBER, ServiceType.LYFT, ServiceType.TAXI])

    def test_unknown_service_rejected(self):
        service = self._service()
        with self.assertRaises(UnsupportedServiceError):
            service.compare_rides_by_addresses("1 Market St, San Francisco", "Mission Dolores Park",
                                               services=["bicycle"])

    def test_routing_failure_propagates(self):
        self.route_error = RoutingError("NoRoute")
        service = self._service()
        with self.assertRaises(RoutingError):
            service.compare_rides_by_addresses("1 Market St, San Francisco", "Mission Dolores Park")

    def test_recorder_receives_route_snapshots_and_search(self):
        recorder = RecordingRecorder()
        service = self._service(recorder)
        result = service.compare_rides_by_addresses(
            "1 Market St, San Francisco", "Mission Dolores Park", services=["uber", "taxi"],
            timestamp=WEDNESDAY_AFTERNOON, options=ComparisonOptions(user_id="u1", session_id="s1"),
        )
        service.dispatcher.shutdown(wait=True)
        self.assertEqual(result.route_id, "route_1")
        self.assertEqual(recorder.routes[0].pickup_address, "1 Market St, San Francisco")
        self.assertEqual(recorder.routes[0].distance_km, 4.2)
        self.assertEqual(sorted(s.service.value for s in recorder.snapshots), ["taxi", "uber"])
        self.assertEqual(recorder.snapshots[0].traffic_level, TrafficLevel.LIGHT)
        self.assertEqual(recorder.searches, [("route_1", "u1", ["taxi", "uber"], "s1")])

    def test_route_recording_failure_does_not_fail_comparison(self):
        recorder = RecordingRecorder(fail_route=True)
        service = self._service(recorder)
        result = service.compare_rides_by_addresses("1 Market St, San Francisco", "Mission Dolores Park",
                                                    timestamp=WEDNESDAY_AFTERNOON)
        service.dispatcher.shutdown(wait=True)
        self.assertIsNone(result.route_id)
        self.assertEqual(recorder.snapshots, [])
        self.assertEqual(recorder.searches, [])

    def test_snapshot_failures_are_swallowed(self):
        recorder = RecordingRecorder(fail_snapshots=True)
        service = self._service(recorder)
        result = service.compare_rides_by_addresses("1 Market St, San Francisco", "Mission Dolores Park",
                                                    timestamp=WEDNESDAY_AFTERNOON)
        service.dispatcher.shutdown(wait=True)
        self.assertEqual(result.route_id, "route_1")
        self.assertEqual(len(recorder.searches), 1)

    def test_persist_false_skips_recorder(self):
        recorder = RecordingRecorder()
        service = self._service(recorder)
        result = service.compare_rides_by_addresses("1 Market St, San Francisco", "Mission Dolores Park",
                                                    options=ComparisonOptions(persist=False))
        service.dispatcher.shutdown(wait=True)
        self.assertIsNone(result.route_id)
        self.assertEqual(recorder.routes, [])

    def test_slow_geocode_does_not_stall_other_requests(self):
        release = threading.Event()
        entered = threading.Semaphore(0)

        def geocode(address):
            if address.startswith("slow"):
                entered.release()
                release.wait(5)
                return []
            return self._geocode(address)

        service = self._service(geocode=geocode)
        stalled = [
            threading.Thread(target=service.compare_rides_by_addresses, args=(f"slow pickup {i}", f"slow drop {i}"))
            for i in range(2)
        ]
        done = threading.Event()

        def unrelated():
            service.compare_rides_by_addresses("1 Market St, San Francisco", "Mission Dolores Park",
                                               timestamp=WEDNESDAY_AFTERNOON)
            done.set()

        worker = threading.Thread(target=unrelated)
        try:
            for thread in stalled:
                thread.start()
            for _ in range(4):
                self.assertTrue(entered.acquire(timeout=2))
            worker.start()
            self.assertTrue(done.wait(timeout=2))
        finally:
            release.set()
            for thread in stalled + [worker]:
                if thread.ident is not None:
                    thread.join(timeout=5)

    def test_compare_by_coordinates_uses_router(self):
        service = self._service()
        result = service.compare_rides_by_coordinates(
            Place("Market", MARKET_ST), Place("Dolores", DOLORES_PARK), ["lyft"], WEDNESDAY_AFTERNOON
        )
        self.assertEqual(list(result.results), [ServiceType.LYFT])
        self.assertEqual(self.route_calls, [(MARKET_ST, DOLORES_PARK)])


class TestHelpers(unittest.TestCase):
    def test_wait_minutes(self):
        self.assertEqual(derive_wait_minutes(ServiceType.UBER, 1.0, 30), 6)
        self.assertEqual(derive_wait_minutes(ServiceType.WAYMO, 1.5, 90), 14)
        self.assertEqual(derive_wait_minutes(ServiceType.LYFT, 1.1, 0), 5)
        self.assertEqual(derive_wait_minutes(ServiceType.TAXI, 1.3, 120), 12)

    def test_drivers_nearby(self):
        self.assertEqual(derive_drivers_nearby(ServiceType.UBER, 1.0, 5), 5)
        self.assertEqual(derive_drivers_nearby(ServiceType.UBER, 1.5, 40), 2)
        self.assertEqual(derive_drivers_nearby(ServiceType.WAYMO, 1.5, 40), 1)

    def test_snapshot_traffic_level(self):
        self.assertEqual(snapshot_traffic_level(1.0), TrafficLevel.LIGHT)
        self.assertEqual(snapshot_traffic_level(1.2), TrafficLevel.MODERATE)
        self.assertEqual(snapshot_traffic_level(1.4), TrafficLevel.HEAVY)
        self.assertEqual(snapshot_traffic_level(1.6), TrafficLevel.SEVERE)

    def test_normalize_services(self):
        self.assertEqual(normalize_services(["Uber", "uber", " LYFT"]), [ServiceType.UBER, ServiceType.LYFT])
        self.assertEqual(normalize_services(None), list(DEFAULT_SERVICES))
        with self.assertRaises(UnsupportedServiceError):
            normalize_services(["scooter"])

    def test_recommendation_names_cheapest_and_fastest(self):
        def ride(wait):
            return RideResult(service="x", price="$0.00", wait_time=f"{wait} min", wait_minutes=wait,
                              drivers_nearby=3, confidence=0.9)

        results = {ServiceType.UBER: ride(4), ServiceType.TAXI: ride(6)}
        text = generate_recommendation(results, {ServiceType.UBER: 30.0, ServiceType.TAXI: 25.0})
        self.assertEqual(
            text,
            "Based on price and wait time, Taxi looks like the best overall choice. "
            "Uber should arrive the quickest.",
        )
        self.assertEqual(generate_recommendation({}, {}), NO_SERVICES_MESSAGE)


class TestBuildComparisonService(unittest.TestCase):
    def test_wires_settings(self):
        settings = Settings(recorder="none", timezone="America/New_York", comparison_cache_ttl_seconds=5)
        service = build_comparison_service(
            settings,
            geocoder=CallableGeocoder(lambda address: []),
            router=CallableRouter(lambda a, b: RouteMetrics(1.0, 2.0)),
        )
        self.addCleanup(service.close)
        self.assertIsInstance(service.recorder, NullRecorder)
        self.assertEqual(service.comparison_cache.ttl, 5)
        self.assertEqual(str(service.now().tzinfo), "America/New_York")

    def test_logging_recorder_by_default(self):
        service = build_comparison_service(
            Settings(),
            geocoder=CallableGeocoder(lambda address: []),
            router=CallableRouter(lambda a, b: RouteMetrics(1.0, 2.0)),
        )
        self.addCleanup(service.close)
        self.assertIsInstance(service.recorder, LoggingRecorder)


if __name__ == "__main__":
    unittest.main()
