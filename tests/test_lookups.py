import unittest

import requests

from ridefare.cache import TTLCache
from ridefare.data_sources import CallableGeocoder, CallableRouter
from ridefare.domain import RouteMetrics
from ridefare.errors import GeocodingUnavailableError, RoutingError
from ridefare.lookups import GeocodeLookup, RouteMetricsLookup, route_cache_key

MISSION = (-122.4194, 37.7749)
SFO = (-122.379, 37.6213)


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class CountingGeocoder:
    def __init__(self, results=None, error=None):
        self.results = results if results is not None else [MISSION]
        self.error = error
        self.calls = []

    def search(self, address):
        self.calls.append(address)
        if self.error is not None:
            raise self.error
        return list(self.results)


class TestGeocodeLookup(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.cache = TTLCache("geocode", ttl_seconds=300, clock=self.clock)

    def test_one_upstream_call_within_ttl_and_new_call_after(self):
        geocoder = CountingGeocoder()
        lookup = GeocodeLookup(geocoder, self.cache)
        self.assertEqual(lookup.get("Mission District"), MISSION)
        self.clock.now = 299
        self.assertEqual(lookup.get("mission district "), MISSION)
        self.assertEqual(len(geocoder.calls), 1)
        self.clock.now = 301
        lookup.get("Mission District")
        self.assertEqual(len(geocoder.calls), 2)

    def test_airport_code_fast_path_skips_geocoder(self):
        geocoder = CountingGeocoder()
        lookup = GeocodeLookup(geocoder, self.cache)
        self.assertEqual(lookup.get("SFO"), SFO)
        self.assertEqual(lookup.get("San Francisco International Airport (SFO)"), SFO)
        self.assertEqual(geocoder.calls, [])

    def test_street_name_is_not_airport_code(self):
        geocoder = CountingGeocoder()
        lookup = GeocodeLookup(geocoder, self.cache)
        lookup.get("123 Oak St")
        self.assertEqual(geocoder.calls, ["123 Oak St"])

    def test_unknown_address_returns_none_and_is_not_cached(self):
        geocoder = CountingGeocoder(results=[])
        lookup = GeocodeLookup(geocoder, self.cache)
        self.assertIsNone(lookup.get("Atlantis"))
        self.assertIsNone(lookup.get("Atlantis"))
        self.assertEqual(len(geocoder.calls), 2)

    def test_unavailable_geocoder_raises(self):
        lookup = GeocodeLookup(CountingGeocoder(error=GeocodingUnavailableError("down")), self.cache)
        with self.assertRaises(GeocodingUnavailableError):
            lookup.get("Mission District")


class TestRouteMetricsLookup(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.cache = TTLCache("route", ttl_seconds=600, clock=self.clock)
        self.calls = []

    def _router(self, error=None):
        def route(pickup, destination):
            self.calls.append((pickup, destination))
            if error is not None:
                raise error
            return RouteMetrics(20.0, 25.0, 1500)
        return CallableRouter(route)

    def test_cache_key_format(self):
        self.assertEqual(route_cache_key(MISSION, SFO), "-122.4194,37.7749--122.379,37.6213")

    def test_one_upstream_call_within_ttl_and_new_call_after(self):
        lookup = RouteMetricsLookup(self._router(), self.cache)
        first = lookup.get(MISSION, SFO)
        self.clock.now = 599
        self.assertEqual(lookup.get(MISSION, SFO), first)
        self.assertEqual(len(self.calls), 1)
        self.clock.now = 601
        lookup.get(MISSION, SFO)
        self.assertEqual(len(self.calls), 2)

    def test_direction_matters(self):
        lookup = RouteMetricsLookup(self._router(), self.cache)
        lookup.get(MISSION, SFO)
        lookup.get(SFO, MISSION)
        self.assertEqual(len(self.calls), 2)

    def test_router_failure_propagates(self):
        lookup = RouteMetricsLookup(self._router(RoutingError("NoRoute")), self.cache)
        with self.assertRaises(RoutingError):
            lookup.get(MISSION, SFO)

    def test_get_or_estimate_falls_back_without_caching(self):
        lookup = RouteMetricsLookup(self._router(requests.Timeout("slow")), self.cache)
        metrics = lookup.get_or_estimate(MISSION, SFO)
        self.assertIsNone(metrics.provider_duration_sec)
        self.assertGreater(metrics.distance_km, 17)
        self.assertAlmostEqual(metrics.duration_min, metrics.distance_km * 1.8)
        self.assertEqual(len(self.cache), 0)

    def test_get_or_estimate_prefers_router(self):
        lookup = RouteMetricsLookup(self._router(), self.cache)
        self.assertEqual(lookup.get_or_estimate(MISSION, SFO), RouteMetrics(20.0, 25.0, 1500))


class TestCallableGeocoder(unittest.TestCase):
    def test_delegates(self):
        geocoder = CallableGeocoder(lambda address: [MISSION] if address else [])
        self.assertEqual(geocoder.search("x"), [MISSION])


if __name__ == "__main__":
    unittest.main()
