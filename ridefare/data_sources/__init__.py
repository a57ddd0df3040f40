"""Geocoding and routing providers."""

from .base import CallableGeocoder, CallableRouter, Geocoder, Router
from .factory import build_fetcher, build_providers
from .nominatim_client import NominatimGeocoder
from .osrm_client import OSRMRouter

__all__ = [
    "build_fetcher",
    "build_providers",
    "CallableGeocoder",
    "CallableRouter",
    "Geocoder",
    "Router",
    "NominatimGeocoder",
    "OSRMRouter",
]
