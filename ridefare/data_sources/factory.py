"""Factory helpers for building the geocoder and router at startup."""

from __future__ import annotations

from typing import Tuple

from ridefare import config
from ridefare.data_sources.base import Geocoder, Router
from ridefare.data_sources.nominatim_client import NominatimGeocoder
from ridefare.data_sources.osrm_client import OSRMRouter
from ridefare.http_client import ResilientFetcher
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="data_sources/factory")


def build_fetcher(settings: config.Settings | None = None) -> ResilientFetcher:
    """Build the shared retrying HTTP client from settings."""
    settings = settings or config.settings
    return ResilientFetcher(
        timeout_seconds=settings.request_timeout_seconds,
        max_retries=settings.max_retries,
        user_agent=settings.user_agent,
    )


def build_providers(settings: config.Settings | None = None) -> Tuple[Geocoder, Router]:
    """Instantiate the configured geocoder and router sharing one fetcher."""
    settings = settings or config.settings
    fetcher = build_fetcher(settings)
    logger.info(
        "Using Nominatim geocoder and OSRM router",
        extra={"geocoder_url": settings.geocoder_base_url, "router_url": settings.router_base_url},
    )
    return (
        NominatimGeocoder(fetcher, base_url=settings.geocoder_base_url),
        OSRMRouter(fetcher, base_url=settings.router_base_url),
    )
