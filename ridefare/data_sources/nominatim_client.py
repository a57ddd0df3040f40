"""Geocoding against a Nominatim-compatible search endpoint."""
from __future__ import annotations

from typing import List

import requests

from ridefare.domain import Coordinates, validate_coordinates
from ridefare.errors import GeocodingUnavailableError
from ridefare.http_client import ResilientFetcher
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="nominatim_client")

NOMINATIM_SEARCH_URL = "https://nominatim.openstreetmap.org/search"


class NominatimGeocoder:
    """Resolve addresses to (lon, lat) with the Nominatim JSON API."""

    def __init__(self, fetcher: ResilientFetcher, base_url: str = NOMINATIM_SEARCH_URL, limit: int = 1) -> None:
        self.fetcher = fetcher
        self.base_url = base_url
        self.limit = limit

    def search(self, address: str) -> List[Coordinates]:
        """Return matching coordinates; [] for unknown addresses or non-2xx answers.

        Transport failures after retries raise GeocodingUnavailableError so callers
        can retry later instead of treating the address as unknown.
        """
        params = {"q": address, "format": "json", "limit": self.limit}
        try:
            resp = self.fetcher.fetch(self.base_url, params=params)
        except requests.RequestException as exc:
            raise GeocodingUnavailableError(f"Geocoder unavailable: {exc}") from exc

        if not resp.ok:
            logger.warning("Geocoder returned non-OK status", extra={"status": resp.status_code})
            return []

        try:
            data = resp.json()
        except ValueError:
            logger.warning("Geocoder returned invalid JSON")
            return []

        out: List[Coordinates] = []
        for item in data or []:
            try:
                out.append(validate_coordinates((item["lon"], item["lat"])))
            except (KeyError, TypeError, ValueError):
                logger.debug("Skipping malformed or out-of-range geocoder result", extra={"item": item})
        return out
