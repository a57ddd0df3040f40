"""Airport registry with point-radius matching and code parsing."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, List, Optional

from ridefare.domain import Coordinates

DEFAULT_TOLERANCE_DEG = 0.05

_CODE_TOKEN = re.compile(r"\b([A-Z]{3})\b")


@dataclass(frozen=True)
class Airport:
    """Airport reference point used for fee and surge matching."""
    code: str
    name: str
    city: str
    coordinates: Coordinates
    popular_destination: bool = True


AIRPORTS: Dict[str, Airport] = {
    "SFO": Airport("SFO", "San Francisco International Airport", "San Francisco", (-122.379, 37.6213)),
    "SJC": Airport("SJC", "San Jose International Airport", "San Jose", (-121.9289, 37.3639)),
    "OAK": Airport("OAK", "Oakland International Airport", "Oakland", (-122.2197, 37.7126)),
    "SMF": Airport("SMF", "Sacramento International Airport", "Sacramento", (-121.5908, 38.6954), False),
    "LAX": Airport("LAX", "Los Angeles International Airport", "Los Angeles", (-118.4085, 33.9416)),
    "SEA": Airport("SEA", "Seattle-Tacoma International Airport", "Seattle", (-122.3088, 47.4502)),
    "JFK": Airport("JFK", "John F. Kennedy International Airport", "New York", (-73.7781, 40.6413)),
    "ORD": Airport("ORD", "O'Hare International Airport", "Chicago", (-87.9073, 41.9742)),
}


def get_airport_by_code(code: str) -> Optional[Airport]:
    """Look up an airport by IATA code, case-insensitively."""
    return AIRPORTS.get(code.strip().upper())


def get_popular_airports() -> List[Airport]:
    return [a for a in AIRPORTS.values() if a.popular_destination]


def is_airport_location(coords: Coordinates, tolerance: float = DEFAULT_TOLERANCE_DEG) -> Optional[Airport]:
    """Return the airport whose reference point is within `tolerance` degrees on both axes."""
    lon, lat = coords
    for airport in AIRPORTS.values():
        a_lon, a_lat = airport.coordinates
        if abs(lat - a_lat) < tolerance and abs(lon - a_lon) < tolerance:
            return airport
    return None


def parse_airport_code(location: str) -> Optional[str]:
    """Extract a known airport code from free text.

    A code counts when the text is the bare code ("sfo"), the code appears in
    parentheses ("... Airport (SFO)"), or the text mentions an airport. This keeps
    street names such as "Oak St" from resolving to OAK.
    """
    text = location.strip().upper()
    if text in AIRPORTS:
        return text
    for code in _CODE_TOKEN.findall(text):
        if code not in AIRPORTS:
            continue
        if f"({code})" in text or "AIRPORT" in text:
            return code
    return None
