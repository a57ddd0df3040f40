"""Precomputed coordinates and metrics for frequently requested routes.

A match skips both geocoding and routing; comparisons for these routes are
cached much longer than ad-hoc ones.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Dict, Optional, Set

from ridefare.airports import parse_airport_code
from ridefare.domain import Place, RouteMetrics

_PAREN_CODE = re.compile(r"\(([a-z0-9]+)\)")


@dataclass(frozen=True)
class PopularRoute:
    route_id: str
    pickup: Place
    destination: Place
    metrics: RouteMetrics


_SFO = Place("San Francisco International Airport (SFO), San Francisco, CA, USA", (-122.3904569, 37.6164922))
_SJC = Place("San Jose International Airport (SJC), San Jose, CA, USA", (-121.9289, 37.3639))
_OAK = Place("Oakland International Airport (OAK), Oakland, CA, USA", (-122.2197, 37.7126))
_DOWNTOWN_SF = Place("Downtown San Francisco, San Francisco, CA, USA", (-122.4195684, 37.7898562))
_SAN_FRANCISCO = Place("San Francisco, CA, USA", (-122.4194, 37.7749))
_PALO_ALTO = Place("Palo Alto, CA, USA", (-122.143, 37.4419))
_STANFORD = Place("Stanford University, Stanford, CA, USA", (-122.1697, 37.4275))


def _route(route_id: str, pickup: Place, destination: Place, km: float, minutes: float, seconds: float):
    return route_id, PopularRoute(route_id, pickup, destination, RouteMetrics(km, minutes, seconds))


POPULAR_ROUTES: Dict[str, PopularRoute] = dict([
    _route("sfo-downtown", _SFO, _DOWNTOWN_SF, 21.64, 23.06, 1384),
    _route("stanford-apple", _STANFORD, Place("Apple Park, Cupertino, CA, USA", (-122.009, 37.3349)),
           12.8, 18.5, 1110),
    _route("sjc-santa-clara", _SJC, Place("Santa Clara, CA, USA", (-121.9552, 37.3541)), 3.2, 8.5, 510),
    _route("palo-alto-google", _PALO_ALTO, Place("Googleplex, Mountain View, CA, USA", (-122.0841, 37.422)),
           6.5, 12.3, 738),
    _route("oak-downtown-oakland", _OAK, Place("Downtown Oakland, Oakland, CA, USA", (-122.2711, 37.8044)),
           14.5, 18, 1080),
    _route("sfo-palo-alto", _SFO, _PALO_ALTO, 32.5, 35, 2100),
    _route("sjc-san-francisco", _SJC, _SAN_FRANCISCO, 72, 55, 3300),
    _route("sfo-san-jose", _SFO, Place("San Jose, CA, USA", (-121.8863, 37.3382)), 48, 42, 2520),
    _route("oak-san-francisco", _OAK, _SAN_FRANCISCO, 22, 28, 1680),
    _route("sfo-cupertino", _SFO, Place("Cupertino, CA, USA", (-122.0322, 37.323)), 38, 38, 2280),
    _route("sjc-sunnyvale", _SJC, Place("Sunnyvale, CA, USA", (-122.0363, 37.3688)), 8.5, 12, 720),
    _route("sjc-mountain-view", _SJC, Place("Mountain View, CA, USA", (-122.0839, 37.3861)), 12, 15, 900),
    _route("sfo-stanford", _SFO, _STANFORD, 28, 30, 1800),
    _route("downtown-sf-oak", _DOWNTOWN_SF, _OAK, 20, 25, 1500),
])


def get_popular_route(route_id: str) -> Optional[PopularRoute]:
    return POPULAR_ROUTES.get(route_id)


def _leading_part(text: str) -> str:
    return text.split(",")[0].strip()


def _aliases(name: str) -> Set[str]:
    """Leading part of a place name plus any parenthesized code, e.g. {"sfo"}."""
    return {_leading_part(name), *_PAREN_CODE.findall(name)}


def _matches(address: str, place_name: str) -> bool:
    """Exact match, the address containing the place's leading part, or the
    address's leading part naming the place ("SFO", "Palo Alto").

    An address naming an airport only matches a place carrying that code, and a
    bare city does not match the airport inside it: "San Francisco" is not SFO
    and SFO is not "San Francisco".
    """
    name = place_name.strip().lower()
    code = parse_airport_code(address)
    if code is not None:
        return code.lower() in _PAREN_CODE.findall(name)
    address = address.strip().lower()
    if address == name:
        return True
    name_key = _leading_part(name)
    if name_key and name_key in address:
        return True
    return _leading_part(address) in _aliases(name)


def find_popular_route(pickup_address: str, destination_address: str) -> Optional[PopularRoute]:
    """Return the first precomputed route whose endpoints both match the addresses."""
    for route in POPULAR_ROUTES.values():
        if _matches(pickup_address, route.pickup.name) and _matches(destination_address, route.destination.name):
            return route
    return None
