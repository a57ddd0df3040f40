"""Domain vocabulary and immutable schemas for fare estimates and comparisons.

This module defines the contract between the pricing engine, the comparison
orchestrator and the HTTP layer: closed enums for services and traffic levels,
frozen route metrics, and Pydantic models for pricing breakdowns and comparison
payloads. No pricing logic lives here.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

# (longitude, latitude), matching the router's coordinate order.
Coordinates = Tuple[float, float]


class _FrozenModel(BaseModel):
    """Base model that rejects unknown fields and cannot be mutated."""

    model_config = ConfigDict(extra="forbid", frozen=True)


class ServiceType(str, Enum):
    """Ride services the fare model knows how to price."""
    UBER = "uber"
    LYFT = "lyft"
    TAXI = "taxi"
    WAYMO = "waymo"


class TrafficLevel(str, Enum):
    """Congestion bucket derived from actual vs. expected trip duration."""
    LIGHT = "light"
    MODERATE = "moderate"
    HEAVY = "heavy"
    SEVERE = "severe"


SERVICE_LABELS: Dict[ServiceType, str] = {
    ServiceType.UBER: "UberX",
    ServiceType.LYFT: "Lyft Standard",
    ServiceType.TAXI: "Yellow Cab",
    ServiceType.WAYMO: "Waymo One",
}

DEFAULT_SERVICES: Tuple[ServiceType, ...] = (
    ServiceType.UBER,
    ServiceType.LYFT,
    ServiceType.TAXI,
    ServiceType.WAYMO,
)

# Services only offered inside their service-area boxes.
GEOFENCED_SERVICES: Tuple[ServiceType, ...] = (ServiceType.WAYMO,)


def validate_coordinates(coords: Coordinates) -> Coordinates:
    """Return coords as a float tuple, raising ValueError outside global bounds."""
    lon, lat = float(coords[0]), float(coords[1])
    if not -180.0 <= lon <= 180.0:
        raise ValueError(f"Longitude out of range: {lon}")
    if not -90.0 <= lat <= 90.0:
        raise ValueError(f"Latitude out of range: {lat}")
    return lon, lat


@dataclass(frozen=True)
class RouteMetrics:
    """Distance/duration for a trip, from the router or the straight-line estimator."""
    distance_km: float
    duration_min: float
    provider_duration_sec: Optional[float] = None


@dataclass(frozen=True)
class Place:
    """A named trip endpoint."""
    name: str
    coordinates: Coordinates


class PricingBreakdown(_FrozenModel):
    """Every additive fee, multiplicative factor and derived total for one fare."""
    base_fare: float
    distance_fee: float
    time_fee: float
    booking_fee: float
    safety_fee: float
    airport_fees: float
    location_surcharge: float
    long_ride_fee: float
    subtotal: float
    surge_multiplier: float
    surge_fee: float
    traffic_multiplier: float
    traffic_fee: float
    final_fare: float
    applied_min_fare: bool


class PricingResult(_FrozenModel):
    """Fare engine output for a single service."""
    price: float
    breakdown: PricingBreakdown
    surge_reason: str
    confidence: float = Field(ge=0.5, le=0.9)


class SurgeInfo(_FrozenModel):
    """Route-level surge summary shown next to the comparison."""
    multiplier: float
    reason: str
    is_active: bool


class RideResult(_FrozenModel):
    """Display-ready estimate for one service."""
    service: str
    price: str
    wait_time: str
    wait_minutes: int
    drivers_nearby: int
    surge_multiplier: Optional[str] = None
    confidence: float


class ComparisonComputation(_FrozenModel):
    """Aggregate answer to "compare these services for this trip"."""
    route_id: Optional[str] = None
    popular_route_id: Optional[str] = None
    results: Dict[ServiceType, RideResult]
    surge_info: SurgeInfo
    time_recommendations: List[str]
    pickup: Coordinates
    destination: Coordinates
    insights: str
