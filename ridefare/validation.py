"""Request-boundary validation: payload schemas, sanitising and abuse heuristics."""

from __future__ import annotations

import math
import re
from typing import Any, List, Type, TypeVar

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator

from ridefare.domain import ServiceType
from ridefare.errors import ValidationError
from ridefare.geo import SERVICE_REGION

MAX_SANITIZED_LENGTH = 200
MIN_ROUTE_METERS = 100.0
METERS_PER_DEGREE = 111_000

_LOCATION_NAME = re.compile(r"^[A-Za-z0-9\s,.()'#/-]+$")
_SPAM_PATTERNS = [
    re.compile(r"test", re.IGNORECASE),
    re.compile(r"spam", re.IGNORECASE),
    re.compile(r"\bbot\b", re.IGNORECASE),
    re.compile(r"script", re.IGNORECASE),
    re.compile(r"hack", re.IGNORECASE),
    re.compile(r"\d{10,}"),
    re.compile(r"(.)\1{5,}"),
    re.compile(r"^[^A-Za-z]*$"),
]

M = TypeVar("M", bound=BaseModel)


def sanitize_string(value: str) -> str:
    """Strip markup, quote and shell metacharacters, then cap the length."""
    cleaned = value.strip()
    cleaned = re.sub(r"[<>]", "", cleaned)
    cleaned = re.sub(r"['\"]", "", cleaned)
    cleaned = re.sub(r"[;&|`$]", "", cleaned)
    return cleaned[:MAX_SANITIZED_LENGTH]


class Location(BaseModel):
    """A named point inside the service region."""
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=2, max_length=100)
    lat: float = Field(ge=SERVICE_REGION.min_lat, le=SERVICE_REGION.max_lat)
    lng: float = Field(ge=SERVICE_REGION.min_lon, le=SERVICE_REGION.max_lon)

    @field_validator("name")
    @classmethod
    def check_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Location name cannot be empty")
        if not _LOCATION_NAME.match(v):
            raise ValueError("Location name contains invalid characters")
        return v.strip()

    @field_validator("lat", "lng")
    @classmethod
    def check_finite(cls, v: float) -> float:
        if not math.isfinite(v):
            raise ValueError("Coordinate must be a valid number")
        return v

    @property
    def coordinates(self):
        return self.lng, self.lat


class RideComparisonRequest(BaseModel):
    """POST body for a coordinate-based comparison."""
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    from_: Location = Field(alias="from")
    to: Location
    services: List[ServiceType] = Field(min_length=1, max_length=4)

    @field_validator("services")
    @classmethod
    def no_duplicates(cls, v: List[ServiceType]) -> List[ServiceType]:
        if len(set(v)) != len(v):
            raise ValueError("Duplicate services are not allowed")
        return v


class AddressComparisonRequest(BaseModel):
    """POST body for an address-based comparison."""
    pickup: str = Field(min_length=2, max_length=MAX_SANITIZED_LENGTH)
    destination: str = Field(min_length=2, max_length=MAX_SANITIZED_LENGTH)
    services: List[ServiceType] = Field(default_factory=list, max_length=4)


def validate_input(model: Type[M], data: Any, context: str = "input") -> M:
    """Parse data into model, raising ValidationError for the first failing field."""
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or "unknown"
        raise ValidationError(f"{context}: {first.get('msg')}", field, first.get("type", "VALIDATION_ERROR")) from exc


def detect_suspicious_coordinates(pickup: Location, destination: Location) -> bool:
    """True when the endpoints are identical or under 100 m apart."""
    if pickup.lat == destination.lat and pickup.lng == destination.lng:
        return True
    d_lat = (destination.lat - pickup.lat) * METERS_PER_DEGREE
    d_lng = (destination.lng - pickup.lng) * METERS_PER_DEGREE * math.cos(math.radians(pickup.lat))
    return math.hypot(d_lat, d_lng) < MIN_ROUTE_METERS


def detect_spam_patterns(location_name: str) -> bool:
    return any(pattern.search(location_name) for pattern in _SPAM_PATTERNS)
