"""Typed fare model: per-service rate tables, surge schedules and modifiers.

The model is validated once at load time. Surge schedules are keyed by
30-minute slot ("HH:MM-HH:MM") with optional whole-hour fallbacks ("H").
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ridefare.domain import ServiceType, TrafficLevel
from ridefare.errors import ConfigurationError
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="pricing_config")

_SLOT_KEY = re.compile(r"^([01]\d|2[0-3]):(00|30)-([01]\d|2[0-3]):(00|30)$")
_HOUR_KEY = re.compile(r"^([0-9]|1[0-9]|2[0-3])$")

DEFAULT_MAX_SURGE = 3.0


class _StrictModel(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class AirportFeePair(_StrictModel):
    pickup: float = Field(ge=0)
    dropoff: float = Field(ge=0)


class LongRideFee(_StrictModel):
    threshold_miles: float = Field(gt=0)
    fee: float = Field(ge=0)


class ServiceRates(_StrictModel):
    """Rate table for one service."""
    base: float = Field(ge=0)
    per_mile: float = Field(ge=0)
    per_min: float = Field(ge=0)
    booking: float = Field(default=0.0, ge=0)
    safety_fee: float = Field(default=0.0, ge=0)
    min_fare: float = Field(ge=0)
    airport_pickup_fee: float = Field(default=0.0, ge=0)
    airport_dropoff_fee: float = Field(default=0.0, ge=0)
    airport_overrides: Dict[str, AirportFeePair] = Field(default_factory=dict)
    cbd_surcharge: float = Field(default=0.0, ge=0)
    long_ride_fee: Optional[LongRideFee] = None
    max_surge: float = Field(default=DEFAULT_MAX_SURGE, ge=1.0)

    @field_validator("airport_overrides", mode="after")
    @classmethod
    def upper_codes(cls, v: Dict[str, AirportFeePair]) -> Dict[str, AirportFeePair]:
        return {code.upper(): pair for code, pair in v.items()}


class SurgeSchedule(_StrictModel):
    weekday: Dict[str, float]
    weekend: Dict[str, float]

    @field_validator("weekday", "weekend", mode="after")
    @classmethod
    def check_table(cls, v: Dict[str, float]) -> Dict[str, float]:
        for key, multiplier in v.items():
            if not (_SLOT_KEY.match(key) or _HOUR_KEY.match(key)):
                raise ValueError(f"Invalid surge schedule key '{key}'")
            if multiplier < 1.0:
                raise ValueError(f"Surge multiplier for '{key}' must be >= 1.0")
        return v


class LocationModifiers(_StrictModel):
    airport_late_night: float = Field(default=1.15, ge=1.0)
    airport_peak_hours: float = Field(default=1.25, ge=1.0)


class TrafficModifiers(_StrictModel):
    light: float = Field(default=1.0, ge=1.0, le=2.0)
    moderate: float = Field(default=1.1, ge=1.0, le=2.0)
    heavy: float = Field(default=1.25, ge=1.0, le=2.0)
    severe: float = Field(default=1.4, ge=1.0, le=2.0)

    def for_level(self, level: TrafficLevel) -> float:
        return getattr(self, level.value)


class PricingConfig(_StrictModel):
    version: str
    services: Dict[ServiceType, ServiceRates]
    surge_schedule: SurgeSchedule
    location_modifiers: LocationModifiers = Field(default_factory=LocationModifiers)
    traffic_modifiers: TrafficModifiers = Field(default_factory=TrafficModifiers)

    @model_validator(mode="after")
    def check_services(self) -> "PricingConfig":
        if not self.services:
            raise ValueError("At least one service rate table is required")
        return self


DEFAULT_PRICING_CONFIG = PricingConfig(
    version="2025.1",
    services={
        ServiceType.UBER: ServiceRates(
            base=2.85, per_mile=1.15, per_min=0.38, booking=1.65, safety_fee=0.75, min_fare=9.25,
            airport_pickup_fee=5.50, airport_dropoff_fee=3.25,
            airport_overrides={"SFO": AirportFeePair(pickup=5.50, dropoff=5.50)},
            cbd_surcharge=3.50, long_ride_fee=LongRideFee(threshold_miles=25, fee=5.50), max_surge=2.0,
        ),
        ServiceType.LYFT: ServiceRates(
            base=2.65, per_mile=1.05, per_min=0.38, booking=2.75, safety_fee=0.65, min_fare=8.95,
            airport_pickup_fee=5.50, airport_dropoff_fee=2.50,
            airport_overrides={
                "SFO": AirportFeePair(pickup=5.50, dropoff=5.50),
                "SJC": AirportFeePair(pickup=4.00, dropoff=2.00),
            },
            cbd_surcharge=3.25, long_ride_fee=LongRideFee(threshold_miles=25, fee=5.00), max_surge=2.3,
        ),
        ServiceType.TAXI: ServiceRates(
            base=4.25, per_mile=3.25, per_min=0.65, booking=0.0, safety_fee=0.0, min_fare=15.00,
            airport_pickup_fee=6.00, airport_dropoff_fee=1.50,
            airport_overrides={"SFO": AirportFeePair(pickup=6.00, dropoff=5.25)},
            cbd_surcharge=3.00, long_ride_fee=LongRideFee(threshold_miles=30, fee=5.00), max_surge=1.4,
        ),
        ServiceType.WAYMO: ServiceRates(
            base=3.25, per_mile=1.35, per_min=0.42, booking=1.25, safety_fee=0.0, min_fare=10.50,
            airport_pickup_fee=5.00, airport_dropoff_fee=3.00,
            airport_overrides={"SFO": AirportFeePair(pickup=5.50, dropoff=5.50)},
            cbd_surcharge=3.00, long_ride_fee=LongRideFee(threshold_miles=25, fee=5.00), max_surge=2.0,
        ),
    },
    surge_schedule=SurgeSchedule(
        weekday={
            "06:00-06:30": 1.05, "06:30-07:00": 1.10,
            "07:00-07:30": 1.15, "07:30-08:00": 1.20,
            "08:00-08:30": 1.25, "08:30-09:00": 1.20,
            "09:00-09:30": 1.10, "09:30-10:00": 1.05,
            "16:30-17:00": 1.10,
            "17:00-17:30": 1.30, "17:30-18:00": 1.45,
            "18:00-18:30": 1.60, "18:30-19:00": 1.50,
            "19:00-19:30": 1.30, "19:30-20:00": 1.15,
            "23:00-23:30": 1.15, "23:30-00:00": 1.15,
            "00:00-00:30": 1.15, "00:30-01:00": 1.10,
            "1": 1.05, "2": 1.05,
        },
        weekend={
            "12:00-12:30": 1.05, "12:30-13:00": 1.05,
            "18:00-18:30": 1.10, "18:30-19:00": 1.10,
            "20:00-20:30": 1.25, "20:30-21:00": 1.25,
            "21": 1.30,
            "22:00-22:30": 1.45, "22:30-23:00": 1.50,
            "23:00-23:30": 1.60, "23:30-00:00": 1.70,
            "00:00-00:30": 1.85, "00:30-01:00": 1.85,
            "01:00-01:30": 1.85, "01:30-02:00": 1.75,
            "02:00-02:30": 1.50, "02:30-03:00": 1.35,
        },
    ),
    location_modifiers=LocationModifiers(airport_late_night=1.15, airport_peak_hours=1.25),
    traffic_modifiers=TrafficModifiers(light=1.0, moderate=1.1, heavy=1.25, severe=1.4),
)


def load_pricing_config(path: str | Path | None = None) -> PricingConfig:
    """Load and validate a fare model from JSON, or return the built-in default."""
    if path is None:
        return DEFAULT_PRICING_CONFIG
    path = Path(path)
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
        config = PricingConfig.model_validate(raw)
    except (OSError, ValueError) as exc:
        raise ConfigurationError(f"Invalid pricing config at {path}: {exc}") from exc
    logger.info("Loaded pricing config", extra={"path": str(path), "version": config.version})
    return config
