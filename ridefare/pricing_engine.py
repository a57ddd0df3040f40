"""Deterministic fare computation.

This module turns (service, endpoints, distance, duration, timestamp) into an
itemized PricingResult. It is a pure function of its inputs and the fare model:
no I/O, no clock reads, no shared mutable state. Timestamps are interpreted by
their wall-clock fields; callers pass local time for the pricing region.
"""

from __future__ import annotations

import datetime as dt
from typing import List, Optional, Tuple

from ridefare.airports import is_airport_location
from ridefare.domain import (
    Coordinates,
    PricingBreakdown,
    PricingResult,
    ServiceType,
    TrafficLevel,
)
from ridefare.errors import UnsupportedServiceError
from ridefare.geo import is_downtown
from ridefare.pricing_config import DEFAULT_PRICING_CONFIG, PricingConfig, ServiceRates
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="pricing_engine")

KM_TO_MILES = 0.621371

REASON_AIRPORT_LATE_NIGHT = "Late night airport premium"
REASON_AIRPORT_PEAK = "Peak hours airport demand"
REASON_AIRPORT = "Airport route"
REASON_LATE_NIGHT = "Late night premium"
REASON_RUSH_HOUR = "Rush hour demand"
REASON_STANDARD = "Standard pricing"


def km_to_miles(km: float) -> float:
    return km * KM_TO_MILES


def time_slot(hour: int, minute: int) -> str:
    """Return the 30-minute schedule key containing hour:minute, e.g. "08:30-09:00"."""
    if minute < 30:
        return f"{hour:02d}:00-{hour:02d}:30"
    return f"{hour:02d}:30-{(hour + 1) % 24:02d}:00"


def is_weekend(timestamp: dt.datetime) -> bool:
    return timestamp.weekday() >= 5


def is_late_night(hour: int) -> bool:
    return hour >= 23 or hour <= 5


def is_peak_hours(hour: int, weekend: bool) -> bool:
    return not weekend and (7 <= hour <= 9 or 17 <= hour <= 19)


def classify_traffic(ratio: float) -> TrafficLevel:
    """Bucket an actual/expected duration ratio."""
    if ratio <= 1.1:
        return TrafficLevel.LIGHT
    if ratio <= 1.3:
        return TrafficLevel.MODERATE
    if ratio <= 1.6:
        return TrafficLevel.HEAVY
    return TrafficLevel.SEVERE


class PricingEngine:
    """Fare calculator bound to a validated fare model."""

    def __init__(self, config: PricingConfig | None = None) -> None:
        self.config = config or DEFAULT_PRICING_CONFIG

    def supports(self, service: ServiceType) -> bool:
        return service in self.config.services

    def _rates(self, service: ServiceType | str) -> ServiceRates:
        try:
            key = ServiceType(service.lower() if isinstance(service, str) else service)
        except ValueError:
            raise UnsupportedServiceError(service)
        rates = self.config.services.get(key)
        if rates is None:
            raise UnsupportedServiceError(key.value)
        return rates

    # ------------------------------------------------------------------
    # Additive fees
    # ------------------------------------------------------------------

    @staticmethod
    def _airport_fees(pickup: Coordinates, destination: Coordinates, rates: ServiceRates) -> float:
        total = 0.0
        pickup_airport = is_airport_location(pickup)
        if pickup_airport:
            override = rates.airport_overrides.get(pickup_airport.code)
            total += override.pickup if override else rates.airport_pickup_fee
        dest_airport = is_airport_location(destination)
        if dest_airport:
            override = rates.airport_overrides.get(dest_airport.code)
            total += override.dropoff if override else rates.airport_dropoff_fee
        return total

    @staticmethod
    def _location_surcharge(pickup: Coordinates, destination: Coordinates, hour: int,
                            rates: ServiceRates) -> float:
        if not rates.cbd_surcharge:
            return 0.0
        if not (is_downtown(pickup) or is_downtown(destination)):
            return 0.0
        if 9 <= hour <= 17:
            return rates.cbd_surcharge * 0.5
        if hour >= 20 or hour <= 2:
            return rates.cbd_surcharge * 1.2
        return rates.cbd_surcharge

    @staticmethod
    def _long_ride_fee(distance_miles: float, rates: ServiceRates) -> float:
        if rates.long_ride_fee and distance_miles >= rates.long_ride_fee.threshold_miles:
            return rates.long_ride_fee.fee
        return 0.0

    # ------------------------------------------------------------------
    # Multipliers
    # ------------------------------------------------------------------

    def _surge(self, pickup: Coordinates, destination: Coordinates, timestamp: dt.datetime,
               cap: float) -> Tuple[float, str]:
        hour = timestamp.hour
        weekend = is_weekend(timestamp)
        schedule = self.config.surge_schedule.weekend if weekend else self.config.surge_schedule.weekday
        base_surge = schedule.get(time_slot(hour, timestamp.minute), schedule.get(str(hour), 1.0))

        airport_route = is_airport_location(pickup) is not None or is_airport_location(destination) is not None
        late_night = is_late_night(hour)
        peak = is_peak_hours(hour, weekend)
        modifiers = self.config.location_modifiers

        location_multiplier = 1.0
        if airport_route:
            if late_night:
                location_multiplier = modifiers.airport_late_night
                reason = REASON_AIRPORT_LATE_NIGHT
            elif peak:
                location_multiplier = modifiers.airport_peak_hours
                reason = REASON_AIRPORT_PEAK
            else:
                reason = REASON_AIRPORT
        elif late_night:
            reason = REASON_LATE_NIGHT
        elif peak:
            reason = REASON_RUSH_HOUR
        else:
            reason = REASON_STANDARD

        multiplier = max(1.0, min(base_surge * location_multiplier, cap))
        logger.debug(
            "Surge calculated",
            extra={"base_surge": base_surge, "location_multiplier": location_multiplier,
                   "multiplier": multiplier, "reason": reason, "weekend": weekend},
        )
        return multiplier, reason

    def _traffic(self, provider_duration_sec: Optional[float],
                 expected_duration_sec: Optional[float]) -> float:
        if not provider_duration_sec or not expected_duration_sec:
            return 1.0
        level = classify_traffic(provider_duration_sec / expected_duration_sec)
        return self.config.traffic_modifiers.for_level(level)

    @staticmethod
    def _confidence(surge: float, traffic: float, distance_km: float, hour: int) -> float:
        confidence = 0.9
        if surge > 2.0:
            confidence -= 0.15
        elif surge > 1.5:
            confidence -= 0.10
        if traffic > 1.3:
            confidence -= 0.10
        if distance_km > 50:
            confidence -= 0.15
        elif distance_km > 25:
            confidence -= 0.10
        if 1 <= hour <= 5:
            confidence -= 0.10
        return round(max(confidence, 0.5), 2)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def calculate_fare(
        self,
        service: ServiceType | str,
        pickup: Coordinates,
        destination: Coordinates,
        distance_km: float,
        duration_min: float,
        timestamp: dt.datetime,
        provider_duration_sec: Optional[float] = None,
        expected_duration_sec: Optional[float] = None,
    ) -> PricingResult:
        """Price one trip for one service.

        Raises UnsupportedServiceError when the service has no rate table. Other
        inputs are not validated here.
        """
        rates = self._rates(service)

        distance_miles = km_to_miles(distance_km)
        base_fare = rates.base
        distance_fee = distance_miles * rates.per_mile
        time_fee = duration_min * rates.per_min
        booking_fee = rates.booking
        safety_fee = rates.safety_fee

        airport_fees = self._airport_fees(pickup, destination, rates)
        location_surcharge = self._location_surcharge(pickup, destination, timestamp.hour, rates)
        long_ride_fee = self._long_ride_fee(distance_miles, rates)

        subtotal = (base_fare + distance_fee + time_fee + booking_fee + safety_fee
                    + airport_fees + location_surcharge + long_ride_fee)

        surge_multiplier, surge_reason = self._surge(pickup, destination, timestamp, rates.max_surge)
        traffic_multiplier = self._traffic(provider_duration_sec, expected_duration_sec)

        surge_fee = subtotal * (surge_multiplier - 1)
        traffic_fee = (subtotal + surge_fee) * (traffic_multiplier - 1)
        final_fare = subtotal + surge_fee + traffic_fee
        applied_min_fare = final_fare < rates.min_fare
        if applied_min_fare:
            final_fare = rates.min_fare

        breakdown = PricingBreakdown(
            base_fare=base_fare,
            distance_fee=distance_fee,
            time_fee=time_fee,
            booking_fee=booking_fee,
            safety_fee=safety_fee,
            airport_fees=airport_fees,
            location_surcharge=location_surcharge,
            long_ride_fee=long_ride_fee,
            subtotal=subtotal,
            surge_multiplier=surge_multiplier,
            surge_fee=surge_fee,
            traffic_multiplier=traffic_multiplier,
            traffic_fee=traffic_fee,
            final_fare=final_fare,
            applied_min_fare=applied_min_fare,
        )
        return PricingResult(
            price=round(final_fare, 2),
            breakdown=breakdown,
            surge_reason=surge_reason,
            confidence=self._confidence(surge_multiplier, traffic_multiplier, distance_km, timestamp.hour),
        )

    def calculate_surge(self, pickup: Coordinates, destination: Coordinates, timestamp: dt.datetime,
                        service: ServiceType | None = None) -> Tuple[float, str]:
        """Route-level surge, capped by `service`'s limit or the default cap."""
        cap = self._rates(service).max_surge if service else 3.0
        return self._surge(pickup, destination, timestamp, cap)

    @staticmethod
    def best_time_recommendations(now: dt.datetime) -> List[str]:
        """Two booking tips for the hour of `now`."""
        hour = now.hour
        if 14 <= hour <= 16:
            return [
                "Great timing! You're booking during off-peak hours",
                "Best prices are typically 2-4 PM (avoid rush hours for savings)",
            ]
        if 7 <= hour <= 9:
            return [
                "Rush hour pricing in effect. Expect 20-40% increase over standard rates",
                "Best prices: 2-4 PM (avoid peak hours for savings)",
            ]
        if 17 <= hour <= 19:
            return [
                "Evening rush pricing. Consider waiting until after 8 PM for better rates",
                "Best prices: 2-4 PM (avoid peak hours for savings)",
            ]
        if hour >= 20 or hour <= 5:
            return [
                "Late night premium in effect (up to 30% increase)",
                "Best prices: 2-4 PM (avoid peak hours for savings)",
            ]
        return [
            "Best prices: 2-4 PM (avoid peak hours for savings)",
            "Avoid rush hours: 7-9 AM and 5-7 PM (up to 40% increase)",
        ]


pricing_engine = PricingEngine()


def calculate_fare(
    service: ServiceType | str,
    pickup: Coordinates,
    destination: Coordinates,
    distance_km: float,
    duration_min: float,
    timestamp: dt.datetime,
    provider_duration_sec: Optional[float] = None,
    expected_duration_sec: Optional[float] = None,
) -> PricingResult:
    """Price a trip with the default fare model."""
    return pricing_engine.calculate_fare(
        service, pickup, destination, distance_km, duration_min, timestamp,
        provider_duration_sec=provider_duration_sec,
        expected_duration_sec=expected_duration_sec,
    )
