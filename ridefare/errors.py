"""Exception hierarchy shared by the pricing engine, lookups and orchestrator."""

from __future__ import annotations


class RideFareError(Exception):
    """Base class for all ride fare errors."""


class ConfigurationError(RideFareError):
    """Fare model or service configuration is missing or invalid. Never retried."""


class UnsupportedServiceError(ConfigurationError):
    """Raised when a service has no configured rate table."""

    def __init__(self, service: object) -> None:
        super().__init__(f"Unsupported service: {service}")
        self.service = service


class UpstreamUnavailableError(RideFareError):
    """An external provider timed out or answered with an unusable response."""


class GeocodingUnavailableError(UpstreamUnavailableError):
    """The geocoder could not be reached after all retries."""


class RoutingError(UpstreamUnavailableError):
    """The router failed or returned no usable route."""


class ValidationError(RideFareError):
    """Input failed validation at the request boundary."""

    def __init__(self, message: str, field: str, code: str = "VALIDATION_ERROR") -> None:
        super().__init__(message)
        self.field = field
        self.code = code
