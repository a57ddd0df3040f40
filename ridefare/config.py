"""Service settings read from RIDEFARE_* environment variables."""
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven configuration for the ride fare comparison service."""
    model_config = SettingsConfigDict(env_prefix="RIDEFARE_", extra="ignore")

    geocoder_base_url: str = "https://nominatim.openstreetmap.org/search"
    router_base_url: str = "https://router.project-osrm.org/route/v1/driving"
    user_agent: str = "RideCompareApp/1.0"
    request_timeout_seconds: float = 8.0
    max_retries: int = 2

    geocode_cache_ttl_seconds: int = 300
    route_cache_ttl_seconds: int = 600
    comparison_cache_ttl_seconds: int = 45
    popular_route_cache_ttl_seconds: int = 1800
    cache_max_entries: int = 1000
    cache_cleanup_threshold: float = 0.8

    timezone: str = "America/Los_Angeles"
    pricing_config_path: str | None = None

    burst_requests: int = 3
    burst_window_seconds: int = 10
    requests_per_minute: int = 10
    requests_per_hour: int = 50
    rate_limit_redis_url: str | None = None

    recorder: str = "logging"  # options: logging, none
    recorder_workers: int = 2

    @field_validator("geocoder_base_url", "router_base_url", mode="after")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        """Normalize base URLs to avoid double slashes."""
        return str(v).rstrip("/")

    @field_validator("cache_cleanup_threshold", mode="after")
    @classmethod
    def check_threshold(cls, v: float) -> float:
        """Keep the cleanup threshold a fraction of capacity."""
        if not 0 < v <= 1:
            raise ValueError("cache_cleanup_threshold must be in (0, 1]")
        return v


settings = Settings()
