"""FastAPI application setup for the ride fare comparison service."""

from contextlib import asynccontextmanager

from fastapi import FastAPI

from ridefare.api import router as api_router
from ridefare.comparison_service import RideComparisonService, build_comparison_service
from ridefare.config import Settings, settings as default_settings
from ridefare.rate_limit_store import build_rate_limit_store
from ridefare.rate_limiter import TieredRateLimiter
from utils.logging_utils import get_tagged_logger, mask_url, setup_logging

logger = get_tagged_logger(__name__, tag="ridefare/main")


def create_app(
    settings: Settings | None = None,
    comparison_service: RideComparisonService | None = None,
    rate_limiter: TieredRateLimiter | None = None,
) -> FastAPI:
    """Build the app; collaborators not passed in are built from settings."""
    settings = settings or default_settings
    setup_logging(level="INFO", job_name="ridefare")

    if comparison_service is None:
        comparison_service = build_comparison_service(settings)
    if rate_limiter is None:
        if settings.rate_limit_redis_url:
            logger.info("Rate limit store configured", extra={"redis_url": mask_url(settings.rate_limit_redis_url)})
        rate_limiter = TieredRateLimiter.from_settings(settings, build_rate_limit_store(settings.rate_limit_redis_url))

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        comparison_service.close()

    app = FastAPI(title="RideFare", lifespan=lifespan)
    app.state.comparison_service = comparison_service
    app.state.rate_limiter = rate_limiter
    app.include_router(api_router, prefix="/v1")
    return app


app = create_app()
