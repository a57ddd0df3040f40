"""HTTP API for ride fare comparisons."""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests
from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, Response, status
from pydantic import BaseModel

from ridefare.comparison_service import ComparisonOptions, RideComparisonService
from ridefare.domain import ComparisonComputation, Coordinates, Place, RideResult, ServiceType, SurgeInfo
from ridefare.errors import UnsupportedServiceError, UpstreamUnavailableError, ValidationError
from ridefare.rate_limiter import RateLimitDecision, TieredRateLimiter
from ridefare.validation import (
    AddressComparisonRequest,
    RideComparisonRequest,
    detect_spam_patterns,
    detect_suspicious_coordinates,
    validate_input,
)
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="ridefare/api")

# Services offered when a request does not name any.
HTTP_DEFAULT_SERVICES = (ServiceType.UBER, ServiceType.LYFT, ServiceType.TAXI)
POPULAR_ROUTE_CACHE_CONTROL = "private, max-age=300, stale-while-revalidate=1800"
DEFAULT_CACHE_CONTROL = "private, max-age=30, stale-while-revalidate=120"

router = APIRouter()


class ComparisonResponse(BaseModel):
    """Serialized comparison returned by both compare endpoints."""
    route_id: Optional[str] = None
    comparisons: Dict[str, RideResult]
    insights: str
    pickup_coords: Coordinates
    destination_coords: Coordinates
    surge_info: SurgeInfo
    time_recommendations: List[str]


class HealthResponse(BaseModel):
    status: str
    timestamp: datetime
    rate_limit_backend: str


def get_comparison_service(request: Request) -> RideComparisonService:
    return request.app.state.comparison_service


def get_rate_limiter(request: Request) -> TieredRateLimiter:
    return request.app.state.rate_limiter


def _rate_limit_headers(decision: RateLimitDecision) -> Dict[str, str]:
    return {
        "X-RateLimit-Remaining": str(decision.remaining_requests),
        "X-RateLimit-Reset": str(int(decision.reset_time)),
    }


def enforce_rate_limit(
    request: Request,
    response: Response,
    limiter: TieredRateLimiter = Depends(get_rate_limiter),
) -> RateLimitDecision:
    """Reject the request with 429 before any comparison work when a limit is hit."""
    decision = limiter.check_request(request.headers)
    headers = _rate_limit_headers(decision)
    if not decision.allowed:
        retry_after = decision.retry_after_seconds
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={"error": "Rate limit exceeded", "details": decision.reason, "retry_after": retry_after},
            headers={"Retry-After": str(retry_after), **headers},
        )
    response.headers.update(headers)
    return decision


def _to_response(computation: ComparisonComputation) -> ComparisonResponse:
    return ComparisonResponse(
        route_id=computation.route_id,
        comparisons={service.value: result for service, result in computation.results.items()},
        insights=computation.insights,
        pickup_coords=computation.pickup,
        destination_coords=computation.destination,
        surge_info=computation.surge_info,
        time_recommendations=computation.time_recommendations,
    )


def _bad_request(exc: ValidationError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"error": "Invalid input", "details": [{"field": exc.field, "message": str(exc), "code": exc.code}]},
    )


def _run_comparison(fn, *args, **kwargs) -> ComparisonComputation:
    """Call the orchestrator and translate its failures into HTTP errors."""
    try:
        computation = fn(*args, **kwargs)
    except UnsupportedServiceError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except (UpstreamUnavailableError, requests.RequestException) as exc:
        logger.error("Upstream provider unavailable", extra={"error": str(exc)})
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Location services are temporarily unavailable; please retry.",
        )
    if computation is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Could not resolve pickup or destination.")
    return computation


def _parse_services(raw: Optional[str]) -> List[str]:
    if not raw:
        return [s.value for s in HTTP_DEFAULT_SERVICES]
    return [part for part in (p.strip() for p in raw.split(",")) if part]


@router.get("/compare-rides", response_model=ComparisonResponse)
def compare_rides_get(
    request: Request,
    response: Response,
    pickup: str = Query(default=""),
    destination: str = Query(default=""),
    services: Optional[str] = Query(default=None, description="Comma-separated service names"),
    _decision: RateLimitDecision = Depends(enforce_rate_limit),
    service: RideComparisonService = Depends(get_comparison_service),
):
    """Compare fares between two addresses."""
    if not pickup.strip() or not destination.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Pickup and destination are required")

    computation = _run_comparison(
        service.compare_rides_by_addresses,
        pickup,
        destination,
        _parse_services(services),
        options=ComparisonOptions(session_id=request.headers.get("x-session-id")),
    )
    popular = computation.popular_route_id is not None
    response.headers["Cache-Control"] = POPULAR_ROUTE_CACHE_CONTROL if popular else DEFAULT_CACHE_CONTROL
    return _to_response(computation)


@router.post("/compare-rides", response_model=ComparisonResponse)
def compare_rides_post(
    request: Request,
    body: Dict[str, Any] = Body(...),
    _decision: RateLimitDecision = Depends(enforce_rate_limit),
    service: RideComparisonService = Depends(get_comparison_service),
):
    """Compare fares for either {pickup, destination} addresses or {from, to} points."""
    options = ComparisonOptions(
        user_id=request.headers.get("x-user-id"),
        session_id=request.headers.get("x-session-id"),
    )

    if "pickup" in body or "destination" in body:
        try:
            req = validate_input(AddressComparisonRequest, body, "ride comparison request")
        except ValidationError as exc:
            raise _bad_request(exc)
        computation = _run_comparison(
            service.compare_rides_by_addresses,
            req.pickup,
            req.destination,
            req.services or list(HTTP_DEFAULT_SERVICES),
            options=options,
        )
        return _to_response(computation)

    try:
        req = validate_input(RideComparisonRequest, body, "ride comparison request")
    except ValidationError as exc:
        raise _bad_request(exc)

    if detect_spam_patterns(req.from_.name) or detect_spam_patterns(req.to.name):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid location names detected")
    if detect_suspicious_coordinates(req.from_, req.to):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid route: pickup and destination are too close",
        )

    computation = _run_comparison(
        service.compare_rides_by_coordinates,
        Place(req.from_.name, req.from_.coordinates),
        Place(req.to.name, req.to.coordinates),
        req.services,
        options=options,
    )
    return _to_response(computation)


@router.get("/health", response_model=HealthResponse)
def health(limiter: TieredRateLimiter = Depends(get_rate_limiter)):
    """Liveness check; does not call upstream providers."""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now(timezone.utc),
        rate_limit_backend=type(limiter.store).__name__,
    )
