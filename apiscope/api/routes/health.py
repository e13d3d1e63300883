"""Health check endpoints."""

from datetime import datetime

from fastapi import APIRouter

from ... import __version__
from ..deps import CaptureServiceDep
from ..schemas import HealthResponse

router = APIRouter(tags=["health"])


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Basic health check",
    description="Quick health check endpoint for load balancers and monitoring",
)
async def health_check(service: CaptureServiceDep) -> HealthResponse:
    """
    Basic health check.

    Returns 200 if service is running, with the number of running
    captures and stored sessions.
    """
    return HealthResponse(
        status="healthy",
        timestamp=datetime.utcnow(),
        version=__version__,
        active_captures=len(service.active_sessions),
        stored_sessions=service.store.size,
    )
