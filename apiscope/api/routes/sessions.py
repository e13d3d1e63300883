"""Capture and session endpoints."""

import structlog
from fastapi import APIRouter, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from ...errors.classifier import http_status_for
from ...models.session import SessionView, StoreStats
from ...services.capture_service import CaptureFailedError
from ..deps import CaptureServiceDep
from ..schemas import (
    CancelResponse,
    CleanupResponse,
    ErrorResponse,
    ParseRequest,
    ParseResponse,
)

logger = structlog.get_logger(__name__)
router = APIRouter(tags=["sessions"])

# Client closed request; used for captures cancelled by the caller
HTTP_499_CLIENT_CLOSED_REQUEST = 499


@router.post(
    "/parse",
    response_model=ParseResponse,
    summary="Capture a page's API traffic",
    description="Load the URL in a headless browser and record the API calls it makes",
    responses={
        400: {"model": ErrorResponse},
        499: {"model": ParseResponse},
        500: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
        504: {"model": ErrorResponse},
    },
)
async def parse(
    body: ParseRequest,
    request: Request,
    service: CaptureServiceDep,
) -> ParseResponse | JSONResponse:
    """
    Run a capture and store it as a session.

    Failures are classified: the status code follows the error kind and the
    body carries the classified payload with suggestions.
    """
    if body.session_id is not None and body.session_id in service.active_sessions:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Capture {body.session_id} is already running",
        )

    try:
        result = await service.create_session(
            body.to_capture_request(),
            session_id=body.session_id,
        )
    except CaptureFailedError as exc:
        error_response = ErrorResponse(
            error=exc.kind.value,
            detail=exc.payload.message,
            request_id=getattr(request.state, "request_id", None),
            payload=exc.payload,
        )
        return JSONResponse(
            status_code=http_status_for(exc.kind),
            content=error_response.model_dump(mode="json"),
        )

    response = ParseResponse.from_result(result)
    if result.cancelled:
        return JSONResponse(
            status_code=HTTP_499_CLIENT_CLOSED_REQUEST,
            content=response.model_dump(mode="json"),
        )
    return response


@router.post(
    "/cancel/{session_id}",
    response_model=CancelResponse,
    summary="Cancel a running capture",
)
async def cancel(session_id: str, service: CaptureServiceDep) -> CancelResponse:
    """
    Ask a running capture to stop; it returns its partial results.

    Raises:
        HTTPException: 404 if no capture with this id is running
    """
    if not service.cancel_session(session_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No active capture {session_id}",
        )
    return CancelResponse(session_id=session_id)


@router.get(
    "/session/{session_id}",
    response_model=SessionView,
    summary="Get a stored session",
)
async def get_session(session_id: str, service: CaptureServiceDep) -> SessionView:
    """
    Fetch a stored session and record the access.

    Raises:
        HTTPException: 404 if the session is unknown, expired or evicted
    """
    session = service.get_session(session_id)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found",
        )
    return session


@router.get(
    "/sessions/stats",
    response_model=StoreStats,
    summary="Session store statistics",
)
async def session_stats(service: CaptureServiceDep) -> StoreStats:
    return service.stats()


@router.post(
    "/sessions/cleanup",
    response_model=CleanupResponse,
    summary="Clean up stored sessions",
)
async def cleanup_sessions(
    service: CaptureServiceDep,
    force: bool = Query(default=False, description="Remove every stored session"),
    max_age: int | None = Query(
        default=None,
        ge=0,
        description="Also remove sessions older than this many minutes",
    ),
) -> CleanupResponse:
    """Run a manual cleanup pass."""
    stats = service.cleanup(force=force, max_age_minutes=max_age)
    logger.info(
        "manual_cleanup",
        force=force,
        max_age=max_age,
        removed=stats.removed,
        evicted=stats.evicted,
        remaining=stats.remaining,
    )
    return CleanupResponse(cleanup_stats=stats)
