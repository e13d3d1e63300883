"""Service dependency providers."""

from typing import Annotated

from fastapi import Depends, Request

from ...services.capture_service import CaptureService


def get_capture_service(request: Request) -> CaptureService:
    """
    Get the application's capture service.

    The service is created in the application lifespan and kept on app.state.

    Usage:
        @router.get("/session/{session_id}")
        async def endpoint(service: CaptureService = Depends(get_capture_service)):
            ...
    """
    return request.app.state.capture_service


# Type alias for cleaner dependency injection
CaptureServiceDep = Annotated[CaptureService, Depends(get_capture_service)]
