"""FastAPI dependencies."""

from .services import CaptureServiceDep, get_capture_service

__all__ = ["CaptureServiceDep", "get_capture_service"]
