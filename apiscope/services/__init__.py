"""Application services."""

from .capture_service import CaptureFailedError, CaptureRunner, CaptureService

__all__ = ["CaptureFailedError", "CaptureRunner", "CaptureService"]
