"""API request/response schemas.

These complement the Pydantic models in apiscope/models/.
"""

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

from ..models.capture import ApiRecord, CaptureRequest, CaptureResult, WebSocketConnection
from ..models.errors import ErrorPayload
from ..models.session import CleanupStats

# ===== Capture Endpoints =====

class ParseRequest(BaseModel):
    """Request to capture the API traffic of a page."""

    url: str = Field(..., min_length=1, description="Page to load")
    custom_headers: dict[str, str] = Field(
        default_factory=dict,
        description="Extra HTTP headers sent with every request"
    )
    cookies: str | None = Field(
        default=None,
        description="Cookies to set before loading, as 'name=value; other=value'"
    )
    user_agent: str | None = Field(default=None, description="Custom user agent")
    timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        le=600,
        description="Overall capture timeout; partial results are returned on expiry"
    )
    session_id: str | None = Field(
        default=None,
        min_length=1,
        max_length=64,
        description="Client-chosen session id, so the capture can be cancelled while it runs"
    )

    def to_capture_request(self) -> CaptureRequest:
        """Convert to CaptureRequest model."""
        return CaptureRequest(
            url=self.url,
            custom_headers=self.custom_headers,
            cookies=self.cookies,
            user_agent=self.user_agent,
            timeout_seconds=self.timeout_seconds,
        )


class ParseResponse(BaseModel):
    """Result of a capture."""

    success: bool = True
    session_id: str
    url: str
    total_apis: int
    apis: list[ApiRecord]
    total_web_sockets: int = 0
    web_sockets: list[WebSocketConnection] = Field(default_factory=list)
    partial: bool = False
    cancelled: bool = False

    @classmethod
    def from_result(cls, result: CaptureResult) -> "ParseResponse":
        return cls(
            success=not result.cancelled,
            session_id=result.session_id,
            url=result.url,
            total_apis=result.total_apis,
            apis=result.api_records,
            total_web_sockets=result.total_web_sockets,
            web_sockets=result.web_sockets,
            partial=result.partial,
            cancelled=result.cancelled,
        )


class CancelResponse(BaseModel):
    """Response when cancelling a running capture."""

    success: bool = True
    session_id: str
    message: str = Field(default="Cancellation requested")


class CleanupResponse(BaseModel):
    """Response for a manual cleanup."""

    success: bool = True
    cleanup_stats: CleanupStats
    timestamp: datetime = Field(default_factory=datetime.utcnow)


# ===== Health Check =====

class HealthResponse(BaseModel):
    """Basic health check response."""

    status: Literal["healthy", "unhealthy"]
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    version: str = Field(default="0.1.0")
    active_captures: int = Field(default=0, description="Captures currently running")
    stored_sessions: int = Field(default=0, description="Sessions held by the store")


# ===== Error Responses =====

class ErrorResponse(BaseModel):
    """Standard error response."""

    error: str = Field(..., description="Error type or code")
    detail: str = Field(..., description="Detailed error message")
    request_id: str | None = Field(
        None,
        description="Request ID for tracing"
    )
    payload: ErrorPayload | None = Field(
        None,
        description="Classified capture failure with suggestions"
    )


class ValidationErrorDetail(BaseModel):
    """Validation error detail."""

    loc: list[str | int] = Field(..., description="Location of error in request")
    msg: str = Field(..., description="Error message")
    type: str = Field(..., description="Error type")


class ValidationErrorResponse(BaseModel):
    """Validation error response."""

    error: str = Field(default="validation_error")
    detail: str = Field(..., description="Error summary")
    validation_errors: list[ValidationErrorDetail] = Field(
        ...,
        description="List of validation errors"
    )
