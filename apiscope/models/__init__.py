"""Pydantic models for APIScope.

This module exports all data models used throughout the application.
"""

from .capture import (
    ApiRecord,
    ApiResponse,
    AuthMarker,
    CaptureOutcome,
    CaptureRequest,
    CaptureResult,
    GraphQLOperation,
    NetworkRequest,
    NetworkResponse,
    WebSocketConnection,
    WebSocketFrame,
)
from .errors import (
    CorsGuidance,
    ErrorClassification,
    ErrorKind,
    ErrorPayload,
    OriginalError,
    RetryStrategy,
)
from .rate_limit import RateLimitInfo, TimeUntilReset
from .session import CleanupStats, Session, SessionMetadata, SessionView, StoreStats

__all__ = [
    # Capture models
    "ApiRecord",
    "ApiResponse",
    "AuthMarker",
    "CaptureOutcome",
    "CaptureRequest",
    "CaptureResult",
    "GraphQLOperation",
    "NetworkRequest",
    "NetworkResponse",
    "WebSocketConnection",
    "WebSocketFrame",
    # Error models
    "CorsGuidance",
    "ErrorClassification",
    "ErrorKind",
    "ErrorPayload",
    "OriginalError",
    "RetryStrategy",
    # Rate limit models
    "RateLimitInfo",
    "TimeUntilReset",
    # Session models
    "CleanupStats",
    "Session",
    "SessionMetadata",
    "SessionView",
    "StoreStats",
]
