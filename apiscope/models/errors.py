"""Pydantic models for classified errors."""

from enum import Enum

from pydantic import BaseModel, Field


class ErrorKind(str, Enum):
    """Category a raw failure is normalized into."""

    CORS = "cors"
    DNS = "dns"
    TIMEOUT = "timeout"
    CONNECTION = "connection"
    SSL = "ssl"
    NETWORK = "network"
    SERVER = "server"
    CLIENT = "client"
    REDIRECT = "redirect"
    PROXY = "proxy"
    PAGE_ERROR = "page_error"
    DNS_BLOCKED = "dns_blocked"
    UNKNOWN = "unknown"


class ErrorClassification(BaseModel):
    """Deterministic classification of a failure."""

    model_config = {"frozen": True}

    kind: ErrorKind
    retryable: bool
    max_retries: int = Field(..., ge=0)
    title: str
    message: str
    suggestions: list[str] = Field(default_factory=list)


class RetryStrategy(BaseModel):
    """Retry tuning derived from an error kind."""

    retryable: bool
    max_retries: int = Field(..., ge=0)
    initial_delay_ms: int = 1000
    max_delay_ms: int = 10000
    backoff_multiplier: float = 2.0


class OriginalError(BaseModel):
    """The raw error fields a classification was derived from."""

    message: str = "Unknown error"
    code: str | None = None
    name: str | None = None
    stack: str | None = None


class ErrorPayload(BaseModel):
    """User-facing error description with actionable suggestions."""

    type: ErrorKind
    title: str
    message: str
    suggestions: list[str] = Field(default_factory=list)
    retryable: bool
    original_error: OriginalError


class CorsGuidance(BaseModel):
    """Background information shown alongside CORS failures."""

    explanation: str
    common_solutions: list[str]
    documentation: str
