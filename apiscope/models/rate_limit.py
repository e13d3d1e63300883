"""Pydantic models for rate-limit metadata."""

from typing import Literal

from pydantic import BaseModel, Field


class TimeUntilReset(BaseModel):
    """Human-readable countdown to a rate-limit window reset."""

    seconds: int = Field(..., ge=0)
    formatted: str
    is_past: bool = False


class RateLimitInfo(BaseModel):
    """Quota metadata extracted from response headers."""

    limit: int | None = None
    remaining: int | None = None
    reset: int | None = Field(
        default=None,
        description="Epoch seconds for legacy headers, delta seconds for the combined header",
    )
    reset_formatted: str | None = None
    retry_after: float | None = Field(default=None, description="Seconds to wait before retrying")
    policy: str | None = None
    percentage: int | None = Field(default=None, description="Remaining quota in percent")
    is_approaching_limit: bool = False
    limit_type: Literal["x-ratelimit", "ratelimit", "retry-after", "unknown"] = "unknown"
    time_until_reset: TimeUntilReset | None = None
