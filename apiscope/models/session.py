"""Pydantic models for stored capture sessions."""

from typing import Literal

from pydantic import BaseModel, Field

from .capture import ApiRecord, WebSocketConnection


class Session(BaseModel):
    """The stored result of one completed capture.

    Timestamps are epoch milliseconds taken from the store's clock.
    """

    id: str
    url: str
    api_records: list[ApiRecord] = Field(default_factory=list)
    web_sockets: list[WebSocketConnection] = Field(default_factory=list)
    created_at: float
    last_accessed_at: float
    access_count: int = Field(default=0, ge=0)


class SessionMetadata(BaseModel):
    """Access metadata computed at read time."""

    age_minutes: int
    time_until_expiration_minutes: int
    access_count: int


class SessionView(BaseModel):
    """Read-only snapshot of a stored session handed to callers."""

    model_config = {"frozen": True}

    id: str
    url: str
    api_records: list[ApiRecord]
    web_sockets: list[WebSocketConnection]
    created_at: float
    last_accessed_at: float
    access_count: int
    metadata: SessionMetadata


class CleanupStats(BaseModel):
    """Outcome of a sweep, an eviction pass or a manual cleanup."""

    removed: int = 0
    evicted: int = 0
    remaining: int = 0
    oldest_session_age_minutes: int = 0
    reason: Literal["ttl", "size_limit", "within_limit", "force_cleanup", "manual"] = "ttl"


class StoreStats(BaseModel):
    """Aggregate view of the session store."""

    total_sessions: int
    max_sessions: int
    utilization_percent: int
    oldest_session_age: int = Field(..., description="Minutes")
    newest_session_age: int = Field(..., description="Minutes")
    average_session_age: int = Field(..., description="Minutes")
    total_access_count: int
    session_ttl_hours: float
    next_cleanup_in_minutes: int
