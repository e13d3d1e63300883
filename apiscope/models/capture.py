"""Pydantic models for captured network traffic."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, PrivateAttr

from .rate_limit import RateLimitInfo


class NetworkRequest(BaseModel):
    """A request event delivered by the browser collaborator."""

    url: str = Field(..., description="Full request URL")
    method: str = Field(default="GET", description="HTTP method")
    headers: dict[str, str] = Field(default_factory=dict, description="Request headers")
    resource_type: str = Field(
        default="other",
        description="Browser resource type (document, xhr, fetch, script, ...)",
    )
    body: str | None = Field(default=None, description="Request body (post data)")
    request_id: str | None = Field(
        default=None,
        description="Collaborator-provided id shared with the matching response",
    )


class NetworkResponse(BaseModel):
    """A response event delivered by the browser collaborator."""

    url: str = Field(..., description="Response URL")
    status: int = Field(..., description="HTTP status code")
    status_text: str = Field(default="", description="HTTP status text")
    headers: dict[str, str] = Field(default_factory=dict, description="Response headers")
    body_text: str | None = Field(default=None, description="Response body, when read")
    request_id: str | None = Field(
        default=None,
        description="Collaborator-provided id of the originating request",
    )


class AuthMarker(BaseModel):
    """An authentication marker detected in request headers."""

    type: str = Field(..., description="Marker kind (Bearer Token, Basic Auth, API Key, ...)")
    header: str | None = Field(default=None, description="Header the marker was found in")
    value: str = Field(..., description="Truncated or redacted marker value")


class GraphQLOperation(BaseModel):
    """Best-effort breakdown of a GraphQL request payload."""

    operation_type: str = Field(default="query", description="query, mutation or subscription")
    operation_name: str = Field(default="Anonymous", description="Named operation, if any")
    query: str = Field(..., description="Trimmed query document")
    variables: Any = Field(default=None, description="Operation variables")
    fields: list[str] = Field(default_factory=list, description="First selection-set fields")


class ApiResponse(BaseModel):
    """Response data attached to an ApiRecord."""

    status: int
    status_text: str = ""
    headers: dict[str, str] = Field(default_factory=dict)
    data: Any = Field(default=None, description="Decoded JSON or text body")
    error: str | None = Field(default=None, description="Set when the body could not be decoded")
    size: str = Field(default="unknown", description="content-length header value")
    response_time_ms: int = Field(default=0, ge=0)
    rate_limit: RateLimitInfo | None = None


class ApiRecord(BaseModel):
    """A classified, potentially response-correlated network request."""

    id: int = Field(..., ge=1, description="Monotonic id within one capture")
    url: str
    method: str
    headers: dict[str, str] = Field(default_factory=dict)
    payload: str | None = None
    resource_type: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    matched_rule: str = Field(..., description="Name of the classification rule that matched")
    request_id: str | None = None
    authentication: list[AuthMarker] | None = None
    graphql: GraphQLOperation | None = None
    explanations: list[str] = Field(default_factory=list)
    response: ApiResponse | None = None

    _started_at: float = PrivateAttr(default=0.0)

    @property
    def is_pending(self) -> bool:
        """True while no response has been correlated."""
        return self.response is None


class WebSocketFrame(BaseModel):
    """One message exchanged over a captured WebSocket."""

    direction: Literal["sent", "received"]
    data: str = Field(..., description="Text payload, base64 for binary frames")
    timestamp: datetime = Field(default_factory=datetime.utcnow)


class WebSocketConnection(BaseModel):
    """A WebSocket opened by the page, with every frame seen on it."""

    id: int = Field(..., ge=1, description="Monotonic id within one capture")
    url: str
    type: Literal["websocket"] = "websocket"
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    frames: list[WebSocketFrame] = Field(default_factory=list)
    status: Literal["connected", "closed"] = "connected"


class CaptureRequest(BaseModel):
    """Parameters for one capture."""

    url: str = Field(..., min_length=1, description="Page to load")
    custom_headers: dict[str, str] = Field(
        default_factory=dict, description="Extra HTTP headers sent with every request"
    )
    cookies: str | None = Field(default=None, description="Cookie header style string (a=1; b=2)")
    user_agent: str | None = Field(default=None, description="Overrides the default user agent")
    timeout_seconds: float | None = Field(
        default=None, gt=0, description="Overall capture timeout (settings default when unset)"
    )


class CaptureOutcome(BaseModel):
    """What a capture run produced, before it is stored."""

    url: str
    api_records: list[ApiRecord] = Field(default_factory=list)
    web_sockets: list[WebSocketConnection] = Field(default_factory=list)
    partial: bool = Field(default=False, description="Capture stopped early (timeout or cancel)")
    cancelled: bool = False
    timed_out: bool = False
    dropped_events: int = Field(default=0, ge=0, description="Events lost to channel overflow")


class CaptureResult(BaseModel):
    """A capture as reported to callers of the capture service."""

    session_id: str
    url: str
    api_records: list[ApiRecord] = Field(default_factory=list)
    web_sockets: list[WebSocketConnection] = Field(default_factory=list)
    total_apis: int = 0
    total_web_sockets: int = 0
    partial: bool = False
    cancelled: bool = False
