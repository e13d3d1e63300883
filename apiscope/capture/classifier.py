"""Traffic classification and response correlation.

A ``TrafficClassifier`` belongs to exactly one capture. It turns request
events into ``ApiRecord`` objects when one of the classification rules
matches, and attaches each response to the record it answers:

- by collaborator request id, when both events carry one;
- otherwise to the first record with an identical URL that has no response.

Responses that match nothing are dropped. Classification and correlation are
synchronous and never raise on malformed input.
"""

import json
import re
import time
from collections.abc import Callable
from typing import Any
from urllib.parse import urlsplit

import structlog

from ..models.capture import (
    ApiRecord,
    ApiResponse,
    AuthMarker,
    GraphQLOperation,
    NetworkRequest,
    NetworkResponse,
)
from ..utils.rate_limit import parse_rate_limit_headers

logger = structlog.get_logger(__name__)

ProgressCallback = Callable[[dict[str, Any]], None]

API_RESOURCE_TYPES = frozenset({"xhr", "fetch"})

API_PATH_MARKERS = (
    "/api/",
    "/v1/",
    "/v2/",
    "/v3/",
    "/graphql",
    "/rest/",
    "/rpc/",
    ".json",
)

API_KEYWORD_PATTERN = re.compile(r"/(auth|login|token|user|data|query|mutation)", re.IGNORECASE)

STRUCTURED_CONTENT_TYPES = ("application/json", "application/xml")

MAX_GRAPHQL_FIELDS = 10


def _header(headers: dict[str, str], name: str) -> str:
    for key, value in headers.items():
        if key.lower() == name:
            return value or ""
    return ""


def _path_and_query(url: str) -> str:
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    return f"{parts.path}?{parts.query}" if parts.query else parts.path


# ===== Classification rules =====


def is_api_resource_type(request: NetworkRequest) -> bool:
    """Browser-initiated XHR or fetch."""
    return request.resource_type.lower() in API_RESOURCE_TYPES


def has_api_path(request: NetworkRequest) -> bool:
    """URL path looks like an API route or a JSON document."""
    path = _path_and_query(request.url)
    return any(marker in path for marker in API_PATH_MARKERS)


def has_api_keyword(request: NetworkRequest) -> bool:
    """URL has a path segment starting with an API-ish keyword."""
    return API_KEYWORD_PATTERN.search(request.url) is not None


def has_structured_content(request: NetworkRequest) -> bool:
    """Request sends JSON/XML or asks for JSON back."""
    content_type = _header(request.headers, "content-type").lower()
    accept = _header(request.headers, "accept").lower()
    return any(kind in content_type for kind in STRUCTURED_CONTENT_TYPES) or (
        "application/json" in accept
    )


# Ordered: first matching rule names the classification.
CLASSIFICATION_RULES: list[tuple[str, Callable[[NetworkRequest], bool]]] = [
    ("resource_type", is_api_resource_type),
    ("api_path", has_api_path),
    ("api_keyword", has_api_keyword),
    ("json_content", has_structured_content),
]


def match_rule(request: NetworkRequest) -> str | None:
    """Name of the first classification rule the request satisfies, if any."""
    for name, predicate in CLASSIFICATION_RULES:
        try:
            if predicate(request):
                return name
        except Exception as exc:
            logger.debug("classification_rule_failed", rule=name, error=str(exc))
    return None


# ===== Purpose explanations =====

_ExplainPredicate = Callable[[str, str, str], bool]


def _url_has(*needles: str) -> _ExplainPredicate:
    return lambda url, method, content_type: any(needle in url for needle in needles)


def _method_is(expected: str) -> _ExplainPredicate:
    return lambda url, method, content_type: method == expected


def _content_has(needle: str) -> _ExplainPredicate:
    return lambda url, method, content_type: needle in content_type


_VERSIONED = re.compile(r"/v\d+/")

# (predicate over (lower-cased url, upper-cased method, lower-cased content type),
#  tag, only when no earlier tag matched)
EXPLANATION_RULES: list[tuple[_ExplainPredicate, str, bool]] = [
    (_url_has("/auth", "/login", "/signin"),
     "Authentication endpoint - handles user login/authentication", False),
    (_url_has("/register", "/signup"),
     "Registration endpoint - creates new user accounts", False),
    (_url_has("/user", "/profile"),
     "User data endpoint - manages user information", False),
    (_url_has("/token", "/refresh"),
     "Token endpoint - generates or refreshes authentication tokens", False),
    (lambda url, method, ct: "/api/v" in url or _VERSIONED.search(url) is not None,
     "Versioned API - using specific API version", False),
    (_url_has("/graphql"), "GraphQL endpoint - flexible query language for APIs", False),
    (_url_has("/webhook"), "Webhook endpoint - receives event notifications", False),
    (_url_has("/payment", "/checkout"),
     "Payment endpoint - handles financial transactions", False),
    (_url_has("/search"), "Search endpoint - performs data queries", False),
    (_url_has("/upload"), "Upload endpoint - handles file uploads", False),
    (_url_has("/download"), "Download endpoint - serves file downloads", False),
    (_method_is("POST"), "POST request - creating or submitting new data", True),
    (_method_is("PUT"), "PUT request - updating existing resource", False),
    (_method_is("DELETE"), "DELETE request - removing a resource", False),
    (_method_is("PATCH"), "PATCH request - partially updating a resource", False),
    (_method_is("GET"), "GET request - retrieving data from server", True),
    (_content_has("application/json"), "JSON data format - structured data exchange", False),
    (_content_has("multipart/form-data"), "Form data - likely includes file uploads", False),
]

DEFAULT_EXPLANATION = "Standard API request"


def explain_request(url: str, method: str, headers: dict[str, str]) -> list[str]:
    """Human-readable purpose tags for a request."""
    lowered_url = url.lower()
    upper_method = method.upper()
    content_type = _header(headers, "content-type").lower()

    explanations: list[str] = []
    for predicate, tag, only_if_empty in EXPLANATION_RULES:
        if only_if_empty and explanations:
            continue
        if predicate(lowered_url, upper_method, content_type):
            explanations.append(tag)

    return explanations or [DEFAULT_EXPLANATION]


# ===== Authentication and GraphQL =====


def detect_authentication(headers: dict[str, str]) -> list[AuthMarker] | None:
    """Authentication markers present in request headers, or None."""
    markers: list[AuthMarker] = []

    authorization = _header(headers, "authorization")
    if authorization:
        if authorization.startswith("Bearer "):
            markers.append(AuthMarker(type="Bearer Token", value=authorization[:20] + "..."))
        elif authorization.startswith("Basic "):
            markers.append(AuthMarker(type="Basic Auth", value="Hidden"))
        else:
            markers.append(AuthMarker(type="Custom Auth", value=authorization[:20] + "..."))

    api_key = _header(headers, "x-api-key")
    if api_key:
        markers.append(AuthMarker(type="API Key", header="x-api-key", value=api_key[:15] + "..."))

    auth_token = _header(headers, "x-auth-token")
    if auth_token:
        markers.append(
            AuthMarker(type="Auth Token", header="x-auth-token", value=auth_token[:15] + "...")
        )

    if _header(headers, "cookie"):
        markers.append(AuthMarker(type="Cookies", value="Session cookies present"))

    return markers or None


_OPERATION = re.compile(r"(query|mutation|subscription)\s+(\w+)")
_SELECTION = re.compile(r"\{([^}]+)\}")


def parse_graphql(payload: str | dict[str, Any] | None) -> GraphQLOperation | None:
    """Best-effort breakdown of a GraphQL request body; None if it is not one."""
    if not payload:
        return None

    try:
        parsed = json.loads(payload) if isinstance(payload, str) else payload
    except ValueError:
        return None

    if not isinstance(parsed, dict):
        return None
    query = parsed.get("query")
    if not isinstance(query, str) or not query:
        return None

    operation = _OPERATION.search(query)
    selection = _SELECTION.search(query)
    fields: list[str] = []
    if selection:
        fields = [line.strip() for line in selection.group(1).strip().split("\n") if line.strip()]

    return GraphQLOperation(
        operation_type=operation.group(1) if operation else "query",
        operation_name=operation.group(2) if operation else "Anonymous",
        query=query.strip(),
        variables=parsed.get("variables"),
        fields=fields[:MAX_GRAPHQL_FIELDS],
    )


# ===== Classifier =====


class TrafficClassifier:
    """Classifies one capture's requests and correlates their responses.

    Attributes:
        records: ApiRecords in creation order
    """

    def __init__(
        self,
        on_progress: ProgressCallback | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize an empty classifier.

        Args:
            on_progress: Fire-and-forget notification hook
            clock: Monotonic seconds, used for response times
        """
        self.records: list[ApiRecord] = []
        self._on_progress = on_progress
        self._clock = clock
        self._next_id = 1
        self._by_request_id: dict[str, ApiRecord] = {}

    @property
    def pending(self) -> list[ApiRecord]:
        """Records still waiting for a response."""
        return [record for record in self.records if record.response is None]

    def classify(self, request: NetworkRequest) -> ApiRecord | None:
        """Create an ApiRecord if the request looks like API traffic.

        Args:
            request: Request event from the browser collaborator

        Returns:
            The new record, or None when no rule matched
        """
        rule = match_rule(request)
        if rule is None:
            return None

        record = ApiRecord(
            id=self._next_id,
            url=request.url,
            method=request.method,
            headers=dict(request.headers),
            payload=request.body or None,
            resource_type=request.resource_type,
            matched_rule=rule,
            request_id=request.request_id,
            authentication=detect_authentication(request.headers),
            explanations=explain_request(request.url, request.method, request.headers),
            graphql=parse_graphql(request.body) if "graphql" in request.url else None,
        )
        record._started_at = self._clock()
        self._next_id += 1
        self.records.append(record)
        if request.request_id is not None:
            self._by_request_id[request.request_id] = record

        logger.debug(
            "api_detected",
            record_id=record.id,
            method=record.method,
            url=record.url,
            rule=rule,
            headers=record.headers,
        )
        self._notify(
            {
                "status": "api-detected",
                "message": f"API detected: {request.method} {request.url[:50]}",
                "count": len(self.records),
            }
        )
        return record

    def find_pending(self, url: str, request_id: str | None = None) -> ApiRecord | None:
        """Record a response with this URL (and request id) should attach to."""
        if request_id is not None and request_id in self._by_request_id:
            record = self._by_request_id[request_id]
            return record if record.response is None else None

        for record in self.records:
            if record.url == url and record.response is None:
                return record
        return None

    def correlate(self, record: ApiRecord, response: NetworkResponse) -> bool:
        """Attach a response to a record; the first correlated response wins.

        Returns:
            True if the response was attached
        """
        if record.response is not None:
            return False

        rate_limit = parse_rate_limit_headers(response.headers)
        content_type = _header(response.headers, "content-type").lower()
        elapsed_ms = max(0, int((self._clock() - record._started_at) * 1000))

        data: Any = None
        error: str | None = None
        if response.body_text is not None:
            if "application/json" in content_type:
                try:
                    data = json.loads(response.body_text)
                except ValueError:
                    error = "Could not parse response"
            elif "text" in content_type:
                data = response.body_text

        record.response = ApiResponse(
            status=response.status,
            status_text=response.status_text,
            headers=dict(response.headers),
            data=data,
            error=error,
            size=_header(response.headers, "content-length") or "unknown",
            response_time_ms=elapsed_ms,
            rate_limit=rate_limit,
        )

        if rate_limit is not None and rate_limit.is_approaching_limit:
            logger.warning(
                "rate_limit_approaching",
                url=record.url,
                remaining=rate_limit.remaining,
                limit=rate_limit.limit,
            )
            self._notify(
                {
                    "status": "rate-limit-warning",
                    "message": (
                        f"Rate limit warning: {rate_limit.remaining}/{rate_limit.limit} "
                        "requests remaining"
                    ),
                    "rate_limit": rate_limit.model_dump(),
                }
            )
        return True

    def handle_response(self, response: NetworkResponse) -> ApiRecord | None:
        """Correlate a response event with its pending record, if any."""
        record = self.find_pending(response.url, response.request_id)
        if record is None:
            logger.debug("response_unmatched", url=response.url[:100], status=response.status)
            return None
        self.correlate(record, response)
        return record

    def _notify(self, event: dict[str, Any]) -> None:
        if self._on_progress is None:
            return
        try:
            self._on_progress(event)
        except Exception as exc:
            logger.warning("progress_callback_failed", error=str(exc))
