"""Error classification for failed captures.

Turns arbitrary failures (Playwright errors, OS errors, plain dicts from a
collaborator) into an ErrorKind with a fixed, user-facing description and a
retry policy. Classification is a pure function of the input: the error's
``message``, ``code``, ``name`` and ``stack`` are serialized to one lower-cased
string and tested against an ordered table of substring patterns, first
match wins. URLs are removed from the message and stack first, so the page
address (``https://...``) never decides the kind. When nothing matches, the HTTP status (if any) decides between
``server`` and ``client``; otherwise the error is ``unknown``.
"""

import json
import re
from collections.abc import Mapping
from typing import Any

from ..models.errors import (
    CorsGuidance,
    ErrorClassification,
    ErrorKind,
    ErrorPayload,
    OriginalError,
    RetryStrategy,
)

# Ordered: the first kind whose pattern set matches wins.
ERROR_PATTERNS: list[tuple[ErrorKind, tuple[str, ...]]] = [
    (
        ErrorKind.CORS,
        (
            "CORS",
            "Cross-Origin",
            "blocked by CORS policy",
            "No 'Access-Control-Allow-Origin'",
            "CORS header",
            "cross-origin",
        ),
    ),
    (
        ErrorKind.SSL,
        (
            "SSL",
            "certificate",
            "ERR_CERT",
            "HTTPS",
            "TLS",
            "ERR_SSL",
            "NET::ERR_CERT",
            "certificate verify failed",
        ),
    ),
    (
        ErrorKind.DNS,
        (
            "ERR_NAME_NOT_RESOLVED",
            "ENOTFOUND",
            "DNS",
            "getaddrinfo",
            "name resolution failed",
        ),
    ),
    (
        ErrorKind.CONNECTION,
        (
            "ERR_CONNECTION_REFUSED",
            "ERR_CONNECTION_RESET",
            "ERR_CONNECTION_CLOSED",
            "ECONNREFUSED",
            "ECONNRESET",
            "connection refused",
            "connection reset",
        ),
    ),
    (
        ErrorKind.TIMEOUT,
        (
            "timeout",
            "ERR_TIMED_OUT",
            "ETIMEDOUT",
            "Navigation timeout",
            "exceeded",
            "timed out",
        ),
    ),
    (
        ErrorKind.NETWORK,
        (
            "ERR_NETWORK_CHANGED",
            "ERR_INTERNET_DISCONNECTED",
            "network error",
            "Network request failed",
            "Failed to fetch",
        ),
    ),
    (
        ErrorKind.PROXY,
        (
            "ERR_PROXY_CONNECTION_FAILED",
            "proxy",
            "ERR_TUNNEL_CONNECTION_FAILED",
        ),
    ),
    (
        ErrorKind.REDIRECT,
        (
            "ERR_TOO_MANY_REDIRECTS",
            "too many redirects",
            "redirect loop",
        ),
    ),
    (
        ErrorKind.PAGE_ERROR,
        (
            "require is not defined",
            "ReferenceError",
            "SyntaxError",
            "page error",
            "script error",
            "Uncaught",
            "is not defined",
        ),
    ),
    (
        ErrorKind.DNS_BLOCKED,
        (
            "blocked",
            "censored",
            "filtered",
            "NXDOMAIN",
            "dns block",
        ),
    ),
]

# Per-kind user-facing description: (title, message, suggestions, retryable)
ERROR_MESSAGES: dict[ErrorKind, tuple[str, str, tuple[str, ...], bool]] = {
    ErrorKind.CORS: (
        "CORS Error",
        "The website is blocking cross-origin requests",
        (
            "The target website needs to enable CORS headers",
            "Try using a CORS proxy service",
            "Check the browser console for specific CORS errors",
            "Contact the website administrator to enable CORS",
        ),
        False,
    ),
    ErrorKind.DNS: (
        "DNS Resolution Failed",
        "Unable to resolve the website address",
        (
            "Verify the URL is correct and properly formatted",
            "Check if the website is currently online",
            "Try accessing the website directly in your browser",
            "Check your DNS settings or try a different DNS server",
        ),
        True,
    ),
    ErrorKind.TIMEOUT: (
        "Request Timeout",
        "The website took too long to respond",
        (
            "The website may be slow or experiencing high traffic",
            "Try again in a few moments",
            "Check your internet connection speed",
            "The website server might be overloaded",
        ),
        True,
    ),
    ErrorKind.CONNECTION: (
        "Connection Failed",
        "Unable to establish connection to the website",
        (
            "Check your internet connection",
            "Verify the website is online and accessible",
            "The website server might be down",
            "Check if a firewall is blocking the connection",
        ),
        True,
    ),
    ErrorKind.SSL: (
        "SSL/TLS Error",
        "Secure connection could not be established",
        (
            "The website's SSL certificate may be invalid or expired",
            "Try accessing the website directly to see the certificate error",
            "The website may have security configuration issues",
            "Contact the website administrator",
        ),
        False,
    ),
    ErrorKind.NETWORK: (
        "Network Error",
        "A network error occurred",
        (
            "Check your internet connection",
            "Try disabling VPN or proxy if you're using one",
            "Check if your network settings have changed",
            "Try again in a few moments",
        ),
        True,
    ),
    ErrorKind.PROXY: (
        "Proxy Error",
        "Proxy connection failed",
        (
            "Check your proxy settings",
            "Verify the proxy server is online",
            "Try disabling the proxy temporarily",
            "Contact your network administrator",
        ),
        True,
    ),
    ErrorKind.REDIRECT: (
        "Too Many Redirects",
        "The website has too many redirects",
        (
            "The website may have a redirect loop",
            "Clear your browser cookies and cache",
            "Try accessing the website directly",
            "Contact the website administrator",
        ),
        False,
    ),
    ErrorKind.SERVER: (
        "Server Error",
        "The website server encountered an error",
        (
            "The website may be experiencing technical difficulties",
            "Try again in a few moments",
            "Check if the website is reporting any outages",
            "Contact the website administrator",
        ),
        True,
    ),
    ErrorKind.CLIENT: (
        "Client Error",
        "Invalid request",
        (
            "Verify the URL is correct",
            "Check if the page exists",
            "Try accessing the website directly",
            "The requested resource may not be available",
        ),
        False,
    ),
    ErrorKind.PAGE_ERROR: (
        "Target Website Has Errors",
        "The website has JavaScript errors, but we may have captured some APIs",
        (
            "Check the API list - we captured what we could",
            "The website may use incompatible code (CommonJS in browser)",
            "Try a different page from the same website",
            "APIs were likely still captured despite the error",
        ),
        False,
    ),
    ErrorKind.DNS_BLOCKED: (
        "Website May Be Blocked",
        "Unable to resolve domain - it may be blocked by your DNS or network",
        (
            "Try using a different DNS server (Google DNS: 8.8.8.8)",
            "The website might be blocked in your region",
            "Try accessing via VPN",
            "Check if you can access the website in your browser",
        ),
        True,
    ),
    ErrorKind.UNKNOWN: (
        "Unknown Error",
        "An unexpected error occurred",
        (
            "Try again in a few moments",
            "Check your internet connection",
            "Verify the URL is correct",
            "Contact support if the problem persists",
        ),
        True,
    ),
}

# HTTP status returned to API callers per kind; anything else is a 500.
HTTP_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.CLIENT: 400,
    ErrorKind.DNS: 400,
    ErrorKind.TIMEOUT: 504,
    ErrorKind.CONNECTION: 503,
}

RETRYABLE_MAX_RETRIES = 3


# Removed from message and stack before pattern matching
URL_PATTERN = re.compile(r"\b[a-z][a-z0-9+.-]*://\S+", re.IGNORECASE)


def _field(error: Any, name: str) -> Any:
    if isinstance(error, Mapping):
        return error.get(name)
    return getattr(error, name, None)


def _error_fields(error: Any) -> dict[str, str]:
    """Extract message/code/name/stack from an exception or a mapping.

    Python tracebacks are not used as ``stack``: interpreter
    file paths (``asyncio/timeouts.py``) would match the pattern table.
    """
    message = _field(error, "message")
    if message is None and isinstance(error, BaseException):
        message = str(error)
    name = _field(error, "name")
    if name is None and isinstance(error, BaseException):
        name = type(error).__name__
    code = _field(error, "code")
    if code is None and isinstance(error, OSError) and error.errno is not None:
        code = str(error.errno)
    stack = _field(error, "stack")
    return {
        "message": str(message or ""),
        "code": str(code or ""),
        "name": str(name or ""),
        "stack": str(stack or ""),
    }


def _status_of(error: Any) -> int | None:
    for attr in ("status", "status_code"):
        value = _field(error, attr)
        if isinstance(value, int) and not isinstance(value, bool) and value:
            return value
    return None


def categorize_error(error: Any) -> ErrorKind:
    """Return the ErrorKind for a raw failure.

    Args:
        error: An exception, or a mapping with message/code/name/stack/status

    Returns:
        The first matching kind, a status bucket, or ``ErrorKind.UNKNOWN``
    """
    if error is None:
        return ErrorKind.UNKNOWN

    fields = _error_fields(error)
    for key in ("message", "stack"):
        fields[key] = URL_PATTERN.sub("<url>", fields[key])
    haystack = json.dumps(fields).lower()

    for kind, patterns in ERROR_PATTERNS:
        if any(pattern.lower() in haystack for pattern in patterns):
            return kind

    status = _status_of(error)
    if status is not None:
        if status >= 500:
            return ErrorKind.SERVER
        if status >= 400:
            return ErrorKind.CLIENT

    return ErrorKind.UNKNOWN


def get_retry_strategy(kind: ErrorKind) -> RetryStrategy:
    """Retry tuning for an error kind."""
    retryable = ERROR_MESSAGES.get(kind, ERROR_MESSAGES[ErrorKind.UNKNOWN])[3]
    return RetryStrategy(
        retryable=retryable,
        max_retries=RETRYABLE_MAX_RETRIES if retryable else 0,
    )


def classify_error(error: Any) -> ErrorClassification:
    """Classify a failure into a kind with messaging and retry policy.

    Args:
        error: An exception, or a mapping with message/code/name/stack/status

    Returns:
        ErrorClassification for the error
    """
    kind = categorize_error(error)
    title, message, suggestions, retryable = ERROR_MESSAGES[kind]
    return ErrorClassification(
        kind=kind,
        retryable=retryable,
        max_retries=RETRYABLE_MAX_RETRIES if retryable else 0,
        title=title,
        message=message,
        suggestions=list(suggestions),
    )


def format_error_for_display(error: Any, custom_message: str | None = None) -> ErrorPayload:
    """Build the user-facing error payload for a failure.

    Args:
        error: The failure to describe
        custom_message: Overrides the kind's default message

    Returns:
        ErrorPayload including the original error fields
    """
    classification = classify_error(error)
    fields = _error_fields(error) if error is not None else {}

    return ErrorPayload(
        type=classification.kind,
        title=classification.title,
        message=custom_message or classification.message,
        suggestions=classification.suggestions,
        retryable=classification.retryable,
        original_error=OriginalError(
            message=fields.get("message") or "Unknown error",
            code=fields.get("code") or None,
            name=fields.get("name") or None,
            stack=fields.get("stack") or None,
        ),
    )


def is_retryable_error(error: Any) -> bool:
    """True if the error's kind is retryable."""
    return get_retry_strategy(categorize_error(error)).retryable


def is_cors_error(error: Any) -> bool:
    """True if the error classifies as a CORS failure."""
    return categorize_error(error) == ErrorKind.CORS


def http_status_for(kind: ErrorKind) -> int:
    """HTTP status code used when reporting a failed capture of this kind."""
    return HTTP_STATUS_BY_KIND.get(kind, 500)


def get_cors_guidance() -> CorsGuidance:
    return CorsGuidance(
        explanation=(
            "CORS (Cross-Origin Resource Sharing) is a security feature that restricts "
            "web pages from making requests to a different domain than the one serving the page."
        ),
        common_solutions=[
            "Enable CORS on the target server by adding appropriate "
            "Access-Control-Allow-Origin headers",
            "Use a CORS proxy service to bypass CORS restrictions",
            "Check the browser console for detailed CORS error messages",
            "If you control the server, configure it to allow cross-origin requests",
        ],
        documentation="https://developer.mozilla.org/en-US/docs/Web/HTTP/CORS",
    )
