"""Error taxonomy for APIScope."""

from .classifier import (
    categorize_error,
    classify_error,
    format_error_for_display,
    get_cors_guidance,
    get_retry_strategy,
    http_status_for,
    is_cors_error,
    is_retryable_error,
)

__all__ = [
    "categorize_error",
    "classify_error",
    "format_error_for_display",
    "get_cors_guidance",
    "get_retry_strategy",
    "http_status_for",
    "is_cors_error",
    "is_retryable_error",
]
