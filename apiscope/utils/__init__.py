"""Utility modules for APIScope."""

from .rate_limit import calculate_time_until_reset, parse_rate_limit_headers
from .retry import RetryCancelledError, RetryPolicy, calculate_backoff_delay, retry_with_backoff

__all__ = [
    "calculate_time_until_reset",
    "parse_rate_limit_headers",
    "RetryCancelledError",
    "RetryPolicy",
    "calculate_backoff_delay",
    "retry_with_backoff",
]
