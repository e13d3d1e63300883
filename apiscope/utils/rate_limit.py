"""Rate-limit header parsing.

Recognized dialects, in precedence order:

1. Legacy ``X-RateLimit-Limit`` / ``-Remaining`` / ``-Reset`` (and the
   ``X-Rate-Limit-*`` alias). Used whenever limit or remaining is present.
2. Combined IETF ``RateLimit: limit=100, remaining=20, reset=30``. Only
   consulted when no legacy header supplied limit or remaining.

``RateLimit-Policy: 100;w=60`` and ``Retry-After`` (delay-seconds or an
HTTP-date) are parsed independently and merged into the result.

Missing headers are not an error: the parser returns ``None`` when nothing
usable is present and never raises on malformed values.
"""

import math
import re
import time
from collections.abc import Mapping
from datetime import datetime
from email.utils import parsedate_to_datetime

from ..models.rate_limit import RateLimitInfo, TimeUntilReset

# Epoch values at or above this are treated as milliseconds
EPOCH_MILLISECONDS_THRESHOLD = 10_000_000_000

APPROACHING_LIMIT_PERCENT = 20

_LEADING_INT = re.compile(r"^\s*([+-]?\d+)")
_POLICY = re.compile(r"(\d+);w=(\d+)")


def _lookup(headers: Mapping[str, str], *names: str) -> str | None:
    for name in names:
        value = headers.get(name)
        if value is not None and value != "":
            return value
    return None


def _parse_int(value: str | None) -> int | None:
    """Parse a leading integer the way lenient header parsers do ("100abc" -> 100)."""
    if value is None:
        return None
    match = _LEADING_INT.match(str(value))
    return int(match.group(1)) if match else None


def _parse_number(value: str) -> float | None:
    try:
        number = float(value.strip())
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def _parse_http_date(value: str) -> datetime | None:
    try:
        parsed = parsedate_to_datetime(value.strip())
    except (TypeError, ValueError, IndexError):
        return None
    return parsed


def parse_reset_time(value: str | None) -> int | None:
    """Parse a legacy reset value into epoch seconds.

    Accepts epoch seconds, epoch milliseconds (disambiguated by
    ``EPOCH_MILLISECONDS_THRESHOLD``) or an HTTP-date.
    """
    if not value:
        return None

    number = _parse_number(value)
    if number is not None:
        if number < EPOCH_MILLISECONDS_THRESHOLD:
            return int(number)
        return int(number // 1000)

    parsed = _parse_http_date(value)
    if parsed is not None:
        return int(parsed.timestamp())
    return None


def parse_retry_after(value: str | None, now: float | None = None) -> float | None:
    """Parse ``Retry-After`` into seconds to wait (never negative for dates)."""
    if not value:
        return None

    number = _parse_number(value)
    if number is not None:
        return number

    parsed = _parse_http_date(value)
    if parsed is not None:
        current = time.time() if now is None else now
        return float(max(0, int(parsed.timestamp() - current)))
    return None


def calculate_time_until_reset(
    reset: int | float | datetime | None,
    now: float | None = None,
) -> TimeUntilReset | None:
    """Describe how long until a reset timestamp.

    Args:
        reset: Epoch seconds, epoch milliseconds, or a datetime
        now: Current epoch seconds (defaults to the wall clock)

    Returns:
        TimeUntilReset, or None when reset is missing
    """
    if reset is None or isinstance(reset, bool):
        return None

    if isinstance(reset, datetime):
        reset_seconds = reset.timestamp()
    elif isinstance(reset, (int, float)):
        reset_seconds = reset if reset < EPOCH_MILLISECONDS_THRESHOLD else reset / 1000
    else:
        return None

    current = time.time() if now is None else now
    diff = int(reset_seconds - current)

    if diff < 0:
        return TimeUntilReset(seconds=0, formatted="expired", is_past=True)

    hours, rest = divmod(diff, 3600)
    minutes, seconds = divmod(rest, 60)

    def _unit(count: int, unit: str) -> str:
        return f"{count} {unit}{'' if count == 1 else 's'}"

    if hours > 0:
        formatted = f"in {_unit(hours, 'hour')}"
        if minutes > 0:
            formatted += f" {_unit(minutes, 'minute')}"
    elif minutes > 0:
        formatted = f"in {_unit(minutes, 'minute')}"
    else:
        formatted = f"in {_unit(seconds, 'second')}"

    return TimeUntilReset(seconds=diff, formatted=formatted, is_past=False)


def _parse_combined(value: str) -> tuple[int | None, int | None, int | None]:
    limit = remaining = reset = None
    for part in re.split(r"[,;]", value):
        key, _, raw = part.partition("=")
        key = key.strip().lower()
        if key == "limit":
            limit = _parse_int(raw)
        elif key == "remaining":
            remaining = _parse_int(raw)
        elif key == "reset":
            reset = _parse_int(raw)
    return limit, remaining, reset


def _format_reset(reset: int) -> str:
    try:
        return datetime.fromtimestamp(reset).strftime("%Y-%m-%d %H:%M:%S")
    except (OverflowError, OSError, ValueError):
        return "Invalid date"


def parse_rate_limit_headers(
    headers: Mapping[str, str] | None,
    now: float | None = None,
) -> RateLimitInfo | None:
    """Extract rate-limit metadata from response headers.

    Args:
        headers: Response headers (any key case)
        now: Current epoch seconds, for Retry-After dates and countdowns

    Returns:
        RateLimitInfo, or None when no limit, remaining or retry-after is known
    """
    if not isinstance(headers, Mapping):
        return None

    lowered = {str(key).lower(): str(value) for key, value in headers.items()}

    limit: int | None = None
    remaining: int | None = None
    reset: int | None = None
    retry_after: float | None = None
    policy: str | None = None
    limit_type = "unknown"

    legacy_limit = _lookup(lowered, "x-ratelimit-limit", "x-rate-limit-limit")
    legacy_remaining = _lookup(lowered, "x-ratelimit-remaining", "x-rate-limit-remaining")
    legacy_reset = _lookup(lowered, "x-ratelimit-reset", "x-rate-limit-reset")

    if legacy_limit is not None or legacy_remaining is not None:
        limit = _parse_int(legacy_limit)
        remaining = _parse_int(legacy_remaining)
        reset = parse_reset_time(legacy_reset)
        limit_type = "x-ratelimit"
    else:
        combined = _lookup(lowered, "ratelimit")
        if combined is not None:
            limit, remaining, reset = _parse_combined(combined)
            if limit is not None or remaining is not None:
                limit_type = "ratelimit"

    raw_policy = _lookup(lowered, "ratelimit-policy")
    if raw_policy is not None:
        match = _POLICY.search(raw_policy)
        policy = f"{match.group(1)} requests per {match.group(2)} seconds" if match else raw_policy

    retry_after = parse_retry_after(_lookup(lowered, "retry-after"), now=now)
    if retry_after is not None and limit is None and remaining is None:
        limit_type = "retry-after"

    if limit is None and remaining is None and retry_after is None:
        return None

    percentage: int | None = None
    is_approaching_limit = False
    if limit is not None and remaining is not None and limit > 0:
        # Half-up rounding; round() would bank 12.5 down to 12
        percentage = math.floor(remaining / limit * 100 + 0.5)
        is_approaching_limit = percentage < APPROACHING_LIMIT_PERCENT

    # The combined header carries reset as delta seconds, not an epoch
    reset_formatted: str | None = None
    if reset is not None and limit_type == "ratelimit":
        current = time.time() if now is None else now
        reset_formatted = _format_reset(int(current) + reset)
        time_until_reset = calculate_time_until_reset(current + reset, now=current)
    else:
        if reset is not None:
            reset_formatted = _format_reset(reset)
        time_until_reset = calculate_time_until_reset(reset, now=now)

    return RateLimitInfo(
        limit=limit,
        remaining=remaining,
        reset=reset,
        reset_formatted=reset_formatted,
        retry_after=retry_after,
        policy=policy,
        percentage=percentage,
        is_approaching_limit=is_approaching_limit,
        limit_type=limit_type,
        time_until_reset=time_until_reset,
    )
