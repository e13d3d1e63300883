"""Tests for rate-limit header parsing."""

from datetime import datetime, timezone
from email.utils import format_datetime

import pytest

from apiscope.utils.rate_limit import (
    calculate_time_until_reset,
    parse_rate_limit_headers,
    parse_reset_time,
    parse_retry_after,
)

NOW = 1_700_000_000.0


class TestLegacyHeaders:
    """Test cases for X-RateLimit-* headers."""

    def test_limit_and_remaining(self):
        """Test percentage and approaching flag from legacy headers."""
        info = parse_rate_limit_headers(
            {"X-RateLimit-Limit": "100", "X-RateLimit-Remaining": "10"},
            now=NOW,
        )

        assert info is not None
        assert info.limit == 100
        assert info.remaining == 10
        assert info.percentage == 10
        assert info.is_approaching_limit is True
        assert info.limit_type == "x-ratelimit"

    def test_not_approaching_at_twenty_percent(self):
        """Test the approaching threshold is strictly below 20%."""
        info = parse_rate_limit_headers(
            {"x-ratelimit-limit": "100", "x-ratelimit-remaining": "20"}, now=NOW
        )

        assert info.percentage == 20
        assert info.is_approaching_limit is False

    def test_percentage_rounds_half_up(self):
        """Test 1/8 = 12.5% rounds to 13."""
        info = parse_rate_limit_headers(
            {"x-ratelimit-limit": "8", "x-ratelimit-remaining": "1"}, now=NOW
        )

        assert info.percentage == 13

    def test_alias_headers(self):
        """Test the X-Rate-Limit-* spelling."""
        info = parse_rate_limit_headers(
            {"X-Rate-Limit-Limit": "60", "X-Rate-Limit-Remaining": "59"}, now=NOW
        )

        assert info.limit == 60
        assert info.remaining == 59
        assert info.limit_type == "x-ratelimit"

    def test_reset_epoch_seconds(self):
        """Test a reset timestamp in epoch seconds."""
        info = parse_rate_limit_headers(
            {
                "x-ratelimit-limit": "100",
                "x-ratelimit-remaining": "50",
                "x-ratelimit-reset": str(int(NOW) + 3720),
            },
            now=NOW,
        )

        assert info.reset == int(NOW) + 3720
        assert info.time_until_reset.seconds == 3720
        assert info.time_until_reset.formatted == "in 1 hour 2 minutes"
        assert info.reset_formatted is not None

    def test_reset_epoch_milliseconds(self):
        """Test that large reset values are treated as milliseconds."""
        info = parse_rate_limit_headers(
            {
                "x-ratelimit-limit": "100",
                "x-ratelimit-remaining": "50",
                "x-ratelimit-reset": str(int(NOW * 1000) + 90_000),
            },
            now=NOW,
        )

        assert info.reset == int(NOW) + 90
        assert info.time_until_reset.formatted == "in 1 minute"

    def test_zero_limit_has_no_percentage(self):
        """Test that a zero limit does not divide by zero."""
        info = parse_rate_limit_headers(
            {"x-ratelimit-limit": "0", "x-ratelimit-remaining": "0"}, now=NOW
        )

        assert info.percentage is None
        assert info.is_approaching_limit is False


class TestCombinedHeader:
    """Test cases for the combined RateLimit header."""

    def test_combined_header(self):
        """Test limit, remaining and reset from one header."""
        info = parse_rate_limit_headers(
            {"RateLimit": "limit=100, remaining=5, reset=30"}, now=NOW
        )

        assert info.limit == 100
        assert info.remaining == 5
        assert info.reset == 30
        assert info.limit_type == "ratelimit"
        assert info.is_approaching_limit is True
        assert info.time_until_reset.formatted == "in 30 seconds"

    def test_semicolon_separator(self):
        """Test ';' separated combined header."""
        info = parse_rate_limit_headers({"ratelimit": "limit=10;remaining=9"}, now=NOW)

        assert info.limit == 10
        assert info.remaining == 9

    def test_legacy_takes_precedence(self):
        """Test that legacy headers win when both dialects are present."""
        info = parse_rate_limit_headers(
            {
                "X-RateLimit-Limit": "100",
                "X-RateLimit-Remaining": "90",
                "RateLimit": "limit=10, remaining=1, reset=5",
            },
            now=NOW,
        )

        assert info.limit == 100
        assert info.remaining == 90
        assert info.limit_type == "x-ratelimit"

    def test_policy(self):
        """Test RateLimit-Policy formatting."""
        info = parse_rate_limit_headers(
            {"RateLimit": "limit=100, remaining=99", "RateLimit-Policy": "100;w=60"}, now=NOW
        )

        assert info.policy == "100 requests per 60 seconds"

    def test_unrecognized_policy_kept_raw(self):
        """Test that an unparseable policy is returned as-is."""
        info = parse_rate_limit_headers(
            {"x-ratelimit-remaining": "3", "ratelimit-policy": "burst"}, now=NOW
        )

        assert info.policy == "burst"


class TestRetryAfter:
    """Test cases for Retry-After."""

    def test_delay_seconds(self):
        """Test Retry-After alone yields a retry-after result."""
        info = parse_rate_limit_headers({"Retry-After": "120"}, now=NOW)

        assert info.retry_after == 120
        assert info.limit is None
        assert info.remaining is None
        assert info.limit_type == "retry-after"

    def test_http_date(self):
        """Test an HTTP-date Retry-After."""
        when = datetime.fromtimestamp(NOW + 300, tz=timezone.utc)

        assert parse_retry_after(format_datetime(when, usegmt=True), now=NOW) == 300

    def test_past_http_date_clamped(self):
        """Test that a date in the past never gives a negative wait."""
        when = datetime.fromtimestamp(NOW - 300, tz=timezone.utc)

        assert parse_retry_after(format_datetime(when, usegmt=True), now=NOW) == 0

    def test_merged_with_limits(self):
        """Test Retry-After merged into a legacy result keeps the legacy type."""
        info = parse_rate_limit_headers(
            {"x-ratelimit-limit": "10", "x-ratelimit-remaining": "0", "retry-after": "30"},
            now=NOW,
        )

        assert info.retry_after == 30
        assert info.limit_type == "x-ratelimit"


class TestNotApplicable:
    """Test cases where no rate-limit information exists."""

    @pytest.mark.parametrize(
        "headers",
        [
            {},
            {"content-type": "application/json"},
            {"x-ratelimit-reset": "1700000000"},
            {"RateLimit": "reset=30"},
            {"Retry-After": "soon"},
            None,
        ],
    )
    def test_returns_none(self, headers):
        """Test that headers without limit, remaining or retry-after give None."""
        assert parse_rate_limit_headers(headers, now=NOW) is None

    def test_malformed_numbers_do_not_raise(self):
        """Test garbage values are tolerated."""
        info = parse_rate_limit_headers(
            {"x-ratelimit-limit": "abc", "x-ratelimit-remaining": "7", "x-ratelimit-reset": "?"},
            now=NOW,
        )

        assert info.limit is None
        assert info.remaining == 7
        assert info.reset is None
        assert info.percentage is None


class TestTimeUntilReset:
    """Test cases for calculate_time_until_reset."""

    def test_expired(self):
        """Test a reset in the past."""
        result = calculate_time_until_reset(NOW - 10, now=NOW)

        assert result.is_past is True
        assert result.seconds == 0
        assert result.formatted == "expired"

    def test_hours_only(self):
        """Test whole hours omit minutes."""
        assert calculate_time_until_reset(NOW + 7200, now=NOW).formatted == "in 2 hours"

    def test_missing(self):
        """Test a missing reset."""
        assert calculate_time_until_reset(None) is None

    def test_parse_reset_time_http_date(self):
        """Test HTTP-date reset values."""
        when = datetime.fromtimestamp(NOW, tz=timezone.utc)

        assert parse_reset_time(format_datetime(when, usegmt=True)) == int(NOW)
