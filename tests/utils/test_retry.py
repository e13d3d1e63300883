"""Tests for the retry engine."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from apiscope.utils.retry import (
    RetryCancelledError,
    RetryPolicy,
    calculate_backoff_delay,
    get_retry_info,
    retry_if,
    retry_on_error_types,
    retry_on_network_error,
    retry_with_backoff,
    with_retry,
)


def fast_policy(**overrides) -> RetryPolicy:
    """Policy with 1 ms delays so tests do not sleep."""
    values = {"max_retries": 3, "initial_delay_ms": 1, "max_delay_ms": 1}
    values.update(overrides)
    return RetryPolicy(**values)


def flaky(failures: list[BaseException], result: str = "ok") -> AsyncMock:
    """Operation that raises the given errors in order, then succeeds."""
    return AsyncMock(side_effect=[*failures, result])


class TestCalculateBackoffDelay:
    """Test cases for calculate_backoff_delay."""

    def test_exponential_without_jitter(self):
        """Test the base schedule doubles until the cap."""
        delays = [calculate_backoff_delay(n, 1000, 10000, 2, jitter=False) for n in range(6)]

        assert delays == [1000, 2000, 4000, 8000, 10000, 10000]

    def test_jitter_bounds(self):
        """Test jitter adds at most 25% of the capped delay."""
        for attempt in range(6):
            capped = min(1000 * 2**attempt, 8000)
            for _ in range(50):
                delay = calculate_backoff_delay(attempt, 1000, 8000, 2)
                assert capped <= delay <= capped * 1.25

    def test_huge_attempt_does_not_overflow(self):
        """Test very large attempt numbers fall back to the cap."""
        assert calculate_backoff_delay(10_000, 1000, 8000, 2.0, jitter=False) == 8000


class TestRetryWithBackoff:
    """Test cases for retry_with_backoff."""

    async def test_success_first_try(self):
        """Test a successful operation is called once."""
        operation = AsyncMock(return_value=42)

        assert await retry_with_backoff(operation, fast_policy()) == 42
        assert operation.await_count == 1

    async def test_retries_retryable_errors(self):
        """Test transient failures are retried until success."""
        operation = flaky([ConnectionError("ECONNREFUSED"), ConnectionError("ECONNRESET")])
        on_retry = MagicMock()

        result = await retry_with_backoff(operation, fast_policy(on_retry=on_retry))

        assert result == "ok"
        assert operation.await_count == 3
        assert [call.args[0] for call in on_retry.call_args_list] == [1, 2]
        attempt, max_retries, delay_ms, error = on_retry.call_args_list[0].args
        assert max_retries == 3
        assert delay_ms == 1
        assert isinstance(error, ConnectionError)

    async def test_exhaustion_reraises_last_error(self):
        """Test the original last error surfaces after max_retries + 1 attempts."""
        errors = [TimeoutError("ETIMEDOUT 1"), TimeoutError("ETIMEDOUT 2"), TimeoutError("ETIMEDOUT 3")]
        operation = AsyncMock(side_effect=errors)

        with pytest.raises(TimeoutError) as exc_info:
            await retry_with_backoff(operation, fast_policy(max_retries=2))

        assert exc_info.value is errors[-1]
        assert operation.await_count == 3

    async def test_non_retryable_error_fails_fast(self):
        """Test errors classified as non-retryable are not retried."""
        error = Exception("Access blocked by CORS policy")
        operation = AsyncMock(side_effect=error)
        on_retry = MagicMock()

        with pytest.raises(Exception) as exc_info:
            await retry_with_backoff(operation, fast_policy(on_retry=on_retry))

        assert exc_info.value is error
        assert operation.await_count == 1
        on_retry.assert_not_called()

    async def test_zero_retries(self):
        """Test max_retries=0 makes a single attempt."""
        operation = AsyncMock(side_effect=ConnectionError("ECONNREFUSED"))

        with pytest.raises(ConnectionError):
            await retry_with_backoff(operation, fast_policy(max_retries=0))

        assert operation.await_count == 1

    async def test_should_retry_override(self):
        """Test a custom predicate replaces the classifier's verdict."""
        operation = flaky([Exception("blocked by CORS policy")])

        result = await retry_with_backoff(operation, fast_policy(should_retry=lambda e: True))

        assert result == "ok"
        assert operation.await_count == 2

    async def test_failing_on_retry_is_ignored(self):
        """Test that a raising on_retry hook does not break the loop."""
        operation = flaky([ConnectionError("ECONNRESET")])
        on_retry = MagicMock(side_effect=RuntimeError("hook broke"))

        assert await retry_with_backoff(operation, fast_policy(on_retry=on_retry)) == "ok"
        on_retry.assert_called_once()

    async def test_async_on_retry_is_awaited(self):
        """Test coroutine hooks are awaited."""
        operation = flaky([ConnectionError("ECONNRESET")])
        on_retry = AsyncMock()

        await retry_with_backoff(operation, fast_policy(on_retry=on_retry))

        on_retry.assert_awaited_once()

    async def test_task_cancellation_is_not_retried(self):
        """Test CancelledError propagates without retries."""
        operation = AsyncMock(side_effect=asyncio.CancelledError())

        with pytest.raises(asyncio.CancelledError):
            await retry_with_backoff(operation, fast_policy())

        assert operation.await_count == 1


class TestCancellation:
    """Test cases for cancel events."""

    async def test_cancelled_before_first_attempt(self):
        """Test a set event aborts before the operation runs."""
        cancel_event = asyncio.Event()
        cancel_event.set()
        operation = AsyncMock(return_value="ok")

        with pytest.raises(RetryCancelledError):
            await retry_with_backoff(operation, fast_policy(cancel_event=cancel_event))

        operation.assert_not_awaited()

    async def test_cancelled_during_wait(self):
        """Test cancelling during a long wait aborts promptly."""
        cancel_event = asyncio.Event()
        operation = AsyncMock(side_effect=ConnectionError("ECONNREFUSED"))
        policy = RetryPolicy(
            max_retries=3,
            initial_delay_ms=60_000,
            max_delay_ms=60_000,
            cancel_event=cancel_event,
        )

        asyncio.get_running_loop().call_later(0.01, cancel_event.set)

        with pytest.raises(RetryCancelledError):
            await asyncio.wait_for(retry_with_backoff(operation, policy), timeout=2)

        assert operation.await_count == 1

    async def test_cancelled_from_on_retry(self):
        """Test cancelling from the hook surfaces RetryCancelledError, not the operation error."""
        cancel_event = asyncio.Event()
        operation = AsyncMock(side_effect=ConnectionError("ECONNREFUSED"))

        with pytest.raises(RetryCancelledError):
            await retry_with_backoff(
                operation,
                fast_policy(cancel_event=cancel_event, on_retry=lambda *args: cancel_event.set()),
            )

        assert operation.await_count == 1

    @pytest.mark.parametrize(
        "error,max_retries",
        [
            (ConnectionError("ECONNREFUSED"), 0),
            (ValueError("SSL certificate problem"), 3),
        ],
    )
    async def test_cancelled_while_attempt_runs(self, error, max_retries):
        """Test a cancel set during a failing attempt wins over the attempt's error."""
        cancel_event = asyncio.Event()

        async def operation():
            cancel_event.set()
            raise error

        with pytest.raises(RetryCancelledError) as exc_info:
            await retry_with_backoff(
                operation, fast_policy(max_retries=max_retries, cancel_event=cancel_event)
            )

        assert exc_info.value.__cause__ is error
        assert exc_info.value.attempt == 1

    async def test_no_retry_hook_after_cancel(self):
        """Test on_retry is not called once cancellation was requested mid-attempt."""
        cancel_event = asyncio.Event()
        on_retry = MagicMock()
        calls = 0

        async def operation():
            nonlocal calls
            calls += 1
            cancel_event.set()
            raise ConnectionError("ECONNRESET")

        with pytest.raises(RetryCancelledError):
            await retry_with_backoff(operation, fast_policy(cancel_event=cancel_event, on_retry=on_retry))

        assert calls == 1
        on_retry.assert_not_called()


class TestHelpers:
    """Test cases for retry helpers."""

    async def test_retry_if(self):
        """Test retry_if with a custom predicate."""
        operation = flaky([KeyError("x")])

        assert await retry_if(operation, lambda e: isinstance(e, KeyError), fast_policy()) == "ok"

    async def test_retry_on_network_error(self):
        """Test only network-type failures are retried."""
        network = flaky([Exception("net::ERR_TIMED_OUT")])
        assert await retry_on_network_error(network, fast_policy()) == "ok"

        other = AsyncMock(side_effect=ValueError("something odd"))
        with pytest.raises(ValueError):
            await retry_on_network_error(other, fast_policy())
        assert other.await_count == 1

    async def test_retry_on_error_types(self):
        """Test only the listed error kinds are retried."""
        dns = flaky([Exception("getaddrinfo ENOTFOUND")])
        assert await retry_on_error_types(dns, ["dns"], fast_policy()) == "ok"

        timeout = AsyncMock(side_effect=TimeoutError("ETIMEDOUT"))
        with pytest.raises(TimeoutError):
            await retry_on_error_types(timeout, ["dns"], fast_policy())
        assert timeout.await_count == 1

    async def test_with_retry_decorator(self):
        """Test the decorator form passes arguments through."""
        calls = []

        @with_retry(fast_policy())
        async def fetch(url: str) -> str:
            calls.append(url)
            if len(calls) < 2:
                raise ConnectionError("ECONNRESET")
            return f"fetched {url}"

        assert await fetch("https://example.com") == "fetched https://example.com"
        assert len(calls) == 2

    def test_get_retry_info(self):
        """Test retry info summary."""
        info = get_retry_info(2, 3, 2500)

        assert info == {
            "attempt": 2,
            "max_retries": 3,
            "delay": 2500,
            "delay_seconds": 3,
            "is_last_attempt": False,
            "attempts_remaining": 1,
        }
