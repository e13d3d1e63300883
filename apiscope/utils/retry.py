"""Retry with exponential backoff, jitter and cancellation.

Built on tenacity's ``AsyncRetrying``. The delay before retry ``n``
(zero-indexed from the first retry, not the first try) is::

    capped = min(initial_delay_ms * backoff_multiplier ** n, max_delay_ms)
    delay = floor(capped + uniform(0, 0.25 * capped))

By default only errors the error classifier marks as retryable are retried.
Once retries are exhausted, or the predicate declines, the last attempt's
original exception is re-raised unchanged. A set cancel event aborts the
call with ``RetryCancelledError`` before an attempt, during a wait, or when
it was set while the failing attempt ran.
"""

import asyncio
import functools
import math
import random
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel, ConfigDict, Field
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from ..errors.classifier import categorize_error, is_retryable_error
from ..models.errors import ErrorKind

logger = structlog.get_logger(__name__)

T = TypeVar("T")

JITTER_FRACTION = 0.25

NETWORK_ERROR_KINDS = (
    ErrorKind.TIMEOUT,
    ErrorKind.NETWORK,
    ErrorKind.DNS,
    ErrorKind.CONNECTION,
)

OnRetry = Callable[[int, int, int, BaseException], Any]


class RetryCancelledError(Exception):
    """Raised when a retry loop is cancelled; the attempt's own error is its cause."""

    def __init__(self, message: str = "Retry aborted", attempt: int = 0):
        super().__init__(message)
        self.attempt = attempt


class RetryPolicy(BaseModel):
    """Retry tuning plus optional hooks.

    Attributes:
        max_retries: Retries after the first try (total attempts = max_retries + 1)
        initial_delay_ms: Base delay before the first retry
        max_delay_ms: Cap applied before jitter
        backoff_multiplier: Growth factor per retry
        should_retry: Predicate overriding the classifier's retryable flag
        on_retry: Called as (attempt, max_retries, delay_ms, error) before each wait
        cancel_event: Set it to abandon the loop with RetryCancelledError
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    max_retries: int = Field(default=3, ge=0)
    initial_delay_ms: int = Field(default=1000, ge=0)
    max_delay_ms: int = Field(default=10000, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    should_retry: Callable[[BaseException], bool] | None = None
    on_retry: OnRetry | None = None
    cancel_event: asyncio.Event | None = None


def calculate_backoff_delay(
    attempt: int,
    initial_delay_ms: int,
    max_delay_ms: int,
    backoff_multiplier: float,
    jitter: bool = True,
) -> int:
    """Delay in milliseconds before retry ``attempt`` (zero-indexed).

    Args:
        attempt: Retry index, 0 for the first retry
        initial_delay_ms: Base delay
        max_delay_ms: Cap applied before jitter
        backoff_multiplier: Exponential growth factor
        jitter: Add uniform jitter in [0, 25%] of the capped delay

    Returns:
        Delay in whole milliseconds
    """
    try:
        exponential = initial_delay_ms * backoff_multiplier**attempt
    except OverflowError:
        exponential = max_delay_ms
    capped = min(exponential, max_delay_ms)
    extra = capped * JITTER_FRACTION * random.random() if jitter else 0.0
    return math.floor(capped + extra)


async def _cancellable_sleep(seconds: float, cancel_event: asyncio.Event | None) -> None:
    if cancel_event is None:
        await asyncio.sleep(seconds)
        return
    if cancel_event.is_set():
        raise RetryCancelledError()
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        return
    raise RetryCancelledError()


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
) -> T:
    """Run ``operation`` with exponential backoff.

    Args:
        operation: Zero-argument coroutine function to (re)try
        policy: Retry tuning and hooks (defaults to RetryPolicy())

    Returns:
        The first successful result

    Raises:
        RetryCancelledError: If the policy's cancel event is set
        Exception: The last attempt's original error once retries stop
    """
    policy = policy or RetryPolicy()
    should_retry = policy.should_retry or is_retryable_error
    cancel_event = policy.cancel_event

    def _retry_predicate(error: BaseException) -> bool:
        # Task cancellation and our own abort are never retried
        if not isinstance(error, Exception) or isinstance(error, RetryCancelledError):
            return False
        return bool(should_retry(error))

    def _wait(retry_state: RetryCallState) -> float:
        delay_ms = calculate_backoff_delay(
            retry_state.attempt_number - 1,
            policy.initial_delay_ms,
            policy.max_delay_ms,
            policy.backoff_multiplier,
        )
        return delay_ms / 1000

    async def _before_sleep(retry_state: RetryCallState) -> None:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        delay_ms = round(retry_state.next_action.sleep * 1000) if retry_state.next_action else 0
        logger.info(
            "retry_scheduled",
            attempt=retry_state.attempt_number,
            max_retries=policy.max_retries,
            delay_ms=delay_ms,
            error=str(error),
            error_type=type(error).__name__,
        )
        if policy.on_retry is None:
            return
        try:
            result = policy.on_retry(retry_state.attempt_number, policy.max_retries, delay_ms, error)
            if asyncio.iscoroutine(result):
                await result
        except Exception as exc:
            logger.warning("on_retry_callback_failed", error=str(exc))

    attempts = 0

    async def _attempt() -> T:
        nonlocal attempts
        if cancel_event is not None and cancel_event.is_set():
            raise RetryCancelledError(attempt=attempts)
        attempts += 1
        try:
            return await operation()
        except Exception as exc:
            # A cancel requested mid-attempt outranks the attempt's own failure
            if cancel_event is not None and cancel_event.is_set():
                raise RetryCancelledError(attempt=attempts) from exc
            raise

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_retries + 1),
        wait=_wait,
        retry=retry_if_exception(_retry_predicate),
        before_sleep=_before_sleep,
        sleep=functools.partial(_cancellable_sleep, cancel_event=cancel_event),
        reraise=True,
    )
    return await retrying(_attempt)


async def retry_if(
    operation: Callable[[], Awaitable[T]],
    should_retry: Callable[[BaseException], bool],
    policy: RetryPolicy | None = None,
) -> T:
    """Retry with a custom predicate instead of the classifier's verdict."""
    base = policy or RetryPolicy()
    return await retry_with_backoff(operation, base.model_copy(update={"should_retry": should_retry}))


async def retry_on_error_types(
    operation: Callable[[], Awaitable[T]],
    kinds: Iterable[ErrorKind | str],
    policy: RetryPolicy | None = None,
) -> T:
    """Retry only errors that classify as one of ``kinds``."""
    allowed = {ErrorKind(kind) for kind in kinds}
    return await retry_if(operation, lambda error: categorize_error(error) in allowed, policy)


async def retry_on_network_error(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
) -> T:
    """Retry only timeout, network, DNS and connection failures."""
    return await retry_on_error_types(operation, NETWORK_ERROR_KINDS, policy)


def with_retry(
    policy: RetryPolicy | None = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorator form of retry_with_backoff.

    Example:
        @with_retry(RetryPolicy(max_retries=2))
        async def fetch(url: str) -> str:
            ...
    """

    def decorator(fn: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await retry_with_backoff(lambda: fn(*args, **kwargs), policy)

        return wrapper

    return decorator


def get_retry_info(attempt: int, max_retries: int, delay_ms: int) -> dict[str, Any]:
    """Summarize a scheduled retry for progress notifications."""
    return {
        "attempt": attempt,
        "max_retries": max_retries,
        "delay": delay_ms,
        "delay_seconds": math.ceil(delay_ms / 1000),
        "is_last_attempt": attempt >= max_retries,
        "attempts_remaining": max_retries - attempt,
    }
