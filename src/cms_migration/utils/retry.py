"""Retry policy built on tenacity.

Every retried call site (page fetches, file downloads, file uploads) goes
through a RetryPolicy so attempts, backoff and the retryable-error
predicate are configured in one place.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field, replace
from typing import Any, TypeVar

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_incrementing,
    wait_random_exponential,
)
from tenacity.wait import wait_base

from cms_migration.client.exceptions import (
    MediaTransferError,
    NetworkError,
    RateLimitError,
    ServerError,
)
from cms_migration.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS: tuple[type[BaseException], ...] = (
    NetworkError,
    ServerError,
    RateLimitError,
    httpx.TransportError,
)


def is_transient_error(exc: BaseException) -> bool:
    """Return True for errors worth retrying (network, 5xx, 429)."""
    return isinstance(exc, TRANSIENT_ERRORS)


def is_media_transfer_error(exc: BaseException) -> bool:
    """Transient errors plus media-specific failures such as empty downloads."""
    return is_transient_error(exc) or isinstance(exc, MediaTransferError)


def linear_backoff(step: float) -> wait_base:
    """Wait ``step * attempt`` seconds after each failed attempt."""
    return wait_incrementing(start=step, increment=step)


def exponential_backoff(min_wait: float, max_wait: float) -> wait_base:
    """Randomized exponential backoff between ``min_wait`` and ``max_wait``."""
    return wait_random_exponential(multiplier=1, min=min_wait, max=max_wait)


def _log_retry(policy_name: str) -> Callable[[RetryCallState], None]:
    def before_sleep(retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        wait = retry_state.next_action.sleep if retry_state.next_action else 0
        logger.warning(
            "retry_attempt",
            policy=policy_name,
            attempt=retry_state.attempt_number,
            wait_seconds=round(wait, 2),
            error=str(exc) if exc else None,
        )

    return before_sleep


@dataclass(frozen=True)
class RetryPolicy:
    """Retry configuration shared by fetch and media operations.

    Attributes:
        max_attempts: Total attempts including the first call
        backoff: tenacity wait strategy applied between attempts
        retry_if: Predicate deciding whether an exception is retryable
        name: Label used in log events
        sleep: Coroutine used to wait between attempts (swapped out in tests)
    """

    max_attempts: int = 3
    backoff: wait_base = field(default_factory=lambda: linear_backoff(0.5))
    retry_if: Callable[[BaseException], bool] = is_transient_error
    name: str = "default"
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    def with_sleep(self, sleep: Callable[[float], Awaitable[None]]) -> "RetryPolicy":
        """Return a copy of this policy using a different sleep function."""
        return replace(self, sleep=sleep)

    async def run(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Call ``func`` until it succeeds, fails permanently, or attempts run out.

        The last exception is re-raised unchanged once attempts are exhausted
        or when the predicate rejects it.
        """
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(max(self.max_attempts, 1)),
            wait=self.backoff,
            retry=retry_if_exception(self.retry_if),
            sleep=self.sleep,
            before_sleep=_log_retry(self.name),
            reraise=True,
        ):
            with attempt:
                return await func(*args, **kwargs)

        raise RuntimeError("Unexpected retry loop exit")


def fetch_policy(max_attempts: int = 3, min_wait: float = 1, max_wait: float = 10) -> RetryPolicy:
    """Policy for source page fetches and target API calls."""
    return RetryPolicy(
        max_attempts=max_attempts,
        backoff=exponential_backoff(min_wait, max_wait),
        retry_if=is_transient_error,
        name="fetch",
    )


def media_policy(max_retries: int = 2, backoff_step: float = 0.5) -> RetryPolicy:
    """Policy for file download and upload: ``max_retries`` retries, linear backoff."""
    return RetryPolicy(
        max_attempts=max_retries + 1,
        backoff=linear_backoff(backoff_step),
        retry_if=is_media_transfer_error,
        name="media",
    )
