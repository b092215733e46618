"""Retry policy for upstream calls.

The policy is a plain value so the same backoff rules can be applied to any
awaitable operation, independent of the HTTP client that performs it.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """How many times to try an operation and how long to back off between tries."""

    max_attempts: int = 3
    multiplier: float = 1.0
    min_wait: float = 2.0  # seconds
    max_wait: float = 30.0  # seconds

    def wait_strategy(self) -> wait_exponential:
        """Exponential backoff bounded by min_wait/max_wait."""
        return wait_exponential(
            multiplier=self.multiplier, min=self.min_wait, max=self.max_wait
        )


DEFAULT_RETRY_POLICY = RetryPolicy()


async def retry_async(
    policy: RetryPolicy,
    operation: Callable[[], Awaitable[T]],
    should_retry: Callable[[BaseException], bool],
    log: logging.Logger | None = None,
) -> T:
    """Run an async operation, retrying according to policy.

    Exceptions rejected by should_retry propagate immediately. When attempts
    are exhausted tenacity.RetryError is raised; the last underlying error is
    available via ``err.last_attempt.exception()``.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=policy.wait_strategy(),
        retry=retry_if_exception(should_retry),
        before_sleep=before_sleep_log(log or logger, logging.WARNING),
    )
    async for attempt in retrying:
        with attempt:
            return await operation()
    raise RuntimeError("retry loop ended without an outcome")  # pragma: no cover
