from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryBackoffPolicy:
    """Configuration for retry attempt count and backoff boundaries."""

    attempts: int
    min_seconds: float
    max_seconds: float

    def __post_init__(self) -> None:
        if self.attempts < 1:
            raise ValueError("attempts must be >= 1")
        if self.min_seconds < 0:
            raise ValueError("min_seconds must be >= 0")
        if self.max_seconds < 0:
            raise ValueError("max_seconds must be >= 0")
        if self.max_seconds < self.min_seconds:
            raise ValueError("max_seconds must be >= min_seconds")


def build_exponential_jitter_retrying(
    *,
    retry_for: tuple[type[BaseException], ...],
    policy: RetryBackoffPolicy,
    never_retry: tuple[type[BaseException], ...] = (),
    sleep: Callable[[float], Awaitable[None]] | None = None,
    before_sleep: Callable[[RetryCallState], None] | None = None,
) -> AsyncRetrying:
    """Build an ``AsyncRetrying`` with exponential jitter backoff.

    Exceptions in ``never_retry`` fail fast even when they also match
    ``retry_for``. The last exception is re-raised once attempts are exhausted.
    """
    retry = retry_if_exception_type(retry_for)
    if never_retry:
        retry = retry & retry_if_not_exception_type(never_retry)
    options: dict[str, object] = {
        "retry": retry,
        "wait": wait_exponential_jitter(
            initial=policy.min_seconds,
            max=policy.max_seconds,
        ),
        "stop": stop_after_attempt(policy.attempts),
        "reraise": True,
    }
    if sleep is not None:
        options["sleep"] = sleep
    if before_sleep is not None:
        options["before_sleep"] = before_sleep
    return AsyncRetrying(**options)  # type: ignore[arg-type]


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    retry_for: tuple[type[BaseException], ...],
    policy: RetryBackoffPolicy,
    never_retry: tuple[type[BaseException], ...] = (),
    sleep: Callable[[float], Awaitable[None]] | None = None,
    before_sleep: Callable[[RetryCallState], None] | None = None,
) -> T:
    """Await ``operation`` until it succeeds or the policy is exhausted."""
    retrying = build_exponential_jitter_retrying(
        retry_for=retry_for,
        policy=policy,
        never_retry=never_retry,
        sleep=sleep,
        before_sleep=before_sleep,
    )
    async for attempt in retrying:
        with attempt:
            return await operation()
    raise RuntimeError("retry loop exited unexpectedly")
