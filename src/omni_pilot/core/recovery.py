"""
recovery.py - Error classification and retry with backoff

``classify_error`` decides whether a failure is worth another attempt;
``retry_with_policy`` re-runs an async operation under a ``RetryPolicy``
using awaitable sleeps that a stop request cuts short.

Usage:
    outcome = await retry_with_policy(
        lambda: provider.send(conversation, schema),
        RetryPolicy.for_llm_calls(),
        cancel=token,
    )
    response = outcome.result
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

from omni_pilot.config.logging import get_logger

from .cancel import CancellationToken
from .errors import NetworkError, RateLimitedError, RunStopped

log = get_logger("omni_pilot.recovery")

T = TypeVar("T")


class ErrorKind(str, Enum):
    RETRYABLE = "retryable"
    RATE_LIMITED = "rate_limited"
    FATAL = "fatal"


@dataclass(frozen=True)
class Classification:
    kind: ErrorKind
    wait_seconds: float | None = None

    @property
    def retryable(self) -> bool:
        return self.kind is not ErrorKind.FATAL


RETRYABLE = Classification(ErrorKind.RETRYABLE)
FATAL = Classification(ErrorKind.FATAL)


def classify_error(exc: BaseException) -> Classification:
    """Map an exception to retryable, rate limited, or fatal."""
    if isinstance(exc, RateLimitedError):
        return Classification(ErrorKind.RATE_LIMITED, exc.wait_seconds)
    if getattr(exc, "fatal", False):
        return FATAL

    status = getattr(exc, "status_code", None)
    if status == 429:
        return Classification(ErrorKind.RATE_LIMITED, 30.0)
    if isinstance(status, int) and 500 <= status < 600:
        return RETRYABLE
    if status in (401, 403):
        return FATAL

    message = str(exc).lower()
    if "rate limit" in message or "too many requests" in message:
        return Classification(ErrorKind.RATE_LIMITED, 60.0)
    if "overloaded" in message or "capacity" in message:
        return Classification(ErrorKind.RATE_LIMITED, 30.0)
    if "timeout" in message or "timed out" in message or "temporarily" in message:
        return RETRYABLE

    if isinstance(exc, (NetworkError, TimeoutError, ConnectionError)):
        return RETRYABLE
    return FATAL


def classify_capture_error(exc: BaseException) -> Classification:
    """Screen capture failures are transient unless the error says otherwise."""
    if getattr(exc, "fatal", False):
        return FATAL
    return RETRYABLE


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff settings.

    Attributes:
        max_retries: Attempts after the first one
        initial_delay_ms: Delay before the first retry
        max_delay_ms: Upper bound for any single delay
        multiplier: Growth factor per attempt
        jitter: Fractional random spread applied to each delay (0 disables)
    """

    max_retries: int = 3
    initial_delay_ms: int = 500
    max_delay_ms: int = 30_000
    multiplier: float = 2.0
    jitter: float = 0.1

    @classmethod
    def default(cls) -> RetryPolicy:
        return cls()

    @classmethod
    def for_llm_calls(cls) -> RetryPolicy:
        return cls(max_retries=3, initial_delay_ms=1000, max_delay_ms=60_000, multiplier=2.0)

    @classmethod
    def for_screenshots(cls) -> RetryPolicy:
        return cls(max_retries=3, initial_delay_ms=200, max_delay_ms=2000, multiplier=1.5)

    def delay_for_attempt(self, attempt: int) -> float:
        """Seconds to wait before retry number ``attempt`` (1-based; 0 means no wait)."""
        if attempt <= 0:
            return 0.0
        delay = self.initial_delay_ms * self.multiplier ** (attempt - 1)
        if self.jitter:
            delay *= 1 + random.uniform(-self.jitter, self.jitter)
        return min(delay, self.max_delay_ms) / 1000


@dataclass
class RetryOutcome(Generic[T]):
    result: T
    attempts: int

    @property
    def retried(self) -> bool:
        return self.attempts > 1


async def retry_with_policy(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    cancel: CancellationToken | None = None,
    classify: Callable[[BaseException], Classification] = classify_error,
    on_retry: Callable[[int, BaseException, float], None] | None = None,
) -> RetryOutcome[T]:
    """Run ``operation`` until it succeeds, fails fatally, or retries run out.

    Raises:
        The last error when it is fatal or the budget is spent.
        RunStopped: If the token is stopped while backing off.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return RetryOutcome(result=await operation(), attempts=attempt)
        except (asyncio.CancelledError, RunStopped):
            raise
        except Exception as e:
            verdict = classify(e)
            if not verdict.retryable or attempt > policy.max_retries:
                raise

            if verdict.kind is ErrorKind.RATE_LIMITED and verdict.wait_seconds is not None:
                delay = verdict.wait_seconds
            else:
                delay = policy.delay_for_attempt(attempt)

            log.warning(
                "recovery.retry",
                attempt=attempt,
                max_retries=policy.max_retries,
                kind=verdict.kind.value,
                delay_s=round(delay, 3),
                error=str(e),
            )
            if on_retry is not None:
                on_retry(attempt, e, delay)

            if cancel is not None:
                if await cancel.sleep(delay):
                    cancel.raise_if_stopped()
            else:
                await asyncio.sleep(delay)


__all__ = [
    "Classification",
    "ErrorKind",
    "RetryOutcome",
    "RetryPolicy",
    "classify_capture_error",
    "classify_error",
    "retry_with_policy",
]
