from __future__ import annotations

import functools
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, ParamSpec, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    stop_never,
    wait_exponential_jitter,
)
from tenacity.retry import retry_base

from whisper_core.errors import TransientError
from whisper_core.logging import get_logger, log_warning

T = TypeVar("T")
P = ParamSpec("P")

_logger = get_logger(__name__)


@dataclass(frozen=True)
class RetryBackoffPolicy:
    """Configuration for retry attempt count and backoff boundaries."""

    attempts: int | None
    min_seconds: float
    max_seconds: float

    def __post_init__(self) -> None:
        if self.attempts is not None and self.attempts < 1:
            raise ValueError("attempts must be >= 1 when provided")
        if self.min_seconds < 0:
            raise ValueError("min_seconds must be >= 0")
        if self.max_seconds < 0:
            raise ValueError("max_seconds must be >= 0")
        if self.max_seconds < self.min_seconds:
            raise ValueError("max_seconds must be >= min_seconds")


def retry_transient_failures() -> retry_base:
    """Retry predicate matching only ``TransientError`` failures.

    Open-circuit rejections are not transient errors, so a retry loop wrapped
    around a breaker stops as soon as the breaker opens.
    """
    return retry_if_exception_type(TransientError)


def _log_before_sleep(state: RetryCallState) -> None:
    outcome = state.outcome
    error = outcome.exception() if outcome is not None else None
    log_warning(
        _logger,
        "dependency.retrying",
        attempt=state.attempt_number,
        error_type=None if error is None else error.__class__.__name__,
        error=None if error is None else str(error),
    )


def build_exponential_jitter_retrying(
    *,
    policy: RetryBackoffPolicy,
    retry: retry_base | None = None,
    sleep: Callable[[float], Awaitable[None]] | None = None,
    before_sleep: Callable[[RetryCallState], None] | None = None,
    reraise: bool = True,
) -> AsyncRetrying:
    """Build an ``AsyncRetrying`` with exponential jitter backoff.

    Args:
        policy: Attempt count and backoff bounds.
        retry: Retry predicate. Defaults to ``retry_transient_failures()``.
        sleep: Optional awaitable sleep, mostly for tests.
        before_sleep: Optional hook run before each backoff sleep.
        reraise: Re-raise the last failure instead of ``RetryError``.
    """
    options: dict[str, Any] = {
        "retry": retry_transient_failures() if retry is None else retry,
        "wait": wait_exponential_jitter(
            initial=policy.min_seconds,
            max=policy.max_seconds,
        ),
        "stop": (
            stop_never
            if policy.attempts is None
            else stop_after_attempt(policy.attempts)
        ),
        "reraise": reraise,
    }
    if sleep is not None:
        options["sleep"] = sleep
    if before_sleep is not None:
        options["before_sleep"] = before_sleep
    return AsyncRetrying(**options)


def with_retry(
    func: Callable[P, Awaitable[T]],
    policy: RetryBackoffPolicy,
    *,
    sleep: Callable[[float], Awaitable[None]] | None = None,
) -> Callable[P, Awaitable[T]]:
    """Wrap ``func`` so transient failures are retried under ``policy``."""

    @functools.wraps(func)
    async def _retried(*args: P.args, **kwargs: P.kwargs) -> T:
        retrying = build_exponential_jitter_retrying(
            policy=policy,
            sleep=sleep,
            before_sleep=_log_before_sleep,
        )
        async for attempt in retrying:
            with attempt:
                return await func(*args, **kwargs)
        raise AssertionError("retry loop exited without an outcome")

    return _retried
