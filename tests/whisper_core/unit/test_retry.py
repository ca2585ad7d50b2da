from __future__ import annotations

import pytest
from tenacity import AsyncRetrying, RetryCallState, RetryError
from tenacity.retry import retry_if_exception_type

import whisper_core.retry as retry_mod
from tests.whisper_core.support.fakes import FakeLogger
from whisper_core.circuit_breaker import CircuitOpenError
from whisper_core.errors import DependencyTimeoutError, TransientError
from whisper_core.retry import (
    RetryBackoffPolicy,
    build_exponential_jitter_retrying,
    with_retry,
)

pytestmark = pytest.mark.asyncio


async def _no_sleep(delay: float) -> None:
    _ = delay


@pytest.mark.parametrize(
    ("attempts", "min_seconds", "max_seconds", "message"),
    [
        (0, 0.0, 1.0, "attempts must be >= 1"),
        (1, -0.1, 1.0, "min_seconds must be >= 0"),
        (1, 0.1, -0.1, "max_seconds must be >= 0"),
        (1, 2.0, 1.0, "max_seconds must be >= min_seconds"),
    ],
)
async def test_retry_backoff_policy_validation(
    attempts: int,
    min_seconds: float,
    max_seconds: float,
    message: str,
) -> None:
    with pytest.raises(ValueError, match=message):
        RetryBackoffPolicy(
            attempts=attempts,
            min_seconds=min_seconds,
            max_seconds=max_seconds,
        )


async def test_build_retrying_defaults_to_transient_failures_only() -> None:
    retrying = build_exponential_jitter_retrying(
        policy=RetryBackoffPolicy(attempts=3, min_seconds=0.0, max_seconds=0.0),
        sleep=_no_sleep,
    )
    assert isinstance(retrying, AsyncRetrying)

    attempts = 0
    with pytest.raises(ValueError):
        async for attempt in retrying:
            with attempt:
                attempts += 1
                raise ValueError("not transient")

    assert attempts == 1


async def test_build_retrying_with_custom_predicate_and_reraise_disabled() -> None:
    before_sleep_calls: list[int] = []

    def _before_sleep(state: RetryCallState) -> None:
        before_sleep_calls.append(state.attempt_number)

    retrying = build_exponential_jitter_retrying(
        policy=RetryBackoffPolicy(attempts=2, min_seconds=0.0, max_seconds=0.0),
        retry=retry_if_exception_type(ValueError),
        sleep=_no_sleep,
        before_sleep=_before_sleep,
        reraise=False,
    )

    with pytest.raises(RetryError):
        async for attempt in retrying:
            with attempt:
                raise ValueError("boom")

    assert before_sleep_calls == [1]


async def test_with_retry_retries_transient_failures_until_success(
    fake_logger: FakeLogger,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(retry_mod, "_logger", fake_logger)
    sleeps: list[float] = []

    async def _sleep(delay: float) -> None:
        sleeps.append(delay)

    attempts = 0

    async def fetch_messages(label: str) -> str:
        nonlocal attempts
        attempts += 1
        if attempts < 3:
            raise DependencyTimeoutError("gmail", 1.0)
        return f"messages:{label}"

    retried = with_retry(
        fetch_messages,
        RetryBackoffPolicy(attempts=5, min_seconds=0.0, max_seconds=0.0),
        sleep=_sleep,
    )

    assert await retried("INBOX") == "messages:INBOX"
    assert attempts == 3
    assert len(sleeps) == 2
    assert retried.__name__ == "fetch_messages"
    assert fake_logger.events == ["dependency.retrying", "dependency.retrying"]
    assert fake_logger.calls[0][2]["error_type"] == "DependencyTimeoutError"


async def test_with_retry_reraises_last_transient_failure() -> None:
    async def _always_fails() -> None:
        raise TransientError("still down")

    retried = with_retry(
        _always_fails,
        RetryBackoffPolicy(attempts=2, min_seconds=0.0, max_seconds=0.0),
        sleep=_no_sleep,
    )

    with pytest.raises(TransientError, match="still down"):
        await retried()


async def test_with_retry_never_retries_open_circuit() -> None:
    attempts = 0

    async def _rejected() -> None:
        nonlocal attempts
        attempts += 1
        raise CircuitOpenError("llm", retry_after=3.0)

    retried = with_retry(
        _rejected,
        RetryBackoffPolicy(attempts=5, min_seconds=0.0, max_seconds=0.0),
        sleep=_no_sleep,
    )

    with pytest.raises(CircuitOpenError):
        await retried()
    assert attempts == 1
