"""Core circuit breaker implementation."""

import asyncio
import functools
import inspect
import sys
import threading
from collections.abc import Awaitable, Callable
from contextlib import AbstractContextManager, nullcontext, suppress
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, ParamSpec, TypeVar, cast

from whisper_core.circuit_breaker.exceptions import CircuitOpenError
from whisper_core.circuit_breaker.monitor import StateMonitor
from whisper_core.circuit_breaker.state import BreakerSnapshot, CircuitState
from whisper_core.logging import get_logger, log_exception, log_info, log_warning

T = TypeVar("T")
P = ParamSpec("P")

Fallback = Callable[..., Any]
"""``(error, *args, **kwargs) -> result``; may return an awaitable."""

_logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class _TrialSlot:
    """Exclusive slot held by the single in-flight half-open trial call."""

    def __init__(self) -> None:
        is_gil_enabled = getattr(sys, "_is_gil_enabled", None)
        gil_enabled = True if is_gil_enabled is None else bool(is_gil_enabled())
        self._guard: AbstractContextManager[Any] = (
            nullcontext() if gil_enabled else threading.Lock()
        )
        self._taken = False

    @property
    def taken(self) -> bool:
        return self._taken

    def try_take(self) -> bool:
        with self._guard:
            if self._taken:
                return False
            self._taken = True
            return True

    def free(self) -> None:
        with self._guard:
            self._taken = False


@dataclass(slots=True)
class CircuitBreakerConfig:
    """Circuit breaker configuration values.

    Attributes:
        failure_threshold: Consecutive failures required while ``CLOSED`` before
            opening.
        reset_timeout_ms: Milliseconds to hold ``OPEN`` before allowing a trial.
        expected_exceptions: Exceptions that count as failures.
        excluded_exceptions: Exceptions that must not count as failures.
        auto_half_open: Arm a deferred task that moves ``OPEN`` to
            ``HALF_OPEN`` when the reset timeout elapses. Without it the
            deadline is only checked when the next call arrives.
    """

    failure_threshold: int = 5
    reset_timeout_ms: int = 30_000
    expected_exceptions: tuple[type[Exception], ...] = (Exception,)
    excluded_exceptions: tuple[type[Exception], ...] = ()
    auto_half_open: bool = False

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.reset_timeout_ms < 1:
            raise ValueError("reset_timeout_ms must be >= 1")

    @property
    def reset_timeout(self) -> float:
        """Reset timeout in seconds."""
        return self.reset_timeout_ms / 1000


class CircuitBreaker:
    """Stateful proxy around a dangerous async operation.

    State transitions:
      - ``CLOSED`` -> ``OPEN`` once ``failure_threshold`` consecutive failures
        are observed.
      - ``OPEN`` -> ``HALF_OPEN`` when a call arrives at or after the reset
        deadline (or when the optional deferred timer fires).
      - ``HALF_OPEN`` -> ``CLOSED`` when the trial call succeeds.
      - ``HALF_OPEN`` -> ``OPEN`` when the trial call fails; the deadline is
        recomputed from the failure time.

    Exactly one trial call may be in flight while ``HALF_OPEN``; concurrent
    callers are rejected as if the circuit were open. Calls admitted while
    ``CLOSED`` that settle after the circuit opened do not change its state.
    """

    def __init__(
        self,
        name: str,
        *,
        config: CircuitBreakerConfig | None = None,
        fallback: Fallback | None = None,
        monitor: StateMonitor | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        """Build a circuit breaker.

        Args:
            name: Breaker name used for logging, errors and monitor calls.
            config: Breaker behavior configuration. Defaults to
                ``CircuitBreakerConfig()``.
            fallback: Optional ``(error, *args, **kwargs)`` callable whose
                result replaces a rejected or failed call.
            monitor: Optional callback notified on every state transition.
            sleep: Awaitable sleep used by the deferred half-open timer.
        """
        self.name = name
        self.config = CircuitBreakerConfig() if config is None else config
        self._fallback = fallback
        self._monitor = monitor
        self._sleep = sleep
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._next_attempt_at: datetime | None = None
        self._trial_slot = _TrialSlot()
        self._half_open_task: asyncio.Task[None] | None = None

    @property
    def state(self) -> CircuitState:
        """Current circuit state."""
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state == CircuitState.OPEN

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def next_attempt_at(self) -> datetime | None:
        return self._next_attempt_at

    @property
    def fallback(self) -> Fallback | None:
        return self._fallback

    @property
    def monitor(self) -> StateMonitor | None:
        return self._monitor

    @property
    def half_open_scheduled(self) -> bool:
        """Whether a deferred ``OPEN`` -> ``HALF_OPEN`` transition is pending."""
        task = self._half_open_task
        return task is not None and not task.done()

    def snapshot(self) -> BreakerSnapshot:
        return BreakerSnapshot(
            name=self.name,
            state=self._state,
            failure_count=self._failure_count,
            next_attempt_at=self._next_attempt_at,
            trial_in_flight=self._trial_slot.taken,
        )

    def reset(self) -> None:
        """Force ``CLOSED``, clear counters and cancel any pending transition."""
        self.cancel_scheduled_half_open()
        self._failure_count = 0
        self._next_attempt_at = None
        self._transition(CircuitState.CLOSED)

    def force_open(self) -> None:
        """Force ``OPEN`` with a fresh reset deadline."""
        self._open()

    def cancel_scheduled_half_open(self) -> None:
        """Cancel the deferred half-open transition, if one is armed."""
        task = self._half_open_task
        self._half_open_task = None
        if task is not None and not task.done():
            task.cancel()

    async def close(self) -> None:
        """Cancel the deferred half-open task and wait for it to finish."""
        task = self._half_open_task
        self.cancel_scheduled_half_open()
        if task is None:
            return
        with suppress(asyncio.CancelledError):
            await task

    def wrap(self, func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        """Return ``func`` guarded by this breaker, with the same signature."""

        @functools.wraps(func)
        async def _protected(*args: P.args, **kwargs: P.kwargs) -> T:
            return await self.call(func, *args, **kwargs)

        return _protected

    async def call(
        self,
        func: Callable[P, Awaitable[T]],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        """Invoke an async callable under circuit breaker protection.

        Args:
            func: Dangerous async callable to execute.
            *args: Positional arguments forwarded to ``func``.
            **kwargs: Keyword arguments forwarded to ``func``.

        Returns:
            The result of ``func`` when allowed and successful, or the
            fallback's result when the call is rejected or fails and a fallback
            is configured.

        Raises:
            CircuitOpenError: When the circuit is open, the call is rejected
                and no fallback is configured.
            Exception: The original exception from ``func`` when it is
                attempted and fails without a fallback configured.
        """
        if self._state == CircuitState.OPEN:
            now = _utcnow()
            deadline = self._next_attempt_at
            if deadline is not None and now < deadline:
                retry_after = (deadline - now).total_seconds()
                return cast(T, await self._reject(retry_after, args, kwargs))
            self._enter_half_open()

        trial = False
        if self._state == CircuitState.HALF_OPEN:
            if not self._trial_slot.try_take():
                return cast(T, await self._reject(0.0, args, kwargs))
            trial = True

        try:
            result = await func(*args, **kwargs)
        except self.config.excluded_exceptions:
            raise
        except self.config.expected_exceptions as exc:
            self._record_failure(exc, trial=trial)
            if self._fallback is None:
                raise
            fallback = self._fallback
            failure: Exception = exc
        else:
            self._record_success(trial=trial)
            return result
        finally:
            if trial:
                self._trial_slot.free()

        return cast(T, await self._run_fallback(fallback, failure, args, kwargs))

    async def _reject(
        self, retry_after: float, args: tuple[Any, ...], kwargs: dict[str, Any]
    ) -> Any:
        error = CircuitOpenError(self.name, retry_after=retry_after)
        log_warning(
            _logger,
            "circuit_breaker.call_rejected",
            breaker=self.name,
            state=str(self._state),
            retry_after=retry_after,
        )
        if self._fallback is None:
            raise error
        return await self._run_fallback(self._fallback, error, args, kwargs)

    @staticmethod
    async def _run_fallback(
        fallback: Fallback,
        error: Exception,
        args: tuple[Any, ...],
        kwargs: dict[str, Any],
    ) -> Any:
        result = fallback(error, *args, **kwargs)
        if inspect.isawaitable(result):
            return await result
        return result

    def _record_success(self, *, trial: bool) -> None:
        # Only the trial decides HALF_OPEN; calls admitted earlier that settle
        # while OPEN or HALF_OPEN leave the state alone.
        if trial and self._state == CircuitState.HALF_OPEN:
            self._failure_count = 0
            self._next_attempt_at = None
            self._transition(CircuitState.CLOSED)
        elif self._state == CircuitState.CLOSED:
            self._failure_count = 0

    def _record_failure(self, exc: Exception, *, trial: bool) -> None:
        counted = trial or self._state == CircuitState.CLOSED
        if counted:
            self._failure_count += 1
        log_warning(
            _logger,
            "circuit_breaker.call_failed",
            breaker=self.name,
            failure_count=self._failure_count,
            counted=counted,
            error_type=exc.__class__.__name__,
            error=str(exc),
        )
        if trial:
            if self._state == CircuitState.HALF_OPEN:
                self._open()
        elif (
            self._state == CircuitState.CLOSED
            and self._failure_count >= self.config.failure_threshold
        ):
            self._open()

    def _open(self) -> None:
        self._next_attempt_at = _utcnow() + timedelta(
            milliseconds=self.config.reset_timeout_ms
        )
        self._transition(CircuitState.OPEN)
        self._arm_half_open_timer()

    def _enter_half_open(self) -> None:
        self.cancel_scheduled_half_open()
        self._transition(CircuitState.HALF_OPEN)

    def _arm_half_open_timer(self) -> None:
        if not self.config.auto_half_open:
            return
        self.cancel_scheduled_half_open()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No loop to schedule on; the lazy deadline check still applies.
            return
        self._half_open_task = loop.create_task(
            self._half_open_after_timeout(),
            name=f"circuit_breaker:{self.name}:half_open",
        )

    async def _half_open_after_timeout(self) -> None:
        try:
            await self._sleep(self.config.reset_timeout)
        except asyncio.CancelledError:
            return

        if self._half_open_task is asyncio.current_task():
            self._half_open_task = None
        if self._state == CircuitState.OPEN:
            log_info(
                _logger, "circuit_breaker.half_open_timer_fired", breaker=self.name
            )
            self._transition(CircuitState.HALF_OPEN)

    def _transition(self, new: CircuitState) -> None:
        previous = self._state
        if previous == new:
            return
        self._state = new
        log_info(
            _logger,
            "circuit_breaker.state_changed",
            breaker=self.name,
            previous=str(previous),
            state=str(new),
            failure_count=self._failure_count,
        )
        if self._monitor is None:
            return
        try:
            self._monitor(self.name, new, previous)
        except Exception:
            log_exception(
                _logger, "circuit_breaker.monitor_failed", breaker=self.name
            )
