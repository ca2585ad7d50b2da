"""Circuit breaker wiring for the assistant's external dependencies.

The assistant talks to three unreliable services: credential storage, the LLM
provider and the Gmail API. Each gets one breaker in a shared registry, and
every call to it is bounded by a timeout so the breaker always observes an
outcome.
"""

from __future__ import annotations

import asyncio
import functools
from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

from whisper_core.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitState,
    StateMonitor,
)
from whisper_core.errors import DependencyTimeoutError
from whisper_core.logging import AnyLogger, bind_dependency, get_logger, log_info
from whisper_core.retry import RetryBackoffPolicy, with_retry
from whisper_core.settings import DEPENDENCIES, CoreSettings, Dependency

T = TypeVar("T")
P = ParamSpec("P")

CREDENTIALS: Dependency = "credentials"
LLM: Dependency = "llm"
GMAIL: Dependency = "gmail"

_logger = get_logger(__name__)


def with_timeout(
    func: Callable[P, Awaitable[T]],
    timeout_seconds: float,
    *,
    dependency: str,
) -> Callable[P, Awaitable[T]]:
    """Bound ``func`` so it fails with ``DependencyTimeoutError`` when slow."""

    @functools.wraps(func)
    async def _bounded(*args: P.args, **kwargs: P.kwargs) -> T:
        try:
            return await asyncio.wait_for(
                func(*args, **kwargs), timeout=timeout_seconds
            )
        except TimeoutError as error:
            raise DependencyTimeoutError(dependency, timeout_seconds) from error

    return _bounded


def with_dependency_context(
    func: Callable[P, Awaitable[T]], dependency: str
) -> Callable[P, Awaitable[T]]:
    """Run ``func`` with ``dependency`` bound into the structlog context."""

    @functools.wraps(func)
    async def _bound(*args: P.args, **kwargs: P.kwargs) -> T:
        with bind_dependency(dependency):
            return await func(*args, **kwargs)

    return _bound


def log_state_change(logger: AnyLogger | None = None) -> StateMonitor:
    """Build a monitor that logs dependency breaker transitions."""
    target = _logger if logger is None else logger

    def _monitor(name: str, new: CircuitState, previous: CircuitState) -> None:
        log_info(
            target,
            "dependency.circuit_state_changed",
            dependency=name,
            state=str(new),
            previous=str(previous),
        )

    return _monitor


class DependencyGuards:
    """Circuit breaker protection for credentials, LLM and Gmail calls."""

    def __init__(
        self,
        registry: CircuitBreakerRegistry,
        settings: CoreSettings | None = None,
        *,
        monitor: StateMonitor | None = None,
        retry_policy: RetryBackoffPolicy | None = None,
    ) -> None:
        """Register one breaker per dependency in ``registry``.

        Registration is idempotent: breakers that already exist in the registry
        keep their original configuration.

        Args:
            registry: Registry shared by every call site of the assistant.
            settings: Breaker thresholds and call timeouts. Defaults to
                ``CoreSettings()`` read from the environment.
            monitor: State-change callback. Defaults to structured logging.
            retry_policy: Optional retry policy for transient failures.
                Defaults to ``settings.retry_policy()``.
        """
        self._registry = registry
        self._settings = CoreSettings() if settings is None else settings
        self._retry_policy = (
            self._settings.retry_policy() if retry_policy is None else retry_policy
        )
        state_monitor = log_state_change() if monitor is None else monitor
        for dependency in DEPENDENCIES:
            if dependency in registry:
                continue
            registry.get(
                dependency,
                self._settings.breaker_config(dependency),
                monitor=state_monitor,
            )

    def breaker(self, dependency: Dependency) -> CircuitBreaker:
        return self._registry.get(dependency)

    def protect(
        self, dependency: Dependency, func: Callable[P, Awaitable[T]]
    ) -> Callable[P, Awaitable[T]]:
        """Wrap ``func`` with a timeout, the dependency breaker and retries.

        Every event logged while the call runs carries ``dependency``.
        """
        bounded = with_timeout(
            func,
            self._settings.call_timeout_seconds(dependency),
            dependency=dependency,
        )
        protected = self.breaker(dependency).wrap(bounded)
        if self._retry_policy is not None:
            protected = with_retry(protected, self._retry_policy)
        return with_dependency_context(protected, dependency)

    def credentials(self, func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        return self.protect(CREDENTIALS, func)

    def llm(self, func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        return self.protect(LLM, func)

    def gmail(self, func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        return self.protect(GMAIL, func)

    def status(self) -> dict[str, dict[str, CircuitState]]:
        return self._registry.get_status()
