"""Async circuit breaker with a named-instance registry.

This package implements the circuit breaker pattern from *Release It!*.

Key behavior notes:
  - The reset deadline is evaluated lazily on the next call. An optional
    deferred task (``CircuitBreakerConfig.auto_half_open``) can flip ``OPEN``
    to ``HALF_OPEN`` on its own; ``reset()`` cancels it.
  - Half-open probing is conservative: at most one in-flight trial call is
    permitted per ``CircuitBreaker`` instance.
  - With a fallback configured, both open-circuit rejections and failures of
    the wrapped call are converted into the fallback's result.
"""

from whisper_core.circuit_breaker.breaker import CircuitBreaker, CircuitBreakerConfig
from whisper_core.circuit_breaker.exceptions import (
    BreakerNotConfiguredError,
    CircuitBreakerError,
    CircuitOpenError,
)
from whisper_core.circuit_breaker.monitor import StateMonitor
from whisper_core.circuit_breaker.registry import CircuitBreakerRegistry
from whisper_core.circuit_breaker.state import BreakerSnapshot, CircuitState

__all__ = [
    "BreakerNotConfiguredError",
    "BreakerSnapshot",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerError",
    "CircuitBreakerRegistry",
    "CircuitOpenError",
    "CircuitState",
    "StateMonitor",
]
