"""Named circuit breaker registry.

The registry is an explicitly constructed object handed to every call site that
must coordinate on one breaker per dependency. The first ``get`` for a name
fixes that breaker's configuration; later option arguments are ignored and a
warning is logged when they differ.
"""

import threading

from whisper_core.circuit_breaker.breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    Fallback,
)
from whisper_core.circuit_breaker.exceptions import BreakerNotConfiguredError
from whisper_core.circuit_breaker.monitor import StateMonitor
from whisper_core.circuit_breaker.state import BreakerSnapshot, CircuitState
from whisper_core.logging import get_logger, log_info, log_warning

_logger = get_logger(__name__)


class CircuitBreakerRegistry:
    """Process- or test-scoped store of circuit breakers keyed by name."""

    def __init__(self) -> None:
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._breakers

    def __len__(self) -> int:
        with self._lock:
            return len(self._breakers)

    def get(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        *,
        fallback: Fallback | None = None,
        monitor: StateMonitor | None = None,
    ) -> CircuitBreaker:
        """Return breaker ``name``, creating it from ``config`` on first use.

        Args:
            name: Logical dependency name.
            config: Configuration used only when the breaker does not exist yet.
            fallback: Fallback used only when the breaker does not exist yet.
            monitor: Monitor used only when the breaker does not exist yet.

        Returns:
            The single breaker registered under ``name``.

        Raises:
            BreakerNotConfiguredError: If ``name`` is unknown and no ``config``
                was supplied.
        """
        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                if config is None:
                    raise BreakerNotConfiguredError(name)
                breaker = CircuitBreaker(
                    name,
                    config=config,
                    fallback=fallback,
                    monitor=monitor,
                )
                self._breakers[name] = breaker
                log_info(
                    _logger,
                    "circuit_breaker.registered",
                    breaker=name,
                    failure_threshold=config.failure_threshold,
                    reset_timeout_ms=config.reset_timeout_ms,
                )
                return breaker

        if _conflicts(breaker, config, fallback, monitor):
            log_warning(_logger, "circuit_breaker.options_ignored", breaker=name)
        return breaker

    def remove(self, name: str) -> bool:
        """Remove breaker ``name``; return whether it existed."""
        with self._lock:
            breaker = self._breakers.pop(name, None)
        if breaker is None:
            return False
        breaker.cancel_scheduled_half_open()
        return True

    def reset(self, name: str) -> None:
        """Reset breaker ``name`` if registered."""
        with self._lock:
            breaker = self._breakers.get(name)
        if breaker is not None:
            breaker.reset()

    def reset_all(self) -> None:
        for breaker in self._snapshot_breakers():
            breaker.reset()

    def get_status(self) -> dict[str, dict[str, CircuitState]]:
        """Return ``{name: {"state": state}}`` for every registered breaker."""
        return {
            breaker.name: {"state": breaker.state}
            for breaker in self._snapshot_breakers()
        }

    def snapshots(self) -> dict[str, BreakerSnapshot]:
        return {
            breaker.name: breaker.snapshot() for breaker in self._snapshot_breakers()
        }

    async def close(self) -> None:
        """Cancel background work owned by every registered breaker."""
        for breaker in self._snapshot_breakers():
            await breaker.close()

    def _snapshot_breakers(self) -> list[CircuitBreaker]:
        with self._lock:
            return list(self._breakers.values())


def _conflicts(
    breaker: CircuitBreaker,
    config: CircuitBreakerConfig | None,
    fallback: Fallback | None,
    monitor: StateMonitor | None,
) -> bool:
    if config is not None and config != breaker.config:
        return True
    if fallback is not None and fallback is not breaker.fallback:
        return True
    return monitor is not None and monitor is not breaker.monitor
