"""State-change monitoring hook for circuit breakers."""

from typing import Protocol

from whisper_core.circuit_breaker.state import CircuitState


class StateMonitor(Protocol):
    """Callback invoked on every breaker state transition.

    Notes:
        Called synchronously from the transition point, so implementations
        should hand off anything slow (metrics export, network I/O).
    """

    def __call__(
        self, name: str, new: CircuitState, previous: CircuitState
    ) -> None:
        """Handle a transition of breaker ``name`` from ``previous`` to ``new``."""
