"""Circuit breaker state primitives."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class CircuitState(StrEnum):
    """Circuit breaker state values."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class BreakerSnapshot:
    """Point-in-time view of breaker internals useful for diagnostics.

    Attributes:
        name: Breaker name.
        state: Breaker state at the time of the snapshot.
        failure_count: Consecutive failures counted while ``CLOSED`` or during
            a half-open trial.
        next_attempt_at: Earliest time a trial call may run, if ``OPEN``.
        trial_in_flight: Whether the half-open trial slot is currently held.
    """

    name: str
    state: CircuitState
    failure_count: int
    next_attempt_at: datetime | None
    trial_in_flight: bool
