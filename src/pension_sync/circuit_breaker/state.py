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
    """Point-in-time view of one named circuit.

    Attributes:
        name: Breaker name.
        state: Current breaker state.
        failure_count: Consecutive failures counted since the last close.
        success_count: Successes counted while ``HALF_OPEN``.
        last_failure_at: Timestamp of the last counted failure, if any.
        last_check_at: Timestamp the cooldown window is measured from.
    """

    name: str
    state: CircuitState
    failure_count: int
    success_count: int
    last_failure_at: datetime | None
    last_check_at: datetime
