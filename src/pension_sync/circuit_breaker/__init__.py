"""Framework-agnostic async circuit breaker.

Key behavior notes:
  - ``CLOSED`` counts consecutive failures; reaching ``failure_threshold``
    opens the circuit.
  - ``OPEN`` rejects calls without invoking them until ``cooldown_ms`` has
    passed since the last failure, then the next call becomes a
    ``HALF_OPEN`` probe.
  - ``HALF_OPEN`` closes after ``success_threshold`` probe successes and
    reopens on any probe failure. At most one probe is in flight per breaker.
  - Excluded exceptions propagate without touching the failure accounting.
"""

from pension_sync.circuit_breaker.breaker import CircuitBreaker, CircuitBreakerConfig
from pension_sync.circuit_breaker.exceptions import (
    CircuitBreakerError,
    CircuitOpenError,
    UnknownCircuitError,
)
from pension_sync.circuit_breaker.metrics import BreakerListener, LoggingBreakerListener
from pension_sync.circuit_breaker.registry import (
    BANKING_API_CIRCUIT,
    WAREHOUSE_CIRCUIT,
    CircuitBreakerRegistry,
    configure_registry,
    get_registry,
    reset_registry,
)
from pension_sync.circuit_breaker.state import BreakerSnapshot, CircuitState
from pension_sync.circuit_breaker.storage import (
    AbstractBreakerStorage,
    InMemoryBreakerStorage,
)

__all__ = [
    "BANKING_API_CIRCUIT",
    "WAREHOUSE_CIRCUIT",
    "AbstractBreakerStorage",
    "BreakerListener",
    "BreakerSnapshot",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerError",
    "CircuitBreakerRegistry",
    "CircuitOpenError",
    "CircuitState",
    "InMemoryBreakerStorage",
    "LoggingBreakerListener",
    "UnknownCircuitError",
    "configure_registry",
    "get_registry",
    "reset_registry",
]
