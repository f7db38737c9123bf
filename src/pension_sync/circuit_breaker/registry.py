"""Process-wide registry of named circuit breakers.

One breaker exists per protected upstream for the lifetime of the process so
that failure history is shared by every caller of that upstream. Breakers are
built once from configuration; lookups never create them implicitly.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping, Sequence
from types import MappingProxyType

from pension_sync.circuit_breaker.breaker import CircuitBreaker, CircuitBreakerConfig
from pension_sync.circuit_breaker.exceptions import UnknownCircuitError
from pension_sync.circuit_breaker.metrics import BreakerListener
from pension_sync.circuit_breaker.storage import (
    AbstractBreakerStorage,
    InMemoryBreakerStorage,
)

WAREHOUSE_CIRCUIT = "warehouse"
BANKING_API_CIRCUIT = "banking-api"


class CircuitBreakerRegistry:
    """Immutable mapping of circuit name to its breaker."""

    def __init__(self, breakers: Mapping[str, CircuitBreaker]) -> None:
        self._breakers = MappingProxyType(dict(breakers))

    @classmethod
    def from_configs(
        cls,
        configs: Mapping[str, CircuitBreakerConfig],
        *,
        storage: AbstractBreakerStorage | None = None,
        listeners: Sequence[BreakerListener] | None = None,
    ) -> CircuitBreakerRegistry:
        """Build one breaker per configured circuit sharing a storage backend."""
        shared_storage = InMemoryBreakerStorage() if storage is None else storage
        return cls(
            {
                name: CircuitBreaker(
                    name,
                    config=config,
                    storage=shared_storage,
                    listeners=listeners,
                )
                for name, config in configs.items()
            }
        )

    def get(self, name: str) -> CircuitBreaker:
        """Return the breaker for ``name``.

        Raises:
            UnknownCircuitError: When ``name`` was not configured.
        """
        try:
            return self._breakers[name]
        except KeyError:
            raise UnknownCircuitError(name) from None

    def names(self) -> tuple[str, ...]:
        return tuple(sorted(self._breakers))

    def __contains__(self, name: object) -> bool:
        return name in self._breakers


_REGISTRY: CircuitBreakerRegistry | None = None
_REGISTRY_LOCK = threading.Lock()


def configure_registry(
    configs: Mapping[str, CircuitBreakerConfig],
    *,
    storage: AbstractBreakerStorage | None = None,
    listeners: Sequence[BreakerListener] | None = None,
    replace: bool = False,
) -> CircuitBreakerRegistry:
    """Build the process-wide registry.

    Raises:
        RuntimeError: When the registry already exists and ``replace`` is false.
    """
    global _REGISTRY
    with _REGISTRY_LOCK:
        if _REGISTRY is not None and not replace:
            raise RuntimeError("circuit breaker registry is already configured")
        _REGISTRY = CircuitBreakerRegistry.from_configs(
            configs, storage=storage, listeners=listeners
        )
        return _REGISTRY


def get_registry() -> CircuitBreakerRegistry:
    """Return the process-wide registry.

    Raises:
        RuntimeError: When ``configure_registry`` has not been called.
    """
    registry = _REGISTRY
    if registry is None:
        raise RuntimeError("circuit breaker registry is not configured")
    return registry


def reset_registry() -> None:
    """Drop the process-wide registry. Intended for deterministic tests."""
    global _REGISTRY
    with _REGISTRY_LOCK:
        _REGISTRY = None
