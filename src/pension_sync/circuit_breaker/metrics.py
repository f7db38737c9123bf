"""Observability hooks for circuit breakers."""

from __future__ import annotations

from typing import Protocol

import structlog

from pension_sync.circuit_breaker.state import CircuitState
from pension_sync.logging import StructuredLogger, log_info, log_warning


class BreakerListener(Protocol):
    """Listener protocol for circuit breaker events.

    Notes:
        Listener exceptions are swallowed by the breaker so observability can
        never change the outcome of a protected call.
    """

    async def on_state_change(
        self, name: str, old: CircuitState, new: CircuitState
    ) -> None:
        """Handle circuit state transitions."""

    async def on_call_rejected(self, name: str) -> None:
        """Handle call rejection while the circuit is open."""

    async def on_call_succeeded(self, name: str, elapsed: float) -> None:
        """Handle successful protected call completion."""

    async def on_call_failed(self, name: str, exc: Exception, elapsed: float) -> None:
        """Handle failed protected call completion."""


class LoggingBreakerListener:
    """Write circuit transitions and rejections to a structured logger."""

    def __init__(self, logger: StructuredLogger | None = None) -> None:
        self._logger: StructuredLogger = (
            structlog.get_logger(__name__) if logger is None else logger
        )

    async def on_state_change(
        self, name: str, old: CircuitState, new: CircuitState
    ) -> None:
        if new == CircuitState.OPEN:
            log_warning(
                self._logger,
                "circuit_opened",
                circuit=name,
                previous_state=str(old),
            )
            return
        log_info(
            self._logger,
            "circuit_state_changed",
            circuit=name,
            previous_state=str(old),
            state=str(new),
        )

    async def on_call_rejected(self, name: str) -> None:
        log_warning(self._logger, "circuit_call_rejected", circuit=name)

    async def on_call_succeeded(self, name: str, elapsed: float) -> None:
        return None

    async def on_call_failed(self, name: str, exc: Exception, elapsed: float) -> None:
        log_warning(
            self._logger,
            "circuit_call_failed",
            circuit=name,
            error_type=exc.__class__.__name__,
            error=str(exc),
            elapsed_seconds=round(elapsed, 3),
        )
