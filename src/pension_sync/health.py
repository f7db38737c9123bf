from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import StrEnum

from pension_sync.circuit_breaker import CircuitBreaker, CircuitState
from pension_sync.logging import log_info, log_warning
from pension_sync.warehouse import WarehouseReader

_logger = logging.getLogger(__name__)


class HealthStatus(StrEnum):
    HEALTHY = "healthy"
    UNCONFIGURED = "unconfigured"
    ERROR = "error"


@dataclass(frozen=True)
class HealthReport:
    """Result of one warehouse connectivity check."""

    status: HealthStatus
    response_time_ms: int
    message: str
    circuit_state: CircuitState | None = None

    @property
    def ok(self) -> bool:
        return self.status == HealthStatus.HEALTHY


async def check_warehouse_health(
    warehouse: WarehouseReader | None,
    breaker: CircuitBreaker | None = None,
) -> HealthReport:
    """Ping the warehouse and report connectivity.

    The ping bypasses the breaker so that an open circuit never hides a
    recovered upstream; the breaker state is reported alongside.

    Args:
        warehouse: Configured warehouse reader, or ``None`` when unconfigured.
        breaker: Breaker whose state is included in the report.

    Returns:
        ``unconfigured`` without a reader, ``healthy`` when the ping succeeds,
        ``error`` otherwise.
    """
    circuit_state = None if breaker is None else await breaker.get_state()
    if warehouse is None:
        return HealthReport(
            status=HealthStatus.UNCONFIGURED,
            response_time_ms=0,
            message="Warehouse credentials are not configured",
            circuit_state=circuit_state,
        )

    start = time.monotonic()
    try:
        await warehouse.ping()
    except Exception as exc:
        elapsed_ms = int((time.monotonic() - start) * 1000)
        log_warning(
            _logger,
            "warehouse_health_check_failed",
            error_type=exc.__class__.__name__,
            error=str(exc),
            response_time_ms=elapsed_ms,
        )
        return HealthReport(
            status=HealthStatus.ERROR,
            response_time_ms=elapsed_ms,
            message=str(exc) or exc.__class__.__name__,
            circuit_state=circuit_state,
        )

    elapsed_ms = int((time.monotonic() - start) * 1000)
    log_info(_logger, "warehouse_health_check_ok", response_time_ms=elapsed_ms)
    return HealthReport(
        status=HealthStatus.HEALTHY,
        response_time_ms=elapsed_ms,
        message="Warehouse connection successful",
        circuit_state=circuit_state,
    )
