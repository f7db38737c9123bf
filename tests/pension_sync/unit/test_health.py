from __future__ import annotations

import pytest

from pension_sync.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)
from pension_sync.health import HealthStatus, check_warehouse_health
from pension_sync.warehouse import WarehouseAuthError
from tests.pension_sync.support.fakes import FakeWarehouse

pytestmark = pytest.mark.asyncio


async def test_unconfigured_warehouse_reports_unconfigured() -> None:
    report = await check_warehouse_health(None, CircuitBreaker("warehouse"))

    assert report.status == HealthStatus.UNCONFIGURED
    assert report.ok is False
    assert report.response_time_ms == 0
    assert report.circuit_state == CircuitState.CLOSED


async def test_successful_ping_reports_healthy() -> None:
    warehouse = FakeWarehouse()

    report = await check_warehouse_health(warehouse)

    assert report.status == HealthStatus.HEALTHY
    assert report.ok is True
    assert report.response_time_ms >= 0
    assert report.circuit_state is None
    assert warehouse.ping_calls == 1


async def test_failed_ping_reports_error_message() -> None:
    warehouse = FakeWarehouse()
    warehouse.ping_error = WarehouseAuthError("Warehouse rejected credentials (HTTP 401).")

    report = await check_warehouse_health(warehouse)

    assert report.status == HealthStatus.ERROR
    assert report.message == "Warehouse rejected credentials (HTTP 401)."


async def test_ping_bypasses_open_circuit() -> None:
    breaker = CircuitBreaker(
        "warehouse", config=CircuitBreakerConfig(failure_threshold=1)
    )

    async def _fail() -> None:
        raise ConnectionError("down")

    with pytest.raises(ConnectionError):
        await breaker.call(_fail)
    warehouse = FakeWarehouse()

    report = await check_warehouse_health(warehouse, breaker)

    assert report.status == HealthStatus.HEALTHY
    assert report.circuit_state == CircuitState.OPEN
    assert warehouse.ping_calls == 1
