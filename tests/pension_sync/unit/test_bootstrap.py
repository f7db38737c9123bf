from __future__ import annotations

import logging
import sys
from typing import Any, cast

import httpx
import pytest
from pytest_httpx import HTTPXMock

from pension_sync.bootstrap import (
    build_http_client,
    build_sync_service,
    build_warehouse_client,
    configure_process,
    warehouse_health,
)
from pension_sync.circuit_breaker import (
    BANKING_API_CIRCUIT,
    WAREHOUSE_CIRCUIT,
    CircuitState,
    get_registry,
)
from pension_sync.health import HealthStatus
from pension_sync.jobs import InMemorySyncJobStore
from pension_sync.settings import SyncSettings
from pension_sync.warehouse import WarehouseNotConfigured
from tests.pension_sync.support.fakes import RecordingClientStore

pytestmark = pytest.mark.asyncio

_STATEMENTS_URL = "https://acme.snowflakecomputing.com/api/v2/statements"


def _settings(**overrides: object) -> SyncSettings:
    values: dict[str, object] = {
        "warehouse_account": "acme",
        "warehouse_token": "token-abc",
    }
    values.update(overrides)
    return SyncSettings(**cast(Any, values))


async def test_configure_process_builds_registry_and_logging(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(sys.stderr, "isatty", lambda: False, raising=False)

    registry = configure_process(_settings(log_level="DEBUG"))

    assert get_registry() is registry
    assert registry.names() == (BANKING_API_CIRCUIT, WAREHOUSE_CIRCUIT)
    assert logging.getLogger().level == logging.DEBUG
    with pytest.raises(RuntimeError, match="already configured"):
        configure_process(_settings())


async def test_build_http_client_uses_configured_timeout() -> None:
    async with build_http_client(_settings(warehouse_http_timeout_seconds=12.5)) as client:
        assert client.timeout.read == 12.5


async def test_build_sync_service_binds_process_wide_warehouse_breaker(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(sys.stderr, "isatty", lambda: False, raising=False)
    registry = configure_process(_settings())

    async with httpx.AsyncClient() as http_client:
        service = build_sync_service(
            _settings(),
            http_client=http_client,
            client_store=RecordingClientStore(),
            job_store=InMemorySyncJobStore(),
        )

    assert await service.get_circuit_breaker_state() == CircuitState.CLOSED
    assert service._breaker is registry.get(WAREHOUSE_CIRCUIT)


async def test_build_sync_service_requires_configured_warehouse() -> None:
    settings = _settings(warehouse_account="placeholder", warehouse_token=None)

    async with httpx.AsyncClient() as http_client:
        assert build_warehouse_client(settings, http_client=http_client) is None
        with pytest.raises(WarehouseNotConfigured):
            build_sync_service(
                settings,
                http_client=http_client,
                client_store=RecordingClientStore(),
                job_store=InMemorySyncJobStore(),
            )


async def test_warehouse_health_pings_through_http(
    monkeypatch: pytest.MonkeyPatch,
    httpx_mock: HTTPXMock,
) -> None:
    monkeypatch.setattr(sys.stderr, "isatty", lambda: False, raising=False)
    configure_process(_settings())
    httpx_mock.add_response(
        method="POST",
        url=_STATEMENTS_URL,
        json={
            "resultSetMetaData": {"rowType": [{"name": "CURRENT_TIMESTAMP"}]},
            "data": [["2024-05-01 12:00:00"]],
        },
    )

    async with httpx.AsyncClient() as http_client:
        report = await warehouse_health(_settings(), http_client=http_client)

    assert report.status == HealthStatus.HEALTHY
    assert report.circuit_state == CircuitState.CLOSED


async def test_warehouse_health_reports_unconfigured_account(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setattr(sys.stderr, "isatty", lambda: False, raising=False)
    settings = _settings(warehouse_account="placeholder", warehouse_token=None)
    registry = configure_process(settings)

    async with httpx.AsyncClient() as http_client:
        report = await warehouse_health(
            settings, http_client=http_client, registry=registry
        )

    assert report.status == HealthStatus.UNCONFIGURED
