"""Process wiring for the sync worker."""

from __future__ import annotations

import httpx

from pension_sync.circuit_breaker import (
    WAREHOUSE_CIRCUIT,
    CircuitBreakerRegistry,
    LoggingBreakerListener,
    configure_registry,
    get_registry,
)
from pension_sync.health import HealthReport, check_warehouse_health
from pension_sync.jobs import AbstractSyncJobStore
from pension_sync.logging import configure_structlog
from pension_sync.retry import RetryBackoffPolicy
from pension_sync.service import SyncService
from pension_sync.settings import SyncSettings
from pension_sync.store import AbstractClientStore
from pension_sync.warehouse import WarehouseClient


def configure_process(settings: SyncSettings) -> CircuitBreakerRegistry:
    """Configure logging and build the process-wide breaker registry.

    Call once at startup.

    Raises:
        RuntimeError: When the registry is already configured.
    """
    configure_structlog(
        log_level=settings.log_level, log_format=settings.log_format
    )
    return configure_registry(
        settings.circuit_breaker_configs(),
        listeners=[LoggingBreakerListener()],
    )


def build_http_client(settings: SyncSettings) -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=settings.warehouse_http_timeout_seconds)


def build_warehouse_client(
    settings: SyncSettings, *, http_client: httpx.AsyncClient
) -> WarehouseClient | None:
    if not settings.is_warehouse_configured():
        return None
    return WarehouseClient.from_settings(settings, client=http_client)


def build_sync_service(
    settings: SyncSettings,
    *,
    http_client: httpx.AsyncClient,
    client_store: AbstractClientStore,
    job_store: AbstractSyncJobStore,
    registry: CircuitBreakerRegistry | None = None,
) -> SyncService:
    """Build a ``SyncService`` bound to the shared warehouse breaker.

    Args:
        settings: Process settings.
        http_client: Shared HTTP client for warehouse calls.
        client_store: Operational client store.
        job_store: Sync job store.
        registry: Breaker registry; defaults to the process-wide one.

    Returns:
        A service whose warehouse fetches and store writes share one breaker.

    Raises:
        WarehouseNotConfigured: When warehouse credentials are missing.
        RuntimeError: When no registry is given and none is configured.
    """
    registry = get_registry() if registry is None else registry
    warehouse = WarehouseClient.from_settings(settings, client=http_client)
    return SyncService(
        warehouse=warehouse,
        client_store=client_store,
        job_store=job_store,
        breaker=registry.get(WAREHOUSE_CIRCUIT),
        job_write_policy=RetryBackoffPolicy(
            attempts=settings.job_write_retry_attempts,
            min_seconds=settings.job_write_retry_min_seconds,
            max_seconds=settings.job_write_retry_max_seconds,
        ),
        default_batch_size=settings.sync_batch_size,
        preview_default_limit=settings.preview_default_limit,
        preview_max_limit=settings.preview_max_limit,
    )


async def warehouse_health(
    settings: SyncSettings,
    *,
    http_client: httpx.AsyncClient,
    registry: CircuitBreakerRegistry | None = None,
) -> HealthReport:
    """Run the warehouse health check using process settings."""
    registry = get_registry() if registry is None else registry
    return await check_warehouse_health(
        build_warehouse_client(settings, http_client=http_client),
        registry.get(WAREHOUSE_CIRCUIT),
    )
