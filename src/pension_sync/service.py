"""Warehouse-to-operational-store client sync orchestration."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass
from enum import StrEnum
from functools import partial

import structlog

from pension_sync.changes import ChangeRecorder
from pension_sync.circuit_breaker import CircuitBreaker, CircuitOpenError, CircuitState
from pension_sync.errors import (
    CacheBuildError,
    JobFinalizationError,
    JobStateError,
    SyncCancelledError,
    SyncPermissionDenied,
    WarehouseFetchError,
)
from pension_sync.jobs import (
    AbstractSyncJobStore,
    SyncCounters,
    SyncJob,
    SyncJobStatus,
    SyncJobType,
)
from pension_sync.logging import (
    StructuredLogger,
    log_critical,
    log_error,
    log_exception,
    log_info,
    log_warning,
    sync_log_context,
)
from pension_sync.lookup import LookupCache, build_lookup_cache
from pension_sync.retry import RetryBackoffPolicy, call_with_retry
from pension_sync.store import AbstractClientStore
from pension_sync.transform import SYNC_SOURCE, WarehouseRecord, transform_record
from pension_sync.warehouse import WarehouseCursor, WarehousePage, WarehouseReader

DEFAULT_BATCH_SIZE = 500
CANCELLED_MESSAGE = "Sync cancelled by operator"


def normalize_branch_codes(branch_codes: Iterable[str] | None) -> tuple[str, ...]:
    """Trim, de-duplicate and drop blank branch codes, keeping first-seen order.

    A single code passed as a bare string is treated as a one-element list.
    """
    if isinstance(branch_codes, str):
        branch_codes = (branch_codes,)
    normalized: list[str] = []
    for code in branch_codes or ():
        stripped = code.strip()
        if stripped and stripped not in normalized:
            normalized.append(stripped)
    return tuple(normalized)


@dataclass(frozen=True)
class SyncOptions:
    """Options for one sync run.

    Attributes:
        branch_codes: Branch codes to sync; empty syncs every branch.
        dry_run: Classify rows as created/updated without writing anything.
        record_changes: Record field-level history for updated clients.
        batch_size: Rows between two job progress writes.
        created_by: Operator who requested the run.
    """

    branch_codes: tuple[str, ...] = ()
    dry_run: bool = False
    record_changes: bool = True
    batch_size: int = DEFAULT_BATCH_SIZE
    created_by: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(
            self, "branch_codes", normalize_branch_codes(self.branch_codes)
        )
        if self.batch_size < 1:
            raise ValueError("batch_size must be >= 1")

    def parameters(self) -> dict[str, object]:
        return {
            "branch_codes": list(self.branch_codes),
            "dry_run": self.dry_run,
            "record_changes": self.record_changes,
            "batch_size": self.batch_size,
        }


class SyncErrorKind(StrEnum):
    """Run-level failure kinds reported on a failed ``SyncResult``."""

    CIRCUIT_OPEN = "circuit_open"
    CACHE_BUILD = "cache_build"
    FETCH_FAILED = "fetch_failed"
    CANCELLED = "cancelled"
    INTERNAL = "internal"


@dataclass(frozen=True)
class SyncResult:
    """Outcome of one sync run; counters reflect true progress even on abort."""

    total_processed: int
    created: int
    updated: int
    skipped: int
    failed: int
    sync_job_id: str
    processing_time_ms: int
    status: SyncJobStatus
    error: str | None = None
    error_kind: SyncErrorKind | None = None
    circuit_state: CircuitState | None = None
    retry_after_seconds: float | None = None

    @property
    def ok(self) -> bool:
        return self.status == SyncJobStatus.COMPLETED


@dataclass(frozen=True)
class _RunFailure:
    kind: SyncErrorKind
    message: str
    circuit_state: CircuitState | None = None
    retry_after_seconds: float | None = None


class SyncService:
    """Run full or branch-filtered client syncs from the warehouse.

    Every warehouse fetch and every store read/upsert goes through the same
    circuit breaker, so a failing path isolates the whole run instead of
    hammering a degraded upstream.
    """

    def __init__(
        self,
        *,
        warehouse: WarehouseReader,
        client_store: AbstractClientStore,
        job_store: AbstractSyncJobStore,
        breaker: CircuitBreaker,
        job_type: SyncJobType = SyncJobType.SNOWFLAKE,
        job_write_policy: RetryBackoffPolicy | None = None,
        default_batch_size: int = DEFAULT_BATCH_SIZE,
        preview_default_limit: int = 100,
        preview_max_limit: int = 1000,
        retry_sleep: Callable[[float], Awaitable[None]] | None = None,
        logger: StructuredLogger | None = None,
    ) -> None:
        """Create a sync service.

        Args:
            warehouse: Warehouse reader for pages and previews.
            client_store: Operational store for reference data and clients.
            job_store: Store for sync job lifecycle records.
            breaker: Process-wide breaker guarding the upstream calls.
            job_type: Job type recorded on every job this service creates.
            job_write_policy: Retry policy for job lifecycle writes.
            default_batch_size: Progress batch size used when a run names no
                options.
            preview_default_limit: Row bound used when a preview names none.
            preview_max_limit: Upper bound accepted for previews.
            retry_sleep: Optional sleep used between job write retries.
            logger: Optional structured logger.
        """
        if not 1 <= preview_default_limit <= preview_max_limit:
            raise ValueError(
                "preview_default_limit must be between 1 and preview_max_limit"
            )
        self._warehouse = warehouse
        self._store = client_store
        self._jobs = job_store
        self._breaker = breaker
        self._job_type = job_type
        self._job_write_policy = (
            RetryBackoffPolicy(attempts=3, min_seconds=0.5, max_seconds=5.0)
            if job_write_policy is None
            else job_write_policy
        )
        self._default_batch_size = default_batch_size
        self._preview_default_limit = preview_default_limit
        self._preview_max_limit = preview_max_limit
        self._retry_sleep = retry_sleep
        self._logger: StructuredLogger = (
            structlog.get_logger(__name__) if logger is None else logger
        )
        self._recorder = ChangeRecorder(client_store, source=SYNC_SOURCE)

    async def sync(
        self,
        options: SyncOptions | None = None,
        *,
        permission_granted: bool = True,
        stop_event: asyncio.Event | None = None,
    ) -> SyncResult:
        """Run one sync and return its result.

        Run-level failures (lookup cache, open circuit, fetch failure,
        cancellation) are reported on the result with the job already failed.
        Row-level failures are counted and never abort the run.

        Args:
            options: Run options; defaults to a full sync recording changes.
            permission_granted: Caller's pre-resolved ``sync:execute`` decision.
            stop_event: Set to cancel the run before the next row.

        Returns:
            The run result with final counters.

        Raises:
            SyncPermissionDenied: When ``permission_granted`` is false.
            JobFinalizationError: When the terminal job state cannot be written.
        """
        options = (
            SyncOptions(batch_size=self._default_batch_size)
            if options is None
            else options
        )
        self._require_permission(permission_granted, "sync")

        started = time.monotonic()
        job = await self._write_job(
            partial(
                self._jobs.create_sync_job,
                self._job_type,
                parameters=options.parameters(),
                created_by=options.created_by,
            )
        )
        counters = SyncCounters()

        with sync_log_context(sync_job_id=job.id, job_type=str(self._job_type)):
            log_info(
                self._logger,
                "sync_started",
                job_type=str(self._job_type),
                **options.parameters(),
            )
            try:
                failure = await self._execute(job.id, options, counters, stop_event)
            except asyncio.CancelledError:
                await self._finalize(
                    job.id,
                    counters,
                    started,
                    _RunFailure(SyncErrorKind.CANCELLED, "Sync task was cancelled"),
                )
                raise
            except Exception as exc:
                internal = _RunFailure(SyncErrorKind.INTERNAL, str(exc))
                log_exception(
                    self._logger,
                    "sync_aborted_unexpectedly",
                    error=internal.message,
                    error_kind=str(internal.kind),
                )
                await self._finalize(job.id, counters, started, internal)
                raise

            finished = await self._finalize(job.id, counters, started, failure)
            result = self._result(finished, failure)
            if failure is None:
                log_info(self._logger, "sync_completed", **self._log_fields(result))
            else:
                log_error(self._logger, "sync_failed", **self._log_fields(result))
            return result

    async def fetch_preview(
        self,
        branch_codes: Iterable[str] | None = None,
        limit: int | None = None,
        *,
        permission_granted: bool = True,
    ) -> list[WarehouseRecord]:
        """Fetch raw warehouse rows for inspection without writing anything.

        No job is created and the store is never touched.

        Raises:
            SyncPermissionDenied: When ``permission_granted`` is false.
            ValueError: When ``limit`` is outside ``1..preview_max_limit``.
            CircuitOpenError: When the warehouse circuit is open.
        """
        self._require_permission(permission_granted, "fetch_preview")
        resolved_limit = self._preview_default_limit if limit is None else limit
        if not 1 <= resolved_limit <= self._preview_max_limit:
            raise ValueError(f"limit must be between 1 and {self._preview_max_limit}")
        codes = normalize_branch_codes(branch_codes)

        try:
            rows = await self._breaker.call(
                self._warehouse.fetch_preview, codes, resolved_limit
            )
        except Exception as exc:
            log_error(
                self._logger,
                "warehouse_preview_failed",
                branch_codes=list(codes),
                limit=resolved_limit,
                error_type=exc.__class__.__name__,
                error=str(exc),
            )
            raise

        log_info(
            self._logger,
            "warehouse_preview_fetched",
            count=len(rows),
            branch_codes=list(codes),
            limit=resolved_limit,
        )
        return rows

    async def get_circuit_breaker_state(self) -> CircuitState:
        return await self._breaker.get_state()

    async def get_circuit_breaker_failures(self) -> int:
        return await self._breaker.get_failures()

    def _require_permission(self, permission_granted: bool, action: str) -> None:
        if permission_granted:
            return
        log_warning(self._logger, "sync_permission_denied", action=action)
        raise SyncPermissionDenied(f"Caller may not run {action}")

    async def _execute(
        self,
        job_id: str,
        options: SyncOptions,
        counters: SyncCounters,
        stop_event: asyncio.Event | None,
    ) -> _RunFailure | None:
        await self._write_job(partial(self._jobs.start_sync_job, job_id))

        try:
            cache = await build_lookup_cache(self._store)
        except CacheBuildError as exc:
            return _RunFailure(SyncErrorKind.CACHE_BUILD, str(exc))

        try:
            cursor: WarehouseCursor | None = None
            while True:
                self._raise_if_cancelled(stop_event)
                page = await self._fetch_page(options.branch_codes, cursor)
                for raw in page.rows:
                    self._raise_if_cancelled(stop_event)
                    await self._process_row(raw, cache, options, counters, job_id)
                    if counters.processed % options.batch_size == 0:
                        await self._write_progress(job_id, counters)
                cursor = page.next_cursor
                if cursor is None:
                    break
        except CircuitOpenError as exc:
            return _RunFailure(
                SyncErrorKind.CIRCUIT_OPEN,
                str(exc),
                circuit_state=await self._breaker.get_state(),
                retry_after_seconds=exc.retry_after,
            )
        except WarehouseFetchError as exc:
            return _RunFailure(SyncErrorKind.FETCH_FAILED, str(exc))
        except SyncCancelledError as exc:
            return _RunFailure(SyncErrorKind.CANCELLED, str(exc))
        return None

    async def _fetch_page(
        self, branch_codes: tuple[str, ...], cursor: WarehouseCursor | None
    ) -> WarehousePage:
        try:
            return await self._breaker.call(
                self._warehouse.fetch_page, branch_codes, cursor
            )
        except CircuitOpenError:
            raise
        except Exception as exc:
            log_error(
                self._logger,
                "warehouse_fetch_failed",
                branch_codes=list(branch_codes),
                error_type=exc.__class__.__name__,
                error=str(exc),
            )
            raise WarehouseFetchError(
                f"Failed to fetch clients from warehouse: {exc}"
            ) from exc

    async def _process_row(
        self,
        raw: WarehouseRecord,
        cache: LookupCache,
        options: SyncOptions,
        counters: SyncCounters,
        job_id: str,
    ) -> None:
        transformed = transform_record(raw, cache)
        record = transformed.record
        for warning in transformed.warnings:
            log_warning(
                self._logger,
                "client_transform_warning",
                client_code=record.client_code,
                kind=str(warning.kind),
                field=warning.field,
                value=warning.value,
                domain=None if warning.domain is None else str(warning.domain),
            )
        if transformed.should_skip:
            counters.record_skipped()
            return

        try:
            existing = await self._breaker.call(
                self._store.get_client_by_code, record.client_code
            )
            if options.dry_run:
                if existing is None:
                    counters.record_created()
                else:
                    counters.record_updated()
                return
            outcome = await self._breaker.call(self._store.upsert_client, record)
        except CircuitOpenError:
            raise
        except Exception as exc:
            counters.record_failed()
            log_error(
                self._logger,
                "client_upsert_failed",
                client_code=record.client_code,
                error_type=exc.__class__.__name__,
                error=str(exc),
            )
            return

        if outcome.was_created:
            counters.record_created()
        else:
            counters.record_updated()

        if not options.record_changes or existing is None or outcome.was_created:
            return
        try:
            await self._recorder.record(
                client_id=outcome.id,
                existing=existing.record,
                incoming=record,
                sync_job_id=job_id,
            )
        except Exception as exc:
            log_error(
                self._logger,
                "client_sync_change_record_failed",
                client_code=record.client_code,
                client_id=outcome.id,
                error_type=exc.__class__.__name__,
                error=str(exc),
            )

    @staticmethod
    def _raise_if_cancelled(stop_event: asyncio.Event | None) -> None:
        if stop_event is not None and stop_event.is_set():
            raise SyncCancelledError(CANCELLED_MESSAGE)

    async def _write_job(self, operation: Callable[[], Awaitable[SyncJob]]) -> SyncJob:
        return await call_with_retry(
            operation,
            retry_for=(Exception,),
            never_retry=(JobStateError,),
            policy=self._job_write_policy,
            sleep=self._retry_sleep,
        )

    async def _write_progress(self, job_id: str, counters: SyncCounters) -> None:
        snapshot = counters.snapshot()
        try:
            await self._write_job(
                partial(self._jobs.update_sync_job, job_id, snapshot)
            )
        except Exception as exc:
            log_error(
                self._logger,
                "sync_progress_write_failed",
                processed=snapshot.processed,
                error_type=exc.__class__.__name__,
                error=str(exc),
            )

    async def _finalize(
        self,
        job_id: str,
        counters: SyncCounters,
        started: float,
        failure: _RunFailure | None,
    ) -> SyncJob:
        snapshot = counters.snapshot()
        elapsed_ms = int((time.monotonic() - started) * 1000)
        if failure is None:
            operation = partial(
                self._jobs.complete_sync_job,
                job_id,
                snapshot,
                processing_time_ms=elapsed_ms,
            )
        else:
            operation = partial(
                self._jobs.fail_sync_job,
                job_id,
                failure.message,
                snapshot,
                processing_time_ms=elapsed_ms,
            )

        try:
            return await self._write_job(operation)
        except Exception as exc:
            log_critical(
                self._logger,
                "sync_job_finalization_failed",
                target_status=str(
                    SyncJobStatus.COMPLETED if failure is None else SyncJobStatus.FAILED
                ),
                processed=snapshot.processed,
                error_type=exc.__class__.__name__,
                error=str(exc),
            )
            raise JobFinalizationError(job_id, str(exc)) from exc

    @staticmethod
    def _result(job: SyncJob, failure: _RunFailure | None) -> SyncResult:
        counters = job.counters
        return SyncResult(
            total_processed=counters.processed,
            created=counters.created,
            updated=counters.updated,
            skipped=counters.skipped,
            failed=counters.failed,
            sync_job_id=job.id,
            processing_time_ms=job.processing_time_ms or 0,
            status=job.status,
            error=None if failure is None else failure.message,
            error_kind=None if failure is None else failure.kind,
            circuit_state=None if failure is None else failure.circuit_state,
            retry_after_seconds=None if failure is None else failure.retry_after_seconds,
        )

    @staticmethod
    def _log_fields(result: SyncResult) -> dict[str, object]:
        fields: dict[str, object] = {
            "total_processed": result.total_processed,
            "created": result.created,
            "updated": result.updated,
            "skipped": result.skipped,
            "failed": result.failed,
            "processing_time_ms": result.processing_time_ms,
        }
        if result.error_kind is not None:
            fields["error_kind"] = str(result.error_kind)
            fields["error"] = result.error
        return fields
