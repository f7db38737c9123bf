"""Sync job lifecycle records and the job store interface."""

from __future__ import annotations

import asyncio
import uuid
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import StrEnum
from types import MappingProxyType

from pension_sync.errors import JobStateError


def _utcnow() -> datetime:
    return datetime.now(UTC)


class SyncJobStatus(StrEnum):
    """Sync job lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SyncJobStatus.COMPLETED, SyncJobStatus.FAILED)


class SyncJobType(StrEnum):
    """Upstream a sync job ingests from."""

    SNOWFLAKE = "snowflake"
    NEXTBANK = "nextbank"


@dataclass(frozen=True)
class JobCounters:
    """Immutable snapshot of per-run record counters."""

    processed: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0

    def dominates(self, other: JobCounters) -> bool:
        """Return whether every counter is >= the matching counter of ``other``."""
        return (
            self.processed >= other.processed
            and self.created >= other.created
            and self.updated >= other.updated
            and self.skipped >= other.skipped
            and self.failed >= other.failed
        )


@dataclass(slots=True)
class SyncCounters:
    """Mutable accumulator owned by one running sync.

    Only fully processed rows are counted, so ``processed`` always equals the
    sum of the four outcome counters.
    """

    created: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0

    @property
    def processed(self) -> int:
        return self.created + self.updated + self.skipped + self.failed

    def record_created(self) -> None:
        self.created += 1

    def record_updated(self) -> None:
        self.updated += 1

    def record_skipped(self) -> None:
        self.skipped += 1

    def record_failed(self) -> None:
        self.failed += 1

    def snapshot(self) -> JobCounters:
        return JobCounters(
            processed=self.processed,
            created=self.created,
            updated=self.updated,
            skipped=self.skipped,
            failed=self.failed,
        )


@dataclass(frozen=True)
class SyncJob:
    """Audit and progress record for one sync run."""

    id: str
    type: SyncJobType
    status: SyncJobStatus
    parameters: Mapping[str, object] = field(default_factory=dict)
    created_by: str | None = None
    counters: JobCounters = field(default_factory=JobCounters)
    created_at: datetime = field(default_factory=_utcnow)
    started_at: datetime | None = None
    completed_at: datetime | None = None
    processing_time_ms: int | None = None
    error_message: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "parameters", MappingProxyType(dict(self.parameters)))


class AbstractSyncJobStore(ABC):
    """Persistence interface for sync job lifecycle writes and reads."""

    @abstractmethod
    async def create_sync_job(
        self,
        job_type: SyncJobType,
        *,
        parameters: Mapping[str, object] | None = None,
        created_by: str | None = None,
    ) -> SyncJob:
        """Create a job in ``pending``."""

    @abstractmethod
    async def start_sync_job(self, job_id: str) -> SyncJob:
        """Move a ``pending`` job to ``running`` and stamp ``started_at``."""

    @abstractmethod
    async def update_sync_job(self, job_id: str, counters: JobCounters) -> SyncJob:
        """Write progress counters for a ``running`` job."""

    @abstractmethod
    async def complete_sync_job(
        self, job_id: str, counters: JobCounters, *, processing_time_ms: int
    ) -> SyncJob:
        """Finalize a job as ``completed`` with its final counters."""

    @abstractmethod
    async def fail_sync_job(
        self,
        job_id: str,
        reason: str,
        counters: JobCounters,
        *,
        processing_time_ms: int,
    ) -> SyncJob:
        """Finalize a job as ``failed`` with a reason and partial counters."""

    @abstractmethod
    async def get_sync_job(self, job_id: str) -> SyncJob | None:
        """Return one job, or ``None`` when unknown."""

    @abstractmethod
    async def list_recent_sync_jobs(self, limit: int = 10) -> list[SyncJob]:
        """Return jobs ordered by ``created_at`` descending."""

    @abstractmethod
    async def list_sync_jobs_by_status(
        self, status: SyncJobStatus, limit: int = 10
    ) -> list[SyncJob]:
        """Return the most recent jobs in ``status``."""

    @abstractmethod
    async def list_sync_jobs_by_type(
        self,
        job_type: SyncJobType,
        status: SyncJobStatus | None = None,
        limit: int = 10,
    ) -> list[SyncJob]:
        """Return the most recent jobs of ``job_type``, optionally by status."""


class InMemorySyncJobStore(AbstractSyncJobStore):
    """In-memory job store enforcing the job lifecycle.

    ``pending -> running -> completed | failed``; a pending job may also fail.
    The terminal state is written once and counters never decrease.
    """

    def __init__(self) -> None:
        self._jobs: dict[str, SyncJob] = {}
        self._lock = asyncio.Lock()

    def _require(self, job_id: str) -> SyncJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobStateError(f"sync job {job_id} does not exist")
        return job

    @staticmethod
    def _require_running(job: SyncJob) -> None:
        if job.status != SyncJobStatus.RUNNING:
            raise JobStateError(
                f"sync job {job.id} is {job.status}, expected {SyncJobStatus.RUNNING}"
            )

    @staticmethod
    def _require_monotonic(job: SyncJob, counters: JobCounters) -> None:
        if not counters.dominates(job.counters):
            raise JobStateError(f"sync job {job.id} counters must not decrease")

    async def create_sync_job(
        self,
        job_type: SyncJobType,
        *,
        parameters: Mapping[str, object] | None = None,
        created_by: str | None = None,
    ) -> SyncJob:
        async with self._lock:
            job = SyncJob(
                id=str(uuid.uuid4()),
                type=job_type,
                status=SyncJobStatus.PENDING,
                parameters=parameters or {},
                created_by=created_by,
                created_at=_utcnow(),
            )
            self._jobs[job.id] = job
            return job

    async def start_sync_job(self, job_id: str) -> SyncJob:
        async with self._lock:
            job = self._require(job_id)
            if job.status != SyncJobStatus.PENDING:
                raise JobStateError(f"sync job {job_id} is {job.status}, not pending")
            updated = replace(job, status=SyncJobStatus.RUNNING, started_at=_utcnow())
            self._jobs[job_id] = updated
            return updated

    async def update_sync_job(self, job_id: str, counters: JobCounters) -> SyncJob:
        async with self._lock:
            job = self._require(job_id)
            self._require_running(job)
            self._require_monotonic(job, counters)
            updated = replace(job, counters=counters)
            self._jobs[job_id] = updated
            return updated

    async def complete_sync_job(
        self, job_id: str, counters: JobCounters, *, processing_time_ms: int
    ) -> SyncJob:
        return await self._finalize(
            job_id, SyncJobStatus.COMPLETED, counters, None, processing_time_ms
        )

    async def fail_sync_job(
        self,
        job_id: str,
        reason: str,
        counters: JobCounters,
        *,
        processing_time_ms: int,
    ) -> SyncJob:
        return await self._finalize(
            job_id, SyncJobStatus.FAILED, counters, reason, processing_time_ms
        )

    async def _finalize(
        self,
        job_id: str,
        status: SyncJobStatus,
        counters: JobCounters,
        reason: str | None,
        processing_time_ms: int,
    ) -> SyncJob:
        async with self._lock:
            job = self._require(job_id)
            if job.status.is_terminal:
                raise JobStateError(f"sync job {job_id} is already {job.status}")
            if status == SyncJobStatus.COMPLETED:
                self._require_running(job)
            self._require_monotonic(job, counters)
            updated = replace(
                job,
                status=status,
                counters=counters,
                completed_at=_utcnow(),
                processing_time_ms=processing_time_ms,
                error_message=reason,
            )
            self._jobs[job_id] = updated
            return updated

    async def get_sync_job(self, job_id: str) -> SyncJob | None:
        async with self._lock:
            return self._jobs.get(job_id)

    def _recent(self, jobs: list[SyncJob], limit: int) -> list[SyncJob]:
        ordered = sorted(jobs, key=lambda job: job.created_at, reverse=True)
        return ordered[: max(limit, 0)]

    async def list_recent_sync_jobs(self, limit: int = 10) -> list[SyncJob]:
        async with self._lock:
            return self._recent(list(self._jobs.values()), limit)

    async def list_sync_jobs_by_status(
        self, status: SyncJobStatus, limit: int = 10
    ) -> list[SyncJob]:
        async with self._lock:
            jobs = [job for job in self._jobs.values() if job.status == status]
            return self._recent(jobs, limit)

    async def list_sync_jobs_by_type(
        self,
        job_type: SyncJobType,
        status: SyncJobStatus | None = None,
        limit: int = 10,
    ) -> list[SyncJob]:
        async with self._lock:
            jobs = [
                job
                for job in self._jobs.values()
                if job.type == job_type and (status is None or job.status == status)
            ]
            return self._recent(jobs, limit)
