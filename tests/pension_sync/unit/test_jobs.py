from __future__ import annotations

import pytest

import pension_sync.jobs as jobs_mod
from pension_sync.errors import JobStateError
from pension_sync.jobs import (
    InMemorySyncJobStore,
    JobCounters,
    SyncCounters,
    SyncJobStatus,
    SyncJobType,
)
from tests.pension_sync.support.fakes import FakeClock

pytestmark = pytest.mark.asyncio


async def test_job_lifecycle_pending_running_completed() -> None:
    store = InMemorySyncJobStore()

    job = await store.create_sync_job(
        SyncJobType.SNOWFLAKE,
        parameters={"branch_codes": ["B001"], "dry_run": False},
        created_by="ops@example.com",
    )
    assert job.status == SyncJobStatus.PENDING
    assert job.started_at is None

    running = await store.start_sync_job(job.id)
    assert running.status == SyncJobStatus.RUNNING
    assert running.started_at is not None

    progress = await store.update_sync_job(job.id, JobCounters(processed=2, created=2))
    assert progress.counters.processed == 2

    final = await store.complete_sync_job(
        job.id,
        JobCounters(processed=3, created=2, updated=1),
        processing_time_ms=42,
    )
    assert final.status == SyncJobStatus.COMPLETED
    assert final.completed_at is not None
    assert final.processing_time_ms == 42
    assert final.error_message is None
    assert final.parameters["branch_codes"] == ["B001"]
    assert final.created_by == "ops@example.com"


async def test_terminal_state_is_written_once() -> None:
    store = InMemorySyncJobStore()
    job = await store.create_sync_job(SyncJobType.SNOWFLAKE)
    await store.start_sync_job(job.id)
    await store.fail_sync_job(
        job.id, "Circuit warehouse is open", JobCounters(), processing_time_ms=5
    )

    with pytest.raises(JobStateError, match="already failed"):
        await store.complete_sync_job(job.id, JobCounters(), processing_time_ms=6)
    with pytest.raises(JobStateError):
        await store.update_sync_job(job.id, JobCounters(processed=1, created=1))

    stored = await store.get_sync_job(job.id)
    assert stored is not None
    assert stored.status == SyncJobStatus.FAILED
    assert stored.error_message == "Circuit warehouse is open"


async def test_counters_never_decrease() -> None:
    store = InMemorySyncJobStore()
    job = await store.create_sync_job(SyncJobType.SNOWFLAKE)
    await store.start_sync_job(job.id)
    await store.update_sync_job(job.id, JobCounters(processed=5, created=5))

    with pytest.raises(JobStateError, match="must not decrease"):
        await store.update_sync_job(job.id, JobCounters(processed=4, created=4))


async def test_pending_job_can_be_failed_but_not_completed() -> None:
    store = InMemorySyncJobStore()
    job = await store.create_sync_job(SyncJobType.SNOWFLAKE)

    with pytest.raises(JobStateError, match="expected running"):
        await store.update_sync_job(job.id, JobCounters())
    with pytest.raises(JobStateError, match="expected running"):
        await store.complete_sync_job(job.id, JobCounters(), processing_time_ms=1)
    failed = await store.fail_sync_job(
        job.id, "could not start", JobCounters(), processing_time_ms=1
    )
    assert failed.status == SyncJobStatus.FAILED


async def test_unknown_job_is_rejected() -> None:
    store = InMemorySyncJobStore()

    with pytest.raises(JobStateError, match="does not exist"):
        await store.start_sync_job("missing")
    assert await store.get_sync_job("missing") is None


async def test_job_queries_order_by_creation_and_filter(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    clock = FakeClock()
    monkeypatch.setattr(jobs_mod, "_utcnow", clock.now)
    store = InMemorySyncJobStore()

    first = await store.create_sync_job(SyncJobType.SNOWFLAKE)
    clock.advance(1)
    second = await store.create_sync_job(SyncJobType.NEXTBANK)
    clock.advance(1)
    third = await store.create_sync_job(SyncJobType.SNOWFLAKE)
    await store.start_sync_job(third.id)

    recent = await store.list_recent_sync_jobs(limit=2)
    pending = await store.list_sync_jobs_by_status(SyncJobStatus.PENDING)
    snowflake = await store.list_sync_jobs_by_type(SyncJobType.SNOWFLAKE)
    running_snowflake = await store.list_sync_jobs_by_type(
        SyncJobType.SNOWFLAKE, status=SyncJobStatus.RUNNING
    )

    assert [job.id for job in recent] == [third.id, second.id]
    assert [job.id for job in pending] == [second.id, first.id]
    assert [job.id for job in snowflake] == [third.id, first.id]
    assert [job.id for job in running_snowflake] == [third.id]


async def test_sync_counters_processed_is_sum_of_outcomes() -> None:
    counters = SyncCounters()
    counters.record_created()
    counters.record_updated()
    counters.record_updated()
    counters.record_skipped()
    counters.record_failed()

    snapshot = counters.snapshot()

    assert snapshot == JobCounters(processed=5, created=1, updated=2, skipped=1, failed=1)
    assert snapshot.dominates(JobCounters(processed=4, created=1, updated=2, skipped=1))
    assert not snapshot.dominates(JobCounters(failed=2))


async def test_status_terminal_flags() -> None:
    assert SyncJobStatus.COMPLETED.is_terminal
    assert SyncJobStatus.FAILED.is_terminal
    assert not SyncJobStatus.PENDING.is_terminal
    assert not SyncJobStatus.RUNNING.is_terminal
