from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import UTC, datetime, timedelta

from pension_sync.changes import ChangeEntry
from pension_sync.jobs import InMemorySyncJobStore, JobCounters, SyncJob
from pension_sync.lookup import LookupDomain
from pension_sync.store import InMemoryClientStore, UpsertOutcome
from pension_sync.transform import ClientRecord, WarehouseRecord
from pension_sync.warehouse import WarehouseCursor, WarehousePage

REFERENCE_DATA: dict[LookupDomain, dict[str, str]] = {
    LookupDomain.PENSION_TYPES: {"SSS": "pt-sss", "GSIS": "pt-gsis"},
    LookupDomain.PENSIONER_TYPES: {"RET": "pnt-ret", "SUR": "pnt-sur"},
    LookupDomain.PRODUCTS: {"PL": "prod-pl"},
    LookupDomain.BRANCHES: {"B001": "br-001", "B002": "br-002"},
    LookupDomain.PAR_STATUSES: {"CUR": "par-cur", "PD30": "par-pd30"},
    LookupDomain.ACCOUNT_TYPES: {"SAV": "acct-sav"},
}


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self._now = datetime(2024, 1, 1, tzinfo=UTC) if start is None else start

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now = self._now + timedelta(seconds=seconds)


class FakeLogger:
    """Capture structured logger events for assertions."""

    def __init__(self) -> None:
        self.events: list[str] = []
        self.calls: list[tuple[str, str, dict[str, object]]] = []

    def _record(self, level: str, event: str, **kwargs: object) -> None:
        self.events.append(event)
        self.calls.append((level, event, kwargs))

    def info(self, event: str, **kwargs: object) -> None:
        self._record("info", event, **kwargs)

    def warning(self, event: str, **kwargs: object) -> None:
        self._record("warning", event, **kwargs)

    def error(self, event: str, **kwargs: object) -> None:
        self._record("error", event, **kwargs)

    def exception(self, event: str, **kwargs: object) -> None:
        self._record("exception", event, **kwargs)

    def critical(self, event: str, **kwargs: object) -> None:
        self._record("critical", event, **kwargs)

    def levels_for(self, event: str) -> list[str]:
        return [level for level, name, _ in self.calls if name == event]


def warehouse_row(client_code: str | None = "C001", **overrides: object) -> dict[str, object]:
    """Build a warehouse row whose codes all resolve against ``REFERENCE_DATA``."""
    row: dict[str, object] = {
        "CLIENT_CODE": client_code,
        "FULL_NAME": "Dela Cruz, Juan",
        "PENSION_NUMBER": f"PN-{client_code}",
        "BIRTH_DATE": "1950-03-15",
        "CONTACT_NUMBER": "09171234567",
        "CONTACT_NUMBER_ALT": None,
        "PENSION_TYPE_CODE": "SSS",
        "PENSIONER_TYPE_CODE": "RET",
        "PRODUCT_CODE": "PL",
        "BRANCH_CODE": "B001",
        "PAR_STATUS_CODE": "CUR",
        "ACCOUNT_TYPE_CODE": "SAV",
        "PAST_DUE_AMOUNT": "0.00",
        "LOAN_STATUS": "ACTIVE",
    }
    row.update(overrides)
    return row


class FakeWarehouse:
    """Warehouse reader serving fixed pages, with optional scripted failures."""

    def __init__(
        self,
        pages: Sequence[Sequence[WarehouseRecord]] = (),
        *,
        fail_on_page: int | None = None,
        error: Exception | None = None,
    ) -> None:
        self.pages = [tuple(page) for page in pages]
        self.fail_on_page = fail_on_page
        self.error = RuntimeError("warehouse unavailable") if error is None else error
        self.page_calls: list[tuple[tuple[str, ...], int]] = []
        self.preview_calls: list[tuple[tuple[str, ...], int]] = []
        self.ping_calls = 0
        self.ping_error: Exception | None = None

    def _filtered(self, rows: Sequence[WarehouseRecord], branch_codes: Sequence[str]):
        if not branch_codes:
            return tuple(rows)
        return tuple(row for row in rows if row.get("BRANCH_CODE") in branch_codes)

    async def fetch_page(
        self,
        branch_codes: Sequence[str] = (),
        cursor: WarehouseCursor | None = None,
    ) -> WarehousePage:
        index = 0 if cursor is None else cursor.partition
        self.page_calls.append((tuple(branch_codes), index))
        if self.fail_on_page is not None and index >= self.fail_on_page:
            raise self.error
        rows = self.pages[index] if index < len(self.pages) else ()
        next_cursor = None
        if index + 1 < len(self.pages):
            next_cursor = WarehouseCursor(
                statement_handle="handle-1",
                partition=index + 1,
                partition_count=len(self.pages),
                columns=(),
            )
        return WarehousePage(
            rows=self._filtered(rows, branch_codes), next_cursor=next_cursor
        )

    async def fetch_preview(
        self, branch_codes: Sequence[str] = (), limit: int = 100
    ) -> list[WarehouseRecord]:
        self.preview_calls.append((tuple(branch_codes), limit))
        if self.fail_on_page is not None:
            raise self.error
        rows = [row for page in self.pages for row in page]
        return list(self._filtered(rows, branch_codes))[:limit]

    async def ping(self) -> WarehouseRecord:
        self.ping_calls += 1
        if self.ping_error is not None:
            raise self.ping_error
        return {"1": "1"}


class RecordingClientStore(InMemoryClientStore):
    """In-memory client store that counts calls and can fail selected writes."""

    def __init__(
        self,
        reference_data: Mapping[LookupDomain, Mapping[str, str]] | None = None,
    ) -> None:
        super().__init__(REFERENCE_DATA if reference_data is None else reference_data)
        self.upsert_calls: list[str] = []
        self.lookup_calls: list[str] = []
        self.failing_codes: dict[str, Exception] = {}
        self.failing_domains: dict[LookupDomain, Exception] = {}
        self.history_error: Exception | None = None
        self.lookup_error: Exception | None = None

    async def list_reference_codes(self, domain: LookupDomain) -> Mapping[str, str]:
        error = self.failing_domains.get(domain)
        if error is not None:
            raise error
        return await super().list_reference_codes(domain)

    async def get_client_by_code(self, client_code: str):
        self.lookup_calls.append(client_code)
        if self.lookup_error is not None:
            raise self.lookup_error
        return await super().get_client_by_code(client_code)

    async def upsert_client(self, record: ClientRecord) -> UpsertOutcome:
        self.upsert_calls.append(record.client_code)
        error = self.failing_codes.get(record.client_code)
        if error is not None:
            raise error
        return await super().upsert_client(record)

    async def record_client_sync_changes(self, entries: Sequence[ChangeEntry]) -> None:
        if self.history_error is not None:
            raise self.history_error
        await super().record_client_sync_changes(entries)


class FlakyJobStore(InMemorySyncJobStore):
    """Job store whose writes fail a configured number of times."""

    def __init__(
        self,
        *,
        start_failures: int = 0,
        update_failures: int = 0,
        finalize_failures: int = 0,
    ) -> None:
        super().__init__()
        self.start_failures = start_failures
        self.update_failures = update_failures
        self.finalize_failures = finalize_failures
        self.update_calls = 0
        self.finalize_calls = 0

    async def start_sync_job(self, job_id: str) -> SyncJob:
        if self.start_failures > 0:
            self.start_failures -= 1
            raise ConnectionError("job store unavailable")
        return await super().start_sync_job(job_id)

    async def update_sync_job(self, job_id: str, counters: JobCounters) -> SyncJob:
        self.update_calls += 1
        if self.update_failures > 0:
            self.update_failures -= 1
            raise ConnectionError("job store unavailable")
        return await super().update_sync_job(job_id, counters)

    def _maybe_fail_finalize(self) -> None:
        self.finalize_calls += 1
        if self.finalize_failures > 0:
            self.finalize_failures -= 1
            raise ConnectionError("job store unavailable")

    async def complete_sync_job(
        self, job_id: str, counters: JobCounters, *, processing_time_ms: int
    ) -> SyncJob:
        self._maybe_fail_finalize()
        return await super().complete_sync_job(
            job_id, counters, processing_time_ms=processing_time_ms
        )

    async def fail_sync_job(
        self,
        job_id: str,
        reason: str,
        counters: JobCounters,
        *,
        processing_time_ms: int,
    ) -> SyncJob:
        self._maybe_fail_finalize()
        return await super().fail_sync_job(
            job_id, reason, counters, processing_time_ms=processing_time_ms
        )


async def no_sleep(_: float) -> None:
    return None
