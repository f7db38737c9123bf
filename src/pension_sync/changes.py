"""Field-level change detection for synced client records."""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, date, datetime
from typing import Protocol

from pension_sync.logging import log_info

_logger = logging.getLogger(__name__)

TRACKED_FIELDS: tuple[str, ...] = (
    "full_name",
    "pension_number",
    "birth_date",
    "contact_number",
    "contact_number_alt",
    "pension_type_id",
    "pensioner_type_id",
    "product_id",
    "branch_id",
    "par_status_id",
    "account_type_id",
    "past_due_amount",
    "loan_status",
)


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class ChangeEntry:
    """One detected difference between a stored and an incoming client field."""

    client_id: str
    field: str
    old_value: str | None
    new_value: str | None
    source: str
    sync_job_id: str | None
    changed_at: datetime


class ChangeSink(Protocol):
    """Store surface that appends change entries to the sync history."""

    async def record_client_sync_changes(self, entries: Sequence[ChangeEntry]) -> None:
        """Persist ``entries`` in order."""


def _as_mapping(record: object) -> Mapping[str, object]:
    if isinstance(record, Mapping):
        return record
    if dataclasses.is_dataclass(record) and not isinstance(record, type):
        return {f.name: getattr(record, f.name) for f in dataclasses.fields(record)}
    raise TypeError(f"cannot compare record of type {type(record).__name__}")


def _render(value: object) -> str | None:
    if value is None:
        return None
    if isinstance(value, date):
        return value.isoformat()
    return str(value)


def compute_changes(
    existing: object | None,
    incoming: object,
    *,
    client_id: str,
    source: str,
    sync_job_id: str | None = None,
    fields: Iterable[str] = TRACKED_FIELDS,
    changed_at: datetime | None = None,
) -> list[ChangeEntry]:
    """Diff two client records field by field.

    A ``None`` existing record is a creation and yields no entries. Fields are
    compared by value on their native types; only the fields listed in
    ``fields`` are considered, so immutable identifiers are never diffed.

    Args:
        existing: Stored record (dataclass or mapping), or ``None``.
        incoming: Record about to be, or just, written.
        client_id: Internal id of the stored client.
        source: Provenance tag written on every entry.
        sync_job_id: Sync job that observed the change, if any.
        fields: Field names to compare.
        changed_at: Timestamp for every entry; defaults to now (UTC).

    Returns:
        One entry per differing field, in ``fields`` order.
    """
    if existing is None:
        return []

    old = _as_mapping(existing)
    new = _as_mapping(incoming)
    timestamp = _utcnow() if changed_at is None else changed_at
    entries: list[ChangeEntry] = []
    for field_name in fields:
        old_value = old.get(field_name)
        new_value = new.get(field_name)
        if old_value == new_value:
            continue
        entries.append(
            ChangeEntry(
                client_id=client_id,
                field=field_name,
                old_value=_render(old_value),
                new_value=_render(new_value),
                source=source,
                sync_job_id=sync_job_id,
                changed_at=timestamp,
            )
        )
    return entries


class ChangeRecorder:
    """Compute and persist field-level change history for upserted clients."""

    def __init__(
        self,
        sink: ChangeSink,
        *,
        source: str,
        fields: Sequence[str] = TRACKED_FIELDS,
    ) -> None:
        self._sink = sink
        self._source = source
        self._fields = tuple(fields)

    async def record(
        self,
        *,
        client_id: str,
        existing: object | None,
        incoming: object,
        sync_job_id: str | None = None,
    ) -> list[ChangeEntry]:
        """Persist the diff between ``existing`` and ``incoming``.

        Call only after the upsert that produced ``incoming`` is confirmed.
        """
        entries = compute_changes(
            existing,
            incoming,
            client_id=client_id,
            source=self._source,
            sync_job_id=sync_job_id,
            fields=self._fields,
        )
        if not entries:
            return entries

        await self._sink.record_client_sync_changes(entries)
        log_info(
            _logger,
            "client_sync_changes_recorded",
            client_id=client_id,
            fields=[entry.field for entry in entries],
        )
        return entries
