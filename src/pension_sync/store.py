"""Operational client store interface and an in-memory implementation."""

from __future__ import annotations

import asyncio
import uuid
from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime

from pension_sync.changes import ChangeEntry
from pension_sync.errors import ClientConstraintError
from pension_sync.lookup import LookupDomain
from pension_sync.transform import ClientRecord


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class StoredClient:
    """Client row as persisted in the operational store."""

    id: str
    record: ClientRecord
    created_at: datetime
    updated_at: datetime
    last_synced_at: datetime | None = None


@dataclass(frozen=True)
class UpsertOutcome:
    """Result of one client upsert keyed by ``client_code``."""

    id: str
    was_created: bool


class AbstractClientStore(ABC):
    """Repository-style access to clients, sync history and reference data."""

    @abstractmethod
    async def list_reference_codes(self, domain: LookupDomain) -> Mapping[str, str]:
        """Return ``code -> id`` for the active rows of one reference domain."""

    @abstractmethod
    async def get_client_by_code(self, client_code: str) -> StoredClient | None:
        """Return the stored client for ``client_code``, if any."""

    @abstractmethod
    async def upsert_client(self, record: ClientRecord) -> UpsertOutcome:
        """Insert or update one client keyed by ``record.client_code``.

        Raises:
            ClientConstraintError: When the record violates a store constraint.
        """

    @abstractmethod
    async def record_client_sync_changes(self, entries: Sequence[ChangeEntry]) -> None:
        """Append change entries to the client sync history."""

    @abstractmethod
    async def list_client_sync_history(self, client_id: str) -> list[ChangeEntry]:
        """Return the change history of one client, oldest first."""


class InMemoryClientStore(AbstractClientStore):
    """In-memory client store with a unique ``pension_number`` constraint."""

    def __init__(
        self,
        reference_data: Mapping[LookupDomain, Mapping[str, str]] | None = None,
    ) -> None:
        self._reference: dict[LookupDomain, dict[str, str]] = {
            domain: dict((reference_data or {}).get(domain, {}))
            for domain in LookupDomain
        }
        self._clients: dict[str, StoredClient] = {}
        self._history: list[ChangeEntry] = []
        self._lock = asyncio.Lock()

    def seed_reference(self, domain: LookupDomain, codes: Mapping[str, str]) -> None:
        self._reference[domain].update(codes)

    async def list_reference_codes(self, domain: LookupDomain) -> Mapping[str, str]:
        async with self._lock:
            return dict(self._reference[domain])

    async def get_client_by_code(self, client_code: str) -> StoredClient | None:
        async with self._lock:
            return self._clients.get(client_code)

    def _check_constraints(self, record: ClientRecord) -> None:
        if not record.client_code:
            raise ClientConstraintError(record.client_code, "client_code is required")
        if record.pension_number is None:
            return
        for code, stored in self._clients.items():
            if (
                code != record.client_code
                and stored.record.pension_number == record.pension_number
            ):
                raise ClientConstraintError(
                    record.client_code,
                    f"pension_number {record.pension_number} belongs to {code}",
                )

    async def upsert_client(self, record: ClientRecord) -> UpsertOutcome:
        async with self._lock:
            self._check_constraints(record)
            now = _utcnow()
            existing = self._clients.get(record.client_code)
            if existing is None:
                stored = StoredClient(
                    id=str(uuid.uuid4()),
                    record=record,
                    created_at=now,
                    updated_at=now,
                    last_synced_at=now,
                )
            else:
                stored = StoredClient(
                    id=existing.id,
                    record=record,
                    created_at=existing.created_at,
                    updated_at=now,
                    last_synced_at=now,
                )
            self._clients[record.client_code] = stored
            return UpsertOutcome(id=stored.id, was_created=existing is None)

    async def record_client_sync_changes(self, entries: Sequence[ChangeEntry]) -> None:
        async with self._lock:
            self._history.extend(entries)

    async def list_client_sync_history(self, client_id: str) -> list[ChangeEntry]:
        async with self._lock:
            return [entry for entry in self._history if entry.client_id == client_id]

    async def count_clients(self) -> int:
        async with self._lock:
            return len(self._clients)
