from __future__ import annotations

import pytest

import pension_sync.store as store_mod
from pension_sync.errors import ClientConstraintError, UpsertError
from pension_sync.lookup import LookupDomain
from pension_sync.store import InMemoryClientStore
from pension_sync.transform import ClientRecord
from tests.pension_sync.support.fakes import FakeClock

pytestmark = pytest.mark.asyncio


async def test_upsert_creates_then_updates_by_client_code(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    clock = FakeClock()
    monkeypatch.setattr(store_mod, "_utcnow", clock.now)
    store = InMemoryClientStore()

    created = await store.upsert_client(ClientRecord(client_code="C001", full_name="A"))
    clock.advance(60)
    updated = await store.upsert_client(ClientRecord(client_code="C001", full_name="B"))

    assert created.was_created is True
    assert updated.was_created is False
    assert updated.id == created.id
    stored = await store.get_client_by_code("C001")
    assert stored is not None
    assert stored.record.full_name == "B"
    assert stored.updated_at > stored.created_at
    assert stored.last_synced_at == stored.updated_at
    assert await store.count_clients() == 1


async def test_duplicate_pension_number_is_a_constraint_error() -> None:
    store = InMemoryClientStore()
    await store.upsert_client(ClientRecord(client_code="C001", pension_number="PN-1"))

    with pytest.raises(ClientConstraintError) as excinfo:
        await store.upsert_client(
            ClientRecord(client_code="C002", pension_number="PN-1")
        )

    assert isinstance(excinfo.value, UpsertError)
    assert excinfo.value.client_code == "C002"
    assert await store.get_client_by_code("C002") is None


async def test_empty_client_code_is_rejected() -> None:
    store = InMemoryClientStore()

    with pytest.raises(ClientConstraintError, match="client_code is required"):
        await store.upsert_client(ClientRecord(client_code=""))


async def test_reference_codes_are_returned_per_domain() -> None:
    store = InMemoryClientStore({LookupDomain.BRANCHES: {"B001": "br-001"}})
    store.seed_reference(LookupDomain.BRANCHES, {"B002": "br-002"})

    branches = await store.list_reference_codes(LookupDomain.BRANCHES)
    products = await store.list_reference_codes(LookupDomain.PRODUCTS)

    assert branches == {"B001": "br-001", "B002": "br-002"}
    assert products == {}
