from __future__ import annotations

from collections.abc import Iterator

import pytest

from pension_sync.circuit_breaker import reset_registry
from tests.pension_sync.support.fakes import (
    FakeLogger,
    RecordingClientStore,
)


@pytest.fixture
def fake_logger() -> FakeLogger:
    """Provide a fresh structured logger test double per test."""
    return FakeLogger()


@pytest.fixture
def client_store() -> RecordingClientStore:
    """Provide a client store seeded with resolvable reference codes."""
    return RecordingClientStore()


@pytest.fixture(autouse=True)
def _isolated_registry() -> Iterator[None]:
    reset_registry()
    yield
    reset_registry()
