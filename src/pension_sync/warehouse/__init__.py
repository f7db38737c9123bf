"""Warehouse read interface and its SQL API implementation."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Protocol

from pension_sync.transform import WarehouseRecord
from pension_sync.warehouse.client import WarehouseClient, WarehouseCursor, WarehousePage
from pension_sync.warehouse.errors import (
    WarehouseAuthError,
    WarehouseNotConfigured,
    WarehouseRequestError,
    WarehouseTransientFailure,
)


class WarehouseReader(Protocol):
    """Paged and bounded reads of warehouse client rows."""

    async def fetch_page(
        self,
        branch_codes: Sequence[str] = (),
        cursor: WarehouseCursor | None = None,
    ) -> WarehousePage:
        """Fetch the page at ``cursor`` (``None`` starts a new query)."""

    async def fetch_preview(
        self, branch_codes: Sequence[str] = (), limit: int = 100
    ) -> list[WarehouseRecord]:
        """Fetch at most ``limit`` rows."""

    async def ping(self) -> WarehouseRecord:
        """Prove connectivity with a trivial statement."""


__all__ = [
    "WarehouseAuthError",
    "WarehouseClient",
    "WarehouseCursor",
    "WarehouseNotConfigured",
    "WarehousePage",
    "WarehouseReader",
    "WarehouseRequestError",
    "WarehouseTransientFailure",
]
