from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from typing import cast

import httpx
import structlog

from pension_sync.logging import log_info, log_warning
from pension_sync.settings import SyncSettings
from pension_sync.transform import WarehouseRecord
from pension_sync.warehouse.constants import (
    AUTH_STATUSES,
    MAX_POLL_INTERVAL_SECONDS,
    PING_STATEMENT,
    RETRY_STATUSES,
    STATEMENT_RUNNING_STATUS,
    STATEMENTS_PATH,
)
from pension_sync.warehouse.errors import (
    WarehouseAuthError,
    WarehouseNotConfigured,
    WarehouseRequestError,
    WarehouseTransientFailure,
)
from pension_sync.warehouse.sql import Statement, build_clients_statement

_logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class WarehouseCursor:
    """Position of the next result partition of an executed statement."""

    statement_handle: str
    partition: int
    partition_count: int
    columns: tuple[str, ...]


@dataclass(frozen=True)
class WarehousePage:
    """One page of warehouse rows and the cursor of the following page."""

    rows: tuple[WarehouseRecord, ...]
    next_cursor: WarehouseCursor | None = None


class WarehouseClient:
    """Read client master data through the Snowflake SQL REST API.

    The first page of a query comes back with the statement submission; later
    pages are the statement's remaining result partitions. A statement that
    outlives the synchronous window is answered with HTTP 202 and polled by its
    handle until it finishes or ``statement_timeout_seconds`` elapses. Request
    timeouts are enforced by the ``httpx`` transport.
    """

    def __init__(
        self,
        *,
        client: httpx.AsyncClient,
        base_url: str,
        token: str,
        token_type: str = "KEYPAIR_JWT",
        schema: str = "CLIENT_UPDATER",
        database: str | None = None,
        warehouse: str | None = None,
        role: str | None = None,
        statement_timeout_seconds: int = 120,
        poll_interval_seconds: float = 1.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Create a warehouse client.

        Args:
            client: Shared async HTTP client carrying the transport timeout.
            base_url: Account URL, e.g. ``https://<account>.snowflakecomputing.com``.
            token: Bearer token sent on every request.
            token_type: Value of ``X-Snowflake-Authorization-Token-Type``.
            schema: Schema holding the clients view.
            database: Optional database for statement context.
            warehouse: Optional compute warehouse for statement context.
            role: Optional role for statement context.
            statement_timeout_seconds: Server-side statement timeout, also the
                deadline for polling a still-running statement.
            poll_interval_seconds: First delay between status polls; doubles up
                to a ceiling.
            sleep: Awaitable sleep used between polls.
            clock: Monotonic clock used for the polling deadline.
        """
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._token_type = token_type
        self._schema = schema
        self._database = database
        self._warehouse = warehouse
        self._role = role
        self._statement_timeout_seconds = statement_timeout_seconds
        self._poll_interval_seconds = poll_interval_seconds
        self._sleep = sleep
        self._clock = clock

    @classmethod
    def from_settings(
        cls, settings: SyncSettings, *, client: httpx.AsyncClient
    ) -> WarehouseClient:
        """Build a client from process settings.

        Raises:
            WarehouseNotConfigured: When no warehouse account is configured.
        """
        if not settings.is_warehouse_configured() or not settings.warehouse_token:
            raise WarehouseNotConfigured("Warehouse account is not configured.")
        return cls(
            client=client,
            base_url=settings.warehouse_url(),
            token=settings.warehouse_token,
            token_type=settings.warehouse_token_type,
            schema=settings.warehouse_schema,
            database=settings.warehouse_database,
            warehouse=settings.warehouse_name,
            role=settings.warehouse_role,
            statement_timeout_seconds=settings.warehouse_statement_timeout_seconds,
            poll_interval_seconds=settings.warehouse_poll_interval_seconds,
        )

    async def fetch_page(
        self,
        branch_codes: Sequence[str] = (),
        cursor: WarehouseCursor | None = None,
    ) -> WarehousePage:
        """Fetch one page of client rows.

        Args:
            branch_codes: Branch codes to keep; empty means every branch.
            cursor: Cursor returned with the previous page, or ``None`` to
                start a new query.

        Returns:
            The page rows and the cursor of the next page, if any.
        """
        if cursor is None:
            statement = build_clients_statement(self._schema, branch_codes)
            payload = await self._submit(statement)
            columns = self._columns(payload)
            handle = payload.get("statementHandle")
            partition_count = self._partition_count(payload)
            rows = self._rows(payload, columns)
            next_cursor = None
            if partition_count > 1 and isinstance(handle, str):
                next_cursor = WarehouseCursor(
                    statement_handle=handle,
                    partition=1,
                    partition_count=partition_count,
                    columns=columns,
                )
            log_info(
                _logger,
                "warehouse_page_fetched",
                partition=0,
                partition_count=partition_count,
                rows=len(rows),
                branch_codes=list(branch_codes),
            )
            return WarehousePage(rows=rows, next_cursor=next_cursor)

        payload = await self._get_partition(cursor.statement_handle, cursor.partition)
        rows = self._rows(payload, cursor.columns)
        next_partition = cursor.partition + 1
        next_cursor = None
        if next_partition < cursor.partition_count:
            next_cursor = WarehouseCursor(
                statement_handle=cursor.statement_handle,
                partition=next_partition,
                partition_count=cursor.partition_count,
                columns=cursor.columns,
            )
        log_info(
            _logger,
            "warehouse_page_fetched",
            partition=cursor.partition,
            partition_count=cursor.partition_count,
            rows=len(rows),
        )
        return WarehousePage(rows=rows, next_cursor=next_cursor)

    async def fetch_preview(
        self, branch_codes: Sequence[str] = (), limit: int = 100
    ) -> list[WarehouseRecord]:
        """Fetch at most ``limit`` client rows without any side effects."""
        statement = build_clients_statement(self._schema, branch_codes, limit=limit)
        payload = await self._submit(statement)
        columns = self._columns(payload)
        rows = list(self._rows(payload, columns))
        handle = payload.get("statementHandle")
        partition_count = self._partition_count(payload)
        partition = 1
        while len(rows) < limit and partition < partition_count:
            if not isinstance(handle, str):
                break
            rows.extend(self._rows(await self._get_partition(handle, partition), columns))
            partition += 1
        return rows[:limit]

    async def ping(self) -> WarehouseRecord:
        """Run a trivial statement to prove connectivity and credentials."""
        payload = await self._submit(Statement(sql=PING_STATEMENT))
        rows = self._rows(payload, self._columns(payload))
        return rows[0] if rows else {}

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self._token}",
            "X-Snowflake-Authorization-Token-Type": self._token_type,
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    def _statement_body(self, statement: Statement) -> dict[str, object]:
        body: dict[str, object] = {
            "statement": statement.sql,
            "timeout": self._statement_timeout_seconds,
            "schema": self._schema,
        }
        if statement.bindings:
            body["bindings"] = statement.bindings
        for key, value in (
            ("database", self._database),
            ("warehouse", self._warehouse),
            ("role", self._role),
        ):
            if value:
                body[key] = value
        return body

    async def _submit(self, statement: Statement) -> dict[str, object]:
        url = f"{self._base_url}{STATEMENTS_PATH}"
        try:
            response = await self._client.post(
                url,
                json=self._statement_body(statement),
                headers=self._headers(),
            )
        except httpx.RequestError as exc:
            raise WarehouseTransientFailure(str(exc)) from exc
        if response.status_code == STATEMENT_RUNNING_STATUS:
            response = await self._await_statement(self._running_handle(response))
        return self._parse_response(response)

    @staticmethod
    def _running_handle(response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            payload = None
        handle = payload.get("statementHandle") if isinstance(payload, dict) else None
        if not isinstance(handle, str) or not handle:
            raise WarehouseTransientFailure(
                "Warehouse statement is still running and returned no handle.",
                http_status=response.status_code,
                response_body=response.text,
            )
        return handle

    async def _await_statement(self, handle: str) -> httpx.Response:
        """Poll a running statement until it stops answering HTTP 202.

        Raises:
            WarehouseTransientFailure: When the statement is still running once
                ``statement_timeout_seconds`` have elapsed.
        """
        url = f"{self._base_url}{STATEMENTS_PATH}/{handle}"
        deadline = self._clock() + self._statement_timeout_seconds
        interval = self._poll_interval_seconds
        polls = 0
        while True:
            remaining = deadline - self._clock()
            if remaining <= 0:
                log_warning(
                    _logger,
                    "warehouse_statement_poll_timeout",
                    statement_handle=handle,
                    polls=polls,
                    timeout_seconds=self._statement_timeout_seconds,
                )
                raise WarehouseTransientFailure(
                    f"Warehouse statement {handle} did not finish within "
                    f"{self._statement_timeout_seconds}s.",
                    http_status=STATEMENT_RUNNING_STATUS,
                )
            await self._sleep(min(interval, remaining))
            try:
                response = await self._client.get(url, headers=self._headers())
            except httpx.RequestError as exc:
                raise WarehouseTransientFailure(str(exc)) from exc
            polls += 1
            if response.status_code != STATEMENT_RUNNING_STATUS:
                log_info(
                    _logger,
                    "warehouse_statement_finished",
                    statement_handle=handle,
                    polls=polls,
                )
                return response
            interval = min(interval * 2, MAX_POLL_INTERVAL_SECONDS)

    async def _get_partition(self, handle: str, partition: int) -> dict[str, object]:
        url = f"{self._base_url}{STATEMENTS_PATH}/{handle}"
        try:
            response = await self._client.get(
                url,
                params={"partition": partition},
                headers=self._headers(),
            )
        except httpx.RequestError as exc:
            raise WarehouseTransientFailure(str(exc)) from exc
        return self._parse_response(response)

    @classmethod
    def _parse_response(cls, response: httpx.Response) -> dict[str, object]:
        status = response.status_code
        if status == STATEMENT_RUNNING_STATUS:
            raise WarehouseTransientFailure(
                "Warehouse statement is still running.",
                http_status=status,
                response_body=response.text,
            )
        if status in RETRY_STATUSES:
            raise WarehouseTransientFailure(
                f"Warehouse transient failure (HTTP {status}).",
                http_status=status,
                response_body=response.text,
            )
        if status in AUTH_STATUSES:
            raise WarehouseAuthError(
                f"Warehouse rejected credentials (HTTP {status}).",
                http_status=status,
                response_body=response.text,
            )
        if status >= 400:
            raise WarehouseRequestError(
                f"Warehouse returned HTTP {status}: {cls._summarize(response)}",
                http_status=status,
                response_body=response.text,
            )

        try:
            payload = response.json()
        except ValueError as exc:
            raise WarehouseRequestError(
                "Warehouse response is not valid JSON.",
                http_status=status,
                response_body=response.text,
            ) from exc
        if not isinstance(payload, dict):
            raise WarehouseRequestError(
                "Warehouse response is not a JSON object.",
                http_status=status,
                response_body=response.text,
            )
        return cast(dict[str, object], payload)

    @staticmethod
    def _summarize(response: httpx.Response) -> str:
        try:
            payload = response.json()
        except ValueError:
            return response.text[:200]
        if isinstance(payload, dict) and isinstance(payload.get("message"), str):
            return str(payload["message"])
        return response.text[:200]

    @staticmethod
    def _columns(payload: dict[str, object]) -> tuple[str, ...]:
        metadata = payload.get("resultSetMetaData")
        if not isinstance(metadata, dict):
            raise WarehouseRequestError("Warehouse response has no resultSetMetaData.")
        row_type = metadata.get("rowType")
        if not isinstance(row_type, list):
            raise WarehouseRequestError("Warehouse response has no rowType.")
        return tuple(
            str(column.get("name")) for column in row_type if isinstance(column, dict)
        )

    @staticmethod
    def _partition_count(payload: dict[str, object]) -> int:
        metadata = payload.get("resultSetMetaData")
        if not isinstance(metadata, dict):
            return 1
        partitions = metadata.get("partitionInfo")
        if isinstance(partitions, list) and partitions:
            return len(partitions)
        return 1

    @staticmethod
    def _rows(
        payload: dict[str, object], columns: tuple[str, ...]
    ) -> tuple[WarehouseRecord, ...]:
        data = payload.get("data")
        if data is None:
            return ()
        if not isinstance(data, list):
            raise WarehouseRequestError("Warehouse response data is not a list.")
        rows: list[WarehouseRecord] = []
        for item in data:
            if not isinstance(item, list):
                raise WarehouseRequestError("Warehouse row is not a list.")
            rows.append(dict(zip(columns, item, strict=False)))
        return tuple(rows)
