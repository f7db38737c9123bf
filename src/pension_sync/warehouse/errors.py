"""Warehouse client error types."""

from __future__ import annotations

from pension_sync.errors import TransientError


class WarehouseRequestError(RuntimeError):
    """Base exception for warehouse request failures."""

    def __init__(
        self,
        message: str,
        http_status: int | None = None,
        response_body: str | None = None,
    ) -> None:
        """Initialize request-error metadata.

        Args:
            message: Human-readable error message.
            http_status: Optional HTTP status observed from the warehouse.
            response_body: Optional response payload text.
        """
        super().__init__(message)
        self.http_status = http_status
        self.response_body = response_body


class WarehouseTransientFailure(WarehouseRequestError, TransientError):
    """Raised for retry-safe warehouse failures (transport, throttling, 5xx)."""


class WarehouseAuthError(WarehouseRequestError):
    """Raised when the warehouse rejects the configured credentials."""


class WarehouseNotConfigured(WarehouseRequestError):
    """Raised when no warehouse account has been configured."""
