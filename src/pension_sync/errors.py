"""Shared error types for pension_sync.

Run-level errors (``CacheBuildError``, circuit-open, cancellation) abort a sync
run; row-level errors (``UpsertError``) are counted and never escape the run
loop; ``JobFinalizationError`` is critical because it breaks the audit trail.
"""


class TransientError(RuntimeError):
    """Generic retry-safe transient dependency failure."""


class SyncError(RuntimeError):
    """Base exception for sync pipeline failures."""


class SyncPermissionDenied(SyncError):
    """Raised when the caller's pre-resolved permission decision is negative."""


class CacheBuildError(SyncError):
    """Raised when a reference domain cannot be read for the lookup cache.

    Attributes:
        domain: Reference domain whose read failed.
    """

    def __init__(self, domain: str, message: str) -> None:
        self.domain = domain
        super().__init__(f"Failed to build lookup cache ({domain}): {message}")


class UpsertError(SyncError):
    """Raised when one client record cannot be written to the operational store."""

    def __init__(self, client_code: str, message: str) -> None:
        self.client_code = client_code
        super().__init__(f"Failed to upsert client {client_code}: {message}")


class ClientConstraintError(UpsertError):
    """Raised when a client record violates an operational-store constraint."""


class SyncCancelledError(SyncError):
    """Raised when an operator cancels a running sync between records."""


class JobStateError(SyncError):
    """Raised when a sync job lifecycle transition is not allowed."""


class JobFinalizationError(SyncError):
    """Raised when a sync job's terminal state cannot be written.

    Attributes:
        job_id: Sync job left without a terminal state.
    """

    def __init__(self, job_id: str, message: str) -> None:
        self.job_id = job_id
        super().__init__(f"Failed to finalize sync job {job_id}: {message}")


class WarehouseFetchError(SyncError):
    """Raised when a warehouse page cannot be fetched and the run must stop."""
