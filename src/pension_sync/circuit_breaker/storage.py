"""State storage for circuit breakers.

Storage only applies state primitives; the breaker decides when to call them.
Custom backends (for example a shared cache) can implement the interface to
share failure accounting across processes.
"""

import asyncio
import sys
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import UTC, datetime

from pension_sync.circuit_breaker.state import BreakerSnapshot, CircuitState


def _utcnow() -> datetime:
    return datetime.now(UTC)


class AbstractBreakerStorage(ABC):
    """Abstract breaker storage interface."""

    @abstractmethod
    async def get_state(self, name: str) -> BreakerSnapshot:
        """Return the current breaker snapshot for ``name``."""

    @abstractmethod
    async def record_success(self, name: str) -> BreakerSnapshot:
        """Record a successful call and return the updated snapshot."""

    @abstractmethod
    async def record_failure(self, name: str) -> BreakerSnapshot:
        """Record a failed call and return the updated snapshot."""

    @abstractmethod
    async def half_open(self, name: str) -> BreakerSnapshot:
        """Move breaker ``name`` into ``HALF_OPEN`` with a zeroed success count."""

    @abstractmethod
    async def force_open(self, name: str) -> BreakerSnapshot:
        """Force breaker ``name`` into ``OPEN`` state."""

    @abstractmethod
    async def reset(self, name: str) -> BreakerSnapshot:
        """Reset breaker ``name`` to a healthy ``CLOSED`` state."""


class InMemoryBreakerStorage(AbstractBreakerStorage):
    """In-memory storage with per-breaker cooperative + optional thread locks."""

    def __init__(self) -> None:
        """Initialize in-memory snapshot and lock registries."""
        self._snapshots: dict[str, BreakerSnapshot] = {}
        self._async_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._thread_locks: dict[str, threading.Lock] = defaultdict(threading.Lock)
        is_gil_enabled = getattr(sys, "_is_gil_enabled", None)
        self._gil_enabled = True if is_gil_enabled is None else bool(is_gil_enabled())

    def _default_snapshot(self, name: str) -> BreakerSnapshot:
        return BreakerSnapshot(
            name=name,
            state=CircuitState.CLOSED,
            failure_count=0,
            success_count=0,
            last_failure_at=None,
            last_check_at=_utcnow(),
        )

    def _current(self, name: str) -> BreakerSnapshot:
        snapshot = self._snapshots.get(name)
        if snapshot is None:
            snapshot = self._default_snapshot(name)
            self._snapshots[name] = snapshot
        return snapshot

    @asynccontextmanager
    async def _locked(self, name: str) -> AsyncIterator[None]:
        async_lock = self._async_locks[name]
        if self._gil_enabled:
            await async_lock.acquire()
            try:
                yield
            finally:
                async_lock.release()
            return

        thread_lock = self._thread_locks[name]
        thread_lock.acquire()
        try:
            await async_lock.acquire()
        except Exception:
            thread_lock.release()
            raise
        try:
            yield
        finally:
            async_lock.release()
            thread_lock.release()

    async def get_state(self, name: str) -> BreakerSnapshot:
        """Return the current snapshot, creating a default one if missing."""
        async with self._locked(name):
            return self._current(name)

    async def record_success(self, name: str) -> BreakerSnapshot:
        """Record a successful call.

        While ``HALF_OPEN`` the success count grows; otherwise the consecutive
        failure count is cleared. Healthy snapshots are returned unchanged.
        """
        async with self._locked(name):
            snapshot = self._current(name)
            if snapshot.state == CircuitState.HALF_OPEN:
                updated = replace(snapshot, success_count=snapshot.success_count + 1)
            elif snapshot.failure_count == 0:
                return snapshot
            else:
                updated = replace(snapshot, failure_count=0)
            self._snapshots[name] = updated
            return updated

    async def record_failure(self, name: str) -> BreakerSnapshot:
        """Increment the failure count and restart the cooldown window."""
        async with self._locked(name):
            snapshot = self._current(name)
            now = _utcnow()
            updated = replace(
                snapshot,
                failure_count=snapshot.failure_count + 1,
                last_failure_at=now,
                last_check_at=now,
            )
            self._snapshots[name] = updated
            return updated

    async def half_open(self, name: str) -> BreakerSnapshot:
        """Enter ``HALF_OPEN`` and start counting probe successes from zero."""
        async with self._locked(name):
            updated = replace(
                self._current(name),
                state=CircuitState.HALF_OPEN,
                success_count=0,
            )
            self._snapshots[name] = updated
            return updated

    async def force_open(self, name: str) -> BreakerSnapshot:
        """Force the circuit open and restart the cooldown window."""
        async with self._locked(name):
            snapshot = self._current(name)
            updated = replace(
                snapshot,
                state=CircuitState.OPEN,
                success_count=0,
                last_check_at=_utcnow(),
            )
            self._snapshots[name] = updated
            return updated

    async def reset(self, name: str) -> BreakerSnapshot:
        """Close the circuit and clear both counters."""
        async with self._locked(name):
            snapshot = self._current(name)
            updated = replace(
                snapshot,
                state=CircuitState.CLOSED,
                failure_count=0,
                success_count=0,
            )
            self._snapshots[name] = updated
            return updated
