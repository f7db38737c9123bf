"""Core circuit breaker implementation."""

import asyncio
import sys
import threading
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import ParamSpec, TypeVar

from pension_sync.circuit_breaker.exceptions import CircuitOpenError
from pension_sync.circuit_breaker.metrics import BreakerListener
from pension_sync.circuit_breaker.state import BreakerSnapshot, CircuitState
from pension_sync.circuit_breaker.storage import (
    AbstractBreakerStorage,
    InMemoryBreakerStorage,
)

T = TypeVar("T")
P = ParamSpec("P")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class _ProbeGate:
    """Allow at most one in-flight half-open probe per breaker instance."""

    def __init__(self) -> None:
        is_gil_enabled = getattr(sys, "_is_gil_enabled", None)
        self._gil_enabled = True if is_gil_enabled is None else bool(is_gil_enabled())
        self._thread_lock: threading.Lock | None = None
        if not self._gil_enabled:
            self._thread_lock = threading.Lock()
        self._held = False

    def try_acquire(self) -> bool:
        if self._thread_lock is None:
            if self._held:
                return False
            self._held = True
            return True

        with self._thread_lock:
            if self._held:
                return False
            self._held = True
            return True

    def release(self) -> None:
        if self._thread_lock is None:
            self._held = False
            return
        with self._thread_lock:
            self._held = False


@dataclass(frozen=True, slots=True)
class CircuitBreakerConfig:
    """Circuit breaker configuration values.

    Attributes:
        failure_threshold: Consecutive failures required while ``CLOSED`` before
            opening.
        cooldown_ms: Milliseconds to stay ``OPEN`` before allowing a probe.
        success_threshold: Probe successes required while ``HALF_OPEN`` before
            closing.
        expected_exceptions: Exceptions that count as failures.
        excluded_exceptions: Exceptions that propagate without being counted.
    """

    failure_threshold: int = 5
    cooldown_ms: int = 60_000
    success_threshold: int = 3
    expected_exceptions: tuple[type[Exception], ...] = (Exception,)
    excluded_exceptions: tuple[type[Exception], ...] = ()

    def __post_init__(self) -> None:
        if self.failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if self.cooldown_ms < 0:
            raise ValueError("cooldown_ms must be >= 0")
        if self.success_threshold < 1:
            raise ValueError("success_threshold must be >= 1")

    @property
    def cooldown_seconds(self) -> float:
        return self.cooldown_ms / 1000.0


class CircuitBreaker:
    """Stateful proxy around one unreliable async upstream.

    The breaker only decides whether a call is attempted or short-circuited.
    It never retries; retry policy belongs to the caller.
    """

    def __init__(
        self,
        name: str,
        *,
        config: CircuitBreakerConfig | None = None,
        storage: AbstractBreakerStorage | None = None,
        listeners: Sequence[BreakerListener] | None = None,
    ) -> None:
        """Build a circuit breaker with optional custom dependencies.

        Args:
            name: Unique breaker name used for storage and logging.
            config: Breaker behavior configuration. Defaults to
                ``CircuitBreakerConfig()``.
            storage: State storage backend. Defaults to in-memory storage.
            listeners: Optional listener hooks for breaker events.
        """
        self.name = name
        self.config = CircuitBreakerConfig() if config is None else config
        self._storage = InMemoryBreakerStorage() if storage is None else storage
        self._listeners = tuple(listeners) if listeners is not None else ()
        self._probe_gate = _ProbeGate()
        self._decision_lock = asyncio.Lock()

    async def _emit(self, hook: str, *args: object) -> None:
        for listener in self._listeners:
            try:
                await getattr(listener, hook)(self.name, *args)
            except Exception:
                continue

    async def _emit_transitions(
        self, transitions: Sequence[tuple[CircuitState, CircuitState]]
    ) -> None:
        for old, new in transitions:
            await self._emit("on_state_change", old, new)

    def _retry_after(self, snapshot: BreakerSnapshot, now: datetime) -> float:
        elapsed = (now - snapshot.last_check_at).total_seconds()
        return max(self.config.cooldown_seconds - elapsed, 0.0)

    def _cooldown_elapsed(self, snapshot: BreakerSnapshot, now: datetime) -> bool:
        elapsed = (now - snapshot.last_check_at).total_seconds()
        return elapsed > self.config.cooldown_seconds

    async def _admit(self) -> tuple[bool, list[tuple[CircuitState, CircuitState]]]:
        """Decide whether the next call may run.

        Returns:
            Whether the call is a half-open probe, and the transitions applied.

        Raises:
            CircuitOpenError: When the call must be short-circuited.
        """
        transitions: list[tuple[CircuitState, CircuitState]] = []
        async with self._decision_lock:
            snapshot = await self._storage.get_state(self.name)
            now = _utcnow()

            if snapshot.state == CircuitState.OPEN:
                if not self._cooldown_elapsed(snapshot, now):
                    raise CircuitOpenError(
                        self.name, retry_after=self._retry_after(snapshot, now)
                    )
                snapshot = await self._storage.half_open(self.name)
                transitions.append((CircuitState.OPEN, CircuitState.HALF_OPEN))

            if snapshot.state == CircuitState.HALF_OPEN:
                if not self._probe_gate.try_acquire():
                    raise CircuitOpenError(self.name, retry_after=0.0)
                return True, transitions

        return False, transitions

    async def _on_failure(self) -> list[tuple[CircuitState, CircuitState]]:
        async with self._decision_lock:
            snapshot = await self._storage.record_failure(self.name)
            if snapshot.state == CircuitState.HALF_OPEN:
                await self._storage.force_open(self.name)
                return [(CircuitState.HALF_OPEN, CircuitState.OPEN)]
            if (
                snapshot.state == CircuitState.CLOSED
                and snapshot.failure_count >= self.config.failure_threshold
            ):
                await self._storage.force_open(self.name)
                return [(CircuitState.CLOSED, CircuitState.OPEN)]
        return []

    async def _on_success(self) -> list[tuple[CircuitState, CircuitState]]:
        async with self._decision_lock:
            snapshot = await self._storage.record_success(self.name)
            if (
                snapshot.state == CircuitState.HALF_OPEN
                and snapshot.success_count >= self.config.success_threshold
            ):
                await self._storage.reset(self.name)
                return [(CircuitState.HALF_OPEN, CircuitState.CLOSED)]
        return []

    async def call(
        self,
        func: Callable[P, Awaitable[T]],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        """Invoke an async callable under circuit breaker protection.

        Args:
            func: Upstream async callable to execute.
            *args: Positional arguments forwarded to ``func``.
            **kwargs: Keyword arguments forwarded to ``func``.

        Returns:
            The result of ``func`` when allowed and successful.

        Raises:
            CircuitOpenError: When the circuit is open and the call is rejected
                without invoking ``func``.
            Exception: The original exception from ``func`` when it is attempted
                and fails.
        """
        try:
            is_probe, transitions = await self._admit()
        except CircuitOpenError:
            await self._emit("on_call_rejected")
            raise
        await self._emit_transitions(transitions)

        start = time.monotonic()
        try:
            result = await func(*args, **kwargs)
        except self.config.excluded_exceptions:
            raise
        except self.config.expected_exceptions as exc:
            elapsed = max(time.monotonic() - start, 0.0)
            await self._emit("on_call_failed", exc, elapsed)
            await self._emit_transitions(await self._on_failure())
            raise
        else:
            elapsed = max(time.monotonic() - start, 0.0)
            await self._emit_transitions(await self._on_success())
            await self._emit("on_call_succeeded", elapsed)
            return result
        finally:
            if is_probe:
                self._probe_gate.release()

    execute = call

    async def snapshot(self) -> BreakerSnapshot:
        """Return the current state snapshot of this circuit."""
        return await self._storage.get_state(self.name)

    async def get_state(self) -> CircuitState:
        """Return the current circuit state."""
        return (await self.snapshot()).state

    async def get_failures(self) -> int:
        """Return the consecutive failure count."""
        return (await self.snapshot()).failure_count
