"""Core circuit guard implementation."""

from __future__ import annotations

import asyncio
import math
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import TypeVar

from circuit_guard.cancellation import CancellationToken
from circuit_guard.events import (
    GuardListener,
    NotificationDispatcher,
    StateChangedEvent,
)
from circuit_guard.exceptions import (
    CircuitGuardOpenError,
    CircuitGuardStateError,
    OperationCancelledError,
)
from circuit_guard.logging import (
    LoggerLike,
    bind_guard_context,
    log_exception,
    log_info,
)
from circuit_guard.state import CircuitState, GuardSnapshot

T = TypeVar("T")


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class GuardConfig:
    """Circuit guard configuration values.

    Attributes:
        threshold: Consecutive failures while ``CLOSED`` that open the circuit.
        timeout: Time the circuit stays ``OPEN`` before a probe is allowed.
            Plain numbers are read as seconds.
    """

    threshold: int
    timeout: timedelta

    def __post_init__(self) -> None:
        if isinstance(self.threshold, bool) or not isinstance(self.threshold, int):
            raise ValueError("threshold must be an integer")
        if self.threshold < 1:
            raise ValueError("threshold must be >= 1")
        timeout = self.timeout
        if isinstance(timeout, (int, float)) and not isinstance(timeout, bool):
            if not math.isfinite(timeout):
                raise ValueError("timeout must be finite")
            timeout = timedelta(seconds=timeout)
            object.__setattr__(self, "timeout", timeout)
        if not isinstance(timeout, timedelta):
            raise ValueError("timeout must be a timedelta or a number of seconds")
        if timeout <= timedelta(0):
            raise ValueError("timeout must be > 0")


class CircuitGuard:
    """Serializing circuit breaker around an unreliable async dependency.

    Every call holds the guard's lock from the state check until the state
    transition that follows the operation, so at most one operation runs
    through a guard at a time. That trades throughput for a linearizable state
    machine in which exactly one half-open probe can ever be in flight.
    """

    def __init__(
        self,
        threshold: int,
        timeout: timedelta | float,
        *,
        name: str = "circuit_guard",
        logger: LoggerLike | None = None,
        listeners: Sequence[GuardListener] | None = None,
    ) -> None:
        """Build a circuit guard.

        Args:
            threshold: Consecutive failures that trip the circuit open.
            timeout: Cooldown before a probe is allowed, as a ``timedelta``
                or seconds.
            name: Guard name used in logs, listener hooks and errors.
            logger: Optional structlog or stdlib logger. ``None`` is silent.
            listeners: Optional call-outcome listeners.
        """
        self.name = name
        self._config = GuardConfig(threshold=threshold, timeout=timeout)  # type: ignore[arg-type]
        self._logger = logger
        self._listeners = tuple(listeners) if listeners is not None else ()
        self._dispatcher = NotificationDispatcher(logger=logger)
        self.state_changed = StateChangedEvent(self._dispatcher)
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_at: datetime | None = None
        self._lock = asyncio.Lock()

    @classmethod
    def from_config(
        cls,
        config: GuardConfig,
        *,
        name: str = "circuit_guard",
        logger: LoggerLike | None = None,
        listeners: Sequence[GuardListener] | None = None,
    ) -> CircuitGuard:
        """Build a guard from an existing ``GuardConfig``."""
        return cls(
            config.threshold,
            config.timeout,
            name=name,
            logger=logger,
            listeners=listeners,
        )

    @property
    def state(self) -> CircuitState:
        """Current state. Read without the lock, so it may trail an in-flight call."""
        return self._state

    @property
    def failure_count(self) -> int:
        return self._failure_count

    @property
    def last_failure_at(self) -> datetime | None:
        return self._last_failure_at

    @property
    def threshold(self) -> int:
        return self._config.threshold

    @property
    def timeout(self) -> timedelta:
        return self._config.timeout

    @property
    def config(self) -> GuardConfig:
        return self._config

    def snapshot(self) -> GuardSnapshot:
        """Return a point-in-time view of the guard."""
        return GuardSnapshot(
            name=self.name,
            state=self._state,
            failure_count=self._failure_count,
            threshold=self._config.threshold,
            last_failure_at=self._last_failure_at,
            retry_after=(
                self._retry_after(_utcnow())
                if self._state == CircuitState.OPEN
                else 0.0
            ),
        )

    async def drain_notifications(self) -> None:
        """Wait for scheduled state-change handlers and listener hooks."""
        await self._dispatcher.drain()

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        cancellation: CancellationToken = CancellationToken.NONE,
    ) -> T | None:
        """Run ``operation`` under circuit guard protection.

        Args:
            operation: Zero-argument callable returning an awaitable. Void
                operations simply produce ``None``.
            cancellation: Token observed before the operation starts and
                while waiting for the guard's lock.

        Returns:
            The operation's result, or ``None`` when the operation was
            abandoned through ``cancellation`` itself.

        Raises:
            CircuitGuardOpenError: The circuit is open and the cooldown has
                not elapsed. ``operation`` is not invoked.
            OperationCancelledError: ``cancellation`` fired before the lock
                was acquired, or the operation raised one for another token.
            Exception: The operation's own error, after it has been recorded.
        """
        await self._acquire(cancellation)
        try:
            with bind_guard_context(guard=self.name):
                return await self._execute_locked(operation, cancellation)
        finally:
            self._lock.release()

    async def _acquire(self, cancellation: CancellationToken) -> None:
        cancellation.raise_if_cancellation_requested()
        if not cancellation.can_be_cancelled:
            await self._lock.acquire()
            return

        # An unlocked lock may still have a woken waiter queued ahead of us,
        # so a cancellable caller always races the token.
        acquire = asyncio.ensure_future(self._lock.acquire())
        cancelled = asyncio.ensure_future(cancellation.wait())
        try:
            await asyncio.wait(
                (acquire, cancelled), return_when=asyncio.FIRST_COMPLETED
            )
        except BaseException:
            self._abandon_acquire(acquire)
            raise
        finally:
            cancelled.cancel()

        if acquire.done():
            return
        self._abandon_acquire(acquire)
        raise OperationCancelledError(cancellation)

    def _abandon_acquire(self, acquire: asyncio.Future[bool]) -> None:
        if acquire.done() and not acquire.cancelled():
            self._lock.release()
            return
        acquire.cancel()

    async def _execute_locked(
        self,
        operation: Callable[[], Awaitable[T]],
        cancellation: CancellationToken,
    ) -> T | None:
        state = self._state
        if state == CircuitState.CLOSED:
            return await self._run(operation, cancellation, probe=False)
        if state == CircuitState.OPEN:
            retry_after = self._retry_after(_utcnow())
            if retry_after > 0:
                self._reject(retry_after)
            self._set_state(CircuitState.HALF_OPEN, announce=False)
            return await self._run(operation, cancellation, probe=True)
        if state == CircuitState.HALF_OPEN:
            return await self._run(operation, cancellation, probe=True)
        raise CircuitGuardStateError(f"invalid circuit state: {state!r}")

    async def _run(
        self,
        operation: Callable[[], Awaitable[T]],
        cancellation: CancellationToken,
        *,
        probe: bool,
    ) -> T | None:
        start = time.monotonic()
        try:
            cancellation.raise_if_cancellation_requested()
            result = await operation()
        except OperationCancelledError as exc:
            if not cancellation.can_be_cancelled or exc.token is not cancellation:
                raise
            log_info(
                self._logger,
                "circuit_guard.call_cancelled",
                guard=self.name,
                state=str(self._state),
            )
            self._notify_listeners("on_call_cancelled", self.name)
            return None
        except Exception as exc:
            elapsed = max(time.monotonic() - start, 0.0)
            log_exception(
                self._logger,
                "circuit_guard.call_failed",
                guard=self.name,
                state=str(self._state),
                error_type=exc.__class__.__name__,
            )
            self._notify_listeners("on_call_failed", self.name, exc, elapsed)
            self._record_failure()
            if probe or self._failure_count >= self._config.threshold:
                self._trip()
            raise

        elapsed = max(time.monotonic() - start, 0.0)
        self._reset()
        self._notify_listeners("on_call_succeeded", self.name, elapsed)
        return result

    def _retry_after(self, now: datetime) -> float:
        if self._last_failure_at is None:
            return 0.0
        remaining = self._config.timeout - (now - self._last_failure_at)
        return max(remaining.total_seconds(), 0.0)

    def _reject(self, retry_after: float) -> None:
        log_info(
            self._logger,
            "circuit_guard.call_rejected",
            guard=self.name,
            retry_after=retry_after,
        )
        self._notify_listeners("on_call_rejected", self.name)
        raise CircuitGuardOpenError(self.name, retry_after=retry_after)

    def _record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_at = _utcnow()

    def _trip(self) -> None:
        self._set_state(CircuitState.OPEN)

    def _reset(self) -> None:
        self._failure_count = 0
        self._set_state(CircuitState.CLOSED)

    def _set_state(self, new: CircuitState, *, announce: bool = True) -> None:
        old = self._state
        if old == new:
            return
        self._state = new
        self._notify_listeners("on_state_change", self.name, old, new)
        if not announce:
            return
        log_info(
            self._logger,
            "circuit_guard.state_changed",
            guard=self.name,
            old_state=str(old),
            new_state=str(new),
        )
        self.state_changed.emit(self)

    def _notify_listeners(self, hook: str, *args: object) -> None:
        for listener in self._listeners:
            callback = getattr(listener, hook, None)
            if callback is None:
                continue
            self._dispatcher.call(callback, *args, hook=hook)
