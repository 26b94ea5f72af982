"""State-change event, call listeners and non-blocking notification dispatch."""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, Protocol

from circuit_guard.logging import LoggerLike, log_error
from circuit_guard.state import CircuitState

if TYPE_CHECKING:
    from circuit_guard.guard import CircuitGuard

StateChangedHandler = Callable[["CircuitGuard"], object]


class GuardListener(Protocol):
    """Per-call hooks for metrics and tracing.

    Every hook is optional: the guard skips names a listener does not define.
    Hooks may be plain functions or coroutines; coroutines run as background
    tasks, so they never extend the time the guard holds its lock. Unlike
    ``StateChangedEvent``, ``on_state_change`` also sees the ``OPEN ->
    HALF_OPEN`` step taken right before a probe.
    """

    async def on_state_change(
        self, name: str, old: CircuitState, new: CircuitState
    ) -> None: ...

    async def on_call_rejected(self, name: str) -> None: ...

    async def on_call_succeeded(self, name: str, elapsed: float) -> None: ...

    async def on_call_failed(
        self, name: str, exc: Exception, elapsed: float
    ) -> None: ...

    async def on_call_cancelled(self, name: str) -> None: ...


class NotificationDispatcher:
    """Invoke observer callbacks without letting them block or fail the caller.

    Synchronous callbacks run inline. Awaitable results are scheduled as
    background tasks on the running loop. Exceptions from either are logged
    and dropped.
    """

    def __init__(self, *, logger: LoggerLike | None = None) -> None:
        self._logger = logger
        self._tasks: set[asyncio.Future[Any]] = set()

    @property
    def pending(self) -> int:
        """Return the number of scheduled callbacks not yet finished."""
        return len(self._tasks)

    def call(
        self,
        callback: Callable[..., object],
        *args: object,
        hook: str,
    ) -> None:
        try:
            result = callback(*args)
        except Exception as exc:
            log_error(
                self._logger,
                "circuit_guard.handler_failed",
                hook=hook,
                error_type=exc.__class__.__name__,
                exc_info=exc,
            )
            return
        if inspect.isawaitable(result):
            self._spawn(result, hook=hook)

    def _spawn(self, awaitable: Awaitable[object], *, hook: str) -> None:
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)

        def _on_done(done: asyncio.Future[Any]) -> None:
            self._tasks.discard(done)
            if done.cancelled():
                return
            exc = done.exception()
            if exc is None:
                return
            log_error(
                self._logger,
                "circuit_guard.handler_failed",
                hook=hook,
                error_type=exc.__class__.__name__,
                exc_info=exc,
            )

        task.add_done_callback(_on_done)

    async def drain(self) -> None:
        """Wait for every scheduled callback to finish."""
        while self._tasks:
            await asyncio.gather(*tuple(self._tasks), return_exceptions=True)


class StateChangedEvent:
    """Subscribable "state changed" event.

    Handlers receive the guard that changed and read ``guard.state`` for the
    new value.
    """

    def __init__(self, dispatcher: NotificationDispatcher) -> None:
        self._dispatcher = dispatcher
        self._handlers: list[StateChangedHandler] = []

    def __len__(self) -> int:
        return len(self._handlers)

    def subscribe(self, handler: StateChangedHandler) -> Callable[[], None]:
        """Register ``handler`` and return a callable that unsubscribes it."""
        self._handlers.append(handler)

        def _unsubscribe() -> None:
            self.unsubscribe(handler)

        return _unsubscribe

    def unsubscribe(self, handler: StateChangedHandler) -> None:
        """Remove ``handler``. Unknown handlers are ignored."""
        if handler in self._handlers:
            self._handlers.remove(handler)

    def emit(self, sender: CircuitGuard) -> None:
        for handler in tuple(self._handlers):
            self._dispatcher.call(handler, sender, hook="state_changed")
