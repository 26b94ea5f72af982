"""Cooperative cancellation tokens.

A ``CancellationToken`` is observed by guarded work; a ``CancellationSource``
owns the token and requests cancellation. ``OperationCancelledError`` carries
the token that fired so the guard can tell the caller's own cancellation apart
from one raised deeper in the call graph with a different token.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import ClassVar

from circuit_guard.exceptions import OperationCancelledError


class CancellationToken:
    """Read side of a cancellation signal."""

    NONE: ClassVar[CancellationToken]

    def __init__(self, *, can_be_cancelled: bool = True) -> None:
        self._can_be_cancelled = can_be_cancelled
        self._cancelled = False
        self._callbacks: list[Callable[[], None]] = []
        self._waiters: set[asyncio.Future[None]] = set()

    def __repr__(self) -> str:
        return (
            f"CancellationToken(cancelled={self._cancelled}, "
            f"can_be_cancelled={self._can_be_cancelled})"
        )

    @property
    def can_be_cancelled(self) -> bool:
        """Return whether this token can ever fire."""
        return self._can_be_cancelled

    @property
    def is_cancellation_requested(self) -> bool:
        """Return whether cancellation has been requested."""
        return self._cancelled

    def raise_if_cancellation_requested(self) -> None:
        """Raise ``OperationCancelledError`` tagged with this token if cancelled."""
        if self._cancelled:
            raise OperationCancelledError(self)

    def register(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Run ``callback`` on cancellation and return an unregister callable.

        The callback runs immediately when the token has already fired.
        """
        if self._cancelled:
            callback()
            return lambda: None
        self._callbacks.append(callback)

        def _unregister() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return _unregister

    async def wait(self) -> None:
        """Wait until cancellation is requested."""
        if self._cancelled:
            return
        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.add(waiter)
        try:
            await waiter
        finally:
            self._waiters.discard(waiter)

    def _fire(self) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        for waiter in tuple(self._waiters):
            if not waiter.done():
                waiter.set_result(None)
        for callback in callbacks:
            callback()


CancellationToken.NONE = CancellationToken(can_be_cancelled=False)


class CancellationSource:
    """Owner of a ``CancellationToken`` that can request cancellation."""

    def __init__(self) -> None:
        self._token = CancellationToken()
        self._timer: asyncio.TimerHandle | None = None

    @property
    def token(self) -> CancellationToken:
        """Return the token observed by cancellable work."""
        return self._token

    @property
    def is_cancellation_requested(self) -> bool:
        """Return whether cancellation has been requested."""
        return self._token.is_cancellation_requested

    def cancel(self) -> None:
        """Request cancellation. Repeated calls are no-ops."""
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._token._fire()

    def cancel_after(self, delay: float) -> None:
        """Schedule cancellation on the running loop after ``delay`` seconds."""
        if delay < 0:
            raise ValueError("delay must be >= 0")
        if self._timer is not None:
            self._timer.cancel()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(delay, self.cancel)
