"""tenacity building blocks for retrying outside a circuit guard.

A guard never retries on its own. Callers that want retries wrap
``CircuitGuard.execute`` in a tenacity retryer and use these pieces so the
retryer gives up on an open circuit and on the caller's cancellation instead
of burning attempts against them.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from contextlib import suppress

from tenacity import RetryCallState, retry_if_exception
from tenacity.retry import retry_base
from tenacity.stop import stop_base

from circuit_guard.cancellation import CancellationToken
from circuit_guard.exceptions import CircuitGuardOpenError, OperationCancelledError


def is_dependency_failure(exc: BaseException) -> bool:
    """Return whether ``exc`` came from the guarded dependency itself.

    Open-circuit rejections, token cancellations and anything that is not an
    ``Exception`` (``asyncio.CancelledError`` included) are guard or task
    outcomes, not dependency failures.
    """
    if not isinstance(exc, Exception):
        return False
    return not isinstance(exc, (CircuitGuardOpenError, OperationCancelledError))


def retry_if_dependency_failure() -> retry_base:
    return retry_if_exception(is_dependency_failure)


class stop_when_cancelled(stop_base):
    """Stop retrying once ``cancellation`` has fired."""

    def __init__(self, cancellation: CancellationToken) -> None:
        self.cancellation = cancellation

    def __call__(self, retry_state: RetryCallState) -> bool:
        return self.cancellation.is_cancellation_requested


def build_interruptible_sleep(
    cancellation: CancellationToken,
) -> Callable[[float], Awaitable[None]]:
    """Build a tenacity ``sleep`` that returns as soon as ``cancellation`` fires.

    Tokens that can never fire fall back to ``asyncio.sleep``.
    """

    async def _sleep(delay: float) -> None:
        delay = max(delay, 0.0)
        if not cancellation.can_be_cancelled:
            await asyncio.sleep(delay)
            return
        if cancellation.is_cancellation_requested:
            return
        with suppress(TimeoutError):
            await asyncio.wait_for(cancellation.wait(), timeout=delay)

    return _sleep
