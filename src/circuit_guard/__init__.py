"""Async circuit guard.

This package implements the circuit breaker pattern from *Release It!* as a
single serializing guard object.

Key behavior notes:
  - Every call holds the guard's lock for its whole duration, so the state
    machine is linearizable and at most one half-open probe is ever in flight.
  - ``OPEN -> HALF_OPEN`` is evaluated lazily by the next call; there is no
    background timer.
  - An ``OperationCancelledError`` tagged with the caller's own token is
    benign: nothing is recorded and the call returns ``None``. Cancellations
    tagged with any other token propagate unchanged and are not counted.
"""

from circuit_guard.cancellation import CancellationSource, CancellationToken
from circuit_guard.events import GuardListener, StateChangedEvent
from circuit_guard.exceptions import (
    CircuitGuardError,
    CircuitGuardOpenError,
    CircuitGuardStateError,
    OperationCancelledError,
)
from circuit_guard.guard import CircuitGuard, GuardConfig
from circuit_guard.state import CircuitState, GuardSnapshot

__all__ = [
    "CancellationSource",
    "CancellationToken",
    "CircuitGuard",
    "CircuitGuardError",
    "CircuitGuardOpenError",
    "CircuitGuardStateError",
    "CircuitState",
    "GuardConfig",
    "GuardListener",
    "GuardSnapshot",
    "OperationCancelledError",
    "StateChangedEvent",
]
