"""Circuit guard exceptions.

Callers can distinguish between:
  - A call being rejected because the circuit is open.
  - A call abandoned because a cancellation token fired.
  - A defect in the guard's own state machine.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from circuit_guard.cancellation import CancellationToken

OPEN_MESSAGE = "Service is unavailable. Circuit guard is in open state."


class CircuitGuardError(Exception):
    """Base exception for the circuit guard package."""


class CircuitGuardOpenError(CircuitGuardError):
    """Raised when a call is rejected because the circuit is open.

    Attributes:
        guard_name: Name of the guard rejecting the call.
        retry_after: Seconds until a half-open probe may be attempted.
    """

    def __init__(
        self,
        guard_name: str,
        retry_after: float,
        message: str = OPEN_MESSAGE,
    ) -> None:
        """Initialize a circuit-open exception payload.

        Args:
            guard_name: Guard rejecting the call.
            retry_after: Seconds until the next probe window opens.
            message: Human-readable rejection message.
        """
        self.guard_name = guard_name
        self.retry_after = retry_after
        super().__init__(message)


class CircuitGuardStateError(CircuitGuardError):
    """Raised when the guard observes a state it has no transition for."""


class OperationCancelledError(CircuitGuardError):
    """Raised when work is abandoned because a cancellation token fired.

    Attributes:
        token: Token whose cancellation caused the error.
    """

    def __init__(self, token: CancellationToken, message: str | None = None) -> None:
        self.token = token
        super().__init__(message or "operation_cancelled")
