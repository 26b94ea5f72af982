from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class CircuitState(StrEnum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class GuardSnapshot:
    """Read-only copy of a guard's bookkeeping, taken without its lock.

    ``retry_after`` is the number of seconds left before an ``OPEN`` guard
    lets a probe through, and ``0.0`` in every other state.
    """

    name: str
    state: CircuitState
    failure_count: int
    threshold: int
    last_failure_at: datetime | None
    retry_after: float = 0.0

    @property
    def accepts_calls(self) -> bool:
        """Return whether the next call would reach the dependency."""
        return self.state != CircuitState.OPEN or self.retry_after <= 0
