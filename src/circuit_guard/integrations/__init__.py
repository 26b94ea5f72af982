"""Adapters that put circuit guards in front of third-party clients."""

from circuit_guard.integrations.httpx_transport import (
    CircuitGuardTransport,
    DependencyStatusError,
)

__all__ = [
    "CircuitGuardTransport",
    "DependencyStatusError",
]
