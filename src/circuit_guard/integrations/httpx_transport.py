from __future__ import annotations

from collections.abc import Iterable

import httpx

from circuit_guard.cancellation import CancellationToken
from circuit_guard.exceptions import OperationCancelledError
from circuit_guard.guard import CircuitGuard

DEFAULT_FAILURE_STATUSES = frozenset({500, 502, 503, 504})
CANCELLATION_EXTENSION = "cancellation"


class DependencyStatusError(RuntimeError):
    """Raised when a guarded HTTP dependency answers with a failure status."""

    def __init__(self, request: httpx.Request, response: httpx.Response) -> None:
        """Initialize status-error metadata.

        Args:
            request: Request sent to the dependency.
            response: Response whose status counted as a dependency failure.
        """
        self.request = request
        self.response = response
        self.http_status = response.status_code
        super().__init__(
            f"dependency_status: {request.method} {request.url} -> "
            f"{response.status_code}"
        )


class CircuitGuardTransport(httpx.AsyncBaseTransport):
    """``httpx`` transport that sends every request through a circuit guard.

    Connection errors and responses with a status in ``failure_statuses``
    count as dependency failures. A failure status is surfaced as
    ``DependencyStatusError``; the response body is read first so callers can
    still inspect it.
    """

    def __init__(
        self,
        *,
        guard: CircuitGuard,
        transport: httpx.AsyncBaseTransport | None = None,
        failure_statuses: Iterable[int] = DEFAULT_FAILURE_STATUSES,
    ) -> None:
        """Wrap ``transport`` with circuit guard protection.

        Args:
            guard: Guard shared by every request sent through this transport.
            transport: Inner transport. Defaults to ``httpx.AsyncHTTPTransport``.
            failure_statuses: Response statuses that count as failures.
        """
        self._guard = guard
        self._transport = httpx.AsyncHTTPTransport() if transport is None else transport
        self._failure_statuses = frozenset(failure_statuses)

    @property
    def guard(self) -> CircuitGuard:
        return self._guard

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        cancellation = request.extensions.get(CANCELLATION_EXTENSION)
        if not isinstance(cancellation, CancellationToken):
            cancellation = CancellationToken.NONE

        async def _send() -> httpx.Response:
            response = await self._transport.handle_async_request(request)
            if response.status_code in self._failure_statuses:
                await response.aread()
                await response.aclose()
                raise DependencyStatusError(request, response)
            return response

        response = await self._guard.execute(_send, cancellation)
        if response is None:
            raise OperationCancelledError(cancellation)
        return response

    async def aclose(self) -> None:
        await self._transport.aclose()
