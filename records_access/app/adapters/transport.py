"""
HTTP transport for queued operations.
"""

import time
from typing import Any, Optional

import httpx

from shared.errors import RateLimitError, TerminalBackendError, TransientBackendError
from shared.logging import get_logger

from ..scheduler import QueuedOperation


class HttpTransport:
    """Sends one ``QueuedOperation`` and maps the response onto shared errors.

    ``transport`` is handed to ``httpx.AsyncClient`` and lets callers swap the
    network for an ``httpx.MockTransport``.
    """

    def __init__(self,
                 timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 metrics=None):
        self.timeout = timeout
        self._transport = transport
        self.metrics = metrics
        self.logger = get_logger("records.transport")

    async def send(self, op: QueuedOperation) -> Any:
        start_time = time.perf_counter()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.request(
                    op.method,
                    op.url,
                    headers=op.headers,
                    params=op.params or None,
                    json=op.body,
                )
        except httpx.TransportError as e:
            self._record(op, "transport_error", start_time)
            self.logger.warning(
                "Records backend unreachable",
                method=op.method,
                url=op.url,
                error_type=type(e).__name__,
                error=str(e)
            )
            raise TransientBackendError(
                f"{type(e).__name__}: {e}",
                details={"method": op.method, "url": op.url}
            ) from e

        return self._handle_response(op, response, start_time)

    def _handle_response(self, op: QueuedOperation, response: httpx.Response, start_time: float) -> Any:
        status_code = response.status_code
        details = {"method": op.method, "url": op.url, "body": response.text[:500]}

        if status_code == 429:
            self._record(op, "rate_limited", start_time)
            raise RateLimitError(details=details)

        if status_code >= 500:
            self._record(op, "server_error", start_time)
            self.logger.error(
                "Records backend server error",
                method=op.method,
                url=op.url,
                status_code=status_code
            )
            raise TransientBackendError(
                f"Unexpected status {status_code}", status_code=status_code, details=details
            )

        if status_code >= 400:
            self._record(op, "client_error", start_time)
            self.logger.error(
                "Records backend rejected request",
                method=op.method,
                url=op.url,
                status_code=status_code,
                response=response.text[:500]
            )
            raise TerminalBackendError(
                f"Unexpected status {status_code}", status_code=status_code, details=details
            )

        self._record(op, "success", start_time)
        self.logger.debug("Records backend request succeeded", method=op.method, url=op.url)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    def _record(self, op: QueuedOperation, outcome: str, start_time: float):
        if self.metrics:
            self.metrics.record_backend_request(op.method, outcome, time.perf_counter() - start_time)
