"""
Records backend client.
"""

from typing import Any, Dict, Optional

from shared.logging import get_logger
from shared.retry import RetryExecutor

from ..scheduler import Lane, QueuedOperation, RequestScheduler
from .filters import RecordFilter
from .headers import HeaderBuilder


class RecordsClient:
    """CRUD calls against record objects, each queued and retried."""

    def __init__(self,
                 base_url: str,
                 scheduler: RequestScheduler,
                 headers: HeaderBuilder,
                 retry: Optional[RetryExecutor] = None):
        self.base_url = base_url.rstrip('/')
        self.scheduler = scheduler
        self.headers = headers
        self.retry = retry or RetryExecutor()
        self.logger = get_logger("records.client")

    def records_url(self, object_key: str, record_id: Optional[str] = None) -> str:
        """URL of an object's record collection, or of one record in it."""
        url = f"{self.base_url}/objects/{object_key}/records"
        if record_id:
            url = f"{url}/{record_id}"
        return url

    def resolve_endpoint(self, endpoint: str) -> str:
        """Accept either an object key or a full records URL."""
        if endpoint.startswith(("http://", "https://")):
            return endpoint
        return self.records_url(endpoint)

    def build_operation(self,
                        method: str,
                        url: str,
                        params: Optional[Dict[str, Any]] = None,
                        body: Optional[Any] = None,
                        lane: Lane = Lane.USER) -> QueuedOperation:
        return QueuedOperation(
            method=method,
            url=url,
            headers=self.headers.build(),
            params=params or {},
            body=body,
            lane=lane,
        )

    async def request(self,
                      method: str,
                      url: str,
                      params: Optional[Dict[str, Any]] = None,
                      body: Optional[Any] = None,
                      lane: Lane = Lane.USER) -> Any:
        """Submit through the scheduler, retrying transient failures.

        Every attempt is a fresh submission so it is charged against the
        rate budget like any other request.
        """
        async def _attempt():
            return await self.scheduler.submit(self.build_operation(method, url, params, body, lane))

        return await self.retry.with_retry(_attempt, name=f"{method} {url}")

    async def find(self,
                   endpoint: str,
                   record_filter: Optional[RecordFilter] = None,
                   page: Optional[int] = None,
                   rows_per_page: Optional[int] = None,
                   lane: Lane = Lane.USER) -> Dict[str, Any]:
        """List records, optionally filtered and paged."""
        params: Dict[str, Any] = {"format": "raw"}
        if record_filter is not None and record_filter.rules:
            params["filters"] = record_filter.to_query_param()
        if page is not None:
            params["page"] = page
        if rows_per_page is not None:
            params["rows_per_page"] = rows_per_page

        response = await self.request("GET", self.resolve_endpoint(endpoint), params=params, lane=lane)
        return response or {}

    async def get_record(self, object_key: str, record_id: str, lane: Lane = Lane.USER) -> Dict[str, Any]:
        return await self.request(
            "GET", self.records_url(object_key, record_id), params={"format": "raw"}, lane=lane
        )

    async def create(self, object_key: str, data: Dict[str, Any], lane: Lane = Lane.USER) -> Dict[str, Any]:
        return await self.request("POST", self.records_url(object_key), body=data, lane=lane)

    async def update(self, object_key: str, record_id: str, data: Dict[str, Any],
                     lane: Lane = Lane.USER) -> Dict[str, Any]:
        return await self.request("PUT", self.records_url(object_key, record_id), body=data, lane=lane)

    async def delete(self, object_key: str, record_id: str, lane: Lane = Lane.USER) -> Any:
        return await self.request("DELETE", self.records_url(object_key, record_id), lane=lane)
