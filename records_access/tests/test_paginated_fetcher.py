"""
Unit tests for the paginated fetcher.
"""

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from records_access.app.adapters import (
    FilterOperator,
    FilterRule,
    HeaderBuilder,
    HttpTransport,
    PaginatedFetcher,
    RecordFilter,
    RecordsClient,
)
from records_access.app.scheduler import RequestScheduler
from shared.errors import TerminalBackendError, TransientBackendError, ValidationError
from shared.retry import RetryConfig, RetryExecutor
from shared.test_helpers import InMemoryRecordsBackend, RecordsDataFactory


class TestPaginatedFetcher:
    """Test cases for PaginatedFetcher."""

    @pytest.fixture
    def backend(self):
        return InMemoryRecordsBackend()

    @pytest.fixture
    def fetcher(self, backend):
        scheduler = RequestScheduler(HttpTransport(transport=backend.mock_transport()).send, budget=100)
        client = RecordsClient(
            "https://records.test/v1",
            scheduler,
            HeaderBuilder("app-1", "key-1"),
            retry=RetryExecutor(RetryConfig(max_attempts=2, base_delay=0.0)),
        )
        return PaginatedFetcher(client)

    @pytest.mark.asyncio
    async def test_fetches_every_page_in_order(self, fetcher, backend):
        """2500 records at 1000 per page take exactly three requests."""
        backend.seed("object_6", RecordsDataFactory.create_records(2500))

        records = await fetcher.fetch_all("object_6")

        assert [record["field_2"] for record in records] == list(range(2500))
        requests = backend.requests_for("GET", "object_6")
        assert [request.params["page"] for request in requests] == ["1", "2", "3"]
        assert all(request.params["rows_per_page"] == "1000" for request in requests)
        await fetcher.client.scheduler.aclose()

    @pytest.mark.asyncio
    async def test_stops_on_empty_page(self, fetcher, backend):
        backend.seed("object_6", RecordsDataFactory.create_records(20))

        records = await fetcher.fetch_all("object_6", page_size=10)

        assert len(records) == 20
        assert len(backend.requests) == 3
        await fetcher.client.scheduler.aclose()

    @pytest.mark.asyncio
    async def test_filter_is_applied_to_every_page(self, fetcher, backend):
        backend.seed("object_6", RecordsDataFactory.create_records(30))
        record_filter = RecordFilter.all_of(FilterRule("field_2", FilterOperator.LOWER_THAN, 15))

        records = await fetcher.fetch_all("object_6", record_filter, page_size=10)

        assert [record["field_2"] for record in records] == list(range(15))
        assert all("filters" in request.params for request in backend.requests)
        await fetcher.client.scheduler.aclose()

    @pytest.mark.asyncio
    async def test_page_cap_truncates_results(self, fetcher, backend):
        backend.seed("object_6", RecordsDataFactory.create_records(50))

        records = await fetcher.fetch_all("object_6", page_size=10, max_pages=2)

        assert len(records) == 20
        assert len(backend.requests) == 2
        await fetcher.client.scheduler.aclose()

    @pytest.mark.asyncio
    async def test_failure_mid_pagination_returns_partial_results(self, fetcher, backend):
        backend.seed("object_6", RecordsDataFactory.create_records(30))
        backend.inject_status(500, times=2, after=1)

        records = await fetcher.fetch_all("object_6", page_size=10)

        assert [record["field_2"] for record in records] == list(range(10))
        await fetcher.client.scheduler.aclose()

    @pytest.mark.asyncio
    async def test_terminal_error_returns_empty_list(self, fetcher, backend):
        backend.inject_status(403)

        assert await fetcher.fetch_all("object_6") == []
        await fetcher.client.scheduler.aclose()

    @pytest.mark.asyncio
    async def test_rejects_oversized_pages(self, fetcher):
        with pytest.raises(ValidationError):
            await fetcher.fetch_all("object_6", page_size=1001)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("overrides", [{"page_size": 0}, {"max_pages": 0}])
    async def test_explicit_zero_is_rejected(self, fetcher, backend, overrides):
        with pytest.raises(ValidationError):
            await fetcher.fetch_all("object_6", **overrides)
        assert backend.requests == []

    @pytest.mark.asyncio
    async def test_strict_mode_raises_mid_pagination(self, fetcher, backend):
        backend.seed("object_6", RecordsDataFactory.create_records(30))
        backend.inject_status(500, times=2, after=1)

        with pytest.raises(TransientBackendError) as exc_info:
            await fetcher.fetch_all("object_6", page_size=10, strict=True)

        assert exc_info.value.status_code == 500
        await fetcher.client.scheduler.aclose()

    @pytest.mark.asyncio
    async def test_strict_mode_raises_terminal_errors(self, fetcher, backend):
        backend.inject_status(403)

        with pytest.raises(TerminalBackendError):
            await fetcher.fetch_all("object_6", strict=True)
        await fetcher.client.scheduler.aclose()
