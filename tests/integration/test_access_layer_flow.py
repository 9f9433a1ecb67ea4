"""
End-to-end integration tests for the access layer against the in-memory backend.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from records_access.app.adapters import FilterOperator, FilterRule, RecordFilter
from records_access.app.caching import CacheOwner, CacheSwitch
from records_access.app.main import AccessLayer
from shared.test_helpers import InMemoryRecordsBackend, RecordsDataFactory, make_test_config


WINDOW = 0.2


class MutableClock:
    def __init__(self):
        self.now = datetime(2024, 9, 1, 8, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now


class TestAccessLayerFlow:
    """Integration tests for complete cache-aside flows."""

    @pytest.fixture
    def backend(self):
        backend = InMemoryRecordsBackend()
        backend.seed("object_10", RecordsDataFactory.create_records(1200, prefix="vespa"))
        return backend

    @pytest.fixture
    def clock(self):
        return MutableClock()

    @pytest.fixture
    def layer(self, backend, clock):
        async def owner_provider():
            return CacheOwner(identity="staff@example.com", organisation="school-42")

        return AccessLayer(
            make_test_config(
                requests_per_second=4,
                window_seconds=WINDOW,
                window_buffer_seconds=0.05,
                infrastructure_reserved_budget=1,
            ),
            token_provider=lambda: "token-1",
            owner_provider=owner_provider,
            http_transport=backend.mock_transport(),
            switch=CacheSwitch(),
            cache_clock=clock,
        )

    async def load_school_results(self, layer, school_id):
        """Cache-aside read as an application would write it."""
        key = layer.create_key("SchoolResults", school_id)
        cached = await layer.get(key, "SchoolResults")
        if cached is not None:
            return cached, True

        record_filter = RecordFilter.all_of(FilterRule("field_1", FilterOperator.CONTAINS, "vespa"))
        records = await layer.fetch_all("object_10", record_filter)
        summary = {"school": school_id, "count": len(records)}
        await layer.set(key, summary, "SchoolResults", ttl_minutes=120)
        return summary, False

    @pytest.mark.asyncio
    async def test_cache_aside_flow(self, layer, backend, clock):
        async with layer:
            first, first_cached = await self.load_school_results(layer, "42")
            second, second_cached = await self.load_school_results(layer, "42")

            assert first == second == {"school": "42", "count": 1200}
            assert (first_cached, second_cached) == (False, True)
            assert len(backend.requests_for("GET", "object_10")) == 2

            clock.now += timedelta(minutes=121)
            _, third_cached = await self.load_school_results(layer, "42")
            assert third_cached is False

        assert len(backend.records("object_115")) == 1

    @pytest.mark.asyncio
    async def test_rate_limited_requests_are_recovered(self, layer, backend):
        backend.inject_status(429, times=2, method="GET")

        async with layer:
            records = await layer.fetch_all("object_10")

        assert len(records) == 1200
        assert len(backend.requests_for("GET", "object_10")) == 4

    @pytest.mark.asyncio
    async def test_concurrent_traffic_respects_quota(self, layer, backend):
        async with layer:
            await asyncio.gather(*(
                layer.submit("GET", "object_10", params={"format": "raw", "page": i, "rows_per_page": 1})
                for i in range(1, 13)
            ))

        stamps = backend.dispatch_times()
        assert len(stamps) == 12
        assert stamps[4] - stamps[0] >= WINDOW
        assert stamps[8] - stamps[4] >= WINDOW

    @pytest.mark.asyncio
    async def test_cleanup_after_entries_expire(self, layer, backend, clock):
        async with layer:
            for school_id in ("1", "2", "3"):
                await layer.set(layer.create_key("SchoolResults", school_id), {"id": school_id},
                                "SchoolResults", ttl_minutes=30)
            await layer.set(layer.create_key("SchoolResults", "4"), {"id": "4"}, "SchoolResults", ttl_minutes=600)

            clock.now += timedelta(hours=1)
            assert await layer.cleanup_expired_cache() is True

        remaining = backend.records("object_115")
        assert [row["field_3187"] for row in remaining] == ["SchoolResults_4"]
        assert remaining[0]["field_3189"] == "staff@example.com"

    @pytest.mark.asyncio
    async def test_nocache_query_bypasses_cache(self, layer, backend):
        layer.cache_switch.apply_query_params("https://app.example.com/dashboard?nocache=1")

        async with layer:
            summary, cached = await self.load_school_results(layer, "42")
            assert cached is False
            assert summary["count"] == 1200

        assert backend.records("object_115") == []
