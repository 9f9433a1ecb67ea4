"""
Access layer composition root.
"""

import asyncio
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

import httpx

from shared.config import ServiceConfig, get_config
from shared.logging import configure_logging, get_logger
from shared.metrics import MetricsCollector, get_metrics_collector
from shared.retry import RetryConfig, RetryExecutor

from .adapters import HeaderBuilder, HttpTransport, PaginatedFetcher, RecordFilter, RecordsClient
from .adapters.headers import TokenProvider
from .caching import CacheStore, CacheSwitch, PayloadCodecRegistry, cache_switch
from .caching.cache_store import OwnerProvider
from .caching.models import utcnow
from .scheduler import Lane, RequestScheduler


class AccessLayer:
    """Builds the scheduler, client, paginator and cache from configuration.

    One instance per process: the scheduler's quota is only meaningful when
    every request to the backend goes through the same instance.
    """

    def __init__(self,
                 config: Optional[ServiceConfig] = None,
                 token_provider: Optional[TokenProvider] = None,
                 owner_provider: Optional[OwnerProvider] = None,
                 http_transport: Optional[httpx.AsyncBaseTransport] = None,
                 metrics: Optional[MetricsCollector] = None,
                 switch: Optional[CacheSwitch] = None,
                 on_queue_change: Optional[Callable[[Dict[str, Any]], None]] = None,
                 cache_clock: Callable[[], datetime] = utcnow,
                 retry_sleep=asyncio.sleep):
        self.config = config or get_config()
        configure_logging(self.config.service_name, self.config.log_level)
        self.logger = get_logger(f"{self.config.service_name}.access_layer")
        self.metrics = metrics or get_metrics_collector(self.config.service_name)

        self.transport = HttpTransport(
            timeout=self.config.request_timeout,
            transport=http_transport,
            metrics=self.metrics
        )
        self.scheduler = RequestScheduler(
            self.transport.send,
            budget=self.config.requests_per_second,
            window_seconds=self.config.window_seconds,
            buffer_seconds=self.config.window_buffer_seconds,
            cooldown_seconds=self.config.rate_limit_cooldown_seconds,
            infrastructure_reserved_budget=self.config.infrastructure_reserved_budget,
            max_infrastructure_queue=self.config.max_infrastructure_queue,
            on_queue_change=on_queue_change,
            metrics=self.metrics
        )
        self.retry = RetryExecutor(
            RetryConfig(
                max_attempts=self.config.retry_max_attempts,
                base_delay=self.config.retry_base_delay,
                max_delay=self.config.retry_max_delay,
                jitter=self.config.retry_jitter,
            ),
            sleep=retry_sleep,
            metrics=self.metrics
        )
        self.headers = HeaderBuilder(
            self.config.application_id,
            self.config.api_key,
            token_provider=token_provider
        )
        self.client = RecordsClient(self.config.api_base_url, self.scheduler, self.headers, retry=self.retry)
        self.fetcher = PaginatedFetcher(
            self.client,
            page_size=self.config.page_size,
            max_pages=self.config.max_pages
        )

        self.cache_switch = switch if switch is not None else cache_switch
        if self.config.cache_disabled:
            self.cache_switch.disable()
        self.cache = CacheStore(
            self.client,
            self.fetcher,
            object_key=self.config.cache_object_key,
            fields=self.config.cache_fields,
            codecs=PayloadCodecRegistry.with_url_types(self.config.url_cache_types),
            switch=self.cache_switch,
            owner_provider=owner_provider,
            default_ttl_minutes=self.config.cache_default_ttl_minutes,
            cleanup_batch_size=self.config.cache_cleanup_batch_size,
            clock=cache_clock,
            metrics=self.metrics
        )

        self.logger.info(
            "Access layer initialized",
            base_url=self.config.api_base_url,
            budget=self.config.requests_per_second,
            window_seconds=self.config.window_seconds,
            cache_disabled=self.cache_switch.disabled
        )

    async def __aenter__(self) -> "AccessLayer":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def submit(self,
                     method: str,
                     endpoint: str,
                     params: Optional[Dict[str, Any]] = None,
                     body: Optional[Any] = None,
                     lane: Lane = Lane.USER) -> Any:
        """Queue one request and return its parsed response.

        ``endpoint`` is an object key or a full URL. Transient failures are
        retried; each retry is charged against the rate budget.
        """
        url = self.client.resolve_endpoint(endpoint)
        return await self.client.request(method, url, params=params, body=body, lane=lane)

    async def fetch_all(self,
                        endpoint: str,
                        record_filter: Optional[RecordFilter] = None,
                        page_size: Optional[int] = None,
                        max_pages: Optional[int] = None) -> List[Dict[str, Any]]:
        return await self.fetcher.fetch_all(endpoint, record_filter, page_size=page_size, max_pages=max_pages)

    def create_key(self, cache_type: str, identifier: str, user_identity: Optional[str] = None) -> str:
        return self.cache.create_key(cache_type, identifier, user_identity=user_identity)

    async def create_user_key(self, cache_type: str, identifier: str) -> str:
        return await self.cache.create_user_key(cache_type, identifier)

    async def get(self, key: str, cache_type: str) -> Optional[Any]:
        return await self.cache.get(key, cache_type)

    async def set(self, key: str, data: Any, cache_type: str, ttl_minutes: Optional[int] = None) -> bool:
        return await self.cache.set(key, data, cache_type, ttl_minutes)

    async def invalidate(self, key: str, cache_type: str) -> bool:
        return await self.cache.invalidate(key, cache_type)

    async def cleanup_expired_cache(self, batch_size: Optional[int] = None) -> bool:
        return await self.cache.cleanup_expired_cache(batch_size)

    def get_stats(self) -> Dict[str, Any]:
        stats = self.scheduler.get_stats()
        stats["cache_disabled"] = self.cache_switch.disabled
        return stats

    def force_reset(self):
        self.scheduler.force_reset()

    async def aclose(self):
        await self.scheduler.aclose()
        self.logger.info("Access layer closed")
