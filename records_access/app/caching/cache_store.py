"""
Cache store backed by a table on the rate-limited records backend.
"""

import asyncio
import weakref
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from shared.config import CacheFieldMap
from shared.errors import CacheCorruptionError, TerminalBackendError, ValidationError
from shared.logging import get_logger

from ..adapters.filters import FilterOperator, FilterRule, RecordFilter
from ..adapters.paginated_fetcher import PaginatedFetcher
from ..adapters.records_client import RecordsClient
from ..scheduler import Lane
from .cache_switch import CacheSwitch, cache_switch
from .models import CacheOwner, CacheRecord, format_flag, to_iso, utcnow
from .payload_codec import PayloadCodecRegistry


DEFAULT_TTL_MINUTES = 60
DEFAULT_CLEANUP_BATCH_SIZE = 50
ANONYMOUS_IDENTITY = "anonymous"

OwnerProvider = Callable[[], Awaitable[CacheOwner]]


class CacheStore:
    """get/set/invalidate/cleanup against the cache table.

    All traffic goes through the scheduler's infrastructure lane. Entries are
    never deleted in place: expiry, corruption and invalidation flip
    ``is_valid`` off (a tombstone) and ``cleanup_expired_cache`` compacts the
    table later.

    Backend failures never propagate. Reads degrade to a miss and writes report
    ``False``.
    """

    def __init__(self,
                 client: RecordsClient,
                 fetcher: PaginatedFetcher,
                 object_key: str = "object_115",
                 fields: Optional[CacheFieldMap] = None,
                 codecs: Optional[PayloadCodecRegistry] = None,
                 switch: Optional[CacheSwitch] = None,
                 owner_provider: Optional[OwnerProvider] = None,
                 default_ttl_minutes: int = DEFAULT_TTL_MINUTES,
                 cleanup_batch_size: int = DEFAULT_CLEANUP_BATCH_SIZE,
                 clock: Callable[[], datetime] = utcnow,
                 metrics=None):
        self.client = client
        self.fetcher = fetcher
        self.object_key = object_key
        self.fields = fields or CacheFieldMap()
        self.codecs = codecs or PayloadCodecRegistry()
        self.switch = switch or cache_switch
        self.owner_provider = owner_provider
        self.default_ttl_minutes = default_ttl_minutes
        self.cleanup_batch_size = cleanup_batch_size
        self._clock = clock
        self.metrics = metrics
        self.logger = get_logger("records.cache")
        self._locks: "weakref.WeakValueDictionary[Tuple[str, str], asyncio.Lock]" = weakref.WeakValueDictionary()

    @staticmethod
    def create_key(cache_type: str, identifier: str, user_identity: Optional[str] = None) -> str:
        """Build a cache key such as ``SchoolResults_123``.

        With ``user_identity`` the key is scoped to that user, e.g.
        ``SchoolResults_123_tutor@example.com``.
        """
        key = f"{cache_type}_{identifier}"
        if user_identity is not None:
            key = f"{key}_{user_identity or ANONYMOUS_IDENTITY}"
        return key

    async def create_user_key(self, cache_type: str, identifier: str) -> str:
        """Build a key scoped to the current owner, or ``anonymous``."""
        owner = await self._resolve_owner()
        identity = owner.identity if owner.identity != CacheOwner().identity else ""
        return self.create_key(cache_type, identifier, user_identity=identity)

    async def get(self, key: str, cache_type: str) -> Optional[Any]:
        """Return the cached value, or ``None`` on miss."""
        if self.switch.disabled:
            self._record("get", "disabled")
            return None

        try:
            async with self._lock_for(key, cache_type):
                return await self._get(key, cache_type)
        except Exception as e:
            self.logger.error(
                "Error retrieving cache entry",
                key=key,
                cache_type=cache_type,
                error_type=type(e).__name__,
                error=str(e)
            )
            self._record("get", "error")
            return None

    async def set(self, key: str, data: Any, cache_type: str, ttl_minutes: Optional[int] = None) -> bool:
        """Upsert an entry valid for ``ttl_minutes``; returns success."""
        if self.switch.disabled:
            self._record("set", "disabled")
            return True

        ttl = self.default_ttl_minutes if ttl_minutes is None else ttl_minutes
        try:
            async with self._lock_for(key, cache_type):
                await self._set(key, data, cache_type, ttl)
        except Exception as e:
            self.logger.error(
                "Error storing cache entry",
                key=key,
                cache_type=cache_type,
                error_type=type(e).__name__,
                error=str(e)
            )
            self._record("set", "error")
            return False

        self._record("set", "stored")
        return True

    async def invalidate(self, key: str, cache_type: str) -> bool:
        """Tombstone an entry. Returns True if a matching record exists."""
        try:
            async with self._lock_for(key, cache_type):
                record = await self._find_one(key, cache_type, valid_only=False)
                if record is None:
                    self.logger.debug("Nothing to invalidate", key=key, cache_type=cache_type)
                    return False
                if record.is_valid:
                    await self._tombstone(record)
        except Exception as e:
            self.logger.error(
                "Error invalidating cache entry",
                key=key,
                cache_type=cache_type,
                error_type=type(e).__name__,
                error=str(e)
            )
            self._record("invalidate", "error")
            return False

        self.logger.info("Cache entry invalidated", key=key, cache_type=cache_type)
        self._record("invalidate", "tombstoned")
        return True

    async def cleanup_expired_cache(self, batch_size: Optional[int] = None) -> bool:
        """Delete tombstoned and expired records in fixed-size batches."""
        batch_size = self.cleanup_batch_size if batch_size is None else batch_size
        if batch_size < 1:
            raise ValidationError("batch_size must be at least 1", details={"batch_size": batch_size})

        try:
            now = to_iso(self._clock())
            stale_filter = RecordFilter.any_of(
                FilterRule(self.fields.expires_at, FilterOperator.IS_BEFORE, now),
                FilterRule(self.fields.is_valid, FilterOperator.IS, format_flag(False)),
            )
            records = await self.fetcher.fetch_all(
                self.object_key, stale_filter, lane=Lane.INFRASTRUCTURE, strict=True
            )
            if not records:
                self.logger.info("No expired cache records found")
                return True

            self.logger.info("Cleaning up expired cache records", count=len(records))
            deleted = 0
            skipped = 0
            for start in range(0, len(records), batch_size):
                batch = records[start:start + batch_size]
                results = await asyncio.gather(
                    *(self._delete_if_stale(record) for record in batch),
                    return_exceptions=True
                )
                failures = [result for result in results if isinstance(result, Exception)]
                deleted += sum(1 for result in results if result is True)
                batch_skipped = sum(1 for result in results if result is False)
                skipped += batch_skipped
                for failure in failures:
                    self.logger.warning(
                        "Failed to delete expired cache record",
                        error_type=type(failure).__name__,
                        error=str(failure)
                    )
                self.logger.info(
                    "Deleted batch of expired cache records",
                    batch=start // batch_size + 1,
                    size=len(batch),
                    failed=len(failures),
                    skipped=batch_skipped
                )
        except Exception as e:
            self.logger.error(
                "Error cleaning up cache",
                error_type=type(e).__name__,
                error=str(e)
            )
            self._record("cleanup", "error")
            return False

        self._record("cleanup", "completed")
        self.logger.info("Cache cleanup complete", deleted=deleted, skipped=skipped, found=len(records))
        return True

    async def _delete_if_stale(self, raw: Dict[str, Any]) -> bool:
        """Delete one row found by the cleanup lookup if it is still stale.

        The row is re-read under its ``(key, type)`` lock so an entry that a
        concurrent ``set`` revived after the lookup is kept.
        """
        candidate = CacheRecord.from_backend(raw, self.fields)
        async with self._lock_for(candidate.key, candidate.type):
            try:
                current = await self.client.get_record(
                    self.object_key, candidate.record_id, lane=Lane.INFRASTRUCTURE
                )
            except TerminalBackendError as e:
                if e.status_code == 404:
                    return False
                raise

            record = CacheRecord.from_backend(current or {}, self.fields)
            if record.is_valid and not record.is_expired(self._clock()):
                self.logger.debug("Cache entry revived, keeping", key=record.key, cache_type=record.type)
                return False

            await self.client.delete(self.object_key, candidate.record_id, lane=Lane.INFRASTRUCTURE)
            return True

    async def _get(self, key: str, cache_type: str) -> Optional[Any]:
        record = await self._find_one(key, cache_type, valid_only=True)
        if record is None:
            self.logger.debug("Cache miss", key=key, cache_type=cache_type)
            self._record("get", "miss")
            return None

        now = self._clock()
        if record.is_expired(now):
            self.logger.info("Cache entry expired", key=key, cache_type=cache_type)
            await self._tombstone(record)
            self._record("get", "expired")
            return None

        try:
            value = self.codecs.for_type(cache_type).decode(record)
        except CacheCorruptionError as e:
            self.logger.warning(
                "Corrupt cache entry, invalidating",
                key=key,
                cache_type=cache_type,
                error=e.message
            )
            await self._tombstone(record)
            self._record("get", "corrupt")
            return None

        await self.client.update(
            self.object_key,
            record.record_id,
            {
                self.fields.access_count: record.access_count + 1,
                self.fields.last_accessed_at: to_iso(now),
            },
            lane=Lane.INFRASTRUCTURE
        )
        self.logger.debug("Cache hit", key=key, cache_type=cache_type)
        self._record("get", "hit")
        return value

    async def _set(self, key: str, data: Any, cache_type: str, ttl_minutes: int):
        now = self._clock()
        expires_at = now + timedelta(minutes=ttl_minutes)
        encoded = self.codecs.for_type(cache_type).encode(data, self.fields)

        existing = await self._find_one(key, cache_type, valid_only=False)
        if existing is not None:
            self.logger.info("Updating existing cache entry", key=key, cache_type=cache_type)
            body = dict(encoded)
            body.update({
                self.fields.last_accessed_at: to_iso(now),
                self.fields.access_count: existing.access_count + 1,
                self.fields.is_valid: format_flag(True),
                self.fields.expires_at: to_iso(expires_at),
            })
            await self.client.update(self.object_key, existing.record_id, body, lane=Lane.INFRASTRUCTURE)
            return

        self.logger.info("Creating new cache entry", key=key, cache_type=cache_type)
        owner = await self._resolve_owner()
        record = CacheRecord(
            key=key,
            type=cache_type,
            owner_identity=owner.identity,
            owner_org=owner.organisation,
            created_at=now,
            last_accessed_at=now,
            access_count=1,
            expires_at=expires_at,
            is_valid=True,
        )
        body = record.to_backend(self.fields)
        body.update(encoded)
        await self.client.create(self.object_key, body, lane=Lane.INFRASTRUCTURE)

    async def _find_one(self, key: str, cache_type: str, valid_only: bool) -> Optional[CacheRecord]:
        rules = [
            FilterRule(self.fields.key, FilterOperator.IS, key),
            FilterRule(self.fields.type, FilterOperator.IS, cache_type),
        ]
        if valid_only:
            rules.append(FilterRule(self.fields.is_valid, FilterOperator.IS, format_flag(True)))

        response = await self.client.find(self.object_key, RecordFilter.all_of(*rules), lane=Lane.INFRASTRUCTURE)
        records = response.get("records") or []
        if not records:
            return None
        return CacheRecord.from_backend(records[0], self.fields)

    async def _tombstone(self, record: CacheRecord):
        await self.client.update(
            self.object_key,
            record.record_id,
            {self.fields.is_valid: format_flag(False)},
            lane=Lane.INFRASTRUCTURE
        )
        record.is_valid = False

    async def _resolve_owner(self) -> CacheOwner:
        if self.owner_provider is None:
            return CacheOwner()
        try:
            return await self.owner_provider()
        except Exception as e:
            self.logger.warning("Could not resolve cache owner", error=str(e))
            return CacheOwner()

    def _lock_for(self, key: str, cache_type: str) -> asyncio.Lock:
        lock = self._locks.get((key, cache_type))
        if lock is None:
            lock = asyncio.Lock()
            self._locks[(key, cache_type)] = lock
        return lock

    def _record(self, operation: str, result: str):
        if self.metrics:
            self.metrics.increment_counter("cache_operations_total", operation=operation, result=result)
