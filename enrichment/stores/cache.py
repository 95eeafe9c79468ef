"""
Tenant-scoped enrichment cache.

Entries are keyed by (tenant, domain) and never shared across tenants. TTL is
fixed at write time. Reads that find an expired entry delete it and report a
miss. Backing-store trouble never fails a request: reads degrade to a miss,
writes are logged and dropped.
"""

from __future__ import annotations

import asyncio
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from pydantic import ValidationError as PydanticValidationError
from redis.asyncio import Redis
from redis.exceptions import RedisError

from enrichment.config import CacheConfig, get_settings
from enrichment.errors import StoreError
from enrichment.models import CacheEntry, CacheLookup, EnrichedProfile
from enrichment.observability import metrics as obs_metrics
from enrichment.observability.logging import mask_domain

logger = structlog.get_logger()


class CacheStore(ABC):
    """Raw entry storage. Implementations raise StoreError on backend failure."""

    @abstractmethod
    async def load(self, tenant_id: str, domain: str) -> Optional[CacheEntry]: ...

    @abstractmethod
    async def save(self, entry: CacheEntry, ttl_seconds: int, max_entries: int) -> int:
        """Write an entry and enforce the per-tenant cap. Returns number evicted."""

    @abstractmethod
    async def delete(self, tenant_id: str, domain: str) -> bool: ...

    @abstractmethod
    async def touch(self, tenant_id: str, domain: str, accessed_at: datetime) -> None:
        """Increment hit_count and set last_accessed_at."""

    @abstractmethod
    async def purge_expired(self, now: datetime) -> int: ...

    async def close(self) -> None:
        return None


# ── Redis ──


class RedisCacheStore(CacheStore):
    """
    One hash per entry with native key expiry, plus a per-tenant sorted set of
    domains scored by last access (drives LRU eviction) and a set of tenants
    (drives the retention sweep).
    """

    def __init__(self, redis: Redis, key_prefix: str = "enrich") -> None:
        self._redis = redis
        self._prefix = key_prefix

    def _entry_key(self, tenant_id: str, domain: str) -> str:
        return f"{self._prefix}:cache:{tenant_id}:{domain}"

    def _index_key(self, tenant_id: str) -> str:
        return f"{self._prefix}:cache-index:{tenant_id}"

    @property
    def _tenants_key(self) -> str:
        return f"{self._prefix}:cache-tenants"

    async def load(self, tenant_id: str, domain: str) -> Optional[CacheEntry]:
        try:
            data = await self._redis.hgetall(self._entry_key(tenant_id, domain))
        except RedisError as exc:
            raise StoreError(f"cache read failed: {exc}") from exc
        if not data or "entry" not in data:
            return None
        try:
            entry = CacheEntry.model_validate_json(data["entry"])
        except PydanticValidationError as exc:
            raise StoreError(f"corrupt cache entry: {exc}") from exc
        entry.hit_count = int(data.get("hit_count") or 0)
        if data.get("last_accessed_at"):
            entry.last_accessed_at = datetime.fromisoformat(data["last_accessed_at"])
        return entry

    async def save(self, entry: CacheEntry, ttl_seconds: int, max_entries: int) -> int:
        key = self._entry_key(entry.tenant_id, entry.domain)
        index = self._index_key(entry.tenant_id)
        score = entry.fetched_at.timestamp()
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.delete(key)
                pipe.hset(key, mapping={"entry": entry.model_dump_json(), "hit_count": 0})
                pipe.expire(key, ttl_seconds)
                pipe.zadd(index, {entry.domain: score})
                pipe.sadd(self._tenants_key, entry.tenant_id)
                await pipe.execute()
            return await self._evict_over_cap(entry.tenant_id, max_entries)
        except RedisError as exc:
            raise StoreError(f"cache write failed: {exc}") from exc

    async def _evict_over_cap(self, tenant_id: str, max_entries: int) -> int:
        index = self._index_key(tenant_id)
        size = await self._redis.zcard(index)
        overflow = size - max_entries
        if overflow <= 0:
            return 0
        # Lowest scores are least recently accessed
        victims = await self._redis.zrange(index, 0, overflow - 1)
        if victims:
            async with self._redis.pipeline(transaction=True) as pipe:
                for domain in victims:
                    pipe.delete(self._entry_key(tenant_id, domain))
                pipe.zrem(index, *victims)
                await pipe.execute()
        return len(victims)

    async def delete(self, tenant_id: str, domain: str) -> bool:
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.delete(self._entry_key(tenant_id, domain))
                pipe.zrem(self._index_key(tenant_id), domain)
                deleted, _ = await pipe.execute()
        except RedisError as exc:
            raise StoreError(f"cache delete failed: {exc}") from exc
        return bool(deleted)

    async def touch(self, tenant_id: str, domain: str, accessed_at: datetime) -> None:
        key = self._entry_key(tenant_id, domain)
        try:
            async with self._redis.pipeline(transaction=False) as pipe:
                pipe.hincrby(key, "hit_count", 1)
                pipe.hset(key, "last_accessed_at", accessed_at.isoformat())
                pipe.zadd(self._index_key(tenant_id), {domain: accessed_at.timestamp()})
                await pipe.execute()
        except RedisError as exc:
            raise StoreError(f"cache touch failed: {exc}") from exc

    async def purge_expired(self, now: datetime) -> int:
        """Drop index members whose entry has expired (natively or by expires_at)."""
        removed = 0
        try:
            tenants = await self._redis.smembers(self._tenants_key)
            for tenant_id in tenants:
                index = self._index_key(tenant_id)
                for domain in await self._redis.zrange(index, 0, -1):
                    entry = await self.load(tenant_id, domain)
                    if entry is None or entry.is_expired(now):
                        await self.delete(tenant_id, domain)
                        removed += 1
                if await self._redis.zcard(index) == 0:
                    await self._redis.srem(self._tenants_key, tenant_id)
        except RedisError as exc:
            raise StoreError(f"cache purge failed: {exc}") from exc
        return removed

    async def close(self) -> None:
        await self._redis.aclose()


# ── In-process ──


class InMemoryCacheStore(CacheStore):
    """Same contract as RedisCacheStore; expiry is checked on read and on purge."""

    def __init__(self) -> None:
        self._entries: dict[tuple[str, str], CacheEntry] = {}
        self._lock = asyncio.Lock()

    async def load(self, tenant_id: str, domain: str) -> Optional[CacheEntry]:
        async with self._lock:
            entry = self._entries.get((tenant_id, domain))
            return entry.model_copy(deep=True) if entry else None

    async def save(self, entry: CacheEntry, ttl_seconds: int, max_entries: int) -> int:
        async with self._lock:
            self._entries[(entry.tenant_id, entry.domain)] = entry.model_copy(deep=True)
            tenant_keys = [k for k in self._entries if k[0] == entry.tenant_id]
            overflow = len(tenant_keys) - max_entries
            if overflow <= 0:
                return 0
            tenant_keys.sort(key=lambda k: self._last_touch(self._entries[k]))
            for key in tenant_keys[:overflow]:
                del self._entries[key]
            return overflow

    @staticmethod
    def _last_touch(entry: CacheEntry) -> float:
        return (entry.last_accessed_at or entry.fetched_at).timestamp()

    async def delete(self, tenant_id: str, domain: str) -> bool:
        async with self._lock:
            return self._entries.pop((tenant_id, domain), None) is not None

    async def touch(self, tenant_id: str, domain: str, accessed_at: datetime) -> None:
        async with self._lock:
            entry = self._entries.get((tenant_id, domain))
            if entry is not None:
                entry.hit_count += 1
                entry.last_accessed_at = accessed_at

    async def purge_expired(self, now: datetime) -> int:
        async with self._lock:
            expired = [k for k, e in self._entries.items() if e.is_expired(now)]
            for key in expired:
                del self._entries[key]
            return len(expired)


class EnrichmentCache:
    """Fail-to-miss facade the orchestrator talks to."""

    def __init__(
        self,
        store: CacheStore,
        config: Optional[CacheConfig] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.config = config or get_settings().cache
        self._clock = clock

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._clock(), tz=timezone.utc)

    async def get(self, tenant_id: str, domain: str) -> CacheLookup:
        now = self._now()
        try:
            entry = await self.store.load(tenant_id, domain)
        except StoreError as exc:
            logger.warning("cache_read_failed", target=mask_domain(domain), error=str(exc)[:200])
            obs_metrics.record_cache_lookup(hit=False)
            return CacheLookup(found=False)

        if entry is None:
            obs_metrics.record_cache_lookup(hit=False)
            return CacheLookup(found=False)

        if entry.is_expired(now):
            try:
                await self.store.delete(tenant_id, domain)
            except StoreError as exc:
                logger.warning("cache_expired_delete_failed", target=mask_domain(domain), error=str(exc)[:200])
            obs_metrics.record_cache_lookup(hit=False)
            return CacheLookup(found=False)

        try:
            await self.store.touch(tenant_id, domain, now)
            entry.hit_count += 1
            entry.last_accessed_at = now
        except StoreError as exc:
            logger.debug("cache_touch_failed", target=mask_domain(domain), error=str(exc)[:200])

        obs_metrics.record_cache_lookup(hit=True)
        remaining = max(0.0, (entry.expires_at - now).total_seconds())
        return CacheLookup(found=True, entry=entry, remaining_ttl_seconds=remaining)

    async def set(self, tenant_id: str, domain: str, profile: EnrichedProfile, provider: str) -> bool:
        """Write an entry with the configured TTL. Returns False if the store refused."""
        now = self._now()
        ttl = self.config.ttl_seconds
        entry = CacheEntry(
            tenant_id=tenant_id,
            domain=domain,
            profile=profile,
            provider=provider,
            fetched_at=now,
            expires_at=now + timedelta(seconds=ttl),
        )
        try:
            evicted = await self.store.save(entry, ttl, self.config.max_entries_per_tenant)
        except StoreError as exc:
            logger.warning("cache_write_failed", target=mask_domain(domain), error=str(exc)[:200])
            return False
        if evicted:
            logger.info("cache_evicted_over_cap", evicted=evicted, max_entries=self.config.max_entries_per_tenant)
        return True

    async def invalidate(self, tenant_id: str, domain: str) -> bool:
        """Delete one entry. Store errors propagate so the caller can report them."""
        deleted = await self.store.delete(tenant_id, domain)
        logger.info("cache_invalidated", target=mask_domain(domain), deleted=deleted)
        return deleted

    async def purge_expired(self) -> int:
        removed = await self.store.purge_expired(self._now())
        logger.info("cache_purge_complete", removed=removed)
        return removed
