"""Build the rate limiter and cache from settings (Redis or in-process)."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import structlog
from redis.asyncio import Redis

from enrichment.config import Settings, StoreConfig, get_settings
from enrichment.stores.cache import CacheStore, EnrichmentCache, InMemoryCacheStore, RedisCacheStore
from enrichment.stores.rate_limiter import CounterStore, InMemoryCounterStore, RateLimiter, RedisCounterStore

logger = structlog.get_logger()


@dataclass
class Stores:
    rate_limiter: RateLimiter
    cache: EnrichmentCache
    redis: Optional[Redis] = None

    async def close(self) -> None:
        if self.redis is not None:
            await self.redis.aclose()


def create_redis(config: StoreConfig) -> Redis:
    """Redis client for REDIS_URL with connect and command timeouts."""
    return Redis.from_url(
        config.redis_url,
        decode_responses=True,
        socket_timeout=config.timeout,
        socket_connect_timeout=config.timeout,
    )


def build_stores(settings: Optional[Settings] = None, redis: Optional[Redis] = None) -> Stores:
    """
    Wire counter and cache stores for the configured backend.

    A ``redis`` client may be passed in (tests use fakeredis); otherwise one is
    created from REDIS_URL. Both stores share the client.
    """
    settings = settings or get_settings()
    backend = settings.store.backend.strip().lower()

    counter_store: CounterStore
    cache_store: CacheStore
    if backend == "memory":
        counter_store = InMemoryCounterStore()
        cache_store = InMemoryCacheStore()
        redis = None
    elif backend == "redis":
        if redis is None:
            redis = create_redis(settings.store)
        prefix = settings.store.key_prefix
        counter_store = RedisCounterStore(redis, key_prefix=prefix)
        cache_store = RedisCacheStore(redis, key_prefix=prefix)
    else:
        raise ValueError(f"Unknown STORE_BACKEND: {settings.store.backend!r} (expected 'redis' or 'memory')")

    logger.info("stores_initialized", backend=backend)
    return Stores(
        rate_limiter=RateLimiter(counter_store, settings.limits),
        cache=EnrichmentCache(cache_store, settings.cache),
        redis=redis,
    )
