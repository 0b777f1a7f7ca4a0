from __future__ import annotations

import asyncio
from typing import Optional

import structlog

from lesson_engine.core.settings import settings
from lesson_engine.domain.interfaces.cache_store import ICacheStore
from lesson_engine.infrastructure.caching.memory_store import InMemoryCacheStore
from lesson_engine.infrastructure.caching.redis_store import RedisCacheStore

logger = structlog.get_logger(__name__)


async def build_cache_store(
    backend: Optional[str] = None,
    redis_url: Optional[str] = None,
) -> ICacheStore:
    """
    Picks the cache backend once, at startup.
    Redis is used only if it answers PING; otherwise the process falls back
    to the in-memory store (fail-open).
    """
    mode = str(backend or settings.CACHE_BACKEND or "auto").strip().lower()
    url = str(redis_url if redis_url is not None else settings.REDIS_URL or "").strip()

    if mode == "memory" or not url:
        logger.info("cache_store_initialized", backend="memory", requested=mode)
        return InMemoryCacheStore()

    client = None
    try:
        from redis import asyncio as redis_async

        client = redis_async.from_url(url, decode_responses=True)
        await asyncio.wait_for(
            client.ping(), timeout=float(settings.CACHE_HEALTH_CHECK_TIMEOUT_SECONDS)
        )
        logger.info("cache_store_initialized", backend="redis")
        return RedisCacheStore(client, key_prefix=settings.CACHE_KEY_PREFIX)
    except Exception as exc:
        logger.warning("cache_store_redis_unavailable_fallback_memory", error=str(exc), requested=mode)
        if client is not None:
            try:
                await client.aclose()
            except Exception as close_exc:
                logger.debug("cache_store_redis_close_failed", error=str(close_exc))

    logger.info("cache_store_initialized", backend="memory", requested=mode)
    return InMemoryCacheStore()
