from __future__ import annotations

import json
from typing import Any, Dict, Optional

import structlog

from lesson_engine.domain.interfaces.cache_store import ICacheStore

logger = structlog.get_logger(__name__)


class RedisCacheStore(ICacheStore):
    """
    Redis-backed TTL store. Expiry is delegated to redis (`SET ... EX`),
    concurrent writers resolve last-write-wins.
    """

    backend_name = "redis"

    def __init__(self, redis_client: Any, key_prefix: str = ""):
        self._redis = redis_client
        self._prefix = key_prefix

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def get(self, key: str) -> Optional[Any]:
        raw = await self._redis.get(self._key(key))
        if not raw:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        payload = json.dumps(value)
        if ttl_seconds > 0:
            await self._redis.set(self._key(key), payload, ex=int(ttl_seconds))
        else:
            await self._redis.set(self._key(key), payload)

    async def delete(self, key: str) -> None:
        await self._redis.delete(self._key(key))

    async def clear(self) -> None:
        removed = 0
        batch: list[str] = []
        async for key in self._redis.scan_iter(match=f"{self._prefix}*", count=500):
            batch.append(key)
            if len(batch) >= 500:
                removed += int(await self._redis.delete(*batch) or 0)
                batch = []
        if batch:
            removed += int(await self._redis.delete(*batch) or 0)
        logger.info("redis_cache_cleared", removed=removed, prefix=self._prefix)

    async def cleanup_expired(self) -> int:
        # Redis evicts expired keys itself.
        return 0

    async def stats(self) -> Dict[str, Any]:
        size = 0
        async for _ in self._redis.scan_iter(match=f"{self._prefix}*", count=500):
            size += 1
        info: Dict[str, Any] = {}
        try:
            info = await self._redis.info("stats")
        except Exception as exc:
            logger.warning("redis_cache_stats_unavailable", error=str(exc))
        return {
            "backend": self.backend_name,
            "size": size,
            "hits": int(info.get("keyspace_hits", 0) or 0),
            "misses": int(info.get("keyspace_misses", 0) or 0),
        }

    async def close(self) -> None:
        close = getattr(self._redis, "aclose", None) or getattr(self._redis, "close", None)
        if close is not None:
            await close()
