from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

import structlog

from lesson_engine.core.utils.text import stable_hash
from lesson_engine.domain.interfaces.cache_store import ICacheStore

logger = structlog.get_logger(__name__)


class CacheService:
    """
    Cache-aside wrapper over a store.
    get_or_set serializes misses per key, so concurrent identical requests
    trigger the factory once. A failing store behaves like a miss.
    """

    def __init__(self, store: ICacheStore, default_ttl_seconds: int = 3600):
        self.store = store
        self.default_ttl_seconds = default_ttl_seconds
        self._key_locks: Dict[str, asyncio.Lock] = {}
        self._locks_guard = asyncio.Lock()

    @staticmethod
    def key_for(namespace: str, text: str) -> str:
        return f"{namespace}:{stable_hash(text)}"

    async def get(self, key: str) -> Optional[Any]:
        try:
            return await self.store.get(key)
        except Exception as exc:
            logger.warning("cache_get_failed", key=key, error=str(exc))
            return None

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        ttl = self.default_ttl_seconds if ttl_seconds is None else ttl_seconds
        try:
            await self.store.set(key, value, ttl)
        except Exception as exc:
            logger.warning("cache_set_failed", key=key, error=str(exc))

    async def delete(self, key: str) -> None:
        await self.store.delete(key)

    async def _lock_for(self, key: str) -> asyncio.Lock:
        async with self._locks_guard:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = asyncio.Lock()
                self._key_locks[key] = lock
            return lock

    async def get_or_set(
        self,
        key: str,
        factory: Callable[[], Awaitable[Any]],
        ttl_seconds: Optional[int] = None,
    ) -> Any:
        cached = await self.get(key)
        if cached is not None:
            return cached

        lock = await self._lock_for(key)
        try:
            async with lock:
                cached = await self.get(key)
                if cached is not None:
                    return cached
                value = await factory()
                if value is not None:
                    await self.set(key, value, ttl_seconds)
                return value
        finally:
            async with self._locks_guard:
                if not lock.locked() and self._key_locks.get(key) is lock:
                    self._key_locks.pop(key, None)

    async def stats(self) -> Dict[str, Any]:
        return await self.store.stats()
