from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Callable, Dict, Optional

import structlog

from lesson_engine.domain.interfaces.cache_store import ICacheStore

logger = structlog.get_logger(__name__)


class InMemoryCacheStore(ICacheStore):
    """Process-local TTL store. Values are kept as JSON text, like the redis backend."""

    backend_name = "memory"

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.monotonic
        self._lock = asyncio.Lock()
        self._entries: dict[str, tuple[str, Optional[float]]] = {}
        self._hits = 0
        self._misses = 0

    async def get(self, key: str) -> Optional[Any]:
        now = self._clock()
        async with self._lock:
            row = self._entries.get(key)
            if row is None:
                self._misses += 1
                return None
            payload, expires_at = row
            if expires_at is not None and expires_at <= now:
                self._entries.pop(key, None)
                self._misses += 1
                return None
            self._hits += 1
        return json.loads(payload)

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        payload = json.dumps(value)
        expires_at = self._clock() + ttl_seconds if ttl_seconds > 0 else None
        async with self._lock:
            self._entries[key] = (payload, expires_at)

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._entries.pop(key, None)

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    async def cleanup_expired(self) -> int:
        now = self._clock()
        async with self._lock:
            stale = [
                key
                for key, (_, expires_at) in self._entries.items()
                if expires_at is not None and expires_at <= now
            ]
            for key in stale:
                self._entries.pop(key, None)
        if stale:
            logger.debug("memory_cache_cleanup", removed=len(stale))
        return len(stale)

    async def stats(self) -> Dict[str, Any]:
        async with self._lock:
            return {
                "backend": self.backend_name,
                "size": len(self._entries),
                "hits": self._hits,
                "misses": self._misses,
            }
