from __future__ import annotations

import asyncio
from typing import Optional

import structlog

from lesson_engine.domain.interfaces.cache_store import ICacheStore

logger = structlog.get_logger(__name__)


class CacheJanitor:
    """Background task that evicts expired cache entries on a fixed interval."""

    def __init__(self, store: ICacheStore, interval_seconds: float = 300.0):
        self.store = store
        self.interval_seconds = max(1.0, float(interval_seconds))
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="cache-janitor")
        logger.info("cache_janitor_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("cache_janitor_stopped")

    async def run_once(self) -> int:
        try:
            removed = await self.store.cleanup_expired()
        except Exception as exc:
            logger.warning("cache_janitor_cleanup_failed", error=str(exc))
            return 0
        if removed:
            logger.info("cache_janitor_cleanup", removed=removed)
        return removed

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            await self.run_once()
