import asyncio
from typing import Awaitable, Callable, List, Optional

import structlog

from lesson_engine.core.settings import settings
from lesson_engine.core.utils.text import stable_hash
from lesson_engine.domain.exceptions import EmbeddingFailure
from lesson_engine.domain.interfaces.content_store import IContentStore
from lesson_engine.domain.schemas.curriculum import ContentFilter, IndexStats
from lesson_engine.services.embedding_service import EmbeddingService

logger = structlog.get_logger(__name__)


class CurriculumIndexer:
    """
    Embeds every content unit whose rendered text changed since the last run.
    Units are embedded batch_size at a time. A unit that fails to embed is logged
    and left unindexed; the next run retries it.
    """

    def __init__(
        self,
        content_store: IContentStore,
        embedding_service: EmbeddingService,
        batch_size: Optional[int] = None,
        batch_delay_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.content_store = content_store
        self.embedding_service = embedding_service
        self.batch_size = max(1, int(batch_size or settings.INDEXING_BATCH_SIZE))
        self.batch_delay_seconds = float(
            settings.INDEXING_BATCH_DELAY_SECONDS if batch_delay_seconds is None else batch_delay_seconds
        )
        self._sleep = sleep

    async def index_curriculum(
        self, filters: Optional[ContentFilter] = None, force: bool = False
    ) -> IndexStats:
        units = await self.content_store.list_content_units(filters)
        stored = await self.content_store.get_stored_embeddings([u.unit_id for u in units])
        stats = IndexStats()

        logger.info("curriculum_indexing_started", units=len(units), force=force)
        pending = []
        for unit in units:
            rendered = unit.rendered_text()
            content_hash = stable_hash(rendered)
            existing = stored.get(unit.unit_id)
            if not force and existing is not None and existing.content_hash == content_hash:
                stats.skipped += 1
                continue
            pending.append((unit.unit_id, rendered, content_hash))

        for start in range(0, len(pending), self.batch_size):
            batch = pending[start : start + self.batch_size]
            vectors = await self._embed_batch([rendered for _, rendered, _ in batch])

            for (unit_id, rendered, content_hash), vector in zip(batch, vectors):
                try:
                    if vector is None:
                        vector = await self.embedding_service.embed_text(rendered)
                    await self.content_store.store_embedding(unit_id, vector, content_hash)
                except (EmbeddingFailure, ValueError) as exc:
                    stats.failed += 1
                    stats.failed_unit_ids.append(unit_id)
                    logger.warning("unit_indexing_failed", unit_id=unit_id, error=str(exc))
                    continue
                stats.indexed += 1

            if len(batch) == self.batch_size and self.batch_delay_seconds > 0:
                await self._sleep(self.batch_delay_seconds)

        logger.info(
            "curriculum_indexing_completed",
            indexed=stats.indexed,
            skipped=stats.skipped,
            failed=stats.failed,
        )
        return stats

    async def _embed_batch(self, texts: List[str]) -> List[Optional[List[float]]]:
        """One provider call per batch; on failure every unit is retried on its own."""
        try:
            return list(await self.embedding_service.embed_batch(texts))
        except (EmbeddingFailure, ValueError) as exc:
            logger.warning("batch_embedding_failed", size=len(texts), error=str(exc))
            return [None] * len(texts)
