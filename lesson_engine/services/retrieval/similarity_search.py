import time
from typing import List, Optional

import structlog

from lesson_engine.core.settings import settings
from lesson_engine.domain.interfaces.content_store import IContentStore
from lesson_engine.domain.retrieval.similarity import rank_by_similarity
from lesson_engine.domain.schemas.curriculum import ContentFilter, ResultSource, SearchResult
from lesson_engine.services.embedding_service import EmbeddingService

logger = structlog.get_logger(__name__)


class SimilaritySearchEngine:
    """Brute-force cosine ranking over every indexed unit that passes the filter."""

    def __init__(
        self,
        content_store: IContentStore,
        embedding_service: EmbeddingService,
        max_unfiltered_scan: Optional[int] = None,
    ):
        self.content_store = content_store
        self.embedding_service = embedding_service
        self.max_unfiltered_scan = int(
            settings.SIMILARITY_MAX_UNFILTERED_SCAN if max_unfiltered_scan is None else max_unfiltered_scan
        )

    async def search_similar(
        self, query: str, limit: int, filters: Optional[ContentFilter] = None
    ) -> List[SearchResult]:
        """Raises EmbeddingFailure when the query cannot be embedded."""
        if limit <= 0 or not str(query or "").strip():
            return []

        start = time.perf_counter()
        query_vector = await self.embedding_service.embed_query(query)

        units = await self.content_store.list_content_units(filters)
        if (filters is None or filters.is_empty) and len(units) > self.max_unfiltered_scan:
            logger.warning(
                "similarity_unfiltered_scan_large",
                units=len(units),
                threshold=self.max_unfiltered_scan,
            )

        stored = await self.content_store.get_stored_embeddings([u.unit_id for u in units])
        by_id = {u.unit_id: u for u in units}
        candidates = [(u.unit_id, stored[u.unit_id].vector) for u in units if u.unit_id in stored]

        ranked = rank_by_similarity(query_vector, candidates, limit)
        results = [
            SearchResult.from_unit(by_id[unit_id], score=score, source=ResultSource.SEMANTIC)
            for unit_id, score in ranked
        ]
        logger.debug(
            "similarity_search_completed",
            scanned=len(candidates),
            unindexed=len(units) - len(candidates),
            returned=len(results),
            duration_ms=round((time.perf_counter() - start) * 1000, 2),
        )
        return results
