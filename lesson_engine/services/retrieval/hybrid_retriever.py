from typing import List, Optional, Sequence

import structlog

from lesson_engine.core.settings import settings
from lesson_engine.core.utils.text import normalize_text
from lesson_engine.domain.exceptions import EmbeddingFailure
from lesson_engine.domain.interfaces.content_store import IContentStore
from lesson_engine.domain.retrieval.fusion import merge_first_seen, merge_keyword_and_semantic
from lesson_engine.domain.retrieval.ports import IReranker
from lesson_engine.domain.schemas.curriculum import ContentFilter, ResultSource, SearchResult
from lesson_engine.services.retrieval.similarity_search import SimilaritySearchEngine

logger = structlog.get_logger(__name__)


class HybridRetriever:
    """
    Keyword match over curriculum metadata merged with cosine search.
    An embedding outage degrades to keyword-only results instead of failing.
    """

    def __init__(
        self,
        content_store: IContentStore,
        search_engine: SimilaritySearchEngine,
        reranker: Optional[IReranker] = None,
        default_limit: Optional[int] = None,
        semantic_overfetch: Optional[int] = None,
    ):
        self.content_store = content_store
        self.search_engine = search_engine
        self.reranker = reranker
        self.default_limit = int(default_limit or settings.RETRIEVAL_DEFAULT_LIMIT)
        self.semantic_overfetch = max(
            1, int(semantic_overfetch or settings.RETRIEVAL_SEMANTIC_OVERFETCH)
        )

    async def keyword_search(
        self, query: str, filters: Optional[ContentFilter] = None
    ) -> List[SearchResult]:
        needle = normalize_text(query)
        if not needle:
            return []
        units = await self.content_store.list_content_units(filters)
        return [
            SearchResult.from_unit(unit, score=1.0, source=ResultSource.KEYWORD)
            for unit in units
            if any(field and needle in normalize_text(field) for field in unit.keyword_fields())
        ]

    async def retrieve(
        self,
        query: str,
        filters: Optional[ContentFilter] = None,
        limit: Optional[int] = None,
        errors: Optional[List[str]] = None,
    ) -> List[SearchResult]:
        limit = self.default_limit if limit is None else int(limit)
        if limit <= 0 or not str(query or "").strip():
            return []

        keyword = await self.keyword_search(query, filters)
        try:
            semantic = await self.search_engine.search_similar(
                query, limit * self.semantic_overfetch, filters
            )
        except EmbeddingFailure as exc:
            logger.warning("semantic_search_failed_keyword_only", error=str(exc), query=query[:120])
            if errors is not None:
                errors.append(f"embedding: {exc}")
            semantic = []

        merged = merge_keyword_and_semantic(keyword, semantic)
        if len(merged) > limit and self.reranker is not None:
            anchor_week = filters.week_id if filters is not None else None
            merged = await self.reranker.rerank(query, merged, limit, anchor_week=anchor_week)

        logger.debug(
            "hybrid_retrieval_completed",
            keyword=len(keyword),
            semantic=len(semantic),
            returned=min(len(merged), limit),
        )
        return merged[:limit]

    async def retrieve_many(
        self,
        queries: Sequence[str],
        filters: Optional[ContentFilter] = None,
        limit: Optional[int] = None,
        errors: Optional[List[str]] = None,
    ) -> List[SearchResult]:
        """Sequential retrieval per query, in the given order; first occurrence of a unit wins."""
        batches: List[List[SearchResult]] = []
        for query in queries:
            batches.append(await self.retrieve(query, filters=filters, limit=limit, errors=errors))
        return merge_first_seen(batches)
