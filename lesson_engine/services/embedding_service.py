import asyncio
from typing import List, Optional

import structlog

from lesson_engine.core.settings import settings
from lesson_engine.domain.exceptions import EmbeddingFailure
from lesson_engine.domain.interfaces.embedding_provider import IEmbeddingProvider
from lesson_engine.infrastructure.caching.cache_service import CacheService

logger = structlog.get_logger(__name__)


class EmbeddingService:
    """
    Facade Service for Embeddings.
    Cache-aside over the vector cache: a text is embedded at most once per TTL window,
    concurrent identical requests included. Provider calls are bounded by a semaphore.
    """

    def __init__(
        self,
        provider: IEmbeddingProvider,
        cache: CacheService,
        ttl_seconds: Optional[int] = None,
        concurrency: Optional[int] = None,
    ):
        self.provider = provider
        self.cache = cache
        self.ttl_seconds = int(
            settings.EMBEDDING_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        )
        self.embedding_concurrency = max(
            1, int(settings.EMBEDDING_CONCURRENCY if concurrency is None else concurrency)
        )
        self._embedding_semaphore = asyncio.Semaphore(self.embedding_concurrency)

    @property
    def dimensions(self) -> int:
        return int(self.provider.embedding_dimensions)

    def _namespace(self, task: str) -> str:
        return f"emb:{self.provider.provider_name}:{self.provider.model_name}:{task}"

    def _validate(self, vector: object) -> List[float]:
        if not isinstance(vector, list) or len(vector) != self.dimensions:
            size = len(vector) if isinstance(vector, list) else None
            raise EmbeddingFailure(
                f"Embedding dimension mismatch: expected {self.dimensions}, got {size}",
                provider=self.provider.provider_name,
            )
        return [float(v) for v in vector]

    async def _call_provider(self, texts: List[str], task: str) -> List[List[float]]:
        async with self._embedding_semaphore:
            try:
                vectors = await self.provider.embed(texts, task=task)
            except (EmbeddingFailure, ValueError):
                raise
            except Exception as exc:
                raise EmbeddingFailure(
                    f"Embedding provider error: {exc}", provider=self.provider.provider_name
                ) from exc
        if len(vectors) != len(texts):
            raise EmbeddingFailure(
                f"Provider returned {len(vectors)} vectors for {len(texts)} texts",
                provider=self.provider.provider_name,
            )
        return [self._validate(v) for v in vectors]

    async def embed_text(self, text: str, task: str = "retrieval.document") -> List[float]:
        if not str(text or "").strip():
            raise ValueError("Cannot embed blank text.")
        key = CacheService.key_for(self._namespace(task), text)

        async def _compute() -> List[float]:
            logger.debug("embedding_cache_miss", task=task, chars=len(text))
            vectors = await self._call_provider([text], task)
            return vectors[0]

        vector = await self.cache.get_or_set(key, _compute, ttl_seconds=self.ttl_seconds)
        return self._validate(vector)

    async def embed_query(self, text: str) -> List[float]:
        return await self.embed_text(text, task="retrieval.query")

    async def embed_batch(self, texts: List[str], task: str = "retrieval.document") -> List[List[float]]:
        """Embeds many texts, sending only cache misses to the provider in one call."""
        if not texts:
            return []
        if any(not str(t or "").strip() for t in texts):
            raise ValueError("Cannot embed blank text.")

        namespace = self._namespace(task)
        results: List[Optional[List[float]]] = [None] * len(texts)
        missing: dict[str, List[int]] = {}
        for idx, text in enumerate(texts):
            cached = await self.cache.get(CacheService.key_for(namespace, text))
            if cached is not None:
                results[idx] = self._validate(cached)
            else:
                missing.setdefault(text, []).append(idx)

        if missing:
            unique_texts = list(missing.keys())
            vectors = await self._call_provider(unique_texts, task)
            for text, vector in zip(unique_texts, vectors):
                await self.cache.set(
                    CacheService.key_for(namespace, text), vector, ttl_seconds=self.ttl_seconds
                )
                for idx in missing[text]:
                    results[idx] = vector

        logger.debug(
            "embedding_batch_completed",
            total=len(texts),
            cache_hits=len(texts) - sum(len(v) for v in missing.values()),
        )
        return [v for v in results if v is not None]
