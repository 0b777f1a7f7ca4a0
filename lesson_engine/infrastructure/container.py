"""
Lesson Engine Container - Infrastructure Layer

Centralizes service instantiation and dependency injection.
Components receive collaborators through constructors; nothing is a module-level singleton.
"""

from typing import Optional

import structlog
from langchain_core.language_models.chat_models import BaseChatModel

from lesson_engine.application.services.lesson_generator import LangChainLessonGenerator
from lesson_engine.application.services.lesson_prompt_builder import LessonPromptBuilder
from lesson_engine.application.use_cases.autonomous_lesson_use_case import AutonomousLessonUseCase
from lesson_engine.core.settings import settings
from lesson_engine.domain.interfaces.cache_store import ICacheStore
from lesson_engine.domain.interfaces.content_store import IContentStore
from lesson_engine.domain.interfaces.embedding_provider import IEmbeddingProvider
from lesson_engine.domain.retrieval.ports import IReranker, ITextGenerator
from lesson_engine.infrastructure.caching.cache_service import CacheService
from lesson_engine.infrastructure.caching.factory import build_cache_store
from lesson_engine.infrastructure.caching.janitor import CacheJanitor
from lesson_engine.infrastructure.repositories.curriculum_loader import load_curriculum_file
from lesson_engine.infrastructure.repositories.in_memory_content_repository import (
    InMemoryContentRepository,
)
from lesson_engine.infrastructure.repositories.supabase_content_repository import (
    SupabaseContentRepository,
)
from lesson_engine.infrastructure.services.gemini_embedding_provider import GeminiEmbeddingProvider
from lesson_engine.infrastructure.supabase.client import create_supabase_client
from lesson_engine.services.embedding_service import EmbeddingService
from lesson_engine.services.indexing.curriculum_indexer import CurriculumIndexer
from lesson_engine.services.knowledge.clarity_gate import ClarityGate
from lesson_engine.services.retrieval.hybrid_retriever import HybridRetriever
from lesson_engine.services.retrieval.query_expander import QueryExpander
from lesson_engine.services.retrieval.reranker import build_reranker
from lesson_engine.services.retrieval.similarity_search import SimilaritySearchEngine

logger = structlog.get_logger(__name__)


class LessonEngineContainer:
    """
    IoC Container for the lesson engine.
    Call `await startup()` before use: it picks the cache backend and content store.
    """

    def __init__(
        self,
        content_store: Optional[IContentStore] = None,
        embedding_provider: Optional[IEmbeddingProvider] = None,
        cache_store: Optional[ICacheStore] = None,
        generator: Optional[ITextGenerator] = None,
        llm: Optional[BaseChatModel] = None,
        start_janitor: bool = True,
    ):
        self._content_store = content_store
        self._embedding_provider = embedding_provider
        self._cache_store = cache_store
        self._generator = generator
        self._llm = llm
        self._start_janitor = start_janitor

        # Lazy initialization of services
        self._janitor: Optional[CacheJanitor] = None
        self._cache_service = None
        self._embedding_service = None
        self._search_engine = None
        self._reranker = None
        self._retriever = None
        self._query_expander = None
        self._clarity_gate = None
        self._indexer = None
        self._lesson_use_case = None
        self._started = False

    async def startup(self) -> None:
        if self._started:
            return
        if self._cache_store is None:
            self._cache_store = await build_cache_store()
        if self._content_store is None:
            self._content_store = await self._build_content_store()
        if self._start_janitor:
            self._janitor = CacheJanitor(
                self._cache_store, interval_seconds=settings.CACHE_CLEANUP_INTERVAL_SECONDS
            )
            self._janitor.start()
        self._started = True
        logger.info(
            "lesson_engine_started",
            cache_backend=self._cache_store.backend_name,
            content_store=type(self._content_store).__name__,
        )

    async def shutdown(self) -> None:
        if self._janitor is not None:
            await self._janitor.stop()
            self._janitor = None
        if self._embedding_provider is not None:
            await self._embedding_provider.close()
        if self._cache_store is not None:
            await self._cache_store.close()
        self._started = False
        logger.info("lesson_engine_stopped")

    async def _build_content_store(self) -> IContentStore:
        if settings.CONTENT_STORE_BACKEND == "supabase":
            client = await create_supabase_client()
            return SupabaseContentRepository(client)
        units = load_curriculum_file(settings.CURRICULUM_JSON_PATH) if settings.CURRICULUM_JSON_PATH else []
        if not units:
            logger.warning("content_store_empty", backend="memory")
        return InMemoryContentRepository(units, embeddings_path=settings.CURRICULUM_EMBEDDINGS_PATH)

    def _require_started(self) -> None:
        if not self._started:
            raise RuntimeError("LessonEngineContainer.startup() must be awaited first.")

    @property
    def cache_store(self) -> ICacheStore:
        self._require_started()
        return self._cache_store

    @property
    def content_store(self) -> IContentStore:
        self._require_started()
        return self._content_store

    @property
    def cache_service(self) -> CacheService:
        if self._cache_service is None:
            self._cache_service = CacheService(
                self.cache_store, default_ttl_seconds=settings.CACHE_DEFAULT_TTL_SECONDS
            )
        return self._cache_service

    @property
    def embedding_provider(self) -> IEmbeddingProvider:
        if self._embedding_provider is None:
            self._embedding_provider = GeminiEmbeddingProvider(api_key=str(settings.GEMINI_API_KEY or ""))
        return self._embedding_provider

    @property
    def embedding_service(self) -> EmbeddingService:
        if self._embedding_service is None:
            self._embedding_service = EmbeddingService(
                provider=self.embedding_provider, cache=self.cache_service
            )
        return self._embedding_service

    @property
    def search_engine(self) -> SimilaritySearchEngine:
        if self._search_engine is None:
            self._search_engine = SimilaritySearchEngine(
                content_store=self.content_store, embedding_service=self.embedding_service
            )
        return self._search_engine

    @property
    def reranker(self) -> IReranker:
        if self._reranker is None:
            self._reranker = build_reranker(llm=self._llm)
        return self._reranker

    @property
    def retriever(self) -> HybridRetriever:
        if self._retriever is None:
            self._retriever = HybridRetriever(
                content_store=self.content_store,
                search_engine=self.search_engine,
                reranker=self.reranker,
            )
        return self._retriever

    @property
    def query_expander(self) -> QueryExpander:
        if self._query_expander is None:
            self._query_expander = QueryExpander(llm=self._llm, cache=self.cache_service)
        return self._query_expander

    @property
    def clarity_gate(self) -> ClarityGate:
        if self._clarity_gate is None:
            self._clarity_gate = ClarityGate(llm=self._llm)
        return self._clarity_gate

    @property
    def generator(self) -> ITextGenerator:
        if self._generator is None:
            self._generator = LangChainLessonGenerator(llm=self._llm)
        return self._generator

    @property
    def indexer(self) -> CurriculumIndexer:
        if self._indexer is None:
            self._indexer = CurriculumIndexer(
                content_store=self.content_store, embedding_service=self.embedding_service
            )
        return self._indexer

    @property
    def lesson_use_case(self) -> AutonomousLessonUseCase:
        if self._lesson_use_case is None:
            self._lesson_use_case = AutonomousLessonUseCase(
                content_store=self.content_store,
                retriever=self.retriever,
                expander=self.query_expander,
                gate=self.clarity_gate,
                generator=self.generator,
                prompt_builder=LessonPromptBuilder(),
            )
        return self._lesson_use_case
