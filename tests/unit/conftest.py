from __future__ import annotations

from typing import List

import pytest

from lesson_engine.core.utils.text import tokenize
from lesson_engine.domain.exceptions import EmbeddingFailure
from lesson_engine.domain.interfaces.embedding_provider import IEmbeddingProvider
from lesson_engine.domain.schemas.curriculum import ContentUnit
from lesson_engine.infrastructure.caching.cache_service import CacheService
from lesson_engine.infrastructure.caching.memory_store import InMemoryCacheStore
from lesson_engine.infrastructure.repositories.in_memory_content_repository import (
    InMemoryContentRepository,
)
from lesson_engine.services.embedding_service import EmbeddingService
from lesson_engine.services.indexing.curriculum_indexer import CurriculumIndexer
from lesson_engine.services.retrieval.hybrid_retriever import HybridRetriever
from lesson_engine.services.retrieval.reranker import HeuristicReranker
from lesson_engine.services.retrieval.similarity_search import SimilaritySearchEngine

VOCAB = [
    "scratch",
    "evento",
    "secuencia",
    "instruccion",
    "ciclo",
    "repetir",
    "bucle",
    "condicion",
    "variable",
    "dibujar",
    "gato",
    "juego",
]


class BagOfWordsProvider(IEmbeddingProvider):
    """Deterministic embeddings: one dimension per vocabulary stem plus a small bias dimension."""

    def __init__(self):
        self.calls: List[List[str]] = []
        self.failing = False

    @property
    def provider_name(self) -> str:
        return "bow"

    @property
    def model_name(self) -> str:
        return "bow-v1"

    @property
    def embedding_dimensions(self) -> int:
        return len(VOCAB) + 1

    async def embed(self, texts, task="retrieval.document"):
        self.calls.append(list(texts))
        if self.failing:
            raise EmbeddingFailure("provider down", provider=self.provider_name, status=503)
        vectors = []
        for text in texts:
            tokens = tokenize(text)
            vector = [float(sum(1 for tok in tokens if tok.startswith(stem))) for stem in VOCAB]
            vector.append(0.1)
            vectors.append(vector)
        return vectors


def sample_units() -> List[ContentUnit]:
    rows = [
        (1, 1, "Introducción a Scratch", "Bloques y eventos", "Eventos", [
            "Explorar la interfaz de Scratch",
            "Mover el gato con eventos",
        ]),
        (1, 2, "Introducción a Scratch", "Bloques y eventos", "Secuencias", [
            "Ordenar instrucciones paso a paso",
            "Crear una secuencia de movimientos",
        ]),
        (2, 1, "Ciclos y repetición", "Ciclos", "Repetir bloques", [
            "Usar el bloque repetir para dibujar un cuadrado",
            "Animar un personaje con un ciclo infinito",
        ]),
        (2, 2, "Ciclos y repetición", "Ciclos", "Ciclos anidados", [
            "Dibujar patrones con ciclos anidados",
        ]),
        (3, 1, "Decisiones", "Condicionales", "Si entonces", [
            "Hacer que el gato responda si toca el borde",
            "Crear un juego de preguntas con condiciones",
        ]),
        (3, 2, "Decisiones", "Condicionales", "Variables", [
            "Guardar la puntuación del juego en una variable",
        ]),
    ]
    units: List[ContentUnit] = []
    for week, day, title, topic, concept, activities in rows:
        for idx, text in enumerate(activities):
            units.append(
                ContentUnit(
                    week_id=week,
                    day_index=day,
                    activity_index=idx,
                    text=text,
                    week_title=title,
                    topic=topic,
                    day_concept=concept,
                )
            )
    return units


class Engine:
    def __init__(self, units: List[ContentUnit]):
        self.provider = BagOfWordsProvider()
        self.cache = CacheService(InMemoryCacheStore(), default_ttl_seconds=3600)
        self.store = InMemoryContentRepository(units)
        self.embeddings = EmbeddingService(self.provider, self.cache, ttl_seconds=3600, concurrency=4)
        self.search = SimilaritySearchEngine(self.store, self.embeddings, max_unfiltered_scan=5000)
        self.retriever = HybridRetriever(
            self.store, self.search, reranker=HeuristicReranker(), default_limit=5, semantic_overfetch=2
        )
        self.indexer = CurriculumIndexer(self.store, self.embeddings, batch_size=10, batch_delay_seconds=0)

    async def index(self):
        return await self.indexer.index_curriculum()


@pytest.fixture
def units() -> List[ContentUnit]:
    return sample_units()


@pytest.fixture
def engine(units) -> Engine:
    return Engine(units)


@pytest.fixture
def empty_engine() -> Engine:
    return Engine([])
