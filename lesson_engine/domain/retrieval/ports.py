from __future__ import annotations

from typing import List, Optional, Protocol, Sequence

from lesson_engine.domain.schemas.curriculum import ContentFilter, SearchResult
from lesson_engine.domain.schemas.orchestration import GateVerdict, GenerationOptions


class IRetriever(Protocol):
    async def retrieve(
        self,
        query: str,
        filters: Optional[ContentFilter] = None,
        limit: Optional[int] = None,
        errors: Optional[List[str]] = None,
    ) -> List[SearchResult]: ...

    async def retrieve_many(
        self,
        queries: Sequence[str],
        filters: Optional[ContentFilter] = None,
        limit: Optional[int] = None,
        errors: Optional[List[str]] = None,
    ) -> List[SearchResult]: ...


class IQueryExpander(Protocol):
    async def expand(self, query: str, use_llm: bool = True) -> List[str]: ...


class IClarityGate(Protocol):
    async def evaluate(self, query: str, context_chunks: Sequence[str]) -> GateVerdict: ...
    async def check_relevance(self, query: str, context_chunks: Sequence[str]) -> GateVerdict: ...


class IReranker(Protocol):
    async def rerank(
        self,
        query: str,
        candidates: List[SearchResult],
        limit: int,
        anchor_week: Optional[int] = None,
    ) -> List[SearchResult]: ...


class ITextGenerator(Protocol):
    async def generate(self, prompt: str, options: GenerationOptions) -> str: ...
