from __future__ import annotations

import asyncio

import pytest

from lesson_engine.domain.exceptions import EmbeddingFailure
from lesson_engine.domain.interfaces.embedding_provider import IEmbeddingProvider
from lesson_engine.infrastructure.caching.cache_service import CacheService
from lesson_engine.infrastructure.caching.memory_store import InMemoryCacheStore
from lesson_engine.services.embedding_service import EmbeddingService


class _CountingProvider(IEmbeddingProvider):
    def __init__(self, dims: int = 3, delay: float = 0.0, fail: Exception | None = None):
        self.dims = dims
        self.delay = delay
        self.fail = fail
        self.calls: list[list[str]] = []

    @property
    def provider_name(self) -> str:
        return "fake"

    @property
    def model_name(self) -> str:
        return "fake-embed"

    @property
    def embedding_dimensions(self) -> int:
        return 3

    async def embed(self, texts, task="retrieval.document"):
        self.calls.append(list(texts))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail is not None:
            raise self.fail
        return [[float(len(t)), 1.0, 0.5][: self.dims] for t in texts]


def _service(provider: IEmbeddingProvider, ttl: int = 3600) -> EmbeddingService:
    return EmbeddingService(provider, CacheService(InMemoryCacheStore()), ttl_seconds=ttl, concurrency=2)


@pytest.mark.asyncio
async def test_repeated_text_hits_provider_once():
    provider = _CountingProvider()
    service = _service(provider)

    first = await service.embed_text("bucles en scratch")
    second = await service.embed_text("bucles en scratch")

    assert first == second
    assert len(provider.calls) == 1


@pytest.mark.asyncio
async def test_concurrent_identical_requests_share_one_provider_call():
    provider = _CountingProvider(delay=0.02)
    service = _service(provider)

    vectors = await asyncio.gather(*[service.embed_text("mismo texto") for _ in range(10)])

    assert len(provider.calls) == 1
    assert all(v == vectors[0] for v in vectors)


@pytest.mark.asyncio
async def test_query_and_document_embeddings_are_cached_separately():
    provider = _CountingProvider()
    service = _service(provider)

    await service.embed_text("ciclos")
    await service.embed_query("ciclos")

    assert len(provider.calls) == 2


@pytest.mark.asyncio
async def test_blank_text_is_rejected_before_any_call():
    provider = _CountingProvider()
    service = _service(provider)

    with pytest.raises(ValueError):
        await service.embed_text("   ")
    assert provider.calls == []


@pytest.mark.asyncio
async def test_wrong_dimension_raises_embedding_failure():
    provider = _CountingProvider(dims=2)
    service = _service(provider)

    with pytest.raises(EmbeddingFailure):
        await service.embed_text("texto")


@pytest.mark.asyncio
async def test_provider_transport_error_is_wrapped():
    provider = _CountingProvider(fail=RuntimeError("quota exceeded"))
    service = _service(provider)

    with pytest.raises(EmbeddingFailure) as exc_info:
        await service.embed_text("texto")
    assert "quota exceeded" in str(exc_info.value)
    assert exc_info.value.provider == "fake"


@pytest.mark.asyncio
async def test_embed_batch_only_sends_cache_misses():
    provider = _CountingProvider()
    service = _service(provider)
    await service.embed_text("uno")

    vectors = await service.embed_batch(["uno", "dos", "dos", "tres"])

    assert len(vectors) == 4
    assert provider.calls[-1] == ["dos", "tres"]
    assert vectors[1] == vectors[2]
