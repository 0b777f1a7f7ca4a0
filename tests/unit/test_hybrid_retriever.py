import pytest

from lesson_engine.domain.retrieval.fusion import merge_keyword_and_semantic
from lesson_engine.domain.schemas.curriculum import ContentFilter, ResultSource, SearchResult
from lesson_engine.services.retrieval.hybrid_retriever import HybridRetriever


def _result(unit_id: str, score: float, source: ResultSource) -> SearchResult:
    week, day, activity = (int(part) for part in unit_id.split("-"))
    return SearchResult(
        unit_id=unit_id,
        text=f"unit {unit_id}",
        score=score,
        source=source,
        week_id=week,
        day_index=day,
        activity_index=activity,
    )


def test_keyword_entry_wins_over_semantic_entry_for_same_unit():
    keyword = [_result("2-1-0", 1.0, ResultSource.KEYWORD)]
    semantic = [
        _result("2-1-0", 0.97, ResultSource.SEMANTIC),
        _result("1-1-0", 0.4, ResultSource.SEMANTIC),
        _result("1-1-0", 0.6, ResultSource.SEMANTIC),
    ]

    merged = merge_keyword_and_semantic(keyword, semantic)

    assert [r.unit_id for r in merged] == ["2-1-0", "1-1-0"]
    assert merged[0].source == ResultSource.KEYWORD
    assert merged[0].score == 1.0
    assert merged[1].score == 0.6


@pytest.mark.asyncio
async def test_keyword_search_is_accent_and_case_insensitive(engine):
    results = await engine.retriever.keyword_search("REPETICION")

    assert {r.unit_id for r in results} == {"2-1-0", "2-1-1", "2-2-0"}
    assert all(r.score == 1.0 and r.source == ResultSource.KEYWORD for r in results)


@pytest.mark.asyncio
async def test_retrieve_merges_keyword_hits_ahead_of_semantic(engine):
    await engine.index()
    retriever = HybridRetriever(engine.store, engine.search, reranker=None, default_limit=5)

    results = await retriever.retrieve("ciclos")

    assert len(results) == 5
    assert [r.source for r in results[:3]] == [ResultSource.KEYWORD] * 3
    assert len({r.unit_id for r in results}) == 5
    assert all(r.source == ResultSource.SEMANTIC for r in results[3:])


@pytest.mark.asyncio
async def test_retrieve_reranks_when_candidates_exceed_limit(engine):
    await engine.index()

    results = await engine.retriever.retrieve("ciclos", limit=3)

    assert len(results) == 3
    assert all(r.rerank_score is not None for r in results)
    assert results[0].source == ResultSource.KEYWORD


@pytest.mark.asyncio
async def test_embedding_outage_degrades_to_keyword_only(engine):
    engine.provider.failing = True
    errors: list[str] = []

    results = await engine.retriever.retrieve("ciclos", errors=errors)

    assert {r.unit_id for r in results} == {"2-1-0", "2-1-1", "2-2-0"}
    assert len(errors) == 1
    assert errors[0].startswith("embedding:")


@pytest.mark.asyncio
async def test_filters_apply_to_keyword_and_semantic_paths(engine):
    await engine.index()

    results = await engine.retriever.retrieve("ciclos", filters=ContentFilter(week_ids=[1, 3]), limit=10)

    assert results
    assert {r.week_id for r in results} <= {1, 3}
    assert all(r.source == ResultSource.SEMANTIC for r in results)


@pytest.mark.asyncio
async def test_retrieve_many_keeps_first_occurrence_in_query_order(engine):
    await engine.index()
    retriever = HybridRetriever(engine.store, engine.search, reranker=None, default_limit=2)

    results = await retriever.retrieve_many(["condicionales", "ciclos", "condicionales"])

    ids = [r.unit_id for r in results]
    assert len(ids) == len(set(ids))
    assert ids[:2] == ["3-1-0", "3-1-1"]
    assert {r.week_id for r in results[2:]} == {2}


@pytest.mark.asyncio
async def test_blank_query_or_zero_limit_returns_nothing(engine):
    assert await engine.retriever.retrieve("   ") == []
    assert await engine.retriever.retrieve("ciclos", limit=0) == []
