from types import SimpleNamespace

import pytest

from lesson_engine.domain.schemas.curriculum import ResultSource, SearchResult
from lesson_engine.services.retrieval.reranker import (
    HeuristicReranker,
    LLMReranker,
    RerankWeights,
    build_reranker,
)


def _weights(**overrides) -> RerankWeights:
    values = dict(
        term_overlap=0.1,
        exact_phrase_bonus=0.5,
        keyword_source_prior=0.2,
        proximity=0.1,
        duplicate_topic_penalty=0.3,
    )
    values.update(overrides)
    return RerankWeights(**values)


def _item(unit_id: str, text: str, score: float, source=ResultSource.SEMANTIC) -> SearchResult:
    week, day, activity = (int(part) for part in unit_id.split("-"))
    return SearchResult(
        unit_id=unit_id,
        text=text,
        score=score,
        source=source,
        week_id=week,
        day_index=day,
        activity_index=activity,
    )


class _FakeLLM:
    def __init__(self, content: str = "", fail: Exception | None = None):
        self.content = content
        self.fail = fail

    async def ainvoke(self, messages):
        if self.fail is not None:
            raise self.fail
        return SimpleNamespace(content=self.content)


def test_primary_score_is_preserved_and_rerank_score_is_set():
    reranker = HeuristicReranker(_weights())
    candidates = [
        _item("1-1-0", "mover el gato", 0.8),
        _item("2-1-0", "ciclos para dibujar", 0.7),
    ]

    ranked = reranker.rerank_sync("ciclos", candidates, limit=2)

    assert [r.unit_id for r in ranked] == ["2-1-0", "1-1-0"]
    assert ranked[0].score == 0.7
    assert ranked[0].rerank_score == pytest.approx(0.7 + 0.1 + 0.5)
    assert candidates[0].rerank_score is None


def test_duplicate_topic_cluster_is_penalized():
    reranker = HeuristicReranker(_weights(term_overlap=0.0, exact_phrase_bonus=0.0))
    candidates = [
        _item("2-1-0", "a", 0.9),
        _item("2-1-1", "b", 0.85),
        _item("3-1-0", "c", 0.7),
    ]

    ranked = reranker.rerank_sync("x", candidates, limit=3)

    assert [r.unit_id for r in ranked] == ["2-1-0", "3-1-0", "2-1-1"]
    assert ranked[2].rerank_score == pytest.approx(0.85 - 0.3)


def test_keyword_source_prior_breaks_ties():
    reranker = HeuristicReranker(_weights(term_overlap=0.0, exact_phrase_bonus=0.0))
    candidates = [
        _item("1-1-0", "a", 0.6),
        _item("2-1-0", "b", 0.6, source=ResultSource.KEYWORD),
    ]

    ranked = reranker.rerank_sync("x", candidates, limit=1)

    assert [r.unit_id for r in ranked] == ["2-1-0"]


def test_anchor_week_favors_nearby_weeks():
    reranker = HeuristicReranker(_weights(term_overlap=0.0, exact_phrase_bonus=0.0, proximity=0.2))
    candidates = [_item("1-1-0", "a", 0.5), _item("5-1-0", "b", 0.5)]

    ranked = reranker.rerank_sync("x", candidates, limit=2, anchor_week=5)

    assert ranked[0].unit_id == "5-1-0"


@pytest.mark.asyncio
async def test_llm_reranker_uses_model_order():
    llm = _FakeLLM('{"ranking": [1, 0]}')
    reranker = LLMReranker(llm=llm, fallback=HeuristicReranker(_weights()), batch_size=5)
    candidates = [_item("1-1-0", "gato", 0.9), _item("2-1-0", "ciclos", 0.8)]

    ranked = await reranker.rerank("gato", candidates, limit=2)

    assert [r.unit_id for r in ranked] == ["2-1-0", "1-1-0"]
    assert ranked[0].rerank_score == 1.0
    assert ranked[1].rerank_score == 0.5


@pytest.mark.parametrize(
    "llm",
    [_FakeLLM("sin json"), _FakeLLM('{"ranking": [7, 9]}'), _FakeLLM(fail=RuntimeError("down"))],
)
@pytest.mark.asyncio
async def test_llm_reranker_falls_back_to_heuristic(llm):
    fallback = HeuristicReranker(_weights())
    reranker = LLMReranker(llm=llm, fallback=fallback, batch_size=5)
    candidates = [_item("1-1-0", "gato", 0.9), _item("2-1-0", "ciclos", 0.8)]

    ranked = await reranker.rerank("ciclos", candidates, limit=1)

    assert [r.unit_id for r in ranked] == [fallback.rerank_sync("ciclos", candidates, 1)[0].unit_id]


def test_build_reranker_selects_mode():
    assert isinstance(build_reranker("heuristic"), HeuristicReranker)
    assert isinstance(build_reranker("LLM", llm=_FakeLLM()), LLMReranker)
