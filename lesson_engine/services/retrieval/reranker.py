from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import List, Optional

import structlog
from langchain_core.language_models.chat_models import BaseChatModel

from lesson_engine.core.llm import get_llm, response_to_text
from lesson_engine.core.settings import settings
from lesson_engine.core.utils.json_payload import extract_json_object
from lesson_engine.core.utils.text import content_terms, normalize_text, term_matches, tokenize
from lesson_engine.domain.schemas.curriculum import ResultSource, SearchResult

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RerankWeights:
    term_overlap: float
    exact_phrase_bonus: float
    keyword_source_prior: float
    proximity: float
    duplicate_topic_penalty: float

    @classmethod
    def from_settings(cls) -> "RerankWeights":
        return cls(
            term_overlap=float(settings.RERANK_TERM_OVERLAP_WEIGHT),
            exact_phrase_bonus=float(settings.RERANK_EXACT_PHRASE_BONUS),
            keyword_source_prior=float(settings.RERANK_KEYWORD_SOURCE_PRIOR),
            proximity=float(settings.RERANK_PROXIMITY_WEIGHT),
            duplicate_topic_penalty=float(settings.RERANK_DUPLICATE_TOPIC_PENALTY),
        )


class HeuristicReranker:
    """
    Tie-break and diversity re-ordering over the primary retrieval score.
    The primary `score` is left untouched; the adjusted value goes to `rerank_score`.
    """

    def __init__(self, weights: Optional[RerankWeights] = None):
        self.weights = weights or RerankWeights.from_settings()

    def base_score(self, query: str, item: SearchResult, anchor_week: Optional[int] = None) -> float:
        w = self.weights
        score = float(item.score)

        terms = content_terms(query)
        if terms:
            tokens = set(tokenize(item.text))
            overlap = sum(1 for term in terms if term_matches(term, tokens)) / len(terms)
            score += w.term_overlap * overlap

        phrase = normalize_text(query)
        if phrase and phrase in normalize_text(item.text):
            score += w.exact_phrase_bonus

        if item.source == ResultSource.KEYWORD:
            score += w.keyword_source_prior

        if anchor_week is not None:
            score += w.proximity / (1 + abs(item.week_id - anchor_week))

        return score

    def rerank_sync(
        self,
        query: str,
        candidates: List[SearchResult],
        limit: int,
        anchor_week: Optional[int] = None,
    ) -> List[SearchResult]:
        if limit <= 0 or not candidates:
            return []

        pool = [(idx, item, self.base_score(query, item, anchor_week)) for idx, item in enumerate(candidates)]
        selected: List[SearchResult] = []
        used_clusters: set[tuple[int, int]] = set()

        while pool and len(selected) < limit:
            best_pos = 0
            best_value = float("-inf")
            for pos, (_, item, base) in enumerate(pool):
                value = base - (
                    self.weights.duplicate_topic_penalty if item.topic_cluster in used_clusters else 0.0
                )
                if value > best_value:
                    best_value = value
                    best_pos = pos
            _, item, _ = pool.pop(best_pos)
            used_clusters.add(item.topic_cluster)
            selected.append(item.model_copy(update={"rerank_score": round(best_value, 6)}))

        return selected

    async def rerank(
        self,
        query: str,
        candidates: List[SearchResult],
        limit: int,
        anchor_week: Optional[int] = None,
    ) -> List[SearchResult]:
        return self.rerank_sync(query, candidates, limit, anchor_week)


RERANK_PROMPT = """Ordena los siguientes fragmentos del currículo según su relevancia para la consulta.

**CONSULTA:** "{query}"

**FRAGMENTOS:**
{items}

Responde SOLO con JSON: {{ "ranking": [índices del más relevante al menos relevante] }}"""


class LLMReranker:
    """Chat-model ordering of the top candidates, falling back to the heuristic reranker."""

    def __init__(
        self,
        llm: Optional[BaseChatModel] = None,
        fallback: Optional[HeuristicReranker] = None,
        batch_size: Optional[int] = None,
        timeout_ms: Optional[int] = None,
    ):
        self._llm = llm
        self.fallback = fallback or HeuristicReranker()
        self.batch_size = max(2, int(batch_size or settings.RERANK_LLM_BATCH_SIZE))
        self._timeout_ms = int(timeout_ms or settings.RERANK_LLM_TIMEOUT_MS)

    def _get_llm(self) -> BaseChatModel:
        if self._llm is None:
            self._llm = get_llm(capability="JUDGE", prefer_provider="groq")
        return self._llm

    async def _llm_order(self, query: str, window: List[SearchResult]) -> List[int]:
        items = "\n".join(f"[{idx}] {item.text[:400]}" for idx, item in enumerate(window))
        response = await asyncio.wait_for(
            self._get_llm().ainvoke(
                [{"role": "user", "content": RERANK_PROMPT.format(query=query, items=items)}]
            ),
            timeout=max(self._timeout_ms, 100) / 1000.0,
        )
        payload = extract_json_object(response_to_text(response))
        ranking = payload.get("ranking")
        if not isinstance(ranking, list):
            raise ValueError("rerank payload has no 'ranking' list")

        order: List[int] = []
        for raw in ranking:
            try:
                idx = int(raw)
            except (TypeError, ValueError):
                continue
            if 0 <= idx < len(window) and idx not in order:
                order.append(idx)
        if not order:
            raise ValueError("rerank payload has no usable indices")
        return order

    async def rerank(
        self,
        query: str,
        candidates: List[SearchResult],
        limit: int,
        anchor_week: Optional[int] = None,
    ) -> List[SearchResult]:
        if limit <= 0 or not candidates:
            return []
        # Heuristic pass first: it bounds the LLM window and fills unranked slots.
        baseline = self.fallback.rerank_sync(query, candidates, len(candidates), anchor_week)
        window = baseline[: self.batch_size]
        try:
            order = await self._llm_order(query, window)
        except Exception as exc:
            logger.warning("llm_rerank_failed_fallback_heuristic", error=str(exc))
            return baseline[:limit]

        ranked = [window[idx] for idx in order]
        ranked.extend(item for idx, item in enumerate(window) if idx not in order)
        ranked.extend(baseline[self.batch_size :])
        total = len(ranked)
        return [
            item.model_copy(update={"rerank_score": round(1.0 - pos / total, 6)})
            for pos, item in enumerate(ranked[:limit])
        ]


def build_reranker(mode: Optional[str] = None, llm: Optional[BaseChatModel] = None):
    selected = str(mode or settings.RERANK_MODE or "heuristic").strip().lower()
    if selected == "llm":
        return LLMReranker(llm=llm)
    return HeuristicReranker()
