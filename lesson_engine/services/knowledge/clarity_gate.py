from __future__ import annotations

import asyncio
from typing import Optional, Sequence

import structlog
from langchain_core.language_models.chat_models import BaseChatModel

from lesson_engine.core.llm import get_llm, response_to_text
from lesson_engine.core.settings import settings
from lesson_engine.core.utils.json_payload import extract_json_object
from lesson_engine.core.utils.text import content_terms, term_matches, tokenize
from lesson_engine.domain.exceptions import LowConfidenceError
from lesson_engine.domain.schemas.orchestration import GateVerdict

logger = structlog.get_logger(__name__)

JUDGE_SYSTEM_PROMPT = (
    "You are a relevance evaluator. Respond with JSON containing relevance_score and reasoning."
)

JUDGE_PROMPT = """Evalúa si el contexto recuperado es suficiente y pertinente para preparar una lección sobre el tema indicado.

**TEMA:** "{query}"

**CONTEXTO RECUPERADO:**
{context}

Responde SOLO con JSON: {{ "relevance_score": número entre 0 y 1, "reasoning": "explicación breve" }}"""


class ClarityGate:
    """
    Accept/reject decision on retrieved context.

    Heuristic mode scores the fraction of the query's content terms found in
    the context. LLM mode asks a judge model and falls back to the heuristic
    verdict when the judge is unavailable or unparseable.
    """

    def __init__(
        self,
        threshold: Optional[float] = None,
        mode: Optional[str] = None,
        llm: Optional[BaseChatModel] = None,
        min_context_chars: Optional[int] = None,
        max_context_chars: Optional[int] = None,
        timeout_ms: Optional[int] = None,
    ):
        raw_threshold = settings.CLARITY_GATE_THRESHOLD if threshold is None else threshold
        self.threshold = max(0.0, min(1.0, float(raw_threshold)))
        self.mode = str(mode or settings.CLARITY_GATE_MODE or "heuristic").strip().lower()
        self._llm = llm
        self.min_context_chars = int(
            settings.CLARITY_GATE_MIN_CONTEXT_CHARS if min_context_chars is None else min_context_chars
        )
        self.max_context_chars = int(max_context_chars or settings.CLARITY_GATE_MAX_CONTEXT_CHARS)
        self._timeout_ms = int(timeout_ms or settings.CLARITY_GATE_TIMEOUT_MS)

    def heuristic_verdict(self, query: str, context: str) -> GateVerdict:
        terms = content_terms(query)
        if not terms:
            return GateVerdict(passed=True, score=1.0, reasoning="query has no content terms")
        tokens = set(tokenize(context))
        matched = [term for term in terms if term_matches(term, tokens)]
        score = round(len(matched) / len(terms), 4)
        missing = [term for term in terms if term not in matched]
        reasoning = f"{len(matched)}/{len(terms)} query terms found in context"
        if missing:
            reasoning += f" (missing: {', '.join(missing[:5])})"
        return GateVerdict(passed=score >= self.threshold, score=score, reasoning=reasoning)

    def _get_llm(self) -> BaseChatModel:
        if self._llm is None:
            self._llm = get_llm(capability="JUDGE", prefer_provider="groq")
        return self._llm

    async def _judge_verdict(self, query: str, context: str) -> GateVerdict:
        snippet = context[: self.max_context_chars]
        if len(context) > self.max_context_chars:
            snippet += " ... (truncated)"
        response = await asyncio.wait_for(
            self._get_llm().ainvoke(
                [
                    {"role": "system", "content": JUDGE_SYSTEM_PROMPT},
                    {"role": "user", "content": JUDGE_PROMPT.format(query=query, context=snippet)},
                ]
            ),
            timeout=max(self._timeout_ms, 100) / 1000.0,
        )
        payload = extract_json_object(response_to_text(response))
        score = max(0.0, min(1.0, float(payload["relevance_score"])))
        reasoning = str(payload.get("reasoning") or "").strip() or "judge gave no reasoning"
        return GateVerdict(passed=score >= self.threshold, score=score, reasoning=reasoning)

    async def evaluate(self, query: str, context_chunks: Sequence[str]) -> GateVerdict:
        context = "\n\n".join(chunk for chunk in context_chunks if chunk)
        if len(context.strip()) < self.min_context_chars:
            verdict = GateVerdict(passed=False, score=0.0, reasoning="empty context")
            logger.warning("clarity_gate_empty_context", query=query[:120])
            return verdict

        verdict: Optional[GateVerdict] = None
        if self.mode == "llm":
            try:
                verdict = await self._judge_verdict(query, context)
            except Exception as exc:
                logger.warning("clarity_gate_judge_failed_fallback_heuristic", error=str(exc))
        if verdict is None:
            verdict = self.heuristic_verdict(query, context)

        logger.info(
            "clarity_gate_verdict",
            mode=self.mode,
            passed=verdict.passed,
            score=verdict.score,
            threshold=self.threshold,
            reasoning=verdict.reasoning,
        )
        return verdict

    async def check_relevance(self, query: str, context_chunks: Sequence[str]) -> GateVerdict:
        """Same as evaluate(), but raises LowConfidenceError when the context is rejected."""
        verdict = await self.evaluate(query, context_chunks)
        if not verdict.passed:
            raise LowConfidenceError(verdict)
        return verdict
