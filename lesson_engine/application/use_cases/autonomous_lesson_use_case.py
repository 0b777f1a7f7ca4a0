from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import List, Optional

import structlog
from structlog.contextvars import bound_contextvars

from lesson_engine.application.services.lesson_parser import parse_generation_response
from lesson_engine.application.services.lesson_prompt_builder import LessonPromptBuilder
from lesson_engine.core.observability.correlation import set_correlation_id
from lesson_engine.core.settings import settings
from lesson_engine.domain.exceptions import GenerationFailure, LowConfidenceError
from lesson_engine.domain.interfaces.content_store import IContentStore
from lesson_engine.domain.retrieval.fusion import merge_first_seen
from lesson_engine.domain.retrieval.ports import (
    IClarityGate,
    IQueryExpander,
    IRetriever,
    ITextGenerator,
)
from lesson_engine.domain.schemas.curriculum import SearchResult
from lesson_engine.domain.schemas.orchestration import (
    ContextProvenance,
    GenerationFeatures,
    GenerationMetadata,
    GenerationOptions,
    LessonArtifact,
    LessonRequest,
    OrchestrationState,
    ParsedLesson,
    RetryState,
    UnparsedLesson,
)
from lesson_engine.services.knowledge.curriculum_context import build_prompt_context
from lesson_engine.services.retrieval.query_expander import dedupe_queries

logger = structlog.get_logger(__name__)


@dataclass
class _RunState:
    topic: str
    retry: RetryState
    queries: List[str]
    context: List[SearchResult] = field(default_factory=list)
    trace: List[OrchestrationState] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    gate_checks: int = 0
    gate_passed: bool = False
    final_gate_score: Optional[float] = None

    def enter(self, state: OrchestrationState) -> None:
        self.trace.append(state)

    def context_texts(self) -> List[str]:
        return [item.text for item in self.context]


class AutonomousLessonUseCase:
    """
    Retrieve -> gate -> (expand and retry) -> generate.

    The clarity gate is consulted at most `max_retries` times; each rejection
    expands the topic and re-retrieves with the cumulative query set. When the
    gate never passes, or the deadline expires, generation proceeds with the
    best context collected so far. A failed generation is retried once with
    optional features disabled; only a second failure reaches the caller.
    """

    def __init__(
        self,
        content_store: IContentStore,
        retriever: IRetriever,
        expander: IQueryExpander,
        gate: IClarityGate,
        generator: ITextGenerator,
        prompt_builder: Optional[LessonPromptBuilder] = None,
        max_retries: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
        generation_timeout_seconds: Optional[float] = None,
        use_llm_expansion: Optional[bool] = None,
        retrieval_limit: Optional[int] = None,
    ):
        self.content_store = content_store
        self.retriever = retriever
        self.expander = expander
        self.gate = gate
        self.generator = generator
        self.prompt_builder = prompt_builder or LessonPromptBuilder()
        self.max_retries = max(
            0, int(settings.ORCHESTRATOR_MAX_RETRIES if max_retries is None else max_retries)
        )
        self.timeout_seconds = float(timeout_seconds or settings.ORCHESTRATOR_TIMEOUT_SECONDS)
        self.generation_timeout_seconds = float(
            generation_timeout_seconds or settings.GENERATION_TIMEOUT_SECONDS
        )
        self.use_llm_expansion = (
            settings.ORCHESTRATOR_USE_LLM_EXPANSION if use_llm_expansion is None else use_llm_expansion
        )
        self.retrieval_limit = int(retrieval_limit or settings.RETRIEVAL_DEFAULT_LIMIT)

    async def _resolve_topic(self, request: LessonRequest) -> str:
        topic = str(request.topic or "").strip()
        if topic:
            return topic
        if request.week_id is None or request.day_index is None:
            raise ValueError("LessonRequest needs a topic or a (week_id, day_index) coordinate.")
        unit = await self.content_store.get_content_unit(
            request.week_id, request.day_index, request.activity_index
        )
        if unit is None or not unit.text.strip():
            raise ValueError(
                f"No content unit at week={request.week_id} day={request.day_index} "
                f"activity={request.activity_index}; pass an explicit topic."
            )
        return unit.text.strip()

    async def _clarity_loop(self, run: _RunState, request: LessonRequest) -> None:
        run.enter(OrchestrationState.RETRIEVE)
        run.context = await self.retriever.retrieve_many(
            run.queries, filters=request.filters, limit=self.retrieval_limit, errors=run.errors
        )

        while not run.retry.exhausted and not run.gate_passed:
            run.enter(OrchestrationState.GATE_CHECK)
            run.gate_checks += 1
            try:
                verdict = await self.gate.check_relevance(run.topic, run.context_texts())
                run.gate_passed = True
                run.final_gate_score = verdict.score
                logger.info(
                    "clarity_check_passed", attempt=run.retry.attempt + 1, score=verdict.score
                )
            except LowConfidenceError as exc:
                run.retry.last_error = exc
                run.final_gate_score = exc.score
                logger.warning(
                    "clarity_check_failed_retrying",
                    attempt=run.retry.attempt + 1,
                    score=exc.score,
                    reasoning=exc.verdict.reasoning,
                )
                run.enter(OrchestrationState.EXPAND_AND_RETRY)
                # First retry stays local; LLM paraphrases are reserved for later rounds.
                use_llm = self.use_llm_expansion and run.retry.attempt > 0
                expansions = await self.expander.expand(run.topic, use_llm=use_llm)
                run.queries = dedupe_queries(run.topic, [*run.queries[1:], *expansions[1:]])
                additional = await self.retriever.retrieve_many(
                    run.queries, filters=request.filters, limit=self.retrieval_limit, errors=run.errors
                )
                run.context = merge_first_seen([run.context, additional])
                run.retry.attempt += 1

    async def _generate_once(
        self,
        run: _RunState,
        request: LessonRequest,
        features: GenerationFeatures,
        curriculum_context: str,
    ) -> str:
        prompt = self.prompt_builder.build(
            run.topic,
            run.context_texts(),
            features,
            difficulty=request.difficulty,
            curriculum_context=curriculum_context,
        )
        options = GenerationOptions(
            system_prompt=prompt.system,
            timeout_seconds=self.generation_timeout_seconds,
            features=features,
        )
        try:
            return await asyncio.wait_for(
                self.generator.generate(prompt.user, options),
                timeout=self.generation_timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise GenerationFailure(
                f"generation timed out after {self.generation_timeout_seconds}s"
            ) from exc
        except GenerationFailure:
            raise
        except Exception as exc:
            raise GenerationFailure(f"generation provider error: {exc}") from exc

    async def execute(self, request: LessonRequest) -> LessonArtifact:
        started = time.perf_counter()
        correlation_id = set_correlation_id()
        with bound_contextvars(
            correlation_id=correlation_id, week_id=request.week_id, day_index=request.day_index
        ):
            return await self._execute(request, started)

    async def _execute(self, request: LessonRequest, started: float) -> LessonArtifact:
        topic = await self._resolve_topic(request)
        run = _RunState(
            topic=topic,
            retry=RetryState(max_attempts=self.max_retries),
            queries=[topic],
            trace=[OrchestrationState.INIT],
        )
        logger.info("autonomous_lesson_started", topic=topic[:120], max_retries=self.max_retries)

        deadline_exceeded = False
        timeout = float(request.timeout_seconds or self.timeout_seconds)
        try:
            await asyncio.wait_for(self._clarity_loop(run, request), timeout=timeout)
        except asyncio.TimeoutError:
            deadline_exceeded = True
            logger.warning(
                "clarity_loop_deadline_exceeded",
                timeout_seconds=timeout,
                attempts=run.retry.attempt,
                context_size=len(run.context),
            )

        if not run.gate_passed:
            logger.warning(
                "clarity_retries_exhausted_best_effort",
                attempts=run.retry.attempt,
                gate_checks=run.gate_checks,
                context_size=len(run.context),
            )

        if run.gate_passed:
            provenance = ContextProvenance.VALIDATED
        elif run.context:
            provenance = ContextProvenance.BEST_EFFORT
        else:
            provenance = ContextProvenance.FALLBACK_PROMPT

        curriculum_context = ""
        if request.week_id is not None and request.day_index is not None:
            curriculum_context = await build_prompt_context(
                self.content_store, request.week_id, request.day_index, request.activity_index
            )

        run.enter(OrchestrationState.GENERATE)
        features = GenerationFeatures()
        features_degraded = False
        try:
            raw = await self._generate_once(run, request, features, curriculum_context)
        except GenerationFailure as first:
            logger.warning("lesson_generation_failed_degrading", error=str(first))
            features = GenerationFeatures.minimal()
            features_degraded = True
            try:
                raw = await self._generate_once(run, request, features, curriculum_context)
            except GenerationFailure as second:
                logger.error("lesson_generation_failed", error=str(second), exc_info=True)
                raise

        result = parse_generation_response(raw, expect_json=features.structured_output)
        if isinstance(result, ParsedLesson):
            content = result.data
            parse_ok = True
        elif isinstance(result, UnparsedLesson):
            content = None
            parse_ok = False
            if features.structured_output:
                logger.warning("lesson_output_unparsed", error=result.error)
        else:
            raise TypeError(f"unexpected generation result {type(result).__name__}")

        degraded = features_degraded or not run.gate_passed
        run.enter(OrchestrationState.DEGRADED_DONE if degraded else OrchestrationState.DONE)

        metadata = GenerationMetadata(
            topic=topic,
            attempts=run.retry.attempt,
            gate_checks=run.gate_checks,
            final_gate_score=run.final_gate_score,
            gate_passed=run.gate_passed,
            retries_exhausted=not run.gate_passed and run.retry.exhausted,
            deadline_exceeded=deadline_exceeded,
            features_degraded=features_degraded,
            parse_ok=parse_ok,
            provenance=provenance,
            context_size=len(run.context),
            expanded_queries=list(run.queries),
            state_trace=list(run.trace),
            retrieval_errors=list(run.errors),
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )
        logger.info(
            "autonomous_lesson_completed",
            state=run.trace[-1].value,
            gate_passed=run.gate_passed,
            attempts=run.retry.attempt,
            provenance=provenance.value,
            duration_ms=metadata.duration_ms,
        )
        return LessonArtifact(content=content, raw_text=raw, metadata=metadata)
