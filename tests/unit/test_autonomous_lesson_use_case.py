from __future__ import annotations

import asyncio
import json

import pytest

from lesson_engine.application.services.lesson_prompt_builder import FALLBACK_NOTICE
from lesson_engine.application.use_cases.autonomous_lesson_use_case import AutonomousLessonUseCase
from lesson_engine.domain.exceptions import GenerationFailure, LowConfidenceError
from lesson_engine.domain.schemas.orchestration import (
    ContextProvenance,
    GateVerdict,
    LessonRequest,
    OrchestrationState,
)
from lesson_engine.infrastructure.caching.cache_service import CacheService
from lesson_engine.infrastructure.caching.memory_store import InMemoryCacheStore
from lesson_engine.services.knowledge.clarity_gate import ClarityGate
from lesson_engine.services.retrieval.query_expander import QueryExpander

LESSON_JSON = json.dumps({"titulo": "Ciclos", "objetivo": "Repetir acciones", "quiz": []})


class _ScriptedGate:
    def __init__(self, script: list[bool]):
        self.script = list(script)
        self.contexts: list[list[str]] = []

    async def evaluate(self, query, context_chunks):
        passed = self.script.pop(0) if self.script else False
        return GateVerdict(
            passed=passed, score=0.9 if passed else 0.1, reasoning="ok" if passed else "poco contexto"
        )

    async def check_relevance(self, query, context_chunks):
        self.contexts.append(list(context_chunks))
        verdict = await self.evaluate(query, context_chunks)
        if not verdict.passed:
            raise LowConfidenceError(verdict)
        return verdict


class _ScriptedGenerator:
    def __init__(self, outputs: list):
        self.outputs = list(outputs)
        self.calls: list[tuple[str, object]] = []

    async def generate(self, prompt, options):
        self.calls.append((prompt, options))
        outcome = self.outputs.pop(0) if self.outputs else LESSON_JSON
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class _RecordingExpander:
    def __init__(self, delay: float = 0.0):
        self.delay = delay
        self.use_llm_calls: list[bool] = []

    async def expand(self, query, use_llm=True):
        self.use_llm_calls.append(use_llm)
        if self.delay:
            await asyncio.sleep(self.delay)
        return [query, f"{query} variante {len(self.use_llm_calls)}"]


def _use_case(engine, gate, generator, expander=None, **overrides) -> AutonomousLessonUseCase:
    params = dict(
        max_retries=2,
        timeout_seconds=10,
        generation_timeout_seconds=5,
        use_llm_expansion=False,
        retrieval_limit=5,
    )
    params.update(overrides)
    return AutonomousLessonUseCase(
        content_store=engine.store,
        retriever=engine.retriever,
        expander=expander or QueryExpander(),
        gate=gate,
        generator=generator,
        **params,
    )


@pytest.mark.asyncio
async def test_gate_pass_on_first_check_generates_validated_lesson(engine):
    await engine.index()
    use_case = _use_case(engine, _ScriptedGate([True]), _ScriptedGenerator([LESSON_JSON]))

    artifact = await use_case.execute(LessonRequest(topic="ciclos"))

    meta = artifact.metadata
    assert artifact.content["titulo"] == "Ciclos"
    assert meta.gate_passed
    assert meta.gate_checks == 1
    assert meta.attempts == 0
    assert meta.provenance == ContextProvenance.VALIDATED
    assert meta.state_trace == [
        OrchestrationState.INIT,
        OrchestrationState.RETRIEVE,
        OrchestrationState.GATE_CHECK,
        OrchestrationState.GENERATE,
        OrchestrationState.DONE,
    ]
    assert not artifact.degraded


@pytest.mark.parametrize("max_retries", [1, 2, 3])
@pytest.mark.asyncio
async def test_gate_is_consulted_exactly_max_retries_times(engine, max_retries):
    await engine.index()
    gate = _ScriptedGate([])
    generator = _ScriptedGenerator([LESSON_JSON])
    use_case = _use_case(engine, gate, generator, max_retries=max_retries)

    artifact = await use_case.execute(LessonRequest(topic="ciclos"))

    meta = artifact.metadata
    assert len(gate.contexts) == max_retries
    assert meta.gate_checks == max_retries
    assert meta.attempts == max_retries
    assert meta.retries_exhausted
    assert meta.provenance == ContextProvenance.BEST_EFFORT
    assert meta.state_trace[-1] == OrchestrationState.DEGRADED_DONE
    assert artifact.raw_text == LESSON_JSON
    assert len(generator.calls) == 1


@pytest.mark.asyncio
async def test_rejected_bucles_query_is_expanded_to_ciclos_content(engine):
    await engine.index()
    gate = _ScriptedGate([False, True])
    use_case = _use_case(engine, gate, _ScriptedGenerator([LESSON_JSON]))

    artifact = await use_case.execute(LessonRequest(topic="bucles"))

    meta = artifact.metadata
    assert meta.expanded_queries[0] == "bucles"
    assert "ciclos" in meta.expanded_queries
    assert meta.gate_passed
    assert meta.attempts == 1
    assert meta.provenance == ContextProvenance.VALIDATED
    second_context = "\n".join(gate.contexts[1])
    assert "Ciclos anidados" in second_context
    assert len(gate.contexts[1]) >= len(gate.contexts[0])
    assert gate.contexts[1][: len(gate.contexts[0])] == gate.contexts[0]


@pytest.mark.asyncio
async def test_empty_store_generates_from_fallback_prompt(empty_engine):
    generator = _ScriptedGenerator([LESSON_JSON])
    gate = ClarityGate(threshold=0.5, mode="heuristic")
    use_case = _use_case(empty_engine, gate, generator)

    artifact = await use_case.execute(LessonRequest(topic="fotosíntesis"))

    meta = artifact.metadata
    assert meta.gate_checks == 2
    assert meta.attempts == 2
    assert meta.retries_exhausted
    assert meta.final_gate_score == 0.0
    assert meta.context_size == 0
    assert meta.provenance == ContextProvenance.FALLBACK_PROMPT
    assert meta.state_trace[-1] == OrchestrationState.DEGRADED_DONE
    assert FALLBACK_NOTICE in generator.calls[0][0]
    assert artifact.content is not None


@pytest.mark.asyncio
async def test_llm_expansion_is_reserved_for_later_retries(engine):
    await engine.index()
    expander = _RecordingExpander()
    use_case = _use_case(
        engine, _ScriptedGate([]), _ScriptedGenerator([]), expander=expander,
        max_retries=3, use_llm_expansion=True,
    )

    artifact = await use_case.execute(LessonRequest(topic="ciclos"))

    assert expander.use_llm_calls == [False, True, True]
    assert artifact.metadata.expanded_queries == [
        "ciclos", "ciclos variante 1", "ciclos variante 2", "ciclos variante 3"
    ]


@pytest.mark.asyncio
async def test_generation_failure_is_retried_once_without_optional_features(engine):
    await engine.index()
    generator = _ScriptedGenerator([RuntimeError("503 overloaded"), "Lección en texto plano"])
    use_case = _use_case(engine, _ScriptedGate([True]), generator)

    artifact = await use_case.execute(LessonRequest(topic="ciclos"))

    meta = artifact.metadata
    first_options = generator.calls[0][1]
    second_options = generator.calls[1][1]
    assert first_options.features.structured_output
    assert not second_options.features.structured_output
    assert not second_options.features.storytelling
    assert not second_options.features.include_quiz
    assert meta.features_degraded
    assert not meta.parse_ok
    assert artifact.content is None
    assert artifact.raw_text == "Lección en texto plano"
    assert meta.state_trace[-1] == OrchestrationState.DEGRADED_DONE


@pytest.mark.asyncio
async def test_second_generation_failure_propagates(engine):
    await engine.index()
    generator = _ScriptedGenerator([RuntimeError("down"), RuntimeError("still down")])
    use_case = _use_case(engine, _ScriptedGate([True]), generator)

    with pytest.raises(GenerationFailure):
        await use_case.execute(LessonRequest(topic="ciclos"))
    assert len(generator.calls) == 2


@pytest.mark.asyncio
async def test_generation_timeout_counts_as_failure(engine):
    await engine.index()

    class _SlowGenerator(_ScriptedGenerator):
        async def generate(self, prompt, options):
            self.calls.append((prompt, options))
            await asyncio.sleep(1)
            return LESSON_JSON

    generator = _SlowGenerator([])
    use_case = _use_case(engine, _ScriptedGate([True]), generator, generation_timeout_seconds=0.05)

    with pytest.raises(GenerationFailure):
        await use_case.execute(LessonRequest(topic="ciclos"))
    assert len(generator.calls) == 2


@pytest.mark.asyncio
async def test_deadline_keeps_partial_context_and_still_generates(engine):
    await engine.index()
    gate = _ScriptedGate([])
    use_case = _use_case(
        engine, gate, _ScriptedGenerator([LESSON_JSON]), expander=_RecordingExpander(delay=1.0),
        max_retries=3,
    )

    artifact = await use_case.execute(LessonRequest(topic="ciclos", timeout_seconds=0.2))

    meta = artifact.metadata
    assert meta.deadline_exceeded
    assert meta.gate_checks == 1
    assert not meta.retries_exhausted
    assert meta.context_size > 0
    assert meta.provenance == ContextProvenance.BEST_EFFORT
    assert artifact.content is not None


@pytest.mark.asyncio
async def test_zero_retries_skips_the_gate(engine):
    await engine.index()
    gate = _ScriptedGate([True])
    use_case = _use_case(engine, gate, _ScriptedGenerator([LESSON_JSON]), max_retries=0)

    artifact = await use_case.execute(LessonRequest(topic="ciclos"))

    assert gate.contexts == []
    assert artifact.metadata.gate_checks == 0
    assert artifact.metadata.provenance == ContextProvenance.BEST_EFFORT


@pytest.mark.asyncio
async def test_topic_is_resolved_from_curriculum_coordinate(engine):
    await engine.index()
    generator = _ScriptedGenerator([LESSON_JSON])
    use_case = _use_case(engine, _ScriptedGate([True]), generator)

    artifact = await use_case.execute(LessonRequest(week_id=2, day_index=1, activity_index=0))

    assert artifact.metadata.topic == "Usar el bloque repetir para dibujar un cuadrado"
    prompt = generator.calls[0][0]
    assert "**Semana 2:** Ciclos y repetición" in prompt
    assert "Actividad 1 de 2" in prompt


@pytest.mark.asyncio
async def test_request_without_topic_or_known_unit_is_rejected(engine):
    use_case = _use_case(engine, _ScriptedGate([True]), _ScriptedGenerator([]))

    with pytest.raises(ValueError):
        await use_case.execute(LessonRequest())
    with pytest.raises(ValueError):
        await use_case.execute(LessonRequest(week_id=9, day_index=1))


@pytest.mark.asyncio
async def test_embedding_outage_is_recorded_and_lesson_still_produced(engine):
    engine.provider.failing = True
    use_case = _use_case(engine, _ScriptedGate([True]), _ScriptedGenerator([LESSON_JSON]))

    artifact = await use_case.execute(LessonRequest(topic="ciclos"))

    assert artifact.metadata.retrieval_errors
    assert artifact.metadata.context_size == 3


class _UnreachableCacheStore(InMemoryCacheStore):
    async def get(self, key):
        raise ConnectionError("redis connection lost")

    async def set(self, key, value, ttl_seconds):
        raise ConnectionError("redis connection lost")


@pytest.mark.asyncio
async def test_cache_outage_mid_run_still_produces_lesson(engine):
    await engine.index()
    engine.cache.store = _UnreachableCacheStore()
    expander = QueryExpander(cache=CacheService(_UnreachableCacheStore()))
    use_case = _use_case(engine, _ScriptedGate([True]), _ScriptedGenerator([LESSON_JSON]), expander=expander)

    artifact = await use_case.execute(LessonRequest(topic="ciclos"))

    assert artifact.metadata.gate_passed
    assert not artifact.metadata.retrieval_errors
    assert artifact.content["titulo"] == "Ciclos"
