from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from lesson_engine.domain.schemas.curriculum import ContentFilter


class OrchestrationState(str, Enum):
    INIT = "INIT"
    RETRIEVE = "RETRIEVE"
    GATE_CHECK = "GATE_CHECK"
    EXPAND_AND_RETRY = "EXPAND_AND_RETRY"
    GENERATE = "GENERATE"
    DONE = "DONE"
    DEGRADED_DONE = "DEGRADED_DONE"


class ContextProvenance(str, Enum):
    VALIDATED = "validated"
    BEST_EFFORT = "best_effort"
    FALLBACK_PROMPT = "fallback_prompt"


class GateVerdict(BaseModel):
    passed: bool
    score: float
    reasoning: str


class LessonRequest(BaseModel):
    week_id: Optional[int] = None
    day_index: Optional[int] = None
    activity_index: int = 0
    topic: Optional[str] = None
    difficulty: Optional[str] = None
    filters: Optional[ContentFilter] = None
    timeout_seconds: Optional[float] = None


class GenerationFeatures(BaseModel):
    """Optional generation features; all switched off on the degraded retry."""

    storytelling: bool = True
    structured_output: bool = True
    include_quiz: bool = True

    @classmethod
    def minimal(cls) -> "GenerationFeatures":
        return cls(storytelling=False, structured_output=False, include_quiz=False)


class GenerationOptions(BaseModel):
    system_prompt: str = ""
    temperature: Optional[float] = None
    timeout_seconds: Optional[float] = None
    features: GenerationFeatures = Field(default_factory=GenerationFeatures)


@dataclass(frozen=True)
class ParsedLesson:
    data: Dict[str, Any]
    raw: str


@dataclass(frozen=True)
class UnparsedLesson:
    raw: str
    error: str


GenerationResult = Union[ParsedLesson, UnparsedLesson]


@dataclass
class RetryState:
    attempt: int = 0
    max_attempts: int = 2
    last_error: Optional[Exception] = None

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts


class GenerationMetadata(BaseModel):
    topic: str
    attempts: int
    gate_checks: int
    final_gate_score: Optional[float] = None
    gate_passed: bool = False
    retries_exhausted: bool = False
    deadline_exceeded: bool = False
    features_degraded: bool = False
    parse_ok: bool = True
    provenance: ContextProvenance = ContextProvenance.VALIDATED
    context_size: int = 0
    expanded_queries: List[str] = Field(default_factory=list)
    state_trace: List[OrchestrationState] = Field(default_factory=list)
    retrieval_errors: List[str] = Field(default_factory=list)
    duration_ms: float = 0.0


class LessonArtifact(BaseModel):
    content: Optional[Dict[str, Any]] = None
    raw_text: str
    metadata: GenerationMetadata

    @property
    def degraded(self) -> bool:
        return self.metadata.state_trace[-1:] == [OrchestrationState.DEGRADED_DONE]
