from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from lesson_engine.domain.schemas.orchestration import GateVerdict


class LessonEngineError(Exception):
    """Base class for every recoverable or fatal engine error."""


class EmbeddingFailure(LessonEngineError):
    """Embedding provider timed out, hit its quota or returned an unusable vector."""

    def __init__(self, message: str, *, provider: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.status = status


class ExpansionFailure(LessonEngineError):
    """LLM paraphrase output was malformed or the provider was unavailable."""


class LowConfidenceError(LessonEngineError):
    """Clarity gate rejected the retrieved context."""

    def __init__(self, verdict: "GateVerdict"):
        super().__init__(
            f"Context relevance ({verdict.score:.2f}) below threshold. Reasoning: {verdict.reasoning}"
        )
        self.verdict = verdict

    @property
    def score(self) -> float:
        return self.verdict.score


class GenerationFailure(LessonEngineError):
    """Text generation failed, including after the feature-degraded retry."""
