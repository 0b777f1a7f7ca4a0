from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Sequence

import structlog

from lesson_engine.core.settings import settings
from lesson_engine.core.utils.token_budget import PromptComponents, TokenBudgetManager
from lesson_engine.domain.schemas.orchestration import GenerationFeatures

logger = structlog.get_logger(__name__)

SYSTEM_PROMPT = (
    "Eres un mentor de programación para estudiantes de 12 años. "
    "Explicas conceptos con analogías cotidianas y NUNCA escribes código real."
)

STORYTELLING_INSTRUCTIONS = (
    "Construye la lección como una historia breve con un personaje que enfrenta un problema "
    "y lo resuelve aplicando el concepto. Piensa paso a paso antes de escribir."
)

JSON_INSTRUCTIONS = """Responde SOLO con JSON válido con esta forma:
{
  "titulo": "...",
  "objetivo": "...",
  "explicacion": "...",
  "analogia": "...",
  "actividad": "...",
  "quiz": [{"pregunta": "...", "opciones": ["a", "b", "c", "d"], "respuesta": 0}]
}"""

QUIZ_INSTRUCTIONS = "Incluye un quiz de 5 preguntas con 4 opciones cada una."

PLAIN_INSTRUCTIONS = "Responde en texto plano, con una explicación clara y una actividad práctica."

FALLBACK_NOTICE = (
    "No se encontró material del currículo para este tema. Prepara una lección introductoria "
    "general, sin inventar referencias a semanas o actividades concretas."
)

REMINDER = "Verifica: sin código, analogías apropiadas."


@dataclass(frozen=True)
class LessonPrompt:
    system: str
    user: str
    fallback: bool
    budget_adjusted: bool
    adjustments: tuple[str, ...] = ()


class LessonPromptBuilder:
    """Assembles system/user prompts from topic, retrieved context and enabled features."""

    def __init__(self, budget: Optional[TokenBudgetManager] = None):
        self.budget = budget or TokenBudgetManager(
            max_tokens=settings.GENERATION_MAX_TOKENS,
            reserved_for_output=settings.GENERATION_RESERVED_OUTPUT_TOKENS,
        )

    @staticmethod
    def _context_block(context_chunks: Sequence[str]) -> str:
        return "\n\n".join(f"[{idx}] {chunk}" for idx, chunk in enumerate(context_chunks, start=1) if chunk)

    def build(
        self,
        topic: str,
        context_chunks: Sequence[str],
        features: GenerationFeatures,
        difficulty: Optional[str] = None,
        curriculum_context: str = "",
    ) -> LessonPrompt:
        fallback = not any(chunk.strip() for chunk in context_chunks)

        task: List[str] = [f"**TEMA:** {topic}"]
        if difficulty:
            task.append(f"**NIVEL:** {difficulty}")
        if fallback:
            task.append(FALLBACK_NOTICE)
        if features.storytelling:
            task.append(STORYTELLING_INSTRUCTIONS)
        if features.include_quiz:
            task.append(QUIZ_INSTRUCTIONS)
        task.append(JSON_INSTRUCTIONS if features.structured_output else PLAIN_INSTRUCTIONS)
        task.append(REMINDER)

        rag = ""
        if not fallback:
            rag = "**MATERIAL DEL CURRÍCULO:**\n" + self._context_block(context_chunks)

        result = self.budget.fit_within_budget(
            PromptComponents(
                system=SYSTEM_PROMPT,
                session=curriculum_context,
                rag=rag,
                user="\n\n".join(task),
            )
        )
        if result.was_adjusted:
            logger.warning(
                "lesson_prompt_budget_adjusted",
                original_tokens=result.original_tokens,
                final_tokens=result.final_tokens,
                adjustments=result.adjustments,
            )

        parts = result.components
        user = "\n\n".join(part for part in (parts.session, parts.rag, parts.user) if part)
        return LessonPrompt(
            system=parts.system,
            user=user,
            fallback=fallback,
            budget_adjusted=result.was_adjusted,
            adjustments=tuple(result.adjustments),
        )
