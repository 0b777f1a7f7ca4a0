from __future__ import annotations

from typing import Optional

import structlog
from langchain_core.language_models.chat_models import BaseChatModel
from tenacity import retry, retry_if_not_exception_type, stop_after_attempt, wait_exponential

from lesson_engine.core.llm import get_llm, response_to_text
from lesson_engine.domain.schemas.orchestration import GenerationOptions

logger = structlog.get_logger(__name__)


class LangChainLessonGenerator:
    """Text generation over a LangChain chat model; transient provider errors are retried."""

    def __init__(self, llm: Optional[BaseChatModel] = None):
        self._llm = llm

    def _get_llm(self, options: GenerationOptions) -> BaseChatModel:
        if self._llm is not None:
            return self._llm
        return get_llm(temperature=options.temperature, capability="GENERATION")

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=1, min=1, max=5),
        retry=retry_if_not_exception_type(ValueError),
        reraise=True,
    )
    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        messages = []
        if options.system_prompt:
            messages.append({"role": "system", "content": options.system_prompt})
        messages.append({"role": "user", "content": prompt})
        try:
            response = await self._get_llm(options).ainvoke(messages)
        except Exception as exc:
            logger.error("lesson_generation_provider_failed", error=str(exc))
            raise
        text = response_to_text(response)
        if not text.strip():
            raise RuntimeError("generation provider returned empty output")
        return text
