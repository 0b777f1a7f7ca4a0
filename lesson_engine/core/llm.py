from typing import Any, Optional

import structlog
from langchain_core.language_models.chat_models import BaseChatModel

from lesson_engine.core.ai_models import AIModelConfig

logger = structlog.get_logger(__name__)


def _build_groq(*, capability: str, temperature: float) -> Optional[BaseChatModel]:
    if not AIModelConfig.GROQ_API_KEY:
        return None
    try:
        from langchain_groq import ChatGroq
    except ImportError:
        logger.warning("llm_provider_not_installed", provider="groq", package="langchain-groq")
        return None
    return ChatGroq(
        model=AIModelConfig.get_groq_model_for_capability(capability),
        temperature=temperature,
        api_key=AIModelConfig.GROQ_API_KEY,
    )


def _build_gemini(*, capability: str, temperature: float) -> Optional[BaseChatModel]:
    if not AIModelConfig.is_gemini_available():
        return None
    try:
        from langchain_google_genai import ChatGoogleGenerativeAI
    except ImportError:
        logger.warning(
            "llm_provider_not_installed", provider="gemini", package="langchain-google-genai"
        )
        return None
    return ChatGoogleGenerativeAI(
        model=AIModelConfig.get_gemini_model_for_capability(capability),
        temperature=temperature,
        google_api_key=AIModelConfig.GEMINI_API_KEY,
    )


def get_llm(
    temperature: Optional[float] = None,
    capability: str = "CHAT",
    prefer_provider: str = "auto",
) -> BaseChatModel:
    """
    Returns the configured chat model for a capability.
    Generation prefers Gemini, lightweight capabilities prefer Groq.
    """
    cap = (capability or "CHAT").strip().upper()
    temp = AIModelConfig.default_temperature(cap) if temperature is None else float(temperature)

    preference = (prefer_provider or "auto").strip().lower()
    if preference not in {"auto", "groq", "gemini"}:
        preference = "auto"

    if preference == "auto":
        order = ["gemini", "groq"] if cap == "GENERATION" else ["groq", "gemini"]
    else:
        order = [preference, "gemini" if preference == "groq" else "groq"]

    for provider in order:
        if provider == "groq":
            model = _build_groq(capability=cap, temperature=temp)
        else:
            model = _build_gemini(capability=cap, temperature=temp)
        if model is not None:
            return model

    raise ValueError("No valid AI Provider found. Set GEMINI_API_KEY or GROQ_API_KEY.")


def response_to_text(response: Any) -> str:
    """Flattens a chat model response (message, dict or content parts) into plain text."""
    content = getattr(response, "content", response)
    if isinstance(content, str):
        return content
    if isinstance(content, dict):
        text = content.get("text") or content.get("content")
        return str(text or "")
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, str):
                parts.append(item)
                continue
            if isinstance(item, dict):
                text = item.get("text") or item.get("content")
                if isinstance(text, str) and text.strip():
                    parts.append(text)
        return "\n".join(part for part in parts if part).strip()
    return str(content or "")
