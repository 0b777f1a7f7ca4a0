"""
Centralized AI model configurations for the lesson engine.
"""

from lesson_engine.core.settings import settings


class AIModelConfig:
    # Gemini Configuration
    GEMINI_API_KEY = settings.GEMINI_API_KEY
    GEMINI_MODEL_NAME = "gemini-2.5-flash-lite"
    GEMINI_MODEL_GENERATION = "gemini-2.5-flash"

    # Groq Configuration
    GROQ_API_KEY = settings.GROQ_API_KEY
    GROQ_MODEL_LIGHTWEIGHT = "openai/gpt-oss-20b"
    GROQ_MODEL_HEAVY = "openai/gpt-oss-120b"

    # Embedding Configuration (Gemini text-embedding-004)
    EMBEDDING_MODEL_NAME = settings.EMBEDDING_MODEL_NAME
    EMBEDDING_BASE_URL = settings.EMBEDDING_BASE_URL
    EMBEDDING_DIMENSIONS = settings.EMBEDDING_DIMENSIONS

    # Default Temperatures
    DEFAULT_TEMPERATURE_CHAT = 0.0
    DEFAULT_TEMPERATURE_EXPANSION = 0.4
    DEFAULT_TEMPERATURE_JUDGE = 0.0
    DEFAULT_TEMPERATURE_GENERATION = 0.7

    _GROQ_MODEL_BY_CAPABILITY = {
        "CHAT": GROQ_MODEL_LIGHTWEIGHT,
        "EXPANSION": GROQ_MODEL_LIGHTWEIGHT,
        "JUDGE": GROQ_MODEL_LIGHTWEIGHT,
        "GENERATION": GROQ_MODEL_HEAVY,
    }

    _TEMPERATURE_BY_CAPABILITY = {
        "CHAT": DEFAULT_TEMPERATURE_CHAT,
        "EXPANSION": DEFAULT_TEMPERATURE_EXPANSION,
        "JUDGE": DEFAULT_TEMPERATURE_JUDGE,
        "GENERATION": DEFAULT_TEMPERATURE_GENERATION,
    }

    @classmethod
    def is_gemini_available(cls) -> bool:
        return bool(cls.GEMINI_API_KEY)

    @classmethod
    def get_groq_model_for_capability(cls, capability: str) -> str:
        normalized = (capability or "CHAT").strip().upper()
        return cls._GROQ_MODEL_BY_CAPABILITY.get(normalized, cls.GROQ_MODEL_LIGHTWEIGHT)

    @classmethod
    def get_gemini_model_for_capability(cls, capability: str) -> str:
        normalized = (capability or "CHAT").strip().upper()
        if normalized == "GENERATION":
            return cls.GEMINI_MODEL_GENERATION
        return cls.GEMINI_MODEL_NAME

    @classmethod
    def default_temperature(cls, capability: str) -> float:
        normalized = (capability or "CHAT").strip().upper()
        return cls._TEMPERATURE_BY_CAPABILITY.get(normalized, cls.DEFAULT_TEMPERATURE_CHAT)
