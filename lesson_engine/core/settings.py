import logging
from pathlib import Path
from typing import Literal, Optional

from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


logger = logging.getLogger(__name__)


PROJECT_ROOT = Path(__file__).resolve().parents[2]
ROOT_ENV = PROJECT_ROOT / ".env"
ROOT_ENV_LOCAL = PROJECT_ROOT / ".env.local"


class Settings(BaseSettings):
    """
    Lesson Engine - Global Configuration Registry
    Centralizes all environment variables using Pydantic Settings.
    """

    model_config = SettingsConfigDict(
        env_file=(str(ROOT_ENV), str(ROOT_ENV_LOCAL)),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Infrastructure
    REDIS_URL: Optional[str] = "redis://localhost:6379/0"
    CACHE_BACKEND: Literal["auto", "redis", "memory"] = "auto"
    CACHE_KEY_PREFIX: str = "lesson_engine:"
    CACHE_DEFAULT_TTL_SECONDS: int = 3600
    CACHE_CLEANUP_INTERVAL_SECONDS: int = 300
    CACHE_HEALTH_CHECK_TIMEOUT_SECONDS: float = 2.0
    SUPABASE_URL: Optional[str] = Field(
        None, validation_alias=AliasChoices("SUPABASE_URL", "NEXT_PUBLIC_SUPABASE_URL")
    )
    SUPABASE_SERVICE_KEY: Optional[str] = Field(
        None, validation_alias=AliasChoices("SUPABASE_SERVICE_KEY", "SUPABASE_SERVICE_ROLE_KEY")
    )
    CONTENT_STORE_BACKEND: Literal["memory", "supabase"] = "memory"
    CURRICULUM_JSON_PATH: Optional[str] = None
    CURRICULUM_EMBEDDINGS_PATH: Optional[str] = None

    # AI Models & Services
    GEMINI_API_KEY: Optional[str] = None
    GROQ_API_KEY: Optional[str] = None
    EMBEDDING_BASE_URL: str = "https://generativelanguage.googleapis.com/v1beta"
    EMBEDDING_MODEL_NAME: str = "text-embedding-004"
    EMBEDDING_DIMENSIONS: int = 768
    EMBEDDING_REQUEST_TIMEOUT_SECONDS: float = 15.0
    EMBEDDING_RETRY_MAX_ATTEMPTS: int = 3
    EMBEDDING_RETRY_BASE_DELAY_SECONDS: float = 0.5
    EMBEDDING_RETRY_MAX_DELAY_SECONDS: float = 8.0
    EMBEDDING_CONCURRENCY: int = 5
    EMBEDDING_CACHE_TTL_SECONDS: int = 3600

    # API Config
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True
    ENVIRONMENT: str = "development"
    APP_ENV: str = "local"

    # Indexing / throughput controls
    INDEXING_BATCH_SIZE: int = 10
    INDEXING_BATCH_DELAY_SECONDS: float = 1.0

    # Retrieval
    RETRIEVAL_DEFAULT_LIMIT: int = 5
    RETRIEVAL_SEMANTIC_OVERFETCH: int = 2
    SIMILARITY_MAX_UNFILTERED_SCAN: int = 5000

    # Query expansion
    QUERY_EXPANSION_NUM_PARAPHRASES: int = 3
    QUERY_EXPANSION_CACHE_TTL_SECONDS: int = 3600
    QUERY_EXPANSION_TIMEOUT_MS: int = 8000

    # Reranking (uncalibrated defaults, tune against labeled relevance data)
    RERANK_MODE: Literal["heuristic", "llm"] = "heuristic"
    RERANK_TERM_OVERLAP_WEIGHT: float = 0.1
    RERANK_EXACT_PHRASE_BONUS: float = 0.5
    RERANK_KEYWORD_SOURCE_PRIOR: float = 0.2
    RERANK_PROXIMITY_WEIGHT: float = 0.1
    RERANK_DUPLICATE_TOPIC_PENALTY: float = 0.3
    RERANK_LLM_BATCH_SIZE: int = 10
    RERANK_LLM_TIMEOUT_MS: int = 8000

    # Clarity gate
    CLARITY_GATE_MODE: Literal["heuristic", "llm"] = "heuristic"
    CLARITY_GATE_THRESHOLD: float = 0.5
    CLARITY_GATE_MIN_CONTEXT_CHARS: int = 10
    CLARITY_GATE_MAX_CONTEXT_CHARS: int = 3000
    CLARITY_GATE_TIMEOUT_MS: int = 8000

    # Orchestrator
    ORCHESTRATOR_MAX_RETRIES: int = 2
    ORCHESTRATOR_TIMEOUT_SECONDS: float = 60.0
    ORCHESTRATOR_USE_LLM_EXPANSION: bool = True

    # Generation
    GENERATION_TIMEOUT_SECONDS: float = 45.0
    GENERATION_MAX_TOKENS: int = 30000
    GENERATION_RESERVED_OUTPUT_TOKENS: int = 4000

    @field_validator(
        "CACHE_BACKEND", "CLARITY_GATE_MODE", "RERANK_MODE", "CONTENT_STORE_BACKEND", mode="before"
    )
    @classmethod
    def _normalize_modes(cls, value: str | None) -> str:
        return str(value or "").strip().lower()

    @field_validator("APP_ENV", "ENVIRONMENT", mode="before")
    @classmethod
    def _normalize_environment_labels(cls, value: str | None) -> str:
        return str(value or "").strip().lower()

    @property
    def is_deployed_environment(self) -> bool:
        app_env = self.APP_ENV or self.ENVIRONMENT
        return app_env in {"staging", "production", "prod"}

    @model_validator(mode="after")
    def _enforce_tunable_bounds(self) -> "Settings":
        if not 0.0 <= self.CLARITY_GATE_THRESHOLD <= 1.0:
            logger.warning(
                "CLARITY_GATE_THRESHOLD out of range; clamping to [0, 1]",
                extra={"value": self.CLARITY_GATE_THRESHOLD},
            )
            self.CLARITY_GATE_THRESHOLD = max(0.0, min(1.0, self.CLARITY_GATE_THRESHOLD))
        self.ORCHESTRATOR_MAX_RETRIES = max(0, int(self.ORCHESTRATOR_MAX_RETRIES))
        self.RETRIEVAL_SEMANTIC_OVERFETCH = max(1, int(self.RETRIEVAL_SEMANTIC_OVERFETCH))
        if self.CONTENT_STORE_BACKEND == "supabase" and not (
            self.SUPABASE_URL and self.SUPABASE_SERVICE_KEY
        ):
            logger.warning(
                "CONTENT_STORE_BACKEND=supabase without credentials; falling back to memory",
            )
            self.CONTENT_STORE_BACKEND = "memory"
        return self


settings = Settings()  # type: ignore[call-arg]
