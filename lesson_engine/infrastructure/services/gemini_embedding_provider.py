import asyncio
from typing import Any, Dict, List, Optional

import aiohttp
import structlog
from tenacity import (
    AsyncRetrying,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from lesson_engine.core.ai_models import AIModelConfig
from lesson_engine.core.settings import settings
from lesson_engine.domain.exceptions import EmbeddingFailure
from lesson_engine.domain.interfaces.embedding_provider import IEmbeddingProvider

logger = structlog.get_logger(__name__)

_TASK_TYPES = {
    "retrieval.document": "RETRIEVAL_DOCUMENT",
    "retrieval.passage": "RETRIEVAL_DOCUMENT",
    "retrieval.query": "RETRIEVAL_QUERY",
    "similarity": "SEMANTIC_SIMILARITY",
}

_RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class _TransientEmbeddingError(Exception):
    def __init__(self, status: Optional[int], detail: str):
        super().__init__(detail)
        self.status = status


class GeminiEmbeddingProvider(IEmbeddingProvider):
    """
    Gemini `batchEmbedContents` over a shared aiohttp.ClientSession.
    Rate limits and 5xx are retried with exponential backoff; anything else
    surfaces as EmbeddingFailure.
    """

    MAX_BATCH = 100

    def __init__(
        self,
        api_key: str,
        *,
        model_name: Optional[str] = None,
        dimensions: Optional[int] = None,
        base_url: Optional[str] = None,
    ):
        self.api_key = api_key
        self.base_url = (base_url or AIModelConfig.EMBEDDING_BASE_URL).rstrip("/")
        self._model_name = model_name or AIModelConfig.EMBEDDING_MODEL_NAME
        self._dimensions = int(dimensions or AIModelConfig.EMBEDDING_DIMENSIONS)
        self._session: Optional[aiohttp.ClientSession] = None
        self._post_semaphore = asyncio.Semaphore(max(1, int(settings.EMBEDDING_CONCURRENCY or 1)))
        if not self.api_key:
            logger.warning("gemini_embedding_provider_without_api_key", model=self._model_name)
        key_suffix = str(self.api_key)[-4:]
        logger.info(
            "gemini_embedding_provider_initialized",
            model=self._model_name,
            dimensions=self._dimensions,
            key_suffix=key_suffix,
        )

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={"Content-Type": "application/json"},
                timeout=aiohttp.ClientTimeout(
                    total=float(settings.EMBEDDING_REQUEST_TIMEOUT_SECONDS)
                ),
            )
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None

    @property
    def provider_name(self) -> str:
        return "gemini"

    @property
    def model_name(self) -> str:
        return str(self._model_name)

    @property
    def embedding_dimensions(self) -> int:
        return self._dimensions

    def _endpoint(self) -> str:
        return f"{self.base_url}/models/{self._model_name}:batchEmbedContents"

    def _payload(self, texts: List[str], task: str) -> Dict[str, Any]:
        task_type = _TASK_TYPES.get(task, "RETRIEVAL_DOCUMENT")
        return {
            "requests": [
                {
                    "model": f"models/{self._model_name}",
                    "content": {"parts": [{"text": text}]},
                    "taskType": task_type,
                }
                for text in texts
            ]
        }

    async def embed(self, texts: List[str], task: str = "retrieval.document") -> List[List[float]]:
        if not texts:
            return []
        if any(not str(text or "").strip() for text in texts):
            raise ValueError("Cannot embed blank text.")
        if not self.api_key:
            raise EmbeddingFailure("GEMINI_API_KEY is not configured", provider=self.provider_name)

        session = await self._get_session()
        vectors: List[List[float]] = []
        for start in range(0, len(texts), self.MAX_BATCH):
            batch = texts[start : start + self.MAX_BATCH]
            result = await self._post_with_retry(session, self._payload(batch, task))
            vectors.extend(self._parse_vectors(result, expected=len(batch)))
        return vectors

    def _parse_vectors(self, result: Dict[str, Any], *, expected: int) -> List[List[float]]:
        rows = result.get("embeddings") if isinstance(result, dict) else None
        if not isinstance(rows, list) or len(rows) != expected:
            raise EmbeddingFailure(
                f"Gemini returned {len(rows) if isinstance(rows, list) else 0} embeddings, expected {expected}",
                provider=self.provider_name,
            )
        vectors: List[List[float]] = []
        for row in rows:
            values = row.get("values") if isinstance(row, dict) else None
            if not isinstance(values, list) or len(values) != self._dimensions:
                raise EmbeddingFailure(
                    f"Gemini embedding has unexpected shape (expected {self._dimensions} dims)",
                    provider=self.provider_name,
                )
            vectors.append([float(v) for v in values])
        return vectors

    async def _post_once(self, session: aiohttp.ClientSession, data: Dict[str, Any]) -> Dict[str, Any]:
        async with self._post_semaphore:
            async with session.post(
                self._endpoint(), json=data, params={"key": self.api_key}
            ) as response:
                if response.status == 200:
                    result = await response.json()
                    if isinstance(result, dict):
                        return result
                    raise EmbeddingFailure(
                        "Gemini API Error: malformed JSON response", provider=self.provider_name
                    )

                text_resp = await response.text()
                if response.status in _RETRYABLE_STATUS:
                    raise _TransientEmbeddingError(response.status, text_resp[:300])
                logger.error(
                    "gemini_embedding_http_error", status=response.status, body=text_resp[:300]
                )
                raise EmbeddingFailure(
                    f"Gemini API Error {response.status}: {text_resp[:300]}",
                    provider=self.provider_name,
                    status=response.status,
                )

    async def _post_with_retry(
        self, session: aiohttp.ClientSession, data: Dict[str, Any]
    ) -> Dict[str, Any]:
        attempts = max(1, int(settings.EMBEDDING_RETRY_MAX_ATTEMPTS or 1))
        retrying = AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(
                multiplier=float(settings.EMBEDDING_RETRY_BASE_DELAY_SECONDS),
                max=float(settings.EMBEDDING_RETRY_MAX_DELAY_SECONDS),
            ),
            retry=retry_if_exception_type(
                (_TransientEmbeddingError, aiohttp.ClientError, asyncio.TimeoutError)
            ),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    if attempt.retry_state.attempt_number > 1:
                        logger.warning(
                            "gemini_embedding_retry",
                            attempt=attempt.retry_state.attempt_number,
                            max_attempts=attempts,
                        )
                    return await self._post_once(session, data)
        except RetryError as exc:
            last = exc.last_attempt.exception()
            status = getattr(last, "status", None)
            logger.error("gemini_embedding_retries_exhausted", status=status, error=str(last))
            raise EmbeddingFailure(
                f"Gemini embedding failed after {attempts} attempts: {last}",
                provider=self.provider_name,
                status=status,
            ) from last
        raise EmbeddingFailure("Gemini embedding returned no result", provider=self.provider_name)
