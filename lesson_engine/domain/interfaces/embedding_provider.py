from abc import ABC, abstractmethod
from typing import List


class IEmbeddingProvider(ABC):
    """
    Interface for embedding providers.
    Failures are raised as EmbeddingFailure, never returned as error codes.
    """

    @abstractmethod
    async def embed(self, texts: List[str], task: str = "retrieval.document") -> List[List[float]]:
        """
        Generates one fixed-dimension embedding per input text, in input order.
        """
        pass

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Stable provider identifier (e.g. 'gemini')."""
        pass

    @property
    @abstractmethod
    def model_name(self) -> str:
        pass

    @property
    @abstractmethod
    def embedding_dimensions(self) -> int:
        pass

    async def close(self) -> None:
        return None
