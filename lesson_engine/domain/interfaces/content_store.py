from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from lesson_engine.domain.schemas.curriculum import ContentFilter, ContentUnit, StoredEmbedding


class IContentStore(ABC):
    """
    Read access to curriculum units plus the embedding side-table.
    """

    @abstractmethod
    async def get_content_unit(
        self, week_id: int, day_index: int, activity_index: int = 0
    ) -> Optional[ContentUnit]:
        pass

    @abstractmethod
    async def list_content_units(self, filters: Optional[ContentFilter] = None) -> List[ContentUnit]:
        """Units ordered by (week, day, activity)."""
        pass

    @abstractmethod
    async def get_stored_embedding(self, unit_id: str) -> Optional[StoredEmbedding]:
        pass

    async def get_stored_embeddings(self, unit_ids: List[str]) -> Dict[str, StoredEmbedding]:
        found: Dict[str, StoredEmbedding] = {}
        for unit_id in unit_ids:
            stored = await self.get_stored_embedding(unit_id)
            if stored is not None:
                found[unit_id] = stored
        return found

    @abstractmethod
    async def store_embedding(self, unit_id: str, vector: List[float], content_hash: str) -> None:
        pass
