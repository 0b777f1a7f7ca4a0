from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Union

import structlog

from lesson_engine.domain.interfaces.content_store import IContentStore
from lesson_engine.domain.schemas.curriculum import ContentFilter, ContentUnit, StoredEmbedding

logger = structlog.get_logger(__name__)


class InMemoryContentRepository(IContentStore):
    """
    Content store backed by a loaded curriculum.
    Embeddings can optionally be persisted to a JSON side-file between runs.
    """

    def __init__(
        self,
        units: Iterable[ContentUnit] = (),
        embeddings_path: Optional[Union[str, Path]] = None,
    ):
        self._units: Dict[str, ContentUnit] = {}
        for unit in units:
            self._units[unit.unit_id] = unit
        self._embeddings: Dict[str, StoredEmbedding] = {}
        self._embeddings_path = Path(embeddings_path) if embeddings_path else None
        if self._embeddings_path and self._embeddings_path.exists():
            self._load_embeddings(self._embeddings_path)

    def _load_embeddings(self, path: Path) -> None:
        with path.open("r", encoding="utf-8") as handle:
            rows = json.load(handle)
        for row in rows if isinstance(rows, list) else []:
            stored = StoredEmbedding.model_validate(row)
            self._embeddings[stored.unit_id] = stored
        logger.info("embeddings_loaded", path=str(path), count=len(self._embeddings))

    def persist(self) -> None:
        if self._embeddings_path is None:
            return
        self._embeddings_path.parent.mkdir(parents=True, exist_ok=True)
        rows = [stored.model_dump() for stored in self._embeddings.values()]
        with self._embeddings_path.open("w", encoding="utf-8") as handle:
            json.dump(rows, handle)
        logger.info("embeddings_persisted", path=str(self._embeddings_path), count=len(rows))

    def add_units(self, units: Iterable[ContentUnit]) -> None:
        for unit in units:
            self._units[unit.unit_id] = unit

    async def get_content_unit(
        self, week_id: int, day_index: int, activity_index: int = 0
    ) -> Optional[ContentUnit]:
        return self._units.get(f"{week_id}-{day_index}-{activity_index}")

    async def list_content_units(self, filters: Optional[ContentFilter] = None) -> List[ContentUnit]:
        units = [u for u in self._units.values() if filters is None or filters.matches(u)]
        units.sort(key=lambda u: (u.week_id, u.day_index, u.activity_index))
        return units

    async def get_stored_embedding(self, unit_id: str) -> Optional[StoredEmbedding]:
        return self._embeddings.get(unit_id)

    async def get_stored_embeddings(self, unit_ids: List[str]) -> Dict[str, StoredEmbedding]:
        return {uid: self._embeddings[uid] for uid in unit_ids if uid in self._embeddings}

    async def store_embedding(self, unit_id: str, vector: List[float], content_hash: str) -> None:
        self._embeddings[unit_id] = StoredEmbedding(
            unit_id=unit_id, vector=list(vector), content_hash=content_hash
        )
