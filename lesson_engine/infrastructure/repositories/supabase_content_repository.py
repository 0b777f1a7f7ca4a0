from typing import Any, Dict, List, Optional

import structlog

from lesson_engine.domain.interfaces.content_store import IContentStore
from lesson_engine.domain.schemas.curriculum import ContentFilter, ContentUnit, StoredEmbedding

logger = structlog.get_logger(__name__)

UNITS_TABLE = "content_units"
EMBEDDINGS_TABLE = "content_unit_embeddings"


class SupabaseContentRepository(IContentStore):
    """
    Concrete implementation of IContentStore for Supabase.
    Units live in `content_units`, vectors in the `content_unit_embeddings` side-table.
    """

    def __init__(self, client: Any):
        self._client = client

    @staticmethod
    def _to_unit(row: Dict[str, Any]) -> ContentUnit:
        return ContentUnit(
            week_id=int(row["week_id"]),
            day_index=int(row["day_index"]),
            activity_index=int(row.get("activity_index") or 0),
            text=str(row.get("text") or ""),
            week_title=str(row.get("week_title") or ""),
            topic=str(row.get("topic") or ""),
            day_concept=str(row.get("day_concept") or ""),
        )

    @staticmethod
    def _to_embedding(row: Dict[str, Any]) -> Optional[StoredEmbedding]:
        vector = row.get("embedding")
        if isinstance(vector, str):
            # pgvector columns come back as "[0.1,0.2,...]"
            vector = [float(v) for v in vector.strip("[]").split(",") if v.strip()]
        if not isinstance(vector, list) or not vector:
            return None
        return StoredEmbedding(
            unit_id=str(row["unit_id"]),
            vector=[float(v) for v in vector],
            content_hash=str(row.get("content_hash") or ""),
        )

    async def get_content_unit(
        self, week_id: int, day_index: int, activity_index: int = 0
    ) -> Optional[ContentUnit]:
        res = await (
            self._client.table(UNITS_TABLE)
            .select("*")
            .eq("week_id", week_id)
            .eq("day_index", day_index)
            .eq("activity_index", activity_index)
            .limit(1)
            .execute()
        )
        rows = res.data or []
        return self._to_unit(rows[0]) if rows else None

    async def list_content_units(self, filters: Optional[ContentFilter] = None) -> List[ContentUnit]:
        query = self._client.table(UNITS_TABLE).select("*")
        if filters is not None:
            if filters.week_id is not None:
                query = query.eq("week_id", filters.week_id)
            if filters.day_index is not None:
                query = query.eq("day_index", filters.day_index)
            if filters.week_ids is not None:
                query = query.in_("week_id", list(filters.week_ids))
        res = await (
            query.order("week_id").order("day_index").order("activity_index").execute()
        )
        return [self._to_unit(row) for row in res.data or []]

    async def get_stored_embedding(self, unit_id: str) -> Optional[StoredEmbedding]:
        res = await (
            self._client.table(EMBEDDINGS_TABLE)
            .select("unit_id, embedding, content_hash")
            .eq("unit_id", unit_id)
            .limit(1)
            .execute()
        )
        rows = res.data or []
        return self._to_embedding(rows[0]) if rows else None

    async def get_stored_embeddings(self, unit_ids: List[str]) -> Dict[str, StoredEmbedding]:
        found: Dict[str, StoredEmbedding] = {}
        batch_size = 200
        for i in range(0, len(unit_ids), batch_size):
            batch = unit_ids[i : i + batch_size]
            res = await (
                self._client.table(EMBEDDINGS_TABLE)
                .select("unit_id, embedding, content_hash")
                .in_("unit_id", batch)
                .execute()
            )
            for row in res.data or []:
                stored = self._to_embedding(row)
                if stored is not None:
                    found[stored.unit_id] = stored
        return found

    async def store_embedding(self, unit_id: str, vector: List[float], content_hash: str) -> None:
        try:
            await (
                self._client.table(EMBEDDINGS_TABLE)
                .upsert(
                    {"unit_id": unit_id, "embedding": list(vector), "content_hash": content_hash},
                    on_conflict="unit_id",
                )
                .execute()
            )
        except Exception as exc:
            logger.error("embedding_store_failed", unit_id=unit_id, error=str(exc))
            raise
