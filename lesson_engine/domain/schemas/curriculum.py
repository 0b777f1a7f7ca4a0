from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class ResultSource(str, Enum):
    KEYWORD = "keyword"
    SEMANTIC = "semantic"


class ContentUnit(BaseModel):
    """One addressable activity of the curriculum (week -> day -> activity)."""

    model_config = ConfigDict(frozen=True)

    week_id: int
    day_index: int
    activity_index: int
    text: str
    week_title: str = ""
    topic: str = ""
    day_concept: str = ""

    @property
    def unit_id(self) -> str:
        return f"{self.week_id}-{self.day_index}-{self.activity_index}"

    def rendered_text(self) -> str:
        """Text that gets embedded; its hash keys the stored vector."""
        parts = [
            self.week_title,
            f"Día {self.day_index}: {self.day_concept}" if self.day_concept else "",
            f"Actividad {self.activity_index + 1}: {self.text}",
        ]
        return " | ".join(part for part in parts if part)

    def keyword_fields(self) -> List[str]:
        return [self.week_title, self.topic, self.day_concept]


class ContentFilter(BaseModel):
    """Metadata pre-filter applied before any full similarity scan."""

    week_id: Optional[int] = None
    day_index: Optional[int] = None
    week_ids: Optional[List[int]] = None

    def matches(self, unit: ContentUnit) -> bool:
        if self.week_id is not None and unit.week_id != self.week_id:
            return False
        if self.day_index is not None and unit.day_index != self.day_index:
            return False
        if self.week_ids is not None and unit.week_id not in self.week_ids:
            return False
        return True

    @property
    def is_empty(self) -> bool:
        return self.week_id is None and self.day_index is None and self.week_ids is None


class StoredEmbedding(BaseModel):
    model_config = ConfigDict(frozen=True)

    unit_id: str
    vector: List[float]
    content_hash: str


class SearchResult(BaseModel):
    unit_id: str
    text: str
    score: float
    source: ResultSource
    week_id: int
    day_index: int
    activity_index: int
    topic: str = ""
    rerank_score: Optional[float] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_unit(cls, unit: ContentUnit, *, score: float, source: ResultSource) -> "SearchResult":
        return cls(
            unit_id=unit.unit_id,
            text=unit.rendered_text(),
            score=float(score),
            source=source,
            week_id=unit.week_id,
            day_index=unit.day_index,
            activity_index=unit.activity_index,
            topic=unit.topic or unit.week_title,
        )

    @property
    def topic_cluster(self) -> tuple[int, int]:
        return (self.week_id, self.day_index)


class IndexStats(BaseModel):
    indexed: int = 0
    skipped: int = 0
    failed: int = 0
    failed_unit_ids: List[str] = Field(default_factory=list)
