from typing import Iterable

from lesson_engine.domain.schemas.curriculum import ResultSource, SearchResult


def merge_keyword_and_semantic(
    keyword: list[SearchResult],
    semantic: list[SearchResult],
) -> list[SearchResult]:
    """Dedup by unit_id; a keyword hit always wins over a semantic hit of the same unit.

    Output is sorted by score descending. The sort is stable, so keyword
    entries stay ahead of semantic ones that tie at 1.0.
    """
    merged: dict[str, SearchResult] = {}
    for item in keyword:
        if item.unit_id not in merged:
            merged[item.unit_id] = item.model_copy(
                update={"score": 1.0, "source": ResultSource.KEYWORD}
            )
    for item in semantic:
        existing = merged.get(item.unit_id)
        if existing is None:
            merged[item.unit_id] = item
            continue
        if existing.source == ResultSource.SEMANTIC and item.score > existing.score:
            merged[item.unit_id] = item

    return sorted(merged.values(), key=lambda row: row.score, reverse=True)


def merge_first_seen(batches: Iterable[list[SearchResult]]) -> list[SearchResult]:
    """Concatenates result batches in order, keeping the first occurrence of each unit."""
    merged: list[SearchResult] = []
    seen: set[str] = set()
    for batch in batches:
        for item in batch:
            if item.unit_id in seen:
                continue
            seen.add(item.unit_id)
            merged.append(item)
    return merged
