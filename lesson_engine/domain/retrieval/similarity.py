from __future__ import annotations

import math
from typing import Optional, Sequence

import numpy as np


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> Optional[float]:
    """Cosine similarity clipped to [-1, 1].

    Returns None for zero-norm or dimension-mismatched vectors so callers can
    exclude them instead of ranking garbage.
    """
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.ndim != 1 or va.shape != vb.shape or va.size == 0:
        return None
    norm_a = float(np.linalg.norm(va))
    norm_b = float(np.linalg.norm(vb))
    if norm_a == 0.0 or norm_b == 0.0 or not math.isfinite(norm_a * norm_b):
        return None
    value = float(np.dot(va, vb) / (norm_a * norm_b))
    if not math.isfinite(value):
        return None
    return max(-1.0, min(1.0, value))


def rank_by_similarity(
    query_vector: Sequence[float],
    candidates: Sequence[tuple[str, Sequence[float]]],
    limit: int,
) -> list[tuple[str, float]]:
    """Scores (key, vector) pairs against the query, highest first.

    Ties keep candidate order. Unscorable vectors are dropped.
    """
    if limit <= 0:
        return []
    scored: list[tuple[str, float]] = []
    for key, vector in candidates:
        score = cosine_similarity(query_vector, vector)
        if score is None:
            continue
        scored.append((key, score))
    scored.sort(key=lambda row: row[1], reverse=True)
    return scored[:limit]
