"""lodestar_rag.retrieval.scoring

Pure scoring helpers shared by the catalog backends and the search engine.

Functions
---------
clamp_alpha
    Coerce a blending weight into ``[0, 1]``.
blend_scores
    Linear blend of a vector and a lexical score.
cosine_similarity
    ``1 - cosine_distance`` between two vectors.
rank_hybrid
    Order candidates by their blended score.
"""

from __future__ import annotations

import math
from typing import Iterable, Sequence

from lodestar_rag.common.schemas import SearchResult


def clamp_alpha(alpha) -> float:
    """Return ``alpha`` as a float clamped into ``[0, 1]``.

    Non-numeric values fall back to ``0.5``.
    """
    try:
        value = float(alpha)
    except (TypeError, ValueError):
        return 0.5
    if math.isnan(value):
        return 0.5
    return min(1.0, max(0.0, value))


def blend_scores(vector_score: float, lexical_score: float, alpha: float) -> float:
    """``alpha * vector_score + (1 - alpha) * lexical_score`` with clamped alpha."""
    alpha = clamp_alpha(alpha)
    return alpha * float(vector_score) + (1.0 - alpha) * float(lexical_score)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Return cosine similarity; ``0.0`` when either vector has zero norm."""
    if len(a) != len(b):
        raise ValueError(f"Vector dimensions differ: {len(a)} != {len(b)}")
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


def rank_hybrid(candidates: Iterable[SearchResult], alpha: float, top_k: int | None = None) -> list[SearchResult]:
    """Blend and sort candidates carrying both component scores.

    Each candidate's ``score`` is replaced by the blended value. Missing
    component scores count as ``0.0``. The sort is stable, so ties keep the
    input order.

    Parameters
    ----------
    candidates : Iterable[SearchResult]
        Rows with ``vector_score`` and ``lexical_score`` populated.
    alpha : float
        Weight of the vector score.
    top_k : int or None, optional
        Truncate to this many rows after sorting.

    Returns
    -------
    list[SearchResult]
        Candidates in descending blended-score order.
    """
    alpha = clamp_alpha(alpha)
    ranked = []
    for row in candidates:
        row.score = blend_scores(row.vector_score or 0.0, row.lexical_score or 0.0, alpha)
        ranked.append(row)
    ranked.sort(key=lambda r: r.score, reverse=True)
    if top_k is not None:
        ranked = ranked[:top_k]
    return ranked
