import math

import pytest

from lodestar_rag.common.schemas import SearchResult
from lodestar_rag.retrieval.scoring import blend_scores, clamp_alpha, cosine_similarity, rank_hybrid


def _candidates():
    return [
        SearchResult(1, "/a", 0, "a", 0.0, vector_score=0.9, lexical_score=0.1),
        SearchResult(2, "/b", 0, "b", 0.0, vector_score=0.2, lexical_score=0.7),
        SearchResult(3, "/c", 0, "c", 0.0, vector_score=0.5, lexical_score=0.45),
    ]


@pytest.mark.parametrize(
    "alpha, expected",
    [(-1, 0.0), (0.25, 0.25), (2, 1.0), ("0.7", 0.7), (None, 0.5), ("abc", 0.5), (math.nan, 0.5)],
)
def test_clamp_alpha(alpha, expected):
    assert clamp_alpha(alpha) == pytest.approx(expected)


def test_blend_scores():
    assert blend_scores(0.8, 0.2, 0.5) == pytest.approx(0.5)
    assert blend_scores(0.8, 0.2, 5) == pytest.approx(0.8)


def test_alpha_one_matches_vector_order():
    ranked = rank_hybrid(_candidates(), alpha=1.0)
    assert [r.chunk_id for r in ranked] == [1, 3, 2]


def test_alpha_zero_matches_lexical_order():
    ranked = rank_hybrid(_candidates(), alpha=0.0)
    assert [r.chunk_id for r in ranked] == [2, 3, 1]


def test_alpha_half_orders_by_mean():
    ranked = rank_hybrid(_candidates(), alpha=0.5, top_k=2)

    assert [r.chunk_id for r in ranked] == [1, 3]
    assert ranked[0].score == pytest.approx(0.5)


def test_missing_component_counts_as_zero():
    row = SearchResult(1, "/a", 0, "a", 0.0, vector_score=0.6)
    assert rank_hybrid([row], alpha=0.5)[0].score == pytest.approx(0.3)


def test_cosine_similarity():
    assert cosine_similarity([1, 0], [1, 0]) == pytest.approx(1.0)
    assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)
    assert cosine_similarity([1, 0], [-1, 0]) == pytest.approx(-1.0)
    assert cosine_similarity([0, 0], [1, 1]) == 0.0
    with pytest.raises(ValueError):
        cosine_similarity([1, 2], [1, 2, 3])
