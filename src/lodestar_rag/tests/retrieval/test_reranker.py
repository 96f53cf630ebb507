import pytest

from lodestar_rag.common.exceptions import TransportError
from lodestar_rag.common.schemas import SearchResult
from lodestar_rag.retrieval import reranker as reranker_module
from lodestar_rag.retrieval.reranker import (
    CrossEncoderHTTPReranker,
    HeuristicReranker,
    LLMReranker,
    create_reranker,
    rerank_results,
)


class ScriptedLLM:
    """Returns queued scores; an exception in the queue is raised instead."""

    def __init__(self, outcomes):
        self.outcomes = list(outcomes)

    def score_snippet(self, query, snippet):
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _results():
    return [
        SearchResult(1, "/a", 0, "nothing relevant here", 0.9),
        SearchResult(2, "/b", 0, "a red apple", 0.8),
        SearchResult(3, "/c", 0, "red apples and green apples", 0.7),
    ]


def test_heuristic_counts_distinct_substring_hits():
    scores = HeuristicReranker().score("Red apple RED", ["a red apple", "green apples", "pear"])

    assert scores == [1.0, 0.5, 0.0]


def test_heuristic_empty_query_scores_zero():
    assert HeuristicReranker().score("  !!", ["anything", "else"]) == [0.0, 0.0]


def test_zero_match_rerank_keeps_order():
    reranked = rerank_results(HeuristicReranker(), "zeppelin", _results())

    assert [r.chunk_id for r in reranked] == [1, 2, 3]
    assert all(r.rerank_score == 0.0 for r in reranked)


def test_rerank_sorts_descending_and_preserves_scores():
    original = _results()
    reranked = rerank_results(HeuristicReranker(), "red apple", original)

    assert [r.chunk_id for r in reranked] == [2, 3, 1]
    assert [r.score for r in reranked] == [0.8, 0.7, 0.9]
    assert all(r.rerank_score is None for r in original)


def test_rerank_of_empty_list():
    assert rerank_results(HeuristicReranker(), "q", []) == []


def test_llm_reranker_falls_back_per_snippet():
    llm = ScriptedLLM([0.3, TransportError("boom"), 0.9])
    scores = LLMReranker(llm).score("red apple", ["x", "a red apple", "y"])

    assert scores == [0.3, 1.0, 0.9]


def test_llm_reranker_without_llm_is_heuristic():
    assert LLMReranker().score("red", ["red", "blue"]) == [1.0, 0.0]


def test_cross_encoder_posts_batch(monkeypatch):
    calls = []

    def fake_post(url, payload, **kwargs):
        calls.append((url, payload))
        return {"scores": [0.1, 0.9]}

    monkeypatch.setattr(reranker_module, "post_json", fake_post)
    reranker = CrossEncoderHTTPReranker(endpoint="http://rerank.local/score", model="bge")

    assert reranker.score("q", ["a", "b"]) == [0.1, 0.9]
    assert calls == [("http://rerank.local/score", {"model": "bge", "query": "q", "inputs": ["a", "b"]})]


def test_cross_encoder_accepts_bare_list(monkeypatch):
    monkeypatch.setattr(reranker_module, "post_json", lambda url, payload, **kw: [2, 1])

    assert CrossEncoderHTTPReranker(endpoint="http://x").score("q", ["a", "b"]) == [2.0, 1.0]


@pytest.mark.parametrize("body", [{"scores": [0.1]}, {"other": 1}, {"scores": ["a", "b"]}])
def test_cross_encoder_rejects_bad_responses(monkeypatch, body):
    monkeypatch.setattr(reranker_module, "post_json", lambda url, payload, **kw: body)

    with pytest.raises(TransportError):
        CrossEncoderHTTPReranker(endpoint="http://x").score("q", ["a", "b"])


def test_cross_encoder_endpoint_defaults(monkeypatch):
    assert CrossEncoderHTTPReranker().endpoint == "http://localhost:8081/rerank"
    monkeypatch.setenv("RERANK_ENDPOINT", "http://env/rerank")
    monkeypatch.setenv("RERANK_MODEL", "m")
    reranker = CrossEncoderHTTPReranker()
    assert (reranker.endpoint, reranker.model) == ("http://env/rerank", "m")


@pytest.mark.parametrize(
    "name, expected",
    [
        ("heuristic", HeuristicReranker),
        ("llm", LLMReranker),
        ("crossencoder", CrossEncoderHTTPReranker),
        ("cross-encoder", CrossEncoderHTTPReranker),
        ("http", CrossEncoderHTTPReranker),
        ("mystery", HeuristicReranker),
        (None, HeuristicReranker),
    ],
)
def test_create_reranker(name, expected):
    assert isinstance(create_reranker(name), expected)


def test_create_reranker_uses_config_endpoint():
    reranker = create_reranker(config={"provider": "http", "endpoint": "http://cfg/rerank", "model": "x"})

    assert reranker.endpoint == "http://cfg/rerank"
    assert reranker.model == "x"
