import csv
import io
import json

import pytest
from rich.console import Console

from lodestar_rag.common.exceptions import ValidationError
from lodestar_rag.common.schemas import SearchResult
from lodestar_rag.retrieval.reranker import HeuristicReranker
from lodestar_rag.retrieval.search import SearchEngine, apply_path_prefix, export_results, results_table


@pytest.fixture
def engine(pipeline, catalog, embedder):
    pipeline.ingest_text("/docs/animals.txt", "the quick brown fox jumps over the lazy dog")
    pipeline.ingest_text("/docs/space.txt", "rockets orbit planets far beyond the moon")
    pipeline.ingest_text("/notes/fox.txt", "a fox den in the forest")
    return SearchEngine(catalog, embedder, top_k=8)


class CountingEmbedder:
    dim = 8

    def __init__(self, inner):
        self.inner = inner
        self.calls = 0

    def embed_query(self, text):
        self.calls += 1
        return self.inner.embed_query(text)


def test_vector_mode_is_the_default(engine, embedder):
    results = engine.query("rockets orbit planets far beyond")

    assert results[0].document_path == "/docs/space.txt"
    assert results[0].vector_score == results[0].score
    assert [r.score for r in results] == sorted((r.score for r in results), reverse=True)


def test_keyword_mode_returns_only_matching_chunks(engine):
    results = engine.query("fox", mode="keyword")

    assert {r.document_path for r in results} == {"/docs/animals.txt", "/notes/fox.txt"}
    assert all(r.lexical_score is not None for r in results)


def test_keyword_mode_does_not_embed(catalog, embedder):
    counting = CountingEmbedder(embedder)
    SearchEngine(catalog, counting).query("fox", mode="keyword")

    assert counting.calls == 0


def test_hybrid_flag_selects_hybrid_mode(engine):
    hybrid = engine.query("fox den", hybrid=True, alpha=0.0)

    assert hybrid[0].document_path == "/notes/fox.txt"
    assert hybrid[0].lexical_score > 0


def test_alpha_is_clamped(engine):
    clamped = engine.query("fox", mode="hybrid", alpha=7)
    vector = engine.query("fox", mode="hybrid", alpha=1.0)

    assert [r.chunk_id for r in clamped] == [r.chunk_id for r in vector]


def test_path_prefix_filters_after_truncation(engine):
    top_one = engine.query("fox", mode="keyword", top_k=1)
    filtered = engine.query("fox", mode="keyword", top_k=1, filters={"path_prefix": "/nowhere/"})

    assert len(top_one) == 1
    assert filtered == []
    assert all(r.document_path.startswith("/notes/") for r in engine.query("fox", filters={"path_prefix": "/notes/"}))


@pytest.mark.parametrize("top_k", [0, -3, 2.5, "5", True])
def test_invalid_top_k_is_rejected(engine, top_k):
    with pytest.raises(ValidationError):
        engine.query("fox", top_k=top_k)


def test_unknown_mode_is_rejected(engine):
    with pytest.raises(ValidationError):
        engine.query("fox", mode="semantic")


def test_unknown_rank_function_defaults(engine):
    assert engine.query("fox", mode="keyword", rank_function="bm25") == engine.query("fox", mode="keyword")


def test_audit_records_queries(catalog, embedder, engine):
    audited = SearchEngine(catalog, embedder, audit_queries=True)
    results = audited.query("fox", mode="keyword", filters={"path_prefix": "/notes/"})

    (record,) = catalog.query_records()
    assert record.query_text == "fox"
    assert record.embedding is None
    assert record.filters == {"path_prefix": "/notes/", "mode": "keyword"}
    assert [r["chunk_id"] for r in record.results] == [r.chunk_id for r in results]


def test_rerank_keeps_retrieval_score(engine):
    results = engine.query("quick brown fox", mode="vector")
    reranked = engine.rerank(HeuristicReranker(), "quick brown fox", results)

    assert reranked[0].document_path == "/docs/animals.txt"
    assert reranked[0].rerank_score == pytest.approx(1.0)
    assert {r.chunk_id: r.score for r in reranked} == {r.chunk_id: r.score for r in results}


def _rows():
    return [
        SearchResult(1, "/a.txt", 0, "alpha text", 0.9),
        SearchResult(2, "/b.txt", 3, "beta text", 0.4, rerank_score=0.95),
    ]


def test_apply_path_prefix():
    assert [r.chunk_id for r in apply_path_prefix(_rows(), "/b")] == [2]
    assert len(apply_path_prefix(_rows(), None)) == 2


def test_export_txt(tmp_path):
    out = export_results(_rows(), tmp_path / "r.txt")

    assert out.read_text(encoding="utf-8").splitlines() == [
        "0.900\t/a.txt\t0\talpha text",
        "0.950\t/b.txt\t3\tbeta text",
    ]


def test_export_csv(tmp_path):
    out = export_results(_rows(), tmp_path / "r.csv")

    with out.open(newline="", encoding="utf-8") as f:
        rows = list(csv.reader(f))
    assert rows[0] == ["score", "path", "pos", "text"]
    assert rows[2] == ["0.95", "/b.txt", "3", "beta text"]


def test_export_json(tmp_path):
    out = export_results(_rows(), tmp_path / "r.json")

    data = json.loads(out.read_text(encoding="utf-8"))
    assert data[1]["document_path"] == "/b.txt"
    assert data[1]["rerank_score"] == 0.95


def test_export_unknown_format(tmp_path):
    with pytest.raises(ValidationError):
        export_results(_rows(), tmp_path / "r.xml")


def test_results_table():
    table = results_table(_rows())

    assert [c.header for c in table.columns] == ["score", "path", "pos", "snippet"]
    assert table.row_count == 2

    out = io.StringIO()
    Console(file=out, width=120).print(table)
    rendered = out.getvalue()
    assert "0.950" in rendered and "beta text" in rendered
