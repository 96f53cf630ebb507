import csv
import json

import pytest
import yaml

from lodestar_rag.app.cli import main
from lodestar_rag.common.exceptions import TransportError
from lodestar_rag.generation import llm_interface
from lodestar_rag.retrieval import reranker


@pytest.fixture
def docs(tmp_path):
    folder = tmp_path / "docs"
    folder.mkdir()
    (folder / "a.txt").write_text("alpha beta gamma", encoding="utf-8")
    (folder / "b.md").write_text("# Heading\n\nzebra crossings near the station", encoding="utf-8")
    (folder / "ignored.bin").write_bytes(b"\x00\x01")
    return folder


@pytest.fixture
def config_file(tmp_path, docs):
    path = tmp_path / "lodestar.yml"
    data = {
        "database_url": f"sqlite:///{tmp_path / 'catalog.db'}",
        "project": "cli_tests",
        "embedder": {"provider": "mock", "dim": 8},
        "llm": {"provider": "local", "endpoint": "http://llm.invalid/chat"},
        "chunking": {"size": 5, "overlap": 2},
        "index_method": "none",
        "sources": [{"name": "docs", "type": "folder", "path": str(docs)}],
    }
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return path


@pytest.fixture
def run(config_file):
    def _run(*args):
        return main(["--config", str(config_file), *args])

    return _run


def test_dry_run_folder_text(run, docs, capsys):
    assert run("ingest", "--folder", str(docs), "--dry-run") == 0

    assert capsys.readouterr().out.strip() == f"Would ingest 2 files from folder: {docs.resolve()}"


def test_dry_run_json_to_file(run, docs, tmp_path):
    out = tmp_path / "preview.json"

    assert run("ingest", "--folder", str(docs), "--dry-run", "--json", "--out", str(out)) == 0
    assert json.loads(out.read_text(encoding="utf-8")) == {
        "mode": "folder",
        "folder": str(docs.resolve()),
        "files": 2,
    }


def test_dry_run_configured_sources(run, docs, capsys):
    assert run("ingest", "--dry-run", "--source", "docs") == 0

    assert capsys.readouterr().out.strip() == f"Source docs: folder {docs} - files: 2"


def test_ingest_is_idempotent(run, docs, capsys):
    assert run("ingest", "--folder", str(docs)) == 0
    assert run("ingest") == 0

    lines = capsys.readouterr().out.splitlines()
    assert lines == [
        "Inserted 2, updated 0, skipped 0, failed 0",
        "Inserted 0, updated 0, skipped 2, failed 0",
    ]


def test_search_prints_table_and_exports(run, docs, tmp_path, capsys, monkeypatch):
    monkeypatch.setenv("COLUMNS", "300")
    run("ingest", "--folder", str(docs))
    capsys.readouterr()

    assert run("search", "-q", "zebra", "--mode", "keyword") == 0
    table = capsys.readouterr().out
    assert "score" in table and "snippet" in table
    assert str(docs.resolve() / "b.md") in table

    out = tmp_path / "results.csv"
    assert run("search", "-q", "zebra station", "--hybrid", "--re-rank", "--download", str(out)) == 0
    with out.open(newline="", encoding="utf-8") as f:
        rows = list(csv.reader(f))
    assert rows[0] == ["score", "path", "pos", "text"]
    assert len(rows) > 1


def test_search_keeps_retrieval_order_when_reranker_fails(run, docs, monkeypatch, capsys):
    monkeypatch.setenv("COLUMNS", "300")
    run("ingest", "--folder", str(docs))
    capsys.readouterr()

    def unreachable(url, payload, **kwargs):
        raise TransportError(f"POST {url} failed")

    monkeypatch.setattr(reranker, "post_json", unreachable)

    assert run("search", "-q", "zebra", "--mode", "keyword", "--re-rank", "--reranker", "crossencoder") == 0
    captured = capsys.readouterr()
    assert str(docs.resolve() / "b.md") in captured.out
    assert "Reranking failed" in captured.err


def test_search_rejects_bad_top_k(run, capsys):
    assert run("search", "-q", "zebra", "--top-k", "0") == 1
    assert "top_k" in capsys.readouterr().err


def test_reconstruct_and_extract(run, docs, tmp_path):
    run("ingest", "--folder", str(docs))
    reconstructed = tmp_path / "a.out.txt"
    extracted = tmp_path / "extract.json"

    assert run("reconstruct", str(docs.resolve() / "a.txt"), "--out", str(reconstructed)) == 0
    assert reconstructed.read_text(encoding="utf-8") == "alpha beta gamma"

    assert run("extract", "-q", "alpha beta gamma", "--out", str(extracted)) == 0
    payload = json.loads(extracted.read_text(encoding="utf-8"))
    assert payload["query"] == "alpha beta gamma"
    assert payload["extracted"][0]["path"] == str(docs.resolve() / "a.txt")
    assert set(payload["extracted"][0]) == {"path", "position", "score", "text"}


def test_reconstruct_missing_document(run, tmp_path, capsys):
    assert run("reconstruct", "/nowhere.txt", "--out", str(tmp_path / "x.txt")) == 1
    assert "Document not indexed" in capsys.readouterr().err


def test_sync_and_prune(run, docs, capsys):
    run("ingest", "--folder", str(docs))
    (docs / "a.txt").write_text("alpha beta gamma delta", encoding="utf-8")
    (docs / "b.md").unlink()
    capsys.readouterr()

    assert run("sync", "--folder", str(docs)) == 0
    assert run("prune", "--folder", str(docs)) == 0

    lines = capsys.readouterr().out.splitlines()
    assert lines == ["Inserted 0, updated 1, skipped 0, failed 0", "Pruned 1 documents"]


def test_watch_runs_bounded_cycles(run, docs, tmp_path, capsys):
    assert run("watch", "--folder", str(docs), "--interval", "0", "--cycles", "2") == 0
    assert run("search", "-q", "alpha", "--mode", "keyword") == 0
    assert "a.txt" in capsys.readouterr().out


def test_ingest_without_sources(tmp_path, capsys):
    path = tmp_path / "empty.yml"
    path.write_text(
        yaml.safe_dump(
            {
                "database_url": f"sqlite:///{tmp_path / 'empty.db'}",
                "embedder": {"provider": "mock", "dim": 8},
                "index_method": "none",
            }
        ),
        encoding="utf-8",
    )

    assert main(["--config", str(path), "ingest"]) == 1
    assert "No source provided" in capsys.readouterr().err


def test_chat_falls_back_when_llm_is_unreachable(run, docs, monkeypatch, capsys):
    run("ingest", "--folder", str(docs))

    def unreachable(url, payload, **kwargs):
        raise TransportError(f"POST {url} failed")

    answers = iter(["what about zebra crossings?", "exit"])
    monkeypatch.setattr(llm_interface, "post_json", unreachable)
    monkeypatch.setattr("builtins.input", lambda prompt="": next(answers))

    assert run("chat", "--no-stream") == 0
    assert "assistant> [Stubbed answer using" in capsys.readouterr().out


def test_missing_config_file(tmp_path, capsys):
    assert main(["--config", str(tmp_path / "absent.yml"), "init"]) == 1
    assert "Configuration file not found" in capsys.readouterr().err
