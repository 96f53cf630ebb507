"""Shared fixtures: an in-memory SQLite catalog and a deterministic embedder."""

import pytest

from lodestar_rag.catalog import Catalog
from lodestar_rag.catalog.connection import create_catalog_engine
from lodestar_rag.ingestion.chunker import WordWindowChunker
from lodestar_rag.ingestion.pipeline import IngestionPipeline
from lodestar_rag.retrieval.embedder import MockEmbedder

DIM = 8


@pytest.fixture
def catalog():
    engine = create_catalog_engine("sqlite://")
    cat = Catalog(engine)
    cat.init(DIM, index_method="none")
    yield cat
    cat.dispose()


@pytest.fixture
def embedder():
    return MockEmbedder(dim=DIM)


@pytest.fixture
def pipeline(catalog, embedder):
    return IngestionPipeline(catalog, embedder, WordWindowChunker(size=5, overlap=2))


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep tests away from real credentials and user configuration files."""
    for var in (
        "DATABASE_URL",
        "LODESTAR_PROJECT",
        "EMBEDDINGS_PROVIDER",
        "EMBEDDINGS_MODEL",
        "EMBEDDINGS_DIM",
        "LLM_PROVIDER",
        "LLM_MODEL",
        "RERANK_ENDPOINT",
        "RERANK_MODEL",
        "OPENAI_API_KEY",
        "LODESTAR_INDEX_METHOD",
    ):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("HOME", str(tmp_path / "home"))
