"""lodestar_rag

Lodestar: local retrieval-augmented search over documents and databases.

This package ingests folders of documents and rows of external databases into
a PostgreSQL (pgvector) catalog, keeps that catalog in sync with its sources
by content hash, and answers vector, keyword and hybrid queries, optionally
reranked and fed to a chat model.

Attributes
----------
__version__ : str
    Package version string. Defaults to ``"0.0.0-dev"`` when package metadata is
    unavailable.

Modules
-------
config
    Layered configuration loader and cached accessors.
catalog
    Persistent storage of documents, chunks and vectors.
ingestion
    Chunking, extraction, sources and the incremental ingestion pipeline.
retrieval
    Embedding providers, search modes, scoring and rerankers.
generation
    Chat model interfaces and prompt templates.
pipelines
    Retrieval-augmented chat orchestration.
app
    Composition root and the ``lodestar`` command line.
common
    Shared schemas, exceptions, logging and HTTP helpers.

Exports
-------
GlobalConfig
    Global configuration loader and accessor.
LodestarContainer
    Cached runtime component container.
build_container
    Factory function to construct a configured :class:`~lodestar_rag.app.container.LodestarContainer`.
ChatPipeline
    Retrieval-augmented chat pipeline.
SearchResult
    A ranked candidate row.
SourceDocument
    A document ready for ingestion.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("lodestar-rag")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"

from .config import GlobalConfig
from .app.container import LodestarContainer, build_container
from .pipelines.rag_pipeline import ChatPipeline
from .common import SearchResult, SourceDocument

__all__ = [
    "__version__",
    "GlobalConfig",
    "LodestarContainer",
    "build_container",
    "ChatPipeline",
    "SearchResult",
    "SourceDocument",
]
