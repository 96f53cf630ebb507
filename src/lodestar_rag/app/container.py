"""lodestar_rag.app.container

Composition root for Lodestar.

This module is the single place where concrete implementations are wired
together from configuration (catalog, embedder, LLM, reranker, ingestion
pipeline, search engine and chat pipeline). Components are constructed
lazily and cached on first access.

Notes
-----
- Keep this module importable with minimal side effects:
  - do not open database connections at import time
  - do not perform network calls at import time
  - construct expensive objects lazily (cached on first access)

Examples
--------
>>> from lodestar_rag.config import GlobalConfig
>>> from lodestar_rag.app.container import build_container
>>> cfg = GlobalConfig.load()
>>> c = build_container(cfg)
>>> results = c.search.query("vector databases", mode="hybrid")
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import cached_property
from typing import Any

from lodestar_rag.config import GlobalConfig


@dataclass(frozen=True)
class LodestarContainer:
    """Holds the configured, cached runtime components.

    Parameters
    ----------
    config : GlobalConfig
        Loaded global configuration.
    """

    config: GlobalConfig

    @cached_property
    def catalog(self) -> Any:
        """Return the catalog bound to the configured database and project."""
        from lodestar_rag.catalog import Catalog

        return Catalog.from_config(self.config)

    @cached_property
    def embedder(self) -> Any:
        """Return the embedding provider used for chunks and queries."""
        from lodestar_rag.retrieval.embedder import create_embedder

        return create_embedder(self.config.embedder)

    @cached_property
    def llm(self) -> Any:
        """Return the chat model used to answer questions."""
        from lodestar_rag.generation.llm_interface import create_llm

        return create_llm(self.config.llm)

    def reranker(self, name: str | None = None, endpoint: str | None = None) -> Any:
        """Return a reranker, overriding the configured provider or endpoint.

        The LLM is only constructed for the ``llm`` reranker.
        """
        from lodestar_rag.retrieval.reranker import create_reranker

        section = dict(self.config.reranker)
        if endpoint:
            section["endpoint"] = endpoint
        kind = (name or section.get("provider") or "heuristic").lower()
        llm = self.llm if kind == "llm" else None
        return create_reranker(kind, config=section, llm=llm)

    @cached_property
    def ingestion(self) -> Any:
        """Return the ingestion pipeline writing into :attr:`catalog`."""
        from lodestar_rag.ingestion.pipeline import IngestionPipeline

        return IngestionPipeline.from_config(self.config, self.catalog, self.embedder)

    @cached_property
    def search(self) -> Any:
        """Return the search engine over :attr:`catalog`."""
        from lodestar_rag.retrieval.search import SearchEngine

        return SearchEngine.from_config(self.config, self.catalog, self.embedder)

    @cached_property
    def prompt(self) -> Any:
        """Return the chat prompt, from ``chat_prompt`` when configured."""
        from lodestar_rag.generation.prompt_builder import DEFAULT_CHAT_PROMPT, PromptTemplate

        section = self.config.raw.get("chat_prompt")
        if not section:
            return DEFAULT_CHAT_PROMPT
        return PromptTemplate.from_dict(section)

    @cached_property
    def chat(self) -> Any:
        """Return the fully wired chat pipeline."""
        from lodestar_rag.pipelines.rag_pipeline import ChatPipeline

        return ChatPipeline(
            search=self.search,
            llm=self.llm,
            catalog=self.catalog,
            prompt=self.prompt,
            top_k=self.config.top_k,
        )

    def init_catalog(self) -> None:
        """Create the project schema, tables and indexes if missing."""
        self.catalog.init(self.config.embed_dim, index_method=self.config.index_method)


def build_container(config: GlobalConfig) -> LodestarContainer:
    """Create a :class:`~lodestar_rag.app.container.LodestarContainer`.

    Parameters
    ----------
    config : GlobalConfig
        Loaded global configuration.

    Returns
    -------
    LodestarContainer
        Container instance with cached component accessors.
    """
    return LodestarContainer(config=config)


__all__ = ["LodestarContainer", "build_container"]
