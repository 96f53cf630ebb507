"""lodestar_rag.retrieval.search

Query-time retrieval over the document catalog.

The :class:`SearchEngine` validates query parameters, embeds the query when
the mode needs it, dispatches to the catalog's vector, keyword or hybrid
ranking and applies post-filters. Reranking and result export live here too,
since they operate on the materialised result list.

Classes
-------
SearchEngine
    Validating front end for catalog retrieval.

Functions
---------
apply_path_prefix
    Drop results whose document path does not start with a prefix.
export_results
    Write results to a ``.txt``, ``.csv`` or ``.json`` file.
results_table
    Build a rich table of results for the console.
"""

from __future__ import annotations

import csv
import json
import logging
from pathlib import Path
from typing import Any, Mapping, Sequence

from rich.table import Table

from lodestar_rag.catalog import Catalog
from lodestar_rag.catalog.lexical import RANK_FUNCTIONS
from lodestar_rag.common.exceptions import ValidationError
from lodestar_rag.common.schemas import SearchResult
from lodestar_rag.retrieval.embedder import BaseEmbedder
from lodestar_rag.retrieval.reranker import BaseReranker, rerank_results
from lodestar_rag.retrieval.scoring import clamp_alpha

logger = logging.getLogger(__name__)

MODES = ("vector", "keyword", "hybrid")
DEFAULT_TOP_K = 8
SNIPPET_WIDTH = 80


def apply_path_prefix(results: Sequence[SearchResult], prefix: str | None) -> list[SearchResult]:
    """Keep results whose document path starts with ``prefix``."""
    if not prefix:
        return list(results)
    return [r for r in results if r.document_path.startswith(prefix)]


class SearchEngine:
    """Validate and run retrieval queries against a catalog.

    Parameters
    ----------
    catalog : Catalog
        Catalog to query. Queries are read-only apart from optional audit
        records.
    embedder : BaseEmbedder
        Provider used to embed query text for vector and hybrid modes.
    top_k : int, optional
        Default result count when a query does not give one.
    audit_queries : bool, optional
        Record each query with its filters and results.
    """

    def __init__(
            self,
            catalog: Catalog,
            embedder: BaseEmbedder,
            top_k: int = DEFAULT_TOP_K,
            audit_queries: bool = False,
        ):
        self.catalog = catalog
        self.embedder = embedder
        self.top_k = top_k
        self.audit_queries = audit_queries

    @classmethod
    def from_config(cls, config, catalog: Catalog, embedder: BaseEmbedder) -> "SearchEngine":
        """Create a search engine from a :class:`~lodestar_rag.config.GlobalConfig`."""
        return cls(
            catalog=catalog,
            embedder=embedder,
            top_k=config.top_k,
            audit_queries=bool(config.retrieval.get("audit_queries", False)),
        )

    @staticmethod
    def _resolve_mode(mode: str | None, hybrid: bool) -> str:
        if mode is None:
            return "hybrid" if hybrid else "vector"
        resolved = str(mode).strip().lower()
        if resolved not in MODES:
            raise ValidationError(f"Unknown search mode: {mode!r}", field="mode", details={"allowed": list(MODES)})
        return resolved

    @staticmethod
    def _resolve_top_k(top_k: Any) -> int:
        if isinstance(top_k, bool) or not isinstance(top_k, int) or top_k <= 0:
            raise ValidationError(f"top_k must be a positive integer, got {top_k!r}", field="top_k")
        return top_k

    @staticmethod
    def _resolve_rank_function(rank_function: str | None) -> str:
        if rank_function in RANK_FUNCTIONS:
            return rank_function
        if rank_function is not None:
            logger.warning("Unknown rank function %r; using 'rank'", rank_function)
        return "rank"

    def query(
            self,
            text: str,
            top_k: int | None = None,
            filters: Mapping[str, Any] | None = None,
            mode: str | None = None,
            alpha: float = 0.5,
            rank_function: str | None = "rank",
            hybrid: bool = False,
        ) -> list[SearchResult]:
        """Return ranked chunks for ``text``.

        Parameters
        ----------
        text : str
            Query text.
        top_k : int or None, optional
            Maximum number of results before post-filtering. Defaults to the
            engine's ``top_k``.
        filters : Mapping[str, Any] or None, optional
            Post-filters. ``path_prefix`` keeps results whose document path
            starts with the given prefix; it is applied after ``top_k``
            truncation, so fewer than ``top_k`` rows may be returned.
        mode : {"vector", "keyword", "hybrid"} or None, optional
            Ranking mode. ``None`` selects ``vector``, or ``hybrid`` when
            ``hybrid`` is set.
        alpha : float, optional
            Vector weight for hybrid mode, clamped into ``[0, 1]``.
        rank_function : {"rank", "rank_cd"}, optional
            Lexical ranking function. Unknown names fall back to ``rank``.
        hybrid : bool, optional
            Legacy switch selecting hybrid mode when ``mode`` is not given.

        Returns
        -------
        list[SearchResult]
            Results in descending score order.

        Raises
        ------
        ValidationError
            If ``top_k`` is not a positive integer or ``mode`` is unknown.
        TransportError
            If embedding the query fails.
        """
        resolved_mode = self._resolve_mode(mode, hybrid)
        limit = self._resolve_top_k(self.top_k if top_k is None else top_k)
        rank_fn = self._resolve_rank_function(rank_function)
        filters = dict(filters or {})

        embedding = None
        if resolved_mode == "keyword":
            results = self.catalog.keyword_search(text, limit, rank_fn)
        else:
            embedding = self.embedder.embed_query(text)
            if resolved_mode == "hybrid":
                results = self.catalog.hybrid_search(embedding, text, clamp_alpha(alpha), limit, rank_fn)
            else:
                results = self.catalog.vector_search(embedding, limit)

        results = apply_path_prefix(results, filters.get("path_prefix"))
        logger.debug("Query %r (%s) returned %d results", text, resolved_mode, len(results))

        if self.audit_queries:
            self.catalog.record_query(
                text,
                embedding,
                {**filters, "mode": resolved_mode},
                [{"chunk_id": r.chunk_id, "path": r.document_path, "score": r.score} for r in results],
            )
        return results

    def rerank(self, reranker: BaseReranker, query: str, results: Sequence[SearchResult]) -> list[SearchResult]:
        """Reorder ``results`` by a second-pass reranker."""
        return rerank_results(reranker, query, results)


def export_results(results: Sequence[SearchResult], out: str | Path) -> Path:
    """Write results to ``out``; the format follows its extension.

    ``.txt`` writes tab-separated ``score path position text`` lines, ``.csv``
    writes the same columns with a header row and ``.json`` writes the full
    result records.

    Raises
    ------
    ValidationError
        If the extension is not one of ``.txt``, ``.csv`` or ``.json``.
    """
    path = Path(out)
    suffix = path.suffix.lower()
    if suffix == ".txt":
        with path.open("w", encoding="utf-8") as f:
            for r in results:
                f.write(f"{r.display_score:.3f}\t{r.document_path}\t{r.position}\t{r.text}\n")
    elif suffix == ".csv":
        with path.open("w", encoding="utf-8", newline="") as f:
            writer = csv.writer(f)
            writer.writerow(["score", "path", "pos", "text"])
            for r in results:
                writer.writerow([r.display_score, r.document_path, r.position, r.text])
    elif suffix == ".json":
        path.write_text(json.dumps([r.to_dict() for r in results], indent=2), encoding="utf-8")
    else:
        raise ValidationError(f"Unknown export format: {out}", field="download")
    logger.info("Exported %d results to %s", len(results), path)
    return path


def results_table(results: Sequence[SearchResult]) -> Table:
    """Build a ``score | path | pos | snippet`` table for console output.

    Snippets are the first characters of each chunk with newlines flattened.
    """
    table = Table(show_header=True, header_style="bold")
    table.add_column("score", justify="right")
    table.add_column("path", overflow="fold")
    table.add_column("pos", justify="right")
    table.add_column("snippet")
    for r in results:
        table.add_row(
            f"{r.display_score:.3f}",
            r.document_path,
            str(r.position),
            r.text[:SNIPPET_WIDTH].replace("\n", " "),
        )
    return table


__all__ = ["SearchEngine", "apply_path_prefix", "export_results", "results_table"]
