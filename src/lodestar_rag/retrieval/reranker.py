"""lodestar_rag.retrieval.reranker

Second-pass rerankers for retrieved candidates.

This module defines:
- an abstract scorer interface returning one score per snippet
- a heuristic query-term overlap scorer
- a model-scored reranker delegating to an LLM with per-snippet fallback
- an HTTP cross-encoder client
- :func:`rerank_results`, a pure stable re-ordering of search results
- a small reranker factory for configuration-driven construction
"""

from __future__ import annotations

import logging
import os
import re
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import Any, Mapping, Sequence

from lodestar_rag.common.exceptions import TransportError
from lodestar_rag.common.http import DEFAULT_TIMEOUT, post_json
from lodestar_rag.common.schemas import SearchResult
from lodestar_rag.generation.llm_interface import BaseLLM

logger = logging.getLogger(__name__)

RERANK_ENDPOINT = "http://localhost:8081/rerank"

_WORD_RE = re.compile(r"\w+")


class BaseReranker(ABC):
    """Abstract interface for scoring snippets against a query."""

    @abstractmethod
    def score(self, query: str, snippets: Sequence[str]) -> list[float]:
        """Return one score per snippet, in input order."""
        raise NotImplementedError


class HeuristicReranker(BaseReranker):
    """Share of distinct query words found as substrings of each snippet."""

    def score(self, query: str, snippets: Sequence[str]) -> list[float]:
        terms = list(dict.fromkeys(_WORD_RE.findall(query.lower())))
        if not terms:
            return [0.0 for _ in snippets]
        scores = []
        for snippet in snippets:
            haystack = str(snippet).lower()
            hits = sum(1 for t in terms if t in haystack)
            scores.append(min(1.0, max(0.0, hits / len(terms))))
        return scores


class LLMReranker(BaseReranker):
    """Model-scored reranker.

    Each snippet is scored by ``llm.score_snippet``. A failure for one snippet
    falls back to the heuristic score for that snippet only. Without an LLM,
    every snippet is scored heuristically.
    """

    def __init__(self, llm: BaseLLM | None = None):
        self.llm = llm
        self.heuristic = HeuristicReranker()

    def score(self, query: str, snippets: Sequence[str]) -> list[float]:
        if self.llm is None:
            return self.heuristic.score(query, snippets)
        scores = []
        for snippet in snippets:
            try:
                scores.append(float(self.llm.score_snippet(query, snippet)))
            except (TransportError, ValueError, TypeError) as exc:
                logger.debug("Falling back to heuristic score: %s", exc)
                scores.append(self.heuristic.score(query, [snippet])[0])
        return scores


class CrossEncoderHTTPReranker(BaseReranker):
    """Client for an external rerank service.

    Sends ``{"model", "query", "inputs"}`` in one request and expects either
    ``{"scores": [...]}`` or a bare list, aligned with ``inputs``.
    """

    def __init__(
            self,
            endpoint: str | None = None,
            model: str | None = None,
            timeout: float = DEFAULT_TIMEOUT,
        ):
        self.endpoint = endpoint or os.environ.get("RERANK_ENDPOINT") or RERANK_ENDPOINT
        self.model = model or os.environ.get("RERANK_MODEL")
        self.timeout = timeout

    def score(self, query: str, snippets: Sequence[str]) -> list[float]:
        body = post_json(
            self.endpoint,
            {"model": self.model, "query": query, "inputs": list(snippets)},
            timeout=self.timeout,
        )
        raw = body.get("scores") if isinstance(body, dict) else body
        if not isinstance(raw, list) or len(raw) != len(snippets):
            raise TransportError(
                f"Rerank service returned {len(raw) if isinstance(raw, list) else 'no'} scores "
                f"for {len(snippets)} inputs"
            )
        try:
            return [float(s) for s in raw]
        except (TypeError, ValueError) as exc:
            raise TransportError("Rerank service returned non-numeric scores") from exc


def rerank_results(
        reranker: BaseReranker,
        query: str,
        results: Sequence[SearchResult],
    ) -> list[SearchResult]:
    """Rescore and stably re-order results.

    The input is not modified; new results carry ``rerank_score`` and keep
    their original retrieval ``score``.

    Raises
    ------
    TransportError
        If the reranker fails or returns a misaligned score list.
    """
    if not results:
        return []
    scores = reranker.score(query, [r.text for r in results])
    if len(scores) != len(results):
        raise TransportError(f"Reranker returned {len(scores)} scores for {len(results)} results")
    rescored = [replace(r, rerank_score=float(s)) for r, s in zip(results, scores)]
    rescored.sort(key=lambda r: r.rerank_score, reverse=True)
    return rescored


def create_reranker(
        name: str | None = None,
        *,
        config: Mapping[str, Any] | None = None,
        llm: BaseLLM | None = None,
    ) -> BaseReranker:
    """Create a reranker by name.

    ``heuristic``, ``llm``, and ``crossencoder``/``cross-encoder``/``http``
    are recognised; anything else falls back to the heuristic scorer.
    """
    cfg = dict(config or {})
    kind = str(name or cfg.get("provider") or "heuristic").lower().strip()

    if kind == "llm":
        return LLMReranker(llm=llm)
    if kind in ("crossencoder", "cross-encoder", "cross_encoder", "http"):
        return CrossEncoderHTTPReranker(
            endpoint=cfg.get("endpoint"),
            model=cfg.get("model"),
            timeout=float(cfg.get("timeout", DEFAULT_TIMEOUT)),
        )
    if kind != "heuristic":
        logger.warning("Unknown reranker %r; using heuristic", kind)
    return HeuristicReranker()


__all__ = [
    "BaseReranker",
    "HeuristicReranker",
    "LLMReranker",
    "CrossEncoderHTTPReranker",
    "rerank_results",
    "create_reranker",
]
