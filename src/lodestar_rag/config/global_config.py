"""lodestar_rag.config.global_config

Global configuration loader and accessors.

This module defines a lightweight wrapper around a raw configuration
dictionary, providing validated, cached access to the configuration sections
used across ingestion, retrieval and generation.

Configuration is layered: built-in defaults (some taken from environment
variables), then ``~/.lodestar.yml``, then ``./.lodestar.yml``, then any
explicit overrides. Environment variables of the form ``${VAR}`` are expanded
recursively in all string values at load time.

Classes
-------
GlobalConfig
    Loader and accessor for global project configuration.
"""

from __future__ import annotations

import copy
import logging
import os
import re
from functools import cached_property
from pathlib import Path
from typing import Any, Mapping

import yaml

from lodestar_rag.common.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".lodestar.yml"
SOURCE_TYPES = ("folder", "db")


def _default_project() -> str:
    return re.sub(r"[^a-z0-9_]+", "_", Path.cwd().name.lower()) or "lodestar"


def _defaults() -> dict[str, Any]:
    """Return built-in defaults, reading environment variables at call time."""
    return {
        "database_url": os.environ.get("DATABASE_URL", "postgresql+psycopg://localhost/lodestar"),
        "project": os.environ.get("LODESTAR_PROJECT") or _default_project(),
        "embedder": {
            "provider": os.environ.get("EMBEDDINGS_PROVIDER", "openai"),
            "model_name": os.environ.get("EMBEDDINGS_MODEL", "text-embedding-3-large"),
            "dim": int(os.environ.get("EMBEDDINGS_DIM", "3072")),
        },
        "llm": {
            "provider": os.environ.get("LLM_PROVIDER", "openai"),
            "model_name": os.environ.get("LLM_MODEL", "gpt-4o-mini"),
        },
        "reranker": {
            "provider": "heuristic",
            "endpoint": os.environ.get("RERANK_ENDPOINT", "http://localhost:8081/rerank"),
            "model": os.environ.get("RERANK_MODEL"),
        },
        "chunking": {"size": 1000, "overlap": 150},
        "retrieval": {
            "top_k": 8,
            "alpha": 0.5,
            "rank_function": "rank",
            "re_rank": False,
            "audit_queries": False,
        },
        "ingest": {"workers": 8, "batch_size": 20},
        "index_method": os.environ.get("LODESTAR_INDEX_METHOD", "ivfflat"),
        "sources": [],
    }


def _expand_env(obj):
    """Recursively expand environment variables in a nested structure.

    Parameters
    ----------
    obj : Any
        Object to expand. Supported types are dictionaries, lists, and strings.
        Other types are returned unchanged.

    Returns
    -------
    Any
        A structure of the same shape as ``obj`` with ``${VAR}`` patterns
        expanded in all string values.
    """
    if isinstance(obj, dict):
        return {k: _expand_env(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_expand_env(v) for v in obj]
    if isinstance(obj, str):
        return os.path.expandvars(obj)
    return obj


def _deep_merge(base: dict, override: Mapping) -> dict:
    """Merge ``override`` into ``base`` in place, recursing into mappings."""
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = copy.deepcopy(value)
    return base


def _section(raw: Mapping[str, Any], name: str) -> dict:
    value = raw.get(name) or {}
    if not isinstance(value, Mapping):
        raise ConfigurationError(f"'{name}' must be a mapping, got {type(value).__name__}.")
    return dict(value)


class GlobalConfig:
    """Loader and accessor for global project configuration.

    This class wraps a raw configuration dictionary and exposes validated,
    cached accessors for commonly used configuration sections.

    Parameters
    ----------
    raw : dict
        Raw configuration data, already merged with the defaults.
    config_paths : list[Path] or None, optional
        Files that contributed to ``raw``, in load order.
    """

    def __init__(
            self,
            raw: dict,
            config_paths: list[Path] | None = None,
        ):
        self.raw = raw
        self.config_paths = list(config_paths or [])

    @classmethod
    def load(
            cls,
            path: str | Path | None = None,
            *,
            cwd: str | Path | None = None,
            overrides: Mapping[str, Any] | None = None,
        ) -> "GlobalConfig":
        """Load layered configuration.

        Parameters
        ----------
        path : str or Path or None, optional
            Explicit configuration file. When given, it replaces the
            ``./.lodestar.yml`` layer and must exist.
        cwd : str or Path or None, optional
            Directory searched for ``.lodestar.yml``. Defaults to the current
            working directory.
        overrides : Mapping[str, Any] or None, optional
            Values merged last, e.g. ``{"project": "docs"}`` from the CLI.

        Returns
        -------
        GlobalConfig
            An instance initialised with the merged, environment-expanded data.

        Raises
        ------
        ConfigurationError
            If the explicit ``path`` does not exist or a file is not a mapping.
        """
        merged = _defaults()
        loaded: list[Path] = []

        candidates = [Path.home() / CONFIG_FILENAME]
        if path is not None:
            explicit = Path(path).expanduser().resolve()
            if not explicit.exists():
                raise ConfigurationError(f"Configuration file not found: {explicit}")
            candidates.append(explicit)
        else:
            candidates.append(Path(cwd or Path.cwd()) / CONFIG_FILENAME)

        seen: set[Path] = set()
        for candidate in candidates:
            candidate = candidate.expanduser().resolve()
            if candidate in seen or not candidate.is_file():
                continue
            seen.add(candidate)
            try:
                with candidate.open("r", encoding="utf-8") as f:
                    data = yaml.safe_load(f) or {}
            except yaml.YAMLError as exc:
                logger.warning("Failed reading %s: %s", candidate, exc)
                continue
            if not isinstance(data, Mapping):
                raise ConfigurationError(f"{candidate} must contain a mapping at the top level.")
            _deep_merge(merged, data)
            loaded.append(candidate)

        if overrides:
            _deep_merge(merged, {k: v for k, v in overrides.items() if v is not None})

        return cls(_expand_env(merged), config_paths=loaded)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "GlobalConfig":
        """Build a configuration from defaults plus ``data`` (no files read)."""
        merged = _deep_merge(_defaults(), data)
        return cls(_expand_env(merged))

    def to_dict(self) -> dict:
        return copy.deepcopy(self.raw)

    @cached_property
    def database_url(self) -> str:
        url = self.raw.get("database_url")
        if not isinstance(url, str) or not url.strip():
            raise ConfigurationError("Missing 'database_url' in configuration.")
        return url.strip()

    @cached_property
    def project(self) -> str:
        """Return the project name sanitised for use as a database schema."""
        name = str(self.raw.get("project") or "").lower()
        schema = re.sub(r"[^a-z0-9_]", "_", name)
        if not schema:
            raise ConfigurationError("'project' must be a non-empty name.")
        return schema

    @cached_property
    def embedder(self) -> dict:
        """Return the embedder configuration section.

        Raises
        ------
        ConfigurationError
            If ``dim`` is not a positive integer.
        """
        section = _section(self.raw, "embedder")
        try:
            section["dim"] = int(section.get("dim", 3072))
        except (TypeError, ValueError) as exc:
            raise ConfigurationError("'embedder.dim' must be an integer.") from exc
        if section["dim"] <= 0:
            raise ConfigurationError("'embedder.dim' must be positive.")
        return section

    @cached_property
    def embed_dim(self) -> int:
        return self.embedder["dim"]

    @cached_property
    def llm(self) -> dict:
        return _section(self.raw, "llm")

    @cached_property
    def reranker(self) -> dict:
        return _section(self.raw, "reranker")

    @cached_property
    def chunking(self) -> dict:
        """Return chunk sizing, validated so that ``overlap < size``."""
        section = _section(self.raw, "chunking")
        try:
            size = int(section.get("size", 1000))
            overlap = int(section.get("overlap", 0))
        except (TypeError, ValueError) as exc:
            raise ConfigurationError("'chunking.size' and 'chunking.overlap' must be integers.") from exc
        if size <= 0 or overlap < 0 or overlap >= size:
            raise ConfigurationError(
                "'chunking' requires size > 0 and 0 <= overlap < size.",
                {"size": size, "overlap": overlap},
            )
        return {"size": size, "overlap": overlap}

    @cached_property
    def retrieval(self) -> dict:
        return _section(self.raw, "retrieval")

    @cached_property
    def top_k(self) -> int:
        try:
            return int(self.retrieval.get("top_k", 8))
        except (TypeError, ValueError) as exc:
            raise ConfigurationError("'retrieval.top_k' must be an integer.") from exc

    @cached_property
    def ingest(self) -> dict:
        section = _section(self.raw, "ingest")
        try:
            workers = int(section.get("workers", 8))
            batch_size = int(section.get("batch_size", 20))
        except (TypeError, ValueError) as exc:
            raise ConfigurationError("'ingest.workers' and 'ingest.batch_size' must be integers.") from exc
        return {"workers": max(1, workers), "batch_size": max(1, batch_size)}

    @cached_property
    def index_method(self) -> str:
        method = str(self.raw.get("index_method") or "ivfflat").lower()
        if method not in ("ivfflat", "hnsw", "none"):
            raise ConfigurationError(f"Unknown index_method {method!r}; use ivfflat, hnsw or none.")
        return method

    @cached_property
    def sources(self) -> list[dict]:
        """Return the named source definitions.

        Each entry is a mapping with at least ``type`` (``folder`` or ``db``).
        Folder sources require ``path``; db sources require ``url``.

        Raises
        ------
        ConfigurationError
            If ``sources`` is not a list of well-formed mappings.
        """
        sources = self.raw.get("sources") or []
        if not isinstance(sources, list):
            raise ConfigurationError("'sources' must be a list of mappings.")

        normalised: list[dict] = []
        for i, item in enumerate(sources):
            if not isinstance(item, Mapping):
                raise ConfigurationError(f"Source #{i} must be a mapping.")
            entry = dict(item)
            kind = str(entry.get("type", "")).strip().lower()
            entry["type"] = kind
            entry.setdefault("name", f"source{i + 1}")
            if kind not in SOURCE_TYPES:
                raise ConfigurationError(
                    f"Source #{i} has unknown type {kind!r}; expected one of {SOURCE_TYPES}."
                )
            if kind == "folder" and not entry.get("path"):
                raise ConfigurationError(f"Folder source #{i} requires 'path'.")
            if kind == "db" and not entry.get("url"):
                raise ConfigurationError(f"Database source #{i} requires 'url'.")
            normalised.append(entry)
        return normalised
