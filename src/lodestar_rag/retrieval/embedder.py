"""lodestar_rag.retrieval.embedder

Embedding interfaces and factories for ingestion and retrieval.

This module defines a small provider-agnostic interface for producing vector
embeddings from text, along with concrete implementations for an
OpenAI-compatible API (through LlamaIndex), a local HTTP service, Ollama and a
deterministic offline mock. A factory function constructs an embedder from
configuration.

Classes
-------
BaseEmbedder
    Abstract interface used by the ingestion pipeline and search engine.
OpenAILikeEmbedder
    Embedder backed by an OpenAI-compatible HTTP API via LlamaIndex.
LocalHTTPEmbedder
    Embedder backed by a local ``{model, input}`` HTTP endpoint.
OllamaEmbedder
    Embedder backed by Ollama's ``/api/embeddings`` endpoint.
MockEmbedder
    Deterministic pseudo-random embeddings for offline use and tests.

Functions
---------
create_embedder
    Create an embedder implementation from a configuration mapping.
"""

from __future__ import annotations

import logging
import os
import random
import zlib
from abc import ABC, abstractmethod
from typing import Any, Mapping, Sequence

from openai import OpenAIError

from lodestar_rag.common.exceptions import ConfigurationError, TransportError
from lodestar_rag.common.http import DEFAULT_TIMEOUT, post_json

logger = logging.getLogger(__name__)

DEFAULT_DIM = 3072
OPENAI_API_BASE = "https://api.openai.com/v1"
OPENAI_MODEL = "text-embedding-3-large"
LOCAL_ENDPOINT = "http://localhost:8080/embed"
OLLAMA_HOST = "http://localhost:11434"
OLLAMA_MODEL = "mxbai-embed-large"


class BaseEmbedder(ABC):
    """Abstract interface for text embedding.

    Attributes
    ----------
    dim : int or None
        Expected embedding dimension, when known.
    """

    dim: int | None = None

    @classmethod
    @abstractmethod
    def from_config_dict(cls, config: Mapping[str, Any]) -> "BaseEmbedder":
        """Create an embedder from a configuration mapping.

        Raises
        ------
        ConfigurationError
            If required settings or credentials are missing.
        """

    @abstractmethod
    def embed_texts(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed texts, returning one vector per text in input order.

        Raises
        ------
        TransportError
            On network, credential or provider failure.
        """

    def embed_query(self, query: str) -> list[float]:
        """Embed a single query string."""
        return self.embed_texts([query])[0]


def _checked(vectors: list, expected: int) -> list[list[float]]:
    if len(vectors) != expected:
        raise TransportError(f"Embedding provider returned {len(vectors)} vectors for {expected} texts.")
    return [[float(x) for x in v] for v in vectors]


class OpenAILikeEmbedder(BaseEmbedder):
    """Embedder backed by an OpenAI-compatible embedding API via LlamaIndex.

    This implementation wraps :class:`llama_index.embeddings.openai_like.OpenAILikeEmbedding`.

    Parameters
    ----------
    model_name : str
        Model identifier for the embedding endpoint.
    api_key : str
        API key sent as a bearer token.
    api_base : str, optional
        Base URL of the API. Defaults to OpenAI's.
    dim : int or None, optional
        Expected embedding dimension.
    timeout : float, optional
        Request timeout in seconds.
    max_retries : int, optional
        Retries performed by the underlying client.
    embed_batch_size : int, optional
        Texts sent per request.
    """

    def __init__(
            self,
            model_name: str,
            *,
            api_key: str,
            api_base: str = OPENAI_API_BASE,
            dim: int | None = None,
            timeout: float = DEFAULT_TIMEOUT,
            max_retries: int = 3,
            embed_batch_size: int = 100,
        ):
        from llama_index.embeddings.openai_like import OpenAILikeEmbedding

        self.model_name = model_name
        self.dim = dim
        self.embedder = OpenAILikeEmbedding(
            model_name=model_name,
            api_base=api_base,
            api_key=api_key,
            timeout=timeout,
            max_retries=max_retries,
            embed_batch_size=embed_batch_size,
            reuse_client=True,
        )

    @classmethod
    def from_config_dict(cls, config: Mapping[str, Any]) -> "OpenAILikeEmbedder":
        """Create an OpenAI-compatible embedder from a configuration mapping.

        The API key is read from ``api_key`` or the ``OPENAI_API_KEY``
        environment variable.

        Raises
        ------
        ConfigurationError
            If no API key is available.
        """
        api_key = config.get("api_key") or os.environ.get("OPENAI_API_KEY")
        if not api_key:
            raise ConfigurationError("OPENAI_API_KEY missing; set it or configure embedder.api_key.")
        return cls(
            model_name=config.get("model_name") or OPENAI_MODEL,
            api_key=api_key,
            api_base=config.get("api_base") or OPENAI_API_BASE,
            dim=config.get("dim"),
            timeout=float(config.get("timeout", DEFAULT_TIMEOUT)),
            max_retries=int(config.get("max_retries", 3)),
            embed_batch_size=int(config.get("embed_batch_size", 100)),
        )

    def embed_texts(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        try:
            vectors = self.embedder.get_text_embedding_batch(list(texts))
        except OpenAIError as exc:
            raise TransportError(f"Embedding request to {self.model_name} failed: {exc}") from exc
        return _checked(vectors, len(texts))


class LocalHTTPEmbedder(BaseEmbedder):
    """Embedder backed by a local HTTP service.

    The service receives ``{"model": ..., "input": [...]}`` and answers with
    ``{"data": [{"embedding": [...]}, ...]}``.
    """

    def __init__(
            self,
            endpoint: str = LOCAL_ENDPOINT,
            model_name: str | None = None,
            dim: int | None = None,
            timeout: float = DEFAULT_TIMEOUT,
        ):
        self.endpoint = endpoint
        self.model_name = model_name
        self.dim = dim
        self.timeout = timeout

    @classmethod
    def from_config_dict(cls, config: Mapping[str, Any]) -> "LocalHTTPEmbedder":
        return cls(
            endpoint=config.get("endpoint") or os.environ.get("EMBEDDINGS_ENDPOINT") or LOCAL_ENDPOINT,
            model_name=config.get("model_name"),
            dim=config.get("dim"),
            timeout=float(config.get("timeout", DEFAULT_TIMEOUT)),
        )

    def embed_texts(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        body = post_json(self.endpoint, {"model": self.model_name, "input": list(texts)}, timeout=self.timeout)
        try:
            vectors = [item["embedding"] for item in body["data"]]
        except (KeyError, TypeError) as exc:
            raise TransportError(f"Unexpected embedding response from {self.endpoint}") from exc
        return _checked(vectors, len(texts))


class OllamaEmbedder(BaseEmbedder):
    """Embedder backed by Ollama, one request per text."""

    def __init__(
            self,
            model_name: str = OLLAMA_MODEL,
            host: str = OLLAMA_HOST,
            dim: int | None = None,
            timeout: float = DEFAULT_TIMEOUT,
        ):
        self.model_name = model_name
        self.host = host.rstrip("/")
        self.dim = dim
        self.timeout = timeout

    @classmethod
    def from_config_dict(cls, config: Mapping[str, Any]) -> "OllamaEmbedder":
        model = config.get("model_name")
        if not model or model == OPENAI_MODEL:
            model = OLLAMA_MODEL
        return cls(
            model_name=model,
            host=config.get("host") or os.environ.get("OLLAMA_HOST") or OLLAMA_HOST,
            dim=config.get("dim"),
            timeout=float(config.get("timeout", DEFAULT_TIMEOUT)),
        )

    def embed_texts(self, texts: Sequence[str]) -> list[list[float]]:
        url = f"{self.host}/api/embeddings"
        vectors = []
        for text in texts:
            body = post_json(url, {"model": self.model_name, "prompt": text}, timeout=self.timeout)
            if not isinstance(body, dict) or "embedding" not in body:
                raise TransportError(f"Unexpected embedding response from {url}")
            vectors.append(body["embedding"])
        return _checked(vectors, len(texts))


class MockEmbedder(BaseEmbedder):
    """Deterministic offline embedder.

    Each text seeds a PRNG with its CRC32, producing ``dim`` values uniformly
    distributed in ``[-1, 1)``. The same text always yields the same vector.
    """

    def __init__(self, dim: int = DEFAULT_DIM):
        if int(dim) <= 0:
            raise ConfigurationError("Mock embedder dimension must be positive.")
        self.dim = int(dim)

    @classmethod
    def from_config_dict(cls, config: Mapping[str, Any]) -> "MockEmbedder":
        return cls(dim=int(config.get("dim") or DEFAULT_DIM))

    def embed_texts(self, texts: Sequence[str]) -> list[list[float]]:
        vectors = []
        for text in texts:
            rng = random.Random(zlib.crc32(str(text).encode("utf-8")))
            vectors.append([rng.random() * 2.0 - 1.0 for _ in range(self.dim)])
        return vectors


# ----------------- Factory helpers -----------------

def _get_provider(cfg: Mapping[str, Any]) -> str:
    """Extract the provider discriminator from a config mapping."""
    for key in ("provider", "kind", "type"):
        val = cfg.get(key)
        if isinstance(val, str) and val.strip():
            return val.strip()
    return "openai"


def _normalize_provider(provider: str) -> str:
    return provider.strip().lower().replace("-", "_").replace(" ", "_")


def create_embedder(config: Mapping[str, Any]) -> BaseEmbedder:
    """Create an embedder implementation from a configuration mapping.

    The implementation is selected by ``provider`` (or ``kind``/``type``):
    ``openai`` (also ``openai_like``), ``local`` (also ``http``), ``ollama``
    or ``mock``. Defaults to ``openai``.

    Parameters
    ----------
    config : Mapping[str, Any]
        Embedder configuration section.

    Returns
    -------
    BaseEmbedder
        An initialised embedder implementation.

    Raises
    ------
    ConfigurationError
        If ``config`` is not a mapping or the provider is unknown.
    """
    if not isinstance(config, Mapping):
        raise ConfigurationError(f"create_embedder expected a mapping, got {type(config).__name__}")

    provider_raw = _get_provider(config)
    provider = _normalize_provider(provider_raw)

    registry = {
        "openai": OpenAILikeEmbedder,
        "openai_like": OpenAILikeEmbedder,
        "local": LocalHTTPEmbedder,
        "http": LocalHTTPEmbedder,
        "ollama": OllamaEmbedder,
        "mock": MockEmbedder,
    }

    cls = registry.get(provider)
    if cls is None:
        raise ConfigurationError(
            f"Unknown embeddings provider '{provider_raw}'. Supported providers: {sorted(registry)}."
        )
    return cls.from_config_dict(dict(config))


__all__ = [
    "BaseEmbedder",
    "OpenAILikeEmbedder",
    "LocalHTTPEmbedder",
    "OllamaEmbedder",
    "MockEmbedder",
    "create_embedder",
]
