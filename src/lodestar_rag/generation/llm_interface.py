"""lodestar_rag.generation.llm_interface

Unified interface and factory for chat model backends.

This module defines a small, provider-agnostic chat abstraction and concrete
implementations backed by an OpenAI-compatible API (through LangChain), a
local HTTP service and Ollama. Token streaming is modelled as a lazy
generator: tokens are produced as they arrive and closing the generator
closes the underlying connection.

Classes
-------
BaseLLM
    Abstract interface used by the chat pipeline and the model-scored reranker.
OpenAIChatLLM
    Chat completions via :class:`langchain_openai.ChatOpenAI`.
LocalHTTPLLM
    Non-streaming chat against a local JSON endpoint.
OllamaLLM
    Chat through Ollama's ``/api/generate`` endpoint.

Functions
---------
create_llm
    Construct an LLM implementation from a configuration mapping.
"""

from __future__ import annotations

import logging
import os
import re
from abc import ABC, abstractmethod
from typing import Any, Callable, Iterator, Mapping, Sequence

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI
from openai import OpenAIError

from lodestar_rag.common.exceptions import ConfigurationError, TransportError
from lodestar_rag.common.http import DEFAULT_TIMEOUT, post_json, stream_json_lines

logger = logging.getLogger(__name__)

Message = Mapping[str, str]

OPENAI_MODEL = "gpt-4o-mini"
LOCAL_ENDPOINT = "http://localhost:8080/chat"
OLLAMA_HOST = "http://localhost:11434"
OLLAMA_MODEL = "llama3.1:8b"

_WORD_RE = re.compile(r"\w+")
_MESSAGE_TYPES = {"system": SystemMessage, "user": HumanMessage, "assistant": AIMessage}


class BaseLLM(ABC):
    """Abstract interface for chat models.

    Subclasses implement :meth:`stream_chat`; :meth:`complete` may be
    overridden where the backend offers a cheaper non-streaming call.
    """

    @classmethod
    @abstractmethod
    def from_config_dict(cls, config: Mapping[str, Any]) -> "BaseLLM":
        """Create an LLM from a configuration mapping."""

    @abstractmethod
    def stream_chat(self, messages: Sequence[Message]) -> Iterator[str]:
        """Yield answer tokens lazily as they arrive.

        Parameters
        ----------
        messages : Sequence[Mapping[str, str]]
            Ordered ``{"role", "content"}`` messages.

        Raises
        ------
        TransportError
            On network or provider failure.
        """

    def complete(self, messages: Sequence[Message]) -> str:
        return "".join(self.stream_chat(messages))

    def chat(
            self,
            messages: Sequence[Message],
            stream: bool = False,
            on_token: Callable[[str], None] | None = None,
        ) -> str:
        """Return the full answer, optionally streaming tokens to ``on_token``.

        Parameters
        ----------
        messages : Sequence[Mapping[str, str]]
            Ordered ``{"role", "content"}`` messages.
        stream : bool, optional
            Stream tokens as they arrive.
        on_token : Callable[[str], None] or None, optional
            Called with each token when ``stream`` is set.

        Returns
        -------
        str
            The complete answer text.
        """
        if not stream:
            return self.complete(messages)

        parts = []
        for token in self.stream_chat(messages):
            parts.append(token)
            if on_token is not None:
                on_token(token)
        return "".join(parts)

    def score_snippet(self, query: str, snippet: str) -> float:
        """Score a snippet's relevance to ``query`` in ``[0, 1]``.

        The default is the share of distinct query words that also occur as
        words in the snippet.
        """
        q_tokens = set(_WORD_RE.findall(query.lower()))
        s_tokens = set(_WORD_RE.findall(snippet.lower()))
        if not q_tokens or not s_tokens:
            return 0.0
        return min(1.0, max(0.0, len(q_tokens & s_tokens) / len(q_tokens)))


class OpenAIChatLLM(BaseLLM):
    """Chat completions using an OpenAI-compatible API via LangChain.

    This implementation wraps :class:`langchain_openai.ChatOpenAI`.

    Parameters
    ----------
    model_name : str
        Model identifier, e.g. ``"gpt-4o-mini"``.
    api_key : str
        API key.
    api_base : str or None, optional
        Base URL for an OpenAI-compatible endpoint.
    timeout : float, optional
        Request timeout in seconds.
    **model_kwargs : Any
        Forwarded to :class:`~langchain_openai.ChatOpenAI` (e.g. ``temperature``).
    """

    def __init__(
            self,
            model_name: str,
            api_key: str,
            api_base: str | None = None,
            timeout: float = DEFAULT_TIMEOUT,
            **model_kwargs: Any,
        ):
        self.model_name = model_name
        init_kwargs: dict[str, Any] = dict(model_kwargs)
        if api_base:
            init_kwargs["base_url"] = api_base
        self.llm = ChatOpenAI(model=model_name, api_key=api_key, timeout=timeout, **init_kwargs)

    @classmethod
    def from_config_dict(cls, config: Mapping[str, Any]) -> "OpenAIChatLLM":
        """Create a chat LLM from a mapping.

        Raises
        ------
        ConfigurationError
            If no API key is configured or found in ``OPENAI_API_KEY``.
        """
        api_key = config.get("api_key") or os.environ.get("OPENAI_API_KEY")
        if not api_key:
            raise ConfigurationError("OPENAI_API_KEY missing; set it or configure llm.api_key.")
        return cls(
            model_name=config.get("model_name") or OPENAI_MODEL,
            api_key=api_key,
            api_base=config.get("api_base"),
            timeout=float(config.get("timeout", DEFAULT_TIMEOUT)),
            **dict(config.get("model_kwargs") or {}),
        )

    @staticmethod
    def _as_langchain(messages: Sequence[Message]) -> list[BaseMessage]:
        converted: list[BaseMessage] = []
        for m in messages:
            message_cls = _MESSAGE_TYPES.get(m["role"], HumanMessage)
            converted.append(message_cls(content=m["content"]))
        return converted

    def stream_chat(self, messages: Sequence[Message]) -> Iterator[str]:
        try:
            for chunk in self.llm.stream(self._as_langchain(messages)):
                if chunk.content:
                    yield chunk.content
        except OpenAIError as exc:
            raise TransportError(f"Chat request to {self.model_name} failed: {exc}") from exc

    def complete(self, messages: Sequence[Message]) -> str:
        try:
            return self.llm.invoke(self._as_langchain(messages)).content or ""
        except OpenAIError as exc:
            raise TransportError(f"Chat request to {self.model_name} failed: {exc}") from exc


class LocalHTTPLLM(BaseLLM):
    """Non-streaming chat against a local JSON endpoint.

    The endpoint receives ``{"model", "messages", "stream": false}`` and
    answers with ``{"content": ...}`` or an OpenAI-style ``choices`` list.
    """

    def __init__(
            self,
            endpoint: str = LOCAL_ENDPOINT,
            model_name: str | None = None,
            timeout: float = DEFAULT_TIMEOUT,
        ):
        self.endpoint = endpoint
        self.model_name = model_name
        self.timeout = timeout

    @classmethod
    def from_config_dict(cls, config: Mapping[str, Any]) -> "LocalHTTPLLM":
        return cls(
            endpoint=config.get("endpoint") or os.environ.get("LLM_ENDPOINT") or LOCAL_ENDPOINT,
            model_name=config.get("model_name"),
            timeout=float(config.get("timeout", DEFAULT_TIMEOUT)),
        )

    def complete(self, messages: Sequence[Message]) -> str:
        body = post_json(
            self.endpoint,
            {"model": self.model_name, "messages": [dict(m) for m in messages], "stream": False},
            timeout=self.timeout,
        )
        if not isinstance(body, dict):
            return ""
        if body.get("content"):
            return str(body["content"])
        try:
            return body["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError):
            return ""

    def stream_chat(self, messages: Sequence[Message]) -> Iterator[str]:
        text = self.complete(messages)
        if text:
            yield text


class OllamaLLM(BaseLLM):
    """Chat through Ollama's ``/api/generate`` endpoint.

    Messages are flattened into one prompt of ``role: content`` paragraphs.
    Streaming reads newline-delimited JSON objects and yields their
    ``response`` fields.
    """

    def __init__(
            self,
            model_name: str = OLLAMA_MODEL,
            host: str = OLLAMA_HOST,
            timeout: float = DEFAULT_TIMEOUT,
        ):
        self.model_name = model_name
        self.host = host.rstrip("/")
        self.timeout = timeout

    @classmethod
    def from_config_dict(cls, config: Mapping[str, Any]) -> "OllamaLLM":
        model = config.get("model_name")
        if not model or model == OPENAI_MODEL:
            model = OLLAMA_MODEL
        return cls(
            model_name=model,
            host=config.get("host") or os.environ.get("OLLAMA_HOST") or OLLAMA_HOST,
            timeout=float(config.get("timeout", DEFAULT_TIMEOUT)),
        )

    @staticmethod
    def _prompt(messages: Sequence[Message]) -> str:
        return "\n\n".join(f"{m['role']}: {m['content']}" for m in messages)

    def stream_chat(self, messages: Sequence[Message]) -> Iterator[str]:
        payload = {"model": self.model_name, "prompt": self._prompt(messages), "stream": True}
        for obj in stream_json_lines(f"{self.host}/api/generate", payload, timeout=self.timeout):
            token = obj.get("response")
            if token:
                yield token
            if obj.get("done"):
                return

    def complete(self, messages: Sequence[Message]) -> str:
        payload = {"model": self.model_name, "prompt": self._prompt(messages), "stream": False}
        body = post_json(f"{self.host}/api/generate", payload, timeout=self.timeout)
        return str(body.get("response") or "") if isinstance(body, dict) else ""


# ----------------- Factory helpers -----------------

def _get_llm_provider(cfg: Mapping[str, Any]) -> str:
    for key in ("provider", "kind", "type"):
        val = cfg.get(key)
        if isinstance(val, str) and val.strip():
            return val.strip().lower()
    return "openai"


def create_llm(config: Mapping[str, Any]) -> BaseLLM:
    """Create an LLM implementation from a configuration mapping.

    The implementation is selected by ``provider`` (or ``kind``/``type``):
    ``openai``, ``local`` or ``ollama``. Unknown providers fall back to
    ``openai`` with a warning.

    Parameters
    ----------
    config : Mapping[str, Any]
        LLM configuration section.

    Returns
    -------
    BaseLLM
        An initialised LLM implementation.

    Raises
    ------
    ConfigurationError
        If ``config`` is not a mapping or credentials are missing.
    """
    if not isinstance(config, Mapping):
        raise ConfigurationError(f"create_llm expected a mapping, got {type(config).__name__}")

    registry = {
        "openai": OpenAIChatLLM,
        "local": LocalHTTPLLM,
        "http": LocalHTTPLLM,
        "ollama": OllamaLLM,
    }
    provider = _get_llm_provider(config)
    cls = registry.get(provider)
    if cls is None:
        logger.warning("Unknown LLM provider %r; using openai", provider)
        cls = OpenAIChatLLM
    return cls.from_config_dict(dict(config))


__all__ = [
    "BaseLLM",
    "OpenAIChatLLM",
    "LocalHTTPLLM",
    "OllamaLLM",
    "create_llm",
]
