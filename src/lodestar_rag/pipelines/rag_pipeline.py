"""lodestar_rag.pipelines.rag_pipeline

Retrieval-augmented chat over the document catalog.

This module defines the :class:`ChatPipeline`, which retrieves context for a
question with hybrid search, renders a chat prompt, asks the configured LLM
for an answer and records both sides of the exchange in the catalog's chat
transcript.

Classes
-------
ChatPipeline
    Orchestrates retrieval, prompt rendering, generation and transcript
    recording for one chat turn.
ChatTurn
    The outcome of one turn.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable

from lodestar_rag.catalog import Catalog
from lodestar_rag.common.exceptions import TransportError
from lodestar_rag.common.schemas import SearchResult
from lodestar_rag.generation.llm_interface import BaseLLM
from lodestar_rag.generation.prompt_builder import DEFAULT_CHAT_PROMPT, PromptTemplate
from lodestar_rag.retrieval.search import SearchEngine

logger = logging.getLogger(__name__)

CHAT_ALPHA = 0.6
CONTEXT_CHUNKS = 4
FALLBACK_CONTEXT_CHARS = 800


@dataclass
class ChatTurn:
    """One question and its answer.

    Attributes
    ----------
    turn : int
        Sequence number of the exchange in the transcript.
    question : str
        The user's question.
    answer : str
        The assistant's answer, or the fallback stub.
    results : list[SearchResult]
        Retrieved chunks; the first few are used as context.
    fallback : bool
        Whether the answer is the fallback stub after an LLM failure.
    """

    turn: int
    question: str
    answer: str
    results: list[SearchResult] = field(default_factory=list)
    fallback: bool = False


class ChatPipeline:
    """Retrieval-augmented chat orchestrator.

    Parameters
    ----------
    search : SearchEngine
        Retrieval front end.
    llm : BaseLLM
        Chat model used to answer.
    catalog : Catalog
        Catalog where the transcript is recorded.
    prompt : PromptTemplate, optional
        Prompt rendered with ``question`` and ``context`` variables.
    top_k : int or None, optional
        Number of chunks retrieved per question. Defaults to the search
        engine's ``top_k``.
    """

    def __init__(
            self,
            search: SearchEngine,
            llm: BaseLLM,
            catalog: Catalog,
            prompt: PromptTemplate = DEFAULT_CHAT_PROMPT,
            top_k: int | None = None,
        ):
        self.search = search
        self.llm = llm
        self.catalog = catalog
        self.prompt = prompt
        self.top_k = top_k

    @staticmethod
    def build_context(results: list[SearchResult]) -> str:
        return "\n\n".join(r.text for r in results[:CONTEXT_CHUNKS])

    def ask(
            self,
            question: str,
            stream: bool = False,
            on_token: Callable[[str], None] | None = None,
        ) -> ChatTurn:
        """Answer one question and record the exchange.

        A transport failure while generating is logged and replaced with a
        stub answer built from the retrieved context; the turn is still
        recorded.

        Parameters
        ----------
        question : str
            The user's question.
        stream : bool, optional
            Stream answer tokens to ``on_token`` as they arrive.
        on_token : Callable[[str], None] or None, optional
            Token callback used when streaming.

        Returns
        -------
        ChatTurn
            The recorded exchange.
        """
        results = self.search.query(question, top_k=self.top_k, mode="hybrid", alpha=CHAT_ALPHA)
        context = self.build_context(results)
        messages = self.prompt.render(question=question, context=context)

        fallback = False
        try:
            answer = self.llm.chat(messages, stream=stream, on_token=on_token)
        except TransportError as exc:
            logger.warning("LLM chat failed: %s. Falling back to context stub.", exc)
            answer = f"[Stubbed answer using {len(results)} retrieved chunks]\n\n" + context[:FALLBACK_CONTEXT_CHARS]
            fallback = True

        turn = self.catalog.next_chat_turn()
        self.catalog.add_chat_message("user", question, turn, [])
        self.catalog.add_chat_message(
            "assistant",
            answer,
            turn,
            [{"path": r.document_path, "pos": r.position, "score": r.score} for r in results],
        )
        return ChatTurn(turn=turn, question=question, answer=answer, results=results, fallback=fallback)


__all__ = ["ChatPipeline", "ChatTurn"]
