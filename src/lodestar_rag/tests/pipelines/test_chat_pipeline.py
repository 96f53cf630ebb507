import pytest

from lodestar_rag.common.exceptions import TransportError
from lodestar_rag.generation.llm_interface import BaseLLM
from lodestar_rag.generation.prompt_builder import PromptTemplate
from lodestar_rag.pipelines.rag_pipeline import ChatPipeline
from lodestar_rag.retrieval.search import SearchEngine


class RecordingLLM(BaseLLM):
    def __init__(self, tokens=("It ", "is ", "a star."), error=None):
        self.tokens = list(tokens)
        self.error = error
        self.seen = []

    @classmethod
    def from_config_dict(cls, config):
        return cls()

    def stream_chat(self, messages):
        self.seen.append(list(messages))
        if self.error is not None:
            raise self.error
        yield from self.tokens


@pytest.fixture
def chat(pipeline, catalog, embedder):
    pipeline.ingest_text("/docs/lodestar.txt", "a lodestar is a star used to guide the course of a ship")
    pipeline.ingest_text("/docs/other.txt", "unrelated text about cooking pasta at home")

    def build(llm, **kwargs):
        return ChatPipeline(SearchEngine(catalog, embedder), llm, catalog, **kwargs)

    return build


def test_answer_is_recorded_with_context(chat, catalog):
    llm = RecordingLLM()
    turn = chat(llm).ask("what is a lodestar")

    assert turn.turn == 1
    assert turn.answer == "It is a star."
    assert turn.fallback is False

    user, assistant = catalog.chat_messages()
    assert (user.role, user.content, user.turn, user.context) == ("user", "what is a lodestar", 1, [])
    assert (assistant.role, assistant.content, assistant.turn) == ("assistant", "It is a star.", 1)
    assert assistant.context == [
        {"path": r.document_path, "pos": r.position, "score": r.score} for r in turn.results
    ]


def test_prompt_contains_question_and_context(chat):
    llm = RecordingLLM()
    turn = chat(llm).ask("lodestar ship")

    system, user = llm.seen[0]
    assert system["role"] == "system"
    assert user["content"].startswith("Question:\nlodestar ship\n\nContext:\n")
    assert turn.results[0].text in user["content"]


def test_custom_prompt_and_turn_numbers(chat, catalog):
    prompt = PromptTemplate(name="plain", user="Q={{ question }}")
    pipe = chat(RecordingLLM(), prompt=prompt, top_k=1)

    first = pipe.ask("one")
    second = pipe.ask("two")

    assert (first.turn, second.turn) == (1, 2)
    assert len(first.results) == 1
    assert [m.turn for m in catalog.chat_messages()] == [1, 1, 2, 2]


def test_streaming_forwards_tokens(chat):
    tokens = []
    turn = chat(RecordingLLM()).ask("lodestar", stream=True, on_token=tokens.append)

    assert tokens == ["It ", "is ", "a star."]
    assert turn.answer == "It is a star."


def test_transport_failure_falls_back_to_context_stub(chat, catalog):
    turn = chat(RecordingLLM(error=TransportError("offline"))).ask("lodestar")

    assert turn.fallback is True
    assert turn.answer.startswith(f"[Stubbed answer using {len(turn.results)} retrieved chunks]\n\n")
    assert turn.results[0].text in turn.answer
    assert catalog.chat_messages()[1].content == turn.answer
