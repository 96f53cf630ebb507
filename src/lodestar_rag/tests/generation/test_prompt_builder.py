import pytest

from lodestar_rag.common.exceptions import ConfigurationError
from lodestar_rag.generation.prompt_builder import DEFAULT_CHAT_PROMPT, PromptTemplate


def test_default_prompt_renders_question_and_context():
    messages = DEFAULT_CHAT_PROMPT.render(question="What is a lodestar?", context="A guiding star.")

    assert [m["role"] for m in messages] == ["system", "user"]
    assert messages[0]["content"].startswith("You are a helpful assistant.")
    assert messages[1]["content"] == "Question:\nWhat is a lodestar?\n\nContext:\nA guiding star."


def test_template_without_system_message():
    template = PromptTemplate.from_dict({"name": "terse", "user": "{{ question | upper }}"})

    assert template.render(question="why") == [{"role": "user", "content": "WHY"}]


@pytest.mark.parametrize(
    "data",
    [
        {"user": "{{ question }}"},
        {"name": "  ", "user": "{{ question }}"},
        {"name": "x"},
        {"name": "x", "user": ""},
        {"name": "x", "user": "q", "system": ["not", "text"]},
    ],
)
def test_invalid_templates(data):
    with pytest.raises(ConfigurationError):
        PromptTemplate.from_dict(data)
