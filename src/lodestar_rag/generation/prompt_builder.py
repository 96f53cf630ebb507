"""lodestar_rag.generation.prompt_builder

Chat prompt templates rendered with Jinja2.

A :class:`PromptTemplate` pairs a system message with a user message
template and renders them into the ordered ``{"role", "content"}`` messages
accepted by :class:`~lodestar_rag.generation.llm_interface.BaseLLM`.

Classes
-------
PromptTemplate
    A named system/user prompt pair.

Attributes
----------
DEFAULT_CHAT_PROMPT
    Template used by the chat pipeline when none is configured.
"""

from __future__ import annotations

from typing import Any, Mapping

from jinja2 import Template

from lodestar_rag.common.exceptions import ConfigurationError


class PromptTemplate:
    """A named system/user prompt pair.

    Parameters
    ----------
    name : str
        Name of the template.
    system : str or None, optional
        System message. Rendered with the same variables as ``user``.
    user : str, optional
        Jinja2 template for the user message.
    """

    def __init__(self, name: str, system: str | None = None, user: str = ""):
        self.name = name
        self.system = system
        self.user = user

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PromptTemplate":
        """Create a template from a mapping with ``name``, ``system`` and ``user``.

        Raises
        ------
        ConfigurationError
            If ``name`` or ``user`` is missing or not a string.
        """
        name = data.get("name")
        if not isinstance(name, str) or not name.strip():
            raise ConfigurationError("Prompt template requires a non-empty 'name'.")
        user = data.get("user")
        if not isinstance(user, str) or not user:
            raise ConfigurationError(f"Prompt template {name!r} requires a 'user' template string.")
        system = data.get("system")
        if system is not None and not isinstance(system, str):
            raise ConfigurationError(f"Prompt template {name!r} has a non-string 'system' message.")
        return cls(name=name, system=system, user=user)

    def render(self, **kwargs: Any) -> list[dict[str, str]]:
        """Render the template into chat messages."""
        messages = []
        if self.system:
            messages.append({"role": "system", "content": Template(self.system).render(**kwargs)})
        messages.append({"role": "user", "content": Template(self.user).render(**kwargs)})
        return messages


DEFAULT_CHAT_PROMPT = PromptTemplate(
    name="chat",
    system=(
        "You are a helpful assistant. Use the provided context to answer succinctly. "
        "If unknown, say you don't know."
    ),
    user="Question:\n{{ question }}\n\nContext:\n{{ context }}",
)


__all__ = ["PromptTemplate", "DEFAULT_CHAT_PROMPT"]
