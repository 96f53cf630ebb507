"""lodestar_rag.generation

Chat model interfaces and prompt templates.

Modules
-------
llm_interface
    Provider-agnostic chat interface, implementations and factory.
prompt_builder
    Jinja2 chat prompt templates.
"""
