"""lodestar_rag.config

Configuration subsystem.

This package provides structured access to layered YAML configuration. It
exposes validated accessors rather than raw configuration dictionaries.

Modules
-------
global_config
    Global configuration loader and cached accessors.
"""
from .global_config import GlobalConfig

__all__ = ["GlobalConfig"]
