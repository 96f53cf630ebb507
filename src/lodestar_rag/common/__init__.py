"""
Common schemas, exceptions and logging helpers shared across the package.
"""

from .exceptions import (
    ConfigurationError,
    ConsistencyError,
    ExtractionError,
    LodestarError,
    TransportError,
    ValidationError,
)
from .schemas import BatchReport, IngestOutcome, SearchResult, SourceDocument, TextChunk

__all__ = [
    "BatchReport",
    "ConfigurationError",
    "ConsistencyError",
    "ExtractionError",
    "IngestOutcome",
    "LodestarError",
    "SearchResult",
    "SourceDocument",
    "TextChunk",
    "TransportError",
    "ValidationError",
]
