"""lodestar_rag.common.exceptions

Exception hierarchy shared by every layer of the package.

Each exception carries a human-readable message plus an optional ``details``
mapping with context for logs. The classes mirror how failures are handled:

- :class:`ConfigurationError` aborts a whole run before any writes.
- :class:`TransportError` is recoverable per document or per rerank call.
- :class:`ExtractionError` is recoverable per file.
- :class:`ConsistencyError` fails a single operation.
- :class:`ValidationError` rejects a request before it executes.
"""

from __future__ import annotations

from typing import Any


class LodestarError(Exception):
    """Base exception for all package errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(LodestarError):
    """Raised for missing or invalid configuration and credentials."""


class TransportError(LodestarError):
    """Raised when an embedding, chat or rerank call fails.

    Parameters
    ----------
    message : str
        Human-readable error message.
    status : int or None, optional
        HTTP status code, when the failure was a non-2xx response.
    details : dict[str, Any] or None, optional
        Additional context.
    """

    def __init__(
            self,
            message: str,
            status: int | None = None,
            details: dict[str, Any] | None = None,
        ) -> None:
        details = dict(details or {})
        if status is not None:
            details["status"] = status
        self.status = status
        super().__init__(message, details)


class ExtractionError(LodestarError):
    """Raised when a file cannot be read or parsed into text."""

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        super().__init__(f"Could not extract text from {path}: {reason}", {"path": path})


class ConsistencyError(LodestarError):
    """Raised when an operation targets a document absent from the catalog."""


class ValidationError(LodestarError):
    """Raised when request parameters are out of range or unknown."""

    def __init__(
            self,
            message: str,
            field: str | None = None,
            details: dict[str, Any] | None = None,
        ) -> None:
        details = dict(details or {})
        if field:
            details["field"] = field
        super().__init__(message, details)


__all__ = [
    "LodestarError",
    "ConfigurationError",
    "TransportError",
    "ExtractionError",
    "ConsistencyError",
    "ValidationError",
]
