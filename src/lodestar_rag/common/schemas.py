"""lodestar_rag.common.schemas

Core data schemas shared across ingestion, retrieval and reranking.

These lightweight dataclasses describe the shapes passed between layers. The
persistent entities live in :mod:`lodestar_rag.catalog.models`; the classes
here are detached value objects that never hold a database session.

Classes
-------
TextChunk
    One positioned slice of a document's normalised text.
SourceDocument
    A document ready for ingestion: stable path, normalised text and metadata.
IngestOutcome
    Result of ingesting a single document.
BatchReport
    Aggregated outcome counts of a batch ingestion.
SearchResult
    One ranked candidate row returned by the search engine.
"""

from __future__ import annotations

import enum
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass(frozen=True)
class TextChunk:
    """A contiguous, position-addressed slice of normalised text.

    Attributes
    ----------
    position : int
        0-based, dense position within the owning document.
    start_offset : int
        Character offset where the chunk starts.
    end_offset : int
        ``start_offset + len(text)``.
    text : str
        Chunk tokens rejoined with single spaces.
    """

    position: int
    start_offset: int
    end_offset: int
    text: str


@dataclass
class SourceDocument:
    """A document ready to be ingested.

    Attributes
    ----------
    path : str
        Globally unique, stable identifier. A filesystem path, a
        ``path#row=N`` CSV pseudo-document or a ``source://alias/table/id``
        external row.
    text : str
        Normalised UTF-8 text.
    size : int or None
        Size in bytes. Defaults to the UTF-8 length of ``text``.
    modified_time : datetime or None
        Source modification time. Defaults to the current UTC time.
    format : str
        Format tag such as ``".md"``, ``"csv-row"`` or ``"html"``.
    metadata : dict[str, Any]
        Free-form metadata stored alongside the document.
    """

    path: str
    text: str
    size: int | None = None
    modified_time: datetime | None = None
    format: str = "text"
    metadata: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if self.size is None:
            self.size = len(self.text.encode("utf-8"))
        if self.modified_time is None:
            self.modified_time = datetime.now(timezone.utc)


class IngestOutcome(str, enum.Enum):
    """Outcome of ingesting one document."""

    INSERTED = "inserted"
    UPDATED = "updated"
    SKIPPED = "skipped"


@dataclass
class BatchReport:
    """Counts of outcomes across a batch ingestion.

    Failures are recorded with their path and message; they never abort the
    batch.
    """

    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[tuple[str, str]] = field(default_factory=list)

    def record(self, outcome: IngestOutcome) -> None:
        if outcome is IngestOutcome.INSERTED:
            self.inserted += 1
        elif outcome is IngestOutcome.UPDATED:
            self.updated += 1
        else:
            self.skipped += 1

    def record_failure(self, path: str, error: Exception) -> None:
        self.failed += 1
        self.errors.append((path, str(error)))

    def merge(self, other: "BatchReport") -> None:
        self.inserted += other.inserted
        self.updated += other.updated
        self.skipped += other.skipped
        self.failed += other.failed
        self.errors.extend(other.errors)

    @property
    def changed(self) -> int:
        """Number of documents that caused writes."""
        return self.inserted + self.updated

    @property
    def processed(self) -> int:
        """Number of documents processed successfully, including skips."""
        return self.inserted + self.updated + self.skipped


@dataclass
class SearchResult:
    """A ranked candidate row.

    Attributes
    ----------
    chunk_id : int
        Catalog identifier of the chunk.
    document_path : str
        Path of the owning document.
    position : int
        Position of the chunk within its document.
    text : str
        Chunk text.
    score : float
        Retrieval score for the mode that produced the row.
    vector_score : float or None
        Cosine similarity, when computed.
    lexical_score : float or None
        Lexical rank, when computed.
    rerank_score : float or None
        Second-pass score, set by a reranker.
    """

    chunk_id: int
    document_path: str
    position: int
    text: str
    score: float
    vector_score: float | None = None
    lexical_score: float | None = None
    rerank_score: float | None = None

    @property
    def display_score(self) -> float:
        """The most specific score available for display and export."""
        if self.rerank_score is not None:
            return self.rerank_score
        return self.score

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
