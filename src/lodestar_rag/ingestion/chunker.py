"""lodestar_rag.ingestion.chunker

Sliding-window word chunking.

Text is split on whitespace into words. A window of ``size`` words is emitted
as one chunk whose text is the words rejoined with single spaces. Each next
window starts ``overlap`` words before the end of the previous one, until a
window reaches the last word. Offsets follow a running character cursor that
advances to the end of every emitted chunk.

Chunking is pure and deterministic: identical input yields identical chunk
boundaries.

Classes
-------
WordWindowChunker
    Chunker configured with a window size and overlap.

Functions
---------
chunk_text
    Chunk text with an explicit size and overlap.
"""

from __future__ import annotations

from lodestar_rag.common.exceptions import ValidationError
from lodestar_rag.common.schemas import TextChunk

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_OVERLAP = 150


def _validate(size: int, overlap: int) -> None:
    if size <= 0:
        raise ValidationError(f"Chunk size must be positive, got {size}.", field="size")
    if overlap < 0:
        raise ValidationError(f"Chunk overlap must not be negative, got {overlap}.", field="overlap")
    if overlap >= size:
        raise ValidationError(
            f"Chunk overlap ({overlap}) must be smaller than chunk size ({size}).",
            field="overlap",
        )


def chunk_text(text: str, size: int, overlap: int = 0) -> list[TextChunk]:
    """Split ``text`` into overlapping word windows.

    Parameters
    ----------
    text : str
        Normalised document text.
    size : int
        Number of words per chunk. Must be positive.
    overlap : int, optional
        Number of words shared by consecutive chunks. Must satisfy
        ``0 <= overlap < size``.

    Returns
    -------
    list[TextChunk]
        Chunks with dense 0-based positions. Empty when ``text`` has no words.

    Raises
    ------
    ValidationError
        If ``size`` or ``overlap`` is out of range.
    """
    _validate(size, overlap)

    words = text.split()
    chunks: list[TextChunk] = []
    cursor = 0
    start = 0
    while start < len(words):
        last = min(start + size, len(words))
        body = " ".join(words[start:last])
        end_offset = cursor + len(body)
        chunks.append(TextChunk(len(chunks), cursor, end_offset, body))
        if last >= len(words):
            break
        start = max(0, last - overlap)
        cursor = end_offset
    return chunks


class WordWindowChunker:
    """Chunker bound to a fixed window size and overlap.

    Parameters
    ----------
    size : int, optional
        Words per chunk. Defaults to ``1000``.
    overlap : int, optional
        Words shared between consecutive chunks. Defaults to ``150``.

    Raises
    ------
    ValidationError
        If ``overlap`` is not smaller than ``size`` or either is out of range.
    """

    def __init__(self, size: int = DEFAULT_CHUNK_SIZE, overlap: int = DEFAULT_OVERLAP):
        _validate(size, overlap)
        self.size = size
        self.overlap = overlap

    @classmethod
    def from_config_dict(cls, config: dict) -> "WordWindowChunker":
        return cls(
            size=int(config.get("size", DEFAULT_CHUNK_SIZE)),
            overlap=int(config.get("overlap", DEFAULT_OVERLAP)),
        )

    def chunk(self, text: str) -> list[TextChunk]:
        return chunk_text(text, self.size, self.overlap)
