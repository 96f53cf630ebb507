"""lodestar_rag.catalog.models

SQLAlchemy ORM models for the document catalog.

The catalog owns three linked entities: documents, their chunks, and one
vector per chunk. Deleting a document cascades to its chunks and their vectors
at the database level. Two append-only tables keep the query audit trail and
the chat transcript.

Embeddings are stored in a native ``pgvector`` column on PostgreSQL and as a
JSON array on every other dialect.

Classes
-------
Base
    Declarative base for all catalog models.
TimestampMixin
    ``created_at``/``updated_at`` columns maintained in UTC.
EmbeddingType
    Dialect-dependent embedding column type.
DocumentModel
    One ingested unit keyed by a unique path.
ChunkModel
    A positioned slice of a document's normalised text.
VectorModel
    The embedding of exactly one chunk.
QueryRecordModel
    Append-only audit of executed queries.
ChatMessageModel
    Append-only chat transcript.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import TypeDecorator

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Declarative base for catalog models."""


class TimestampMixin:
    """Adds UTC creation and modification timestamps."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False,
    )


class EmbeddingType(TypeDecorator):
    """Embedding column: ``vector`` on PostgreSQL, JSON elsewhere.

    The PostgreSQL column is declared without a dimension; the catalog aligns
    it to the configured dimension when the schema is initialised.
    Values always come back as plain ``list[float]``.
    """

    impl = JSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(Vector())
        return dialect.type_descriptor(JSON())

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return [float(x) for x in value]

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return [float(x) for x in value]


class DocumentModel(TimestampMixin, Base):
    __tablename__ = "documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    path: Mapped[str] = mapped_column(String(2048), unique=True, nullable=False)
    size: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    modified_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    content_hash: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    format: Mapped[str] = mapped_column(String(32), nullable=False)
    meta: Mapped[dict[str, Any]] = mapped_column("metadata", JSONType, default=dict, nullable=False)

    chunks: Mapped[list["ChunkModel"]] = relationship(
        back_populates="document",
        order_by="ChunkModel.position",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<DocumentModel id={self.id} path={self.path!r} hash={self.content_hash[:12]}>"


class ChunkModel(Base):
    __tablename__ = "chunks"
    __table_args__ = (
        UniqueConstraint("document_id", "position", name="uq_chunks_document_position"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    document_id: Mapped[int] = mapped_column(
        ForeignKey("documents.id", ondelete="CASCADE"),
        index=True,
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    start_offset: Mapped[int] = mapped_column(Integer, nullable=False)
    end_offset: Mapped[int] = mapped_column(Integer, nullable=False)
    text: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    document: Mapped[DocumentModel] = relationship(back_populates="chunks")
    vector: Mapped["VectorModel | None"] = relationship(
        back_populates="chunk",
        uselist=False,
        passive_deletes=True,
    )


class VectorModel(Base):
    __tablename__ = "vectors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    chunk_id: Mapped[int] = mapped_column(
        ForeignKey("chunks.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    embedding: Mapped[list[float]] = mapped_column(EmbeddingType, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)

    chunk: Mapped[ChunkModel] = relationship(back_populates="vector")


class QueryRecordModel(Base):
    __tablename__ = "queries"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    query_text: Mapped[str] = mapped_column(Text, nullable=False)
    embedding: Mapped[list[float] | None] = mapped_column(EmbeddingType, nullable=True)
    filters: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)
    results: Mapped[list[Any]] = mapped_column(JSONType, default=list, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)


class ChatMessageModel(Base):
    __tablename__ = "chat_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    role: Mapped[str] = mapped_column(String(16), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    turn: Mapped[int] = mapped_column(Integer, nullable=False)
    context: Mapped[list[Any]] = mapped_column(JSONType, default=list, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, nullable=False)
