"""lodestar_rag.catalog.catalog

Persistent catalog of documents, chunks and vectors.

The :class:`Catalog` is the only component that touches the database. It
exposes transactional writes used by the ingestion pipeline and read-only
search primitives used by the search engine.

Two backends share one interface:

- PostgreSQL: cosine distance through pgvector's ``<=>`` operator and
  ``ts_rank``/``ts_rank_cd`` over ``to_tsvector('english', text)``.
- Any other dialect: embeddings are read back and scored in Python, and
  lexical ranking uses :mod:`lodestar_rag.catalog.lexical`.

Classes
-------
Catalog
    Database facade for the document catalog.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator, Sequence

from sqlalchemy import Float, delete, func, literal_column, select
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from lodestar_rag.catalog import lexical
from lodestar_rag.catalog.connection import (
    TEXT_SEARCH_CONFIG,
    create_catalog_engine,
    init_schema,
    is_postgres,
)
from lodestar_rag.catalog.models import (
    ChatMessageModel,
    ChunkModel,
    DocumentModel,
    QueryRecordModel,
    VectorModel,
)
from lodestar_rag.common.exceptions import ConsistencyError
from lodestar_rag.common.schemas import IngestOutcome, SearchResult, SourceDocument, TextChunk
from lodestar_rag.retrieval.scoring import cosine_similarity, rank_hybrid

logger = logging.getLogger(__name__)


class Catalog:
    """Database facade for documents, chunks and vectors.

    Parameters
    ----------
    engine : Engine
        SQLAlchemy engine bound to the catalog database.
    project : str or None, optional
        Project schema, used when initialising PostgreSQL.
    """

    def __init__(
            self,
            engine: Engine,
            project: str | None = None,
        ):
        self.engine = engine
        self.project = project
        self._sessions = sessionmaker(bind=engine, expire_on_commit=False)

    @classmethod
    def from_config(cls, config) -> "Catalog":
        """Create a catalog from a :class:`~lodestar_rag.config.GlobalConfig`."""
        engine = create_catalog_engine(config.database_url, project=config.project)
        return cls(engine, project=config.project)

    @property
    def is_postgres(self) -> bool:
        return is_postgres(self.engine)

    def init(self, dim: int, index_method: str = "ivfflat") -> None:
        init_schema(self.engine, dim, project=self.project, index_method=index_method)

    def dispose(self) -> None:
        self.engine.dispose()

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Yield a session that commits on success and rolls back on error."""
        session = self._sessions()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # Documents

    def content_hash(self, path: str) -> str | None:
        """Return the stored content hash for ``path`` using the path index."""
        with self.session() as session:
            return session.scalar(select(DocumentModel.content_hash).where(DocumentModel.path == path))

    def write_document(
            self,
            document: SourceDocument,
            content_hash: str,
            chunks: Sequence[TextChunk],
            embeddings: Sequence[Sequence[float]],
        ) -> IngestOutcome:
        """Replace a document's content in a single transaction.

        The document row is inserted or updated in place, every existing chunk
        is deleted (cascading to vectors) and the new chunks are inserted with
        one vector each.

        Parameters
        ----------
        document : SourceDocument
            Document to store.
        content_hash : str
            Digest of ``document.text``.
        chunks : Sequence[TextChunk]
            Chunks of ``document.text``.
        embeddings : Sequence[Sequence[float]]
            One embedding per chunk, in the same order.

        Returns
        -------
        IngestOutcome
            ``INSERTED`` for a new path, ``UPDATED`` for a changed one, or
            ``SKIPPED`` if the stored hash already equals ``content_hash``.

        Raises
        ------
        ValueError
            If ``chunks`` and ``embeddings`` differ in length.
        """
        if len(chunks) != len(embeddings):
            raise ValueError(f"Got {len(embeddings)} embeddings for {len(chunks)} chunks.")

        with self.session() as session:
            row = session.scalars(
                select(DocumentModel).where(DocumentModel.path == document.path)
            ).one_or_none()

            if row is not None and row.content_hash == content_hash:
                return IngestOutcome.SKIPPED

            if row is None:
                outcome = IngestOutcome.INSERTED
                row = DocumentModel(path=document.path)
                session.add(row)
            else:
                outcome = IngestOutcome.UPDATED
                session.execute(delete(ChunkModel).where(ChunkModel.document_id == row.id))

            row.size = document.size
            row.modified_time = document.modified_time
            row.content_hash = content_hash
            row.format = document.format
            row.meta = dict(document.metadata)
            session.flush()

            session.add_all(
                ChunkModel(
                    document_id=row.id,
                    position=chunk.position,
                    start_offset=chunk.start_offset,
                    end_offset=chunk.end_offset,
                    text=chunk.text,
                    vector=VectorModel(embedding=list(embedding)),
                )
                for chunk, embedding in zip(chunks, embeddings)
            )

        logger.debug("%s %s (%d chunks)", outcome.value, document.path, len(chunks))
        return outcome

    def delete_documents(self, paths: Sequence[str]) -> int:
        """Delete documents by path; chunks and vectors cascade."""
        if not paths:
            return 0
        with self.session() as session:
            result = session.execute(delete(DocumentModel).where(DocumentModel.path.in_(list(paths))))
            return result.rowcount or 0

    def paths(self, prefix: str | None = None) -> list[str]:
        """List document paths, optionally only those starting with ``prefix``."""
        stmt = select(DocumentModel.path).order_by(DocumentModel.path)
        if prefix:
            stmt = stmt.where(DocumentModel.path.startswith(prefix, autoescape=True))
        with self.session() as session:
            return list(session.scalars(stmt))

    def chunks_for(self, path: str) -> list[TextChunk]:
        stmt = (
            select(ChunkModel)
            .join(DocumentModel, ChunkModel.document_id == DocumentModel.id)
            .where(DocumentModel.path == path)
            .order_by(ChunkModel.position)
        )
        with self.session() as session:
            return [
                TextChunk(c.position, c.start_offset, c.end_offset, c.text)
                for c in session.scalars(stmt)
            ]

    def document_text(self, path: str) -> str:
        """Reconstruct a document's text from its chunks.

        Chunk texts are joined in position order with a blank line between
        them.

        Raises
        ------
        ConsistencyError
            If ``path`` is not in the catalog.
        """
        with self.session() as session:
            doc_id = session.scalar(select(DocumentModel.id).where(DocumentModel.path == path))
            if doc_id is None:
                raise ConsistencyError(f"Document not indexed: {path}", {"path": path})
            texts = session.scalars(
                select(ChunkModel.text)
                .where(ChunkModel.document_id == doc_id)
                .order_by(ChunkModel.position)
            )
            return "\n\n".join(texts)

    def counts(self, path: str | None = None) -> dict[str, int]:
        """Return document, chunk and vector counts, optionally for one path."""
        docs = select(func.count(DocumentModel.id))
        chunks = select(func.count(ChunkModel.id))
        vectors = select(func.count(VectorModel.id))
        if path is not None:
            docs = docs.where(DocumentModel.path == path)
            chunks = chunks.join(DocumentModel, ChunkModel.document_id == DocumentModel.id).where(
                DocumentModel.path == path
            )
            vectors = (
                vectors.join(ChunkModel, VectorModel.chunk_id == ChunkModel.id)
                .join(DocumentModel, ChunkModel.document_id == DocumentModel.id)
                .where(DocumentModel.path == path)
            )
        with self.session() as session:
            return {
                "documents": session.scalar(docs) or 0,
                "chunks": session.scalar(chunks) or 0,
                "vectors": session.scalar(vectors) or 0,
            }

    # Search primitives

    def vector_search(self, embedding: Sequence[float], limit: int) -> list[SearchResult]:
        """Rank chunks that have a vector by cosine similarity to ``embedding``."""
        if self.is_postgres:
            distance = VectorModel.embedding.op("<=>", return_type=Float)(list(embedding))
            stmt = (
                select(ChunkModel.id, DocumentModel.path, ChunkModel.position, ChunkModel.text, distance.label("distance"))
                .join(VectorModel, VectorModel.chunk_id == ChunkModel.id)
                .join(DocumentModel, ChunkModel.document_id == DocumentModel.id)
                .order_by(distance)
                .limit(limit)
            )
            with self.session() as session:
                return [
                    SearchResult(r.id, r.path, r.position, r.text, 1.0 - r.distance, vector_score=1.0 - r.distance)
                    for r in session.execute(stmt)
                ]

        rows = self._scored_vector_rows(embedding)
        rows.sort(key=lambda r: r.score, reverse=True)
        return rows[:limit]

    def keyword_search(self, query: str, limit: int, rank_function: str = "rank") -> list[SearchResult]:
        """Rank chunks matching every query term by lexical relevance."""
        if self.is_postgres:
            tsv, tsq, rank = self._ts_expressions(query, rank_function)
            stmt = (
                select(ChunkModel.id, DocumentModel.path, ChunkModel.position, ChunkModel.text, rank.label("rank"))
                .join(DocumentModel, ChunkModel.document_id == DocumentModel.id)
                .where(tsv.bool_op("@@")(tsq))
                .order_by(rank.desc())
                .limit(limit)
            )
            with self.session() as session:
                return [
                    SearchResult(r.id, r.path, r.position, r.text, float(r.rank), lexical_score=float(r.rank))
                    for r in session.execute(stmt)
                ]

        results = []
        for chunk_id, path, position, text in self._chunk_rows(with_vectors=False):
            score = lexical.lexical_score(query, text, rank_function)
            if score is not None:
                results.append(SearchResult(chunk_id, path, position, text, score, lexical_score=score))
        results.sort(key=lambda r: r.score, reverse=True)
        return results[:limit]

    def hybrid_search(
            self,
            embedding: Sequence[float],
            query: str,
            alpha: float,
            limit: int,
            rank_function: str = "rank",
        ) -> list[SearchResult]:
        """Rank chunks by ``alpha * vector + (1 - alpha) * lexical``.

        Only chunks that have a vector are considered. Chunks that do not
        match the lexical query still take part with a lexical score of zero.
        """
        if self.is_postgres:
            distance = VectorModel.embedding.op("<=>", return_type=Float)(list(embedding))
            vec_score = (1.0 - distance).label("vec_score")
            _, _, rank = self._ts_expressions(query, rank_function)
            combined = alpha * (1.0 - distance) + (1.0 - alpha) * rank
            stmt = (
                select(
                    ChunkModel.id,
                    DocumentModel.path,
                    ChunkModel.position,
                    ChunkModel.text,
                    vec_score,
                    rank.label("ts_score"),
                    combined.label("combined"),
                )
                .join(VectorModel, VectorModel.chunk_id == ChunkModel.id)
                .join(DocumentModel, ChunkModel.document_id == DocumentModel.id)
                .order_by(combined.desc())
                .limit(limit)
            )
            with self.session() as session:
                return [
                    SearchResult(
                        r.id,
                        r.path,
                        r.position,
                        r.text,
                        float(r.combined),
                        vector_score=float(r.vec_score),
                        lexical_score=float(r.ts_score),
                    )
                    for r in session.execute(stmt)
                ]

        rows = self._scored_vector_rows(embedding)
        for row in rows:
            row.lexical_score = lexical.lexical_score(query, row.text, rank_function) or 0.0
        return rank_hybrid(rows, alpha, top_k=limit)

    def _ts_expressions(self, query: str, rank_function: str):
        config = literal_column(f"'{TEXT_SEARCH_CONFIG}'::regconfig")
        tsv = func.to_tsvector(config, ChunkModel.text)
        tsq = func.plainto_tsquery(config, query)
        rank_fn = func.ts_rank_cd if rank_function == "rank_cd" else func.ts_rank
        return tsv, tsq, rank_fn(tsv, tsq, type_=Float)

    def _chunk_rows(self, with_vectors: bool):
        columns = [ChunkModel.id, DocumentModel.path, ChunkModel.position, ChunkModel.text]
        if with_vectors:
            columns.append(VectorModel.embedding)
        stmt = select(*columns).join(DocumentModel, ChunkModel.document_id == DocumentModel.id)
        if with_vectors:
            stmt = stmt.join(VectorModel, VectorModel.chunk_id == ChunkModel.id)
        stmt = stmt.order_by(ChunkModel.id)
        with self.session() as session:
            return [tuple(r) for r in session.execute(stmt)]

    def _scored_vector_rows(self, embedding: Sequence[float]) -> list[SearchResult]:
        rows = []
        for chunk_id, path, position, text, stored in self._chunk_rows(with_vectors=True):
            similarity = cosine_similarity(embedding, stored)
            rows.append(SearchResult(chunk_id, path, position, text, similarity, vector_score=similarity))
        return rows

    # Audit and chat transcript

    def record_query(
            self,
            query_text: str,
            embedding: Sequence[float] | None,
            filters: dict[str, Any],
            results: list[dict[str, Any]],
        ) -> None:
        with self.session() as session:
            session.add(
                QueryRecordModel(
                    query_text=query_text,
                    embedding=list(embedding) if embedding is not None else None,
                    filters=dict(filters),
                    results=list(results),
                )
            )

    def query_records(self) -> list[QueryRecordModel]:
        with self.session() as session:
            return list(session.scalars(select(QueryRecordModel).order_by(QueryRecordModel.id)))

    def next_chat_turn(self) -> int:
        with self.session() as session:
            return (session.scalar(select(func.max(ChatMessageModel.turn))) or 0) + 1

    def add_chat_message(self, role: str, content: str, turn: int, context: list[Any] | None = None) -> None:
        with self.session() as session:
            session.add(ChatMessageModel(role=role, content=content, turn=turn, context=list(context or [])))

    def chat_messages(self) -> list[ChatMessageModel]:
        with self.session() as session:
            return list(session.scalars(select(ChatMessageModel).order_by(ChatMessageModel.id)))
