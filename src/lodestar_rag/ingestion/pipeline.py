"""lodestar_rag.ingestion.pipeline

Incremental ingestion into the document catalog.

Each document is ingested by hash-diffing its normalised text against the
stored content hash. Unchanged documents are skipped without writes. Changed
or new documents are chunked and embedded first, then written in a single
transaction that replaces all of the document's chunks and vectors, so a
failed embedding call leaves the previous state untouched.

Ingestion of the same path is serialised by a per-path lock. Different paths
are processed in parallel by a bounded worker pool, one batch at a time.

Classes
-------
IngestionPipeline
    Hash-diff ingestion of documents, folders and database rows.
"""

from __future__ import annotations

import itertools
import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterable, Iterator, Sequence, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from lodestar_rag.catalog import Catalog
from lodestar_rag.common.exceptions import ExtractionError, TransportError, ValidationError
from lodestar_rag.common.schemas import BatchReport, IngestOutcome, SourceDocument, TextChunk
from lodestar_rag.ingestion import extractors
from lodestar_rag.ingestion.chunker import WordWindowChunker
from lodestar_rag.ingestion.sources import (
    ROW_SEPARATOR,
    DatabaseRowSource,
    FolderSource,
    CsvRowOptions,
    base_path,
    content_hash,
)
from lodestar_rag.retrieval.embedder import BaseEmbedder

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_WORKERS = 8
DEFAULT_BATCH_SIZE = 20
DELETE_BATCH = 500

# Failures that skip one unit of work without aborting the batch.
RECOVERABLE_ERRORS = (ExtractionError, TransportError, ValidationError, SQLAlchemyError, OSError)


def _batched(items: Iterable[T], size: int) -> Iterator[list[T]]:
    iterator = iter(items)
    while batch := list(itertools.islice(iterator, size)):
        yield batch


class IngestionPipeline:
    """Ingest documents into a :class:`~lodestar_rag.catalog.Catalog`.

    Parameters
    ----------
    catalog : Catalog
        Destination catalog; the pipeline is its only writer.
    embedder : BaseEmbedder
        Embedding provider used for chunk texts.
    chunker : WordWindowChunker
        Chunker applied to normalised text.
    workers : int, optional
        Maximum documents processed concurrently. Forced to ``1`` on
        databases other than PostgreSQL.
    batch_size : int, optional
        Number of documents submitted to the pool at a time.
    """

    def __init__(
            self,
            catalog: Catalog,
            embedder: BaseEmbedder,
            chunker: WordWindowChunker,
            workers: int = DEFAULT_WORKERS,
            batch_size: int = DEFAULT_BATCH_SIZE,
        ):
        self.catalog = catalog
        self.embedder = embedder
        self.chunker = chunker
        self.workers = max(1, int(workers)) if catalog.is_postgres else 1
        self.batch_size = max(1, int(batch_size))
        self._locks: dict[str, list] = {}
        self._locks_guard = threading.Lock()

    @classmethod
    def from_config(cls, config, catalog: Catalog, embedder: BaseEmbedder) -> "IngestionPipeline":
        """Create a pipeline from a :class:`~lodestar_rag.config.GlobalConfig`."""
        return cls(
            catalog=catalog,
            embedder=embedder,
            chunker=WordWindowChunker.from_config_dict(config.chunking),
            workers=config.ingest["workers"],
            batch_size=config.ingest["batch_size"],
        )

    @contextmanager
    def _path_lock(self, path: str):
        with self._locks_guard:
            entry = self._locks.setdefault(path, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[path]

    def _embed(self, chunks: Sequence[TextChunk]) -> list[list[float]]:
        if not chunks:
            return []
        vectors = self.embedder.embed_texts([c.text for c in chunks])
        if len(vectors) != len(chunks):
            raise TransportError(
                f"Embedding provider returned {len(vectors)} vectors for {len(chunks)} texts."
            )
        dim = getattr(self.embedder, "dim", None)
        if dim and any(len(v) != dim for v in vectors):
            raise TransportError(f"Embedding provider returned vectors of the wrong dimension (expected {dim}).")
        return vectors

    def ingest(self, document: SourceDocument) -> IngestOutcome:
        """Ingest one document.

        Parameters
        ----------
        document : SourceDocument
            Document with a stable path and normalised text.

        Returns
        -------
        IngestOutcome
            ``SKIPPED`` when the stored content hash matches, otherwise
            ``INSERTED`` or ``UPDATED``.

        Raises
        ------
        TransportError
            If embedding fails. The catalog is left unchanged.
        """
        digest = content_hash(document.text)
        with self._path_lock(document.path):
            if self.catalog.content_hash(document.path) == digest:
                return IngestOutcome.SKIPPED

            chunks = self.chunker.chunk(document.text)
            vectors = self._embed(chunks)
            try:
                return self.catalog.write_document(document, digest, chunks, vectors)
            except IntegrityError:
                # Another process inserted the same path first; retry as an update.
                logger.debug("Retrying write of %s after a concurrent insert", document.path)
                return self.catalog.write_document(document, digest, chunks, vectors)

    def ingest_text(self, path: str, text: str, metadata: dict | None = None, format: str = "text") -> IngestOutcome:
        """Ingest normalised text under ``path``."""
        return self.ingest(SourceDocument(path=path, text=text, format=format, metadata=dict(metadata or {})))

    def _run_batches(self, units: Iterable[T], work: Callable[[T], BatchReport], label: Callable[[T], str]) -> BatchReport:
        report = BatchReport()
        for batch in _batched(units, self.batch_size):
            if self.workers == 1 or len(batch) == 1:
                for unit in batch:
                    report.merge(self._guarded(work, unit, label))
                continue
            with ThreadPoolExecutor(max_workers=min(self.workers, len(batch))) as executor:
                futures = [executor.submit(self._guarded, work, unit, label) for unit in batch]
                for future in as_completed(futures):
                    report.merge(future.result())
        return report

    def _guarded(self, work: Callable[[T], BatchReport], unit: T, label: Callable[[T], str]) -> BatchReport:
        try:
            return work(unit)
        except RECOVERABLE_ERRORS as exc:
            logger.warning("Skipping %s: %s", label(unit), exc)
            failed = BatchReport()
            failed.record_failure(label(unit), exc)
            return failed

    def _ingest_one(self, document: SourceDocument) -> BatchReport:
        report = BatchReport()
        report.record(self.ingest(document))
        return report

    def ingest_many(self, documents: Iterable[SourceDocument]) -> BatchReport:
        """Ingest documents independently; failures are logged and counted."""
        report = self._run_batches(documents, self._ingest_one, lambda d: d.path)
        self._log_report("Batch complete:", report)
        return report

    def _drop_stale_csv_documents(self, path: Path, documents: Sequence[SourceDocument]) -> int:
        """Delete catalog entries a CSV file no longer produces.

        Covers rows removed from the file or excluded by filters and limit,
        and the switch between whole-file and row mode.
        """
        if not extractors.is_csv(path):
            return 0
        produced = {d.path for d in documents}
        candidates = self.catalog.paths(f"{path}{ROW_SEPARATOR}")
        if self.catalog.content_hash(str(path)) is not None:
            candidates.append(str(path))
        stale = [p for p in candidates if p not in produced]
        if not stale:
            return 0
        deleted = self.catalog.delete_documents(stale)
        logger.info("Removed %d stale documents for %s", deleted, path)
        return deleted

    def ingest_folder(self, source: FolderSource) -> BatchReport:
        """Ingest every supported file (or CSV row) under a folder source."""

        def work(path: Path) -> BatchReport:
            report = BatchReport()
            documents = source.load(path)
            self._drop_stale_csv_documents(path, documents)
            for document in documents:
                report.merge(self._guarded(self._ingest_one, document, lambda d: d.path))
            return report

        files = source.files()
        logger.info("Ingesting %d files from %s", len(files), source.root)
        report = self._run_batches(files, work, str)
        self._log_report(f"Ingested folder {source.root}:", report)
        return report

    def ingest_rows(self, source: DatabaseRowSource) -> BatchReport:
        """Ingest the rows of an external database source."""
        report = self._run_batches(source.documents(), self._ingest_one, lambda d: d.path)
        self._log_report(f"Ingested rows from source {source.alias}:", report)
        return report

    def sync(self, folder: str | Path, csv_options: CsvRowOptions | None = None) -> BatchReport:
        """Re-ingest changed or new files under ``folder``.

        Unchanged files are skipped by their content hash, so only strictly
        changed or new files cause writes.
        """
        return self.ingest_folder(FolderSource(folder, csv_options))

    def prune(self, folder: str | Path) -> int:
        """Delete documents under ``folder`` whose file no longer exists.

        CSV row documents (``<file>#row=<n>``) follow their file here; rows a
        file no longer produces are removed when the file is re-ingested.
        Documents outside ``folder`` are never considered.

        Returns
        -------
        int
            Number of deleted documents.
        """
        source = FolderSource(folder)
        live = source.live_paths()
        prefix = str(source.root).rstrip(os.sep) + os.sep
        stale = [p for p in self.catalog.paths(prefix) if base_path(p) not in live]

        deleted = 0
        for batch in _batched(stale, DELETE_BATCH):
            deleted += self.catalog.delete_documents(batch)
        logger.info("Pruned %d documents under %s", deleted, source.root)
        return deleted

    @staticmethod
    def _log_report(prefix: str, report: BatchReport) -> None:
        logger.info(
            "%s %d inserted, %d updated, %d skipped, %d failed",
            prefix,
            report.inserted,
            report.updated,
            report.skipped,
            report.failed,
        )
