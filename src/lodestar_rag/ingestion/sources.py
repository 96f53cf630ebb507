"""lodestar_rag.ingestion.sources

Document sources for the ingestion pipeline.

A source turns some external location into
:class:`~lodestar_rag.common.schemas.SourceDocument` objects with stable paths:

- a folder of supported files, where CSV files may optionally be split into
  one pseudo-document per row (``<file>#row=<n>``);
- rows of an external database table or query
  (``source://<alias>/<table or "query">/<id>``).

Sources also count what they would produce, which backs the dry-run preview.

Classes
-------
CsvRowOptions
    Options for treating CSV rows as individual documents.
FolderSource
    Supported files beneath a root folder.
DatabaseRowSource
    Rows read from an external database through SQLAlchemy.

Functions
---------
parse_filters
    Parse ``key=value`` strings into a mapping.
content_hash
    SHA-256 digest of normalised text.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Mapping

from sqlalchemy import MetaData, Table, create_engine, select, text
from sqlalchemy.exc import SQLAlchemyError

from lodestar_rag.common.exceptions import ConfigurationError, TransportError
from lodestar_rag.common.schemas import SourceDocument
from lodestar_rag.ingestion import extractors

logger = logging.getLogger(__name__)

ROW_SEPARATOR = "#row="
DEFAULT_ALIAS = "src"


def content_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def parse_filters(values) -> dict[str, str]:
    """Parse ``key=value`` filters.

    Accepts a mapping (returned as strings), a list of ``key=value`` strings or
    ``None``. Entries without ``=`` are ignored.
    """
    if not values:
        return {}
    if isinstance(values, Mapping):
        return {str(k): str(v) for k, v in values.items()}
    filters = {}
    for item in values:
        key, sep, value = str(item).partition("=")
        if sep and key:
            filters[key] = value
    return filters


def base_path(path: str) -> str:
    """Strip a ``#row=N`` suffix from a pseudo-document path."""
    head, sep, _ = path.rpartition(ROW_SEPARATOR)
    return head if sep else path


@dataclass
class CsvRowOptions:
    """Options for CSV row-as-document ingestion.

    Attributes
    ----------
    row_mode : bool
        When ``False`` CSV files are ingested as a single document.
    delimiter : str
        Column separator.
    headers : str
        ``"true"``, ``"false"`` or ``"auto"``.
    filters : dict[str, str]
        Equality filters applied to headed rows; all must match.
    limit : int or None
        Maximum rows per file, applied after filtering.
    """

    row_mode: bool = False
    delimiter: str = ","
    headers: str = "auto"
    filters: dict[str, str] = field(default_factory=dict)
    limit: int | None = None

    @classmethod
    def from_config_dict(cls, config: Mapping[str, Any]) -> "CsvRowOptions":
        """Build options from a folder source definition (``csv_*`` keys)."""
        limit = config.get("csv_limit")
        return cls(
            row_mode=bool(config.get("csv_row_mode", False)),
            delimiter=str(config.get("csv_delimiter") or ","),
            headers=str(config.get("csv_headers") or "auto").lower(),
            filters=parse_filters(config.get("csv_where")),
            limit=int(limit) if limit is not None else None,
        )


class FolderSource:
    """Supported files beneath a root folder.

    Parameters
    ----------
    root : str or Path
        Folder to walk recursively. Paths of produced documents are absolute.
    csv_options : CsvRowOptions or None, optional
        CSV row-mode options. Defaults to whole-file CSV ingestion.
    """

    def __init__(self, root: str | Path, csv_options: CsvRowOptions | None = None):
        self.root = Path(root).expanduser().resolve()
        self.csv_options = csv_options or CsvRowOptions()

    @classmethod
    def from_config_dict(cls, config: Mapping[str, Any]) -> "FolderSource":
        return cls(config["path"], CsvRowOptions.from_config_dict(config))

    def files(self) -> list[Path]:
        """Return supported files, sorted for deterministic batching."""
        if not self.root.is_dir():
            raise ConfigurationError(f"Folder not found: {self.root}")
        return sorted(p for p in self.root.rglob("*") if p.is_file() and extractors.is_supported(p))

    def live_paths(self) -> set[str]:
        """Return the paths of every file currently present under the root."""
        if not self.root.is_dir():
            return set()
        return {str(p) for p in self.root.rglob("*") if p.is_file()}

    def _row_mode(self, path: Path) -> bool:
        return self.csv_options.row_mode and extractors.is_csv(path)

    def _selected_rows(self, path: Path) -> tuple[list[str] | None, list]:
        opts = self.csv_options
        headers, rows = extractors.read_csv_rows(path, delimiter=opts.delimiter, headers=opts.headers)
        if opts.filters and headers:
            rows = [r for r in rows if all(str(r.get(k, "")) == v for k, v in opts.filters.items())]
        if opts.limit is not None:
            rows = rows[: max(0, opts.limit)]
        return headers, rows

    def load(self, path: Path) -> list[SourceDocument]:
        """Extract the documents contributed by one file.

        Raises
        ------
        ExtractionError
            If the file cannot be read or parsed.
        """
        stat = path.stat()
        mtime = datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)

        if self._row_mode(path):
            headers, rows = self._selected_rows(path)
            documents = []
            for i, row in enumerate(rows):
                body = extractors.csv_row_text(row, headers)
                documents.append(
                    SourceDocument(
                        path=f"{path}{ROW_SEPARATOR}{i + 1}",
                        text=body,
                        modified_time=mtime,
                        format="csv-row",
                        metadata={"source_file": str(path), "row": i + 1},
                    )
                )
            return documents

        return [
            SourceDocument(
                path=str(path),
                text=extractors.extract(path),
                size=stat.st_size,
                modified_time=mtime,
                format=extractors.extension_of(path),
            )
        ]

    def count(self) -> int:
        """Count the documents this source would produce."""
        total = 0
        for path in self.files():
            if self._row_mode(path):
                total += len(self._selected_rows(path)[1])
            else:
                total += 1
        return total


class DatabaseRowSource:
    """Rows of an external database exposed as documents.

    Either ``query`` (raw SQL returning rows) or ``table`` plus
    ``text_column`` must be given. When ``id_column``/``text_column`` are
    omitted, the first and last columns of each row are used.

    Parameters
    ----------
    url : str
        SQLAlchemy URL of the source database. Opened read-only in spirit; no
        writes are issued.
    table : str or None, optional
        Table to read.
    id_column, text_column : str or None, optional
        Columns holding the row identifier and the text.
    where : str or None, optional
        Raw SQL condition applied to ``table``.
    query : str or None, optional
        Raw SQL query; takes precedence over ``table``.
    alias : str, optional
        Namespace used in document paths. Defaults to ``"src"``.
    format : str, optional
        Normalisation applied to the text: ``text``/``markdown`` or ``html``.
    """

    def __init__(
            self,
            url: str,
            table: str | None = None,
            id_column: str | None = None,
            text_column: str | None = None,
            where: str | None = None,
            query: str | None = None,
            alias: str = DEFAULT_ALIAS,
            format: str = "text",
        ):
        if not url:
            raise ConfigurationError("A database source requires a URL.")
        has_query = bool(query and query.strip())
        if not has_query and not (table and text_column):
            raise ConfigurationError("A database source requires 'query', or 'table' and 'text_column'.")
        self.url = url
        self.table = table
        self.id_column = id_column
        self.text_column = text_column
        self.where = where
        self.query = query if has_query else None
        self.alias = alias or DEFAULT_ALIAS
        self.format = format or "text"

    @classmethod
    def from_config_dict(cls, config: Mapping[str, Any]) -> "DatabaseRowSource":
        return cls(
            url=config.get("url") or config.get("db_url"),
            table=config.get("table"),
            id_column=config.get("id_column"),
            text_column=config.get("text_column"),
            where=config.get("where"),
            query=config.get("query"),
            alias=config.get("alias") or DEFAULT_ALIAS,
            format=config.get("format") or "text",
        )

    def _statement(self, engine):
        if self.query:
            return text(self.query)
        table = Table(self.table, MetaData(), autoload_with=engine)
        stmt = select(table)
        if self.where:
            stmt = stmt.where(text(self.where))
        return stmt

    def rows(self) -> Iterator[dict[str, Any]]:
        """Yield ``{"id", "text", "row"}`` mappings.

        The connection is released once the rows are exhausted or the
        generator is closed.

        Raises
        ------
        TransportError
            If the source database cannot be queried.
        """
        engine = create_engine(self.url)
        try:
            with engine.connect() as conn:
                result = conn.execute(self._statement(engine))
                for row in result.mappings():
                    values = list(row.values())
                    row_id = row[self.id_column] if self.id_column else values[0]
                    body = row[self.text_column] if self.text_column else values[-1]
                    yield {"id": row_id, "text": "" if body is None else str(body), "row": dict(row)}
        except SQLAlchemyError as exc:
            raise TransportError(f"Failed reading rows from source database: {exc}") from exc
        finally:
            engine.dispose()

    def document_path(self, row_id) -> str:
        return f"source://{self.alias}/{self.table or 'query'}/{row_id}"

    def documents(self) -> Iterator[SourceDocument]:
        for row in self.rows():
            normalised = extractors.normalize_text(row["text"], self.format)
            yield SourceDocument(
                path=self.document_path(row["id"]),
                text=normalised,
                format=self.format,
                metadata={"alias": self.alias, "table": self.table or "query", "id": str(row["id"])},
            )

    def count(self) -> int:
        return sum(1 for _ in self.rows())
