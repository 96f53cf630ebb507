"""lodestar_rag.ingestion.extractors

Text extraction for supported file formats.

Every extractor maps a file path to normalised UTF-8 text and is
deterministic for a fixed input file. Failures to read or parse a file are
raised as :class:`~lodestar_rag.common.exceptions.ExtractionError`.

Supported formats are plain text and Markdown, HTML, PDF, DOCX and CSV
(optionally gzip-compressed). CSV files can also be read row by row for the
row-as-document ingestion mode.

Functions
---------
extension_of
    Return the normalised extension of a path, treating ``.csv.gz`` as one.
is_supported
    Return whether a path has a supported extension.
strip_markup
    Remove code fences and Markdown punctuation and collapse spaces.
html_to_text
    Join the text nodes of an HTML document.
normalize_text
    Normalise raw text according to a format tag.
extract
    Extract normalised text from a file.
read_csv_rows
    Read a CSV file into a header list and rows.
csv_row_text
    Render one CSV row as ``key: value`` pairs.
"""

from __future__ import annotations

import csv
import gzip
import io
import logging
import re
import zipfile
from pathlib import Path
from typing import Callable

from bs4 import BeautifulSoup, UnicodeDammit
from docx import Document as DocxDocument
from docx.opc.exceptions import PackageNotFoundError
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from lodestar_rag.common.exceptions import ExtractionError

logger = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = (".txt", ".md", ".markdown", ".pdf", ".docx", ".html", ".htm", ".csv", ".csv.gz")
CSV_EXTENSIONS = (".csv", ".csv.gz")

_CODE_FENCE_RE = re.compile(r"```.*?```", re.DOTALL)
_MARKUP_RE = re.compile(r"[*_`#>\[\]!()]")
_CR_TAB_RE = re.compile(r"[\r\t]")
_SPACES_RE = re.compile(r" +")
_WHITESPACE_RE = re.compile(r"\s+")

_READ_ERRORS = (OSError, ValueError, KeyError, zipfile.BadZipFile, PdfReadError, PackageNotFoundError, csv.Error)


def extension_of(path: str | Path) -> str:
    name = str(path).lower()
    if name.endswith(".csv.gz"):
        return ".csv.gz"
    return Path(name).suffix


def is_supported(path: str | Path) -> bool:
    return extension_of(path) in SUPPORTED_EXTENSIONS


def is_csv(path: str | Path) -> bool:
    return extension_of(path) in CSV_EXTENSIONS


def _collapse_spaces(text: str) -> str:
    return _SPACES_RE.sub(" ", _CR_TAB_RE.sub(" ", text)).strip()


def strip_markup(text: str) -> str:
    """Strip fenced code blocks and Markdown punctuation.

    Carriage returns and tabs become spaces and runs of spaces collapse to
    one. Newlines are kept.
    """
    text = _CODE_FENCE_RE.sub(" ", text or "")
    text = _MARKUP_RE.sub(" ", text)
    return _collapse_spaces(text)


def html_to_text(html: str) -> str:
    """Return every text node of ``html`` joined by spaces, whitespace collapsed."""
    soup = BeautifulSoup(html or "", "html.parser")
    return _WHITESPACE_RE.sub(" ", " ".join(soup.find_all(string=True))).strip()


def normalize_text(text: str, fmt: str | None = "text") -> str:
    """Normalise raw text according to its format tag.

    Parameters
    ----------
    text : str
        Raw text, e.g. a database column value.
    fmt : str or None, optional
        ``"html"``/``"htm"`` strips tags; ``"text"``, ``"plain"``,
        ``"markdown"`` and ``"md"`` strip Markdown markup. Unknown tags are
        treated as text.

    Returns
    -------
    str
        Normalised text.
    """
    kind = (fmt or "text").lower().lstrip(".")
    if kind in ("html", "htm"):
        return html_to_text(text)
    return strip_markup(text)


def _read_text(path: Path) -> str:
    data = path.read_bytes()
    if not data:
        return ""
    return UnicodeDammit(data, ["utf-8"]).unicode_markup or ""


def _read_csv_data(path: Path) -> str:
    if str(path).lower().endswith(".gz"):
        with gzip.open(path, "rt", encoding="utf-8", newline="") as f:
            return f.read()
    return path.read_text(encoding="utf-8")


def _extract_plain(path: Path) -> str:
    return strip_markup(_read_text(path))


def _extract_html(path: Path) -> str:
    return html_to_text(_read_text(path))


def _extract_pdf(path: Path) -> str:
    reader = PdfReader(str(path))
    pages = [page.extract_text() or "" for page in reader.pages]
    return _WHITESPACE_RE.sub(" ", "\n".join(pages)).strip()


def _extract_docx(path: Path) -> str:
    document = DocxDocument(str(path))
    paragraphs = [p.text for p in document.paragraphs]
    return _WHITESPACE_RE.sub(" ", "\n".join(paragraphs)).strip()


def _extract_csv(path: Path) -> str:
    headers, rows = read_csv_rows(path, headers=True)
    lines = []
    if headers:
        lines.append("Headers: " + ", ".join(h.strip() for h in headers))
    lines.extend(csv_row_text(row, headers) for row in rows)
    return _collapse_spaces("\n".join(lines))


EXTRACTORS: dict[str, Callable[[Path], str]] = {
    ".txt": _extract_plain,
    ".md": _extract_plain,
    ".markdown": _extract_plain,
    ".html": _extract_html,
    ".htm": _extract_html,
    ".pdf": _extract_pdf,
    ".docx": _extract_docx,
    ".csv": _extract_csv,
    ".csv.gz": _extract_csv,
}


def extract(path: str | Path) -> str:
    """Extract normalised text from a file.

    Unsupported extensions are read as plain text.

    Parameters
    ----------
    path : str or Path
        File to read.

    Returns
    -------
    str
        Normalised UTF-8 text.

    Raises
    ------
    ExtractionError
        If the file cannot be read or parsed.
    """
    path = Path(path)
    handler = EXTRACTORS.get(extension_of(path), _extract_plain)
    try:
        return handler(path)
    except _READ_ERRORS as exc:
        raise ExtractionError(str(path), f"{type(exc).__name__}: {exc}") from exc


def _parse_headers_flag(headers) -> bool | None:
    """Map ``true``/``false``/``auto`` (or bools) to ``True``/``False``/``None``."""
    if isinstance(headers, bool) or headers is None:
        return headers
    value = str(headers).strip().lower()
    if value in ("true", "yes", "1"):
        return True
    if value in ("false", "no", "0"):
        return False
    return None


def read_csv_rows(
        path: str | Path,
        delimiter: str = ",",
        headers: bool | str | None = "auto",
    ) -> tuple[list[str] | None, list]:
    """Read a CSV file into a header list and its rows.

    Parameters
    ----------
    path : str or Path
        CSV file, optionally gzip-compressed (``.gz``).
    delimiter : str, optional
        Column separator. Defaults to ``","``.
    headers : bool or str or None, optional
        ``True`` treats the first row as headers, ``False`` never does and
        ``"auto"`` behaves like ``True`` unless the first row is empty.

    Returns
    -------
    tuple[list[str] or None, list]
        ``(header_names, rows)`` where rows are dicts when headers are used,
        otherwise ``(None, rows)`` with rows as lists of values.

    Raises
    ------
    ExtractionError
        If the file cannot be read or parsed.
    """
    path = Path(path)
    try:
        data = _read_csv_data(path)
        rows = list(csv.reader(io.StringIO(data), delimiter=delimiter or ","))
    except _READ_ERRORS as exc:
        raise ExtractionError(str(path), f"{type(exc).__name__}: {exc}") from exc

    use_headers = _parse_headers_flag(headers)
    if use_headers is False or not rows or not any(cell.strip() for cell in rows[0]):
        return None, [r for r in rows if r]

    header_names = rows[0]
    records = []
    for values in rows[1:]:
        if not values:
            continue
        record = {}
        for i, value in enumerate(values):
            key = header_names[i] if i < len(header_names) else f"col{i + 1}"
            record[key] = value
        for key in header_names[len(values):]:
            record[key] = ""
        records.append(record)
    return header_names, records


def csv_row_text(row, headers: list[str] | None = None) -> str:
    """Render a CSV row as ``key: value`` pairs joined by ``" | "``.

    Header-less rows use ``colN`` keys, numbered from 1.
    """
    if headers and isinstance(row, dict):
        return " | ".join(f"{k}: {v}" for k, v in row.items())
    if isinstance(row, (list, tuple)):
        return " | ".join(f"col{i + 1}: {v}" for i, v in enumerate(row))
    return str(row)
