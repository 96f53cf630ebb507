"""lodestar_rag.ingestion.preview

Dry-run previews of what an ingestion run would process.

Previews count documents without touching the catalog: files (or CSV rows
after filters and limit) for folders, rows for database sources, and one
entry per selected configured source. A preview is a plain payload mapping
that renders as text or JSON.

Functions
---------
parse_source_names
    Split a comma-separated list of source names.
parse_source_types
    Split a comma-separated list of source types, keeping known ones.
select_sources
    Filter configured sources by name and type.
preview_folder, preview_database, preview_sources
    Build preview payloads.
render_preview
    Render a payload as text or JSON.
"""

from __future__ import annotations

import json
from typing import Any, Iterable, Mapping, Sequence

from lodestar_rag.common.exceptions import ConfigurationError
from lodestar_rag.config.global_config import CONFIG_FILENAME, SOURCE_TYPES
from lodestar_rag.ingestion.sources import DatabaseRowSource, FolderSource

NO_SOURCE_MESSAGE = f"No source provided. Use --folder, --db-url, or define 'sources:' in {CONFIG_FILENAME}"


def parse_source_names(value: str | Iterable[str] | None) -> list[str] | None:
    """Return stripped, non-empty names, or ``None`` when no filter is given."""
    if value is None:
        return None
    items = value.split(",") if isinstance(value, str) else value
    return [s.strip() for s in map(str, items) if s.strip()]


def parse_source_types(value: str | Iterable[str] | None) -> list[str] | None:
    """Return lower-cased known source types, or ``None`` when no filter is given."""
    if value is None:
        return None
    items = value.split(",") if isinstance(value, str) else value
    return [t for t in (s.strip().lower() for s in map(str, items)) if t in SOURCE_TYPES]


def select_sources(
        sources: Sequence[Mapping[str, Any]],
        names: Sequence[str] | None = None,
        types: Sequence[str] | None = None,
    ) -> list[Mapping[str, Any]]:
    """Filter configured sources by name and type.

    An empty or ``None`` filter matches everything.

    Raises
    ------
    ConfigurationError
        If no sources are configured at all.
    """
    if not sources:
        raise ConfigurationError(NO_SOURCE_MESSAGE)
    selected = []
    for source in sources:
        if names and str(source.get("name")) not in names:
            continue
        if types and source.get("type") not in types:
            continue
        selected.append(source)
    return selected


def preview_folder(source: FolderSource) -> dict[str, Any]:
    return {"mode": "folder", "folder": str(source.root), "files": source.count()}


def preview_database(source: DatabaseRowSource) -> dict[str, Any]:
    return {"mode": "db", "db_url": source.url, "rows": source.count()}


def preview_sources(
        sources: Sequence[Mapping[str, Any]],
        names: Sequence[str] | None = None,
        types: Sequence[str] | None = None,
    ) -> dict[str, Any]:
    """Preview every selected configured source.

    Raises
    ------
    ConfigurationError
        If no sources are configured, or a selected source is malformed.
    TransportError
        If a database source cannot be read.
    """
    entries = []
    for source in select_sources(sources, names, types):
        name = source.get("name")
        if source.get("type") == "folder":
            count = FolderSource.from_config_dict(source).count()
            entries.append({"name": name, "type": "folder", "folder": source["path"], "files": count})
        else:
            db = DatabaseRowSource.from_config_dict(source)
            entries.append({"name": name, "type": "db", "db_url": db.url, "rows": db.count()})
    return {"mode": "sources", "sources": entries}


def _source_line(entry: Mapping[str, Any]) -> str:
    if entry.get("type") == "folder":
        return f"Source {entry.get('name') or '(folder)'}: folder {entry.get('folder')} - files: {entry.get('files')}"
    if entry.get("type") == "db":
        return f"Source {entry.get('name') or '(db)'}: db {entry.get('db_url')} - rows: {entry.get('rows')}"
    return f"Source {entry.get('name') or '(unknown)'}: type={entry.get('type')}"


def render_preview(payload: Mapping[str, Any], as_json: bool = False) -> str:
    """Render a preview payload as human-readable text or indented JSON."""
    if as_json:
        return json.dumps(payload, indent=2)
    mode = payload.get("mode")
    if mode == "folder":
        return f"Would ingest {payload['files']} files from folder: {payload['folder']}"
    if mode == "db":
        return f"Would ingest approximately {payload['rows']} rows from DB: {payload['db_url']}"
    if mode == "sources":
        return "\n".join(_source_line(entry) for entry in payload.get("sources", []))
    return json.dumps(payload, indent=2)


__all__ = [
    "NO_SOURCE_MESSAGE",
    "parse_source_names",
    "parse_source_types",
    "select_sources",
    "preview_folder",
    "preview_database",
    "preview_sources",
    "render_preview",
]
