"""
Ingestion layer.

Turns folders and external database rows into chunked, embedded catalog
entries, skipping anything whose content hash is unchanged.

Submodules
----------
chunker
    Word-window chunking with overlap.
extractors
    Text extraction and normalisation per file format.
sources
    Folder and database row sources.
preview
    Dry-run counts of what an ingestion would process.
pipeline
    Hash-diff ingestion, sync and prune.
"""
