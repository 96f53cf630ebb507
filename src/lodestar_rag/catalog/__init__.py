"""lodestar_rag.catalog

Persistent storage for documents, chunks and their vectors.

Modules
-------
models
    SQLAlchemy ORM models.
connection
    Engine construction and idempotent schema initialisation.
lexical
    Portable lexical matching and ranking for non-PostgreSQL databases.
catalog
    Database facade used by ingestion and retrieval.
"""
from .catalog import Catalog

__all__ = ["Catalog"]
