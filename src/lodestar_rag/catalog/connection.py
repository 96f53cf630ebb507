"""lodestar_rag.catalog.connection

Engine construction and schema initialisation for the catalog.

PostgreSQL connections are pinned to a per-project schema through
``search_path``; pgvector and full-text indexes are created there. SQLite
connections enable foreign keys so that deletes cascade the same way.

Functions
---------
create_catalog_engine
    Build a SQLAlchemy engine for a database URL and project.
is_postgres
    Return whether an engine talks to PostgreSQL.
init_schema
    Create extension, schema, tables and indexes idempotently.
"""

from __future__ import annotations

import logging

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool

from lodestar_rag.common.exceptions import ConfigurationError
from lodestar_rag.catalog.models import Base

logger = logging.getLogger(__name__)

# pgvector cannot build ivfflat or hnsw indexes above this dimension.
MAX_INDEXED_DIM = 2000
TEXT_SEARCH_CONFIG = "english"


def is_postgres(engine: Engine) -> bool:
    return engine.dialect.name == "postgresql"


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_catalog_engine(
        database_url: str,
        project: str | None = None,
        echo: bool = False,
    ) -> Engine:
    """Create an engine for the catalog database.

    Parameters
    ----------
    database_url : str
        SQLAlchemy database URL. ``postgres://`` and ``postgresql://`` URLs are
        routed to the psycopg 3 driver.
    project : str or None, optional
        Schema name used on PostgreSQL. Ignored for other dialects.
    echo : bool, optional
        Log emitted SQL.

    Returns
    -------
    Engine
        Configured engine.

    Raises
    ------
    ConfigurationError
        If the URL is empty.
    """
    if not database_url:
        raise ConfigurationError("A database URL is required.")

    url = database_url
    if url.startswith("postgres://"):
        url = "postgresql+psycopg://" + url[len("postgres://"):]
    elif url.startswith("postgresql://"):
        url = "postgresql+psycopg://" + url[len("postgresql://"):]

    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        engine = create_engine(url, echo=echo, **kwargs)
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
        return engine

    connect_args = {}
    if project and url.startswith("postgresql"):
        connect_args["options"] = f"-csearch_path={project},public"
    return create_engine(url, echo=echo, pool_pre_ping=True, connect_args=connect_args)


def _align_vector_dimension(conn, dim: int) -> None:
    current = conn.execute(
        text(
            "SELECT atttypmod FROM pg_attribute "
            "WHERE attrelid = 'vectors'::regclass AND attname = 'embedding'"
        )
    ).scalar()
    if current == dim:
        return

    populated = conn.execute(text("SELECT count(*) FROM vectors")).scalar()
    if populated:
        raise ConfigurationError(
            "Configured embedding dimension does not match stored vectors; "
            "prune or re-create the project before changing it.",
            {"configured": dim, "stored": current},
        )

    logger.info("Setting vector dimension to %d", dim)
    conn.execute(text("DROP INDEX IF EXISTS vectors_embedding_idx"))
    conn.execute(text(f"ALTER TABLE vectors ALTER COLUMN embedding TYPE vector({int(dim)})"))
    conn.execute(text(f"ALTER TABLE queries ALTER COLUMN embedding TYPE vector({int(dim)})"))


def _create_vector_index(conn, dim: int, index_method: str) -> None:
    if index_method == "none":
        return
    if dim > MAX_INDEXED_DIM:
        logger.warning(
            "Embedding dimension %d exceeds the %d limit for %s indexes; "
            "vector search will use exact scans.",
            dim,
            MAX_INDEXED_DIM,
            index_method,
        )
        return
    if index_method == "hnsw":
        ddl = "CREATE INDEX IF NOT EXISTS vectors_embedding_idx ON vectors USING hnsw (embedding vector_cosine_ops)"
    else:
        ddl = (
            "CREATE INDEX IF NOT EXISTS vectors_embedding_idx ON vectors "
            "USING ivfflat (embedding vector_cosine_ops) WITH (lists = 100)"
        )
    conn.execute(text(ddl))


def init_schema(
        engine: Engine,
        dim: int,
        project: str | None = None,
        index_method: str = "ivfflat",
    ) -> None:
    """Create the catalog schema idempotently.

    On PostgreSQL this creates the ``vector`` extension, the project schema,
    all tables, the full-text GIN expression index, aligns the embedding
    column to ``dim`` and builds the approximate nearest-neighbour index.
    On other dialects only the tables are created.

    Parameters
    ----------
    engine : Engine
        Catalog engine.
    dim : int
        Configured embedding dimension.
    project : str or None, optional
        PostgreSQL schema to create.
    index_method : str, optional
        ``"ivfflat"``, ``"hnsw"`` or ``"none"``.
    """
    if not is_postgres(engine):
        Base.metadata.create_all(engine)
        return

    with engine.begin() as conn:
        conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector SCHEMA public"))
        if project:
            conn.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{project}"'))
            conn.execute(text(f'SET LOCAL search_path TO "{project}", public'))
        Base.metadata.create_all(conn)
        conn.execute(
            text(
                "CREATE INDEX IF NOT EXISTS chunks_text_tsv_idx ON chunks "
                f"USING GIN (to_tsvector('{TEXT_SEARCH_CONFIG}'::regconfig, text))"
            )
        )
        _align_vector_dimension(conn, dim)
        _create_vector_index(conn, dim, index_method)

    logger.info("Catalog schema ready (project=%s, dim=%d)", project or "public", dim)
