"""lodestar_rag.app.cli

Command-line entry point (``lodestar``).

Subcommands
-----------
init
    Create the project schema, tables and indexes.
ingest
    Ingest a folder, an external database, or configured sources; with
    ``--dry-run`` only preview what would be ingested.
sync
    Re-ingest changed or new files under a folder.
prune
    Remove catalog entries for files deleted from a folder.
search
    Query the catalog, optionally rerank, print or export results.
reconstruct
    Rebuild a document's normalised text from its chunks.
extract
    Save the top results for a query as structured JSON.
chat
    Interactive retrieval-augmented chat.
watch
    Poll a folder, running sync and prune on every cycle.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Sequence

from rich.console import Console

from lodestar_rag import __version__
from lodestar_rag.app.container import LodestarContainer, build_container
from lodestar_rag.common.exceptions import LodestarError, TransportError
from lodestar_rag.common.logger import configure_logging
from lodestar_rag.common.schemas import BatchReport
from lodestar_rag.config import GlobalConfig
from lodestar_rag.ingestion import preview
from lodestar_rag.ingestion.sources import CsvRowOptions, DatabaseRowSource, FolderSource, parse_filters
from lodestar_rag.retrieval.search import export_results, results_table

logger = logging.getLogger("lodestar_rag.cli")


def _add_csv_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--csv-row-mode", action="store_true", help="Treat each CSV row as a separate document.")
    parser.add_argument("--csv-delimiter", default=",", help="CSV delimiter (default: ',').")
    parser.add_argument("--csv-headers", default="auto", choices=["true", "false", "auto"], help="CSV header handling.")
    parser.add_argument(
        "--csv-where",
        action="append",
        metavar="KEY=VALUE",
        help="CSV row filter; repeatable, all must match.",
    )
    parser.add_argument("--csv-limit", type=int, default=None, help="Limit CSV rows ingested per file.")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="lodestar", description="Local retrieval-augmented search over your documents")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--project", default=None, help="Project schema name (overrides configuration).")
    parser.add_argument("--config", "-c", default=None, help="Path to a YAML configuration file.")
    parser.add_argument("--log-level", default=None, help="Logging level (default: INFO).")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="Initialise the project schema and indexes.")

    ingest = sub.add_parser("ingest", help="Ingest from a folder or a database source.")
    ingest.add_argument("--folder", help="Folder to ingest.")
    ingest.add_argument("--db-url", help="Source database URL (read-only).")
    ingest.add_argument("--db-alias", default="src", help="Source alias used in document paths (default: src).")
    ingest.add_argument("--db-table", help="Source table.")
    ingest.add_argument("--db-id-column", help="Row id column.")
    ingest.add_argument("--db-text-column", help="Text content column.")
    ingest.add_argument("--db-where", help="Optional WHERE condition.")
    ingest.add_argument("--db-query", help="Custom SQL returning id and text.")
    ingest.add_argument("--db-format", default="text", help="text|markdown|html normalisation (default: text).")
    ingest.add_argument("--source", help="Comma-separated names of configured sources.")
    ingest.add_argument("--source-type", help="Comma-separated configured source types (folder, db).")
    ingest.add_argument("--dry-run", action="store_true", help="Preview items without writing to the catalog.")
    ingest.add_argument("--json", action="store_true", help="With --dry-run, print a JSON summary.")
    ingest.add_argument("--out", help="With --dry-run, write the preview to a file.")
    _add_csv_options(ingest)

    sync = sub.add_parser("sync", help="Re-index only changed files.")
    sync.add_argument("--folder", required=True)
    _add_csv_options(sync)

    prune = sub.add_parser("prune", help="Remove catalog entries for deleted files.")
    prune.add_argument("--folder", required=True)

    search = sub.add_parser("search", help="Query the catalog.")
    search.add_argument("--query", "-q", required=True)
    search.add_argument("--top-k", type=int, default=None, help="Number of results (default: configuration top_k).")
    search.add_argument("--download", help="Export results to .txt, .csv or .json.")
    search.add_argument("--filter", action="append", metavar="KEY=VALUE", help="Filters such as path_prefix=/docs.")
    search.add_argument("--mode", choices=["keyword", "vector", "hybrid"], help="Search mode (default: vector).")
    search.add_argument("--hybrid", action="store_true", help="Hybrid search when --mode is not given.")
    search.add_argument("--alpha", type=float, default=None, help="Vector weight in hybrid score, 0..1.")
    search.add_argument("--rank", default=None, help="Full-text ranking function: rank or rank_cd.")
    search.add_argument("--re-rank", action="store_true", help="Rerank results.")
    search.add_argument("--reranker", help="Reranker: heuristic, llm or crossencoder.")
    search.add_argument("--reranker-endpoint", help="Endpoint for the cross-encoder HTTP reranker.")

    reconstruct = sub.add_parser("reconstruct", help="Rebuild a document's normalised text.")
    reconstruct.add_argument("path", help="Indexed document path.")
    reconstruct.add_argument("--out", required=True)

    extract = sub.add_parser("extract", help="Save the top results for a query as JSON.")
    extract.add_argument("--query", "-q", required=True)
    extract.add_argument("--out", required=True)

    chat = sub.add_parser("chat", help="Interactive chat with retrieval.")
    chat.add_argument("--stream", action=argparse.BooleanOptionalAction, default=True, help="Stream answer tokens.")

    watch = sub.add_parser("watch", help="Watch a folder and incrementally sync and prune.")
    watch.add_argument("--folder", required=True)
    watch.add_argument("--interval", type=float, default=5.0, help="Polling interval in seconds (default: 5).")
    watch.add_argument("--cycles", type=int, default=0, help="Stop after this many cycles (default: run forever).")
    _add_csv_options(watch)

    return parser


def _csv_options(args: argparse.Namespace) -> CsvRowOptions:
    return CsvRowOptions(
        row_mode=args.csv_row_mode,
        delimiter=args.csv_delimiter,
        headers=args.csv_headers,
        filters=parse_filters(args.csv_where),
        limit=args.csv_limit,
    )


def _db_source(args: argparse.Namespace) -> DatabaseRowSource:
    return DatabaseRowSource(
        url=args.db_url,
        table=args.db_table,
        id_column=args.db_id_column,
        text_column=args.db_text_column,
        where=args.db_where,
        query=args.db_query,
        alias=args.db_alias,
        format=args.db_format,
    )


def _print_report(report: BatchReport) -> None:
    print(
        f"Inserted {report.inserted}, updated {report.updated}, "
        f"skipped {report.skipped}, failed {report.failed}"
    )
    for path, error in report.errors:
        print(f"  failed: {path}: {error}")


def cmd_init(container: LodestarContainer, args: argparse.Namespace) -> int:
    container.init_catalog()
    logger.info("Initialized schema '%s' on %s", container.config.project, container.config.database_url)
    return 0


def cmd_ingest(container: LodestarContainer, args: argparse.Namespace) -> int:
    if args.dry_run:
        if args.folder:
            payload = preview.preview_folder(FolderSource(args.folder, _csv_options(args)))
        elif args.db_url:
            payload = preview.preview_database(_db_source(args))
        else:
            payload = preview.preview_sources(
                container.config.sources,
                preview.parse_source_names(args.source),
                preview.parse_source_types(args.source_type),
            )
        text = preview.render_preview(payload, as_json=args.json)
        if args.out:
            Path(args.out).write_text(text, encoding="utf-8")
            logger.info("Preview saved to %s", args.out)
        else:
            print(text)
        return 0

    container.init_catalog()
    pipeline = container.ingestion
    if args.folder:
        report = pipeline.ingest_folder(FolderSource(args.folder, _csv_options(args)))
    elif args.db_url:
        report = pipeline.ingest_rows(_db_source(args))
    else:
        selected = preview.select_sources(
            container.config.sources,
            preview.parse_source_names(args.source),
            preview.parse_source_types(args.source_type),
        )
        report = BatchReport()
        for source in selected:
            if source["type"] == "folder":
                report.merge(pipeline.ingest_folder(FolderSource.from_config_dict(source)))
            else:
                report.merge(pipeline.ingest_rows(DatabaseRowSource.from_config_dict(source)))
    _print_report(report)
    return 0


def cmd_sync(container: LodestarContainer, args: argparse.Namespace) -> int:
    container.init_catalog()
    report = container.ingestion.sync(args.folder, _csv_options(args))
    logger.info("Synced %d files", report.changed)
    _print_report(report)
    return 0


def cmd_prune(container: LodestarContainer, args: argparse.Namespace) -> int:
    container.init_catalog()
    deleted = container.ingestion.prune(args.folder)
    print(f"Pruned {deleted} documents")
    return 0


def cmd_search(container: LodestarContainer, args: argparse.Namespace) -> int:
    container.init_catalog()
    retrieval = container.config.retrieval
    engine = container.search
    results = engine.query(
        args.query,
        top_k=args.top_k,
        filters=parse_filters(args.filter),
        mode=args.mode,
        alpha=retrieval.get("alpha", 0.5) if args.alpha is None else args.alpha,
        rank_function=args.rank or retrieval.get("rank_function", "rank"),
        hybrid=args.hybrid,
    )
    if args.re_rank or retrieval.get("re_rank"):
        reranker = container.reranker(args.reranker, endpoint=args.reranker_endpoint)
        try:
            results = engine.rerank(reranker, args.query, results)
        except TransportError as exc:
            logger.warning("Reranking failed: %s. Keeping retrieval order.", exc)

    if args.download:
        export_results(results, args.download)
    else:
        Console().print(results_table(results))
    return 0


def cmd_reconstruct(container: LodestarContainer, args: argparse.Namespace) -> int:
    container.init_catalog()
    text = container.catalog.document_text(args.path)
    Path(args.out).write_text(text, encoding="utf-8")
    logger.info("Wrote %s", args.out)
    return 0


def cmd_extract(container: LodestarContainer, args: argparse.Namespace) -> int:
    container.init_catalog()
    results = container.search.query(args.query)
    payload = {
        "query": args.query,
        "extracted": [
            {"path": r.document_path, "position": r.position, "score": r.score, "text": r.text}
            for r in results
        ],
    }
    Path(args.out).write_text(json.dumps(payload, indent=2), encoding="utf-8")
    logger.info("Saved extraction to %s", args.out)
    return 0


def _print_token(token: str) -> None:
    print(token, end="", flush=True)


def cmd_chat(container: LodestarContainer, args: argparse.Namespace) -> int:
    container.init_catalog()
    pipeline = container.chat
    print("Enter 'exit' to quit.")
    while True:
        try:
            question = input("you> ").strip()
        except EOFError:
            break
        if question.lower() == "exit":
            break
        if not question:
            continue

        if args.stream:
            print("assistant> ", end="", flush=True)
            turn = pipeline.ask(question, stream=True, on_token=_print_token)
            print(f"\n{turn.answer}" if turn.fallback else "")
        else:
            turn = pipeline.ask(question)
            print(f"assistant> {turn.answer}")
    return 0


def cmd_watch(container: LodestarContainer, args: argparse.Namespace) -> int:
    container.init_catalog()
    folder = Path(args.folder).expanduser().resolve()
    pipeline = container.ingestion
    options = _csv_options(args)
    logger.info("Watching %s (interval %ss)", folder, args.interval)

    cycle = 0
    try:
        while True:
            report = pipeline.sync(folder, options)
            deleted = pipeline.prune(folder)
            logger.info("Cycle %d: %d changed, %d pruned", cycle + 1, report.changed, deleted)
            cycle += 1
            if args.cycles and cycle >= args.cycles:
                break
            time.sleep(args.interval)
    except KeyboardInterrupt:
        logger.info("Stopped watching %s", folder)
    return 0


COMMANDS = {
    "init": cmd_init,
    "ingest": cmd_ingest,
    "sync": cmd_sync,
    "prune": cmd_prune,
    "search": cmd_search,
    "reconstruct": cmd_reconstruct,
    "extract": cmd_extract,
    "chat": cmd_chat,
    "watch": cmd_watch,
}


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    container = None
    try:
        config = GlobalConfig.load(args.config, overrides={"project": args.project})
        container = build_container(config)
        return COMMANDS[args.command](container, args)
    except LodestarError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    finally:
        if container is not None and "catalog" in container.__dict__:
            container.catalog.dispose()


if __name__ == "__main__":
    sys.exit(main())
