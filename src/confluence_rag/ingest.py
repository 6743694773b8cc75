from __future__ import annotations

import argparse
from pathlib import Path
import sys

from confluence_rag.config import configure_logging, get_settings
from confluence_rag.services.retrieval import IngestionOrchestrator, SqliteVectorIndex, build_embedder
from confluence_rag.services.retrieval.document_source import ConfluenceClient


def _build_parser() -> argparse.ArgumentParser:
    settings = get_settings()

    parser = argparse.ArgumentParser(
        prog="rag-ingest",
        description="Ingest Confluence pages into the local vector index",
    )
    target = parser.add_mutually_exclusive_group(required=True)
    target.add_argument("--space", help="Confluence space key to ingest completely")
    target.add_argument("--page-id", action="append", dest="page_ids", help="Page id (repeatable)")
    target.add_argument("--page-url", action="append", dest="page_urls", help="Page URL (repeatable)")
    parser.add_argument(
        "--chunk-size",
        type=int,
        default=settings.rag_chunk_size,
        help="Chunk size in characters",
    )
    parser.add_argument(
        "--chunk-overlap",
        type=int,
        default=settings.rag_chunk_overlap,
        help="Chunk overlap in characters",
    )
    parser.add_argument(
        "--index-path",
        default=settings.rag_index_path,
        help="Vector index sqlite file",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    parser = _build_parser()
    args = parser.parse_args(argv)
    settings = get_settings()
    configure_logging()

    try:
        index = SqliteVectorIndex(Path(args.index_path))
        orchestrator = IngestionOrchestrator(
            source=ConfluenceClient(
                base_url=settings.confluence_base_url,
                username=settings.confluence_username,
                api_token=settings.confluence_api_token,
                page_limit=settings.confluence_page_limit,
                timeout_seconds=settings.http_timeout_seconds,
            ),
            embedder=build_embedder(settings),
            index=index,
            chunk_size=args.chunk_size,
            chunk_overlap=args.chunk_overlap,
        )
        if args.space:
            summary = orchestrator.ingest_space(args.space)
        else:
            summary = orchestrator.ingest_pages(page_ids=args.page_ids, page_urls=args.page_urls)
        indexed_total = index.count()
    except Exception as exc:
        print(f"[rag-ingest] failed: {exc}", file=sys.stderr, flush=True)
        raise SystemExit(1) from exc

    print(
        "[rag-ingest] completed "
        f"pages={summary.page_count} "
        f"chunks={summary.chunk_count} "
        f"index_chunks={indexed_total} "
        f"index_path={args.index_path}",
        flush=True,
    )


if __name__ == "__main__":
    main()
