from __future__ import annotations

from collections.abc import Callable, Sequence
import logging
from threading import Lock, Thread
from types import TracebackType
from typing import Protocol

from confluence_rag.errors import MissingArgumentError
from confluence_rag.services.retrieval.chunker import build_chunks
from confluence_rag.services.retrieval.document_source import (
    DocumentSource,
    extract_page_id_from_url,
)
from confluence_rag.services.retrieval.embedding_client import Embedder
from confluence_rag.services.retrieval.types import Chunk, IngestionSummary, Page
from confluence_rag.services.retrieval.vector_index import VectorIndex

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 800
DEFAULT_CHUNK_OVERLAP = 120
PROGRESS_EVERY_PAGES = 10

ProgressCallback = Callable[[str, int], None]


class RunRecorder(Protocol):
    def started(self, space_key: str) -> str: ...

    def finished(
        self,
        run_id: str,
        *,
        page_count: int,
        chunk_count: int,
        error: str | None,
    ) -> None: ...


class IngestLease:
    """Exclusive claim on one ingestion key, released when the block exits."""

    def __init__(self, table: IngestLockTable, key: str) -> None:
        self._table = table
        self.key = key
        self._released = False

    def release(self) -> None:
        if not self._released:
            self._released = True
            self._table._release(self.key)

    def __enter__(self) -> IngestLease:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.release()


class IngestLockTable:
    def __init__(self) -> None:
        self._guard = Lock()
        self._held: set[str] = set()

    def try_acquire(self, key: str) -> IngestLease | None:
        with self._guard:
            if key in self._held:
                return None
            self._held.add(key)
        return IngestLease(self, key)

    def _release(self, key: str) -> None:
        with self._guard:
            self._held.discard(key)

    def is_running(self, key: str) -> bool:
        with self._guard:
            return key in self._held


def progress_percentage(done: int, total: int) -> int:
    if total <= 0:
        return 100
    return done * 100 // total


class IngestionOrchestrator:
    def __init__(
        self,
        *,
        source: DocumentSource,
        embedder: Embedder,
        index: VectorIndex,
        locks: IngestLockTable | None = None,
        run_recorder: RunRecorder | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
        space_keys: Sequence[str] = (),
        on_progress: ProgressCallback | None = None,
    ) -> None:
        if chunk_overlap >= chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        self._source = source
        self._embedder = embedder
        self._index = index
        self._locks = locks or IngestLockTable()
        self._run_recorder = run_recorder
        self._chunk_size = chunk_size
        self._chunk_overlap = chunk_overlap
        self._space_keys = tuple(space_keys)
        self._on_progress = on_progress

    @property
    def locks(self) -> IngestLockTable:
        return self._locks

    @property
    def space_keys(self) -> tuple[str, ...]:
        return self._space_keys

    def _window(self, chunk_size: int | None, chunk_overlap: int | None) -> tuple[int, int]:
        size = self._chunk_size if chunk_size is None else chunk_size
        overlap = self._chunk_overlap if chunk_overlap is None else chunk_overlap
        if overlap >= size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        return size, overlap

    def _chunk_pages(
        self,
        pages: Sequence[Page],
        *,
        chunk_size: int,
        chunk_overlap: int,
        progress_key: str | None = None,
    ) -> list[Chunk]:
        chunks: list[Chunk] = []
        total = len(pages)
        for position, page in enumerate(pages):
            chunks.extend(
                build_chunks(
                    page,
                    self._embedder,
                    chunk_size=chunk_size,
                    chunk_overlap=chunk_overlap,
                )
            )
            if progress_key is not None and position % PROGRESS_EVERY_PAGES == 0:
                percent = progress_percentage(position, total)
                logger.info("ingest space %s process %d%%", progress_key, percent)
                if self._on_progress is not None:
                    self._on_progress(progress_key, percent)
        return chunks

    def ingest_space(
        self,
        space_key: str,
        *,
        chunk_size: int | None = None,
        chunk_overlap: int | None = None,
    ) -> IngestionSummary:
        """Ingest every page of a space and upsert the chunks in one batch.

        Takes no lock; `start_space_ingestion` is the guarded entry point.
        """
        size, overlap = self._window(chunk_size, chunk_overlap)
        pages = self._source.fetch_all_pages_in_space(space_key)
        logger.info("ingest space %s, pages=%d", space_key, len(pages))

        chunks = self._chunk_pages(
            pages,
            chunk_size=size,
            chunk_overlap=overlap,
            progress_key=space_key,
        )
        self._index.add_all(chunks)
        logger.info("ingest space %s done, chunks=%d", space_key, len(chunks))
        return IngestionSummary(page_count=len(pages), chunk_count=len(chunks))

    def _run_locked(
        self,
        lease: IngestLease,
        chunk_size: int | None,
        chunk_overlap: int | None,
    ) -> None:
        with lease:
            run_id = None
            page_count = chunk_count = 0
            error: str | None = None
            try:
                if self._run_recorder is not None:
                    run_id = self._run_recorder.started(lease.key)
                summary = self.ingest_space(
                    lease.key,
                    chunk_size=chunk_size,
                    chunk_overlap=chunk_overlap,
                )
                page_count, chunk_count = summary.page_count, summary.chunk_count
            except Exception as exc:
                error = f"{type(exc).__name__}: {exc}"
                logger.exception("ingest space %s failed", lease.key)
            finally:
                if self._run_recorder is not None and run_id is not None:
                    try:
                        self._run_recorder.finished(
                            run_id,
                            page_count=page_count,
                            chunk_count=chunk_count,
                            error=error,
                        )
                    except Exception:
                        logger.exception("failed to record ingestion run %s", run_id)

    def start_space_ingestion(
        self,
        space_key: str,
        *,
        chunk_size: int | None = None,
        chunk_overlap: int | None = None,
    ) -> Thread | None:
        """Run `ingest_space` on a background thread.

        Returns None without doing anything when the space is already being
        ingested. Errors raised by the background run are logged and never
        reach the caller.
        """
        self._window(chunk_size, chunk_overlap)
        lease = self._locks.try_acquire(space_key)
        if lease is None:
            logger.info("ingest space %s already running, skipping", space_key)
            return None

        worker = Thread(
            target=self._run_locked,
            args=(lease, chunk_size, chunk_overlap),
            name=f"ingest-{space_key}",
            daemon=True,
        )
        try:
            worker.start()
        except BaseException:
            lease.release()
            raise
        return worker

    def start_configured_spaces(self) -> dict[str, Thread | None]:
        return {key: self.start_space_ingestion(key) for key in self._space_keys}

    def ingest_pages(
        self,
        *,
        page_ids: Sequence[str] | None = None,
        page_urls: Sequence[str] | None = None,
        chunk_size: int | None = None,
        chunk_overlap: int | None = None,
    ) -> IngestionSummary:
        size, overlap = self._window(chunk_size, chunk_overlap)

        ids = [page_id for page_id in (page_ids or []) if page_id and page_id.strip()]
        for url in page_urls or []:
            page_id = extract_page_id_from_url(url)
            if page_id is None:
                logger.warning("cannot extract page id from url %s", url)
                continue
            ids.append(page_id)

        if not ids:
            raise MissingArgumentError(
                "pageIds or pageUrls is required",
                {"pageIds": list(page_ids or []), "pageUrls": list(page_urls or [])},
            )

        pages = [self._source.fetch_page(page_id) for page_id in ids]
        chunks = self._chunk_pages(pages, chunk_size=size, chunk_overlap=overlap)
        self._index.add_all(chunks)
        logger.info("ingested pages=%d chunks=%d", len(pages), len(chunks))
        return IngestionSummary(page_count=len(pages), chunk_count=len(chunks))
