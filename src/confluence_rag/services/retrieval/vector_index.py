from __future__ import annotations

from array import array
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
import logging
from pathlib import Path
import sqlite3
from typing import Protocol

from confluence_rag.errors import InvalidArgumentError, StorageError
from confluence_rag.services.retrieval.types import Chunk, SearchHit

logger = logging.getLogger(__name__)


class VectorIndex(Protocol):
    def add_all(self, chunks: Sequence[Chunk]) -> None: ...

    def search(self, query_vector: Sequence[float], k: int) -> list[SearchHit]: ...

    def fetch_chunks(self, ids: Sequence[str]) -> list[Chunk]: ...


def _encode_embedding(values: Sequence[float]) -> bytes:
    vector = array("f", values)
    return vector.tobytes()


def _decode_embedding(blob: bytes) -> list[float]:
    vector = array("f")
    vector.frombytes(blob)
    return vector.tolist()


def _dot(a: Sequence[float], b: Sequence[float]) -> float:
    return sum(x * y for x, y in zip(a, b))


class SqliteVectorIndex:
    """Chunk store keyed by chunk id with brute-force dot-product search.

    Every write goes through one transaction, so a batch is either fully
    visible to readers or not at all. The database runs in WAL mode, which
    lets searches read the last committed snapshot while a writer is active.
    """

    def __init__(self, db_path: Path) -> None:
        self._db_path = Path(db_path)
        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            with self._connect() as connection:
                connection.execute("PRAGMA journal_mode=WAL")
                connection.executescript(
                    """
                    CREATE TABLE IF NOT EXISTS chunks (
                        id TEXT PRIMARY KEY,
                        title TEXT NOT NULL,
                        url TEXT NOT NULL,
                        content TEXT NOT NULL,
                        embedding BLOB NOT NULL,
                        embedding_dim INTEGER NOT NULL,
                        updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
                    );
                    """
                )
        except (OSError, sqlite3.Error) as exc:
            raise StorageError(f"Failed to open vector index at {self._db_path}: {exc}") from exc

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        connection = sqlite3.connect(self._db_path, timeout=30)
        try:
            with connection:
                yield connection
        finally:
            connection.close()

    def add_all(self, chunks: Sequence[Chunk]) -> None:
        if not chunks:
            return

        rows = []
        for chunk in chunks:
            if chunk.embedding is None:
                raise ValueError(f"chunk {chunk.id} has no embedding")
            rows.append(
                (
                    chunk.id,
                    chunk.title,
                    chunk.url,
                    chunk.content,
                    sqlite3.Binary(_encode_embedding(chunk.embedding)),
                    len(chunk.embedding),
                )
            )

        try:
            with self._connect() as connection:
                connection.executemany(
                    """
                    INSERT INTO chunks (id, title, url, content, embedding, embedding_dim)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(id) DO UPDATE
                    SET title = excluded.title,
                        url = excluded.url,
                        content = excluded.content,
                        embedding = excluded.embedding,
                        embedding_dim = excluded.embedding_dim,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    rows,
                )
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to commit {len(rows)} chunks: {exc}") from exc

        logger.info("committed %d chunks to %s", len(rows), self._db_path)

    def search(self, query_vector: Sequence[float], k: int) -> list[SearchHit]:
        if k <= 0:
            raise InvalidArgumentError("k must be > 0", {"k": k})

        dimensions = len(query_vector)
        try:
            with self._connect() as connection:
                rows = connection.execute(
                    """
                    SELECT id, title, url, content, embedding
                    FROM chunks
                    WHERE embedding_dim = ?
                    ORDER BY rowid
                    """,
                    (dimensions,),
                ).fetchall()
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to search vector index: {exc}") from exc

        hits = [
            SearchHit(
                chunk_id=chunk_id,
                title=title,
                url=url,
                content=content,
                score=_dot(query_vector, _decode_embedding(embedding_blob)),
            )
            for chunk_id, title, url, content, embedding_blob in rows
        ]
        # sorted() is stable, so equal scores keep rowid order
        hits.sort(key=lambda hit: hit.score, reverse=True)
        return hits[:k]

    def fetch_chunks(self, ids: Sequence[str]) -> list[Chunk]:
        unique_ids = list(dict.fromkeys(ids))
        if not unique_ids:
            return []

        placeholders = ", ".join("?" for _ in unique_ids)
        try:
            with self._connect() as connection:
                rows = connection.execute(
                    f"SELECT id, title, url, content FROM chunks WHERE id IN ({placeholders})",
                    unique_ids,
                ).fetchall()
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to fetch chunks: {exc}") from exc

        by_id = {
            chunk_id: Chunk(id=chunk_id, title=title, url=url, content=content)
            for chunk_id, title, url, content in rows
        }
        return [by_id[chunk_id] for chunk_id in unique_ids if chunk_id in by_id]

    def count(self) -> int:
        try:
            with self._connect() as connection:
                return int(connection.execute("SELECT COUNT(*) FROM chunks").fetchone()[0])
        except sqlite3.Error as exc:
            raise StorageError(f"Failed to count chunks: {exc}") from exc
