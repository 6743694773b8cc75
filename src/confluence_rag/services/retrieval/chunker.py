from __future__ import annotations

from confluence_rag.services.retrieval.embedding_client import Embedder
from confluence_rag.services.retrieval.types import Chunk, Page


def split_text(text: str | None, *, chunk_size: int, chunk_overlap: int) -> list[str]:
    if chunk_size <= 0:
        raise ValueError("chunk_size must be > 0")
    if chunk_overlap < 0:
        raise ValueError("chunk_overlap must be >= 0")
    if chunk_overlap >= chunk_size:
        raise ValueError("chunk_overlap must be smaller than chunk_size")

    if text is None:
        return []
    text = text.strip()
    if not text:
        return []

    chunks: list[str] = []
    text_length = len(text)
    start = 0
    end = min(chunk_size, text_length)

    while start < text_length:
        chunks.append(text[start:end])
        if end == text_length:
            break
        start = max(0, end - chunk_overlap)
        end = min(start + chunk_size, text_length)

    return chunks


def build_chunks(
    page: Page,
    embedder: Embedder,
    *,
    chunk_size: int,
    chunk_overlap: int,
) -> list[Chunk]:
    pieces = split_text(page.text, chunk_size=chunk_size, chunk_overlap=chunk_overlap)
    return [
        Chunk(
            id=f"{page.id}_{sequence}",
            title=page.title,
            url=page.url,
            content=piece,
            embedding=embedder.embed(piece),
        )
        for sequence, piece in enumerate(pieces)
    ]
