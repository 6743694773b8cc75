from dataclasses import dataclass


@dataclass(frozen=True)
class Page:
    id: str
    title: str
    url: str
    text: str


@dataclass(frozen=True)
class Chunk:
    id: str
    title: str
    url: str
    content: str
    embedding: list[float] | None = None


@dataclass(frozen=True)
class SearchHit:
    chunk_id: str
    title: str
    url: str
    content: str
    score: float


@dataclass(frozen=True)
class IngestionSummary:
    page_count: int
    chunk_count: int
