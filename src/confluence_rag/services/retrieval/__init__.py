from confluence_rag.services.retrieval.chunker import build_chunks, split_text
from confluence_rag.services.retrieval.embedding_client import Embedder, build_embedder, normalize
from confluence_rag.services.retrieval.ingest import IngestionOrchestrator, IngestLockTable
from confluence_rag.services.retrieval.types import Chunk, IngestionSummary, Page, SearchHit
from confluence_rag.services.retrieval.vector_index import SqliteVectorIndex, VectorIndex

__all__ = [
    "Chunk",
    "Embedder",
    "IngestLockTable",
    "IngestionOrchestrator",
    "IngestionSummary",
    "Page",
    "SearchHit",
    "SqliteVectorIndex",
    "VectorIndex",
    "build_chunks",
    "build_embedder",
    "normalize",
    "split_text",
]
