from functools import lru_cache
import json
import logging
from pathlib import Path
from typing import Annotated, Any

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.orm import Session

from confluence_rag.config import configure_logging, get_settings
from confluence_rag.db import Base, get_engine
from confluence_rag.errors import (
    ChatClientError,
    ClientVisibleError,
    ConfigurationError,
    StorageError,
    TransportError,
)
from confluence_rag.llm import ChatClient, OpenAICompatibleChatClient
from confluence_rag.models import IngestionRunRecord
from confluence_rag.rpc import ProtocolDispatcher, ServerInfo, build_tool_registry
from confluence_rag.rpc.dispatcher import ErrorCodes, error_response
from confluence_rag.runs import SqlRunRecorder, run_detail
from confluence_rag.services.retrieval import (
    Embedder,
    IngestionOrchestrator,
    SqliteVectorIndex,
    VectorIndex,
    build_embedder,
)
from confluence_rag.services.retrieval.document_source import ConfluenceClient, DocumentSource

logger = logging.getLogger(__name__)

app = FastAPI(title="Confluence RAG MCP Server", version="1.0.0")

ASK_EXCERPT_CHARS = 1200


class IngestRequest(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    page_ids: list[str] | None = Field(default=None, alias="pageIds")
    page_urls: list[str] | None = Field(default=None, alias="pageUrls")
    chunk_size: int | None = Field(default=None, alias="chunkSize", gt=0)
    chunk_overlap: int | None = Field(default=None, alias="chunkOverlap", ge=0)
    space_key: str | None = Field(default=None, alias="spaceKey")


class AskRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    q: str = Field(min_length=1)
    k: int = Field(default=5, ge=1, le=50)


@app.on_event("startup")
def startup() -> None:
    configure_logging()
    Base.metadata.create_all(bind=get_engine())
    logger.info("vector index at %s", get_settings().rag_index_path)


@lru_cache
def get_vector_index() -> VectorIndex:
    return SqliteVectorIndex(Path(get_settings().rag_index_path))


def get_embedder() -> Embedder:
    return build_embedder(get_settings())


def get_document_source() -> DocumentSource:
    settings = get_settings()
    return ConfluenceClient(
        base_url=settings.confluence_base_url,
        username=settings.confluence_username,
        api_token=settings.confluence_api_token,
        page_limit=settings.confluence_page_limit,
        timeout_seconds=settings.http_timeout_seconds,
    )


@lru_cache
def get_orchestrator() -> IngestionOrchestrator:
    settings = get_settings()
    return IngestionOrchestrator(
        source=get_document_source(),
        embedder=get_embedder(),
        index=get_vector_index(),
        run_recorder=SqlRunRecorder(get_engine()),
        chunk_size=settings.rag_chunk_size,
        chunk_overlap=settings.rag_chunk_overlap,
        space_keys=settings.confluence_space_keys,
    )


@lru_cache
def get_dispatcher() -> ProtocolDispatcher:
    settings = get_settings()
    return ProtocolDispatcher(
        build_tool_registry(get_embedder(), get_vector_index()),
        ServerInfo(
            name=settings.mcp_server_name,
            version=settings.mcp_server_version,
            title=settings.mcp_server_title,
            instructions=settings.mcp_instructions,
        ),
    )


def get_chat_client() -> ChatClient:
    settings = get_settings()
    return OpenAICompatibleChatClient(
        base_url=settings.chat_base_url,
        model=settings.chat_model,
        api_key=settings.chat_api_key,
        timeout_seconds=settings.http_timeout_seconds,
    )


def _http_error(exc: Exception) -> HTTPException:
    if isinstance(exc, ClientVisibleError):
        return HTTPException(status_code=400, detail=exc.message)
    if isinstance(exc, ValueError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, TransportError):
        return HTTPException(status_code=502, detail=str(exc))
    if isinstance(exc, StorageError):
        return HTTPException(status_code=503, detail=str(exc))
    if isinstance(exc, ConfigurationError):
        return HTTPException(status_code=500, detail=str(exc))
    return HTTPException(status_code=500, detail="Internal error")


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/mcp")
@app.post("/")
async def mcp(
    request: Request,
    dispatcher: Annotated[ProtocolDispatcher, Depends(get_dispatcher)],
) -> Response:
    body = await request.body()
    try:
        payload = json.loads(body)
    except ValueError:
        return JSONResponse(error_response(None, ErrorCodes.PARSE_ERROR, "Parse error"))

    result = await run_in_threadpool(dispatcher.dispatch, payload)
    if result is None:
        return Response(status_code=202)
    return JSONResponse(result)


@app.post("/ingest")
def ingest(
    request: IngestRequest,
    orchestrator: Annotated[IngestionOrchestrator, Depends(get_orchestrator)],
) -> dict[str, int]:
    try:
        summary = orchestrator.ingest_pages(
            page_ids=request.page_ids,
            page_urls=request.page_urls,
            chunk_size=request.chunk_size,
            chunk_overlap=request.chunk_overlap,
        )
    except (ClientVisibleError, ValueError, TransportError, StorageError, ConfigurationError) as exc:
        raise _http_error(exc) from exc

    return {"indexedChunks": summary.chunk_count}


@app.post("/ingest/space")
def ingest_space(
    request: IngestRequest,
    orchestrator: Annotated[IngestionOrchestrator, Depends(get_orchestrator)],
) -> JSONResponse:
    space_key = (request.space_key or "").strip()
    if not space_key:
        raise HTTPException(status_code=400, detail="spaceKey must not be empty")

    try:
        worker = orchestrator.start_space_ingestion(
            space_key,
            chunk_size=request.chunk_size,
            chunk_overlap=request.chunk_overlap,
        )
    except ValueError as exc:
        raise _http_error(exc) from exc

    return JSONResponse(
        status_code=202,
        content={"spaceKey": space_key, "started": worker is not None},
    )


@app.post("/ingest/spaces")
def ingest_configured_spaces(
    orchestrator: Annotated[IngestionOrchestrator, Depends(get_orchestrator)],
) -> JSONResponse:
    workers = orchestrator.start_configured_spaces()
    return JSONResponse(
        status_code=202,
        content={
            "started": [key for key, worker in workers.items() if worker is not None],
            "skipped": [key for key, worker in workers.items() if worker is None],
        },
    )


@app.get("/ingest/runs")
def list_runs(
    space_key: str | None = Query(default=None),
    status: str | None = Query(default=None),
) -> list[dict[str, Any]]:
    with Session(get_engine()) as session:
        stmt = select(IngestionRunRecord)
        if space_key is not None:
            stmt = stmt.where(IngestionRunRecord.space_key == space_key)
        if status is not None:
            stmt = stmt.where(IngestionRunRecord.status == status)

        runs = session.scalars(
            stmt.order_by(IngestionRunRecord.started_at.desc(), IngestionRunRecord.id.asc())
        ).all()

    return [run_detail(run) for run in runs]


@app.get("/ingest/runs/{run_id}")
def get_run(run_id: str) -> dict[str, Any]:
    with Session(get_engine()) as session:
        run = session.get(IngestionRunRecord, run_id)

    if run is None:
        raise HTTPException(status_code=404, detail="ingestion run not found")
    return run_detail(run)


def _hit_payload(hit: Any) -> dict[str, Any]:
    return {
        "chunkId": hit.chunk_id,
        "title": hit.title,
        "url": hit.url,
        "content": hit.content,
        "score": round(hit.score, 6),
    }


@app.get("/query")
def query(
    q: str,
    embedder: Annotated[Embedder, Depends(get_embedder)],
    index: Annotated[VectorIndex, Depends(get_vector_index)],
    k: int = 5,
) -> dict[str, list[dict[str, Any]]]:
    if not q.strip():
        raise HTTPException(status_code=400, detail="q must not be empty")

    try:
        hits = index.search(embedder.embed(q.strip()), max(1, k))
    except (TransportError, StorageError, ConfigurationError) as exc:
        raise _http_error(exc) from exc

    return {"results": [_hit_payload(hit) for hit in hits]}


def _truncate(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + " …"


@app.post("/ask")
def ask(
    request: AskRequest,
    embedder: Annotated[Embedder, Depends(get_embedder)],
    index: Annotated[VectorIndex, Depends(get_vector_index)],
    chat_client: Annotated[ChatClient, Depends(get_chat_client)],
) -> dict[str, Any]:
    question = request.q.strip()
    if not question:
        raise HTTPException(status_code=400, detail="q must not be empty")

    try:
        hits = index.search(embedder.embed(question), request.k)
    except (TransportError, StorageError, ConfigurationError) as exc:
        raise _http_error(exc) from exc

    context = "\n".join(
        f"Title: {hit.title}\nURL: {hit.url}\nExcerpt:\n{_truncate(hit.content, ASK_EXCERPT_CHARS)}\n---"
        for hit in hits
    ) or "No relevant excerpts found in the index."

    try:
        chat_result = chat_client.generate_answer(question=question, context=context)
    except ChatClientError as exc:
        raise HTTPException(status_code=502, detail=f"LLM request failed: {exc}") from exc

    return {
        "answer": chat_result.answer,
        "sources": [_hit_payload(hit) for hit in hits],
        "model": chat_result.model,
    }


def run() -> None:
    import uvicorn

    uvicorn.run("confluence_rag.main:app", host="0.0.0.0", port=8000, reload=False)


if __name__ == "__main__":
    run()
