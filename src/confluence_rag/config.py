from dataclasses import dataclass
from functools import lru_cache
import logging
import os


def _to_bool(value: str | None, *, default: bool) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _to_int(value: str | None, *, default: int, minimum: int) -> int:
    if value is None:
        return default
    parsed = int(value)
    return max(minimum, parsed)


def _to_list(value: str | None) -> tuple[str, ...]:
    if value is None:
        return ()
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    database_url: str
    db_echo: bool
    log_level: str
    rag_index_path: str
    rag_chunk_size: int
    rag_chunk_overlap: int
    embedding_backend: str
    ollama_base_url: str
    ollama_embed_model: str
    openai_base_url: str
    openai_api_key: str
    openai_embed_model: str
    chat_base_url: str
    chat_model: str
    chat_api_key: str
    http_timeout_seconds: float
    confluence_base_url: str
    confluence_username: str
    confluence_api_token: str
    confluence_space_keys: tuple[str, ...]
    confluence_page_limit: int
    mcp_server_name: str
    mcp_server_version: str
    mcp_server_title: str
    mcp_instructions: str


@lru_cache
def get_settings() -> Settings:
    return Settings(
        database_url=os.getenv("API_DATABASE_URL", "sqlite+pysqlite:///data/confluence_rag.db"),
        db_echo=_to_bool(os.getenv("API_DB_ECHO"), default=False),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        rag_index_path=os.getenv("RAG_INDEX_PATH", "data/index/vectors.db"),
        rag_chunk_size=_to_int(os.getenv("RAG_CHUNK_SIZE"), default=800, minimum=1),
        rag_chunk_overlap=_to_int(os.getenv("RAG_CHUNK_OVERLAP"), default=120, minimum=0),
        embedding_backend=os.getenv("EMBEDDING_BACKEND", "ollama").strip().lower(),
        ollama_base_url=os.getenv("OLLAMA_BASE_URL", "http://localhost:11434"),
        ollama_embed_model=os.getenv("OLLAMA_EMBED_MODEL", "nomic-embed-text"),
        openai_base_url=os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1"),
        openai_api_key=os.getenv("OPENAI_API_KEY", ""),
        openai_embed_model=os.getenv("OPENAI_EMBED_MODEL", "text-embedding-3-small"),
        chat_base_url=os.getenv("CHAT_BASE_URL", "https://api.openai.com/v1"),
        chat_model=os.getenv("CHAT_MODEL", "gpt-4o-mini"),
        chat_api_key=os.getenv("CHAT_API_KEY", os.getenv("OPENAI_API_KEY", "")),
        http_timeout_seconds=float(os.getenv("HTTP_TIMEOUT_SECONDS", "30")),
        confluence_base_url=os.getenv("CONFLUENCE_BASE_URL", ""),
        confluence_username=os.getenv("CONFLUENCE_USERNAME", ""),
        confluence_api_token=os.getenv("CONFLUENCE_API_TOKEN", ""),
        confluence_space_keys=_to_list(os.getenv("CONFLUENCE_SPACE_KEYS")),
        confluence_page_limit=_to_int(os.getenv("CONFLUENCE_PAGE_LIMIT"), default=50, minimum=1),
        mcp_server_name=os.getenv("MCP_SERVER_NAME", "confluence-rag"),
        mcp_server_version=os.getenv("MCP_SERVER_VERSION", "1.0.0"),
        mcp_server_title=os.getenv("MCP_SERVER_TITLE", "Confluence RAG MCP Server"),
        mcp_instructions=os.getenv("MCP_INSTRUCTIONS", "Search the indexed Confluence spaces"),
    )


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=level or get_settings().log_level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
