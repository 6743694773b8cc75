from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from confluence_rag.config import get_settings
from confluence_rag.db import Base, get_engine
from confluence_rag.main import app, get_dispatcher, get_orchestrator, get_vector_index

_CACHED_PROVIDERS = (get_settings, get_engine, get_vector_index, get_orchestrator, get_dispatcher)


@pytest.fixture(autouse=True)
def reset_api_caches() -> Iterator[None]:
    for provider in _CACHED_PROVIDERS:
        provider.cache_clear()
    yield
    app.dependency_overrides.clear()
    for provider in _CACHED_PROVIDERS:
        provider.cache_clear()


@pytest.fixture
def index_path(tmp_path: Path) -> Path:
    return tmp_path / "index" / "vectors.db"


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch, tmp_path: Path, index_path: Path) -> Iterator[TestClient]:
    sqlite_db_path = tmp_path / "api-tests.db"
    monkeypatch.setenv("API_DATABASE_URL", f"sqlite+pysqlite:///{sqlite_db_path}")
    monkeypatch.setenv("API_DB_ECHO", "false")
    monkeypatch.setenv("RAG_INDEX_PATH", str(index_path))

    engine = get_engine()
    Base.metadata.create_all(bind=engine)

    with TestClient(app) as test_client:
        yield test_client

    engine.dispose()
