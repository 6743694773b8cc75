from __future__ import annotations

from enum import Enum
import math
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from confluence_rag.errors import ConfigurationError, EmbeddingBackendError

if TYPE_CHECKING:
    from confluence_rag.config import Settings


class Embedder(Protocol):
    def embed(self, text: str) -> list[float]: ...


class EmbeddingBackend(str, Enum):
    OLLAMA = "ollama"
    OPENAI = "openai"


DEFAULT_EMBEDDING_BACKEND = EmbeddingBackend.OLLAMA


def normalize(vector: list[float]) -> list[float]:
    """Scale to unit length so the index can rank by dot product."""
    norm = math.sqrt(sum(value * value for value in vector))
    if norm > 0:
        return [value / norm for value in vector]
    return vector


def _parse_vector(raw: Any) -> list[float]:
    if not isinstance(raw, list) or not raw:
        raise EmbeddingBackendError("Invalid embeddings payload: missing embedding vector")
    try:
        return [float(value) for value in raw]
    except (TypeError, ValueError) as exc:
        raise EmbeddingBackendError(f"Invalid embeddings payload: {exc}") from exc


class OllamaEmbedder:
    def __init__(self, *, base_url: str, model: str, timeout_seconds: float = 30.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._timeout_seconds = timeout_seconds

    def embed(self, text: str) -> list[float]:
        try:
            response = httpx.post(
                f"{self._base_url}/api/embeddings",
                json={"model": self._model, "prompt": text},
                timeout=self._timeout_seconds,
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise EmbeddingBackendError(f"Ollama error: {exc}") from exc

        embedding = payload.get("embedding") if isinstance(payload, dict) else None
        return normalize(_parse_vector(embedding))


class OpenAIEmbedder:
    def __init__(
        self,
        *,
        api_key: str,
        model: str,
        base_url: str = "https://api.openai.com/v1",
        timeout_seconds: float = 30.0,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds

    def embed(self, text: str) -> list[float]:
        if not self._api_key or not self._api_key.strip():
            raise ConfigurationError("OPENAI_API_KEY is not set")

        try:
            response = httpx.post(
                f"{self._base_url}/embeddings",
                json={"model": self._model, "input": text},
                headers={"Authorization": f"Bearer {self._api_key}"},
                timeout=self._timeout_seconds,
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise EmbeddingBackendError(f"OpenAI error: {exc}") from exc

        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list) or not data or not isinstance(data[0], dict):
            raise EmbeddingBackendError("Invalid embeddings payload: missing data")
        return normalize(_parse_vector(data[0].get("embedding")))


def build_embedder(settings: Settings) -> Embedder:
    try:
        backend = EmbeddingBackend(settings.embedding_backend or DEFAULT_EMBEDDING_BACKEND.value)
    except ValueError as exc:
        raise ConfigurationError(
            f"Unsupported EMBEDDING_BACKEND: {settings.embedding_backend!r} "
            f"(supported: {sorted(item.value for item in EmbeddingBackend)})"
        ) from exc

    if backend is EmbeddingBackend.OPENAI:
        return OpenAIEmbedder(
            api_key=settings.openai_api_key,
            model=settings.openai_embed_model,
            base_url=settings.openai_base_url,
            timeout_seconds=settings.http_timeout_seconds,
        )
    return OllamaEmbedder(
        base_url=settings.ollama_base_url,
        model=settings.ollama_embed_model,
        timeout_seconds=settings.http_timeout_seconds,
    )
