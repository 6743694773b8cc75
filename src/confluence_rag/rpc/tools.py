from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
import json
from types import MappingProxyType
from typing import Any

from confluence_rag.errors import InvalidArgumentError, MissingArgumentError, UnknownToolError
from confluence_rag.services.retrieval.embedding_client import Embedder
from confluence_rag.services.retrieval.vector_index import VectorIndex

DEFAULT_TOP_K = 5

ToolHandler = Callable[[Mapping[str, Any]], dict[str, Any]]


@dataclass(frozen=True)
class Tool:
    name: str
    description: str
    input_schema: dict[str, Any]
    handler: ToolHandler = field(compare=False)

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }


class ToolRegistry:
    """Name-keyed tools, fixed at construction."""

    def __init__(self, tools: Iterable[Tool]) -> None:
        registry: dict[str, Tool] = {}
        for tool in tools:
            if tool.name in registry:
                raise ValueError(f"duplicate tool name: {tool.name}")
            registry[tool.name] = tool
        self._tools = MappingProxyType(registry)

    def names(self) -> list[str]:
        return list(self._tools)

    def describe(self) -> list[dict[str, Any]]:
        return [tool.describe() for tool in self._tools.values()]

    def call(self, name: str, arguments: Mapping[str, Any] | None) -> dict[str, Any]:
        tool = self._tools.get(name)
        if tool is None:
            raise UnknownToolError(f"Unknown tool: {name}", {"tool": name, "available": self.names()})
        return tool.handler(arguments or {})


def text_content(payload: Any) -> dict[str, Any]:
    return {"type": "text", "text": json.dumps(payload, ensure_ascii=False)}


def _top_k(arguments: Mapping[str, Any]) -> int:
    value = arguments.get("top_k", DEFAULT_TOP_K)
    if value is None:
        return DEFAULT_TOP_K
    if isinstance(value, bool):
        raise InvalidArgumentError("'top_k' must be an integer", {"top_k": value})
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            raise InvalidArgumentError("'top_k' must be an integer", {"top_k": value}) from None
    raise InvalidArgumentError("'top_k' must be an integer", {"top_k": value})


def _as_id(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def search_tool(embedder: Embedder, index: VectorIndex) -> Tool:
    def handle(arguments: Mapping[str, Any]) -> dict[str, Any]:
        raw_query = arguments.get("query")
        query = raw_query.strip() if isinstance(raw_query, str) else ""
        if not query:
            raise MissingArgumentError("'query' is required", {"argument": "query"})

        top_k = _top_k(arguments)
        hits = index.search(embedder.embed(query), top_k)
        items = [
            {"id": hit.chunk_id, "title": hit.title, "score": hit.score, "url": hit.url}
            for hit in hits
        ]
        return text_content({"results": items})

    return Tool(
        name="search",
        description="Vector similarity search that returns chunk ids and lightweight previews.",
        input_schema={
            "type": "object",
            "properties": {
                "query": {"type": "string"},
                "top_k": {"type": "integer", "default": DEFAULT_TOP_K},
            },
            "required": ["query"],
        },
        handler=handle,
    )


def fetch_tool(index: VectorIndex) -> Tool:
    def handle(arguments: Mapping[str, Any]) -> dict[str, Any]:
        ids: list[str] = []
        single = _as_id(arguments.get("id"))
        if single is not None:
            ids.append(single)

        extra = arguments.get("ids") or []
        if not isinstance(extra, list):
            raise InvalidArgumentError("'ids' must be an array of strings", {"ids": extra})
        ids.extend(item for item in (_as_id(value) for value in extra) if item is not None)

        if not ids:
            raise MissingArgumentError("'id' is required", {"argument": "id"})

        chunks = index.fetch_chunks(list(dict.fromkeys(ids)))
        items = [
            {"id": chunk.id, "title": chunk.title, "url": chunk.url, "text": chunk.content}
            for chunk in chunks
        ]
        return text_content({"results": items})

    return Tool(
        name="fetch",
        description="Fetch full text for chunk ids.",
        input_schema={
            "type": "object",
            "properties": {
                "id": {"type": "string"},
                "ids": {"type": "array", "items": {"type": "string"}},
            },
            "required": ["id"],
        },
        handler=handle,
    )


def build_tool_registry(embedder: Embedder, index: VectorIndex) -> ToolRegistry:
    return ToolRegistry([search_tool(embedder, index), fetch_tool(index)])
