import json
from pathlib import Path

import pytest

from confluence_rag.errors import InvalidArgumentError, MissingArgumentError, UnknownToolError
from confluence_rag.rpc.tools import Tool, ToolRegistry, build_tool_registry, text_content
from confluence_rag.services.retrieval.chunker import build_chunks
from confluence_rag.services.retrieval.vector_index import SqliteVectorIndex

from fakes import KeywordEmbedder, make_page


@pytest.fixture
def registry(tmp_path: Path) -> ToolRegistry:
    embedder = KeywordEmbedder()
    index = SqliteVectorIndex(tmp_path / "vectors.db")
    pages = [
        make_page("robot", "robotics automation assembly line", title="Robots"),
        make_page("money", "finance forecast and accounting close", title="Finance"),
    ]
    index.add_all(
        [
            chunk
            for page in pages
            for chunk in build_chunks(page, embedder, chunk_size=800, chunk_overlap=120)
        ]
    )
    return build_tool_registry(embedder, index)


def _payload(output: dict[str, object]) -> dict[str, object]:
    assert output["type"] == "text"
    return json.loads(output["text"])


def test_describe_lists_tools_in_registration_order(registry: ToolRegistry) -> None:
    tools = registry.describe()

    assert [tool["name"] for tool in tools] == ["search", "fetch"]
    search, fetch = tools
    assert search["inputSchema"]["required"] == ["query"]
    assert search["inputSchema"]["properties"]["top_k"] == {"type": "integer", "default": 5}
    assert fetch["inputSchema"]["required"] == ["id"]
    assert fetch["inputSchema"]["properties"]["ids"] == {"type": "array", "items": {"type": "string"}}


def test_registry_rejects_duplicate_names() -> None:
    tool = Tool(name="echo", description="", input_schema={}, handler=lambda arguments: {})

    with pytest.raises(ValueError, match="duplicate"):
        ToolRegistry([tool, tool])


def test_unknown_tool_is_client_visible(registry: ToolRegistry) -> None:
    with pytest.raises(UnknownToolError, match="Unknown tool: summarize") as exc_info:
        registry.call("summarize", {})

    assert exc_info.value.details["available"] == ["search", "fetch"]


def test_search_returns_compact_ranked_items(registry: ToolRegistry) -> None:
    payload = _payload(registry.call("search", {"query": "robotics automation", "top_k": 1}))

    [item] = payload["results"]
    assert item["id"] == "robot_0"
    assert item["title"] == "Robots"
    assert set(item) == {"id", "title", "score", "url"}


def test_search_defaults_top_k(registry: ToolRegistry) -> None:
    payload = _payload(registry.call("search", {"query": "anything"}))

    assert len(payload["results"]) == 2


@pytest.mark.parametrize("arguments", [{}, {"query": "   "}, {"query": None}, {"query": 3}])
def test_search_requires_query(registry: ToolRegistry, arguments: dict[str, object]) -> None:
    with pytest.raises(MissingArgumentError, match="'query' is required"):
        registry.call("search", arguments)


@pytest.mark.parametrize("top_k", ["many", "--3", "²", 1.5, True, 0, -1])
def test_search_rejects_bad_top_k(registry: ToolRegistry, top_k: object) -> None:
    with pytest.raises(InvalidArgumentError):
        registry.call("search", {"query": "automation", "top_k": top_k})


def test_fetch_merges_id_and_ids(registry: ToolRegistry) -> None:
    payload = _payload(
        registry.call("fetch", {"id": "robot_0", "ids": ["money_0", "missing_0", "robot_0"]})
    )

    assert [item["id"] for item in payload["results"]] == ["robot_0", "money_0"]
    assert payload["results"][0] == {
        "id": "robot_0",
        "title": "Robots",
        "url": "https://wiki.example.com/spaces/DEV/pages/robot",
        "text": "robotics automation assembly line",
    }


def test_fetch_requires_an_id(registry: ToolRegistry) -> None:
    with pytest.raises(MissingArgumentError, match="'id' is required"):
        registry.call("fetch", {"ids": []})


def test_fetch_rejects_non_list_ids(registry: ToolRegistry) -> None:
    with pytest.raises(InvalidArgumentError):
        registry.call("fetch", {"id": "robot_0", "ids": "money_0"})


def test_text_content_keeps_unicode() -> None:
    assert text_content({"title": "部署"}) == {"type": "text", "text": '{"title": "部署"}'}


def test_search_accepts_numeric_string_top_k(registry: ToolRegistry) -> None:
    payload = _payload(registry.call("search", {"query": "automation", "top_k": "1"}))

    assert len(payload["results"]) == 1
