from pathlib import Path

from fastapi.testclient import TestClient
import httpx
import pytest

from confluence_rag import llm
from confluence_rag.errors import ChatClientError
from confluence_rag.llm import ChatResult, OpenAICompatibleChatClient
from confluence_rag.main import app, get_chat_client, get_embedder, get_vector_index
from confluence_rag.services.retrieval import SqliteVectorIndex, build_chunks

from fakes import KeywordEmbedder, make_page


class FakeChatClient:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []

    def generate_answer(self, *, question: str, context: str) -> ChatResult:
        self.calls.append((question, context))
        return ChatResult(answer="mocked answer", model="fake-model")


class FailingChatClient:
    def generate_answer(self, *, question: str, context: str) -> ChatResult:
        raise ChatClientError("simulated failure")


def _seed_index(index_path: Path) -> None:
    embedder = KeywordEmbedder()
    index = SqliteVectorIndex(index_path)
    for page in (
        make_page("r", "robotics automation cell", title="Robots"),
        make_page("f", "finance accounting close", title="Money"),
    ):
        index.add_all(build_chunks(page, embedder, chunk_size=800, chunk_overlap=120))

    app.dependency_overrides[get_embedder] = KeywordEmbedder
    app.dependency_overrides[get_vector_index] = lambda: SqliteVectorIndex(index_path)


def test_ask_returns_answer_and_sources(client: TestClient, index_path: Path) -> None:
    _seed_index(index_path)
    fake_client = FakeChatClient()
    app.dependency_overrides[get_chat_client] = lambda: fake_client

    response = client.post("/ask", json={"q": "How is automation planned?", "k": 1})

    assert response.status_code == 200
    payload = response.json()
    assert payload["answer"] == "mocked answer"
    assert payload["model"] == "fake-model"
    assert [source["chunkId"] for source in payload["sources"]] == ["r_0"]

    [(question, context)] = fake_client.calls
    assert question == "How is automation planned?"
    assert "Title: Robots" in context
    assert "URL: https://wiki.example.com/spaces/DEV/pages/r" in context


def test_ask_chat_failure_is_bad_gateway(client: TestClient, index_path: Path) -> None:
    _seed_index(index_path)
    app.dependency_overrides[get_chat_client] = FailingChatClient

    response = client.post("/ask", json={"q": "anything"})

    assert response.status_code == 502
    assert "simulated failure" in response.json()["detail"]


@pytest.mark.parametrize("body", [{"q": ""}, {"q": "x", "k": 0}, {"q": "x", "k": 51}])
def test_ask_validates_request(client: TestClient, index_path: Path, body: dict[str, object]) -> None:
    _seed_index(index_path)
    app.dependency_overrides[get_chat_client] = FakeChatClient

    response = client.post("/ask", json=body)

    assert response.status_code == 422


def test_ask_whitespace_question_is_bad_request(client: TestClient, index_path: Path) -> None:
    _seed_index(index_path)
    app.dependency_overrides[get_chat_client] = FakeChatClient

    response = client.post("/ask", json={"q": "   "})

    assert response.status_code == 400


def test_chat_client_posts_completion_request(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, object] = {}

    def fake_post(url: str, **kwargs: object) -> httpx.Response:
        captured["url"] = url
        captured.update(kwargs)
        return httpx.Response(
            200,
            json={"choices": [{"message": {"content": "  grounded answer  "}}]},
            request=httpx.Request("POST", url),
        )

    monkeypatch.setattr(llm.httpx, "post", fake_post)
    client = OpenAICompatibleChatClient(base_url="http://chat.local/v1/", model="m", api_key="k")

    result = client.generate_answer(question="q", context="c")

    assert result == ChatResult(answer="grounded answer", model="m")
    assert captured["url"] == "http://chat.local/v1/chat/completions"
    assert captured["headers"] == {"Authorization": "Bearer k"}
    assert captured["json"]["temperature"] == 0


def test_chat_client_rejects_empty_choices(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        llm.httpx,
        "post",
        lambda url, **kwargs: httpx.Response(200, json={"choices": []}, request=httpx.Request("POST", url)),
    )
    client = OpenAICompatibleChatClient(base_url="http://chat.local/v1", model="m")

    with pytest.raises(ChatClientError, match="missing choices"):
        client.generate_answer(question="q", context="c")
