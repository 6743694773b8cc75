from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import httpx

from confluence_rag.errors import ChatClientError

SYSTEM_PROMPT = (
    "You are an internal knowledge assistant. Answer only from the provided excerpts. "
    "If they are insufficient, say you don't know. End the answer with the list of source URLs."
)


@dataclass(frozen=True)
class ChatResult:
    answer: str
    model: str


class ChatClient(Protocol):
    def generate_answer(self, *, question: str, context: str) -> ChatResult: ...


class OpenAICompatibleChatClient:
    def __init__(
        self,
        *,
        base_url: str,
        model: str,
        api_key: str = "",
        timeout_seconds: float = 30.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._model = model
        self._api_key = api_key
        self._timeout_seconds = timeout_seconds

    def generate_answer(self, *, question: str, context: str) -> ChatResult:
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
        try:
            response = httpx.post(
                f"{self._base_url}/chat/completions",
                json={
                    "model": self._model,
                    "messages": [
                        {"role": "system", "content": SYSTEM_PROMPT},
                        {
                            "role": "user",
                            "content": f"Question:\n{question}\n\nExcerpts:\n{context}",
                        },
                    ],
                    "temperature": 0,
                },
                headers=headers,
                timeout=self._timeout_seconds,
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise ChatClientError(str(exc)) from exc

        choices = payload.get("choices") if isinstance(payload, dict) else None
        if not isinstance(choices, list) or not choices:
            raise ChatClientError("Invalid chat completion payload: missing choices")

        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str) or not content.strip():
            raise ChatClientError("Invalid chat completion payload: missing assistant content")

        return ChatResult(answer=content.strip(), model=self._model)
