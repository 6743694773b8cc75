from __future__ import annotations

import base64
import logging
from typing import Any, Protocol

from bs4 import BeautifulSoup
import httpx

from confluence_rag.errors import ConfigurationError, DocumentSourceError
from confluence_rag.services.retrieval.types import Page

logger = logging.getLogger(__name__)

_PAGES_MARKER = "/pages/"


class DocumentSource(Protocol):
    def fetch_all_pages_in_space(self, space_key: str) -> list[Page]: ...

    def fetch_page(self, page_id: str) -> Page: ...


def extract_page_id_from_url(url: str) -> str | None:
    index = url.find(_PAGES_MARKER)
    if index < 0:
        return None
    rest = url[index + len(_PAGES_MARKER):]
    page_id = rest.split("/", 1)[0]
    return page_id or None


def html_to_text(html: str) -> str:
    if not html:
        return ""
    text = BeautifulSoup(html, "html.parser").get_text(" ")
    return " ".join(text.split())


class ConfluenceClient:
    def __init__(
        self,
        *,
        base_url: str,
        username: str = "",
        api_token: str = "",
        page_limit: int = 50,
        timeout_seconds: float = 30.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._page_limit = page_limit
        self._timeout_seconds = timeout_seconds
        self._headers = {"Accept": "application/json"}
        if username.strip() and api_token.strip():
            credentials = base64.b64encode(f"{username}:{api_token}".encode("utf-8")).decode("ascii")
            self._headers["Authorization"] = f"Basic {credentials}"

    def _absolute(self, link: str) -> str:
        if link.startswith("http"):
            return link
        if link.startswith("/"):
            return f"{self._base_url}{link}"
        return f"{self._base_url}/{link}"

    def _get_json(self, url: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        if not self._base_url:
            raise ConfigurationError("CONFLUENCE_BASE_URL is not set")

        try:
            response = httpx.get(
                url,
                params=params,
                headers=self._headers,
                timeout=self._timeout_seconds,
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as exc:
            raise DocumentSourceError(
                f"Confluence returned non-2xx: {exc.response.status_code}"
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise DocumentSourceError(f"Confluence request failed: {exc}") from exc

        if not isinstance(payload, dict):
            raise DocumentSourceError("Invalid Confluence payload: expected an object")
        return payload

    def _to_page(self, node: dict[str, Any], *, page_id: str | None = None) -> Page:
        body = node.get("body") or {}
        storage = (body.get("storage") or {}).get("value") or ""
        links = node.get("_links") or {}
        return Page(
            id=page_id or str(node.get("id", "")),
            title=str(node.get("title") or ""),
            url=self._absolute(str(links.get("webui") or "")),
            text=html_to_text(storage),
        )

    def _next_start(self, next_link: str, page_node: dict[str, Any], *, previous: int) -> int:
        start_param = httpx.URL(self._absolute(next_link)).params.get("start")
        try:
            if start_param is not None:
                start = int(start_param)
            else:
                start = int(page_node.get("start", previous)) + int(
                    page_node.get("limit", self._page_limit)
                )
        except (TypeError, ValueError) as exc:
            raise DocumentSourceError(f"Invalid pagination link: {next_link}") from exc

        if start <= previous:
            raise DocumentSourceError(f"Pagination did not advance past start={previous}: {next_link}")
        return start

    def fetch_all_pages_in_space(self, space_key: str) -> list[Page]:
        if not space_key or not space_key.strip():
            raise ValueError("space_key must not be empty")

        pages: list[Page] = []
        next_start: int | None = 0

        while next_start is not None:
            payload = self._get_json(
                f"{self._base_url}/rest/api/space/{space_key}/content",
                params={
                    "type": "page",
                    "start": next_start,
                    "limit": self._page_limit,
                    "expand": "body.storage,version",
                },
            )
            page_node = payload.get("page") or {}
            results = page_node.get("results")
            if isinstance(results, list):
                pages.extend(self._to_page(item) for item in results if isinstance(item, dict))

            next_link = (page_node.get("_links") or {}).get("next")
            if not next_link:
                next_start = None
                continue

            next_start = self._next_start(str(next_link), page_node, previous=next_start)

        logger.debug("fetched %d pages from space %s", len(pages), space_key)
        return pages

    def fetch_page(self, page_id: str) -> Page:
        payload = self._get_json(
            f"{self._base_url}/rest/api/content/{page_id}",
            params={"expand": "body.storage,version"},
        )
        return self._to_page(payload, page_id=page_id)
