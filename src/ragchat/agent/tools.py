"""Built-in tool implementations for the chat assistant."""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger
from pydantic import BaseModel, Field

from ragchat.agent.registry import ToolRegistry, ToolSpec

MAX_SEARCH_RESULTS = 5


class WebSearchInput(BaseModel):
    query: str = Field(min_length=1, description="The search query, in any language")


class BraveSearchClient:
    """Minimal Brave web search client.

    ``search`` never raises; failures are reported as readable text because
    tool output is conversational content for the model.
    """

    def __init__(
        self,
        *,
        api_key: str,
        url: str = "https://api.search.brave.com/res/v1/web/search",
        search_lang: str = "en",
        ui_lang: str = "en-US",
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.url = url
        self.search_lang = search_lang
        self.ui_lang = ui_lang
        self._client = httpx.Client(timeout=timeout, transport=transport)

    def search(self, query: str) -> str:
        if not self.api_key:
            return "Error: SEARCH_API_KEY not configured"

        try:
            response = self._client.get(
                self.url,
                params={
                    "q": query,
                    "count": str(MAX_SEARCH_RESULTS),
                    "search_lang": self.search_lang,
                    "ui_lang": self.ui_lang,
                },
                headers={"Accept": "application/json", "X-Subscription-Token": self.api_key},
            )
            if not response.is_success:
                return f"Search error: {response.status_code} {response.reason_phrase}"
            data: dict[str, Any] = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Web search for {!r} failed: {}", query, exc)
            return f"Search error: {exc}"

        results = (data.get("web") or {}).get("results") or []
        if not results:
            return "No search results found."
        return format_results(results[:MAX_SEARCH_RESULTS])

    def close(self) -> None:
        self._client.close()


def format_results(results: list[dict[str, Any]]) -> str:
    return "\n\n".join(
        f"{index}. {item.get('title', '')}\n   {item.get('url', '')}\n   {item.get('description', '')}"
        for index, item in enumerate(results, start=1)
    )


def register_builtin_tools(registry: ToolRegistry, search_client: BraveSearchClient) -> None:
    """Register the default tool set used by the chat orchestrator.

    Tools:
    - `web_search`: current information from the web via Brave Search.
    """

    def _web_search(input_data: WebSearchInput) -> str:
        return search_client.search(input_data.query)

    registry.register(
        ToolSpec(
            name="web_search",
            description=(
                "Search the internet for current information. Use this for recent news, "
                "facts, or when the user explicitly asks for a web search."
            ),
            args_schema=WebSearchInput,
            handler=_web_search,
            label="Web search",
            tags=["search", "web"],
        )
    )
