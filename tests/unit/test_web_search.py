import httpx

from ragchat.agent.registry import ToolRegistry
from ragchat.agent.tools import BraveSearchClient, register_builtin_tools
from ragchat.types import FunctionCall, ToolCall


def _client(handler, api_key: str = "brave-key") -> BraveSearchClient:
    return BraveSearchClient(api_key=api_key, transport=httpx.MockTransport(handler))


def test_results_formatted_as_numbered_list() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["params"] = dict(request.url.params)
        seen["token"] = request.headers["X-Subscription-Token"]
        results = [
            {"title": f"Title {i}", "url": f"https://example.com/{i}", "description": f"Snippet {i}"}
            for i in range(1, 8)
        ]
        return httpx.Response(200, json={"web": {"results": results}})

    output = _client(handler).search("berlin weather")

    assert seen["params"]["q"] == "berlin weather"
    assert seen["params"]["count"] == "5"
    assert seen["token"] == "brave-key"
    assert output.startswith("1. Title 1\n   https://example.com/1\n   Snippet 1")
    assert "5. Title 5" in output
    assert "6. Title 6" not in output
    assert output.count("\n\n") == 4


def test_empty_results() -> None:
    output = _client(lambda request: httpx.Response(200, json={"web": {"results": []}})).search("x")

    assert output == "No search results found."


def test_failures_become_text() -> None:
    def unavailable(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    def unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    assert _client(unavailable).search("x") == "Search error: 503 Service Unavailable"
    assert _client(unreachable).search("x").startswith("Search error:")
    assert _client(unavailable, api_key="").search("x") == "Error: SEARCH_API_KEY not configured"


def test_web_search_registered_with_label() -> None:
    registry = ToolRegistry()
    client = _client(
        lambda request: httpx.Response(
            200, json={"web": {"results": [{"title": "T", "url": "u", "description": "d"}]}}
        )
    )
    register_builtin_tools(registry, client)

    spec = registry.get("web_search")
    output = registry.execute(
        ToolCall(id="c1", function=FunctionCall(name="web_search", arguments='{"query": "news"}'))
    )

    assert spec is not None and spec.label == "Web search"
    assert output == "1. T\n   u\n   d"
