import json

import httpx
import pytest

from ragchat.agent.llm import ChatCompletionsClient
from ragchat.errors import UpstreamModelError


def _client(handler) -> ChatCompletionsClient:
    return ChatCompletionsClient(
        base_url="https://models.example/v1", api_key="k", transport=httpx.MockTransport(handler)
    )


def test_complete_posts_body_and_returns_json() -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": "hi"}}]})

    payload = _client(handler).complete({"model": "m", "messages": []})

    assert seen == {"path": "/v1/chat/completions", "auth": "Bearer k", "body": {"model": "m", "messages": []}}
    assert payload["choices"][0]["message"]["content"] == "hi"


def test_error_status_carries_details() -> None:
    client = _client(lambda request: httpx.Response(429, text="rate limited"))

    with pytest.raises(UpstreamModelError) as excinfo:
        client.complete({})

    assert excinfo.value.status == 429
    assert excinfo.value.details == "rate limited"
    assert str(excinfo.value) == "Model API error (429): rate limited"


def test_stream_passes_raw_bytes_through() -> None:
    sse = b'data: {"choices":[{"delta":{"content":"a"}}]}\n\ndata: [DONE]\n\n'

    def handler(request: httpx.Request) -> httpx.Response:
        assert json.loads(request.content)["stream"] is True
        return httpx.Response(200, content=sse, headers={"content-type": "text/event-stream"})

    chunks = _client(handler).stream({"stream": True})

    assert b"".join(chunks) == sse


def test_stream_error_raises_before_iteration() -> None:
    client = _client(lambda request: httpx.Response(500, text="down"))

    with pytest.raises(UpstreamModelError, match=r"\(500\): down"):
        client.stream({"stream": True})


def test_transport_failure_is_upstream_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(UpstreamModelError, match="Model API request failed"):
        _client(handler).complete({})
