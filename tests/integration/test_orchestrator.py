import threading
from datetime import datetime, timezone
from typing import Any

import pytest

from ragchat.agent.orchestrator import ChatOrchestrator, ChatTurn
from ragchat.agent.registry import ToolRegistry, ToolSpec
from ragchat.agent.tools import WebSearchInput
from ragchat.config import AgentConfig
from ragchat.errors import InvalidArgument, ToolLoopExceeded, UpstreamModelError
from ragchat.obs.tracing import TraceStore
from ragchat.types import Message


def _reply(content: str | None = None, tool_calls: list[dict[str, Any]] | None = None) -> dict:
    message: dict[str, Any] = {"role": "assistant", "content": content}
    if tool_calls:
        message["tool_calls"] = tool_calls
    return {"id": "cmpl", "choices": [{"index": 0, "message": message}]}


def _search_call(call_id: str, query: str) -> dict[str, Any]:
    return {
        "id": call_id,
        "type": "function",
        "function": {"name": "web_search", "arguments": f'{{"query": "{query}"}}'},
    }


class ScriptedModel:
    """Returns queued completions and records every request body."""

    def __init__(self, replies: list[dict[str, Any]], chunks: list[bytes] | None = None) -> None:
        self.replies = list(replies)
        self.chunks = chunks or [b'data: {"choices":[{"delta":{"content":"Hi"}}]}\n\n', b"data: [DONE]\n\n"]
        self.complete_bodies: list[dict[str, Any]] = []
        self.stream_bodies: list[dict[str, Any]] = []

    def complete(self, body: dict[str, Any]) -> dict[str, Any]:
        self.complete_bodies.append(body)
        if len(self.replies) == 1:
            return self.replies[0]
        return self.replies.pop(0)

    def stream(self, body: dict[str, Any]):
        self.stream_bodies.append(body)
        return iter(self.chunks)


def _orchestrator(model: ScriptedModel, searches: list[str] | None = None) -> ChatOrchestrator:
    registry = ToolRegistry()

    def web_search(input_data: WebSearchInput) -> str:
        if searches is not None:
            searches.append(input_data.query)
        return f"1. Result for {input_data.query}\n   https://example.com\n   snippet"

    registry.register(
        ToolSpec(
            name="web_search",
            description="Search the web.",
            args_schema=WebSearchInput,
            handler=web_search,
            label="Web search",
        )
    )
    return ChatOrchestrator(
        llm=model,
        tool_registry=registry,
        trace_store=TraceStore(),
        config=AgentConfig(),
        clock=lambda: datetime(2025, 3, 14, 9, 30, tzinfo=timezone.utc),
    )


def _user(text: str) -> list[Message]:
    return [Message(role="user", content=text)]


def test_plain_answer_streams_after_single_detection_call() -> None:
    model = ScriptedModel([_reply("Hello there")])
    orchestrator = _orchestrator(model)

    result = orchestrator.run(ChatTurn(messages=_user("Hi"), stream=True))

    assert b"".join(result.stream) == b"".join(model.chunks)
    assert len(model.complete_bodies) == 1
    assert len(model.stream_bodies) == 1
    streamed = model.stream_bodies[0]
    assert streamed["stream"] is True
    assert "tools" not in streamed and "tool_choice" not in streamed
    assert streamed["messages"] == [{"role": "user", "content": "Hi"}]
    assert model.complete_bodies[0]["messages"][0]["role"] == "system"
    assert orchestrator.trace_store.get(result.trace_id).streamed is True


def test_plain_answer_without_streaming_returns_payload_unchanged() -> None:
    model = ScriptedModel([_reply("Hello there")])

    result = _orchestrator(model).run(ChatTurn(messages=_user("Hi"), stream=False))

    assert result.stream is None
    assert result.payload["choices"][0]["message"]["content"] == "Hello there"
    assert result.tools_used == []
    assert model.stream_bodies == []


def test_tool_round_appends_results_in_order_and_marks_answer() -> None:
    searches: list[str] = []
    model = ScriptedModel(
        [
            _reply(None, [_search_call("call_1", "news today"), _search_call("call_2", "weather")]),
            _reply("Here is what I found."),
        ]
    )
    orchestrator = _orchestrator(model, searches)

    result = orchestrator.run(ChatTurn(messages=_user("What are the latest news?"), stream=True))

    assert result.stream is None
    assert searches == ["news today", "weather"]
    assert result.tools_used == ["web_search", "web_search"]
    assert result.iterations == 1
    content = result.payload["choices"][0]["message"]["content"]
    assert content == "🔍 *Web search performed*\n\nHere is what I found."

    second = model.complete_bodies[1]["messages"]
    assert [message["role"] for message in second[-3:]] == ["assistant", "tool", "tool"]
    assert second[-3]["tool_calls"][0]["id"] == "call_1"
    assert [message["tool_call_id"] for message in second[-2:]] == ["call_1", "call_2"]
    assert second[-2]["content"].startswith("1. Result for news today")
    assert model.stream_bodies == []


def test_empty_final_content_gets_no_marker() -> None:
    model = ScriptedModel([_reply(None, [_search_call("c1", "x")]), _reply("")])

    result = _orchestrator(model).run(ChatTurn(messages=_user("search"), stream=False))

    assert result.payload["choices"][0]["message"]["content"] == ""


def test_unknown_tool_result_is_fed_back_to_model() -> None:
    bad_call = {"id": "c9", "type": "function", "function": {"name": "calculator", "arguments": "{}"}}
    model = ScriptedModel([_reply(None, [bad_call]), _reply("Sorry.")])

    _orchestrator(model).run(ChatTurn(messages=_user("2+2"), stream=False))

    tool_message = model.complete_bodies[1]["messages"][-1]
    assert tool_message == {"role": "tool", "content": "Unsupported tool: calculator", "tool_call_id": "c9"}


def test_runaway_tool_loop_stops_after_forced_round() -> None:
    model = ScriptedModel([_reply(None, [_search_call("loop", "again")])])
    searches: list[str] = []
    orchestrator = _orchestrator(model, searches)

    with pytest.raises(ToolLoopExceeded, match=r"Maximum tool iterations reached \(10\)"):
        orchestrator.run(ChatTurn(messages=_user("loop forever"), stream=True))

    assert len(model.complete_bodies) == 11
    assert len(searches) == 10
    assert all("tools" in body for body in model.complete_bodies[:10])
    assert "tools" not in model.complete_bodies[10]
    record = orchestrator.trace_store.list_recent()[-1]
    assert record.outcome == "max_iterations_exceeded"
    assert record.error is not None


def test_tool_choice_hint_depends_on_model() -> None:
    auto = ScriptedModel([_reply("ok")])
    silent = ScriptedModel([_reply("ok")])

    _orchestrator(auto).run(
        ChatTurn(messages=_user("Hi"), model="meta-llama/Llama-3.3-70B-Instruct-fast", stream=False)
    )
    _orchestrator(silent).run(
        ChatTurn(messages=_user("Hi"), model="google/gemma-3-27b-it-fast", stream=False)
    )

    assert auto.complete_bodies[0]["tool_choice"] == "auto"
    assert auto.complete_bodies[0]["tools"][0]["function"]["name"] == "web_search"
    assert "tool_choice" not in silent.complete_bodies[0]
    assert silent.complete_bodies[0]["tools"]


def test_tools_disabled_sends_no_tools() -> None:
    model = ScriptedModel([_reply("ok")])

    _orchestrator(model).run(ChatTurn(messages=_user("Hi"), stream=False, enable_tools=False))

    body = model.complete_bodies[0]
    assert "tools" not in body and "tool_choice" not in body
    assert "web_search" not in body["messages"][0]["content"]


def test_request_defaults_and_system_prompt() -> None:
    model = ScriptedModel([_reply("ok")])

    _orchestrator(model).run(
        ChatTurn(messages=_user("Hi"), stream=False, system_prompt="You are a pirate.")
    )

    body = model.complete_bodies[0]
    assert body["model"] == "meta-llama/Llama-3.3-70B-Instruct-fast"
    assert body["max_tokens"] == 2048
    assert body["temperature"] == 0.7
    assert body["stream"] is False
    system = body["messages"][0]
    assert system["role"] == "system"
    assert system["content"].startswith("You are a pirate.\n\nCurrent date and time: Friday, March 14, 2025, 09:30 UTC")
    assert "web_search" in system["content"]


def test_existing_system_message_is_kept_as_is() -> None:
    model = ScriptedModel([_reply("ok")])
    history = [Message(role="system", content="Custom rules."), Message(role="user", content="Hi")]

    _orchestrator(model).run(ChatTurn(messages=history, stream=False))

    messages = model.complete_bodies[0]["messages"]
    assert [message["role"] for message in messages] == ["system", "user"]
    assert messages[0]["content"] == "Custom rules."


def test_orphan_tool_message_rejected_before_model_call() -> None:
    model = ScriptedModel([_reply("ok")])
    history = [Message(role="user", content="Hi"), Message(role="tool", tool_call_id="nope", content="x")]

    with pytest.raises(InvalidArgument, match="unknown tool_call_id"):
        _orchestrator(model).run(ChatTurn(messages=history, stream=False))

    assert model.complete_bodies == []


def test_empty_choices_is_upstream_error() -> None:
    model = ScriptedModel([{"choices": []}])

    with pytest.raises(UpstreamModelError, match="No response from model"):
        _orchestrator(model).run(ChatTurn(messages=_user("Hi"), stream=False))


def test_streamed_history_keeps_caller_system_message() -> None:
    model = ScriptedModel([_reply("ok")])
    history = [Message(role="system", content="Custom rules."), Message(role="user", content="Hi")]

    _orchestrator(model).run(ChatTurn(messages=history, stream=True))

    assert model.stream_bodies[0]["messages"] == [
        {"role": "system", "content": "Custom rules."},
        {"role": "user", "content": "Hi"},
    ]


def test_concurrent_turns_keep_their_own_tool_traces() -> None:
    registry = ToolRegistry()
    both_running = threading.Barrier(2, timeout=5)

    def web_search(input_data: WebSearchInput) -> str:
        both_running.wait()
        return f"result for {input_data.query}"

    registry.register(
        ToolSpec(name="web_search", description="Search.", args_schema=WebSearchInput, handler=web_search)
    )
    traces = TraceStore()
    results = {}

    def turn(query: str) -> None:
        model = ScriptedModel([_reply(None, [_search_call(f"call-{query}", query)]), _reply("done")])
        orchestrator = ChatOrchestrator(llm=model, tool_registry=registry, trace_store=traces)
        results[query] = orchestrator.run(ChatTurn(messages=_user(query), stream=False))

    threads = [threading.Thread(target=turn, args=(query,)) for query in ("alpha", "beta")]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    for query, result in results.items():
        record = traces.get(result.trace_id)
        assert [trace.input_payload for trace in record.tool_traces] == [{"query": query}]
    assert len(results) == 2
