"""Tool-calling chat orchestrator.

One chat turn is driven as an explicit state machine::

    REQUEST_MODEL --tool_calls--> EXECUTE_TOOLS --> REQUEST_MODEL
    REQUEST_MODEL --no tool_calls, streaming, first round--> STREAM_FINAL
    REQUEST_MODEL --no tool_calls--> FINAL
    REQUEST_MODEL --tool_calls after the forced round--> MAX_ITERATIONS_EXCEEDED

Every EXECUTE_TOOLS step increments the iteration count, and tool_calls are
only executed while ``iterations < max_iterations``, so the loop makes at
most ``max_iterations + 1`` model calls before reaching a terminal state.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from loguru import logger
from pydantic import ValidationError

from ragchat.agent.capabilities import ToolChoiceMode, tool_choice_hint, tool_choice_mode
from ragchat.agent.llm import ChatModel
from ragchat.agent.registry import ToolRegistry
from ragchat.config import AgentConfig
from ragchat.errors import InvalidArgument, RagChatError, ToolLoopExceeded, UpstreamModelError
from ragchat.obs.tracing import Timer, TraceRecord, TraceStore
from ragchat.types import Message, ToolCall, ToolTrace

_TOOL_INSTRUCTIONS = """
You have access to a web search function.

IMPORTANT: When the user asks for current information (news, weather, current events, prices, etc.) or explicitly asks for an internet search, you MUST use the web_search function.

Examples of when to use web_search:
- "What are the latest news?"
- "Search the internet for..."
- "How much does ... cost right now?"
- "What is the weather in ...?"
- Any question about events after your knowledge cutoff
""".strip()


class LoopState(str, Enum):
    REQUEST_MODEL = "request_model"
    EXECUTE_TOOLS = "execute_tools"
    STREAM_FINAL = "stream_final"
    FINAL = "final"
    MAX_ITERATIONS_EXCEEDED = "max_iterations_exceeded"


_ACTIVE_STATES = (LoopState.REQUEST_MODEL, LoopState.EXECUTE_TOOLS)


@dataclass(slots=True)
class ChatTurn:
    """One inbound chat request."""

    messages: list[Message]
    model: str | None = None
    stream: bool = True
    enable_tools: bool = True
    system_prompt: str | None = None


@dataclass(slots=True)
class ChatResult:
    """Either a raw SSE byte stream or a single completion payload."""

    stream: Iterator[bytes] | None = None
    payload: dict[str, Any] | None = None
    tools_used: list[str] = field(default_factory=list)
    iterations: int = 0
    trace_id: str | None = None


@dataclass(slots=True)
class _Run:
    model: str
    mode: ToolChoiceMode
    use_tools: bool
    stream: bool
    original: list[Message]
    messages: list[Message]
    iterations: int = 0
    model_calls: int = 0
    tools_used: list[str] = field(default_factory=list)
    tool_traces: list[ToolTrace] = field(default_factory=list)
    response: dict[str, Any] = field(default_factory=dict)
    assistant: dict[str, Any] = field(default_factory=dict)


class ChatOrchestrator:
    """Drives repeated model calls, runs tools, and decides how to answer."""

    def __init__(
        self,
        *,
        llm: ChatModel,
        tool_registry: ToolRegistry,
        trace_store: TraceStore | None = None,
        config: AgentConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.llm = llm
        self.tool_registry = tool_registry
        self.trace_store = trace_store or TraceStore()
        self.config = config or AgentConfig()
        self._clock = clock or self._default_clock

    def run(self, turn: ChatTurn) -> ChatResult:
        """Run one chat turn to a terminal state.

        Raises:
            InvalidArgument: the history breaks tool-message ordering.
            UpstreamModelError: the model provider failed.
            ToolLoopExceeded: the model kept calling tools after the forced round.
        """

        validate_history(turn.messages)
        model = turn.model or self.config.default_model
        mode = tool_choice_mode(model)
        use_tools = turn.enable_tools
        run = _Run(
            model=model,
            mode=mode,
            use_tools=use_tools,
            stream=turn.stream,
            original=list(turn.messages),
            messages=self.prepare_messages(turn.messages, turn.system_prompt, use_tools),
        )
        logger.info(
            "Chat request: model={} messages={} stream={} tools={} tool_choice={}",
            model,
            len(turn.messages),
            turn.stream,
            use_tools,
            mode.value,
        )

        state = LoopState.REQUEST_MODEL
        try:
            with logger.contextualize(chat_model=model), Timer() as timer:
                while state in _ACTIVE_STATES:
                    if state is LoopState.REQUEST_MODEL:
                        state = self._request_model(run)
                    else:
                        state = self._execute_tools(run)
                result = self._finish(run, state)
        except RagChatError as exc:
            self._record(run, state, timer.elapsed_ms, error=str(exc))
            raise

        result.trace_id = self._record(run, state, timer.elapsed_ms).trace_id
        return result

    def prepare_messages(
        self, messages: list[Message], system_prompt: str | None, use_tools: bool
    ) -> list[Message]:
        """Copy the history, prepending a system message when none is present."""

        prepared = list(messages)
        if any(message.role == "system" for message in prepared):
            return prepared
        content = build_system_prompt(
            system_prompt or self.config.default_system_prompt,
            format_datetime(self._clock()),
            use_tools=use_tools,
        )
        return [Message(role="system", content=content), *prepared]

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def _request_model(self, run: _Run) -> LoopState:
        attach_tools = run.use_tools and run.iterations < self.config.max_iterations
        logger.debug("Model request (iteration {}, tools={})", run.iterations, attach_tools)
        run.response = self.llm.complete(
            self.request_body(run.model, run.messages, run.mode, attach_tools=attach_tools)
        )
        run.model_calls += 1
        run.assistant = _first_message(run.response)

        if run.assistant.get("tool_calls"):
            if run.iterations < self.config.max_iterations:
                return LoopState.EXECUTE_TOOLS
            return LoopState.MAX_ITERATIONS_EXCEEDED
        if run.stream and run.iterations == 0:
            return LoopState.STREAM_FINAL
        return LoopState.FINAL

    def _execute_tools(self, run: _Run) -> LoopState:
        try:
            tool_calls = [ToolCall.model_validate(raw) for raw in run.assistant["tool_calls"]]
        except ValidationError as exc:
            raise UpstreamModelError(f"Model returned malformed tool calls: {exc}") from exc

        logger.info("Tool calls detected: {}", len(tool_calls))
        run.messages.append(
            Message(role="assistant", content=run.assistant.get("content"), tool_calls=tool_calls)
        )
        for tool_call in tool_calls:
            run.tools_used.append(tool_call.name)
            result = self.tool_registry.execute(tool_call, observer=run.tool_traces.append)
            run.messages.append(Message(role="tool", tool_call_id=tool_call.id, content=result))

        run.iterations += 1
        return LoopState.REQUEST_MODEL

    def _finish(self, run: _Run, state: LoopState) -> ChatResult:
        if state is LoopState.MAX_ITERATIONS_EXCEEDED:
            raise ToolLoopExceeded(
                f"Maximum tool iterations reached ({self.config.max_iterations})"
            )

        if state is LoopState.STREAM_FINAL:
            # Tool detection needs a non-streaming round trip; once no tool is
            # needed the caller's own history is regenerated as a stream.
            stream = self.llm.stream(
                self.request_body(run.model, run.original, run.mode, attach_tools=False, stream=True)
            )
            run.model_calls += 1
            return ChatResult(stream=stream, iterations=run.iterations)

        payload = run.response
        content = run.assistant.get("content")
        if run.tools_used and content:
            run.assistant["content"] = self._tools_marker(run.tools_used) + content
        return ChatResult(
            payload=payload, tools_used=list(run.tools_used), iterations=run.iterations
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def request_body(
        self,
        model: str,
        messages: list[Message],
        mode: ToolChoiceMode,
        *,
        attach_tools: bool,
        stream: bool = False,
    ) -> dict[str, Any]:
        body: dict[str, Any] = {
            "model": model,
            "messages": [message.to_payload() for message in messages],
            "stream": stream,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
        }
        if attach_tools:
            body["tools"] = self.tool_registry.as_openai_tools()
            hint = tool_choice_hint(mode)
            if hint is not None:
                body["tool_choice"] = hint
        return body

    def _tools_marker(self, tools_used: list[str]) -> str:
        labels: list[str] = []
        for name in tools_used:
            spec = self.tool_registry.get(name)
            label = spec.label if spec is not None and spec.label else name
            if label not in labels:
                labels.append(label)
        return f"🔍 *{', '.join(labels)} performed*\n\n"

    def _record(
        self,
        run: _Run,
        state: LoopState,
        latency_ms: float,
        *,
        error: str | None = None,
    ) -> TraceRecord:
        return self.trace_store.create_record(
            model=run.model,
            outcome=state.value,
            iterations=run.iterations,
            model_calls=run.model_calls,
            streamed=state is LoopState.STREAM_FINAL and error is None,
            tools_used=list(run.tools_used),
            tool_traces=list(run.tool_traces),
            latency_ms=latency_ms,
            error=error,
        )

    def _default_clock(self) -> datetime:
        try:
            return datetime.now(ZoneInfo(self.config.timezone))
        except ZoneInfoNotFoundError:
            logger.warning("Unknown timezone {}, using UTC", self.config.timezone)
            return datetime.now(timezone.utc)


def build_system_prompt(base: str, current_datetime: str, *, use_tools: bool) -> str:
    prompt = f"{base}\n\nCurrent date and time: {current_datetime}"
    if use_tools:
        prompt = f"{prompt}\n\n{_TOOL_INSTRUCTIONS}"
    return prompt


def format_datetime(moment: datetime) -> str:
    return moment.strftime("%A, %B %d, %Y, %H:%M %Z").strip()


def validate_history(messages: list[Message]) -> None:
    """Reject tool messages that do not answer an earlier assistant tool call."""

    emitted: set[str] = set()
    for position, message in enumerate(messages):
        if message.role == "assistant" and message.tool_calls:
            emitted.update(call.id for call in message.tool_calls)
        elif message.role == "tool" and message.tool_call_id not in emitted:
            raise InvalidArgument(
                f"messages[{position}]: tool message references unknown tool_call_id "
                f"{message.tool_call_id!r}"
            )


def _first_message(response: dict[str, Any]) -> dict[str, Any]:
    choices = response.get("choices") or []
    message = choices[0].get("message") if choices else None
    if not message:
        raise UpstreamModelError("No response from model")
    return message
