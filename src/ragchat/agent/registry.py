"""Tool registry built on Pydantic v2 models."""

from __future__ import annotations

import json
from collections.abc import Callable
from time import perf_counter
from typing import Any

from langchain_core.tools import StructuredTool
from langchain_core.utils.function_calling import convert_to_openai_tool
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ragchat.types import ToolCall, ToolTrace

Observer = Callable[[ToolTrace], None]


class ToolSpec(BaseModel):
    """Declarative tool specification for registration and validation."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    name: str
    description: str
    args_schema: type[BaseModel]
    handler: Callable[[BaseModel], str]
    label: str = ""
    tags: list[str] = Field(default_factory=list)

    def invoke(self, payload: dict[str, Any]) -> str:
        data = self.args_schema.model_validate(payload)
        return self.handler(data)


class ToolRegistry:
    """Stores tool specs, executes model tool calls, and exports schemas.

    ``execute`` is the path used by the chat loop and never raises: unknown
    tools, malformed arguments and handler failures all come back as text the
    model can react to. ``invoke`` is the strict path for direct callers.
    """

    def __init__(self) -> None:
        self._tools: dict[str, ToolSpec] = {}

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise ValueError(f"Tool already registered: {spec.name}")
        self._tools[spec.name] = spec

    def invoke(
        self, name: str, payload: dict[str, Any], *, observer: Observer | None = None
    ) -> str:
        spec = self._tools.get(name)
        if spec is None:
            raise KeyError(f"Unknown tool: {name}")
        return self._execute_spec(spec, payload, observer)

    def execute(self, tool_call: ToolCall, *, observer: Observer | None = None) -> str:
        """Run one model tool call; ``observer`` receives its ``ToolTrace``."""

        spec = self._tools.get(tool_call.name)
        if spec is None:
            logger.warning("Model requested unsupported tool {}", tool_call.name)
            return f"Unsupported tool: {tool_call.name}"

        try:
            payload = json.loads(tool_call.arguments or "{}")
        except json.JSONDecodeError as exc:
            return f"Tool error: invalid arguments for {spec.name}: {exc.msg}"
        if not isinstance(payload, dict):
            return f"Tool error: arguments for {spec.name} must be an object"

        try:
            return self._execute_spec(spec, payload, observer)
        except ValidationError as exc:
            return f"Tool error: invalid arguments for {spec.name}: {exc.error_count()} validation error(s)"
        except Exception as exc:
            logger.exception("Tool {} failed", spec.name)
            return f"Tool error: {exc}"

    def get(self, name: str) -> ToolSpec | None:
        return self._tools.get(name)

    def specs(self) -> list[ToolSpec]:
        return list(self._tools.values())

    def as_langchain_tools(self) -> list[StructuredTool]:
        tools: list[StructuredTool] = []
        for spec in self._tools.values():
            tools.append(
                StructuredTool.from_function(
                    name=spec.name,
                    description=spec.description,
                    args_schema=spec.args_schema,
                    func=self._build_function(spec),
                )
            )
        return tools

    def as_openai_tools(self) -> list[dict[str, Any]]:
        """Function schemas in the chat-completions ``tools`` format."""
        return [convert_to_openai_tool(tool) for tool in self.as_langchain_tools()]

    def _build_function(self, spec: ToolSpec) -> Callable[..., str]:
        def _callable(**kwargs: Any) -> str:
            return self._execute_spec(spec, kwargs)

        return _callable

    def _execute_spec(
        self, spec: ToolSpec, payload: dict[str, Any], observer: Observer | None = None
    ) -> str:
        start = perf_counter()
        output = spec.invoke(payload)
        latency_ms = (perf_counter() - start) * 1000.0
        logger.info("Tool {} returned {} chars in {:.1f} ms", spec.name, len(output), latency_ms)

        if observer is not None:
            observer(
                ToolTrace(
                    name=spec.name,
                    input_payload=payload,
                    output_preview=output[:320],
                    latency_ms=latency_ms,
                )
            )
        return output
