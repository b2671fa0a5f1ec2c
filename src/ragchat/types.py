"""Shared domain models."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, field_validator


class FunctionCall(BaseModel):
    """Function name and JSON-encoded arguments chosen by the model."""

    name: str
    arguments: str = "{}"

    @field_validator("arguments", mode="before")
    @classmethod
    def _serialize_arguments(cls, value: Any) -> Any:
        # Some providers return already-decoded arguments.
        if value is None:
            return "{}"
        if isinstance(value, (dict, list)):
            return json.dumps(value, ensure_ascii=False)
        return value


class ToolCall(BaseModel):
    """A structured request, emitted by the model, to invoke a tool."""

    id: str
    type: Literal["function"] = "function"
    function: FunctionCall

    @property
    def name(self) -> str:
        return self.function.name

    @property
    def arguments(self) -> str:
        return self.function.arguments


class Message(BaseModel):
    """One chat message in conversation order."""

    role: Literal["system", "user", "assistant", "tool"]
    content: str | None = None
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            payload["tool_calls"] = [call.model_dump() for call in self.tool_calls]
        if self.tool_call_id is not None:
            payload["tool_call_id"] = self.tool_call_id
        return payload


@dataclass(slots=True)
class SourceDocument:
    """A full document before chunking."""

    id: str
    content: str
    title: str | None = None
    filename: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def chunk_metadata(self) -> dict[str, Any]:
        metadata = dict(self.metadata)
        metadata["document_id"] = self.id
        if self.title is not None:
            metadata["title"] = self.title
        if self.filename is not None:
            metadata["filename"] = self.filename
        return metadata


@dataclass(slots=True)
class DocumentChunk:
    """A chunked section of a source document, the unit of indexing."""

    id: str
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class IndexPoint:
    """A vector ready for the store, keyed by the originating chunk id."""

    original_id: str
    vector: list[float]
    payload: dict[str, Any]
    external_id: str = ""


@dataclass(slots=True)
class SearchResult:
    """A retrieval result; higher score means more similar."""

    id: str
    score: float
    content: str
    metadata: dict[str, Any]

    @property
    def original_id(self) -> str | None:
        value = self.metadata.get("original_id")
        return str(value) if value is not None else None


@dataclass(slots=True)
class ToolTrace:
    """Trace record for an executed tool call."""

    name: str
    input_payload: dict[str, Any]
    output_preview: str
    latency_ms: float
