"""Chat endpoint: tool loop with optional SSE pass-through."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from ragchat.agent.orchestrator import ChatOrchestrator, ChatTurn
from ragchat.api.dependencies import get_orchestrator
from ragchat.types import Message

router = APIRouter(tags=["chat"])


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    messages: list[Message] = Field(default_factory=list)
    model: str | None = None
    stream: bool = True
    enable_tools: bool = Field(default=True, alias="enableTools")
    system_prompt: str | None = Field(default=None, alias="systemPrompt")


@router.post("/chat")
def chat(
    request: ChatRequest,
    orchestrator: ChatOrchestrator = Depends(get_orchestrator),
) -> Response:
    result = orchestrator.run(
        ChatTurn(
            messages=request.messages,
            model=request.model,
            stream=request.stream,
            enable_tools=request.enable_tools,
            system_prompt=request.system_prompt,
        )
    )
    if result.stream is not None:
        return StreamingResponse(
            result.stream,
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )
    return JSONResponse(result.payload)
