"""FastAPI entrypoint for the chat and RAG services."""

from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from loguru import logger

from ragchat.api import chat, rag
from ragchat.api.dependencies import get_trace_store
from ragchat.config import get_settings
from ragchat.errors import (
    ConfigurationError,
    EmbeddingError,
    InvalidArgument,
    StoreError,
    ToolLoopExceeded,
    UpstreamModelError,
)
from ragchat.logging_config import setup_logging
from ragchat.obs.tracing import TraceStore


def _error(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message, **extra})


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ConfigurationError)
    async def _configuration(_: Request, exc: ConfigurationError) -> JSONResponse:
        logger.error("Configuration error: {}", exc)
        return _error(500, str(exc))

    # Upstream and tool-loop failures are conversational: status 200.
    @app.exception_handler(UpstreamModelError)
    async def _upstream(_: Request, exc: UpstreamModelError) -> JSONResponse:
        extra: dict[str, Any] = {}
        if exc.status is not None:
            extra = {"status": exc.status, "details": exc.details}
        return _error(200, str(exc), **extra)

    @app.exception_handler(ToolLoopExceeded)
    async def _tool_loop(_: Request, exc: ToolLoopExceeded) -> JSONResponse:
        return _error(200, str(exc))

    @app.exception_handler(InvalidArgument)
    async def _invalid(_: Request, exc: InvalidArgument) -> JSONResponse:
        return _error(400, str(exc))

    @app.exception_handler(RequestValidationError)
    async def _validation(_: Request, exc: RequestValidationError) -> JSONResponse:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}"
            for error in exc.errors()
        )
        return _error(400, f"Invalid request: {problems}")

    @app.exception_handler(StoreError)
    async def _store(_: Request, exc: StoreError) -> JSONResponse:
        return _error(404 if exc.status == 404 else 500, str(exc))

    @app.exception_handler(EmbeddingError)
    async def _embedding(_: Request, exc: EmbeddingError) -> JSONResponse:
        logger.error("Embedding failure: {}", exc)
        return _error(500, str(exc))


def create_app() -> FastAPI:
    settings = get_settings()
    setup_logging(level=settings.log_level, json=settings.log_json)

    app = FastAPI(title="ragchat", version="0.1.0")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["authorization", "x-client-info", "apikey", "content-type"],
    )
    _register_error_handlers(app)
    app.include_router(chat.router)
    app.include_router(rag.router)

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "model_configured": bool(settings.model_api_key),
            "search_configured": bool(settings.search_api_key),
            "vector_store_configured": bool(settings.vector_store_url),
        }

    @app.get("/traces")
    def traces(limit: int = 20, store: TraceStore = Depends(get_trace_store)) -> dict[str, Any]:
        return {"items": [asdict(record) for record in store.list_recent(limit=limit)]}

    @app.get("/traces/{trace_id}")
    def trace_detail(trace_id: str, store: TraceStore = Depends(get_trace_store)) -> Any:
        try:
            record = store.get(trace_id)
        except KeyError as exc:
            return _error(404, str(exc.args[0]))
        return asdict(record)

    @app.get("/metrics")
    def metrics(store: TraceStore = Depends(get_trace_store)) -> dict[str, Any]:
        return store.summary()

    logger.info("ragchat application created")
    return app


app = create_app()
