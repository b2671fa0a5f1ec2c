"""Service wiring for the API routers.

Each provider is cached once it succeeds. A missing credential raises
``ConfigurationError`` on every request until the environment is fixed,
and tests replace providers through ``app.dependency_overrides``.
"""

from __future__ import annotations

from functools import lru_cache

from ragchat.agent.llm import ChatCompletionsClient
from ragchat.agent.orchestrator import ChatOrchestrator
from ragchat.agent.registry import ToolRegistry
from ragchat.agent.tools import BraveSearchClient, register_builtin_tools
from ragchat.config import ChunkingConfig, get_settings
from ragchat.ingest.chunker import FixedWindowChunker
from ragchat.ingest.embedder import RemoteEmbedder
from ragchat.obs.tracing import TraceStore
from ragchat.retrieval.service import RetrievalService
from ragchat.retrieval.vector_store import QdrantVectorStore


@lru_cache
def get_trace_store() -> TraceStore:
    return TraceStore()


@lru_cache
def get_tool_registry() -> ToolRegistry:
    settings = get_settings()
    registry = ToolRegistry()
    register_builtin_tools(
        registry,
        BraveSearchClient(
            api_key=settings.search_api_key,
            url=settings.search_api_url,
            search_lang=settings.search_lang,
            ui_lang=settings.search_ui_lang,
            timeout=settings.request_timeout_seconds,
        ),
    )
    return registry


@lru_cache
def get_orchestrator() -> ChatOrchestrator:
    settings = get_settings()
    settings.require_model_credentials()
    return ChatOrchestrator(
        llm=ChatCompletionsClient(
            base_url=settings.model_api_base_url,
            api_key=settings.model_api_key,
            timeout=settings.request_timeout_seconds,
        ),
        tool_registry=get_tool_registry(),
        trace_store=get_trace_store(),
        config=settings.agent_config(),
    )


@lru_cache
def get_retrieval_service() -> RetrievalService:
    settings = get_settings()
    settings.require_model_credentials()
    settings.require_vector_store()
    return RetrievalService(
        vector_store=QdrantVectorStore(
            settings.vector_store_url, timeout=settings.request_timeout_seconds
        ),
        embedder=RemoteEmbedder(
            base_url=settings.model_api_base_url,
            api_key=settings.model_api_key,
            model=settings.embedding_model,
            dimension=settings.embedding_dimension,
            timeout=settings.request_timeout_seconds,
        ),
        chunker=FixedWindowChunker(ChunkingConfig()),
        config=settings.retrieval_config(),
    )
