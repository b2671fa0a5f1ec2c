"""Tool-calling chat orchestrator and RAG pipeline."""

from .config import AgentConfig, ChunkingConfig, RetrievalConfig

__all__ = ["AgentConfig", "ChunkingConfig", "RetrievalConfig"]
