"""Configuration models for the chat and retrieval services."""

from __future__ import annotations

from functools import lru_cache

from pydantic import BaseModel, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ragchat.errors import ConfigurationError


class ChunkingConfig(BaseModel):
    """Configures fixed-size character windows with trailing overlap."""

    chunk_size: int = Field(default=500, ge=1)
    overlap: int = Field(default=50, ge=0)

    @model_validator(mode="after")
    def _check_overlap(self) -> "ChunkingConfig":
        if self.overlap >= self.chunk_size:
            raise ValueError("overlap must be less than chunk_size")
        return self


class RetrievalConfig(BaseModel):
    """Configures query defaults and the collection used for documents."""

    default_limit: int = Field(default=5, ge=1)
    max_limit: int = Field(default=100, ge=1)
    default_collection: str = Field(default="global_documents", min_length=1)


class AgentConfig(BaseModel):
    """Configures the tool loop and the completion parameters."""

    max_iterations: int = Field(default=10, ge=1)
    max_tokens: int = Field(default=2048, ge=1)
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    default_model: str = "meta-llama/Llama-3.3-70B-Instruct-fast"
    default_system_prompt: str = "You are a helpful assistant."
    timezone: str = "Europe/Berlin"


class Settings(BaseSettings):
    """Deployment settings, loaded from environment variables and ``.env``."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        protected_namespaces=(),
    )

    # ------------------------------------------------------------------
    # Model provider (OpenAI-compatible chat + embeddings)
    # ------------------------------------------------------------------
    model_api_key: str = ""
    model_api_base_url: str = "https://api.tokenfactory.nebius.com/v1"
    default_model: str = "meta-llama/Llama-3.3-70B-Instruct-fast"
    embedding_model: str = "BAAI/bge-multilingual-gemma2"
    embedding_dimension: int = 3584

    # ------------------------------------------------------------------
    # Web search provider (Brave)
    # ------------------------------------------------------------------
    search_api_key: str = ""
    search_api_url: str = "https://api.search.brave.com/res/v1/web/search"
    search_lang: str = "en"
    search_ui_lang: str = "en-US"

    # ------------------------------------------------------------------
    # Vector store (Qdrant REST)
    # ------------------------------------------------------------------
    vector_store_url: str = ""
    rag_collection: str = "global_documents"

    # ------------------------------------------------------------------
    # Runtime
    # ------------------------------------------------------------------
    request_timeout_seconds: float = 60.0
    timezone: str = "Europe/Berlin"
    log_level: str = "INFO"
    log_json: bool = False

    def require_model_credentials(self) -> None:
        if not self.model_api_key:
            raise ConfigurationError("MODEL_API_KEY not configured")

    def require_vector_store(self) -> None:
        if not self.vector_store_url:
            raise ConfigurationError("VECTOR_STORE_URL not configured")

    def agent_config(self) -> AgentConfig:
        return AgentConfig(default_model=self.default_model, timezone=self.timezone)

    def retrieval_config(self) -> RetrievalConfig:
        return RetrievalConfig(default_collection=self.rag_collection)


@lru_cache
def get_settings() -> Settings:
    """Return the cached Settings singleton."""
    return Settings()
