"""Error taxonomy shared by the chat and retrieval services.

These are service-level errors, not HTTP errors. The API layer translates
them into ``{"error": ...}`` responses with the appropriate status code.
Tool failures are deliberately absent: they are returned to the model as
plain text instead of being raised.
"""

from __future__ import annotations


class RagChatError(Exception):
    """Base class for all ragchat errors."""


class ConfigurationError(RagChatError):
    """A required credential or endpoint is not configured."""


class InvalidArgument(RagChatError, ValueError):
    """A request was malformed and rejected before any network call."""


class UpstreamModelError(RagChatError):
    """The model provider answered with a non-success status or no message."""

    def __init__(self, message: str, *, status: int | None = None, details: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.details = details


class ToolLoopExceeded(RagChatError):
    """The tool loop ran out of iterations without a tool-free answer."""


class StoreError(RagChatError):
    """The vector store rejected a request or could not be reached."""

    def __init__(self, status: int | None, message: str) -> None:
        super().__init__(f"Vector store error ({status}): {message}" if status else message)
        self.status = status
        self.raw_message = message


class EmbeddingError(RagChatError):
    """The embedding provider failed; no partial vectors are returned."""
