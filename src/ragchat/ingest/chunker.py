"""Fixed-size sliding-window chunking with character overlap."""

from __future__ import annotations

from typing import Any

from loguru import logger

from ragchat.config import ChunkingConfig
from ragchat.types import DocumentChunk, SourceDocument


def chunk_text(text: str, size: int = 500, overlap: int = 50) -> list[str]:
    """Split ``text`` into windows of at most ``size`` characters.

    Each window after the first starts with the last ``overlap`` characters
    of its predecessor. Windows advance by ``size - overlap`` characters and
    the loop stops once the remaining tail is already covered by the overlap.

    An ``overlap`` outside ``[0, size)`` is clamped so every step advances by
    at least one character.
    """

    if size <= 0:
        raise ValueError("size must be positive")
    clamped = min(max(overlap, 0), size - 1)
    if clamped != overlap:
        logger.warning("Chunk overlap {} clamped to {} for size {}", overlap, clamped, size)
    overlap = clamped

    chunks: list[str] = []
    length = len(text)
    start = 0
    while start < length:
        end = min(start + size, length)
        chunks.append(text[start:end])
        start = end - overlap
        if start >= length - overlap:
            break
    return chunks


def prepare_document(
    text: str,
    document_id: str,
    metadata: dict[str, Any] | None = None,
    *,
    size: int = 500,
    overlap: int = 50,
) -> list[DocumentChunk]:
    """Map a document's text to indexable chunks with stable ids."""

    pieces = chunk_text(text, size, overlap)
    base = {**(metadata or {}), "document_id": document_id}
    return [
        DocumentChunk(
            id=f"{document_id}_chunk_{index}",
            content=content,
            metadata={**base, "chunk_index": index, "total_chunks": len(pieces)},
        )
        for index, content in enumerate(pieces)
    ]


class FixedWindowChunker:
    """Chunker bound to a validated ``ChunkingConfig``."""

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self.config = config or ChunkingConfig()

    def chunk(self, text: str) -> list[str]:
        return chunk_text(text, self.config.chunk_size, self.config.overlap)

    def chunk_document(self, document: SourceDocument) -> list[DocumentChunk]:
        return prepare_document(
            document.content,
            document.id,
            document.chunk_metadata(),
            size=self.config.chunk_size,
            overlap=self.config.overlap,
        )
