"""Retrieval service: chunk -> embed -> store, and query back."""

from __future__ import annotations

from typing import Any

from loguru import logger

from ragchat.config import RetrievalConfig
from ragchat.errors import InvalidArgument, StoreError
from ragchat.ingest.chunker import FixedWindowChunker
from ragchat.ingest.embedder import Embedder
from ragchat.retrieval.vector_store import VectorStore
from ragchat.types import DocumentChunk, IndexPoint, SearchResult, SourceDocument


def document_filter(document_id: str) -> dict[str, Any]:
    return {"must": [{"key": "document_id", "match": {"value": document_id}}]}


class RetrievalService:
    """Composes chunker, embedder and vector store into RAG operations.

    None of the multi-step operations are atomic. A failure after embedding
    may leave some or all points missing, and ``reindex_document`` /
    ``reindex_all`` must be restarted by the caller when they fail midway.
    """

    def __init__(
        self,
        vector_store: VectorStore,
        embedder: Embedder,
        chunker: FixedWindowChunker | None = None,
        config: RetrievalConfig | None = None,
    ) -> None:
        self.vector_store = vector_store
        self.embedder = embedder
        self.chunker = chunker or FixedWindowChunker()
        self.config = config or RetrievalConfig()

    def index(self, collection: str, documents: list[DocumentChunk]) -> int:
        """Embed and store chunks; returns the number indexed."""

        _require_collection(collection)
        if not documents:
            raise InvalidArgument("collection and documents are required")
        for document in documents:
            if not document.id or not document.content:
                raise InvalidArgument("every document needs an id and content")

        self.vector_store.ensure_collection(collection, self.embedder.dimension)
        vectors = self.embedder.embed([document.content for document in documents])
        points = [
            IndexPoint(
                original_id=document.id,
                vector=vector,
                payload={"content": document.content, **document.metadata},
            )
            for document, vector in zip(documents, vectors, strict=True)
        ]
        self.vector_store.upsert(collection, points)
        logger.info("Indexed {} chunks into {}", len(points), collection)
        return len(points)

    def query(
        self,
        collection: str,
        query_text: str,
        limit: int | None = None,
        query_filter: dict[str, Any] | None = None,
    ) -> list[SearchResult]:
        _require_collection(collection)
        if not query_text or not query_text.strip():
            raise InvalidArgument("collection and query are required")
        if limit is None:
            limit = self.config.default_limit
        if limit < 1 or limit > self.config.max_limit:
            raise InvalidArgument(f"limit must be between 1 and {self.config.max_limit}")

        logger.debug("Query on {}: {!r}", collection, query_text[:50])
        vector = self.embedder.embed_query(query_text)
        return self.vector_store.search(collection, vector, limit, query_filter)

    def delete(
        self,
        collection: str,
        ids: list[str] | None = None,
        query_filter: dict[str, Any] | None = None,
    ) -> None:
        _require_collection(collection)
        self.vector_store.delete_points(collection, ids=ids, query_filter=query_filter)

    def delete_collection(self, collection: str) -> None:
        _require_collection(collection)
        self.vector_store.delete_collection(collection)
        logger.info("Deleted collection {}", collection)

    def list_collections(self) -> list[str]:
        return self.vector_store.list_collections()

    def collection_info(self, collection: str) -> dict[str, Any] | None:
        _require_collection(collection)
        return self.vector_store.get_collection_info(collection)

    def health(self) -> dict[str, Any]:
        """Probe store connectivity; raises ``StoreError`` when unreachable."""
        collections = self.vector_store.list_collections()
        return {"status": "healthy", "vector_store": "connected", "collections": len(collections)}

    # ------------------------------------------------------------------
    # Document-level operations
    # ------------------------------------------------------------------

    def index_document(self, document: SourceDocument, collection: str | None = None) -> int:
        chunks = self._document_chunks(document)
        return self.index(collection or self.config.default_collection, chunks)

    def remove_document(self, document_id: str, collection: str | None = None) -> None:
        if not document_id:
            raise InvalidArgument("document id is required")
        target = collection or self.config.default_collection
        try:
            self.delete(target, query_filter=document_filter(document_id))
        except StoreError as exc:
            # Nothing to remove when the collection was never created.
            if exc.status != 404:
                raise

    def reindex_document(self, document: SourceDocument, collection: str | None = None) -> int:
        """Replace a document's chunks with ones built from its current content."""

        target = collection or self.config.default_collection
        chunks = self._document_chunks(document)
        self.remove_document(document.id, target)
        count = self.index(target, chunks)
        logger.info("Reindexed document {} ({} chunks)", document.id, count)
        return count

    def reindex_all(
        self, documents: list[SourceDocument], collection: str | None = None
    ) -> int:
        """Drop and rebuild the whole collection from ``documents``."""

        target = collection or self.config.default_collection
        _require_collection(target)
        batches: list[list[DocumentChunk]] = []
        for document in documents:
            if not document.content:
                logger.warning("Skipping empty document {}", document.id)
                continue
            batches.append(self._document_chunks(document))

        self.delete_collection(target)
        self.vector_store.ensure_collection(target, self.embedder.dimension)
        total = 0
        for chunks in batches:
            total += self.index(target, chunks)
        logger.info("Reindexed {} documents ({} chunks) into {}", len(documents), total, target)
        return total

    def _document_chunks(self, document: SourceDocument) -> list[DocumentChunk]:
        if not document.id:
            raise InvalidArgument("document id is required")
        chunks = self.chunker.chunk_document(document)
        if not chunks:
            raise InvalidArgument(f"document {document.id} has no content")
        return chunks


def _require_collection(collection: str) -> None:
    if not collection or not collection.strip():
        raise InvalidArgument("collection is required")
