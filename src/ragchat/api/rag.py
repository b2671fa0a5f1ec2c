"""RAG endpoints: index, query, delete, collections, documents."""

from __future__ import annotations

from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from loguru import logger
from pydantic import BaseModel, Field

from ragchat.api.dependencies import get_retrieval_service
from ragchat.errors import StoreError
from ragchat.retrieval.service import RetrievalService
from ragchat.types import DocumentChunk, SourceDocument

router = APIRouter(prefix="/rag", tags=["rag"])


class ChunkPayload(BaseModel):
    id: str = ""
    content: str = ""
    metadata: dict[str, Any] = Field(default_factory=dict)


class IndexRequest(BaseModel):
    collection: str = ""
    documents: list[ChunkPayload] = Field(default_factory=list)


class QueryRequest(BaseModel):
    collection: str = ""
    query: str = ""
    limit: int | None = None
    filter: dict[str, Any] | None = None


class DeleteRequest(BaseModel):
    collection: str = ""
    ids: list[str] | None = None
    filter: dict[str, Any] | None = None


class DocumentBody(BaseModel):
    content: str = ""
    title: str | None = None
    filename: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class DocumentRequest(DocumentBody):
    id: str = ""
    collection: str | None = None


class ReindexRequest(BaseModel):
    collection: str | None = None
    documents: list[DocumentRequest] = Field(default_factory=list)


def _source(document_id: str, body: DocumentBody) -> SourceDocument:
    return SourceDocument(
        id=document_id,
        content=body.content,
        title=body.title,
        filename=body.filename,
        metadata=dict(body.metadata),
    )


@router.get("/health")
def health(service: RetrievalService = Depends(get_retrieval_service)) -> Any:
    try:
        return service.health()
    except StoreError as exc:
        logger.warning("Vector store health check failed: {}", exc)
        return JSONResponse(
            status_code=503,
            content={"status": "unhealthy", "vector_store": "disconnected", "error": str(exc)},
        )


@router.get("/collections")
def list_collections(
    service: RetrievalService = Depends(get_retrieval_service),
) -> dict[str, Any]:
    return {"collections": service.list_collections()}


@router.get("/collections/{name}")
def collection_info(
    name: str, service: RetrievalService = Depends(get_retrieval_service)
) -> Any:
    info = service.collection_info(name)
    if info is None:
        return JSONResponse(status_code=404, content={"error": "Collection not found"})
    return info


@router.delete("/collections/{name}")
def delete_collection(
    name: str, service: RetrievalService = Depends(get_retrieval_service)
) -> dict[str, Any]:
    service.delete_collection(name)
    return {"success": True, "deleted": name}


@router.post("/index")
def index(
    request: IndexRequest, service: RetrievalService = Depends(get_retrieval_service)
) -> dict[str, Any]:
    chunks = [
        DocumentChunk(id=item.id, content=item.content, metadata=dict(item.metadata))
        for item in request.documents
    ]
    indexed = service.index(request.collection, chunks)
    return {"success": True, "indexed": indexed, "collection": request.collection}


@router.post("/query")
def query(
    request: QueryRequest, service: RetrievalService = Depends(get_retrieval_service)
) -> dict[str, Any]:
    results = service.query(
        request.collection, request.query, request.limit, request.filter
    )
    return {"results": [asdict(result) for result in results]}


@router.post("/delete")
def delete(
    request: DeleteRequest, service: RetrievalService = Depends(get_retrieval_service)
) -> dict[str, Any]:
    service.delete(request.collection, ids=request.ids, query_filter=request.filter)
    return {"success": True}


@router.post("/documents")
def index_document(
    request: DocumentRequest, service: RetrievalService = Depends(get_retrieval_service)
) -> dict[str, Any]:
    collection = request.collection or service.config.default_collection
    indexed = service.index_document(_source(request.id, request), collection)
    return {
        "success": True,
        "document_id": request.id,
        "indexed": indexed,
        "collection": collection,
    }


@router.delete("/documents/{document_id}")
def remove_document(
    document_id: str,
    collection: str | None = None,
    service: RetrievalService = Depends(get_retrieval_service),
) -> dict[str, Any]:
    service.remove_document(document_id, collection)
    return {"success": True, "deleted": document_id}


@router.post("/documents/{document_id}/reindex")
def reindex_document(
    document_id: str,
    body: DocumentBody,
    collection: str | None = None,
    service: RetrievalService = Depends(get_retrieval_service),
) -> dict[str, Any]:
    indexed = service.reindex_document(_source(document_id, body), collection)
    return {"success": True, "document_id": document_id, "indexed": indexed}


@router.post("/reindex")
def reindex_all(
    request: ReindexRequest, service: RetrievalService = Depends(get_retrieval_service)
) -> dict[str, Any]:
    documents = [_source(item.id, item) for item in request.documents]
    indexed = service.reindex_all(documents, request.collection)
    return {"success": True, "documents": len(documents), "indexed": indexed}
