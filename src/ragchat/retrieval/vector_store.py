"""Vector store interfaces and concrete adapters."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, replace
from math import sqrt
from typing import Any, Protocol

import httpx
from loguru import logger

from ragchat.errors import InvalidArgument, StoreError
from ragchat.types import IndexPoint, SearchResult


class VectorStore(Protocol):
    """Contract with the remote vector index."""

    def collection_exists(self, name: str) -> bool:
        """Probe for a collection; never raises."""

    def ensure_collection(self, name: str, dimension: int) -> None:
        """Create a cosine collection of ``dimension`` if it is absent."""

    def upsert(self, collection: str, points: list[IndexPoint]) -> list[IndexPoint]:
        """Store points under fresh store ids and return them."""

    def search(
        self,
        collection: str,
        vector: list[float],
        limit: int,
        query_filter: dict[str, Any] | None = None,
    ) -> list[SearchResult]:
        """Return up to ``limit`` results in descending score order."""

    def delete_points(
        self,
        collection: str,
        ids: list[str] | None = None,
        query_filter: dict[str, Any] | None = None,
    ) -> None:
        """Delete by chunk ids or by payload filter (exactly one)."""

    def delete_collection(self, name: str) -> None:
        """Drop a collection; missing collections are not an error."""

    def list_collections(self) -> list[str]:
        """Return all collection names."""

    def get_collection_info(self, name: str) -> dict[str, Any] | None:
        """Return collection details, or None when it does not exist."""


def assign_external_ids(points: list[IndexPoint]) -> list[IndexPoint]:
    """Give each point a fresh UUID and carry its chunk id in the payload."""

    return [
        replace(
            point,
            external_id=str(uuid.uuid4()),
            payload={**point.payload, "original_id": point.original_id},
        )
        for point in points
    ]


def resolve_delete_selector(
    ids: list[str] | None, query_filter: dict[str, Any] | None
) -> dict[str, Any]:
    """Turn a deletion request into one payload filter.

    Chunk ids are remapped to a filter on ``original_id`` because the store's
    own point ids are generated per upsert and never exposed to callers.
    """

    if ids and query_filter:
        raise InvalidArgument("Provide either ids or filter for deletion, not both")
    if ids:
        return {"must": [{"key": "original_id", "match": {"any": list(ids)}}]}
    if query_filter:
        return query_filter
    raise InvalidArgument("Either ids or filter must be provided for deletion")


def split_payload(payload: dict[str, Any]) -> tuple[str, dict[str, Any]]:
    content = str(payload.get("content", ""))
    metadata = {key: value for key, value in payload.items() if key != "content"}
    return content, metadata


class QdrantVectorStore:
    """Typed client over the Qdrant REST API."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"), timeout=timeout, transport=transport
        )

    def collection_exists(self, name: str) -> bool:
        try:
            response = self._client.get(f"/collections/{name}")
        except httpx.HTTPError as exc:
            logger.warning("Collection probe for {} failed: {}", name, exc)
            return False
        return response.is_success

    def create_collection(self, name: str, dimension: int) -> None:
        self._request(
            "PUT",
            f"/collections/{name}",
            json={"vectors": {"size": dimension, "distance": "Cosine"}},
        )
        logger.info("Created collection {} (dimension={})", name, dimension)

    def ensure_collection(self, name: str, dimension: int) -> None:
        if not self.collection_exists(name):
            self.create_collection(name, dimension)

    def upsert(self, collection: str, points: list[IndexPoint]) -> list[IndexPoint]:
        stored = assign_external_ids(points)
        self._request(
            "PUT",
            f"/collections/{collection}/points",
            params={"wait": "true"},
            json={
                "points": [
                    {"id": point.external_id, "vector": point.vector, "payload": point.payload}
                    for point in stored
                ]
            },
        )
        return stored

    def search(
        self,
        collection: str,
        vector: list[float],
        limit: int,
        query_filter: dict[str, Any] | None = None,
    ) -> list[SearchResult]:
        body: dict[str, Any] = {"vector": vector, "limit": limit, "with_payload": True}
        if query_filter:
            body["filter"] = query_filter

        data = self._request("POST", f"/collections/{collection}/points/search", json=body)
        results: list[SearchResult] = []
        for hit in data.get("result") or []:
            content, metadata = split_payload(hit.get("payload") or {})
            results.append(
                SearchResult(
                    id=str(hit["id"]),
                    score=float(hit["score"]),
                    content=content,
                    metadata=metadata,
                )
            )
        return results

    def delete_points(
        self,
        collection: str,
        ids: list[str] | None = None,
        query_filter: dict[str, Any] | None = None,
    ) -> None:
        selector = resolve_delete_selector(ids, query_filter)
        self._request(
            "POST",
            f"/collections/{collection}/points/delete",
            params={"wait": "true"},
            json={"filter": selector},
        )

    def delete_collection(self, name: str) -> None:
        try:
            self._request("DELETE", f"/collections/{name}")
        except StoreError as exc:
            if exc.status != 404:
                raise

    def list_collections(self) -> list[str]:
        data = self._request("GET", "/collections")
        collections = (data.get("result") or {}).get("collections") or []
        return [item["name"] for item in collections]

    def get_collection_info(self, name: str) -> dict[str, Any] | None:
        try:
            data = self._request("GET", f"/collections/{name}")
        except StoreError as exc:
            if exc.status == 404:
                return None
            raise
        return data.get("result")

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise StoreError(None, f"Vector store unreachable: {exc}") from exc

        if not response.is_success:
            logger.error(
                "Vector store {} {} failed: {} {}",
                method,
                path,
                response.status_code,
                response.text,
            )
            raise StoreError(response.status_code, response.text)
        if not response.content:
            return {}
        return response.json()


@dataclass(slots=True)
class _Collection:
    dimension: int
    points: dict[str, IndexPoint]


class InMemoryVectorStore:
    """Reference vector index used for tests and local prototyping.

    Mirrors the Qdrant adapter's contract, including filter semantics for the
    ``must`` / ``should`` / ``must_not`` subset with ``match.value`` and
    ``match.any`` conditions.
    """

    def __init__(self) -> None:
        self._collections: dict[str, _Collection] = {}

    def collection_exists(self, name: str) -> bool:
        return name in self._collections

    def ensure_collection(self, name: str, dimension: int) -> None:
        if name not in self._collections:
            self._collections[name] = _Collection(dimension=dimension, points={})

    def upsert(self, collection: str, points: list[IndexPoint]) -> list[IndexPoint]:
        target = self._get(collection)
        stored = assign_external_ids(points)
        for point in stored:
            if len(point.vector) != target.dimension:
                raise StoreError(
                    400,
                    f"Wrong vector dimension: expected {target.dimension}, got {len(point.vector)}",
                )
        for point in stored:
            target.points[point.external_id] = point
        return stored

    def search(
        self,
        collection: str,
        vector: list[float],
        limit: int,
        query_filter: dict[str, Any] | None = None,
    ) -> list[SearchResult]:
        target = self._get(collection)
        candidates = [
            point
            for point in target.points.values()
            if _filter_match(point.payload, query_filter)
        ]
        ranked = sorted(
            candidates,
            key=lambda point: _cosine_similarity(vector, point.vector),
            reverse=True,
        )
        results: list[SearchResult] = []
        for point in ranked[:limit]:
            content, metadata = split_payload(point.payload)
            results.append(
                SearchResult(
                    id=point.external_id,
                    score=_cosine_similarity(vector, point.vector),
                    content=content,
                    metadata=metadata,
                )
            )
        return results

    def delete_points(
        self,
        collection: str,
        ids: list[str] | None = None,
        query_filter: dict[str, Any] | None = None,
    ) -> None:
        selector = resolve_delete_selector(ids, query_filter)
        target = self._get(collection)
        target.points = {
            key: point
            for key, point in target.points.items()
            if not _filter_match(point.payload, selector)
        }

    def delete_collection(self, name: str) -> None:
        self._collections.pop(name, None)

    def list_collections(self) -> list[str]:
        return list(self._collections)

    def get_collection_info(self, name: str) -> dict[str, Any] | None:
        target = self._collections.get(name)
        if target is None:
            return None
        return {
            "status": "green",
            "points_count": len(target.points),
            "config": {"params": {"vectors": {"size": target.dimension, "distance": "Cosine"}}},
        }

    def _get(self, name: str) -> _Collection:
        target = self._collections.get(name)
        if target is None:
            raise StoreError(404, f"Collection `{name}` doesn't exist!")
        return target


def _filter_match(payload: dict[str, Any], query_filter: dict[str, Any] | None) -> bool:
    if not query_filter:
        return True
    if not any(clause in query_filter for clause in ("must", "should", "must_not")):
        # Flat ``{key: value}`` equality.
        return all(payload.get(key) == value for key, value in query_filter.items())

    must = query_filter.get("must") or []
    should = query_filter.get("should") or []
    must_not = query_filter.get("must_not") or []
    if not all(_condition_match(payload, condition) for condition in must):
        return False
    if should and not any(_condition_match(payload, condition) for condition in should):
        return False
    return not any(_condition_match(payload, condition) for condition in must_not)


def _condition_match(payload: dict[str, Any], condition: dict[str, Any]) -> bool:
    if any(clause in condition for clause in ("must", "should", "must_not")):
        return _filter_match(payload, condition)
    value = payload.get(condition.get("key", ""))
    match = condition.get("match") or {}
    if "value" in match:
        return value == match["value"]
    if "any" in match:
        return value in match["any"]
    if "except" in match:
        return value not in match["except"]
    raise InvalidArgument(f"Unsupported filter condition: {condition}")


def _cosine_similarity(a: list[float], b: list[float]) -> float:
    if not a or not b or len(a) != len(b):
        return 0.0
    numerator = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = sqrt(sum(x * x for x in a))
    norm_b = sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return numerator / (norm_a * norm_b)
