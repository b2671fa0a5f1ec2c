"""Embedding gateway and a deterministic offline embedder."""

from __future__ import annotations

from abc import ABC, abstractmethod
from hashlib import blake2b
from math import sqrt
from typing import Any

import httpx
from loguru import logger

from ragchat.errors import EmbeddingError


class Embedder(ABC):
    """Embedder interface used by the retrieval service.

    ``embed`` must return one vector per input text, in input order.
    """

    dimension: int

    @abstractmethod
    def embed(self, texts: list[str]) -> list[list[float]]:
        """Embed many texts in one batch."""

    def embed_query(self, text: str) -> list[float]:
        return self.embed([text])[0]


class RemoteEmbedder(Embedder):
    """Embeds text through an OpenAI-compatible ``/embeddings`` endpoint.

    All texts of one call go out in a single request. Any failure aborts the
    whole batch with ``EmbeddingError``; no partial vectors are returned.
    """

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        model: str,
        dimension: int,
        timeout: float = 60.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.model = model
        self.dimension = dimension
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=timeout,
            transport=transport,
        )

    def embed(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        logger.info("Embedding {} texts with {}", len(texts), self.model)
        try:
            response = self._client.post(
                "/embeddings", json={"model": self.model, "input": texts}
            )
        except httpx.HTTPError as exc:
            raise EmbeddingError(f"Embedding request failed: {exc}") from exc

        if not response.is_success:
            raise EmbeddingError(
                f"Embedding API error: {response.status_code} - {response.text}"
            )

        try:
            items: list[dict[str, Any]] = response.json()["data"]
        except (ValueError, KeyError, TypeError) as exc:
            raise EmbeddingError(f"Malformed embedding response: {exc}") from exc

        if len(items) != len(texts):
            raise EmbeddingError(
                f"Embedding count mismatch: sent {len(texts)}, received {len(items)}"
            )
        ordered = sorted(
            enumerate(items), key=lambda pair: pair[1].get("index", pair[0])
        )
        return [list(item["embedding"]) for _, item in ordered]

    def close(self) -> None:
        self._client.close()


class HashingEmbedder(Embedder):
    """Deterministic bag-of-words embedding without external model calls.

    Used by tests and local development; lexical overlap drives similarity.
    """

    def __init__(self, dimension: int = 256) -> None:
        self.dimension = dimension

    def embed(self, texts: list[str]) -> list[list[float]]:
        return [self._embed(text) for text in texts]

    def _embed(self, text: str) -> list[float]:
        vector = [0.0 for _ in range(self.dimension)]
        tokens = "".join(ch if ch.isalnum() else " " for ch in text.lower()).split()
        if not tokens:
            return vector

        for token in tokens:
            digest = blake2b(token.encode("utf-8"), digest_size=8).digest()
            idx = int.from_bytes(digest[:4], "little") % self.dimension
            sign = -1.0 if digest[4] % 2 else 1.0
            vector[idx] += sign

        norm = sqrt(sum(value * value for value in vector))
        if norm == 0:
            return vector
        return [value / norm for value in vector]
