"""Client for an OpenAI-compatible chat-completions endpoint."""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any, Protocol

import httpx
from loguru import logger

from ragchat.errors import UpstreamModelError


class ChatModel(Protocol):
    """What the orchestrator needs from a model provider."""

    def complete(self, body: dict[str, Any]) -> dict[str, Any]:
        """Run one non-streaming completion and return the decoded JSON."""

    def stream(self, body: dict[str, Any]) -> Iterator[bytes]:
        """Run one streaming completion and return the raw SSE bytes."""


class ChatCompletionsClient:
    """Sync httpx client for ``POST /chat/completions``.

    Non-success statuses and transport failures raise ``UpstreamModelError``;
    the client never retries.
    """

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str,
        timeout: float = 60.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=timeout,
            transport=transport,
        )

    def complete(self, body: dict[str, Any]) -> dict[str, Any]:
        try:
            response = self._client.post("/chat/completions", json=body)
        except httpx.HTTPError as exc:
            raise UpstreamModelError(f"Model API request failed: {exc}") from exc

        logger.debug("Model API response status: {}", response.status_code)
        if not response.is_success:
            raise _status_error(response.status_code, response.text)
        try:
            return response.json()
        except ValueError as exc:
            raise UpstreamModelError(f"Model API returned invalid JSON: {exc}") from exc

    def stream(self, body: dict[str, Any]) -> Iterator[bytes]:
        request = self._client.build_request("POST", "/chat/completions", json=body)
        try:
            response = self._client.send(request, stream=True)
        except httpx.HTTPError as exc:
            raise UpstreamModelError(f"Model API request failed: {exc}") from exc

        if not response.is_success:
            try:
                text = response.read().decode("utf-8", errors="replace")
            finally:
                response.close()
            raise _status_error(response.status_code, text)

        return _iter_and_close(response)

    def close(self) -> None:
        self._client.close()


def _iter_and_close(response: httpx.Response) -> Iterator[bytes]:
    try:
        yield from response.iter_bytes()
    finally:
        response.close()


def _status_error(status: int, text: str) -> UpstreamModelError:
    logger.error("Model API error: {} {}", status, text)
    return UpstreamModelError(
        f"Model API error ({status}): {text}", status=status, details=text
    )
