"""HTTP client for the code embedding service."""

from __future__ import annotations

import asyncio
import json
from urllib import error as urllib_error
from urllib.request import Request, urlopen

from loguru import logger

from testsmith.config import Settings
from testsmith.errors import ServiceError


class EmbeddingClient:
    """POST ``{"sentences": [content]}`` and return the first embedding."""

    def __init__(self, url: str, *, timeout_seconds: int = 30) -> None:
        self._url = url
        self._timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> EmbeddingClient:
        return cls(settings.require_embedding_service_url(), timeout_seconds=settings.request_timeout_seconds)

    async def embed(self, content: str) -> list[float]:
        return await asyncio.to_thread(self._embed_sync, content)

    def _embed_sync(self, content: str) -> list[float]:
        request = Request(  # noqa: S310
            self._url,
            data=json.dumps({"sentences": [content]}).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        try:
            with urlopen(request, timeout=self._timeout_seconds) as response:  # noqa: S310
                body = response.read().decode("utf-8", errors="replace")
        except urllib_error.HTTPError as exc:
            raise ServiceError(f"embedding service error: http {exc.code}") from exc
        except (urllib_error.URLError, OSError) as exc:
            raise ServiceError(f"failed to generate embedding: {exc!s}") from exc

        try:
            data = json.loads(body)
        except json.JSONDecodeError as exc:
            raise ServiceError(f"embedding service returned invalid json: {exc!s}") from exc

        embeddings = data.get("embeddings") if isinstance(data, dict) else None
        if not isinstance(embeddings, list) or not embeddings or not isinstance(embeddings[0], list):
            raise ServiceError("no embeddings returned from service")
        vector = [float(value) for value in embeddings[0]]
        logger.debug("embedding.done dims={}", len(vector))
        return vector
