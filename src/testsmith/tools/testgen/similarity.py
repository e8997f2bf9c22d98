"""Nearest-neighbour lookup over the ``code_embeddings`` pgvector table."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from loguru import logger
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from testsmith.config import Settings
from testsmith.errors import ServiceError

NEAREST_QUERY = text(
    "SELECT file_path, chunk_id, content, embedding <-> CAST(:embedding AS vector) AS distance "
    "FROM code_embeddings "
    "ORDER BY embedding <-> CAST(:embedding AS vector) "
    "LIMIT :limit"
)


@dataclass(frozen=True)
class Neighbor:
    source_location: str
    content: str
    distance: float

    @property
    def similarity(self) -> float:
        return 1 - self.distance


def _normalize_database_url(url: str) -> str:
    # Plain postgres URLs select the psycopg (v3) driver.
    for prefix in ("postgresql://", "postgres://"):
        if url.startswith(prefix):
            return "postgresql+psycopg://" + url[len(prefix) :]
    return url


def format_vector(embedding: Sequence[float]) -> str:
    return "[" + ",".join(repr(float(value)) for value in embedding) + "]"


def rows_to_neighbors(rows: Iterable[Any]) -> list[Neighbor]:
    neighbors: list[Neighbor] = []
    for row in rows:
        mapping = row._mapping if hasattr(row, "_mapping") else row
        location = str(mapping["file_path"])
        chunk_id = mapping.get("chunk_id")
        if chunk_id is not None:
            location = f"{location}#{chunk_id}"
        neighbors.append(
            Neighbor(source_location=location, content=str(mapping["content"]), distance=float(mapping["distance"]))
        )
    return sorted(neighbors, key=lambda item: item.distance)


class SimilarityIndex:
    """Query the vector store for the k closest code chunks."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    @classmethod
    def from_url(cls, url: str, *, timeout_seconds: int = 30) -> SimilarityIndex:
        engine = create_engine(
            _normalize_database_url(url),
            pool_pre_ping=True,
            connect_args={
                "connect_timeout": timeout_seconds,
                "options": f"-c statement_timeout={timeout_seconds * 1000}",
            },
        )
        return cls(engine)

    @classmethod
    def from_settings(cls, settings: Settings) -> SimilarityIndex:
        return cls.from_url(settings.require_embed_database_url(), timeout_seconds=settings.request_timeout_seconds)

    async def nearest(self, embedding: Sequence[float], k: int = 10) -> list[Neighbor]:
        return await asyncio.to_thread(self._nearest_sync, list(embedding), k)

    def _nearest_sync(self, embedding: list[float], k: int) -> list[Neighbor]:
        try:
            with self._engine.connect() as connection:
                rows = connection.execute(NEAREST_QUERY, {"embedding": format_vector(embedding), "limit": k}).all()
        except SQLAlchemyError as exc:
            raise ServiceError(f"database search failed: {exc!s}") from exc
        neighbors = rows_to_neighbors(rows)
        logger.info("similarity.nearest k={} found={}", k, len(neighbors))
        return neighbors
