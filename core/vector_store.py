# core/vector_store.py
"""Qdrant-backed similarity index for unit content, voices and metadata."""

from __future__ import annotations

import uuid
from collections.abc import Mapping, Sequence
from enum import Enum
from typing import Any

import structlog
from config import settings
from qdrant_client import AsyncQdrantClient
from qdrant_client.http import models as qdrant_models

from core.errors import StorageReadFailure, StorageWriteFailure
from models.service_models import VectorPoint, VectorSearchHit

logger = structlog.get_logger(__name__)


class VectorCollection(str, Enum):
    CONTENT = "content"
    VOICE = "voice"
    METADATA = "metadata"


def point_uuid(key: str) -> str:
    """Stable Qdrant point id for an arbitrary record key."""
    return str(uuid.uuid5(uuid.NAMESPACE_URL, key))


class VectorStore:
    """Thin async wrapper over the three logical Qdrant collections."""

    def __init__(self, client: AsyncQdrantClient | None = None) -> None:
        self.client = client or AsyncQdrantClient(
            url=settings.QDRANT_URL, api_key=settings.QDRANT_API_KEY
        )
        self.collections: dict[VectorCollection, tuple[str, int]] = {
            VectorCollection.CONTENT: (
                settings.QDRANT_CONTENT_COLLECTION,
                settings.CONTENT_EMBEDDING_DIM,
            ),
            VectorCollection.VOICE: (
                settings.QDRANT_VOICE_COLLECTION,
                settings.VOICE_EMBEDDING_DIM,
            ),
            VectorCollection.METADATA: (
                settings.QDRANT_METADATA_COLLECTION,
                settings.METADATA_EMBEDDING_DIM,
            ),
        }

    async def aclose(self) -> None:
        await self.client.close()

    async def ensure_collections(self) -> None:
        for name, dimension in self.collections.values():
            if await self.client.collection_exists(name):
                continue
            await self.client.create_collection(
                collection_name=name,
                vectors_config=qdrant_models.VectorParams(
                    size=dimension, distance=qdrant_models.Distance.COSINE
                ),
            )
            logger.info("Created vector collection", collection=name, size=dimension)

    def _resolve(self, collection: VectorCollection, vector: Sequence[float]) -> str:
        name, dimension = self.collections[collection]
        if len(vector) != dimension:
            raise ValueError(
                f"Vector for {name} has {len(vector)} dimensions, expected {dimension}"
            )
        return name

    async def upsert(self, collection: VectorCollection, point: VectorPoint) -> None:
        name = self._resolve(collection, point.vector)
        payload = {**point.payload, "point_key": point.point_id}
        try:
            await self.client.upsert(
                collection_name=name,
                points=[
                    qdrant_models.PointStruct(
                        id=point_uuid(point.point_id),
                        vector=list(point.vector),
                        payload=payload,
                    )
                ],
            )
        except Exception as exc:
            logger.error(
                "Vector upsert failed",
                collection=name,
                point_id=point.point_id,
                exc_info=True,
            )
            raise StorageWriteFailure(
                f"Vector upsert into {name} failed: {exc}",
                backends=["vector"],
                operation="upsert",
            ) from exc

    async def search(
        self,
        collection: VectorCollection,
        vector: Sequence[float],
        limit: int = 5,
        score_threshold: float | None = None,
        filters: Mapping[str, Any] | None = None,
    ) -> list[VectorSearchHit]:
        name = self._resolve(collection, vector)
        query_filter = None
        if filters:
            query_filter = qdrant_models.Filter(
                must=[
                    qdrant_models.FieldCondition(
                        key=key, match=qdrant_models.MatchValue(value=value)
                    )
                    for key, value in filters.items()
                ]
            )
        try:
            response = await self.client.query_points(
                collection_name=name,
                query=list(vector),
                limit=limit,
                score_threshold=score_threshold,
                query_filter=query_filter,
                with_payload=True,
            )
        except Exception as exc:
            logger.warning("Vector search failed", collection=name, exc_info=True)
            raise StorageReadFailure(
                f"Vector search in {name} failed: {exc}", backend="vector"
            ) from exc

        hits: list[VectorSearchHit] = []
        for point in response.points:
            payload = dict(point.payload or {})
            hits.append(
                VectorSearchHit(
                    point_id=str(payload.pop("point_key", point.id)),
                    score=point.score,
                    payload=payload,
                )
            )
        return hits
