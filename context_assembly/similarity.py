# context_assembly/similarity.py
"""Sources of similar past units used as style references."""

from __future__ import annotations

from typing import Protocol

import structlog
from config import settings

from memory.coordinator import Embedder, MemoryCoordinator
from models.narrative_models import Blueprint
from utils.similarity import rank_by_similarity

from .context_models import SimilarUnit

logger = structlog.get_logger(__name__)


def blueprint_query_text(blueprint: Blueprint) -> str:
    return " ".join(
        [blueprint.description, blueprint.location, *sorted(blueprint.expected_entities)]
    ).strip()


class SimilarUnitFinder(Protocol):
    async def find(
        self, project_id: str, blueprint: Blueprint, limit: int
    ) -> list[SimilarUnit]: ...


class LexicalSimilarityFinder:
    """Rank the project's stored units by term-frequency cosine to the blueprint.

    Deterministic and needs no embedding service: ties break on story position.
    """

    def __init__(
        self,
        memory: MemoryCoordinator,
        pool_size: int | None = None,
        min_score: float | None = None,
    ) -> None:
        self.memory = memory
        self.pool_size = pool_size or settings.CONTEXT_UNIT_POOL_SIZE
        self.min_score = (
            settings.SIMILAR_UNITS_MIN_SCORE if min_score is None else min_score
        )

    async def find(
        self, project_id: str, blueprint: Blueprint, limit: int
    ) -> list[SimilarUnit]:
        query = blueprint_query_text(blueprint)
        if not query or limit <= 0:
            return []
        pool = await self.memory.get_unit_pool(project_id, self.pool_size)
        scores = rank_by_similarity(query, [unit.content for unit in pool])
        ranked = sorted(
            zip(pool, scores, strict=True),
            key=lambda pair: (-pair[1], pair[0].chapter_index, pair[0].unit_index),
        )
        return [
            SimilarUnit(
                unit_id=unit.unit_id,
                chapter_index=unit.chapter_index,
                unit_index=unit.unit_index,
                content=unit.content,
                score=round(score, 6),
            )
            for unit, score in ranked
            if score >= self.min_score
        ][:limit]


class VectorSimilarityFinder:
    """Nearest neighbours in the content collection of the vector store."""

    def __init__(
        self,
        memory: MemoryCoordinator,
        embedder: Embedder,
        min_score: float | None = None,
    ) -> None:
        self.memory = memory
        self.embedder = embedder
        self.min_score = (
            settings.SIMILAR_UNITS_MIN_SCORE if min_score is None else min_score
        )

    async def find(
        self, project_id: str, blueprint: Blueprint, limit: int
    ) -> list[SimilarUnit]:
        query = blueprint_query_text(blueprint)
        if not query or limit <= 0:
            return []
        vector = await self.embedder(query)
        hits = await self.memory.search_similar_units(
            project_id, vector, limit=limit, min_score=self.min_score
        )
        return [
            SimilarUnit(
                unit_id=hit.point_id,
                chapter_index=hit.payload.get("chapter_index"),
                unit_index=hit.payload.get("unit_index"),
                content=hit.payload.get("excerpt", ""),
                score=hit.score,
            )
            for hit in hits
        ]
