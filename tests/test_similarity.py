from unittest.mock import AsyncMock

import numpy as np
import pytest
from context_assembly.similarity import (
    LexicalSimilarityFinder,
    VectorSimilarityFinder,
    blueprint_query_text,
)
from models.narrative_models import Blueprint, NarrativeUnit
from models.service_models import VectorSearchHit
from utils.similarity import numpy_cosine_similarity, rank_by_similarity


def _unit(chapter: int, index: int, content: str) -> NarrativeUnit:
    return NarrativeUnit(
        project_id="p1",
        chapter_index=chapter,
        unit_index=index,
        content=content,
        word_count=len(content.split()),
    )


def test_cosine_similarity_edge_cases():
    assert numpy_cosine_similarity(None, np.array([1.0])) == 0.0
    assert numpy_cosine_similarity(np.array([1.0, 0.0]), np.array([1.0])) == 0.0
    assert numpy_cosine_similarity(np.zeros(3), np.ones(3)) == 0.0
    assert numpy_cosine_similarity(np.array([1.0, 2.0]), np.array([2.0, 4.0])) == pytest.approx(1.0)


def test_rank_by_similarity_ignores_stopwords():
    scores = rank_by_similarity(
        "the storm at the harbor",
        ["the storm and the harbor", "the and of", "a quiet library"],
    )

    assert scores[0] > 0.99
    assert scores[1] == 0.0
    assert scores[2] == 0.0


def test_blueprint_query_text_is_deterministic():
    bp = Blueprint(description="Night raid", location="Harbor", expected_entities={"Tovin", "Mara"})
    assert blueprint_query_text(bp) == "Night raid Harbor Mara Tovin"


@pytest.mark.asyncio
async def test_lexical_finder_ranks_and_breaks_ties_by_story_position():
    memory = AsyncMock()
    memory.get_unit_pool.return_value = [
        _unit(2, 1, "Storm at the harbor."),
        _unit(1, 4, "Storm at the harbor."),
        _unit(1, 3, "Storm at the harbor again."),
        _unit(1, 2, "Bread and cheese in the library."),
    ]
    finder = LexicalSimilarityFinder(memory, pool_size=10, min_score=0.1)

    found = await finder.find("p1", Blueprint(description="storm harbor"), limit=5)

    assert [s.unit_id for s in found] == ["p1:1:4", "p1:2:1", "p1:1:3"]
    assert found[0].score == pytest.approx(1.0)
    memory.get_unit_pool.assert_awaited_once_with("p1", 10)


@pytest.mark.asyncio
async def test_lexical_finder_empty_query_skips_lookup():
    memory = AsyncMock()
    finder = LexicalSimilarityFinder(memory)

    assert await finder.find("p1", Blueprint(), limit=5) == []
    memory.get_unit_pool.assert_not_awaited()


@pytest.mark.asyncio
async def test_vector_finder_maps_hits():
    memory = AsyncMock()
    memory.search_similar_units.return_value = [
        VectorSearchHit(
            point_id="p1:1:2",
            score=0.83,
            payload={"chapter_index": 1, "unit_index": 2, "excerpt": "Storm."},
        )
    ]
    embed = AsyncMock(return_value=[0.5, 0.5])
    finder = VectorSimilarityFinder(memory, embed, min_score=0.2)

    found = await finder.find("p1", Blueprint(description="storm"), limit=3)

    embed.assert_awaited_once_with("storm")
    memory.search_similar_units.assert_awaited_once_with(
        "p1", [0.5, 0.5], limit=3, min_score=0.2
    )
    assert found[0].unit_id == "p1:1:2"
    assert found[0].content == "Storm."
