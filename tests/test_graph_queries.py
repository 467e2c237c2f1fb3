from unittest.mock import AsyncMock

import pytest
from memory.graph_queries import GraphStore
from models.narrative_models import (
    EntityProfile,
    LifecycleState,
    NarrativeUnit,
    Relationship,
    ThreadStatus,
    VoiceProfile,
)


def _unit_record(index: int) -> dict:
    return {
        "project_id": "p1",
        "chapter_index": 1,
        "unit_index": index,
        "content": f"unit {index}",
        "word_count": 2,
        "entities": ["Mara"],
        "thread_ids": None,
        "tone": None,
        "created_at": "2026-01-01T00:00:00+00:00",
    }


@pytest.mark.asyncio
async def test_save_unit_links_entities_and_threads_in_one_batch():
    manager = AsyncMock()
    store = GraphStore(manager)
    unit = NarrativeUnit(
        project_id="p1",
        chapter_index=1,
        unit_index=2,
        content="Mara ran.",
        word_count=2,
        entities=frozenset({"Tovin", "Mara"}),
        thread_ids=frozenset({"t1"}),
    )

    await store.save_unit(unit)

    statements = manager.execute_cypher_batch.await_args.args[0]
    assert len(statements) == 2
    query, params = statements[0]
    assert "APPEARS_IN" in query
    assert params["unit_id"] == "p1:1:2"
    assert params["entities"] == ["Mara", "Tovin"]
    assert "ADVANCES" in statements[1][0]


@pytest.mark.asyncio
async def test_recent_units_are_returned_oldest_first():
    manager = AsyncMock()
    manager.execute_read_query.return_value = [_unit_record(3), _unit_record(2)]
    store = GraphStore(manager)

    units = await store.get_recent_units("p1", 1, 4, limit=2)

    assert [u.unit_index for u in units] == [2, 3]
    assert units[0].tone == "neutral"
    assert units[0].thread_ids == frozenset()


@pytest.mark.asyncio
async def test_entity_round_trips_voice_and_relationships():
    manager = AsyncMock()
    manager.execute_read_query.side_effect = [
        [
            {
                "name": "Mara",
                "role": "protagonist",
                "description": "",
                "voice_json": VoiceProfile(uses_contractions=False).model_dump_json(),
                "lifecycle_state": "deceased",
                "relationships": [
                    {"target": "Tovin", "relationship_type": "distrusts", "description": None, "strength": None}
                ],
            }
        ],
        [{"chapter_index": 1, "unit_index": 2, "excerpt": "Mara ran."}],
    ]
    store = GraphStore(manager)

    profile = await store.get_entity("p1", "Mara")

    assert profile.is_deceased
    assert profile.voice.uses_contractions is False
    assert profile.relationships == [
        Relationship(target="Tovin", relationship_type="distrusts", strength=0.5)
    ]
    assert profile.recent_mentions[0].excerpt == "Mara ran."


@pytest.mark.asyncio
async def test_missing_entity_returns_none():
    manager = AsyncMock()
    manager.execute_read_query.return_value = []
    assert await GraphStore(manager).get_entity("p1", "Ghost") is None


@pytest.mark.asyncio
async def test_save_entity_keeps_relationship_type_as_property():
    manager = AsyncMock()
    profile = EntityProfile(
        project_id="p1",
        name="Mara",
        relationships=[Relationship(target="Tovin", relationship_type="owes money to")],
    )

    await GraphStore(manager).save_entity(profile)

    statements = manager.execute_cypher_batch.await_args.args[0]
    assert "owes money to" not in statements[1][0]
    assert statements[1][1]["relationships"][0]["relationship_type"] == "owes money to"


@pytest.mark.asyncio
async def test_roster_and_placeholder_threads():
    manager = AsyncMock()
    manager.execute_read_query.side_effect = [
        [{"name": "Mara", "lifecycle_state": "alive"}, {"name": "Oren", "lifecycle_state": None}],
        [
            {"thread_id": "t0", "name": None},
            {"thread_id": "t1", "name": "Heist", "status": "active", "progress": 20.0},
        ],
    ]
    store = GraphStore(manager)

    roster = await store.get_entity_roster("p1")
    threads = await store.get_plot_threads("p1")

    assert roster == {"Mara": LifecycleState.ALIVE, "Oren": LifecycleState.UNKNOWN}
    assert [t.thread_id for t in threads] == ["t1"]
    assert threads[0].status == ThreadStatus.ACTIVE
