# memory/graph_queries.py
"""Cypher reads and writes for the story graph."""

from __future__ import annotations

import json
from typing import Any

import structlog

from core.db_manager import Neo4jManager
from models.narrative_models import (
    EntityMention,
    EntityProfile,
    LifecycleState,
    LocationRecord,
    NarrativeUnit,
    PlotThread,
    Relationship,
    ResearchBrief,
    VoiceProfile,
    WorldRule,
)

logger = structlog.get_logger(__name__)

MENTION_EXCERPT_CHARS = 200

_UNIT_FIELDS = """
    u.project_id AS project_id, u.chapter_index AS chapter_index,
    u.unit_index AS unit_index, u.content AS content, u.word_count AS word_count,
    u.entities AS entities, u.thread_ids AS thread_ids, u.tone AS tone,
    u.created_at AS created_at
"""


def _unit_from_record(record: dict[str, Any]) -> NarrativeUnit:
    return NarrativeUnit(
        project_id=record["project_id"],
        chapter_index=record["chapter_index"],
        unit_index=record["unit_index"],
        content=record.get("content") or "",
        word_count=record.get("word_count") or 0,
        entities=frozenset(record.get("entities") or []),
        thread_ids=frozenset(record.get("thread_ids") or []),
        tone=record.get("tone") or "neutral",
        created_at=record["created_at"],
    )


class GraphStore:
    """Story records as Neo4j nodes and relationships."""

    def __init__(self, manager: Neo4jManager) -> None:
        self.manager = manager

    # --- narrative units -------------------------------------------------

    async def save_unit(self, unit: NarrativeUnit) -> None:
        query = """
        MERGE (u:NarrativeUnit {unit_id: $unit_id})
        SET u.project_id = $project_id,
            u.chapter_index = $chapter_index,
            u.unit_index = $unit_index,
            u.content = $content,
            u.word_count = $word_count,
            u.entities = $entities,
            u.thread_ids = $thread_ids,
            u.tone = $tone,
            u.created_at = $created_at
        WITH u
        UNWIND $entities AS entity_name
        MERGE (e:Entity {project_id: $project_id, name: entity_name})
        MERGE (e)-[:APPEARS_IN]->(u)
        """
        params = {
            "unit_id": unit.unit_id,
            "project_id": unit.project_id,
            "chapter_index": unit.chapter_index,
            "unit_index": unit.unit_index,
            "content": unit.content,
            "word_count": unit.word_count,
            "entities": sorted(unit.entities),
            "thread_ids": sorted(unit.thread_ids),
            "tone": unit.tone,
            "created_at": unit.created_at.isoformat(),
        }
        statements = [(query, params)]
        if unit.thread_ids:
            statements.append(
                (
                    """
                    MATCH (u:NarrativeUnit {unit_id: $unit_id})
                    UNWIND $thread_ids AS thread_id
                    MERGE (t:PlotThread {project_id: $project_id, thread_id: thread_id})
                    MERGE (u)-[:ADVANCES]->(t)
                    """,
                    {
                        "unit_id": unit.unit_id,
                        "project_id": unit.project_id,
                        "thread_ids": sorted(unit.thread_ids),
                    },
                )
            )
        await self.manager.execute_cypher_batch(statements)

    async def get_recent_units(
        self, project_id: str, chapter_index: int, unit_index: int, limit: int
    ) -> list[NarrativeUnit]:
        """Units preceding (chapter, unit), oldest first."""
        query = f"""
        MATCH (u:NarrativeUnit {{project_id: $project_id}})
        WHERE u.chapter_index < $chapter_index
           OR (u.chapter_index = $chapter_index AND u.unit_index < $unit_index)
        RETURN {_UNIT_FIELDS}
        ORDER BY u.chapter_index DESC, u.unit_index DESC
        LIMIT $limit
        """
        records = await self.manager.execute_read_query(
            query,
            {
                "project_id": project_id,
                "chapter_index": chapter_index,
                "unit_index": unit_index,
                "limit": limit,
            },
        )
        return [_unit_from_record(r) for r in reversed(records)]

    async def get_unit_pool(self, project_id: str, limit: int) -> list[NarrativeUnit]:
        query = f"""
        MATCH (u:NarrativeUnit {{project_id: $project_id}})
        RETURN {_UNIT_FIELDS}
        ORDER BY u.chapter_index DESC, u.unit_index DESC
        LIMIT $limit
        """
        records = await self.manager.execute_read_query(
            query, {"project_id": project_id, "limit": limit}
        )
        return [_unit_from_record(r) for r in records]

    # --- entities --------------------------------------------------------

    async def save_entity(self, profile: EntityProfile) -> None:
        statements: list[tuple[str, dict[str, Any]]] = [
            (
                """
                MERGE (e:Entity {project_id: $project_id, name: $name})
                SET e.role = $role,
                    e.description = $description,
                    e.voice_json = $voice_json,
                    e.lifecycle_state = $lifecycle_state
                """,
                {
                    "project_id": profile.project_id,
                    "name": profile.name,
                    "role": profile.role,
                    "description": profile.description,
                    "voice_json": profile.voice.model_dump_json(),
                    "lifecycle_state": profile.lifecycle_state.value,
                },
            )
        ]
        if profile.relationships:
            # Relationship type lives in a property so no label is ever interpolated.
            statements.append(
                (
                    """
                    MATCH (e:Entity {project_id: $project_id, name: $name})
                    UNWIND $relationships AS rel
                    MERGE (t:Entity {project_id: $project_id, name: rel.target})
                    MERGE (e)-[r:RELATES_TO {relationship_type: rel.relationship_type}]->(t)
                    SET r.description = rel.description, r.strength = rel.strength
                    """,
                    {
                        "project_id": profile.project_id,
                        "name": profile.name,
                        "relationships": [
                            rel.model_dump() for rel in profile.relationships
                        ],
                    },
                )
            )
        await self.manager.execute_cypher_batch(statements)

    async def get_entity(self, project_id: str, name: str) -> EntityProfile | None:
        query = """
        MATCH (e:Entity {project_id: $project_id, name: $name})
        OPTIONAL MATCH (e)-[r:RELATES_TO]->(t:Entity)
        RETURN e.name AS name, e.role AS role, e.description AS description,
               e.voice_json AS voice_json, e.lifecycle_state AS lifecycle_state,
               collect(CASE WHEN t IS NULL THEN NULL ELSE {
                   target: t.name,
                   relationship_type: r.relationship_type,
                   description: r.description,
                   strength: r.strength
               } END) AS relationships
        """
        records = await self.manager.execute_read_query(
            query, {"project_id": project_id, "name": name}
        )
        if not records:
            return None
        record = records[0]
        mentions = await self.get_entity_mentions(project_id, name)
        voice_json = record.get("voice_json")
        return EntityProfile(
            project_id=project_id,
            name=record["name"],
            role=record.get("role") or "supporting",
            description=record.get("description") or "",
            voice=(
                VoiceProfile.model_validate_json(voice_json)
                if voice_json
                else VoiceProfile()
            ),
            relationships=[
                Relationship(
                    target=rel["target"],
                    relationship_type=rel.get("relationship_type") or "related",
                    description=rel.get("description") or "",
                    strength=rel.get("strength") if rel.get("strength") is not None else 0.5,
                )
                for rel in record.get("relationships") or []
            ],
            recent_mentions=mentions,
            lifecycle_state=record.get("lifecycle_state") or LifecycleState.UNKNOWN,
        )

    async def get_entity_mentions(
        self, project_id: str, name: str, limit: int = 5
    ) -> list[EntityMention]:
        query = """
        MATCH (:Entity {project_id: $project_id, name: $name})-[:APPEARS_IN]->(u:NarrativeUnit)
        RETURN u.chapter_index AS chapter_index, u.unit_index AS unit_index,
               substring(u.content, 0, $excerpt_chars) AS excerpt
        ORDER BY u.chapter_index DESC, u.unit_index DESC
        LIMIT $limit
        """
        records = await self.manager.execute_read_query(
            query,
            {
                "project_id": project_id,
                "name": name,
                "limit": limit,
                "excerpt_chars": MENTION_EXCERPT_CHARS,
            },
        )
        return [EntityMention.model_validate(r) for r in records]

    async def get_entity_roster(self, project_id: str) -> dict[str, LifecycleState]:
        query = """
        MATCH (e:Entity {project_id: $project_id})
        RETURN e.name AS name, e.lifecycle_state AS lifecycle_state
        """
        records = await self.manager.execute_read_query(
            query, {"project_id": project_id}
        )
        return {
            r["name"]: LifecycleState(r.get("lifecycle_state") or "unknown")
            for r in records
        }

    # --- plot threads ----------------------------------------------------

    async def save_thread(self, thread: PlotThread) -> None:
        query = """
        MERGE (t:PlotThread {project_id: $project_id, thread_id: $thread_id})
        SET t.name = $name,
            t.description = $description,
            t.status = $status,
            t.tier = $tier,
            t.progress = $progress,
            t.key_events = $key_events
        """
        await self.manager.execute_write_query(
            query, thread.model_dump(mode="json")
        )

    async def get_plot_threads(
        self, project_id: str, thread_ids: list[str] | None = None
    ) -> list[PlotThread]:
        query = """
        MATCH (t:PlotThread {project_id: $project_id})
        WHERE $thread_ids IS NULL OR t.thread_id IN $thread_ids
        RETURN t.thread_id AS thread_id, t.name AS name,
               t.description AS description, t.status AS status,
               t.tier AS tier, t.progress AS progress, t.key_events AS key_events
        ORDER BY t.thread_id
        """
        records = await self.manager.execute_read_query(
            query, {"project_id": project_id, "thread_ids": thread_ids}
        )
        threads: list[PlotThread] = []
        for record in records:
            if not record.get("name"):
                # Placeholder node created by a unit reference, never saved in full.
                continue
            threads.append(
                PlotThread(
                    project_id=project_id,
                    thread_id=record["thread_id"],
                    name=record["name"],
                    description=record.get("description") or "",
                    status=record.get("status") or "planned",
                    tier=record.get("tier") or "secondary",
                    progress=record.get("progress") or 0.0,
                    key_events=record.get("key_events") or [],
                )
            )
        return threads

    # --- locations -------------------------------------------------------

    async def save_location(self, location: LocationRecord) -> None:
        query = """
        MERGE (l:Location {project_id: $project_id, name: $name})
        SET l.description = $description, l.world_rules_json = $world_rules_json
        """
        await self.manager.execute_write_query(
            query,
            {
                "project_id": location.project_id,
                "name": location.name,
                "description": location.description,
                "world_rules_json": json.dumps(
                    [rule.model_dump() for rule in location.world_rules]
                ),
            },
        )

    async def get_location(self, project_id: str, name: str) -> LocationRecord | None:
        query = """
        MATCH (l:Location {project_id: $project_id, name: $name})
        RETURN l.name AS name, l.description AS description,
               l.world_rules_json AS world_rules_json
        """
        records = await self.manager.execute_read_query(
            query, {"project_id": project_id, "name": name}
        )
        if not records:
            return None
        record = records[0]
        rules = json.loads(record.get("world_rules_json") or "[]")
        return LocationRecord(
            project_id=project_id,
            name=record["name"],
            description=record.get("description") or "",
            world_rules=[WorldRule.model_validate(rule) for rule in rules],
        )

    async def get_known_locations(self, project_id: str) -> list[str]:
        records = await self.manager.execute_read_query(
            "MATCH (l:Location {project_id: $project_id}) RETURN l.name AS name ORDER BY name",
            {"project_id": project_id},
        )
        return [r["name"] for r in records]

    # --- research --------------------------------------------------------

    async def save_research_brief(self, brief: ResearchBrief) -> None:
        query = """
        MERGE (b:ResearchBrief {project_id: $project_id, topic: $topic})
        SET b.job_id = $job_id,
            b.key_facts = $key_facts,
            b.references = $references,
            b.insights = $insights,
            b.tips = $tips
        """
        await self.manager.execute_write_query(query, brief.model_dump(mode="json"))
