# models/narrative_models.py
"""Story records shared by memory, context assembly and evaluation."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class LifecycleState(str, Enum):
    ALIVE = "alive"
    DECEASED = "deceased"
    MISSING = "missing"
    UNKNOWN = "unknown"


class ThreadStatus(str, Enum):
    PLANNED = "planned"
    ACTIVE = "active"
    DEVELOPING = "developing"
    RESOLVED = "resolved"
    ABANDONED = "abandoned"


_THREAD_TRANSITIONS: dict[ThreadStatus, frozenset[ThreadStatus]] = {
    ThreadStatus.PLANNED: frozenset(
        {ThreadStatus.ACTIVE, ThreadStatus.DEVELOPING, ThreadStatus.ABANDONED}
    ),
    ThreadStatus.ACTIVE: frozenset(
        {ThreadStatus.DEVELOPING, ThreadStatus.RESOLVED, ThreadStatus.ABANDONED}
    ),
    ThreadStatus.DEVELOPING: frozenset(
        {ThreadStatus.ACTIVE, ThreadStatus.RESOLVED, ThreadStatus.ABANDONED}
    ),
    ThreadStatus.RESOLVED: frozenset(),
    ThreadStatus.ABANDONED: frozenset(),
}


class ImportanceTier(str, Enum):
    PRIMARY = "primary"
    SECONDARY = "secondary"
    TERTIARY = "tertiary"

    @property
    def rank(self) -> int:
        """Sort key, primary first."""
        return _TIER_RANK[self]


_TIER_RANK = {
    ImportanceTier.PRIMARY: 0,
    ImportanceTier.SECONDARY: 1,
    ImportanceTier.TERTIARY: 2,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NarrativeBaseModel(BaseModel):
    """Base model for stored story records."""

    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class VoiceProfile(NarrativeBaseModel):
    vocabulary_level: str = "moderate"
    formality: str = "neutral"
    uses_contractions: bool = True
    speech_patterns: list[str] = Field(default_factory=list)


class Relationship(NarrativeBaseModel):
    """Directed, typed edge from the owning entity to ``target``."""

    target: str
    relationship_type: str
    description: str = ""
    strength: float = 0.5


class EntityMention(NarrativeBaseModel):
    chapter_index: int
    unit_index: int
    excerpt: str = ""


class EntityProfile(NarrativeBaseModel):
    """A character or other named participant in the story."""

    project_id: str
    name: str
    role: str = "supporting"
    description: str = ""
    voice: VoiceProfile = Field(default_factory=VoiceProfile)
    relationships: list[Relationship] = Field(default_factory=list)
    recent_mentions: list[EntityMention] = Field(default_factory=list)
    lifecycle_state: LifecycleState = LifecycleState.ALIVE

    @property
    def is_deceased(self) -> bool:
        return self.lifecycle_state == LifecycleState.DECEASED


class PlotThread(NarrativeBaseModel):
    project_id: str
    thread_id: str
    name: str
    description: str = ""
    status: ThreadStatus = ThreadStatus.PLANNED
    tier: ImportanceTier = ImportanceTier.SECONDARY
    progress: float = 0.0
    key_events: list[str] = Field(default_factory=list)

    @field_validator("progress")
    @classmethod
    def _clamp_progress(cls, value: float) -> float:
        return max(0.0, min(100.0, value))

    @property
    def is_open(self) -> bool:
        return self.status in (ThreadStatus.ACTIVE, ThreadStatus.DEVELOPING)

    def can_transition_to(self, status: ThreadStatus) -> bool:
        if status == self.status:
            return True
        return status in _THREAD_TRANSITIONS[self.status]


class WorldRule(NarrativeBaseModel):
    category: str
    description: str = ""
    limitations: list[str] = Field(default_factory=list)


class LocationRecord(NarrativeBaseModel):
    project_id: str
    name: str
    description: str = ""
    world_rules: list[WorldRule] = Field(default_factory=list)


class ResearchBrief(NarrativeBaseModel):
    project_id: str
    topic: str
    job_id: str | None = None
    key_facts: list[str] = Field(default_factory=list)
    references: list[str] = Field(default_factory=list)
    insights: list[str] = Field(default_factory=list)
    tips: list[str] = Field(default_factory=list)


class NarrativeUnit(NarrativeBaseModel):
    """An accepted, persisted piece of generated text within a chapter."""

    model_config = ConfigDict(frozen=True, from_attributes=True)

    project_id: str
    chapter_index: int
    unit_index: int
    content: str
    word_count: int
    entities: frozenset[str] = frozenset()
    thread_ids: frozenset[str] = frozenset()
    tone: str = "neutral"
    created_at: datetime = Field(default_factory=_utcnow)

    @property
    def unit_id(self) -> str:
        return f"{self.project_id}:{self.chapter_index}:{self.unit_index}"

    def summary_payload(self) -> dict[str, Any]:
        """Payload stored beside the unit's vector and document records."""
        return {
            "unit_id": self.unit_id,
            "project_id": self.project_id,
            "chapter_index": self.chapter_index,
            "unit_index": self.unit_index,
            "word_count": self.word_count,
            "entities": sorted(self.entities),
            "thread_ids": sorted(self.thread_ids),
            "tone": self.tone,
            "created_at": self.created_at.isoformat(),
        }


class Blueprint(NarrativeBaseModel):
    """Contract for one narrative unit.

    ``correction_directives`` is kept apart from the authored fields so that
    retries never rewrite the description.
    """

    model_config = ConfigDict(frozen=True, from_attributes=True)

    expected_entities: frozenset[str] = frozenset()
    expected_threads: frozenset[str] = frozenset()
    location: str = ""
    target_tone: str = "neutral"
    target_word_count: int = 0
    description: str = ""
    correction_directives: tuple[str, ...] = ()

    def with_corrections(self, directives: list[str], cap: int = 5) -> Blueprint:
        """Return a copy with ``directives`` appended, oldest dropped past ``cap``."""
        combined = list(self.correction_directives)
        for directive in directives:
            if not directive:
                continue
            # A repeated directive moves to the newest slot instead of duplicating.
            if directive in combined:
                combined.remove(directive)
            combined.append(directive)
        if cap > 0:
            combined = combined[-cap:]
        return self.model_copy(update={"correction_directives": tuple(combined)})
