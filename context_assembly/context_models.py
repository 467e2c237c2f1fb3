# context_assembly/context_models.py
"""Data structures for assembled generation context."""

from __future__ import annotations

from pydantic import BaseModel, Field

from models.narrative_models import (
    EntityProfile,
    LifecycleState,
    LocationRecord,
    NarrativeUnit,
    PlotThread,
)


class SimilarUnit(BaseModel):
    """A past unit offered to the generator as a style reference."""

    unit_id: str
    chapter_index: int | None = None
    unit_index: int | None = None
    content: str
    score: float


class TruncationStep(BaseModel):
    name: str
    estimated_tokens_after: int


class AssembledContext(BaseModel):
    """Everything the generator and the evaluator know about one unit."""

    project_id: str
    chapter_index: int
    unit_index: int
    window: list[NarrativeUnit] = Field(default_factory=list)
    entities: dict[str, EntityProfile] = Field(default_factory=dict)
    plot_threads: list[PlotThread] = Field(default_factory=list)
    location: LocationRecord | None = None
    similar_units: list[SimilarUnit] = Field(default_factory=list)
    entity_roster: dict[str, LifecycleState] = Field(default_factory=dict)
    known_locations: list[str] = Field(default_factory=list)
    research_notes: list[str] = Field(default_factory=list)

    # Bookkeeping, never counted toward the size estimate.
    estimated_tokens: int = 0
    truncation_steps: list[TruncationStep] = Field(default_factory=list)
    degraded_sources: list[str] = Field(default_factory=list)

    def payload_bytes(self) -> bytes:
        return self.model_dump_json(exclude=BOOKKEEPING_FIELDS).encode("utf-8")

    @property
    def deceased_entities(self) -> set[str]:
        names = {
            name
            for name, state in self.entity_roster.items()
            if state == LifecycleState.DECEASED
        }
        names.update(p.name for p in self.entities.values() if p.is_deceased)
        return names

    def thread_by_id(self, thread_id: str) -> PlotThread | None:
        for thread in self.plot_threads:
            if thread.thread_id == thread_id:
                return thread
        return None


BOOKKEEPING_FIELDS = {"estimated_tokens", "truncation_steps", "degraded_sources"}
