# orchestration/models.py
"""Shared dataclasses for the generation orchestrator and chapter sequencer."""

from __future__ import annotations

from dataclasses import dataclass, field

from config import settings

from core.errors import BeatweaverError
from models.narrative_models import Blueprint, NarrativeUnit
from models.quality_models import GenerationAttempt


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = settings.MAX_GENERATION_ATTEMPTS
    base_backoff_ms: int = settings.RETRY_BASE_BACKOFF_MS
    backoff_multiplier: float = settings.RETRY_BACKOFF_MULTIPLIER
    detectability_threshold: float = settings.DETECTABILITY_THRESHOLD
    max_correction_directives: int = settings.MAX_CORRECTION_DIRECTIVES

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def backoff_seconds(self, attempt: int) -> float:
        """Delay after failed ``attempt`` (1-based)."""
        return self.base_backoff_ms * self.backoff_multiplier ** (attempt - 1) / 1000


@dataclass
class UnitRequest:
    project_id: str
    chapter_index: int
    unit_index: int
    blueprint: Blueprint


@dataclass
class UnitGenerationResult:
    """Accepted unit plus the metadata of the run that produced it."""

    unit: NarrativeUnit
    attempts: int
    retries: int
    continuity_score: float
    detectability_score: float
    latency_ms: float
    agents_used: list[str] = field(default_factory=list)
    history: list[GenerationAttempt] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def content(self) -> str:
        return self.unit.content


@dataclass
class ChapterGenerationResult:
    project_id: str
    chapter_index: int
    results: list[UnitGenerationResult] = field(default_factory=list)
    failed_unit_index: int | None = None
    error: BeatweaverError | None = None

    @property
    def completed(self) -> bool:
        return self.error is None

    @property
    def units(self) -> list[NarrativeUnit]:
        return [result.unit for result in self.results]

    @property
    def total_word_count(self) -> int:
        return sum(result.unit.word_count for result in self.results)

    @property
    def average_continuity_score(self) -> float:
        if not self.results:
            return 0.0
        return sum(r.continuity_score for r in self.results) / len(self.results)

    @property
    def average_detectability_score(self) -> float:
        if not self.results:
            return 0.0
        return sum(r.detectability_score for r in self.results) / len(self.results)
