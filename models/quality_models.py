# models/quality_models.py
"""Evaluation results produced by the quality evaluator."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def weight(self) -> int:
        return SEVERITY_WEIGHTS[self]

    @property
    def is_blocking(self) -> bool:
        return self in (Severity.CRITICAL, Severity.HIGH)


# Single weight table used by every score calculation.
SEVERITY_WEIGHTS: dict[Severity, int] = {
    Severity.CRITICAL: 25,
    Severity.HIGH: 15,
    Severity.MEDIUM: 8,
    Severity.LOW: 3,
}


class IssueCategory(str, Enum):
    ENTITY = "entity"
    PLOT = "plot"
    WORLD = "world"
    TIMELINE = "timeline"
    LOCATION = "location"
    TONE = "tone"
    VOICE = "voice"


class ContinuityIssue(BaseModel):
    model_config = ConfigDict(frozen=True)

    category: IssueCategory
    severity: Severity
    message: str
    suggested_fix: str
    auto_fixable: bool = False


class DetectabilityMetrics(BaseModel):
    vocabulary_diversity: float = 0.0
    sentence_entropy: float = 0.0
    perplexity_proxy: float = 0.0
    burstiness: float = 0.0


class QualityReport(BaseModel):
    issues: list[ContinuityIssue] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    continuity_score: float = 100.0
    detectability_score: float = 0.0
    metrics: DetectabilityMetrics = Field(default_factory=DetectabilityMetrics)
    detected_tone: str = "neutral"
    entities_found: list[str] = Field(default_factory=list)
    threads_referenced: list[str] = Field(default_factory=list)

    @property
    def blocking_issues(self) -> list[ContinuityIssue]:
        return [issue for issue in self.issues if issue.severity.is_blocking]


class AttemptOutcome(str, Enum):
    ACCEPTED = "accepted"
    RETRY_CONTINUITY = "retry_continuity"
    RETRY_DETECTABILITY = "retry_detectability"
    RETRY_SERVICE = "retry_service"
    FAILED = "failed"


@dataclass
class GenerationAttempt:
    """Record of one pass through the generation loop."""

    attempt_index: int
    outcome: AttemptOutcome
    continuity_score: float = 0.0
    detectability_score: float = 100.0
    issues: list[ContinuityIssue] = field(default_factory=list)
    error: str | None = None
