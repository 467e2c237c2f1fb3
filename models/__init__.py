"""Central package for beatweaver data models."""

from .narrative_models import (
    Blueprint,
    EntityMention,
    EntityProfile,
    ImportanceTier,
    LifecycleState,
    LocationRecord,
    NarrativeUnit,
    PlotThread,
    Relationship,
    ResearchBrief,
    ThreadStatus,
    VoiceProfile,
    WorldRule,
)
from .quality_models import (
    SEVERITY_WEIGHTS,
    AttemptOutcome,
    ContinuityIssue,
    DetectabilityMetrics,
    GenerationAttempt,
    IssueCategory,
    QualityReport,
    Severity,
)

__all__ = [
    "Blueprint",
    "EntityMention",
    "EntityProfile",
    "ImportanceTier",
    "LifecycleState",
    "LocationRecord",
    "NarrativeUnit",
    "PlotThread",
    "Relationship",
    "ResearchBrief",
    "ThreadStatus",
    "VoiceProfile",
    "WorldRule",
    "SEVERITY_WEIGHTS",
    "AttemptOutcome",
    "ContinuityIssue",
    "DetectabilityMetrics",
    "GenerationAttempt",
    "IssueCategory",
    "QualityReport",
    "Severity",
]
