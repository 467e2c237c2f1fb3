# quality/scoring.py
"""Score formulas shared by the evaluator and the orchestrator."""

from __future__ import annotations

from collections.abc import Iterable

from models.quality_models import ContinuityIssue


def clamp_score(value: float) -> float:
    return max(0.0, min(100.0, float(value)))


def continuity_score(issues: Iterable[ContinuityIssue]) -> float:
    """``max(0, 100 - sum of severity weights)``; an empty list scores 100."""
    penalty = sum(issue.severity.weight for issue in issues)
    return clamp_score(100 - penalty)
