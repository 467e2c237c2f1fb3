"""Continuity and detectability evaluation of generated text."""

from .continuity_checks import CheckStrategies
from .detectability import analyze_detectability, detectability_score
from .evaluator import QualityEvaluator
from .scoring import continuity_score

__all__ = [
    "CheckStrategies",
    "analyze_detectability",
    "detectability_score",
    "QualityEvaluator",
    "continuity_score",
]
