# quality/evaluator.py
"""Scores a generated unit against its context and blueprint."""

from __future__ import annotations

import asyncio
import re
from collections.abc import Callable, Sequence

import structlog

from context_assembly.context_models import AssembledContext
from models.narrative_models import Blueprint
from models.quality_models import DetectabilityMetrics, QualityReport
from utils.text_processing import capitalized_words, names_in_text, words

from .continuity_checks import (
    DEFAULT_CHECKS,
    CheckStrategies,
    ContinuityCheck,
    known_entity_names,
    thread_is_referenced,
)
from .detectability import analyze_detectability, detectability_score
from .scoring import continuity_score

logger = structlog.get_logger(__name__)

WORD_COUNT_TOLERANCE = 0.2
FORESHADOWING_RE = re.compile(r"\b(soon|later|eventually|one day)\b", re.IGNORECASE)


class QualityEvaluator:
    """Runs every continuity check plus the detectability analysis.

    Deterministic: identical inputs always yield identical issues and scores.
    """

    def __init__(
        self,
        strategies: CheckStrategies | None = None,
        checks: Sequence[ContinuityCheck] = DEFAULT_CHECKS,
        detectability_analyzer: Callable[[str], DetectabilityMetrics] = analyze_detectability,
    ) -> None:
        self.strategies = strategies or CheckStrategies()
        self.checks = tuple(checks)
        self.detectability_analyzer = detectability_analyzer

    async def evaluate(
        self, text: str, context: AssembledContext, blueprint: Blueprint
    ) -> QualityReport:
        results = await asyncio.gather(
            *(check(text, context, blueprint, self.strategies) for check in self.checks)
        )
        issues = [issue for check_issues in results for issue in check_issues]
        metrics = self.detectability_analyzer(text)
        report = QualityReport(
            issues=issues,
            warnings=self.warnings(text, context, blueprint),
            continuity_score=continuity_score(issues),
            detectability_score=detectability_score(metrics),
            metrics=metrics,
            detected_tone=self.strategies.tone.detect(text),
            entities_found=names_in_text(text, known_entity_names(context, blueprint)),
            threads_referenced=sorted(
                thread.thread_id
                for thread in context.plot_threads
                if thread_is_referenced(text, thread)
            ),
        )
        logger.debug(
            "Evaluated unit",
            chapter=context.chapter_index,
            unit=context.unit_index,
            issues=len(issues),
            continuity_score=report.continuity_score,
            detectability_score=report.detectability_score,
        )
        return report

    def warnings(
        self, text: str, context: AssembledContext, blueprint: Blueprint
    ) -> list[str]:
        """Advisory notes that never affect the scores."""
        notes: list[str] = []
        known = known_entity_names(context, blueprint) | set(context.known_locations)
        if blueprint.location:
            known.add(blueprint.location)
        known_tokens = {token for name in known for token in name.split()}
        new_names = sorted(capitalized_words(text) - known_tokens)
        if new_names:
            notes.append(f"New names introduced: {', '.join(new_names)}")
        if FORESHADOWING_RE.search(text):
            notes.append("Text may contain foreshadowing worth recording")
        if blueprint.target_word_count > 0:
            actual = len(words(text))
            deviation = abs(actual - blueprint.target_word_count) / blueprint.target_word_count
            if deviation > WORD_COUNT_TOLERANCE:
                notes.append(
                    f"Word count {actual} differs from target "
                    f"{blueprint.target_word_count} by {round(deviation * 100)}%"
                )
        return notes
