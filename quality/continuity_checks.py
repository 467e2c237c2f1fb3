# quality/continuity_checks.py
"""Independent continuity checks over (text, context, blueprint).

Every check is side-effect free and returns its own issue list; the evaluator
runs them concurrently and concatenates the results.
"""

from __future__ import annotations

import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from context_assembly.context_models import AssembledContext
from models.narrative_models import Blueprint, PlotThread, ThreadStatus
from models.quality_models import ContinuityIssue, IssueCategory, Severity
from utils.text_processing import contains_phrase, mentions_name, names_in_text, words

from .heuristics import (
    KeywordResolutionDetector,
    KeywordToneDetector,
    KeywordWorldRuleChecker,
    ResolutionDetector,
    ToneDetector,
    WorldRuleChecker,
    tones_match,
)

SPEECH_VERBS = "said|asked|replied|answered|whispered"
_QUOTE_OPEN = "[\"“]"
_QUOTE_CLOSE = "[\"”]"
DIALOGUE_AFTER_SPEAKER_RE = re.compile(
    rf"\b([A-Z]\w*)\s+(?:{SPEECH_VERBS}),?\s+{_QUOTE_OPEN}([^\"“”]+){_QUOTE_CLOSE}"
)
DIALOGUE_BEFORE_SPEAKER_RE = re.compile(
    rf"{_QUOTE_OPEN}([^\"“”]+){_QUOTE_CLOSE},?\s+([A-Z]\w*)\s+(?:{SPEECH_VERBS})\b"
)
CONTRACTION_RE = re.compile(r"\b\w+['’](m|re|t|s|ll|ve|d)\b", re.IGNORECASE)

ADVANCED_VOCABULARY = {"advanced", "sophisticated", "archaic"}
SHORT_WORD_AVERAGE = 4.0
LONG_WORD_AVERAGE = 6.0
CONTRACTION_MIN_WORDS = 10


@dataclass
class CheckStrategies:
    tone: ToneDetector = field(default_factory=KeywordToneDetector)
    resolution: ResolutionDetector = field(default_factory=KeywordResolutionDetector)
    world_rules: WorldRuleChecker = field(default_factory=KeywordWorldRuleChecker)


ContinuityCheck = Callable[
    [str, AssembledContext, Blueprint, CheckStrategies],
    Awaitable[list[ContinuityIssue]],
]


def known_entity_names(context: AssembledContext, blueprint: Blueprint) -> set[str]:
    return set(context.entity_roster) | set(context.entities) | set(
        blueprint.expected_entities
    )


def thread_is_referenced(text: str, thread: PlotThread) -> bool:
    if contains_phrase(text, thread.name):
        return True
    return any(contains_phrase(text, event) for event in thread.key_events)


async def check_entity_presence(
    text: str,
    context: AssembledContext,
    blueprint: Blueprint,
    strategies: CheckStrategies,
) -> list[ContinuityIssue]:
    issues: list[ContinuityIssue] = []
    for name in sorted(blueprint.expected_entities):
        if not mentions_name(text, name):
            issues.append(
                ContinuityIssue(
                    category=IssueCategory.ENTITY,
                    severity=Severity.HIGH,
                    message=f'Expected entity "{name}" does not appear in the text',
                    suggested_fix=f"Include {name} in this scene",
                )
            )
    candidates = set(context.entity_roster) | set(context.entities)
    for name in names_in_text(text, candidates - blueprint.expected_entities):
        issues.append(
            ContinuityIssue(
                category=IssueCategory.ENTITY,
                severity=Severity.MEDIUM,
                message=f'Unexpected entity "{name}" appears in the text',
                suggested_fix=f"Remove {name} or add them to the scene's expected entities",
            )
        )
    return issues


async def check_lifecycle_conflicts(
    text: str,
    context: AssembledContext,
    blueprint: Blueprint,
    strategies: CheckStrategies,
) -> list[ContinuityIssue]:
    return [
        ContinuityIssue(
            category=IssueCategory.ENTITY,
            severity=Severity.CRITICAL,
            message=f'"{name}" is deceased but appears in the text',
            suggested_fix=f"Remove {name} from the scene or refer to them only in memory",
        )
        for name in names_in_text(text, context.deceased_entities)
    ]


async def check_location(
    text: str,
    context: AssembledContext,
    blueprint: Blueprint,
    strategies: CheckStrategies,
) -> list[ContinuityIssue]:
    expected = blueprint.location.strip()
    if not expected:
        return []
    # Locations whose name sits inside the expected one ("Harbor" in "Harbor Gate")
    # are not rivals.
    rivals = [
        loc
        for loc in context.known_locations
        if loc.strip() and loc.lower() not in expected.lower()
    ]
    issues = [
        ContinuityIssue(
            category=IssueCategory.LOCATION,
            severity=Severity.HIGH,
            message=f'Text mentions "{other}" but the scene takes place at "{expected}"',
            suggested_fix=f"Keep the scene at {expected} or drop the reference to {other}",
        )
        for other in names_in_text(text, rivals)
    ]
    if not issues and not mentions_name(text, expected):
        issues.append(
            ContinuityIssue(
                category=IssueCategory.LOCATION,
                severity=Severity.LOW,
                message=f'Location "{expected}" is never established',
                suggested_fix=f"Establish that the scene takes place at {expected}",
                auto_fixable=True,
            )
        )
    return issues


async def check_thread_advancement(
    text: str,
    context: AssembledContext,
    blueprint: Blueprint,
    strategies: CheckStrategies,
) -> list[ContinuityIssue]:
    issues: list[ContinuityIssue] = []
    for thread_id in sorted(blueprint.expected_threads):
        thread = context.thread_by_id(thread_id)
        if thread is None or not thread.is_open:
            continue
        if not thread_is_referenced(text, thread):
            issues.append(
                ContinuityIssue(
                    category=IssueCategory.PLOT,
                    severity=Severity.MEDIUM,
                    message=f'Active thread "{thread.name}" is not advanced',
                    suggested_fix=f"Advance the {thread.name} thread in this scene",
                )
            )
    for thread in context.plot_threads:
        if thread.status == ThreadStatus.RESOLVED:
            continue
        if strategies.resolution.suggests_resolution(text, thread.name):
            issues.append(
                ContinuityIssue(
                    category=IssueCategory.PLOT,
                    severity=Severity.HIGH,
                    message=f'Thread "{thread.name}" appears resolved prematurely',
                    suggested_fix=f"Keep the {thread.name} thread open; it is not due to resolve here",
                )
            )
    return issues


async def check_world_rules(
    text: str,
    context: AssembledContext,
    blueprint: Blueprint,
    strategies: CheckStrategies,
) -> list[ContinuityIssue]:
    if context.location is None:
        return []
    issues: list[ContinuityIssue] = []
    for rule in context.location.world_rules:
        for limitation in strategies.world_rules.violated_limitations(text, rule):
            issues.append(
                ContinuityIssue(
                    category=IssueCategory.WORLD,
                    severity=Severity.MEDIUM,
                    message=(
                        f"{rule.category.capitalize()} use may violate rule: "
                        f"{rule.description or rule.category}"
                    ),
                    suggested_fix=f"Respect the limitation: {limitation}",
                )
            )
    return issues


async def check_tone(
    text: str,
    context: AssembledContext,
    blueprint: Blueprint,
    strategies: CheckStrategies,
) -> list[ContinuityIssue]:
    detected = strategies.tone.detect(text)
    if tones_match(detected, blueprint.target_tone):
        return []
    return [
        ContinuityIssue(
            category=IssueCategory.TONE,
            severity=Severity.MEDIUM,
            message=f"Text reads as {detected} but the scene calls for {blueprint.target_tone}",
            suggested_fix=f"Shift the emotional tone toward {blueprint.target_tone}",
        )
    ]


def extract_dialogue(text: str) -> list[tuple[str, str]]:
    """(speaker, line) pairs for attributed dialogue."""
    segments = [
        (match.group(2), match.group(1))
        for match in DIALOGUE_BEFORE_SPEAKER_RE.finditer(text)
    ]
    segments.extend(
        (match.group(1), match.group(2))
        for match in DIALOGUE_AFTER_SPEAKER_RE.finditer(text)
    )
    return segments


async def check_voice(
    text: str,
    context: AssembledContext,
    blueprint: Blueprint,
    strategies: CheckStrategies,
) -> list[ContinuityIssue]:
    issues: list[ContinuityIssue] = []
    for speaker, line in extract_dialogue(text):
        profile = context.entities.get(speaker)
        if profile is None:
            continue
        tokens = words(line)
        if not tokens:
            continue
        voice = profile.voice
        average = sum(len(token) for token in tokens) / len(tokens)
        level = voice.vocabulary_level.lower()
        if level in ADVANCED_VOCABULARY and average < SHORT_WORD_AVERAGE:
            issues.append(
                ContinuityIssue(
                    category=IssueCategory.VOICE,
                    severity=Severity.LOW,
                    message=(
                        f'"{speaker}" speaks in simple words (avg {average:.1f} letters) '
                        f"but has a {level} vocabulary"
                    ),
                    suggested_fix=f"Use richer vocabulary for {speaker}",
                )
            )
        if level == "simple" and average > LONG_WORD_AVERAGE:
            issues.append(
                ContinuityIssue(
                    category=IssueCategory.VOICE,
                    severity=Severity.MEDIUM,
                    message=(
                        f'"{speaker}" uses complex words (avg {average:.1f} letters) '
                        "but has a simple vocabulary"
                    ),
                    suggested_fix=f"Simplify {speaker}'s vocabulary",
                )
            )
        has_contractions = CONTRACTION_RE.search(line) is not None
        if (
            voice.uses_contractions
            and not has_contractions
            and len(line.split()) > CONTRACTION_MIN_WORDS
        ):
            issues.append(
                ContinuityIssue(
                    category=IssueCategory.VOICE,
                    severity=Severity.LOW,
                    message=f'"{speaker}" usually uses contractions but none appear',
                    suggested_fix=f"Add contractions to {speaker}'s dialogue",
                    auto_fixable=True,
                )
            )
        elif not voice.uses_contractions and has_contractions:
            issues.append(
                ContinuityIssue(
                    category=IssueCategory.VOICE,
                    severity=Severity.LOW,
                    message=f'"{speaker}" never uses contractions but does here',
                    suggested_fix=f"Expand the contractions in {speaker}'s dialogue",
                    auto_fixable=True,
                )
            )
    return issues


DEFAULT_CHECKS: tuple[ContinuityCheck, ...] = (
    check_entity_presence,
    check_lifecycle_conflicts,
    check_location,
    check_thread_advancement,
    check_world_rules,
    check_tone,
    check_voice,
)
