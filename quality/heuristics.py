# quality/heuristics.py
"""Keyword heuristics behind swappable strategy interfaces.

The continuity checks only depend on the protocols below, so a model-based
detector can replace any of these without touching scoring or orchestration.
"""

from __future__ import annotations

import re
from typing import Protocol

from models.narrative_models import WorldRule

NEUTRAL_TONE = "neutral"

# First match wins, so the order matters.
TONE_PATTERNS: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("angry", re.compile(r"!{2,}|\b(angry|furious|rage|yell)\b", re.IGNORECASE)),
    ("sad", re.compile(r"\b(sad|depressed|tears|crying|sorrow)\b", re.IGNORECASE)),
    ("happy", re.compile(r"\b(happy|joy|laugh|smile|delight)\b", re.IGNORECASE)),
    ("tense", re.compile(r"\b(tense|nervous|anxious|fear|suspense)\b", re.IGNORECASE)),
    ("dark", re.compile(r"\b(dark|grim|ominous|dread)\b", re.IGNORECASE)),
)

TONE_EQUIVALENCE_GROUPS: tuple[frozenset[str], ...] = (
    frozenset({"angry", "furious", "tense"}),
    frozenset({"sad", "melancholic", "somber"}),
    frozenset({"happy", "joyful", "cheerful"}),
    frozenset({"dark", "ominous", "grim"}),
)

RESOLUTION_KEYWORDS = (
    "finally",
    "resolved",
    "solved",
    "ended",
    "concluded",
    "finished",
    "complete",
)
RESOLUTION_WINDOW_CHARS = 50

# Words that suggest a rule category is in play in the text.
RULE_TRIGGERS: dict[str, tuple[str, ...]] = {
    "magic": ("magic", "spell", "enchant", "sorcery"),
    "technology": ("machine", "device", "engine", "circuit"),
    "physics": ("gravity", "teleport", "faster than light"),
    "society": ("law", "decree", "custom", "forbidden"),
}


def tones_match(detected: str, target: str) -> bool:
    detected = detected.strip().lower()
    target = target.strip().lower()
    if detected == target:
        return True
    return any(detected in group and target in group for group in TONE_EQUIVALENCE_GROUPS)


class ToneDetector(Protocol):
    def detect(self, text: str) -> str: ...


class ResolutionDetector(Protocol):
    def suggests_resolution(self, text: str, thread_name: str) -> bool: ...


class WorldRuleChecker(Protocol):
    def violated_limitations(self, text: str, rule: WorldRule) -> list[str]: ...


class KeywordToneDetector:
    def detect(self, text: str) -> str:
        for tone, pattern in TONE_PATTERNS:
            if pattern.search(text):
                return tone
        return NEUTRAL_TONE


class KeywordResolutionDetector:
    """A resolution keyword close to the thread name suggests the thread closed."""

    def __init__(
        self,
        keywords: tuple[str, ...] = RESOLUTION_KEYWORDS,
        window_chars: int = RESOLUTION_WINDOW_CHARS,
    ) -> None:
        self.keywords = keywords
        self.window_chars = window_chars

    def suggests_resolution(self, text: str, thread_name: str) -> bool:
        if not thread_name.strip():
            return False
        name = re.escape(thread_name)
        window = f".{{0,{self.window_chars}}}"
        for keyword in self.keywords:
            # Whole words only: "intended" is not "ended".
            kw = rf"\b{re.escape(keyword)}\b"
            pattern = re.compile(
                rf"{kw}{window}{name}|{name}{window}{kw}", re.IGNORECASE | re.DOTALL
            )
            if pattern.search(text):
                return True
        return False


class KeywordWorldRuleChecker:
    """Flags limitations never acknowledged while the rule's category is in play.

    Unsound by nature: mentioning a limitation is taken as respecting it.
    """

    def __init__(self, triggers: dict[str, tuple[str, ...]] | None = None) -> None:
        self.triggers = triggers or RULE_TRIGGERS

    def violated_limitations(self, text: str, rule: WorldRule) -> list[str]:
        lowered = text.lower()
        category = rule.category.lower()
        triggers = self.triggers.get(category, (category,))
        if not any(trigger in lowered for trigger in triggers):
            return []
        return [
            limitation
            for limitation in rule.limitations
            if limitation.strip() and limitation.lower() not in lowered
        ]
