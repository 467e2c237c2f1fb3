"""Tokenizing and matching helpers shared by the evaluators."""

import re
from collections.abc import Iterable

WORD_RE = re.compile(r"\b\w+\b")
SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")
CAPITALIZED_RE = re.compile(r"\b[A-Z][a-z]+\b")


def words(text: str) -> list[str]:
    """Lowercased word tokens."""
    return WORD_RE.findall(text.lower())


def count_words(text: str) -> int:
    return len(text.split())


def split_sentences(text: str) -> list[str]:
    """Split on terminal punctuation, dropping empty fragments."""
    return [s.strip() for s in SENTENCE_SPLIT_RE.split(text) if s.strip()]


def _name_pattern(name: str) -> re.Pattern[str]:
    return re.compile(rf"(?<!\w){re.escape(name)}(?!\w)")


def mentions_name(text: str, name: str) -> bool:
    """Case-sensitive whole-word match for a proper name."""
    if not name.strip():
        return False
    return _name_pattern(name).search(text) is not None


def names_in_text(text: str, names: Iterable[str]) -> list[str]:
    """Return the subset of ``names`` mentioned in ``text``, sorted."""
    return sorted({name for name in names if mentions_name(text, name)})


def contains_phrase(text: str, phrase: str) -> bool:
    """Case-insensitive substring check."""
    return bool(phrase.strip()) and phrase.lower() in text.lower()


def capitalized_words(text: str) -> set[str]:
    """Capitalized words that do not open a sentence."""
    found: set[str] = set()
    for sentence in split_sentences(text):
        tokens = sentence.split()
        for token in tokens[1:]:
            match = CAPITALIZED_RE.fullmatch(token.strip("\"'“”‘’,;:()"))
            if match:
                found.add(match.group(0))
    return found
