"""Post-processing applied to generated text before it is evaluated."""

from __future__ import annotations

import re
from typing import Protocol

import structlog
from rapidfuzz import fuzz

logger = structlog.get_logger(__name__)

# Words that read as machine-written, each with a plainer stand-in.
AI_TYPICAL_WORDS: dict[str, str] = {
    "delve": "dig",
    "utilize": "use",
    "leverage": "use",
    "tapestry": "mix",
    "meticulous": "careful",
    "intricate": "detailed",
    "robust": "sturdy",
    "paramount": "vital",
    "testament": "proof",
    "nuanced": "subtle",
    "multifaceted": "complex",
    "realm": "world",
    "embark": "set out",
    "unveil": "reveal",
    "epitome": "model",
    "quintessential": "classic",
    "moreover": "also",
    "furthermore": "also",
    "additionally": "also",
}

# Stock narrative phrases matched fuzzily, with a single replacement each.
STOCK_PHRASES: dict[str, str] = {
    "in the silence that followed": "the silence stretched",
    "the air was thick with": "the air carried",
    "a sense of dread washed over": "dread settled on",
    "let out a breath they didn't realize they were holding": "exhaled",
    "the world seemed to hold its breath": "everything went still",
    "it was a sight to behold": "it stopped them short",
    "little did they know": "they had no way of knowing",
    "couldn't help but feel": "felt",
    "needless to say,": "",
    "to say the least": "",
}

DEFAULT_SIMILARITY_THRESHOLD = 88.0
MIN_PHRASE_COVERAGE = 0.9
MAX_SEGMENT_SLACK = 10

THINK_TAGS = ("think", "thinking", "reasoning", "analysis", "plan")
PREAMBLE_PATTERNS = (
    r"^\s*(Okay,\s*)?(Sure,\s*)?(Here's|Here is)\s+(the|your)\s+[\w\s]+?:\s*",
    r"^\s*Certainly! Here is the text:\s*",
    r"^\s*(?:Output|Result|Response)\s*:\s*",
)
SIGN_OFF_PATTERNS = (
    r"\s*Let me know if you (need|have) any(thing else| other questions| further revisions)\b.*$",
    r"\s*I hope this (meets your expectations|helps|is what you were looking for)\b.*$",
)
SENTENCE_BOUNDARY_RE = re.compile(r"(?<=[.!?])\s+")
SENTENCE_ENDING_RE = re.compile(r"(.*?)([.!?]*[\"'”’)]*)\Z", re.DOTALL)


class PostProcessor(Protocol):
    async def process(self, text: str) -> str: ...


def _match_case(original: str, replacement: str) -> str:
    if original.isupper() and len(original) > 1:
        return replacement.upper()
    if original[:1].isupper():
        return replacement[:1].upper() + replacement[1:]
    return replacement


def strip_response_artifacts(text: str) -> str:
    """Remove reasoning blocks, code fences, preambles and sign-offs."""
    cleaned = text
    for tag in THINK_TAGS:
        cleaned = re.sub(
            rf"<\s*{tag}\s*>.*?<\s*/\s*{tag}\s*>",
            "",
            cleaned,
            flags=re.DOTALL | re.IGNORECASE,
        )
    cleaned = re.sub(
        r"```(?:[a-zA-Z0-9_-]+)?\s*(.*?)\s*```", r"\1", cleaned, flags=re.DOTALL
    )
    for pattern in PREAMBLE_PATTERNS:
        cleaned = re.sub(pattern, "", cleaned, count=1, flags=re.IGNORECASE)
    for pattern in SIGN_OFF_PATTERNS:
        cleaned = re.sub(pattern, "", cleaned, flags=re.IGNORECASE | re.DOTALL)
    return cleaned.strip()


def replace_ai_words(text: str) -> tuple[str, int]:
    """Swap AI-typical words for plainer ones, keeping capitalisation."""
    replacements = 0

    def _swap(match: re.Match[str]) -> str:
        nonlocal replacements
        replacements += 1
        return _match_case(match.group(0), AI_TYPICAL_WORDS[match.group(0).lower()])

    pattern = re.compile(
        r"\b(" + "|".join(map(re.escape, AI_TYPICAL_WORDS)) + r")\b", re.IGNORECASE
    )
    return pattern.sub(_swap, text), replacements


def _best_stock_match(
    body: str, threshold: float
) -> tuple[int, int, str] | None:
    best: tuple[float, int, int, str] | None = None
    lowered = body.lower()
    for phrase, replacement in STOCK_PHRASES.items():
        match = fuzz.partial_ratio_alignment(phrase, lowered, score_cutoff=threshold)
        if match is None or match.score < threshold:
            continue
        # A short sentence scores 100 against any phrase it is a piece of.
        if match.src_end - match.src_start < MIN_PHRASE_COVERAGE * len(phrase):
            continue
        if match.dest_end - match.dest_start > len(phrase) + MAX_SEGMENT_SLACK:
            continue
        if best is None or match.score > best[0]:
            best = (match.score, match.dest_start, match.dest_end, replacement)
    if best is None:
        return None
    return best[1], best[2], best[3]


def replace_stock_phrases(
    text: str, threshold: float = DEFAULT_SIMILARITY_THRESHOLD
) -> tuple[str, int]:
    """Rewrite the best-matching stock phrase in each sentence.

    Matching runs on the sentence without its closing punctuation, which is
    put back afterwards.
    """
    replacements = 0
    paragraphs: list[str] = []
    for paragraph in text.split("\n\n"):
        sentences: list[str] = []
        for sentence in SENTENCE_BOUNDARY_RE.split(paragraph):
            body, ending = SENTENCE_ENDING_RE.match(sentence).groups()
            found = _best_stock_match(body, threshold)
            if found is not None:
                start, end, replacement = found
                if replacement:
                    replacement = _match_case(body[start:end], replacement)
                body = re.sub(r"\s{2,}", " ", body[:start] + replacement + body[end:])
                body = body.strip().rstrip(",;:").rstrip()
                if body[:1].islower() and start == 0:
                    body = body[0].upper() + body[1:]
                replacements += 1
                sentence = body + ending if body else ""
            sentences.append(sentence)
        paragraphs.append(" ".join(s for s in sentences if s))
    return "\n\n".join(paragraphs), replacements


class PhraseCleanupPostProcessor:
    """Default post-processor: artifact stripping, then word and phrase cleanup."""

    def __init__(self, threshold: float = DEFAULT_SIMILARITY_THRESHOLD) -> None:
        self.threshold = threshold

    async def process(self, text: str) -> str:
        cleaned = strip_response_artifacts(text)
        cleaned, word_swaps = replace_ai_words(cleaned)
        cleaned, phrase_swaps = replace_stock_phrases(cleaned, self.threshold)
        if word_swaps or phrase_swaps:
            logger.debug(
                "Post-processing replacements",
                words=word_swaps,
                phrases=phrase_swaps,
            )
        return cleaned
