# quality/detectability.py
"""Statistical estimate of how machine-written a passage reads (lower is better)."""

from __future__ import annotations

import math
from collections import Counter

import numpy as np

from models.quality_models import DetectabilityMetrics
from utils.text_processing import split_sentences, words

from .scoring import clamp_score

METRIC_WEIGHT = 0.25


def vocabulary_diversity(tokens: list[str]) -> float:
    """Type/token ratio."""
    if not tokens:
        return 0.0
    return len(set(tokens)) / len(tokens)


def sentence_entropy(lengths: np.ndarray) -> float:
    """Variance of sentence word counts normalised by the squared mean, capped at 1."""
    if lengths.size == 0:
        return 0.0
    mean = float(lengths.mean())
    if mean == 0:
        return 0.0
    return min(1.0, float(lengths.var()) / mean**2)


def perplexity_proxy(tokens: list[str]) -> float:
    """Inverse log of the mean word frequency, capped at 1."""
    if not tokens:
        return 0.0
    frequencies = Counter(tokens)
    mean_frequency = len(tokens) / len(frequencies)
    return min(1.0, 1.0 / math.log(mean_frequency + 1))


def burstiness(lengths: np.ndarray) -> float:
    """Coefficient of variation of sentence lengths; zero below two sentences."""
    if lengths.size < 2:
        return 0.0
    mean = float(lengths.mean())
    if mean == 0:
        return 0.0
    return min(1.0, float(lengths.std()) / mean)


def analyze_detectability(text: str) -> DetectabilityMetrics:
    tokens = words(text)
    lengths = np.array(
        [len(sentence.split()) for sentence in split_sentences(text)], dtype=np.float64
    )
    return DetectabilityMetrics(
        vocabulary_diversity=vocabulary_diversity(tokens),
        sentence_entropy=sentence_entropy(lengths),
        perplexity_proxy=perplexity_proxy(tokens),
        burstiness=burstiness(lengths),
    )


def detectability_score(metrics: DetectabilityMetrics) -> float:
    total = sum(
        METRIC_WEIGHT * (1.0 - value)
        for value in (
            metrics.vocabulary_diversity,
            metrics.sentence_entropy,
            metrics.perplexity_proxy,
            metrics.burstiness,
        )
    )
    return round(clamp_score(100.0 * total), 4)
