import structlog
from collections import Counter
from collections.abc import Sequence
from typing import Optional

import numpy as np

from .text_processing import words

logger = structlog.get_logger(__name__)

# Common function words carry no style or topic signal.
STOPWORDS = frozenset(
    """a an and are as at be but by for from had has have he her his i in is it
    its of on or she that the their them they this to was were with you""".split()
)


def numpy_cosine_similarity(
    vec1: Optional[np.ndarray], vec2: Optional[np.ndarray]
) -> float:
    """Calculate cosine similarity between two numpy vectors."""
    if vec1 is None or vec2 is None:
        return 0.0
    try:
        v1 = np.asarray(vec1, dtype=np.float32).flatten()
        v2 = np.asarray(vec2, dtype=np.float32).flatten()
    except ValueError as e:
        logger.warning("Cosine similarity: could not convert input", error=str(e))
        return 0.0
    if v1.shape != v2.shape:
        logger.warning(
            "Cosine similarity: shape mismatch", left=v1.shape, right=v2.shape
        )
        return 0.0
    if v1.size == 0:
        return 0.0
    norm_v1 = np.linalg.norm(v1)
    norm_v2 = np.linalg.norm(v2)
    if norm_v1 == 0.0 or norm_v2 == 0.0:
        return 0.0
    similarity = np.dot(v1, v2) / (norm_v1 * norm_v2)
    return float(np.clip(similarity, -1.0, 1.0))


def term_frequency_vectors(texts: Sequence[str]) -> np.ndarray:
    """Term-frequency matrix (one row per text) over a shared vocabulary."""
    counts = [
        Counter(w for w in words(text) if w not in STOPWORDS) for text in texts
    ]
    vocabulary = sorted(set().union(*counts)) if counts else []
    index = {term: i for i, term in enumerate(vocabulary)}
    matrix = np.zeros((len(texts), len(vocabulary)), dtype=np.float32)
    for row, counter in enumerate(counts):
        for term, count in counter.items():
            matrix[row, index[term]] = count
    return matrix


def rank_by_similarity(query: str, candidates: Sequence[str]) -> list[float]:
    """Cosine similarity of each candidate's term vector to the query's."""
    if not candidates:
        return []
    matrix = term_frequency_vectors([query, *candidates])
    query_vec = matrix[0]
    return [numpy_cosine_similarity(query_vec, row) for row in matrix[1:]]
