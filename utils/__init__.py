"""General utility functions for the generation core."""

from .logging import setup_logging
from .similarity import numpy_cosine_similarity, rank_by_similarity
from .text_processing import (
    count_words,
    mentions_name,
    names_in_text,
    split_sentences,
    words,
)

__all__ = [
    "setup_logging",
    "numpy_cosine_similarity",
    "rank_by_similarity",
    "count_words",
    "mentions_name",
    "names_in_text",
    "split_sentences",
    "words",
]
