"""Context assembly for narrative unit generation."""

from .assembler import ContextAssembler, estimate_tokens, truncate_to_budget
from .context_models import AssembledContext, SimilarUnit, TruncationStep
from .similarity import (
    LexicalSimilarityFinder,
    SimilarUnitFinder,
    VectorSimilarityFinder,
)

__all__ = [
    "ContextAssembler",
    "estimate_tokens",
    "truncate_to_budget",
    "AssembledContext",
    "SimilarUnit",
    "TruncationStep",
    "LexicalSimilarityFinder",
    "SimilarUnitFinder",
    "VectorSimilarityFinder",
]
