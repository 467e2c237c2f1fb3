# core/errors.py
"""Exception hierarchy for the generation core."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:  # pragma: no cover - type hints
    from models.quality_models import ContinuityIssue, GenerationAttempt


class BeatweaverError(Exception):
    """Base exception for all generation core errors."""

    @property
    def retries(self) -> int:
        return len(self.attempts)

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}
        # Filled in by the orchestrator when the error ends a generation run.
        self.attempts: list[GenerationAttempt] = []


class ConfigurationFailure(BeatweaverError):
    """A required collaborator or setting is missing."""


class GenerationServiceFailure(BeatweaverError):
    """The external generation or research service errored or timed out."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context)
        self.status_code = status_code


class StorageWriteFailure(BeatweaverError):
    """A required backend write failed."""

    def __init__(
        self,
        message: str,
        backends: list[str],
        operation: str,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context)
        self.backends = backends
        self.operation = operation


class StorageReadFailure(BeatweaverError):
    """A backend read failed where an empty result is not acceptable."""

    def __init__(
        self, message: str, backend: str, context: dict[str, Any] | None = None
    ) -> None:
        super().__init__(message, context)
        self.backend = backend


class ContextAssemblyFailure(BeatweaverError):
    """The mandatory continuity window could not be fetched."""


class DeadlineExceeded(BeatweaverError):
    """A chapter ran out of time; units accepted before it are kept."""


class QualityGateFailure(BeatweaverError):
    """Generated text never cleared the quality gates.

    Carries the full attempt history and the last attempt's issues and scores.
    """

    def __init__(
        self,
        message: str,
        attempts: list[GenerationAttempt],
        issues: list[ContinuityIssue],
        continuity_score: float,
        detectability_score: float,
    ) -> None:
        super().__init__(
            message,
            {
                "attempts": len(attempts),
                "continuity_score": continuity_score,
                "detectability_score": detectability_score,
            },
        )
        self.attempts = attempts
        self.issues = issues
        self.continuity_score = continuity_score
        self.detectability_score = detectability_score


class ContinuityFailure(QualityGateFailure):
    """Critical or high continuity issues survived every attempt."""


class DetectabilityFailure(QualityGateFailure):
    """The detectability score never dropped to the threshold."""
