from __future__ import annotations

import asyncio
from collections.abc import Sequence

import structlog

from core.errors import (
    BeatweaverError,
    ContextAssemblyFailure,
    DeadlineExceeded,
    GenerationServiceFailure,
    QualityGateFailure,
)
from models.narrative_models import Blueprint

from .generation_orchestrator import GenerationOrchestrator
from .models import ChapterGenerationResult, UnitGenerationResult, UnitRequest

logger = structlog.get_logger(__name__)

# Failures that end a chapter early but keep the units already accepted.
UNIT_FAILURES = (QualityGateFailure, GenerationServiceFailure, ContextAssemblyFailure)


def _deadline_error(result: ChapterGenerationResult, unit_index: int) -> DeadlineExceeded:
    return DeadlineExceeded(
        f"Chapter {result.chapter_index} deadline passed at unit {unit_index}",
        context={"project_id": result.project_id, "unit_index": unit_index},
    )


class ChapterSequencer:
    """Serialises unit generation within a chapter; chapters run independently."""

    def __init__(self, orchestrator: GenerationOrchestrator) -> None:
        self.orchestrator = orchestrator
        self._locks: dict[tuple[str, int], asyncio.Lock] = {}

    def _lock_for(self, project_id: str, chapter_index: int) -> asyncio.Lock:
        return self._locks.setdefault((project_id, chapter_index), asyncio.Lock())

    @staticmethod
    def _stop(
        result: ChapterGenerationResult, unit_index: int, error: BeatweaverError
    ) -> None:
        logger.error(
            "Chapter stopped at failed unit",
            project_id=result.project_id,
            chapter=result.chapter_index,
            unit=unit_index,
            error=str(error),
            retries=error.retries,
        )
        result.failed_unit_index = unit_index
        result.error = error

    async def generate_unit(
        self, request: UnitRequest, deadline_seconds: float | None = None
    ) -> UnitGenerationResult:
        async with self._lock_for(request.project_id, request.chapter_index):
            return await self.orchestrator.generate_unit(
                request, deadline_seconds=deadline_seconds
            )

    async def generate_chapter(
        self,
        project_id: str,
        chapter_index: int,
        blueprints: Sequence[Blueprint],
        start_unit_index: int = 1,
        deadline_seconds: float | None = None,
    ) -> ChapterGenerationResult:
        """Generate ``blueprints`` in order, stopping at the first unit failure.

        Each unit sees the units accepted before it because acceptance persists
        the unit before the next one assembles its context. ``deadline_seconds``
        bounds the whole chapter; running out of time stops the chapter like a
        failed unit, with a ``DeadlineExceeded`` error.
        """
        result = ChapterGenerationResult(project_id=project_id, chapter_index=chapter_index)
        loop = asyncio.get_running_loop()
        deadline_at = None if deadline_seconds is None else loop.time() + deadline_seconds

        async with self._lock_for(project_id, chapter_index):
            for offset, blueprint in enumerate(blueprints):
                unit_index = start_unit_index + offset
                remaining = None
                if deadline_at is not None:
                    remaining = deadline_at - loop.time()
                request = UnitRequest(
                    project_id=project_id,
                    chapter_index=chapter_index,
                    unit_index=unit_index,
                    blueprint=blueprint,
                )
                if remaining is not None and remaining <= 0:
                    self._stop(result, unit_index, _deadline_error(result, unit_index))
                    break
                try:
                    unit_result = await self.orchestrator.generate_unit(
                        request, deadline_seconds=remaining
                    )
                except TimeoutError:
                    self._stop(result, unit_index, _deadline_error(result, unit_index))
                    break
                except UNIT_FAILURES as exc:
                    self._stop(result, unit_index, exc)
                    break
                result.results.append(unit_result)

        logger.info(
            "Chapter generation finished",
            project_id=project_id,
            chapter=chapter_index,
            accepted=len(result.results),
            completed=result.completed,
            words=result.total_word_count,
        )
        return result

    async def generate_chapters(
        self, jobs: Sequence[tuple[str, int, Sequence[Blueprint]]]
    ) -> list[ChapterGenerationResult]:
        """Run several chapters concurrently; results keep the order of ``jobs``."""
        return list(
            await asyncio.gather(
                *(
                    self.generate_chapter(project_id, chapter_index, blueprints)
                    for project_id, chapter_index, blueprints in jobs
                )
            )
        )
