# orchestration/cli_runner.py
"""Command-line runner: generate one chapter from a blueprint file."""

from __future__ import annotations

import asyncio
from pathlib import Path

import structlog
from config import settings
from pydantic import TypeAdapter, ValidationError

from core.errors import BeatweaverError
from models.narrative_models import Blueprint
from utils.logging import setup_logging

from .bootstrap import create_runtime_from_settings
from .models import ChapterGenerationResult

logger = structlog.get_logger(__name__)

_BLUEPRINTS = TypeAdapter(list[Blueprint])


def load_blueprints(path: str | Path) -> list[Blueprint]:
    """Read a JSON array of blueprints."""
    return _BLUEPRINTS.validate_json(Path(path).read_text(encoding="utf-8"))


def write_chapter(result: ChapterGenerationResult, output_dir: str | Path) -> Path:
    """Write accepted units as one text file per chapter."""
    directory = Path(output_dir) / result.project_id
    directory.mkdir(parents=True, exist_ok=True)
    target = directory / f"chapter_{result.chapter_index:03d}.txt"
    target.write_text(
        "\n\n".join(unit.content for unit in result.units) + "\n", encoding="utf-8"
    )
    return target


async def _run(
    project_id: str,
    chapter_index: int,
    blueprint_path: str,
    deadline_seconds: float | None,
) -> ChapterGenerationResult:
    blueprints = load_blueprints(blueprint_path)
    async with create_runtime_from_settings() as runtime:
        result = await runtime.sequencer.generate_chapter(
            project_id,
            chapter_index,
            blueprints,
            deadline_seconds=deadline_seconds,
        )
    path = write_chapter(result, settings.BASE_OUTPUT_DIR)
    logger.info(
        "Chapter written",
        path=str(path),
        units=len(result.results),
        completed=result.completed,
        average_continuity=round(result.average_continuity_score, 1),
        average_detectability=round(result.average_detectability_score, 2),
    )
    return result


def run(
    project_id: str,
    chapter_index: int,
    blueprint_path: str,
    deadline_seconds: float | None = None,
) -> int:
    """Set up logging, generate the chapter and return a process exit code."""
    setup_logging()
    try:
        result = asyncio.run(
            _run(project_id, chapter_index, blueprint_path, deadline_seconds)
        )
    except KeyboardInterrupt:
        logger.info("Shutting down due to KeyboardInterrupt")
        return 130
    except (BeatweaverError, TimeoutError, OSError, ValidationError) as err:
        logger.critical("Chapter generation aborted", error=str(err), exc_info=True)
        return 1
    return 0 if result.completed else 2
