# context_assembly/assembler.py
"""Gathers context for one unit and trims it to the token budget."""

from __future__ import annotations

import asyncio
import math
from collections.abc import Callable
from typing import Any

import structlog
from config import settings

from core.errors import ContextAssemblyFailure
from memory.coordinator import MemoryCoordinator
from models.narrative_models import Blueprint, PlotThread

from .context_models import AssembledContext, TruncationStep
from .similarity import (
    LexicalSimilarityFinder,
    SimilarUnitFinder,
    blueprint_query_text,
)

logger = structlog.get_logger(__name__)

BYTES_PER_TOKEN = 4
MAX_SIMILAR_UNITS = 2
MAX_WINDOW_UNITS = 3
MAX_RELATIONSHIPS = 3
MAX_MENTIONS = 2
MAX_THREADS = 3


def estimate_tokens(context: AssembledContext) -> int:
    """Token proxy: serialized byte length divided by four, rounded up."""
    return math.ceil(len(context.payload_bytes()) / BYTES_PER_TOKEN)


def _cap_similar_units(context: AssembledContext) -> AssembledContext:
    return context.model_copy(
        update={"similar_units": context.similar_units[:MAX_SIMILAR_UNITS]}
    )


def _cap_window(context: AssembledContext) -> AssembledContext:
    # Window is oldest first; keep the most recent units.
    return context.model_copy(update={"window": context.window[-MAX_WINDOW_UNITS:]})


def _cap_entity_details(context: AssembledContext) -> AssembledContext:
    entities = {
        name: profile.model_copy(
            update={
                "relationships": profile.relationships[:MAX_RELATIONSHIPS],
                "recent_mentions": profile.recent_mentions[:MAX_MENTIONS],
            }
        )
        for name, profile in context.entities.items()
    }
    return context.model_copy(update={"entities": entities})


def _cap_threads(context: AssembledContext) -> AssembledContext:
    ranked = sorted(context.plot_threads, key=lambda t: t.tier.rank)
    return context.model_copy(update={"plot_threads": ranked[:MAX_THREADS]})


TRUNCATION_STEPS: list[tuple[str, Callable[[AssembledContext], AssembledContext]]] = [
    ("similar_units", _cap_similar_units),
    ("continuity_window", _cap_window),
    ("entity_details", _cap_entity_details),
    ("plot_threads", _cap_threads),
]


def truncate_to_budget(context: AssembledContext, budget: int) -> AssembledContext:
    """Apply truncation steps in priority order until the estimate fits.

    Never raises: a context still over budget after every step is returned
    with a warning.
    """
    estimate = estimate_tokens(context)
    steps: list[TruncationStep] = []
    for name, step in TRUNCATION_STEPS:
        if estimate <= budget:
            break
        context = step(context)
        estimate = estimate_tokens(context)
        steps.append(TruncationStep(name=name, estimated_tokens_after=estimate))
        logger.debug("Context truncation step", step=name, estimated_tokens=estimate)

    if estimate > budget:
        logger.warning(
            "Context still over budget after all truncation steps",
            estimated_tokens=estimate,
            budget=budget,
            project_id=context.project_id,
            chapter=context.chapter_index,
            unit=context.unit_index,
        )
    return context.model_copy(
        update={"estimated_tokens": estimate, "truncation_steps": steps}
    )


class ContextAssembler:
    """Assemble continuity context from the memory layer."""

    def __init__(
        self,
        memory: MemoryCoordinator,
        similarity_finder: SimilarUnitFinder | None = None,
        token_budget: int | None = None,
        window_size: int | None = None,
        similar_limit: int | None = None,
    ) -> None:
        self.memory = memory
        self.similarity_finder = similarity_finder or LexicalSimilarityFinder(memory)
        self.token_budget = token_budget or settings.CONTEXT_TOKEN_BUDGET
        self.window_size = window_size or settings.CONTEXT_WINDOW_SIZE
        self.similar_limit = (
            settings.SIMILAR_UNITS_LIMIT if similar_limit is None else similar_limit
        )

    async def _fetch_threads(
        self, project_id: str, blueprint: Blueprint
    ) -> list[PlotThread]:
        if blueprint.expected_threads:
            return await self.memory.get_plot_threads(
                project_id, sorted(blueprint.expected_threads)
            )
        threads = await self.memory.get_plot_threads(project_id)
        return [thread for thread in threads if thread.is_open]

    async def assemble(
        self,
        project_id: str,
        chapter_index: int,
        unit_index: int,
        blueprint: Blueprint,
    ) -> AssembledContext:
        """Fetch every context source concurrently, then fit the result to budget.

        Only a failed continuity-window fetch aborts assembly; every other
        source degrades to empty.
        """
        # Over-fetch so units already in the window can be dropped from the similar set.
        similar_fetch_limit = self.similar_limit + self.window_size
        fetches: dict[str, Any] = {
            "window": self.memory.get_recent_units(
                project_id, chapter_index, unit_index, self.window_size, strict=True
            ),
            "entities": self.memory.get_entities(
                project_id, sorted(blueprint.expected_entities)
            ),
            "plot_threads": self._fetch_threads(project_id, blueprint),
            "location": self.memory.get_location(project_id, blueprint.location),
            "entity_roster": self.memory.get_entity_roster(project_id),
            "known_locations": self.memory.get_known_locations(project_id),
            "similar_units": self.similarity_finder.find(
                project_id, blueprint, similar_fetch_limit
            ),
            "research_notes": self.memory.get_research_notes(
                project_id, blueprint_query_text(blueprint)
            ),
        }
        names = list(fetches)
        results = await asyncio.gather(*fetches.values(), return_exceptions=True)
        outcome = dict(zip(names, results, strict=True))

        window = outcome.pop("window")
        if isinstance(window, BaseException):
            logger.error(
                "Continuity window fetch failed",
                project_id=project_id,
                chapter=chapter_index,
                unit=unit_index,
                error=str(window),
            )
            raise ContextAssemblyFailure(
                f"Continuity window fetch failed: {window}",
                context={"project_id": project_id, "chapter": chapter_index},
            ) from window

        empty: dict[str, Any] = {
            "entities": {},
            "plot_threads": [],
            "location": None,
            "entity_roster": {},
            "known_locations": [],
            "similar_units": [],
            "research_notes": [],
        }
        degraded: list[str] = []
        for name, result in outcome.items():
            if isinstance(result, BaseException):
                logger.warning(
                    "Optional context fetch failed. Continuing without it.",
                    source=name,
                    error=str(result),
                )
                degraded.append(name)
                outcome[name] = empty[name]

        window_ids = {unit.unit_id for unit in window}
        similar = [
            s
            for s in outcome["similar_units"]
            if s.unit_id not in window_ids
            and (s.chapter_index, s.unit_index) != (chapter_index, unit_index)
        ][: self.similar_limit]

        context = AssembledContext(
            project_id=project_id,
            chapter_index=chapter_index,
            unit_index=unit_index,
            window=window,
            entities=outcome["entities"],
            plot_threads=outcome["plot_threads"],
            location=outcome["location"],
            similar_units=similar,
            entity_roster=outcome["entity_roster"],
            known_locations=outcome["known_locations"],
            research_notes=outcome["research_notes"],
            degraded_sources=degraded,
        )
        context = truncate_to_budget(context, self.token_budget)
        logger.info(
            "Assembled context",
            project_id=project_id,
            chapter=chapter_index,
            unit=unit_index,
            estimated_tokens=context.estimated_tokens,
            truncation_steps=[step.name for step in context.truncation_steps],
        )
        return context
