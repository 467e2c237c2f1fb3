from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum, auto
import asyncio

import structlog
from config import settings

from context_assembly.assembler import ContextAssembler
from context_assembly.context_models import AssembledContext
from core.errors import (
    BeatweaverError,
    ConfigurationFailure,
    ContextAssemblyFailure,
    ContinuityFailure,
    DetectabilityFailure,
    GenerationServiceFailure,
)
from core.service_clients import GenerationClient
from memory.coordinator import MemoryCoordinator
from models.narrative_models import Blueprint, NarrativeUnit
from models.quality_models import AttemptOutcome, GenerationAttempt, QualityReport
from models.service_models import GenerationRequest, GenerationResponse
from processing.post_processing import PostProcessor
from prompt_renderer import render_generation_prompt
from quality.evaluator import QualityEvaluator
from utils.text_processing import count_words

from .models import RetryPolicy, UnitGenerationResult, UnitRequest

logger = structlog.get_logger(__name__)

GENERATION_TASK = "Generate the next narrative unit following the blueprint and context."
REDUCE_AI_PHRASING = "Reduce AI-typical phrasing"


class UnitState(Enum):
    """States for one unit's generation pipeline."""

    ASSEMBLING = auto()
    GENERATING = auto()
    POST_PROCESSING = auto()
    EVALUATING = auto()
    RETRYING = auto()
    ACCEPTED = auto()
    FAILED = auto()


TERMINAL_STATES = (UnitState.ACCEPTED, UnitState.FAILED)


@dataclass
class UnitRun:
    """Mutable state owned by a single pipeline run."""

    request: UnitRequest
    blueprint: Blueprint
    started_at: float
    deadline_at: float | None = None
    state: UnitState = UnitState.ASSEMBLING
    attempt: int = 1
    history: list[GenerationAttempt] = field(default_factory=list)
    context: AssembledContext | None = None
    response: GenerationResponse | None = None
    content: str = ""
    report: QualityReport | None = None
    pending_directives: list[str] = field(default_factory=list)
    error: BeatweaverError | None = None
    result: UnitGenerationResult | None = None


class GenerationOrchestrator:
    """Drive assemble -> generate -> post-process -> evaluate with corrective retries."""

    def __init__(
        self,
        assembler: ContextAssembler,
        generator: GenerationClient,
        evaluator: QualityEvaluator,
        memory: MemoryCoordinator,
        post_processor: PostProcessor | None = None,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        max_agents: int | None = None,
        generation_timeout_ms: int | None = None,
    ) -> None:
        missing = [
            name
            for name, value in (
                ("assembler", assembler),
                ("generator", generator),
                ("evaluator", evaluator),
                ("memory", memory),
            )
            if value is None
        ]
        if missing:
            raise ConfigurationFailure(
                f"Generation orchestrator is missing: {', '.join(missing)}",
                context={"missing": missing},
            )
        self.assembler = assembler
        self.generator = generator
        self.evaluator = evaluator
        self.memory = memory
        self.post_processor = post_processor
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self.max_agents = max_agents or settings.GENERATION_MAX_AGENTS
        self.generation_timeout_ms = (
            generation_timeout_ms or settings.GENERATION_TIMEOUT_MS
        )

    async def generate_unit(
        self, request: UnitRequest, deadline_seconds: float | None = None
    ) -> UnitGenerationResult:
        """Run one unit to a terminal state.

        Raises ``ContinuityFailure``, ``DetectabilityFailure``,
        ``GenerationServiceFailure`` or ``ContextAssemblyFailure`` once attempts
        are exhausted (each carrying the attempt history), ``StorageWriteFailure``
        immediately, and ``TimeoutError`` when ``deadline_seconds`` elapses.
        """
        loop = asyncio.get_running_loop()
        run = UnitRun(
            request=request, blueprint=request.blueprint, started_at=loop.time()
        )
        if deadline_seconds is None:
            return await self._drive(run)
        run.deadline_at = run.started_at + deadline_seconds
        async with asyncio.timeout(deadline_seconds):
            return await self._drive(run)

    async def _drive(self, run: UnitRun) -> UnitGenerationResult:
        handlers = {
            UnitState.ASSEMBLING: self._assemble,
            UnitState.GENERATING: self._generate,
            UnitState.POST_PROCESSING: self._post_process,
            UnitState.EVALUATING: self._evaluate,
            UnitState.RETRYING: self._retry,
        }
        while run.state not in TERMINAL_STATES:
            await handlers[run.state](run)

        if run.state == UnitState.FAILED:
            assert run.error is not None
            raise run.error
        assert run.result is not None
        return run.result

    def _log_fields(self, run: UnitRun) -> dict[str, object]:
        return {
            "project_id": run.request.project_id,
            "chapter": run.request.chapter_index,
            "unit": run.request.unit_index,
            "attempt": run.attempt,
        }

    def _attempt_errored(self, run: UnitRun, error: BeatweaverError) -> None:
        """An attempt ended without text to evaluate."""
        exhausted = run.attempt >= self.policy.max_attempts
        run.history.append(
            GenerationAttempt(
                attempt_index=run.attempt,
                outcome=AttemptOutcome.FAILED if exhausted else AttemptOutcome.RETRY_SERVICE,
                error=str(error),
            )
        )
        if exhausted:
            logger.error(
                "Unit generation failed after final attempt",
                error=str(error),
                **self._log_fields(run),
            )
            error.attempts = list(run.history)
            run.error = error
            run.state = UnitState.FAILED
            return
        logger.warning(
            "Attempt errored. Retrying.", error=str(error), **self._log_fields(run)
        )
        run.state = UnitState.RETRYING

    async def _assemble(self, run: UnitRun) -> None:
        req = run.request
        try:
            run.context = await self.assembler.assemble(
                req.project_id, req.chapter_index, req.unit_index, run.blueprint
            )
        except ContextAssemblyFailure as exc:
            self._attempt_errored(run, exc)
            return
        run.state = UnitState.GENERATING

    def _timeout_ms(self, run: UnitRun) -> int:
        if run.deadline_at is None:
            return self.generation_timeout_ms
        remaining_ms = (run.deadline_at - asyncio.get_running_loop().time()) * 1000
        return max(1, int(min(self.generation_timeout_ms, remaining_ms)))

    async def _generate(self, run: UnitRun) -> None:
        assert run.context is not None
        req = run.request
        request = GenerationRequest(
            task=GENERATION_TASK,
            context={
                "prompt": render_generation_prompt(run.context, run.blueprint),
                "projectId": req.project_id,
                "chapterIndex": req.chapter_index,
                "unitIndex": req.unit_index,
                "blueprint": run.blueprint.model_dump(
                    mode="json", exclude={"correction_directives"}
                ),
                "correctionDirectives": list(run.blueprint.correction_directives),
            },
            max_agents=self.max_agents,
            timeout_ms=self._timeout_ms(run),
        )
        try:
            run.response = await self.generator.generate(request)
        except GenerationServiceFailure as exc:
            self._attempt_errored(run, exc)
            return
        run.state = UnitState.POST_PROCESSING

    async def _post_process(self, run: UnitRun) -> None:
        assert run.response is not None
        content = run.response.content
        if self.post_processor is not None:
            content = await self.post_processor.process(content)
        run.content = content
        run.state = UnitState.EVALUATING

    async def _evaluate(self, run: UnitRun) -> None:
        assert run.context is not None
        report = await self.evaluator.evaluate(run.content, run.context, run.blueprint)
        run.report = report
        blocking = report.blocking_issues
        too_detectable = report.detectability_score > self.policy.detectability_threshold
        attempts_remain = run.attempt < self.policy.max_attempts

        if blocking and attempts_remain:
            outcome = AttemptOutcome.RETRY_CONTINUITY
            run.pending_directives = [issue.suggested_fix for issue in blocking]
        elif too_detectable and attempts_remain:
            outcome = AttemptOutcome.RETRY_DETECTABILITY
            run.pending_directives = [REDUCE_AI_PHRASING]
        elif blocking or too_detectable:
            outcome = AttemptOutcome.FAILED
        else:
            outcome = AttemptOutcome.ACCEPTED

        run.history.append(
            GenerationAttempt(
                attempt_index=run.attempt,
                outcome=outcome,
                continuity_score=report.continuity_score,
                detectability_score=report.detectability_score,
                issues=list(report.issues),
            )
        )
        logger.info(
            "Evaluated attempt",
            outcome=outcome.value,
            continuity_score=report.continuity_score,
            detectability_score=report.detectability_score,
            blocking_issues=len(blocking),
            **self._log_fields(run),
        )

        if outcome in (
            AttemptOutcome.RETRY_CONTINUITY,
            AttemptOutcome.RETRY_DETECTABILITY,
        ):
            run.state = UnitState.RETRYING
        elif outcome == AttemptOutcome.FAILED:
            self._fail_quality_gate(run, report, continuity=bool(blocking))
        else:
            await self._accept(run, report)

    def _fail_quality_gate(
        self, run: UnitRun, report: QualityReport, continuity: bool
    ) -> None:
        error_cls = ContinuityFailure if continuity else DetectabilityFailure
        reason = (
            f"{len(report.blocking_issues)} blocking continuity issues remain"
            if continuity
            else f"detectability {report.detectability_score:.1f} above "
            f"{self.policy.detectability_threshold:.1f}"
        )
        run.error = error_cls(
            f"Unit {run.request.unit_index} failed after {run.attempt} attempts: {reason}",
            attempts=list(run.history),
            issues=list(report.issues),
            continuity_score=report.continuity_score,
            detectability_score=report.detectability_score,
        )
        logger.error("Unit failed quality gates", reason=reason, **self._log_fields(run))
        run.state = UnitState.FAILED

    async def _accept(self, run: UnitRun, report: QualityReport) -> None:
        assert run.response is not None
        req = run.request
        unit = NarrativeUnit(
            project_id=req.project_id,
            chapter_index=req.chapter_index,
            unit_index=req.unit_index,
            content=run.content,
            word_count=count_words(run.content),
            entities=frozenset(report.entities_found),
            thread_ids=frozenset(report.threads_referenced),
            tone=report.detected_tone,
        )
        # Write failures propagate as-is: retrying generation cannot fix storage.
        await self.memory.put_unit(unit)
        latency_ms = (asyncio.get_running_loop().time() - run.started_at) * 1000
        run.result = UnitGenerationResult(
            unit=unit,
            attempts=run.attempt,
            retries=run.attempt - 1,
            continuity_score=report.continuity_score,
            detectability_score=report.detectability_score,
            latency_ms=latency_ms,
            agents_used=list(run.response.agents_used),
            history=list(run.history),
            warnings=list(report.warnings),
        )
        logger.info(
            "Accepted unit",
            unit_id=unit.unit_id,
            word_count=unit.word_count,
            latency_ms=round(latency_ms, 1),
            **self._log_fields(run),
        )
        run.state = UnitState.ACCEPTED

    async def _retry(self, run: UnitRun) -> None:
        run.blueprint = run.blueprint.with_corrections(
            run.pending_directives, self.policy.max_correction_directives
        )
        run.pending_directives = []
        delay = self.policy.backoff_seconds(run.attempt)
        logger.info(
            "Retrying unit",
            delay_seconds=delay,
            directives=len(run.blueprint.correction_directives),
            **self._log_fields(run),
        )
        await self._sleep(delay)
        run.attempt += 1
        run.context = None
        run.response = None
        run.content = ""
        run.report = None
        run.state = UnitState.ASSEMBLING
