import asyncio

import pytest
from core.errors import ContinuityFailure, DeadlineExceeded, StorageWriteFailure
from models.narrative_models import Blueprint, NarrativeUnit
from orchestration.chapter_sequencer import ChapterSequencer
from orchestration.models import UnitGenerationResult


def _result(request) -> UnitGenerationResult:
    content = f"Unit {request.unit_index} text."
    return UnitGenerationResult(
        unit=NarrativeUnit(
            project_id=request.project_id,
            chapter_index=request.chapter_index,
            unit_index=request.unit_index,
            content=content,
            word_count=len(content.split()),
        ),
        attempts=1,
        retries=0,
        continuity_score=100,
        detectability_score=4,
        latency_ms=1.0,
    )


class RecordingOrchestrator:
    """Records the order units run in and how many run at once per chapter."""

    def __init__(self, fail_unit=None, error=None):
        self.fail_unit = fail_unit
        self.error = error
        self.order = []
        self.active: dict[int, int] = {}
        self.max_active: dict[int, int] = {}

    async def generate_unit(self, request, deadline_seconds=None):
        chapter = request.chapter_index
        self.active[chapter] = self.active.get(chapter, 0) + 1
        self.max_active[chapter] = max(self.max_active.get(chapter, 0), self.active[chapter])
        try:
            await asyncio.sleep(0.01)
            self.order.append((chapter, request.unit_index))
            if request.unit_index == self.fail_unit:
                raise self.error
            return _result(request)
        finally:
            self.active[chapter] -= 1


BLUEPRINTS = [Blueprint(description=f"beat {i}") for i in range(3)]


@pytest.mark.asyncio
async def test_chapter_units_run_in_order():
    orch = RecordingOrchestrator()
    sequencer = ChapterSequencer(orch)

    result = await sequencer.generate_chapter("p1", 1, BLUEPRINTS)

    assert result.completed
    assert [u.unit_index for u in result.units] == [1, 2, 3]
    assert result.total_word_count == 9
    assert result.average_continuity_score == 100


@pytest.mark.asyncio
async def test_chapter_stops_at_first_failed_unit():
    error = ContinuityFailure(
        "unit 2 failed", attempts=[], issues=[], continuity_score=60, detectability_score=4
    )
    orch = RecordingOrchestrator(fail_unit=2, error=error)
    sequencer = ChapterSequencer(orch)

    result = await sequencer.generate_chapter("p1", 1, BLUEPRINTS)

    assert not result.completed
    assert result.failed_unit_index == 2
    assert result.error is error
    assert [u.unit_index for u in result.units] == [1]
    assert orch.order == [(1, 1), (1, 2)]


@pytest.mark.asyncio
async def test_storage_failure_propagates():
    error = StorageWriteFailure("graph down", backends=["graph"], operation="put_unit")
    sequencer = ChapterSequencer(RecordingOrchestrator(fail_unit=1, error=error))

    with pytest.raises(StorageWriteFailure):
        await sequencer.generate_chapter("p1", 1, BLUEPRINTS)


@pytest.mark.asyncio
async def test_units_of_one_chapter_never_overlap():
    orch = RecordingOrchestrator()
    sequencer = ChapterSequencer(orch)

    await asyncio.gather(
        sequencer.generate_chapter("p1", 1, BLUEPRINTS[:2]),
        sequencer.generate_chapter("p1", 1, BLUEPRINTS[:2], start_unit_index=3),
    )

    assert orch.max_active[1] == 1
    assert len(orch.order) == 4


@pytest.mark.asyncio
async def test_different_chapters_run_concurrently():
    orch = RecordingOrchestrator()
    sequencer = ChapterSequencer(orch)

    results = await sequencer.generate_chapters(
        [("p1", 1, BLUEPRINTS), ("p1", 2, BLUEPRINTS)]
    )

    assert [r.chapter_index for r in results] == [1, 2]
    assert all(r.completed for r in results)
    chapters_seen_first = {chapter for chapter, _ in orch.order[:2]}
    assert chapters_seen_first == {1, 2}


@pytest.mark.asyncio
async def test_chapter_deadline_stops_with_partial_result():
    orch = RecordingOrchestrator()
    sequencer = ChapterSequencer(orch)

    result = await sequencer.generate_chapter("p1", 1, BLUEPRINTS * 5, deadline_seconds=0.025)

    assert not result.completed
    assert isinstance(result.error, DeadlineExceeded)
    assert result.failed_unit_index == len(result.results) + 1
    assert [r.unit.unit_index for r in result.results] == list(
        range(1, len(result.results) + 1)
    )


class SlowSecondUnitOrchestrator:
    """Accepts unit 1 at once, then overruns the deadline on unit 2."""

    async def generate_unit(self, request, deadline_seconds=None):
        if request.unit_index == 1:
            return _result(request)
        async with asyncio.timeout(deadline_seconds):
            await asyncio.sleep(10)


@pytest.mark.asyncio
async def test_deadline_inside_a_unit_keeps_earlier_units():
    sequencer = ChapterSequencer(SlowSecondUnitOrchestrator())

    result = await sequencer.generate_chapter("p1", 1, BLUEPRINTS, deadline_seconds=0.2)

    assert [r.unit.unit_index for r in result.results] == [1]
    assert result.failed_unit_index == 2
    assert isinstance(result.error, DeadlineExceeded)
