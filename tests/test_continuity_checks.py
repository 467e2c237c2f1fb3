import pytest
from context_assembly.context_models import AssembledContext
from models.narrative_models import (
    Blueprint,
    EntityProfile,
    LifecycleState,
    LocationRecord,
    PlotThread,
    ThreadStatus,
    VoiceProfile,
    WorldRule,
)
from models.quality_models import IssueCategory, Severity
from quality.continuity_checks import (
    CheckStrategies,
    check_location,
    check_thread_advancement,
    check_tone,
    check_voice,
    check_world_rules,
    extract_dialogue,
)
from quality.evaluator import QualityEvaluator
from quality.heuristics import KeywordResolutionDetector


def _ctx(**kwargs) -> AssembledContext:
    return AssembledContext(project_id="p1", chapter_index=1, unit_index=1, **kwargs)


@pytest.mark.asyncio
async def test_missing_expected_entity_is_one_high_issue():
    report = await QualityEvaluator().evaluate(
        "Mara walked along the road toward the mill.",
        _ctx(),
        Blueprint(expected_entities={"Mara", "Tovin"}),
    )

    assert len(report.issues) == 1
    issue = report.issues[0]
    assert (issue.category, issue.severity) == (IssueCategory.ENTITY, Severity.HIGH)
    assert report.continuity_score == 85


@pytest.mark.asyncio
async def test_deceased_entity_is_one_critical_issue():
    report = await QualityEvaluator().evaluate(
        "Oren walked along the road toward the mill.",
        _ctx(entity_roster={"Oren": LifecycleState.DECEASED}),
        Blueprint(expected_entities={"Oren"}),
    )

    assert [i.severity for i in report.issues] == [Severity.CRITICAL]
    assert report.continuity_score == 75


@pytest.mark.asyncio
async def test_unreferenced_active_thread_is_one_medium_issue():
    thread = PlotThread(
        project_id="p1", thread_id="t1", name="the missing ledger", status=ThreadStatus.ACTIVE
    )
    report = await QualityEvaluator().evaluate(
        "Mara walked along the road toward the mill.",
        _ctx(plot_threads=[thread]),
        Blueprint(expected_entities={"Mara"}, expected_threads={"t1"}),
    )

    assert [(i.category, i.severity) for i in report.issues] == [
        (IssueCategory.PLOT, Severity.MEDIUM)
    ]
    assert report.continuity_score == 92


@pytest.mark.asyncio
async def test_unexpected_known_entity_is_medium():
    report = await QualityEvaluator().evaluate(
        "Mara and Tovin walked along the road.",
        _ctx(entity_roster={"Mara": LifecycleState.ALIVE, "Tovin": LifecycleState.ALIVE}),
        Blueprint(expected_entities={"Mara"}),
    )

    assert [i.severity for i in report.issues] == [Severity.MEDIUM]
    assert report.entities_found == ["Mara", "Tovin"]


@pytest.mark.asyncio
async def test_wrong_known_location_is_high():
    issues = await check_location(
        "They reached the Citadel at dusk.",
        _ctx(known_locations=["Harbor", "Citadel"]),
        Blueprint(location="Harbor"),
        CheckStrategies(),
    )

    assert [i.severity for i in issues] == [Severity.HIGH]
    assert "Citadel" in issues[0].message


@pytest.mark.asyncio
async def test_unestablished_location_is_low_and_auto_fixable():
    issues = await check_location(
        "They waited at dusk.",
        _ctx(known_locations=["Harbor", "Citadel"]),
        Blueprint(location="Harbor"),
        CheckStrategies(),
    )

    assert [i.severity for i in issues] == [Severity.LOW]
    assert issues[0].auto_fixable


@pytest.mark.asyncio
async def test_second_known_location_beside_expected_is_high():
    issues = await check_location(
        "Mara stood in the Mill, then ran to Harrow Keep.",
        _ctx(known_locations=["the Mill", "Harrow Keep"]),
        Blueprint(location="the Mill"),
        CheckStrategies(),
    )

    assert [(i.category, i.severity) for i in issues] == [
        (IssueCategory.LOCATION, Severity.HIGH)
    ]
    assert "Harrow Keep" in issues[0].message


@pytest.mark.asyncio
async def test_each_rival_location_is_reported():
    issues = await check_location(
        "From the Citadel they could see the Mill.",
        _ctx(known_locations=["Harbor", "Citadel", "Mill"]),
        Blueprint(location="Harbor"),
        CheckStrategies(),
    )

    assert [i.severity for i in issues] == [Severity.HIGH, Severity.HIGH]


@pytest.mark.asyncio
async def test_location_contained_in_expected_name_is_not_a_rival():
    issues = await check_location(
        "The Harbor Gate creaked open.",
        _ctx(known_locations=["Harbor", "Harbor Gate"]),
        Blueprint(location="Harbor Gate"),
        CheckStrategies(),
    )
    assert issues == []


@pytest.mark.asyncio
async def test_named_location_passes():
    issues = await check_location(
        "The Harbor was empty.", _ctx(), Blueprint(location="Harbor"), CheckStrategies()
    )
    assert issues == []


@pytest.mark.asyncio
async def test_premature_resolution_is_high():
    thread = PlotThread(project_id="p1", thread_id="t1", name="the ledger", status=ThreadStatus.ACTIVE)
    issues = await check_thread_advancement(
        "Finally the ledger turned up in the mill.",
        _ctx(plot_threads=[thread]),
        Blueprint(),
        CheckStrategies(),
    )

    assert [i.severity for i in issues] == [Severity.HIGH]


@pytest.mark.parametrize(
    "text",
    [
        "She had intended to read the ledger tonight.",
        "The ledger was completely unreadable in the rain.",
        "The unfinished map lay beside the ledger.",
    ],
)
def test_resolution_keywords_match_whole_words_only(text):
    assert not KeywordResolutionDetector().suggests_resolution(text, "the ledger")


def test_resolution_keyword_as_whole_word_is_detected():
    detector = KeywordResolutionDetector()
    assert detector.suggests_resolution("The ledger business ended at dawn.", "the ledger")


@pytest.mark.asyncio
async def test_resolution_of_resolved_thread_is_ignored():
    thread = PlotThread(
        project_id="p1", thread_id="t1", name="the ledger", status=ThreadStatus.RESOLVED
    )
    issues = await check_thread_advancement(
        "Finally the ledger turned up in the mill.",
        _ctx(plot_threads=[thread]),
        Blueprint(expected_threads={"t1"}),
        CheckStrategies(),
    )

    assert issues == []


@pytest.mark.asyncio
async def test_thread_key_event_counts_as_reference():
    thread = PlotThread(
        project_id="p1",
        thread_id="t1",
        name="the ledger",
        status=ThreadStatus.DEVELOPING,
        key_events=["forged signature"],
    )
    issues = await check_thread_advancement(
        "She studied the forged signature.",
        _ctx(plot_threads=[thread]),
        Blueprint(expected_threads={"t1"}),
        CheckStrategies(),
    )

    assert issues == []


@pytest.mark.asyncio
async def test_world_rule_limitation_not_acknowledged():
    location = LocationRecord(
        project_id="p1",
        name="Harbor",
        world_rules=[WorldRule(category="magic", limitations=["costs blood"])],
    )

    flagged = await check_world_rules(
        "She cast a spell over the water.", _ctx(location=location), Blueprint(), CheckStrategies()
    )
    respected = await check_world_rules(
        "She cast a spell, and it costs blood.", _ctx(location=location), Blueprint(), CheckStrategies()
    )

    assert [i.severity for i in flagged] == [Severity.MEDIUM]
    assert respected == []


@pytest.mark.asyncio
async def test_tone_mismatch_and_equivalent_tones():
    sad = await check_tone(
        "Tears ran down her face.", _ctx(), Blueprint(target_tone="happy"), CheckStrategies()
    )
    equivalent = await check_tone(
        "He was furious at the delay.", _ctx(), Blueprint(target_tone="tense"), CheckStrategies()
    )

    assert [i.severity for i in sad] == [Severity.MEDIUM]
    assert equivalent == []


def test_extract_dialogue_both_attribution_orders():
    text = '"Stay close," Mara said. Tovin replied, "I will."'
    assert sorted(extract_dialogue(text)) == [("Mara", "Stay close,"), ("Tovin", "I will.")]


@pytest.mark.asyncio
async def test_voice_vocabulary_mismatches():
    ctx = _ctx(
        entities={
            "Mara": EntityProfile(
                project_id="p1", name="Mara", voice=VoiceProfile(vocabulary_level="sophisticated")
            ),
            "Tovin": EntityProfile(
                project_id="p1", name="Tovin", voice=VoiceProfile(vocabulary_level="simple")
            ),
        }
    )
    text = (
        '"I go now," Mara said. '
        '"Extraordinary circumstances necessitate deliberation," Tovin said.'
    )

    issues = await check_voice(text, ctx, Blueprint(), CheckStrategies())

    assert sorted((i.category, i.severity) for i in issues) == sorted(
        [(IssueCategory.VOICE, Severity.LOW), (IssueCategory.VOICE, Severity.MEDIUM)]
    )


@pytest.mark.asyncio
async def test_voice_contraction_habits():
    ctx = _ctx(
        entities={
            "Mara": EntityProfile(
                project_id="p1", name="Mara", voice=VoiceProfile(uses_contractions=False)
            ),
            "Tovin": EntityProfile(project_id="p1", name="Tovin"),
        }
    )
    text = (
        'Mara said, "I can\'t stay here." '
        '"I do not think we will be able to make it across the river tonight," Tovin said.'
    )

    issues = await check_voice(text, ctx, Blueprint(), CheckStrategies())

    assert len(issues) == 2
    assert all(i.severity == Severity.LOW and i.auto_fixable for i in issues)


@pytest.mark.asyncio
async def test_unknown_speaker_is_ignored():
    issues = await check_voice('"Fine," Stranger said.', _ctx(), Blueprint(), CheckStrategies())
    assert issues == []
