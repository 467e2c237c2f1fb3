import prompt_renderer
from context_assembly.context_models import AssembledContext, SimilarUnit
from jinja2 import DictLoader, Environment
from models.narrative_models import (
    Blueprint,
    EntityProfile,
    LocationRecord,
    NarrativeUnit,
    PlotThread,
    Relationship,
    ThreadStatus,
    VoiceProfile,
    WorldRule,
)


def test_tojson_serializes_models_and_sets(monkeypatch):
    env = Environment(loader=DictLoader({"obj.j2": "{{ value | tojson }}"}), autoescape=False)
    env.filters["tojson"] = prompt_renderer._tojson
    monkeypatch.setattr(prompt_renderer, "_env", env)

    rendered = prompt_renderer.render_prompt(
        "obj.j2",
        {"value": {"names": frozenset({"B", "A"}), "bp": Blueprint(description="x")}},
    )

    assert '"names": ["A", "B"]' in rendered
    assert '"description": "x"' in rendered


def test_generation_prompt_includes_every_context_section():
    context = AssembledContext(
        project_id="p1",
        chapter_index=3,
        unit_index=4,
        window=[
            NarrativeUnit(
                project_id="p1",
                chapter_index=3,
                unit_index=3,
                content="The lamps went out along the quay.",
                word_count=7,
            )
        ],
        entities={
            "Mara": EntityProfile(
                project_id="p1",
                name="Mara",
                role="protagonist",
                description="A smuggler's daughter",
                voice=VoiceProfile(uses_contractions=False),
                relationships=[Relationship(target="Tovin", relationship_type="distrusts")],
            )
        },
        plot_threads=[
            PlotThread(
                project_id="p1",
                thread_id="t1",
                name="The missing ledger",
                status=ThreadStatus.ACTIVE,
                progress=40,
            )
        ],
        location=LocationRecord(
            project_id="p1",
            name="Harbor",
            description="Salt and tar.",
            world_rules=[WorldRule(category="magic", limitations=["costs blood"])],
        ),
        similar_units=[
            SimilarUnit(unit_id="p1:1:1", content="Fog rolled in from the bay.", score=0.4)
        ],
        research_notes=["harbors\nCustoms houses kept duplicate ledgers."],
    )
    blueprint = Blueprint(
        expected_entities={"Mara"},
        location="Harbor",
        target_tone="tense",
        target_word_count=300,
        description="Mara searches the customs house",
    ).with_corrections(["Keep the ledger thread open"])

    prompt = prompt_renderer.render_generation_prompt(context, blueprint)

    assert "chapter 3, unit 4" in prompt
    assert "Mara searches the customs house" in prompt
    assert "Entities who must appear: Mara" in prompt
    assert "Target length: about 300 words" in prompt
    assert "The lamps went out along the quay." in prompt
    assert "never uses contractions" in prompt
    assert "distrusts -> Tovin" in prompt
    assert "The missing ledger [active, secondary, 40%]" in prompt
    assert "(limits: costs blood)" in prompt
    assert "Fog rolled in from the bay." in prompt
    assert "- harbors Customs houses kept duplicate ledgers." in prompt
    assert "- Keep the ledger thread open" in prompt


def test_generation_prompt_with_empty_context():
    prompt = prompt_renderer.render_generation_prompt(
        AssembledContext(project_id="p1", chapter_index=1, unit_index=1), Blueprint()
    )

    assert "Continue the story naturally." in prompt
    assert "## Recent story" not in prompt
    assert "## Research notes" not in prompt
    assert "## Corrections required" not in prompt
