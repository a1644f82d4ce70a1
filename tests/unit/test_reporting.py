from stagewise.engine import StageReadiness
from stagewise.reporting import render_catalog, render_status, render_validation


def test_render_status_for_fresh_workflow(engine):
    tracking = engine.init("checkout")

    text = render_status(tracking)

    assert "[checkout] Multi-Stage Orchestration Workflow" in text
    assert "Status: active | Current Stage: 1" in text
    assert "○ 1. Architecture Decomposition [pending]" in text
    assert "Next Action: Complete stage 1 (Architecture Decomposition)" in text
    assert "Rollback History" not in text


def test_render_status_shows_progress_and_history(engine):
    engine.init("checkout")
    engine.complete("checkout", 1, outputs=["architecture.md", "components.json"])
    engine.complete("checkout", 2)
    engine.rollback("checkout", 2, "bad design")
    tracking = engine.fail("checkout", "story map rejected")

    text = render_status(tracking)

    assert "✅ 1. Architecture Decomposition [completed]" in text
    assert "Outputs: architecture.md, components.json" in text
    assert "❌ 2. Story Mapping [failed]" in text
    assert "Error: story map rejected" in text
    assert "- Stage 2 rolled back at" in text
    assert "Reason: bad design" in text
    assert "Next Action" not in text


def test_render_status_marks_in_progress_stage(engine):
    engine.init("checkout")
    tracking = engine.complete("checkout", 1).tracking

    text = render_status(tracking)

    assert "🔄 2. Story Mapping [in_progress]" in text
    assert "Started:" in text


def test_render_validation_lists_outputs_and_criteria():
    readiness = StageReadiness(
        stage_id=1,
        name="Architecture Decomposition",
        expected_outputs=["architecture.md"],
        validation_criteria=["All major components identified"],
    )

    text = render_validation(readiness)

    assert "Stage 1 (Architecture Decomposition) is ready to execute" in text
    assert "  - architecture.md" in text
    assert "  - All major components identified" in text


def test_render_catalog():
    text = render_catalog()
    assert text.splitlines()[0].startswith("1. Architecture Decomposition")
    assert "8. Release & Learning - Deploy and capture insights (requires: 7)" in text
