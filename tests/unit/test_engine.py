"""State transition tests for the stage workflow engine."""

import pytest

from stagewise.catalog import StageCatalog, StageDefinition
from stagewise.config import StagewiseConfig
from stagewise.engine import StageTransitionEngine
from stagewise.errors import (
    AlreadyActive,
    AlreadyExists,
    CorruptRecord,
    InvalidFeatureName,
    InvalidTransition,
    OutOfSequence,
    PrerequisitesUnmet,
    StaleRecord,
    UnknownStage,
    WorkflowNotFound,
)
from stagewise.persistence import (
    FileSystemTrackingRepository,
    StageState,
    ValidationResult,
    WorkflowState,
)

FEATURE = "checkout"


def _complete_through(engine, last_stage):
    for stage_id in range(1, last_stage + 1):
        engine.complete(FEATURE, stage_id)


def _statuses(tracking):
    return [stage.status for stage in tracking.stages]


# ----------------------------------------------------------------------
# init
def test_init_positions_workflow_at_first_stage(engine):
    tracking = engine.init(FEATURE)

    assert tracking.workflow_status is WorkflowState.ACTIVE
    assert tracking.current_stage == 1
    assert _statuses(tracking) == [StageState.PENDING] * 8
    assert tracking.rollback_history == []
    assert [s.id for s in tracking.stages] == list(range(1, 9))

    stored = engine.status(FEATURE)
    assert stored.current_stage == 1
    assert stored.stages[0].status is StageState.PENDING


def test_init_rejects_active_workflow(engine, repo):
    engine.init(FEATURE)
    _complete_through(engine, 2)
    before = repo.load(FEATURE)

    with pytest.raises(AlreadyActive) as exc_info:
        engine.init(FEATURE)

    assert exc_info.value.current_stage == 3
    assert repo.load(FEATURE) == before


def test_init_reuses_location_of_finished_workflow(engine, repo):
    engine.init(FEATURE)
    _complete_through(engine, 2)
    engine.rollback(FEATURE, 2, "redo")
    engine.abort(FEATURE)
    location = repo.locate(FEATURE)

    tracking = engine.init(FEATURE)

    assert repo.locate(FEATURE) == location
    assert tracking.workflow_status is WorkflowState.ACTIVE
    assert tracking.current_stage == 1
    assert tracking.rollback_history == []
    assert _statuses(repo.load(FEATURE)) == [StageState.PENDING] * 8


def test_init_require_archive_policy(repo, clock):
    engine = StageTransitionEngine(
        repo, config=StagewiseConfig(init_policy="require-archive"), clock=clock
    )
    engine.init(FEATURE)
    engine.abort(FEATURE)

    with pytest.raises(AlreadyExists) as exc_info:
        engine.init(FEATURE)
    assert exc_info.value.workflow_status == "aborted"

    archived = engine.archive(FEATURE)
    assert archived.startswith("archive/")
    tracking = engine.init(FEATURE)
    assert tracking.workflow_status is WorkflowState.ACTIVE
    assert any(s.archived for s in repo.list_sessions())


def test_init_rejects_unsafe_feature_names(engine):
    with pytest.raises(InvalidFeatureName):
        engine.init("../escape")
    with pytest.raises(InvalidFeatureName):
        engine.init("")


# ----------------------------------------------------------------------
# validate
def test_validate_returns_expected_outputs(engine):
    engine.init(FEATURE)

    readiness = engine.validate(FEATURE, 1)

    assert readiness.stage_id == 1
    assert readiness.name == "Architecture Decomposition"
    assert "architecture.md" in readiness.expected_outputs
    assert "Integration points documented" in readiness.validation_criteria


def test_validate_does_not_mutate(engine, repo):
    engine.init(FEATURE)
    before = repo.load(FEATURE)

    engine.validate(FEATURE, 1)

    assert repo.load(FEATURE) == before


def test_validate_reports_unmet_prerequisites(engine):
    engine.init(FEATURE)

    with pytest.raises(PrerequisitesUnmet) as exc_info:
        engine.validate(FEATURE, 2)

    assert exc_info.value.unmet == [(1, "pending")]


def test_validate_checks_prerequisites_for_current_stage(repo, clock):
    engine = StageTransitionEngine(
        repo, config=StagewiseConfig(resume_validates_prerequisites=False), clock=clock
    )
    engine.init(FEATURE)
    engine.complete(FEATURE, 1)
    engine.abort(FEATURE)
    engine.resume(FEATURE, 3)

    with pytest.raises(PrerequisitesUnmet) as exc_info:
        engine.validate(FEATURE, 3)

    assert exc_info.value.unmet == [(2, "in_progress")]


def test_validate_rejects_out_of_sequence_stage(engine):
    engine.init(FEATURE)
    _complete_through(engine, 4)
    engine.abort(FEATURE)
    engine.resume(FEATURE, 3)

    with pytest.raises(OutOfSequence) as exc_info:
        engine.validate(FEATURE, 5)

    assert exc_info.value.requested == 5
    assert exc_info.value.current == 3


def test_validate_rejects_past_stage(engine):
    engine.init(FEATURE)
    _complete_through(engine, 2)

    with pytest.raises(OutOfSequence):
        engine.validate(FEATURE, 1)


def test_validate_unknown_record_and_stage(engine):
    with pytest.raises(WorkflowNotFound):
        engine.validate("missing", 1)
    engine.init(FEATURE)
    with pytest.raises(UnknownStage):
        engine.validate(FEATURE, 9)


# ----------------------------------------------------------------------
# complete
def test_complete_advances_to_next_stage(engine):
    engine.init(FEATURE)

    result = engine.complete(FEATURE, 1)

    assert result.workflow_completed is False
    assert result.next_stage == 2
    tracking = engine.status(FEATURE)
    assert tracking.current_stage == 2
    assert tracking.stages[0].status is StageState.COMPLETED
    assert tracking.stages[0].completed_at is not None
    assert tracking.stages[1].status is StageState.IN_PROGRESS
    assert tracking.stages[1].started_at is not None


def test_complete_moves_exactly_one_stage_at_a_time(engine):
    engine.init(FEATURE)

    for stage_id in range(1, 8):
        before = engine.status(FEATURE).current_stage
        assert before == stage_id
        engine.complete(FEATURE, stage_id)
        after = engine.status(FEATURE)
        assert after.current_stage == before + 1
        assert after.workflow_status is WorkflowState.ACTIVE


def test_complete_last_stage_finishes_workflow(engine):
    engine.init(FEATURE)
    _complete_through(engine, 7)

    result = engine.complete(FEATURE, 8)

    assert result.workflow_completed is True
    assert result.next_stage is None
    tracking = engine.status(FEATURE)
    assert tracking.workflow_status is WorkflowState.COMPLETED
    assert tracking.current_stage == 8
    assert tracking.completed_at is not None
    assert _statuses(tracking) == [StageState.COMPLETED] * 8


def test_complete_rejects_non_current_stage(engine, repo):
    engine.init(FEATURE)
    before = repo.load(FEATURE)

    with pytest.raises(OutOfSequence):
        engine.complete(FEATURE, 2)

    assert repo.load(FEATURE) == before


def test_complete_rejects_frozen_workflow(engine, repo):
    engine.init(FEATURE)
    engine.abort(FEATURE)
    before = repo.load(FEATURE)

    with pytest.raises(InvalidTransition) as exc_info:
        engine.complete(FEATURE, 1)

    assert exc_info.value.workflow_status == "aborted"
    assert repo.load(FEATURE) == before


def test_complete_after_rolling_back_finished_workflow(engine):
    engine.init(FEATURE)
    _complete_through(engine, 8)
    rolled_back = engine.rollback(FEATURE, 6, "release blocked")
    assert rolled_back.workflow_status is WorkflowState.COMPLETED

    result = engine.complete(FEATURE, 6)

    assert result.next_stage == 7
    tracking = engine.status(FEATURE)
    assert tracking.workflow_status is WorkflowState.ACTIVE
    assert tracking.completed_at is None
    assert tracking.current_stage == 7
    assert tracking.stages[5].status is StageState.COMPLETED
    assert tracking.stages[6].status is StageState.IN_PROGRESS

    engine.complete(FEATURE, 7)
    assert engine.complete(FEATURE, 8).workflow_completed is True
    assert engine.status(FEATURE).workflow_status is WorkflowState.COMPLETED


def test_complete_records_outputs_and_results(engine):
    engine.init(FEATURE)

    engine.complete(
        FEATURE,
        1,
        outputs=["architecture.md", "components.json"],
        validation_results=[
            ValidationResult(criterion="All major components identified", passed=True),
            ValidationResult(
                criterion="Technical approach validated", passed=False, notes="spike"
            ),
        ],
    )

    stage = engine.status(FEATURE).stages[0]
    assert stage.outputs == ["architecture.md", "components.json"]
    assert stage.validation_results[1].passed is False
    assert stage.validation_results[1].notes == "spike"


# ----------------------------------------------------------------------
# rollback
def test_rollback_resets_stage_and_downstream(engine):
    engine.init(FEATURE)
    _complete_through(engine, 4)

    tracking = engine.rollback(FEATURE, 2, "bad design")

    assert tracking.current_stage == 2
    assert tracking.stages[0].status is StageState.COMPLETED
    assert _statuses(tracking)[1:] == [StageState.PENDING] * 7
    for stage in tracking.stages[1:]:
        assert stage.started_at is None
        assert stage.completed_at is None
        assert stage.outputs is None
    assert len(tracking.rollback_history) == 1
    assert tracking.rollback_history[0].stage == 2
    assert tracking.rollback_history[0].reason == "bad design"
    assert tracking.workflow_status is WorkflowState.ACTIVE


def test_rollback_repeated_appends_history_only(engine):
    engine.init(FEATURE)
    _complete_through(engine, 3)

    first = engine.rollback(FEATURE, 2)
    second = engine.rollback(FEATURE, 2)

    assert _statuses(first) == _statuses(second)
    assert second.current_stage == 2
    assert [e.reason for e in second.rollback_history] == [
        "Manual rollback",
        "Manual rollback",
    ]


def test_rollback_keeps_workflow_status(engine):
    engine.init(FEATURE)
    _complete_through(engine, 3)
    engine.abort(FEATURE)

    tracking = engine.rollback(FEATURE, 1)

    assert tracking.workflow_status is WorkflowState.ABORTED
    assert tracking.current_stage == 1


def test_rollback_unknown_stage(engine):
    engine.init(FEATURE)
    with pytest.raises(UnknownStage):
        engine.rollback(FEATURE, 12)


# ----------------------------------------------------------------------
# abort / fail / resume
def test_abort_preserves_progress(engine):
    engine.init(FEATURE)
    _complete_through(engine, 2)

    tracking = engine.abort(FEATURE, "pivot")

    assert tracking.workflow_status is WorkflowState.ABORTED
    assert tracking.completed_at is not None
    assert tracking.current_stage == 3
    assert tracking.stages[2].status is StageState.IN_PROGRESS
    assert tracking.stages[0].status is StageState.COMPLETED


def test_abort_twice_is_a_no_op(engine, repo):
    engine.init(FEATURE)
    engine.abort(FEATURE)
    before = repo.load(FEATURE)

    engine.abort(FEATURE)

    assert repo.load(FEATURE) == before


def test_abort_missing_workflow(engine):
    with pytest.raises(WorkflowNotFound):
        engine.abort("missing")


def test_resume_after_abort(engine):
    engine.init(FEATURE)
    _complete_through(engine, 2)
    aborted = engine.abort(FEATURE, "pivot")
    old_started = aborted.stages[2].started_at

    tracking = engine.resume(FEATURE, 3)

    assert tracking.workflow_status is WorkflowState.ACTIVE
    assert tracking.current_stage == 3
    assert tracking.completed_at is None
    assert tracking.stages[2].status is StageState.IN_PROGRESS
    assert tracking.stages[2].started_at > old_started


@pytest.mark.parametrize("finish", [False, True])
def test_resume_rejected_unless_aborted_or_failed(engine, repo, finish):
    engine.init(FEATURE)
    if finish:
        _complete_through(engine, 8)
    before = repo.load(FEATURE)

    with pytest.raises(InvalidTransition) as exc_info:
        engine.resume(FEATURE, 1)

    assert exc_info.value.workflow_status == ("completed" if finish else "active")
    assert repo.load(FEATURE) == before


def test_resume_checks_prerequisites_by_default(engine):
    engine.init(FEATURE)
    engine.complete(FEATURE, 1)
    engine.abort(FEATURE)

    with pytest.raises(PrerequisitesUnmet) as exc_info:
        engine.resume(FEATURE, 4)

    assert exc_info.value.unmet == [(3, "pending")]


def test_fail_then_resume(engine):
    engine.init(FEATURE)
    _complete_through(engine, 1)

    failed = engine.fail(FEATURE, "tests broke")

    assert failed.workflow_status is WorkflowState.FAILED
    assert failed.stages[1].status is StageState.FAILED
    assert failed.stages[1].error == "tests broke"
    assert failed.completed_at is not None

    resumed = engine.resume(FEATURE, 2)
    assert resumed.workflow_status is WorkflowState.ACTIVE
    assert resumed.stages[1].status is StageState.IN_PROGRESS
    assert resumed.stages[1].error is None


def test_fail_requires_active_workflow(engine):
    engine.init(FEATURE)
    engine.abort(FEATURE)
    with pytest.raises(InvalidTransition):
        engine.fail(FEATURE)


def test_archive_rejects_active_workflow(engine):
    engine.init(FEATURE)
    with pytest.raises(InvalidTransition):
        engine.archive(FEATURE)


# ----------------------------------------------------------------------
# integrity
def test_record_not_matching_catalog_is_corrupt(repo, clock):
    engine = StageTransitionEngine(repo, clock=clock)
    engine.init(FEATURE)
    short_catalog = StageCatalog(
        [StageDefinition(id=1, name="only"), StageDefinition(id=2, name="two")]
    )
    other = StageTransitionEngine(repo, catalog=short_catalog, clock=clock)

    with pytest.raises(CorruptRecord):
        other.status(FEATURE)


def test_concurrent_writer_is_detected(engine, repo):
    engine.init(FEATURE)
    first = repo.load(FEATURE)
    second = repo.load(FEATURE)

    first.current_stage = 2
    repo.save(FEATURE, first)

    with pytest.raises(StaleRecord):
        repo.save(FEATURE, second)
    assert repo.load(FEATURE).current_stage == 2


def test_end_to_end_scenarios(engine):
    tracking = engine.init(FEATURE)
    assert tracking.stages[0].status is StageState.PENDING

    engine.complete(FEATURE, 1)
    tracking = engine.status(FEATURE)
    assert tracking.stages[0].status is StageState.COMPLETED
    assert tracking.stages[1].status is StageState.IN_PROGRESS
    assert tracking.current_stage == 2

    for stage_id in (2, 3, 4):
        engine.complete(FEATURE, stage_id)
    tracking = engine.rollback(FEATURE, 2, "bad design")
    assert tracking.current_stage == 2
    assert [s.status for s in tracking.stages[1:4]] == [StageState.PENDING] * 3

    engine.complete(FEATURE, 2)
    tracking = engine.abort(FEATURE, "pivot")
    assert tracking.workflow_status is WorkflowState.ABORTED
    assert tracking.current_stage == 3
    assert tracking.stages[2].status is StageState.IN_PROGRESS

    tracking = engine.resume(FEATURE, 3)
    assert tracking.workflow_status is WorkflowState.ACTIVE
    assert tracking.current_stage == 3
    assert tracking.stages[2].status is StageState.IN_PROGRESS


def test_archive_location_without_record(tmp_path, clock):
    sessions = tmp_path / "sessions"
    (sessions / "2026-10-18-checkout").mkdir(parents=True)
    engine = StageTransitionEngine(
        FileSystemTrackingRepository(sessions, clock=clock), clock=clock
    )

    with pytest.raises(WorkflowNotFound):
        engine.status(FEATURE)

    assert engine.archive(FEATURE) == "archive/2026-10-18-checkout"
    assert engine.repository.locate(FEATURE) is None
    assert (sessions / "archive" / "2026-10-18-checkout").is_dir()
    with pytest.raises(WorkflowNotFound):
        engine.archive(FEATURE)
