import itertools

import pytest

from residuals.core.progress import project
from residuals.core.schema import STAGE_ORDER, AssignmentSummary, AuditState, StageId, StageState, UploadState
from residuals.core.stages import current_stage, evaluate, initial_stage_states


def test_all_sources_validated_without_assignments_stops_at_assign(make_snapshot):
    snapshot = make_snapshot()
    assert snapshot.total_records == 12450

    states = evaluate(snapshot)
    progress = project(states)

    assert states.upload is StageState.COMPLETED
    assert states.compile is StageState.COMPLETED
    assert states.assign is StageState.IN_PROGRESS
    assert states.audit is StageState.LOCKED
    assert progress.percent == 50
    assert progress.current_stage is StageId.ASSIGN


def test_unassigned_merchants_keep_assign_in_progress(make_snapshot):
    snapshot = make_snapshot(assignment=AssignmentSummary(loaded=True, unassigned_count=3))

    states = evaluate(snapshot)

    assert states.assign is StageState.IN_PROGRESS
    assert states.audit is StageState.LOCKED
    assert project(states).percent == 50


def test_fully_assigned_opens_audit(make_snapshot):
    snapshot = make_snapshot(assignment=AssignmentSummary(loaded=True, unassigned_count=0))

    states = evaluate(snapshot)
    progress = project(states)

    assert states.assign is StageState.COMPLETED
    assert states.audit is StageState.IN_PROGRESS
    assert progress.percent == 75
    assert progress.current_stage is StageId.AUDIT
    assert not progress.is_terminal


def test_all_audits_passed_is_terminal(make_snapshot):
    snapshot = make_snapshot(
        assignment=AssignmentSummary(loaded=True, unassigned_count=0, previously_assigned_count=40),
        audit_state=AuditState.PASSED,
    )

    states = evaluate(snapshot)
    progress = project(states)

    assert states.audit is StageState.COMPLETED
    assert progress.percent == 100
    assert progress.is_terminal
    assert progress.current_stage is None
    assert current_stage(states) is None


def test_missing_upload_locks_every_later_stage(make_snapshot):
    snapshot = make_snapshot(validated=6)

    states = evaluate(snapshot)

    assert states.upload is StageState.IN_PROGRESS
    assert states.compile is StageState.LOCKED
    assert states.assign is StageState.LOCKED
    assert states.audit is StageState.LOCKED
    assert project(states).percent == 0


def test_lead_sheet_is_required_for_upload(make_snapshot):
    states = evaluate(make_snapshot(lead_sheet=UploadState.NEEDS_UPLOAD))
    assert states.upload is StageState.IN_PROGRESS
    assert states.compile is StageState.LOCKED


def test_unloaded_assignment_never_completes_even_with_cached_zero(make_snapshot):
    stale_zero = AssignmentSummary(loaded=False, unassigned_count=0)
    states = evaluate(make_snapshot(assignment=stale_zero, audit_state=AuditState.PASSED))

    assert states.assign is StageState.IN_PROGRESS
    assert states.audit is StageState.LOCKED


def test_failed_audit_keeps_audit_in_progress(make_snapshot):
    snapshot = make_snapshot(
        assignment=AssignmentSummary(loaded=True, unassigned_count=0),
        audit_state=AuditState.PASSED,
        failed_audits={"3", "5"},
    )
    states = evaluate(snapshot)
    assert states.audit is StageState.IN_PROGRESS
    assert project(states).percent == 75


def test_audit_without_any_results_is_not_complete(make_snapshot):
    snapshot = make_snapshot(assignment=AssignmentSummary(loaded=True, unassigned_count=0))
    assert snapshot.audits == ()
    assert evaluate(snapshot).audit is StageState.IN_PROGRESS


def test_initial_states_before_any_snapshot():
    states = initial_stage_states()
    assert states.upload is StageState.IN_PROGRESS
    assert [states[stage] for stage in STAGE_ORDER[1:]] == [StageState.LOCKED] * 3


@pytest.mark.parametrize(
    "validated,lead_sheet,loaded,unassigned,audit_state",
    list(
        itertools.product(
            [0, 6, 7],
            [UploadState.VALIDATED, UploadState.ERROR],
            [False, True],
            [0, 2],
            [None, AuditState.PENDING, AuditState.PASSED],
        )
    ),
)
def test_gating_and_percent_invariants(make_snapshot, validated, lead_sheet, loaded, unassigned, audit_state):
    snapshot = make_snapshot(
        validated=validated,
        lead_sheet=lead_sheet,
        assignment=AssignmentSummary(loaded=loaded, unassigned_count=unassigned),
        audit_state=audit_state,
    )
    states = evaluate(snapshot)
    ordered = [states[stage] for stage in STAGE_ORDER]

    for previous, stage_state in zip(ordered, ordered[1:]):
        if stage_state is not StageState.LOCKED:
            assert previous is StageState.COMPLETED

    prefix = 0
    for stage_state in ordered:
        if stage_state is not StageState.COMPLETED:
            break
        prefix += 1
    assert project(states).percent == 25 * prefix

    if not loaded:
        assert states.assign is not StageState.COMPLETED
