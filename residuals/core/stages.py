"""Stage derivation for the residuals pipeline.

Every stage state is computed from a single :class:`PipelineSnapshot`. Stages
are gated strictly in order: a stage is only ever in progress or completed
once every stage before it has completed.
"""
from __future__ import annotations

from residuals.core.schema import STAGE_ORDER, AuditState, StageId, StageState, UploadState
from residuals.domain import PipelineSnapshot, StageStates

STAGE_DEFINITIONS: list[dict[str, object]] = [
    {
        "id": StageId.UPLOAD,
        "label": "Upload Files",
        "description": "Upload every processor file and the lead sheet for the month.",
    },
    {
        "id": StageId.COMPILE,
        "label": "Compile Master Data",
        "description": "Cross-reference uploads and merge them into the master dataset.",
    },
    {
        "id": StageId.ASSIGN,
        "label": "Assign Roles",
        "description": "Auto-populate carried-over assignments and assign new MIDs.",
    },
    {
        "id": StageId.AUDIT,
        "label": "Final Audit",
        "description": "Validate splits and check every processor for issues.",
    },
]

STAGE_LABELS: dict[StageId, str] = {
    definition["id"]: str(definition["label"]) for definition in STAGE_DEFINITIONS  # type: ignore[misc]
}


def _upload_satisfied(snapshot: PipelineSnapshot) -> bool:
    sources_validated = all(source.upload_state is UploadState.VALIDATED for source in snapshot.sources)
    lead_sheet_validated = snapshot.lead_sheet.upload_state is UploadState.VALIDATED
    return sources_validated and lead_sheet_validated and snapshot.total_records > 0


def _compile_satisfied(snapshot: PipelineSnapshot) -> bool:
    # Compilation runs server-side as soon as uploads land.
    return snapshot.total_records > 0


def _assign_satisfied(snapshot: PipelineSnapshot) -> bool:
    assignment = snapshot.assignment
    if not assignment.loaded:
        return False
    return assignment.unassigned_count == 0


def _audit_satisfied(snapshot: PipelineSnapshot) -> bool:
    if not snapshot.audits:
        return False
    if any(result.audit_state is not AuditState.PASSED for result in snapshot.audits):
        return False
    return all(snapshot.audit_for(source.source_id) is not None for source in snapshot.sources)


_CHECKS = {
    StageId.UPLOAD: _upload_satisfied,
    StageId.COMPILE: _compile_satisfied,
    StageId.ASSIGN: _assign_satisfied,
    StageId.AUDIT: _audit_satisfied,
}


def evaluate(snapshot: PipelineSnapshot) -> StageStates:
    """Derive the state of each stage from ``snapshot``."""

    states: dict[str, StageState] = {}
    prerequisites_completed = True
    for stage in STAGE_ORDER:
        if not prerequisites_completed:
            status = StageState.LOCKED
        elif _CHECKS[stage](snapshot):
            status = StageState.COMPLETED
        else:
            status = StageState.IN_PROGRESS
        states[stage.value] = status
        prerequisites_completed = prerequisites_completed and status is StageState.COMPLETED
    return StageStates(**states)


def initial_stage_states() -> StageStates:
    """States shown before any snapshot has arrived for a period."""

    return StageStates(
        upload=StageState.IN_PROGRESS,
        compile=StageState.LOCKED,
        assign=StageState.LOCKED,
        audit=StageState.LOCKED,
    )


def current_stage(states: StageStates) -> StageId | None:
    """Return the first stage that is not completed, or ``None`` when all are."""

    for stage, status in states.items():
        if status is not StageState.COMPLETED:
            return stage
    return None


__all__ = [
    "STAGE_DEFINITIONS",
    "STAGE_LABELS",
    "current_stage",
    "evaluate",
    "initial_stage_states",
]
