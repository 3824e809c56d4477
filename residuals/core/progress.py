from __future__ import annotations

from residuals.core.schema import AuditState, StageId, StageState
from residuals.core.stages import STAGE_LABELS, current_stage
from residuals.domain import PipelineMetrics, PipelineProgress, PipelineSnapshot, StageStates

STAGE_WEIGHT = 25
COMPLETE_LABEL = "Complete"


def project(states: StageStates) -> PipelineProgress:
    """Turn stage states into a completion percentage and current-step pointer.

    Only the completed prefix counts towards ``percent``; a completed stage
    that follows an unfinished one adds nothing.
    """

    completed_prefix = 0
    for _, status in states.items():
        if status is not StageState.COMPLETED:
            break
        completed_prefix += 1

    return PipelineProgress(
        percent=STAGE_WEIGHT * completed_prefix,
        current_stage=current_stage(states),
        is_terminal=states[StageId.AUDIT] is StageState.COMPLETED,
    )


def current_step_label(progress: PipelineProgress) -> str:
    if progress.is_terminal or progress.current_stage is None:
        return COMPLETE_LABEL
    return STAGE_LABELS[progress.current_stage]


def summarize(snapshot: PipelineSnapshot | None) -> PipelineMetrics:
    """Headline numbers for the workflow summary cards."""

    if snapshot is None:
        return PipelineMetrics()

    assignment = snapshot.assignment
    return PipelineMetrics(
        uploaded_sources=snapshot.uploaded_sources,
        total_sources=len(snapshot.sources),
        total_records=snapshot.total_records,
        total_revenue=snapshot.total_revenue,
        unassigned_count=assignment.unassigned_count if assignment.loaded else None,
        previously_assigned_count=assignment.previously_assigned_count if assignment.loaded else None,
        failed_audits=sum(1 for result in snapshot.audits if result.audit_state is AuditState.FAILED),
    )


__all__ = ["COMPLETE_LABEL", "current_step_label", "project", "summarize"]
