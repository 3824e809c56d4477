from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request

from residuals.application import get_pipeline_coordinator
from residuals.core.config import ResidualsSettings
from residuals.core.errors import AuditRunFailed
from residuals.core.periods import PeriodKey, selectable_periods
from residuals.core.progress import current_step_label
from residuals.core.schema import StageId
from residuals.core.stages import STAGE_DEFINITIONS
from residuals.domain import PipelineView

router = APIRouter(prefix="/residuals", tags=["residuals"])


def _settings(request: Request) -> ResidualsSettings:
    settings = getattr(request.app.state, "settings", None)
    return settings if isinstance(settings, ResidualsSettings) else ResidualsSettings()


def _serialise_view(view: PipelineView) -> dict[str, Any]:
    snapshot = view.snapshot
    metrics = view.metrics
    stages = [
        {
            "id": definition["id"].value,  # type: ignore[union-attr]
            "label": definition["label"],
            "description": definition["description"],
            "status": view.stages[definition["id"]].value,  # type: ignore[index]
        }
        for definition in STAGE_DEFINITIONS
    ]
    return {
        "period": str(view.period),
        "label": view.period.label,
        "stages": stages,
        "progress": {
            "percent": view.progress.percent,
            "current_stage": view.progress.current_stage.value if view.progress.current_stage else None,
            "current_step": current_step_label(view.progress),
            "is_terminal": view.progress.is_terminal,
        },
        "metrics": {
            "uploaded_sources": metrics.uploaded_sources,
            "total_sources": metrics.total_sources,
            "total_records": metrics.total_records,
            "total_revenue": str(metrics.total_revenue),
            "unassigned_count": metrics.unassigned_count,
            "previously_assigned_count": metrics.previously_assigned_count,
            "failed_audits": metrics.failed_audits,
        },
        "snapshot": None
        if snapshot is None
        else {
            "sources": [item.model_dump(mode="json") for item in snapshot.sources],
            "lead_sheet": snapshot.lead_sheet.model_dump(mode="json"),
            "assignment": snapshot.assignment.model_dump(mode="json"),
            "audits": [item.model_dump(mode="json") for item in snapshot.audits],
        },
        "expanded_stage": view.expanded_stage.value if view.expanded_stage else None,
        "sequence": view.sequence,
        "refreshed_at": view.refreshed_at.isoformat() if view.refreshed_at else None,
        "stale": view.stale,
        "consecutive_failures": view.consecutive_failures,
        "warning": view.warning,
        "error": view.error,
    }


def _require_view() -> PipelineView:
    view = get_pipeline_coordinator().view
    if view is None:
        raise HTTPException(status_code=404, detail="no period selected")
    return view


@router.get("/periods")
async def list_periods(request: Request) -> dict:
    settings = _settings(request)
    periods = selectable_periods(trailing=settings.trailing_months, upcoming=settings.upcoming_months)
    coordinator = get_pipeline_coordinator()
    return {
        "items": [{"value": str(period), "label": period.label} for period in periods],
        "current": str(PeriodKey.current()),
        "selected": str(coordinator.period) if coordinator.period else None,
    }


@router.post("/pipeline/period")
async def select_period(payload: dict) -> dict:
    raw = payload.get("period")
    if not raw:
        raise HTTPException(status_code=400, detail="period is required")
    try:
        period = PeriodKey.parse(str(raw))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    await get_pipeline_coordinator().select_period(period)
    return _serialise_view(_require_view())


@router.get("/pipeline")
async def get_pipeline() -> dict:
    return _serialise_view(_require_view())


@router.post("/pipeline/refresh")
async def refresh_pipeline() -> dict:
    coordinator = get_pipeline_coordinator()
    _require_view()
    await coordinator.refresh()
    return _serialise_view(_require_view())


@router.post("/pipeline/audit")
async def run_audit() -> dict:
    coordinator = get_pipeline_coordinator()
    _require_view()
    try:
        result = await coordinator.run_audit()
    except AuditRunFailed as exc:
        raise HTTPException(
            status_code=409,
            detail={
                "message": str(exc),
                "failures": [item.model_dump(mode="json") for item in exc.failures],
                "reason": exc.reason,
                "pipeline": _serialise_view(_require_view()),
            },
        ) from exc
    return {"result": result.model_dump(mode="json"), "pipeline": _serialise_view(_require_view())}


@router.post("/pipeline/stages/{stage}/toggle")
async def toggle_stage(stage: str) -> dict:
    try:
        stage_id = StageId(stage)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail="unknown stage") from exc
    _require_view()
    notice = get_pipeline_coordinator().toggle_stage_view(stage_id)
    if notice is not None:
        raise HTTPException(status_code=409, detail={"stage": notice.stage.value, "message": notice.message})
    view = _require_view()
    return {"expanded_stage": view.expanded_stage.value if view.expanded_stage else None}
