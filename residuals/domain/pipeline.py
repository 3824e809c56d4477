"""Immutable values describing the residuals pipeline for one period."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterator

from residuals.core.periods import PeriodKey
from residuals.core.schema import (
    STAGE_ORDER,
    AssignmentSummary,
    AuditResult,
    LeadSheetStatus,
    SourceStatus,
    StageId,
    StageState,
    UploadState,
)


@dataclass(frozen=True, slots=True)
class PipelineSnapshot:
    """Point-in-time aggregate of every upstream status for one period."""

    period: PeriodKey
    sources: tuple[SourceStatus, ...] = ()
    lead_sheet: LeadSheetStatus = field(default_factory=LeadSheetStatus)
    assignment: AssignmentSummary = field(default_factory=AssignmentSummary.pending)
    audits: tuple[AuditResult, ...] = ()

    @property
    def total_records(self) -> int:
        return sum(source.record_count for source in self.sources)

    @property
    def total_revenue(self) -> Decimal:
        return sum((source.revenue_total for source in self.sources), Decimal("0"))

    @property
    def uploaded_sources(self) -> int:
        return sum(1 for source in self.sources if source.upload_state is UploadState.VALIDATED)

    def audit_for(self, source_id: str) -> AuditResult | None:
        for result in self.audits:
            if result.source_id == source_id:
                return result
        return None


@dataclass(frozen=True, slots=True)
class StageStates:
    upload: StageState
    compile: StageState
    assign: StageState
    audit: StageState

    def __getitem__(self, stage: StageId) -> StageState:
        return getattr(self, StageId(stage).value)

    def __iter__(self) -> Iterator[StageId]:
        return iter(STAGE_ORDER)

    def items(self) -> list[tuple[StageId, StageState]]:
        return [(stage, self[stage]) for stage in STAGE_ORDER]

    def as_dict(self) -> dict[str, str]:
        return {stage.value: state.value for stage, state in self.items()}


@dataclass(frozen=True, slots=True)
class PipelineProgress:
    percent: int
    current_stage: StageId | None
    is_terminal: bool


@dataclass(frozen=True, slots=True)
class PipelineMetrics:
    uploaded_sources: int = 0
    total_sources: int = 0
    total_records: int = 0
    total_revenue: Decimal = Decimal("0")
    unassigned_count: int | None = None
    previously_assigned_count: int | None = None
    failed_audits: int = 0


@dataclass(frozen=True, slots=True)
class PipelineView:
    """Everything a reader observes for the active period.

    ``snapshot`` is the last-known-good snapshot and is ``None`` until the
    first successful fetch for the period. ``stale`` is set while the most
    recent fetch failed.
    """

    period: PeriodKey
    snapshot: PipelineSnapshot | None
    stages: StageStates
    progress: PipelineProgress
    metrics: PipelineMetrics
    sequence: int = 0
    refreshed_at: datetime | None = None
    stale: bool = False
    consecutive_failures: int = 0
    warning: str | None = None
    error: str | None = None
    expanded_stage: StageId | None = None
