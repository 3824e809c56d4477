"""Boundary to the subsystems that own residuals state."""
from __future__ import annotations

from collections import Counter
from typing import Protocol

from residuals.core.periods import PeriodKey
from residuals.core.schema import (
    AssignmentSummary,
    AuditFailure,
    AuditResult,
    AuditRunResult,
    AuditState,
    LeadSheetStatus,
    SourceStatus,
)


class ResidualsUpstream(Protocol):
    """Contract for the upload, lead sheet, assignment and audit subsystems."""

    async def get_source_statuses(self, period: PeriodKey) -> list[SourceStatus]: ...

    async def get_lead_sheet_status(self, period: PeriodKey) -> LeadSheetStatus: ...

    async def get_assignment_summary(self, period: PeriodKey) -> AssignmentSummary: ...

    async def get_audit_results(self, period: PeriodKey) -> list[AuditResult]: ...

    async def run_audit(self, period: PeriodKey) -> AuditRunResult: ...


class InMemoryResidualsUpstream:
    """Simple in-memory system of record for local runs and tests."""

    def __init__(self) -> None:
        self._sources: dict[PeriodKey, dict[str, SourceStatus]] = {}
        self._lead_sheets: dict[PeriodKey, LeadSheetStatus] = {}
        self._assignments: dict[PeriodKey, AssignmentSummary] = {}
        self._audits: dict[PeriodKey, dict[str, AuditResult]] = {}
        self._audit_outcomes: dict[PeriodKey, dict[str, tuple[AuditState, tuple[str, ...]]]] = {}
        self.calls: Counter[str] = Counter()
        self.audit_runs: list[PeriodKey] = []

    # ------------------------------------------------------------------
    # state setup
    # ------------------------------------------------------------------
    def put_source(self, period: PeriodKey, status: SourceStatus) -> None:
        self._sources.setdefault(period, {})[status.source_id] = status

    def set_lead_sheet(self, period: PeriodKey, status: LeadSheetStatus) -> None:
        self._lead_sheets[period] = status

    def set_assignment(self, period: PeriodKey, summary: AssignmentSummary) -> None:
        self._assignments[period] = summary

    def put_audit(self, period: PeriodKey, result: AuditResult) -> None:
        self._audits.setdefault(period, {})[result.source_id] = result

    def plan_audit_outcome(
        self,
        period: PeriodKey,
        source_id: str,
        state: AuditState,
        issues: tuple[str, ...] = (),
    ) -> None:
        """Decide what the next audit run reports for ``source_id``."""

        self._audit_outcomes.setdefault(period, {})[source_id] = (state, tuple(issues))

    # ------------------------------------------------------------------
    # upstream contract
    # ------------------------------------------------------------------
    async def get_source_statuses(self, period: PeriodKey) -> list[SourceStatus]:
        self.calls["sources"] += 1
        return list(self._sources.get(period, {}).values())

    async def get_lead_sheet_status(self, period: PeriodKey) -> LeadSheetStatus:
        self.calls["lead_sheet"] += 1
        return self._lead_sheets.get(period, LeadSheetStatus())

    async def get_assignment_summary(self, period: PeriodKey) -> AssignmentSummary:
        self.calls["assignment"] += 1
        return self._assignments.get(period, AssignmentSummary.pending())

    async def get_audit_results(self, period: PeriodKey) -> list[AuditResult]:
        self.calls["audits"] += 1
        return list(self._audits.get(period, {}).values())

    async def run_audit(self, period: PeriodKey) -> AuditRunResult:
        self.calls["run_audit"] += 1
        self.audit_runs.append(period)
        outcomes = self._audit_outcomes.get(period, {})
        failures: list[AuditFailure] = []
        for source in self._sources.get(period, {}).values():
            state, issues = outcomes.get(source.source_id, (AuditState.PASSED, ()))
            self.put_audit(period, AuditResult(source_id=source.source_id, audit_state=state, issues=issues))
            if state is AuditState.FAILED:
                failures.append(AuditFailure(source_id=source.source_id, source_name=source.source_name, issues=issues))
        return AuditRunResult(
            status="failed" if failures else "passed",
            issues_found=sum(max(1, len(item.issues)) for item in failures),
            failures=tuple(failures),
        )

    def reset(self) -> None:
        self._sources.clear()
        self._lead_sheets.clear()
        self._assignments.clear()
        self._audits.clear()
        self._audit_outcomes.clear()
        self.calls.clear()
        self.audit_runs.clear()


_upstream: ResidualsUpstream = InMemoryResidualsUpstream()


def configure_upstream(upstream: ResidualsUpstream) -> None:
    """Install the upstream used by the pipeline coordinator."""

    global _upstream
    _upstream = upstream


def get_upstream() -> ResidualsUpstream:
    """Return the currently configured upstream."""

    return _upstream
