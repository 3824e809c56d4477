"""Common pytest configuration."""
from __future__ import annotations

from decimal import Decimal

import pytest

from residuals.application import reset_pipeline_coordinator
from residuals.core.periods import PeriodKey
from residuals.core.schema import (
    AssignmentSummary,
    AuditResult,
    AuditState,
    LeadSheetStatus,
    SourceStatus,
    UploadState,
)
from residuals.domain import PipelineSnapshot
from residuals.infrastructure import InMemoryResidualsUpstream, configure_upstream

PERIOD = PeriodKey(2025, 6)

# Seven processors totalling 12,450 records.
PROCESSORS: list[tuple[str, str, int]] = [
    ("1", "Clearent", 2000),
    ("2", "Global Payments", 1800),
    ("3", "Shift4", 1700),
    ("4", "TRX", 1650),
    ("5", "MiCamp", 1900),
    ("6", "Payment Advisors", 1700),
    ("7", "Merchant Lynx", 1700),
]


def _sources(validated: int) -> list[SourceStatus]:
    sources: list[SourceStatus] = []
    for index, (source_id, name, records) in enumerate(PROCESSORS):
        is_validated = index < validated
        sources.append(
            SourceStatus(
                source_id=source_id,
                source_name=name,
                upload_state=UploadState.VALIDATED if is_validated else UploadState.NEEDS_UPLOAD,
                record_count=records if is_validated else 0,
                revenue_total=Decimal("100.50") if is_validated else Decimal("0"),
            )
        )
    return sources


def _audits(state: AuditState | None, failed: set[str]) -> list[AuditResult]:
    if state is None and not failed:
        return []
    results: list[AuditResult] = []
    for source_id, _, _ in PROCESSORS:
        if source_id in failed:
            results.append(AuditResult(source_id=source_id, audit_state=AuditState.FAILED, issues=("split_error",)))
        else:
            results.append(AuditResult(source_id=source_id, audit_state=state or AuditState.PENDING))
    return results


@pytest.fixture
def anyio_backend() -> str:
    """Force asyncio backend for anyio-powered tests."""
    return "asyncio"


@pytest.fixture(autouse=True)
def reset_state():
    reset_pipeline_coordinator()
    yield
    reset_pipeline_coordinator()
    configure_upstream(InMemoryResidualsUpstream())


@pytest.fixture
def make_snapshot():
    def _make(
        *,
        period: PeriodKey = PERIOD,
        validated: int = len(PROCESSORS),
        lead_sheet: UploadState = UploadState.VALIDATED,
        assignment: AssignmentSummary | None = None,
        audit_state: AuditState | None = None,
        failed_audits: set[str] | None = None,
    ) -> PipelineSnapshot:
        return PipelineSnapshot(
            period=period,
            sources=tuple(_sources(validated)),
            lead_sheet=LeadSheetStatus(upload_state=lead_sheet, record_count=480),
            assignment=assignment or AssignmentSummary.pending(),
            audits=tuple(_audits(audit_state, failed_audits or set())),
        )

    return _make


@pytest.fixture
def upstream() -> InMemoryResidualsUpstream:
    return InMemoryResidualsUpstream()


@pytest.fixture
def seed(upstream: InMemoryResidualsUpstream):
    def _seed(
        period: PeriodKey = PERIOD,
        *,
        validated: int = len(PROCESSORS),
        lead_sheet: UploadState = UploadState.VALIDATED,
        assignment: AssignmentSummary | None = None,
        audit_state: AuditState | None = None,
        failed_audits: set[str] | None = None,
    ) -> InMemoryResidualsUpstream:
        for source in _sources(validated):
            upstream.put_source(period, source)
        upstream.set_lead_sheet(period, LeadSheetStatus(upload_state=lead_sheet, record_count=480))
        if assignment is not None:
            upstream.set_assignment(period, assignment)
        for result in _audits(audit_state, failed_audits or set()):
            upstream.put_audit(period, result)
        return upstream

    return _seed
