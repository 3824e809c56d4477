from __future__ import annotations

import pytest

from residuals.application import StatusAggregator
from residuals.core.errors import SnapshotUnavailable, UpstreamError
from residuals.core.periods import PeriodKey
from residuals.core.schema import AssignmentSummary, UploadState

PERIOD = PeriodKey(2025, 6)


@pytest.mark.anyio
async def test_fetch_snapshot_collects_every_lookup(seed):
    upstream = seed(assignment=AssignmentSummary(loaded=True, unassigned_count=3, previously_assigned_count=9))
    aggregator = StatusAggregator(upstream)

    snapshot = await aggregator.fetch_snapshot(PERIOD)

    assert snapshot.period == PERIOD
    assert [source.source_id for source in snapshot.sources] == ["1", "2", "3", "4", "5", "6", "7"]
    assert snapshot.lead_sheet.upload_state is UploadState.VALIDATED
    assert snapshot.assignment == AssignmentSummary(loaded=True, unassigned_count=3, previously_assigned_count=9)
    assert snapshot.audits == ()
    assert dict(upstream.calls) == {"sources": 1, "lead_sheet": 1, "assignment": 1, "audits": 1}


@pytest.mark.anyio
async def test_missing_assignment_summary_stays_unloaded(seed):
    aggregator = StatusAggregator(seed())

    snapshot = await aggregator.fetch_snapshot(PERIOD)

    assert snapshot.assignment.loaded is False


@pytest.mark.anyio
async def test_repeated_fetches_are_equal(seed):
    aggregator = StatusAggregator(seed())

    first = await aggregator.fetch_snapshot(PERIOD)
    second = await aggregator.fetch_snapshot(PERIOD)

    assert first == second
    assert first is not second


@pytest.mark.anyio
async def test_any_failed_lookup_fails_the_whole_snapshot(seed, monkeypatch):
    upstream = seed()

    async def broken(period):
        raise UpstreamError("assignment service down")

    monkeypatch.setattr(upstream, "get_assignment_summary", broken)
    aggregator = StatusAggregator(upstream)

    with pytest.raises(SnapshotUnavailable) as excinfo:
        await aggregator.fetch_snapshot(PERIOD)

    assert excinfo.value.period == PERIOD
    assert excinfo.value.failed_lookups == ("assignment",)
    assert isinstance(excinfo.value.__cause__, UpstreamError)
