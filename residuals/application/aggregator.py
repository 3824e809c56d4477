from __future__ import annotations

import asyncio
import logging

from residuals.core.errors import SnapshotUnavailable
from residuals.core.periods import PeriodKey
from residuals.domain import PipelineSnapshot
from residuals.infrastructure import ResidualsUpstream

logger = logging.getLogger(__name__)

LOOKUPS: tuple[str, ...] = ("sources", "lead_sheet", "assignment", "audits")


class StatusAggregator:
    """Collects every upstream status for a period into one snapshot."""

    def __init__(self, upstream: ResidualsUpstream) -> None:
        self._upstream = upstream

    @property
    def upstream(self) -> ResidualsUpstream:
        return self._upstream

    async def fetch_snapshot(self, period: PeriodKey) -> PipelineSnapshot:
        """Fetch a complete snapshot for ``period``.

        The four lookups run concurrently. If any of them fails the whole
        fetch fails with :class:`SnapshotUnavailable`; a partial snapshot is
        never returned.
        """

        results = await asyncio.gather(
            self._upstream.get_source_statuses(period),
            self._upstream.get_lead_sheet_status(period),
            self._upstream.get_assignment_summary(period),
            self._upstream.get_audit_results(period),
            return_exceptions=True,
        )

        failed = [(name, result) for name, result in zip(LOOKUPS, results) if isinstance(result, BaseException)]
        if failed:
            names = [name for name, _ in failed]
            first_error = failed[0][1]
            logger.warning("Snapshot for %s unavailable, failed lookups: %s (%s)", period, ", ".join(names), first_error)
            raise SnapshotUnavailable(period, names) from first_error

        sources, lead_sheet, assignment, audits = results
        return PipelineSnapshot(
            period=period,
            sources=tuple(sorted(sources, key=lambda item: item.source_id)),
            lead_sheet=lead_sheet,
            assignment=assignment,
            audits=tuple(sorted(audits, key=lambda item: item.source_id)),
        )
