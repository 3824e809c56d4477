"""Coordinator for the monthly residuals pipeline.

The coordinator owns the view of the active period. It fetches snapshots
through :class:`StatusAggregator`, derives stage states and progress from
each one and swaps in a new immutable :class:`PipelineView`. Readers never
see a half-updated view.

Fetch discipline:

* at most one fetch is in flight for the active selection; ``refresh``
  joins it instead of issuing a duplicate;
* each fetch carries a sequence number and the selection generation it was
  issued under; a response from an older selection or with an older
  sequence is dropped on arrival;
* a failed fetch keeps the last-known-good snapshot and marks the view stale.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable

from residuals.application.aggregator import StatusAggregator
from residuals.core.errors import AuditRunFailed, SnapshotUnavailable, StageLocked, UpstreamError
from residuals.core.periods import PeriodKey
from residuals.core.progress import project, summarize
from residuals.core.schema import AuditFailure, AuditRunResult, AuditState, StageId, StageState
from residuals.core.stages import evaluate, initial_stage_states
from residuals.domain import PipelineSnapshot, PipelineView
from residuals.infrastructure import ResidualsUpstream, get_upstream

logger = logging.getLogger(__name__)

ViewListener = Callable[[PipelineView], None]


class PipelineCoordinator:
    def __init__(
        self,
        upstream: ResidualsUpstream,
        *,
        aggregator: StatusAggregator | None = None,
        poll_interval: float = 5.0,
        stale_warning_after: int = 3,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self._upstream = upstream
        self._aggregator = aggregator or StatusAggregator(upstream)
        self._poll_interval = poll_interval
        self._stale_warning_after = max(1, stale_warning_after)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

        self._period: PeriodKey | None = None
        self._generation = 0
        self._view: PipelineView | None = None
        self._issued_sequence = 0
        self._applied_sequence = 0
        self._inflight: asyncio.Task[PipelineView | None] | None = None
        self._inflight_generation = -1
        self._tasks: set[asyncio.Task] = set()
        self._poll_task: asyncio.Task[None] | None = None
        self._expanded_stage: StageId | None = None
        self._follow_current_stage = True
        self._listeners: list[ViewListener] = []
        self._closed = False

    # ------------------------------------------------------------------
    # read access
    # ------------------------------------------------------------------
    @property
    def period(self) -> PeriodKey | None:
        return self._period

    @property
    def view(self) -> PipelineView | None:
        return self._view

    @property
    def snapshot(self) -> PipelineSnapshot | None:
        return self._view.snapshot if self._view else None

    @property
    def expanded_stage(self) -> StageId | None:
        return self._expanded_stage

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    def subscribe(self, listener: ViewListener) -> Callable[[], None]:
        """Register ``listener`` for every new view; returns an unsubscribe callable."""

        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # ------------------------------------------------------------------
    # commands
    # ------------------------------------------------------------------
    async def select_period(self, period: PeriodKey) -> PipelineView | None:
        """Make ``period`` the active period and fetch it immediately."""

        if self._closed:
            raise RuntimeError("coordinator is closed")

        self._stop_polling()
        self._generation += 1
        self._period = period
        self._inflight = None
        self._expanded_stage = None
        self._follow_current_stage = True
        self._set_view(self._placeholder_view(period))
        logger.info("Selected residuals period %s", period)

        view = await self.refresh()
        self._ensure_polling()
        return view

    async def refresh(self) -> PipelineView | None:
        """Fetch the active period out of cycle, joining any fetch in flight."""

        period = self._require_period()
        task = self._current_fetch()
        if task is None:
            task = self._start_fetch(period)
        else:
            logger.debug("Joining fetch already in flight for %s", period)
        return await asyncio.shield(task)

    async def run_audit(self, period: PeriodKey | None = None) -> AuditRunResult:
        """Run the upstream audit, then refresh whatever the outcome.

        Raises :class:`AuditRunFailed` after the refresh when the run errored
        or reported failing sources.
        """

        target = period or self._require_period()
        logger.info("Running residuals audit for %s", target)

        cause: UpstreamError | None = None
        result: AuditRunResult | None = None
        try:
            result = await self._upstream.run_audit(target)
        except UpstreamError as exc:
            logger.warning("Audit run for %s failed: %s", target, exc)
            cause = exc
        finally:
            if target == self._period and not self._closed:
                await self._refresh_after_inflight()
                self._ensure_polling()

        if cause is not None or result is None:
            raise AuditRunFailed(target, reason=str(cause)) from cause
        if not result.succeeded:
            failures = self._failed_sources(target, result)
            logger.info("Audit for %s reported %s failing source(s)", target, len(failures))
            raise AuditRunFailed(target, failures, reason=f"audit status {result.status}")
        return result

    def _failed_sources(self, period: PeriodKey, result: AuditRunResult) -> tuple[AuditFailure, ...]:
        # Audit issues are often unattributed; per-source audit states are not.
        view = self._view
        if view is None or view.snapshot is None or view.period != period or view.stale:
            return result.failures

        snapshot = view.snapshot
        names = {source.source_id: source.source_name for source in snapshot.sources}
        reported = {failure.source_id: failure for failure in result.failures}
        failures = tuple(
            AuditFailure(
                source_id=audit.source_id,
                source_name=names.get(audit.source_id),
                issues=audit.issues or (reported[audit.source_id].issues if audit.source_id in reported else ()),
            )
            for audit in snapshot.audits
            if audit.audit_state is AuditState.FAILED
        )
        return failures or result.failures

    def toggle_stage_view(self, stage: StageId | str) -> StageLocked | None:
        """Expand or collapse ``stage``; locked stages are refused."""

        stage = StageId(stage)
        view = self._view
        states = view.stages if view is not None else initial_stage_states()
        if states[stage] is StageState.LOCKED:
            return StageLocked(stage)

        self._follow_current_stage = False
        self._expanded_stage = None if self._expanded_stage is stage else stage
        if view is not None:
            self._set_view(replace(view, expanded_stage=self._expanded_stage))
        return None

    async def close(self) -> None:
        """Stop polling and cancel outstanding fetches."""

        self._closed = True
        self._generation += 1
        tasks = [task for task in (self._poll_task, *self._tasks) if task is not None and not task.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._poll_task = None
        self._inflight = None

    # ------------------------------------------------------------------
    # fetching
    # ------------------------------------------------------------------
    def _require_period(self) -> PeriodKey:
        if self._period is None:
            raise RuntimeError("no period selected")
        return self._period

    def _current_fetch(self) -> asyncio.Task[PipelineView | None] | None:
        task = self._inflight
        if task is None or task.done() or self._inflight_generation != self._generation:
            return None
        return task

    def _start_fetch(self, period: PeriodKey) -> asyncio.Task[PipelineView | None]:
        self._issued_sequence += 1
        task = asyncio.create_task(self._fetch(period, self._generation, self._issued_sequence))
        self._inflight = task
        self._inflight_generation = self._generation
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _refresh_after_inflight(self) -> PipelineView | None:
        # A fetch issued before a mutation may not reflect it.
        pending = self._current_fetch()
        if pending is not None:
            await asyncio.wait({pending})
        task = self._current_fetch()
        if task is None:
            task = self._start_fetch(self._require_period())
        return await asyncio.shield(task)

    async def _fetch(self, period: PeriodKey, generation: int, sequence: int) -> PipelineView | None:
        try:
            snapshot = await self._aggregator.fetch_snapshot(period)
        except SnapshotUnavailable as exc:
            self._record_failure(generation, exc)
        else:
            self._apply(generation, sequence, snapshot)
        return self._view

    def _apply(self, generation: int, sequence: int, snapshot: PipelineSnapshot) -> None:
        if generation != self._generation or snapshot.period != self._period:
            logger.debug("Discarding snapshot for %s from a previous selection", snapshot.period)
            return
        if sequence <= self._applied_sequence:
            logger.debug("Discarding out-of-order snapshot #%s for %s", sequence, snapshot.period)
            return
        self._applied_sequence = sequence

        stages = evaluate(snapshot)
        progress = project(stages)
        if self._follow_current_stage:
            self._expanded_stage = progress.current_stage

        self._set_view(
            PipelineView(
                period=snapshot.period,
                snapshot=snapshot,
                stages=stages,
                progress=progress,
                metrics=summarize(snapshot),
                sequence=sequence,
                refreshed_at=self._clock(),
                expanded_stage=self._expanded_stage,
            )
        )
        if progress.is_terminal and self.is_polling:
            logger.info("Residuals pipeline for %s complete, polling stopped", snapshot.period)
            self._stop_polling()

    def _record_failure(self, generation: int, error: SnapshotUnavailable) -> None:
        view = self._view
        if generation != self._generation or view is None or error.period != view.period:
            logger.debug("Ignoring failed fetch for %s from a previous selection", error.period)
            return

        failures = view.consecutive_failures + 1
        warning = view.warning
        if failures >= self._stale_warning_after:
            warning = f"Residuals data for {view.period.label} may be out of date ({failures} refreshes failed)"
            if failures == self._stale_warning_after:
                logger.warning("Residuals status for %s stale after %s consecutive failed refreshes", view.period, failures)

        self._set_view(
            replace(view, stale=True, consecutive_failures=failures, warning=warning, error=str(error))
        )

    # ------------------------------------------------------------------
    # polling
    # ------------------------------------------------------------------
    def _ensure_polling(self) -> None:
        if self._closed or self._period is None or self.is_polling:
            return
        view = self._view
        if view is not None and view.progress.is_terminal:
            return
        self._poll_task = asyncio.create_task(self._poll(self._generation))

    def _stop_polling(self) -> None:
        if self._poll_task is not None and not self._poll_task.done():
            self._poll_task.cancel()
        self._poll_task = None

    async def _poll(self, generation: int) -> None:
        # Stopped by _apply once the pipeline is terminal.
        while generation == self._generation:
            await asyncio.sleep(self._poll_interval)
            if generation != self._generation:
                break
            await self.refresh()

    # ------------------------------------------------------------------
    # view bookkeeping
    # ------------------------------------------------------------------
    def _placeholder_view(self, period: PeriodKey) -> PipelineView:
        stages = initial_stage_states()
        return PipelineView(
            period=period,
            snapshot=None,
            stages=stages,
            progress=project(stages),
            metrics=summarize(None),
        )

    def _set_view(self, view: PipelineView) -> None:
        self._view = view
        for listener in list(self._listeners):
            try:
                listener(view)
            except Exception:
                logger.exception("Pipeline view listener failed")


_coordinator: PipelineCoordinator | None = None


def configure_pipeline_coordinator(coordinator: PipelineCoordinator) -> None:
    """Install the coordinator served by the API."""

    global _coordinator
    _coordinator = coordinator


def get_pipeline_coordinator() -> PipelineCoordinator:
    """Return the process-wide coordinator, creating it on first use."""

    global _coordinator
    if _coordinator is None:
        _coordinator = PipelineCoordinator(get_upstream())
    return _coordinator


def reset_pipeline_coordinator() -> None:
    """Drop the process-wide coordinator (used in tests)."""

    global _coordinator
    _coordinator = None
