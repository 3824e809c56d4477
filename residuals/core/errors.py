from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from residuals.core.periods import PeriodKey
from residuals.core.schema import AuditFailure, StageId


class ResidualsError(RuntimeError):
    """Base class for coordinator errors."""


class UpstreamError(ResidualsError):
    """Raised when an upstream subsystem call fails."""


class SnapshotUnavailable(ResidualsError):
    """Raised when any lookup behind a snapshot fails."""

    def __init__(self, period: PeriodKey, failed_lookups: Iterable[str]) -> None:
        self.period = period
        self.failed_lookups = tuple(failed_lookups)
        joined = ", ".join(self.failed_lookups) or "unknown"
        super().__init__(f"snapshot for {period} unavailable ({joined} failed)")


class AuditRunFailed(ResidualsError):
    """Raised when an audit run errors or reports failing sources."""

    def __init__(
        self,
        period: PeriodKey,
        failures: Iterable[AuditFailure] = (),
        *,
        reason: str | None = None,
    ) -> None:
        self.period = period
        self.failures = tuple(failures)
        self.reason = reason
        if self.failures:
            names = ", ".join(item.source_name or item.source_id for item in self.failures)
            message = f"audit for {period} failed for {len(self.failures)} source(s): {names}"
        else:
            message = f"audit for {period} failed: {reason or 'unknown error'}"
        super().__init__(message)

    @property
    def failing_sources(self) -> list[str]:
        return [item.source_id for item in self.failures]


@dataclass(frozen=True, slots=True)
class StageLocked:
    """Notice returned when a locked stage is opened."""

    stage: StageId
    message: str = "Complete previous steps first"
