"""Integration with the back-office residuals REST API."""
from __future__ import annotations

import asyncio
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any
from urllib.parse import urlparse

import httpx

from residuals.core.errors import UpstreamError
from residuals.core.periods import PeriodKey
from residuals.core.schema import (
    AssignmentSummary,
    AuditFailure,
    AuditResult,
    AuditRunResult,
    AuditState,
    LeadSheetStatus,
    SourceStatus,
    UploadState,
)

UNATTRIBUTED_SOURCE = "unattributed"


class ResidualsApiClient:
    """Async client for the residuals workflow endpoints.

    ``token`` is an opaque credential owned by the caller's session; it is
    forwarded as a bearer header and not interpreted here.
    """

    def __init__(
        self,
        api_base: str,
        *,
        token: str | None = None,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        parsed = urlparse(api_base)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError("api_base must include scheme and host")

        self._base_url = f"{parsed.scheme}://{parsed.netloc}{parsed.path.rstrip('/')}"
        self._headers = {"Accept": "application/json"}
        if token:
            self._headers["Authorization"] = f"Bearer {token}"
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None
        self._status_requests: dict[PeriodKey, asyncio.Task[dict[str, Any]]] = {}

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    @staticmethod
    def _safe_int(value: Any) -> int:
        try:
            return max(0, int(value))
        except (TypeError, ValueError):
            return 0

    @staticmethod
    def _safe_decimal(value: Any, default: str = "0") -> Decimal:
        try:
            result = Decimal(str(value))
            if not result.is_finite():
                return Decimal(default)
            return result
        except (InvalidOperation, TypeError):
            return Decimal(default)

    @staticmethod
    def _safe_datetime(value: Any) -> datetime | None:
        if isinstance(value, datetime):
            return value
        if not isinstance(value, str) or not value.strip():
            return None
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = f"{text[:-1]}+00:00"
        try:
            return datetime.fromisoformat(text)
        except ValueError:
            return None

    @staticmethod
    def _upload_state(value: Any) -> UploadState:
        try:
            return UploadState(str(value or "").strip().lower())
        except ValueError:
            return UploadState.NEEDS_UPLOAD

    @staticmethod
    def _audit_state(value: Any) -> AuditState:
        try:
            return AuditState(str(value or "").strip().lower())
        except ValueError:
            return AuditState.PENDING

    @staticmethod
    def _issue_texts(value: Any) -> tuple[str, ...]:
        if not isinstance(value, list):
            return ()
        texts: list[str] = []
        for item in value:
            if isinstance(item, dict):
                text = item.get("description") or item.get("message") or item.get("issueType")
            else:
                text = item
            if text:
                texts.append(str(text))
        return tuple(texts)

    async def _request(self, method: str, path: str) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        try:
            response = await self._client.request(method, url, headers=self._headers)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as exc:
            raise UpstreamError(f"{method} {path} failed: {exc}") from exc
        except ValueError as exc:
            raise UpstreamError(f"{method} {path} returned invalid JSON") from exc

        if not isinstance(payload, dict):
            raise UpstreamError(f"{method} {path} returned an unexpected body")
        if payload.get("success") is False:
            raise UpstreamError(str(payload.get("error") or f"{method} {path} reported failure"))
        return payload

    async def _get_status(self, period: PeriodKey) -> dict[str, Any]:
        """Return the status payload for ``period``.

        Sources, lead sheet and audits all read this endpoint. Lookups issued
        while a request is in flight share it, so one snapshot costs one GET
        and every part of it comes from the same response.
        """

        task = self._status_requests.get(period)
        if task is None:
            task = asyncio.create_task(self._request("GET", f"/api/real-data/status/{period}"))
            self._status_requests[period] = task

            def _forget(done: asyncio.Task[dict[str, Any]]) -> None:
                if self._status_requests.get(period) is done:
                    del self._status_requests[period]

            task.add_done_callback(_forget)
        return await asyncio.shield(task)

    @staticmethod
    def _processors(payload: dict[str, Any]) -> list[dict[str, Any]]:
        processors = payload.get("processors") or []
        return [item for item in processors if isinstance(item, dict)]

    # ------------------------------------------------------------------
    # upstream contract
    # ------------------------------------------------------------------
    async def get_source_statuses(self, period: PeriodKey) -> list[SourceStatus]:
        payload = await self._get_status(period)
        statuses: list[SourceStatus] = []
        for item in self._processors(payload):
            source_id = str(item.get("processorId") or "")
            if not source_id:
                continue
            statuses.append(
                SourceStatus(
                    source_id=source_id,
                    source_name=str(item.get("processorName") or source_id),
                    upload_state=self._upload_state(item.get("uploadStatus")),
                    record_count=self._safe_int(item.get("recordCount")),
                    revenue_total=self._safe_decimal(item.get("totalRevenue")),
                    last_updated=self._safe_datetime(item.get("lastUpdated")),
                )
            )
        return statuses

    async def get_lead_sheet_status(self, period: PeriodKey) -> LeadSheetStatus:
        payload = await self._get_status(period)
        lead_sheet = payload.get("leadSheetData") or {}

        if lead_sheet.get("uploadStatus"):
            state = self._upload_state(lead_sheet.get("uploadStatus"))
        else:
            states = {self._upload_state(item.get("leadSheetStatus")) for item in self._processors(payload)}
            if UploadState.VALIDATED in states:
                state = UploadState.VALIDATED
            elif UploadState.ERROR in states:
                state = UploadState.ERROR
            else:
                state = UploadState.NEEDS_UPLOAD

        return LeadSheetStatus(upload_state=state, record_count=self._safe_int(lead_sheet.get("recordCount")))

    async def get_assignment_summary(self, period: PeriodKey) -> AssignmentSummary:
        payload = await self._request("GET", f"/api/residuals-workflow/role-assignment/unassigned/{period}")
        if payload.get("status") == "no_data_uploaded":
            return AssignmentSummary.pending()
        summary = payload.get("summary")
        if not isinstance(summary, dict) or "newUnassigned" not in summary:
            return AssignmentSummary.pending()
        return AssignmentSummary(
            unassigned_count=self._safe_int(summary.get("newUnassigned")),
            previously_assigned_count=self._safe_int(summary.get("previouslyAssigned")),
            loaded=True,
        )

    async def get_audit_results(self, period: PeriodKey) -> list[AuditResult]:
        payload = await self._get_status(period)
        results: list[AuditResult] = []
        for item in self._processors(payload):
            source_id = str(item.get("processorId") or "")
            if not source_id:
                continue
            results.append(
                AuditResult(
                    source_id=source_id,
                    audit_state=self._audit_state(item.get("auditStatus")),
                    issues=self._issue_texts(item.get("auditIssues")),
                )
            )
        return results

    async def run_audit(self, period: PeriodKey) -> AuditRunResult:
        path = f"/api/residuals-workflow/audit/{period}"
        payload = await self._request("POST", path)
        try:
            return self._audit_run_result(payload)
        except (AttributeError, TypeError, ValueError) as exc:
            raise UpstreamError(f"POST {path} returned an unexpected audit body: {exc}") from exc

    def _audit_run_result(self, payload: dict[str, Any]) -> AuditRunResult:
        results = payload.get("results") or {}
        raw_issues = [item for item in results.get("issues") or [] if isinstance(item, dict)]

        grouped: dict[str, dict[str, Any]] = {}
        for issue in raw_issues:
            source_id = str(issue.get("processorId") or UNATTRIBUTED_SOURCE)
            name = issue.get("processorName")
            entry = grouped.setdefault(source_id, {"name": str(name) if name else None, "issues": []})
            entry["issues"].extend(self._issue_texts([issue]))

        status = "failed" if str(results.get("status") or "").lower() == "failed" or grouped else "passed"
        if status == "failed" and not grouped:
            grouped[UNATTRIBUTED_SOURCE] = {"name": None, "issues": []}

        failures = tuple(
            AuditFailure(source_id=source_id, source_name=entry["name"], issues=tuple(entry["issues"]))
            for source_id, entry in grouped.items()
        )
        return AuditRunResult(
            status=status,
            issues_found=self._safe_int(results.get("issuesFound")) or len(raw_issues),
            failures=failures,
        )

    async def aclose(self) -> None:
        pending = list(self._status_requests.values())
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        if self._owns_client:
            await self._client.aclose()


__all__ = ["ResidualsApiClient", "UNATTRIBUTED_SOURCE"]
