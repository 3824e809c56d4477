from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field


class UploadState(str, Enum):
    VALIDATED = "validated"
    NEEDS_UPLOAD = "needs_upload"
    ERROR = "error"


class AuditState(str, Enum):
    PASSED = "passed"
    PENDING = "pending"
    FAILED = "failed"


class StageId(str, Enum):
    UPLOAD = "upload"
    COMPILE = "compile"
    ASSIGN = "assign"
    AUDIT = "audit"


class StageState(str, Enum):
    LOCKED = "locked"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


STAGE_ORDER: tuple[StageId, ...] = (
    StageId.UPLOAD,
    StageId.COMPILE,
    StageId.ASSIGN,
    StageId.AUDIT,
)


class SourceStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    source_id: str
    source_name: str
    upload_state: UploadState = UploadState.NEEDS_UPLOAD
    record_count: int = Field(default=0, ge=0)
    revenue_total: Decimal = Decimal("0")
    last_updated: datetime | None = None


class LeadSheetStatus(BaseModel):
    model_config = ConfigDict(frozen=True)

    upload_state: UploadState = UploadState.NEEDS_UPLOAD
    record_count: int = Field(default=0, ge=0)


class AssignmentSummary(BaseModel):
    """Role assignment counts for a period.

    ``loaded`` is false until the assignment subsystem has answered. Counts
    carried by an unloaded summary are meaningless and must not be read as
    "nothing left to assign".
    """

    model_config = ConfigDict(frozen=True)

    unassigned_count: int = Field(default=0, ge=0)
    previously_assigned_count: int = Field(default=0, ge=0)
    loaded: bool = False

    @classmethod
    def pending(cls) -> "AssignmentSummary":
        return cls(loaded=False)


class AuditResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    source_id: str
    audit_state: AuditState = AuditState.PENDING
    issues: tuple[str, ...] = ()


class AuditFailure(BaseModel):
    model_config = ConfigDict(frozen=True)

    source_id: str
    source_name: str | None = None
    issues: tuple[str, ...] = ()


class AuditRunResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: Literal["passed", "failed"]
    issues_found: int = 0
    failures: tuple[AuditFailure, ...] = ()

    @property
    def succeeded(self) -> bool:
        return self.status == "passed" and not self.failures
