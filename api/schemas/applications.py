"""Schemas for application submission, status changes and selection."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from api.services.workflow import EligibilityCheck, EligibilityVerdict
from database.models.applications import ActorType, ApplicationStatus


class EligibilityCheckIn(BaseModel):
    """One evaluated eligibility rule."""

    name: str = Field(..., min_length=1, max_length=100)
    passed: bool
    message: Optional[str] = Field(None, max_length=500)


class SubmitApplicationRequest(BaseModel):
    """Eligibility verdict supplied with a submission."""

    is_eligible: bool = Field(..., description="Overall system eligibility verdict")
    checks: list[EligibilityCheckIn] = Field(default_factory=list)
    declaration_accepted: bool = Field(True, description="Applicant accepted the declaration")

    def to_verdict(self) -> EligibilityVerdict:
        return EligibilityVerdict(
            is_eligible=self.is_eligible,
            checks=tuple(
                EligibilityCheck(name=c.name, passed=c.passed, message=c.message)
                for c in self.checks
            ),
        )


class SubmissionResponse(BaseModel):
    application_id: int
    application_no: str
    status: ApplicationStatus
    is_eligible: bool
    failed_checks: list[str]
    submitted_at: datetime
    is_locked: bool


class WithdrawRequest(BaseModel):
    remarks: Optional[str] = Field(None, max_length=1000)


class StatusChangeRequest(BaseModel):
    """Admin-driven status change through the transition table."""

    status: ApplicationStatus
    remarks: Optional[str] = Field(None, max_length=1000)


class ApplicationStatusResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    application_id: int
    application_no: str
    status: ApplicationStatus
    is_locked: bool
    updated_at: Optional[datetime] = None


class SelectionRequest(BaseModel):
    """Selection decision for one application."""

    action: ApplicationStatus = Field(..., description="ON_HOLD, SELECTED or REJECTED")
    remarks: Optional[str] = Field(None, max_length=1000)
    release_others: Optional[bool] = Field(
        None, description="Override automatic release of the applicant's other applications"
    )


class SelectionResponse(BaseModel):
    application_id: int
    application_no: str
    old_status: ApplicationStatus
    status: ApplicationStatus
    released_application_ids: list[int]


class BulkStatusRequest(BaseModel):
    """Selection decision applied to many applications."""

    application_ids: list[int] = Field(..., min_length=1, max_length=500)
    action: ApplicationStatus
    remarks: Optional[str] = Field(None, max_length=1000)
    release_others: Optional[bool] = None


class BulkItemSuccess(BaseModel):
    application_id: int
    old_status: ApplicationStatus
    status: ApplicationStatus
    released_application_ids: list[int]


class BulkItemFailure(BaseModel):
    application_id: int
    code: str
    error: str


class BulkStatusResponse(BaseModel):
    action: ApplicationStatus
    total: int
    successful_count: int
    failed_count: int
    successful: list[BulkItemSuccess]
    failed: list[BulkItemFailure]


class StatusHistoryEntry(BaseModel):
    """One ledger row."""

    model_config = ConfigDict(from_attributes=True)

    history_id: int
    application_id: int
    old_status: Optional[ApplicationStatus] = None
    new_status: ApplicationStatus
    changed_by: Optional[int] = None
    changed_by_type: ActorType
    remarks: Optional[str] = None
    metadata: Optional[dict[str, Any]] = Field(None, validation_alias="change_metadata")
    created_at: datetime
