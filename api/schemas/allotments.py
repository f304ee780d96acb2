"""Schemas for allotment letter scheduling and delivery status."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from database.models.allotments import ScheduleStatus, TrackingStatus


class ScheduleDistributionRequest(BaseModel):
    upload_id: int = Field(..., ge=1, description="Allotment letter upload for this post")
    scheduled_at: datetime = Field(..., description="Earliest time the batch may be sent")


class ScheduleDistributionResponse(BaseModel):
    """Result of a scheduling call; ``scheduled`` is False when nobody is left to notify."""

    scheduled: bool
    message: str
    schedule_id: Optional[int] = None
    new_recipients: int
    already_sent: int
    total_selected: int
    scheduled_date: Optional[datetime] = None


class CancelScheduleResponse(BaseModel):
    schedule_id: int
    status: ScheduleStatus
    cancelled_recipients: int
    message: str


class RetryScheduleRequest(BaseModel):
    max_retries: Optional[int] = Field(None, ge=1, le=20)


class RetryScheduleResponse(BaseModel):
    retried: bool
    schedule_id: int
    reset: int
    exhausted: int
    message: str


class ScheduleOut(BaseModel):
    schedule_id: int
    post_id: int
    upload_id: int
    scheduled_date: datetime
    status: ScheduleStatus
    total_recipients: int
    emails_sent: int
    emails_failed: int
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None


class TrackingOut(BaseModel):
    tracking_id: int
    schedule_id: int
    applicant_id: int
    application_id: int
    email: str
    status: TrackingStatus
    sent_at: Optional[datetime] = None
    error_message: Optional[str] = None
    retry_count: int


class CandidateEmailStatus(BaseModel):
    application_id: int
    application_no: str
    applicant_id: int
    full_name: Optional[str] = None
    email: Optional[str] = None
    email_status: str = Field(..., description="Tracking status, or NOT_SCHEDULED")
    sent_at: Optional[datetime] = None
    error_message: Optional[str] = None
    retry_count: int
    schedule_id: Optional[int] = None


class EmailStatusSummary(BaseModel):
    total_selected: int
    sent: int
    pending: int
    failed: int
    not_scheduled: int


class EmailStatusResponse(BaseModel):
    post_id: int
    schedules: list[ScheduleOut]
    tracking: list[TrackingOut]
    candidates: list[CandidateEmailStatus]
    summary: EmailStatusSummary


class DispatchTriggerResponse(BaseModel):
    task_id: str
    status: str
    message: str
