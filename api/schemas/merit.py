"""Schemas for the ranked merit view and snapshots."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel

from api.schemas.common import PaginatedResponse
from database.models.applications import ApplicationStatus


class MeritBreakdownOut(BaseModel):
    """Per-tier values behind a merit score."""

    education_rank: int
    marks: float
    locality: int
    experience_months: int
    age_score: int


class OtherApplication(BaseModel):
    application_id: int
    application_no: str
    post_id: int
    post_code: Optional[str] = None
    post_name: Optional[str] = None
    status: ApplicationStatus


class MeritListItem(BaseModel):
    merit_rank: int
    merit_score: int
    breakdown: MeritBreakdownOut
    is_local_candidate: bool
    application_id: int
    application_no: str
    applicant_id: int
    full_name: Optional[str] = None
    district_id: Optional[int] = None
    status: ApplicationStatus
    submitted_at: Optional[datetime] = None
    total_applications: int
    other_applications: list[OtherApplication]


class PostSummary(BaseModel):
    post_id: int
    post_code: str
    post_name: str
    district_id: Optional[int] = None


class MeritListResponse(PaginatedResponse[MeritListItem]):
    """Ranked page plus the post's per-status application counts."""

    post: PostSummary
    status_summary: dict[str, int]


class MeritSnapshotRequest(BaseModel):
    district_id: Optional[int] = None


class MeritSnapshotResponse(BaseModel):
    post_id: int
    district_id: Optional[int] = None
    generated_at: datetime
    total: int
