"""
Merit list endpoints.

The ranked view is always computed live; snapshots are a historical record
only.
"""

from typing import Optional

from fastapi import APIRouter, Body, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_admin_id
from api.schemas.common import PaginationParams
from api.schemas.merit import MeritListResponse, MeritSnapshotRequest, MeritSnapshotResponse
from api.services import merit as merit_service
from database.engine import get_db
from database.models.applications import ApplicationStatus

router = APIRouter()


@router.get(
    "/posts/{post_id}",
    response_model=MeritListResponse,
    summary="Get Merit List",
    description="Rank every qualifying application of a post and return one page of the ranking.",
)
async def get_merit_list(
    post_id: int = Path(..., description="Post ID"),
    district_id: Optional[int] = Query(None, description="Filter by application district"),
    status: Optional[list[ApplicationStatus]] = Query(
        None, description="Statuses to rank (repeatable); defaults to the rankable set"
    ),
    pagination: PaginationParams = Depends(),
    admin_id: int = Depends(get_admin_id),
    db: AsyncSession = Depends(get_db),
):
    return await merit_service.get_merit_list(
        db,
        post_id,
        district_id=district_id,
        statuses=status,
        page=pagination.page,
        page_size=pagination.page_size,
    )


@router.post(
    "/posts/{post_id}/snapshot",
    response_model=MeritSnapshotResponse,
    summary="Generate Merit Snapshot",
)
async def generate_merit_snapshot(
    post_id: int = Path(..., description="Post ID"),
    request: MeritSnapshotRequest = Body(default=MeritSnapshotRequest()),
    admin_id: int = Depends(get_admin_id),
    db: AsyncSession = Depends(get_db),
):
    """Persist the current ranking for the post (and optional district)."""
    return await merit_service.generate_merit_snapshot(
        db,
        post_id,
        district_id=request.district_id,
        generated_by=admin_id,
    )
