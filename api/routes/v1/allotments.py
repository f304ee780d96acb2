"""
Allotment letter distribution endpoints.
"""

import logging

from fastapi import APIRouter, Body, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_admin_id
from api.schemas.allotments import (
    CancelScheduleResponse,
    DispatchTriggerResponse,
    EmailStatusResponse,
    RetryScheduleRequest,
    RetryScheduleResponse,
    ScheduleDistributionRequest,
    ScheduleDistributionResponse,
)
from api.services import allotments as allotment_service
from database.engine import get_db
from workers.tasks.allotments import dispatch_due_allotments

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post(
    "/posts/{post_id}/schedules",
    response_model=ScheduleDistributionResponse,
    summary="Schedule Allotment Emails",
    description=(
        "Schedule the allotment letter for selected candidates who have not received it. "
        "Returns scheduled=false when there is nobody left to notify."
    ),
)
async def schedule_distribution(
    post_id: int = Path(..., description="Post ID"),
    request: ScheduleDistributionRequest = Body(...),
    admin_id: int = Depends(get_admin_id),
    db: AsyncSession = Depends(get_db),
):
    return await allotment_service.schedule_distribution(
        db,
        post_id,
        request.upload_id,
        request.scheduled_at,
        admin_id,
    )


@router.get(
    "/posts/{post_id}/status",
    response_model=EmailStatusResponse,
    summary="Get Allotment Email Status",
)
async def get_email_status(
    post_id: int = Path(..., description="Post ID"),
    admin_id: int = Depends(get_admin_id),
    db: AsyncSession = Depends(get_db),
):
    """Schedules, tracking rows and per-candidate delivery status for a post."""
    return await allotment_service.get_email_status(db, post_id)


@router.post(
    "/schedules/{schedule_id}/cancel",
    response_model=CancelScheduleResponse,
    summary="Cancel Schedule",
)
async def cancel_schedule(
    schedule_id: int = Path(..., description="Schedule ID"),
    admin_id: int = Depends(get_admin_id),
    db: AsyncSession = Depends(get_db),
):
    return await allotment_service.cancel_schedule(db, schedule_id, admin_id)


@router.post(
    "/schedules/{schedule_id}/retry",
    response_model=RetryScheduleResponse,
    summary="Retry Failed Emails",
    description="Requeue failed recipients under the retry ceiling and reopen the schedule.",
)
async def retry_failed_emails(
    schedule_id: int = Path(..., description="Schedule ID"),
    request: RetryScheduleRequest = Body(default=RetryScheduleRequest()),
    admin_id: int = Depends(get_admin_id),
    db: AsyncSession = Depends(get_db),
):
    result = await allotment_service.retry_failed_emails(
        db, schedule_id, max_retries=request.max_retries
    )
    logger.info(f"Retry of schedule {schedule_id} requested by admin {admin_id}")
    return result


@router.post(
    "/dispatch",
    response_model=DispatchTriggerResponse,
    status_code=202,
    summary="Trigger Allotment Dispatch",
    description="Queue a dispatcher run now instead of waiting for the next timer tick.",
)
async def trigger_dispatch(admin_id: int = Depends(get_admin_id)):
    task = dispatch_due_allotments.delay()
    logger.info(f"Allotment dispatch queued by admin {admin_id}: task {task.id}")
    return DispatchTriggerResponse(
        task_id=task.id,
        status="queued",
        message="Allotment dispatch queued",
    )
