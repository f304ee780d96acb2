"""
Application workflow endpoints.

Submission and withdrawal (applicant-facing), admin status changes,
selection decisions and the status ledger.
"""

from fastapi import APIRouter, Body, Depends, Path
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_admin_id, get_applicant_id
from api.schemas.applications import (
    ApplicationStatusResponse,
    BulkStatusRequest,
    BulkStatusResponse,
    SelectionRequest,
    SelectionResponse,
    StatusChangeRequest,
    StatusHistoryEntry,
    SubmissionResponse,
    SubmitApplicationRequest,
    WithdrawRequest,
)
from api.services import selection as selection_service
from api.services import workflow as workflow_service
from database.engine import get_db
from database.models.applications import ActorType

router = APIRouter()


@router.post(
    "/{application_id}/submit",
    response_model=SubmissionResponse,
    summary="Submit Application",
    description="Submit a draft application with its eligibility verdict. The application is locked afterwards.",
)
async def submit_application(
    application_id: int = Path(..., description="Application ID"),
    request: SubmitApplicationRequest = Body(...),
    applicant_id: int = Depends(get_applicant_id),
    db: AsyncSession = Depends(get_db),
):
    """Run the submission processor for the applicant's own draft."""
    return await workflow_service.process_submission(
        db,
        application_id,
        request.to_verdict(),
        applicant_id=applicant_id,
        declaration_accepted=request.declaration_accepted,
    )


@router.post(
    "/{application_id}/withdraw",
    response_model=ApplicationStatusResponse,
    summary="Withdraw Application",
)
async def withdraw_application(
    application_id: int = Path(..., description="Application ID"),
    request: WithdrawRequest = Body(default=WithdrawRequest()),
    applicant_id: int = Depends(get_applicant_id),
    db: AsyncSession = Depends(get_db),
):
    """Withdraw an application that has not been decided yet."""
    return await workflow_service.withdraw_application(
        db, application_id, applicant_id, remarks=request.remarks
    )


@router.post(
    "/{application_id}/status",
    response_model=ApplicationStatusResponse,
    summary="Change Application Status",
    description="Move an application along an allowed edge of the status table.",
)
async def change_application_status(
    application_id: int = Path(..., description="Application ID"),
    request: StatusChangeRequest = Body(...),
    admin_id: int = Depends(get_admin_id),
    db: AsyncSession = Depends(get_db),
):
    return await workflow_service.change_status(
        db,
        application_id,
        request.status,
        actor_id=admin_id,
        actor_type=ActorType.ADMIN,
        remarks=request.remarks,
    )


@router.patch(
    "/{application_id}/selection",
    response_model=SelectionResponse,
    summary="Update Selection Status",
    description="Put on hold, select or reject one eligible application.",
)
async def update_selection(
    application_id: int = Path(..., description="Application ID"),
    request: SelectionRequest = Body(...),
    admin_id: int = Depends(get_admin_id),
    db: AsyncSession = Depends(get_db),
):
    return await selection_service.update_application_status(
        db,
        application_id,
        request.action,
        admin_id,
        remarks=request.remarks,
        release_others=request.release_others,
    )


@router.post(
    "/bulk-status",
    response_model=BulkStatusResponse,
    summary="Bulk Update Selection Status",
    description="Apply one selection action to many applications. Failures are reported per item.",
)
async def bulk_update_selection(
    request: BulkStatusRequest = Body(...),
    admin_id: int = Depends(get_admin_id),
    db: AsyncSession = Depends(get_db),
):
    return await selection_service.bulk_update_status(
        db,
        request.application_ids,
        request.action,
        admin_id,
        remarks=request.remarks,
        release_others=request.release_others,
    )


@router.get(
    "/{application_id}/history",
    response_model=list[StatusHistoryEntry],
    summary="Get Status History",
)
async def get_status_history(
    application_id: int = Path(..., description="Application ID"),
    admin_id: int = Depends(get_admin_id),
    db: AsyncSession = Depends(get_db),
):
    """Return the status ledger, oldest entry first."""
    return await workflow_service.get_status_history(db, application_id)
