"""
Allotment letter distribution service.

Scheduling creates one batch per post covering selected candidates who
have not been sent the letter yet. The dispatcher sends due batches one at
a time, one recipient at a time, recording each outcome on the
(post, applicant) tracking row.
"""

import asyncio
from datetime import datetime
from typing import Any, Dict, List, Optional
import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.config import settings
from core.exceptions import (
    ActiveScheduleConflict,
    DeliveryError,
    PostNotFound,
    ScheduleNotFound,
    ScheduleStateError,
    UploadNotFound,
)
from core.integrations.email import EmailService, EmailTemplates, get_email_service
from core.middleware.logging import mask_email
from core.storage.local import LocalStorage, get_upload_storage
from core.utils.datetime import as_utc, now
from database.models.allotments import (
    AllotmentEmailSchedule,
    AllotmentEmailTracking,
    ScheduleStatus,
    TrackingStatus,
)
from database.models.applicants import Applicant, ApplicantPersonal
from database.models.applications import Application, ApplicationStatus
from database.models.posts import Post, PostAllotmentUpload

logger = logging.getLogger(__name__)

ACTIVE_SCHEDULE_STATUSES = (ScheduleStatus.SCHEDULED, ScheduleStatus.PROCESSING)
RETRYABLE_TRACKING_STATUSES = (TrackingStatus.FAILED, TrackingStatus.BOUNCED)
CANCELLATION_REASON = "Schedule cancelled by admin"


# ==================== Serialization ===================== #
def _schedule_to_dict(schedule: AllotmentEmailSchedule) -> Dict[str, Any]:
    return {
        "schedule_id": schedule.schedule_id,
        "post_id": schedule.post_id,
        "upload_id": schedule.upload_id,
        "scheduled_date": schedule.scheduled_date,
        "status": schedule.status,
        "total_recipients": schedule.total_recipients,
        "emails_sent": schedule.emails_sent,
        "emails_failed": schedule.emails_failed,
        "started_at": schedule.started_at,
        "completed_at": schedule.completed_at,
        "error_message": schedule.error_message,
        "created_by": schedule.created_by,
        "created_at": schedule.created_at,
    }


def _tracking_to_dict(row: AllotmentEmailTracking) -> Dict[str, Any]:
    return {
        "tracking_id": row.tracking_id,
        "schedule_id": row.schedule_id,
        "applicant_id": row.applicant_id,
        "application_id": row.application_id,
        "email": row.email,
        "status": row.status,
        "sent_at": row.sent_at,
        "error_message": row.error_message,
        "retry_count": row.retry_count,
    }


# ==================== Lookups ===================== #
async def _get_post(session: AsyncSession, post_id: int, for_update: bool = False) -> Post:
    query = select(Post).where(Post.post_id == post_id, Post.live())
    if for_update:
        query = query.with_for_update()
    post = (await session.execute(query)).scalar_one_or_none()
    if post is None:
        raise PostNotFound(post_id)
    return post


async def _get_schedule(
    session: AsyncSession,
    schedule_id: int,
    for_update: bool = False,
) -> AllotmentEmailSchedule:
    query = select(AllotmentEmailSchedule).where(
        AllotmentEmailSchedule.schedule_id == schedule_id,
        AllotmentEmailSchedule.live(),
    )
    if for_update:
        query = query.with_for_update()
    schedule = (await session.execute(query)).scalar_one_or_none()
    if schedule is None:
        raise ScheduleNotFound(schedule_id)
    return schedule


async def _find_active_schedule(
    session: AsyncSession,
    post_id: int,
    exclude_schedule_id: Optional[int] = None,
) -> Optional[AllotmentEmailSchedule]:
    query = select(AllotmentEmailSchedule).where(
        AllotmentEmailSchedule.post_id == post_id,
        AllotmentEmailSchedule.status.in_(ACTIVE_SCHEDULE_STATUSES),
        AllotmentEmailSchedule.live(),
    )
    if exclude_schedule_id is not None:
        query = query.where(AllotmentEmailSchedule.schedule_id != exclude_schedule_id)
    return (await session.execute(query.limit(1))).scalar_one_or_none()


def _active_conflict(active: AllotmentEmailSchedule) -> ActiveScheduleConflict:
    return ActiveScheduleConflict(
        f"An active email schedule ({active.schedule_id}, {active.status.value}) "
        f"already exists for this post",
        {"schedule_id": active.schedule_id, "status": active.status.value},
    )


async def _selected_recipients(session: AsyncSession, post_id: int) -> List[Any]:
    """SELECTED applications of the post whose applicant has an email."""
    result = await session.execute(
        select(
            Application.application_id,
            Application.applicant_id,
            Applicant.email,
        )
        .join(Applicant, Applicant.applicant_id == Application.applicant_id)
        .where(
            Application.post_id == post_id,
            Application.status == ApplicationStatus.SELECTED,
            Application.live(),
            Applicant.email.is_not(None),
            Applicant.email != "",
        )
        .order_by(Application.application_id)
    )
    return list(result.all())


# ==================== Scheduling ===================== #
async def schedule_distribution(
    session: AsyncSession,
    post_id: int,
    upload_id: int,
    scheduled_at: datetime,
    admin_id: Optional[int],
) -> Dict[str, Any]:
    """
    Create a distribution batch for the post's not-yet-notified selected
    candidates.

    Runs as one transaction: the schedule row and every tracking row are
    created together or not at all. When nobody is left to notify, nothing
    is written and ``scheduled`` is False.

    Args:
        session: Database session
        post_id: Post whose selected candidates are notified
        upload_id: Allotment letter upload (must belong to the post)
        scheduled_at: When the dispatcher may send the batch
        admin_id: Admin creating the schedule

    Returns:
        Dictionary with the schedule id and recipient counts

    Raises:
        PostNotFound: Post missing
        UploadNotFound: Upload missing or attached to another post
        ActiveScheduleConflict: A SCHEDULED/PROCESSING batch exists, or a
            concurrent scheduler claimed the same recipients
    """
    try:
        # Row lock on the post serializes concurrent schedulers (PostgreSQL)
        await _get_post(session, post_id, for_update=True)

        upload = (await session.execute(
            select(PostAllotmentUpload).where(
                PostAllotmentUpload.upload_id == upload_id,
                PostAllotmentUpload.live(),
            )
        )).scalar_one_or_none()
        if upload is None or upload.post_id != post_id:
            raise UploadNotFound(
                f"Allotment upload {upload_id} not found for post {post_id}",
                {"post_id": post_id, "upload_id": upload_id},
            )

        selected = await _selected_recipients(session, post_id)

        tracking_rows = (await session.execute(
            select(AllotmentEmailTracking).where(AllotmentEmailTracking.post_id == post_id)
        )).scalars().all()
        tracking_by_applicant = {row.applicant_id: row for row in tracking_rows}
        already_sent = {
            row.applicant_id for row in tracking_rows if row.status == TrackingStatus.SENT
        }

        active = await _find_active_schedule(session, post_id)
        if active is not None:
            raise _active_conflict(active)

        recipients = [r for r in selected if r.applicant_id not in already_sent]
        if not recipients:
            # Nothing written; ends the transaction and releases the post lock
            await session.commit()
            logger.info(f"No new allotment recipients for post {post_id}")
            return {
                "scheduled": False,
                "message": "All selected candidates have already received the allotment email",
                "schedule_id": None,
                "new_recipients": 0,
                "already_sent": len(already_sent),
                "total_selected": len(selected),
                "scheduled_date": None,
            }

        created_at = now()
        schedule = AllotmentEmailSchedule(
            post_id=post_id,
            upload_id=upload_id,
            scheduled_date=as_utc(scheduled_at),
            status=ScheduleStatus.SCHEDULED,
            total_recipients=len(recipients),
            emails_sent=0,
            emails_failed=0,
            created_by=admin_id,
            updated_at=created_at,
        )
        session.add(schedule)
        await session.flush()

        for recipient in recipients:
            row = tracking_by_applicant.get(recipient.applicant_id)
            if row is None:
                session.add(AllotmentEmailTracking(
                    schedule_id=schedule.schedule_id,
                    post_id=post_id,
                    applicant_id=recipient.applicant_id,
                    application_id=recipient.application_id,
                    email=recipient.email,
                    status=TrackingStatus.PENDING,
                    retry_count=0,
                    updated_at=created_at,
                ))
            else:
                # Reuse the (post, applicant) row left by an earlier failed batch
                row.schedule_id = schedule.schedule_id
                row.application_id = recipient.application_id
                row.email = recipient.email
                row.status = TrackingStatus.PENDING
                row.error_message = None
                row.retry_count = 0
                row.sent_at = None
                row.updated_at = created_at

        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        logger.warning(f"Concurrent allotment scheduling detected for post {post_id}: {e}")
        raise ActiveScheduleConflict(
            "Another schedule claimed these recipients concurrently; reload and try again",
            {"post_id": post_id},
        ) from e
    except Exception:
        await session.rollback()
        raise

    logger.info(
        f"Allotment email scheduled for post {post_id}: schedule {schedule.schedule_id}, "
        f"{len(recipients)} new recipient(s), {len(already_sent)} already sent"
    )
    return {
        "scheduled": True,
        "message": f"Email scheduled successfully for {len(recipients)} new recipient(s)",
        "schedule_id": schedule.schedule_id,
        "new_recipients": len(recipients),
        "already_sent": len(already_sent),
        "total_selected": len(selected),
        "scheduled_date": schedule.scheduled_date,
    }


async def cancel_schedule(
    session: AsyncSession,
    schedule_id: int,
    admin_id: Optional[int],
) -> Dict[str, Any]:
    """
    Cancel a batch that has not started sending.

    Its PENDING rows become FAILED with a cancellation reason, which frees
    the post for a fresh schedule.
    """
    try:
        schedule = await _get_schedule(session, schedule_id, for_update=True)
        if schedule.status != ScheduleStatus.SCHEDULED:
            raise ScheduleStateError(
                f"Only SCHEDULED batches can be cancelled (current status: {schedule.status.value})",
                {"schedule_id": schedule_id, "status": schedule.status.value},
            )

        at = now()
        schedule.status = ScheduleStatus.CANCELLED
        schedule.error_message = CANCELLATION_REASON
        schedule.updated_at = at

        result = await session.execute(
            update(AllotmentEmailTracking)
            .where(
                AllotmentEmailTracking.schedule_id == schedule_id,
                AllotmentEmailTracking.status == TrackingStatus.PENDING,
            )
            .values(
                status=TrackingStatus.FAILED,
                error_message=CANCELLATION_REASON,
                updated_at=at,
            )
            .execution_options(synchronize_session="fetch")
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(
        f"Allotment schedule {schedule_id} cancelled by admin {admin_id}; "
        f"{result.rowcount} pending recipient(s) released"
    )
    return {
        "schedule_id": schedule_id,
        "status": ScheduleStatus.CANCELLED,
        "cancelled_recipients": result.rowcount,
        "message": "Schedule cancelled successfully",
    }


async def retry_failed_emails(
    session: AsyncSession,
    schedule_id: int,
    max_retries: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Requeue a finished batch's failed recipients that are under the retry
    ceiling and reopen the batch for immediate dispatch.

    Args:
        session: Database session
        schedule_id: Batch to retry
        max_retries: Retry ceiling (defaults to ALLOTMENT_MAX_RETRIES)

    Returns:
        Dictionary with reset and exhausted counts
    """
    max_retries = max_retries or settings.allotment_max_retries

    try:
        schedule = await _get_schedule(session, schedule_id, for_update=True)
        if schedule.status in ACTIVE_SCHEDULE_STATUSES:
            raise ScheduleStateError(
                f"Schedule is still active (current status: {schedule.status.value})",
                {"schedule_id": schedule_id, "status": schedule.status.value},
            )

        active = await _find_active_schedule(
            session, schedule.post_id, exclude_schedule_id=schedule_id
        )
        if active is not None:
            raise _active_conflict(active)

        failed_rows = (await session.execute(
            select(AllotmentEmailTracking).where(
                AllotmentEmailTracking.schedule_id == schedule_id,
                AllotmentEmailTracking.status.in_(RETRYABLE_TRACKING_STATUSES),
            )
        )).scalars().all()
        retryable = [row for row in failed_rows if row.retry_count < max_retries]
        exhausted = len(failed_rows) - len(retryable)

        if not retryable:
            await session.commit()
            return {
                "retried": False,
                "schedule_id": schedule_id,
                "reset": 0,
                "exhausted": exhausted,
                "message": "No failed emails eligible for retry",
            }

        at = now()
        for row in retryable:
            row.status = TrackingStatus.PENDING
            row.error_message = None
            row.updated_at = at

        schedule.status = ScheduleStatus.SCHEDULED
        schedule.scheduled_date = at
        schedule.emails_failed = max(0, schedule.emails_failed - len(retryable))
        schedule.completed_at = None
        schedule.error_message = None
        schedule.updated_at = at

        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(
        f"Allotment schedule {schedule_id} reopened: {len(retryable)} recipient(s) requeued, "
        f"{exhausted} at retry limit"
    )
    return {
        "retried": True,
        "schedule_id": schedule_id,
        "reset": len(retryable),
        "exhausted": exhausted,
        "message": f"{len(retryable)} failed email(s) queued for retry",
    }


async def get_email_status(session: AsyncSession, post_id: int) -> Dict[str, Any]:
    """
    Distribution overview for a post: batches, tracking rows and each
    selected candidate's delivery status.
    """
    await _get_post(session, post_id)

    schedules = (await session.execute(
        select(AllotmentEmailSchedule)
        .where(AllotmentEmailSchedule.post_id == post_id, AllotmentEmailSchedule.live())
        .order_by(
            AllotmentEmailSchedule.created_at.desc(),
            AllotmentEmailSchedule.schedule_id.desc(),
        )
    )).scalars().all()

    tracking_rows = (await session.execute(
        select(AllotmentEmailTracking)
        .where(AllotmentEmailTracking.post_id == post_id)
        .order_by(AllotmentEmailTracking.tracking_id)
    )).scalars().all()
    tracking_by_applicant = {row.applicant_id: row for row in tracking_rows}

    selected = (await session.execute(
        select(Application)
        .where(
            Application.post_id == post_id,
            Application.status == ApplicationStatus.SELECTED,
            Application.live(),
        )
        .options(selectinload(Application.applicant))
        .order_by(Application.application_id)
    )).scalars().all()

    candidates = []
    summary = {
        "total_selected": len(selected),
        "sent": 0,
        "pending": 0,
        "failed": 0,
        "not_scheduled": 0,
    }
    for application in selected:
        applicant = application.applicant
        row = tracking_by_applicant.get(application.applicant_id)
        email_status = row.status.value if row is not None else "NOT_SCHEDULED"

        if email_status == TrackingStatus.SENT.value:
            summary["sent"] += 1
        elif email_status == TrackingStatus.PENDING.value:
            summary["pending"] += 1
        elif email_status == "NOT_SCHEDULED":
            summary["not_scheduled"] += 1
        else:
            summary["failed"] += 1

        candidates.append({
            "application_id": application.application_id,
            "application_no": application.application_no,
            "applicant_id": application.applicant_id,
            "full_name": applicant.personal.full_name if applicant.personal else None,
            "email": applicant.email,
            "email_status": email_status,
            "sent_at": row.sent_at if row is not None else None,
            "error_message": row.error_message if row is not None else None,
            "retry_count": row.retry_count if row is not None else 0,
            "schedule_id": row.schedule_id if row is not None else None,
        })

    return {
        "post_id": post_id,
        "schedules": [_schedule_to_dict(s) for s in schedules],
        "tracking": [_tracking_to_dict(t) for t in tracking_rows],
        "candidates": candidates,
        "summary": summary,
    }


# ==================== Dispatch ===================== #
async def _deliver(
    email_service: EmailService,
    send_timeout: float,
    to: str,
    subject: str,
    html_body: str,
    attachment: str,
) -> str:
    """Send one letter off the event loop; return the message id or raise DeliveryError."""
    try:
        result = await asyncio.wait_for(
            asyncio.to_thread(email_service.send, to, subject, html_body, [attachment]),
            timeout=send_timeout,
        )
    except asyncio.TimeoutError as e:
        raise DeliveryError(f"Mail transport timed out after {send_timeout:g}s") from e

    if not result.success:
        raise DeliveryError(result.error or "Mail transport rejected the message")
    return result.message_id or ""


async def send_scheduled_emails(
    session: AsyncSession,
    schedule: AllotmentEmailSchedule,
    *,
    email_service: EmailService,
    storage: LocalStorage,
    send_timeout: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Send one batch.

    Each recipient's outcome is committed before the next send, so an
    interrupted batch can be resumed without resending delivered letters.
    Any delivery problem fails that recipient only. A batch that is no
    longer SCHEDULED or PROCESSING when claimed is skipped untouched.
    """
    send_timeout = send_timeout or settings.smtp_timeout_seconds + 5
    schedule_id = schedule.schedule_id

    started = now()
    claimed = await session.execute(
        update(AllotmentEmailSchedule)
        .where(
            AllotmentEmailSchedule.schedule_id == schedule_id,
            AllotmentEmailSchedule.status == ScheduleStatus.SCHEDULED,
        )
        .values(status=ScheduleStatus.PROCESSING, started_at=started, updated_at=started)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    await session.refresh(schedule)

    if claimed.rowcount == 1:
        logger.info(f"Processing allotment schedule {schedule_id}")
    elif schedule.status == ScheduleStatus.PROCESSING:
        logger.warning(f"Resuming interrupted allotment schedule {schedule_id}")
    else:
        logger.info(
            f"Skipping allotment schedule {schedule_id}: "
            f"status changed to {schedule.status.value}"
        )
        return {
            "schedule_id": schedule_id,
            "post_id": schedule.post_id,
            "status": schedule.status.value,
            "sent": 0,
            "failed": 0,
            "skipped": True,
        }

    post = await session.get(Post, schedule.post_id)
    upload = (await session.execute(
        select(PostAllotmentUpload).where(
            PostAllotmentUpload.upload_id == schedule.upload_id,
            PostAllotmentUpload.live(),
        )
    )).scalar_one_or_none()

    pending = (await session.execute(
        select(AllotmentEmailTracking, ApplicantPersonal.full_name)
        .outerjoin(
            ApplicantPersonal,
            ApplicantPersonal.applicant_id == AllotmentEmailTracking.applicant_id,
        )
        .where(
            AllotmentEmailTracking.schedule_id == schedule_id,
            AllotmentEmailTracking.status == TrackingStatus.PENDING,
        )
        .order_by(AllotmentEmailTracking.tracking_id)
    )).all()

    sent = failed = 0
    for row, full_name in pending:
        try:
            if upload is None or not storage.exists(upload.file_path):
                raise DeliveryError("Allotment file not found")

            template = EmailTemplates.allotment_letter(full_name, post.post_name, post.post_code)
            await _deliver(
                email_service,
                send_timeout,
                row.email,
                template["subject"],
                template["html_body"],
                str(storage.resolve(upload.file_path)),
            )
            row.status = TrackingStatus.SENT
            row.sent_at = now()
            row.error_message = None
            schedule.emails_sent += 1
            sent += 1
        except DeliveryError as e:
            row.status = TrackingStatus.FAILED
            row.error_message = e.message
            row.retry_count = (row.retry_count or 0) + 1
            schedule.emails_failed += 1
            failed += 1
            logger.warning(
                f"Allotment email to {mask_email(row.email)} failed "
                f"(schedule {schedule_id}, attempt {row.retry_count}): {e.message}"
            )
        except SQLAlchemyError:
            raise
        except Exception as e:
            row.status = TrackingStatus.FAILED
            row.error_message = f"Unexpected delivery error: {type(e).__name__}"
            row.retry_count = (row.retry_count or 0) + 1
            schedule.emails_failed += 1
            failed += 1
            logger.error(
                f"Allotment email to {mask_email(row.email)} failed unexpectedly "
                f"(schedule {schedule_id}, attempt {row.retry_count})",
                exc_info=True,
            )

        row.updated_at = now()
        await session.commit()

    schedule.status = (
        ScheduleStatus.COMPLETED if schedule.emails_sent > 0 else ScheduleStatus.FAILED
    )
    schedule.completed_at = now()
    schedule.updated_at = schedule.completed_at
    schedule.error_message = (
        f"{schedule.emails_failed} emails failed to send" if schedule.emails_failed else None
    )
    await session.commit()

    logger.info(
        f"Allotment schedule {schedule_id} {schedule.status.value}: "
        f"{sent} sent, {failed} failed in this run"
    )
    return {
        "schedule_id": schedule_id,
        "post_id": schedule.post_id,
        "status": schedule.status.value,
        "sent": sent,
        "failed": failed,
    }


async def process_scheduled_emails(
    session: AsyncSession,
    *,
    email_service: Optional[EmailService] = None,
    storage: Optional[LocalStorage] = None,
    as_of: Optional[datetime] = None,
    send_timeout: Optional[float] = None,
) -> Dict[str, Any]:
    """
    Dispatch every due batch, strictly one after another.

    Due means SCHEDULED with ``scheduled_date <= as_of``. PROCESSING batches
    are picked up too: the caller holds the dispatch lock, so any batch
    still PROCESSING was left behind by a run that died.

    Returns:
        Dictionary with the number of batches processed and per-batch results
    """
    email_service = email_service or get_email_service()
    storage = storage or get_upload_storage()
    as_of = as_utc(as_of) or now()

    due = (await session.execute(
        select(AllotmentEmailSchedule.schedule_id)
        .where(
            AllotmentEmailSchedule.live(),
            (
                (AllotmentEmailSchedule.status == ScheduleStatus.SCHEDULED)
                & (AllotmentEmailSchedule.scheduled_date <= as_of)
            )
            | (AllotmentEmailSchedule.status == ScheduleStatus.PROCESSING),
        )
        .order_by(AllotmentEmailSchedule.scheduled_date, AllotmentEmailSchedule.schedule_id)
    )).scalars().all()

    if not due:
        logger.debug("No allotment schedules due")
        return {"processed": 0, "results": []}

    logger.info(f"Found {len(due)} allotment schedule(s) to process")
    results = []
    for schedule_id in due:
        try:
            # Reload: earlier batches may have taken a while, or rolled back
            schedule = await session.get(
                AllotmentEmailSchedule, schedule_id, populate_existing=True
            )
            results.append(await send_scheduled_emails(
                session,
                schedule,
                email_service=email_service,
                storage=storage,
                send_timeout=send_timeout,
            ))
        except Exception as e:
            await session.rollback()
            logger.error(f"Allotment schedule {schedule_id} aborted: {e}", exc_info=True)
            results.append({
                "schedule_id": schedule_id,
                "status": "ERROR",
                "error": (
                    "A database error occurred"
                    if isinstance(e, SQLAlchemyError)
                    else type(e).__name__
                ),
            })

    return {"processed": len(due), "results": results}
