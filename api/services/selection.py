"""
Selection workflow service.

Admin moves of ELIGIBLE / ON_HOLD applications to ON_HOLD, SELECTED or
REJECTED. Single updates are all-or-nothing; bulk updates commit per item
and report failures alongside successes.
"""

from typing import Any, Dict, List, Optional, Sequence
import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.config import settings
from core.exceptions import (
    InvalidSelectionAction,
    InvalidTransition,
    RecruitmentError,
)
from core.utils.datetime import now
from database.models.applications import ActorType, Application, ApplicationStatus
from api.services.workflow import (
    is_terminal_status,
    load_application,
    transition_application,
)

logger = logging.getLogger(__name__)

SELECTION_ACTIONS = frozenset({
    ApplicationStatus.ON_HOLD,
    ApplicationStatus.SELECTED,
    ApplicationStatus.REJECTED,
})

SELECTABLE_STATUSES = frozenset({
    ApplicationStatus.ELIGIBLE,
    ApplicationStatus.ON_HOLD,
})

# Other applications of a selected applicant that are still in play
RELEASABLE_STATUSES = frozenset({
    ApplicationStatus.ELIGIBLE,
    ApplicationStatus.ON_HOLD,
    ApplicationStatus.PROVISIONAL_SELECTED,
})


def _validate_action(action: ApplicationStatus | str) -> ApplicationStatus:
    try:
        action = ApplicationStatus(action)
    except ValueError:
        action = None
    if action not in SELECTION_ACTIONS:
        raise InvalidSelectionAction(
            "Action must be one of ON_HOLD, SELECTED or REJECTED",
            {"allowed": sorted(a.value for a in SELECTION_ACTIONS)},
        )
    return action


async def release_other_applications(
    session: AsyncSession,
    selected: Application,
) -> List[int]:
    """
    Move the applicant's other open applications to SELECTED_IN_OTHER_POST.

    Staged on the caller's transaction; each release gets its own SYSTEM
    ledger row.

    Returns:
        Ids of the released applications
    """
    result = await session.execute(
        select(Application)
        .where(
            Application.applicant_id == selected.applicant_id,
            Application.application_id != selected.application_id,
            Application.status.in_(list(RELEASABLE_STATUSES)),
            Application.live(),
        )
        .with_for_update()
    )
    others = result.scalars().all()

    post = selected.post
    reason = f"Applicant was selected for post: {post.post_name} ({post.post_code})"
    released = []
    for other in others:
        transition_application(
            session,
            other,
            ApplicationStatus.SELECTED_IN_OTHER_POST,
            actor_type=ActorType.SYSTEM,
            remarks=reason,
            metadata={
                "selected_application_id": selected.application_id,
                "selected_post_id": selected.post_id,
            },
        )
        other.selection_status = ApplicationStatus.SELECTED_IN_OTHER_POST.value
        other.auto_rejected_reason = reason
        released.append(other.application_id)

    if released:
        logger.info(
            f"Released {len(released)} other application(s) of applicant "
            f"{selected.applicant_id} after selection in post {selected.post_id}"
        )
    return released


async def _apply_selection(
    session: AsyncSession,
    application: Application,
    action: ApplicationStatus,
    admin_id: int,
    remarks: Optional[str],
    metadata: Optional[Dict[str, Any]],
    release_others: bool,
) -> List[int]:
    if application.status not in SELECTABLE_STATUSES and not is_terminal_status(application.status):
        raise InvalidTransition(application.status.value, action.value)

    at = now()
    transition_application(
        session,
        application,
        action,
        actor_id=admin_id,
        actor_type=ActorType.ADMIN,
        remarks=remarks,
        metadata=metadata,
        at=at,
    )
    application.selection_status = action.value
    application.verified_by = admin_id
    application.verified_at = at
    if remarks:
        application.verification_remarks = remarks

    if action == ApplicationStatus.SELECTED:
        application.selected_at = at
        if release_others:
            return await release_other_applications(session, application)
    return []


async def update_application_status(
    session: AsyncSession,
    application_id: int,
    action: ApplicationStatus | str,
    admin_id: int,
    remarks: Optional[str] = None,
    release_others: Optional[bool] = None,
) -> Dict[str, Any]:
    """
    Apply one selection action atomically.

    Args:
        session: Database session
        application_id: Application to update
        action: ON_HOLD, SELECTED or REJECTED
        admin_id: Acting admin
        remarks: Optional reason recorded in the ledger
        release_others: Override AUTO_RELEASE_OTHER_APPLICATIONS

    Returns:
        Dictionary with the new status and any released applications
    """
    action = _validate_action(action)
    if release_others is None:
        release_others = settings.auto_release_other_applications

    try:
        application = await load_application(
            session,
            application_id,
            for_update=True,
            options=[selectinload(Application.post)],
        )
        old_status = application.status
        released = await _apply_selection(
            session, application, action, admin_id, remarks, None, release_others
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(
        f"Application {application_id} moved {old_status.value} -> {action.value} by admin {admin_id}"
    )
    return {
        "application_id": application_id,
        "application_no": application.application_no,
        "old_status": old_status,
        "status": application.status,
        "released_application_ids": released,
    }


async def bulk_update_status(
    session: AsyncSession,
    application_ids: Sequence[int],
    action: ApplicationStatus | str,
    admin_id: int,
    remarks: Optional[str] = None,
    release_others: Optional[bool] = None,
) -> Dict[str, Any]:
    """
    Apply one selection action to many applications.

    Each application is its own transaction: a missing application or a
    disallowed source status is recorded in ``failed`` and the rest of the
    batch carries on.

    Args:
        session: Database session
        application_ids: Applications to update
        action: ON_HOLD, SELECTED or REJECTED
        admin_id: Acting admin
        remarks: Optional reason recorded in every ledger row
        release_others: Override AUTO_RELEASE_OTHER_APPLICATIONS

    Returns:
        Dictionary with totals plus successful and failed item lists
    """
    action = _validate_action(action)
    if release_others is None:
        release_others = settings.auto_release_other_applications

    results = {
        "successful": [],
        "failed": [],
    }

    for app_id in dict.fromkeys(application_ids):
        try:
            application = await load_application(
                session,
                app_id,
                for_update=True,
                options=[selectinload(Application.post)],
            )
            old_status = application.status
            released = await _apply_selection(
                session,
                application,
                action,
                admin_id,
                remarks,
                {"bulk_action": True},
                release_others,
            )
            await session.commit()
            results["successful"].append({
                "application_id": app_id,
                "old_status": old_status,
                "status": action,
                "released_application_ids": released,
            })
        except RecruitmentError as e:
            await session.rollback()
            results["failed"].append({
                "application_id": app_id,
                "code": e.code,
                "error": e.message,
            })
        except SQLAlchemyError as e:
            await session.rollback()
            logger.error(f"Bulk status update failed for application {app_id}: {e}", exc_info=True)
            results["failed"].append({
                "application_id": app_id,
                "code": "DATABASE_ERROR",
                "error": "A database error occurred",
            })

    logger.info(
        f"Bulk {action.value} by admin {admin_id}: "
        f"{len(results['successful'])} succeeded, {len(results['failed'])} failed"
    )
    return {
        "action": action,
        "total": len(results["successful"]) + len(results["failed"]),
        "successful_count": len(results["successful"]),
        "failed_count": len(results["failed"]),
        "successful": results["successful"],
        "failed": results["failed"],
    }
