"""
Application workflow service.

Owns the status state machine. Every status mutation goes through
``transition_application``, which validates the edge, updates the
application and appends one ledger row on the same session; callers commit
or roll back the whole unit.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.exceptions import (
    ApplicationLocked,
    ApplicationNotFound,
    InvalidTransition,
    NotSubmittable,
    TerminalStateViolation,
)
from core.utils.datetime import now
from database.models.applications import (
    ActorType,
    Application,
    ApplicationStatus,
    ApplicationStatusHistory,
    EligibilityResult,
)

logger = logging.getLogger(__name__)

S = ApplicationStatus

# Allowed status edges. Statuses mapped to an empty set have no way out.
STATUS_TRANSITIONS: Dict[ApplicationStatus, frozenset] = {
    S.DRAFT: frozenset({S.SUBMITTED, S.WITHDRAWN}),
    S.SUBMITTED: frozenset({S.UNDER_REVIEW, S.ELIGIBLE, S.NOT_ELIGIBLE, S.WITHDRAWN}),
    S.UNDER_REVIEW: frozenset({S.ELIGIBLE, S.NOT_ELIGIBLE, S.WITHDRAWN}),
    S.ELIGIBLE: frozenset({
        S.ON_HOLD,
        S.PROVISIONAL_SELECTED,
        S.SELECTED,
        S.SELECTED_IN_OTHER_POST,
        S.REJECTED,
    }),
    S.ON_HOLD: frozenset({
        S.ELIGIBLE,
        S.PROVISIONAL_SELECTED,
        S.SELECTED,
        S.SELECTED_IN_OTHER_POST,
        S.REJECTED,
    }),
    S.PROVISIONAL_SELECTED: frozenset({S.SELECTED, S.SELECTED_IN_OTHER_POST, S.REJECTED}),
    S.NOT_ELIGIBLE: frozenset(),
    S.SELECTED: frozenset(),
    S.SELECTED_IN_OTHER_POST: frozenset(),
    S.REJECTED: frozenset(),
    S.WITHDRAWN: frozenset(),
}

TERMINAL_STATUSES = frozenset({S.NOT_ELIGIBLE, S.SELECTED, S.REJECTED, S.WITHDRAWN})

# Everything past DRAFT locks the applicant's sub-records
LOCKED_STATUSES = frozenset(set(ApplicationStatus) - {S.DRAFT})


def is_valid_transition(from_status: ApplicationStatus, to_status: ApplicationStatus) -> bool:
    """Check whether ``from_status -> to_status`` is an allowed edge."""
    return ApplicationStatus(to_status) in STATUS_TRANSITIONS.get(ApplicationStatus(from_status), frozenset())


def is_terminal_status(status: ApplicationStatus) -> bool:
    return ApplicationStatus(status) in TERMINAL_STATUSES


def is_locked_status(status: ApplicationStatus) -> bool:
    return ApplicationStatus(status) in LOCKED_STATUSES


def ensure_editable(application: Application) -> None:
    """
    Guard for applicant-initiated edits to personal, education or
    experience records.

    Raises:
        ApplicationLocked: If the application has been submitted
    """
    if application.is_locked:
        raise ApplicationLocked(
            f"Application {application.application_no} is locked and can no longer be edited",
            {"application_id": application.application_id, "status": application.status.value},
        )


@dataclass(frozen=True)
class EligibilityCheck:
    """One rule evaluated by the external eligibility producer."""

    name: str
    passed: bool
    message: Optional[str] = None


@dataclass(frozen=True)
class EligibilityVerdict:
    """Pre-computed eligibility outcome consumed at submission time."""

    is_eligible: bool
    checks: Sequence[EligibilityCheck] = field(default_factory=tuple)

    @property
    def failed_checks(self) -> List[str]:
        return [check.message or check.name for check in self.checks if not check.passed]

    def as_dict(self) -> Dict[str, Any]:
        return {
            "is_eligible": self.is_eligible,
            "checks": [asdict(check) for check in self.checks],
        }


def transition_application(
    session: AsyncSession,
    application: Application,
    new_status: ApplicationStatus,
    *,
    actor_id: Optional[int] = None,
    actor_type: ActorType = ActorType.SYSTEM,
    remarks: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    skip_validation: bool = False,
    at: Optional[datetime] = None,
) -> ApplicationStatusHistory:
    """
    Validate and apply one status change, staging its ledger row.

    Nothing is committed here; the caller's transaction covers both the
    status update and the ledger insert.

    Args:
        session: Session the change is staged on
        application: Loaded application to mutate
        new_status: Target status
        actor_id: Admin or applicant id (None for SYSTEM)
        actor_type: Who is making the change
        remarks: Free-text reason shown in the history
        metadata: JSON details stored with the ledger row
        skip_validation: Bypass the edge table (trusted internal callers only)
        at: Timestamp for the change (defaults to now)

    Returns:
        The staged ledger row

    Raises:
        TerminalStateViolation: If the application is in a terminal status
        InvalidTransition: If the edge is not allowed
    """
    new_status = ApplicationStatus(new_status)
    old_status = application.status

    if is_terminal_status(old_status):
        raise TerminalStateViolation(old_status.value)

    if not skip_validation and not is_valid_transition(old_status, new_status):
        raise InvalidTransition(old_status.value, new_status.value)

    at = at or now()
    application.status = new_status
    application.is_locked = is_locked_status(new_status)
    application.updated_at = at

    entry = ApplicationStatusHistory(
        application_id=application.application_id,
        old_status=old_status,
        new_status=new_status,
        changed_by=actor_id,
        changed_by_type=actor_type,
        remarks=remarks,
        change_metadata=metadata,
        created_at=at,
    )
    session.add(entry)
    return entry


async def load_application(
    session: AsyncSession,
    application_id: int,
    *,
    for_update: bool = False,
    options: Sequence[Any] = (),
) -> Application:
    """
    Fetch a live application or raise ApplicationNotFound.

    ``for_update`` takes a row lock so concurrent status changes on the same
    application serialize (no-op on SQLite).
    """
    query = select(Application).where(
        Application.application_id == application_id,
        Application.live(),
    )
    if options:
        query = query.options(*options)
    if for_update:
        query = query.with_for_update()

    result = await session.execute(query)
    application = result.scalar_one_or_none()
    if application is None:
        raise ApplicationNotFound(application_id)
    return application


async def change_status(
    session: AsyncSession,
    application_id: int,
    new_status: ApplicationStatus,
    *,
    actor_id: Optional[int] = None,
    actor_type: ActorType = ActorType.SYSTEM,
    remarks: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
    skip_validation: bool = False,
) -> Application:
    """
    Change an application's status and append a ledger row atomically.

    Returns:
        The updated application
    """
    try:
        application = await load_application(session, application_id, for_update=True)
        old_status = application.status
        transition_application(
            session,
            application,
            new_status,
            actor_id=actor_id,
            actor_type=actor_type,
            remarks=remarks,
            metadata=metadata,
            skip_validation=skip_validation,
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(
        f"Application {application_id} status changed: {old_status.value} -> "
        f"{application.status.value} by {actor_type.value}:{actor_id or 'system'}"
    )
    return application


async def process_submission(
    session: AsyncSession,
    application_id: int,
    verdict: EligibilityVerdict,
    *,
    applicant_id: Optional[int] = None,
    declaration_accepted: bool = True,
) -> Dict[str, Any]:
    """
    Submit a draft application with its pre-computed eligibility verdict.

    Writes DRAFT -> SUBMITTED and SUBMITTED -> ELIGIBLE/NOT_ELIGIBLE ledger
    rows, locks the application and upserts the eligibility snapshot, all in
    one transaction.

    Args:
        session: Database session
        application_id: Application to submit
        verdict: Eligibility outcome from the rule engine
        applicant_id: When given, the application must belong to this applicant
        declaration_accepted: Whether the applicant accepted the declaration

    Returns:
        Dictionary describing the submitted application

    Raises:
        ApplicationNotFound: Missing, deleted or owned by someone else
        NotSubmittable: Not a draft, or declaration not accepted
    """
    try:
        application = await load_application(session, application_id, for_update=True)

        if applicant_id is not None and application.applicant_id != applicant_id:
            raise ApplicationNotFound(application_id)

        if application.status != S.DRAFT:
            raise NotSubmittable(
                f"Only draft applications can be submitted (current status: {application.status.value})",
                {"application_id": application_id, "status": application.status.value},
            )

        if not (declaration_accepted or application.declaration_accepted):
            raise NotSubmittable(
                "The declaration must be accepted before submitting",
                {"application_id": application_id},
            )

        event_at = now()
        failed = verdict.failed_checks
        eligibility_status = S.ELIGIBLE if verdict.is_eligible else S.NOT_ELIGIBLE

        application.declaration_accepted = True
        application.submitted_at = event_at

        transition_application(
            session,
            application,
            S.SUBMITTED,
            actor_id=application.applicant_id,
            actor_type=ActorType.APPLICANT,
            remarks="Declaration accepted and submitted",
            metadata={"submitted_at": event_at.isoformat()},
            at=event_at,
        )

        application.system_eligibility = verdict.is_eligible
        application.system_eligibility_reason = "; ".join(failed) or None
        application.eligibility_checked_at = event_at

        transition_application(
            session,
            application,
            eligibility_status,
            actor_type=ActorType.SYSTEM,
            remarks=(
                "System eligibility check passed"
                if verdict.is_eligible
                else "System eligibility check failed"
            ),
            metadata={
                "eligibility_result": verdict.as_dict(),
                "checked_at": event_at.isoformat(),
            },
            at=event_at,
        )

        await _upsert_eligibility_result(session, application, verdict, eligibility_status, event_at)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(f"Application {application_id} submitted: {eligibility_status.value}")

    return {
        "application_id": application.application_id,
        "application_no": application.application_no,
        "status": application.status,
        "is_eligible": verdict.is_eligible,
        "failed_checks": failed,
        "submitted_at": application.submitted_at,
        "is_locked": application.is_locked,
    }


async def _upsert_eligibility_result(
    session: AsyncSession,
    application: Application,
    verdict: EligibilityVerdict,
    eligibility_status: ApplicationStatus,
    checked_at: datetime,
) -> EligibilityResult:
    result = await session.execute(
        select(EligibilityResult).where(
            EligibilityResult.application_id == application.application_id
        )
    )
    snapshot = result.scalar_one_or_none()
    if snapshot is None:
        snapshot = EligibilityResult(application_id=application.application_id)
        session.add(snapshot)

    snapshot.is_eligible = verdict.is_eligible
    snapshot.eligibility_status = eligibility_status
    snapshot.checks = [asdict(check) for check in verdict.checks]
    snapshot.rejection_reasons = verdict.failed_checks or None
    snapshot.checked_at = checked_at
    snapshot.checked_by = ActorType.SYSTEM.value
    return snapshot


async def withdraw_application(
    session: AsyncSession,
    application_id: int,
    applicant_id: int,
    remarks: Optional[str] = None,
) -> Application:
    """
    Withdraw an application on the applicant's behalf.

    Only DRAFT, SUBMITTED and UNDER_REVIEW applications have a WITHDRAWN
    edge; anything later fails validation.
    """
    try:
        application = await load_application(session, application_id, for_update=True)
        if application.applicant_id != applicant_id:
            raise ApplicationNotFound(application_id)

        transition_application(
            session,
            application,
            S.WITHDRAWN,
            actor_id=applicant_id,
            actor_type=ActorType.APPLICANT,
            remarks=remarks or "Withdrawn by applicant",
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(f"Application {application_id} withdrawn by applicant {applicant_id}")
    return application


async def get_status_history(
    session: AsyncSession,
    application_id: int,
) -> List[ApplicationStatusHistory]:
    """Return the ledger for an application, oldest first."""
    await load_application(session, application_id)

    result = await session.execute(
        select(ApplicationStatusHistory)
        .where(ApplicationStatusHistory.application_id == application_id)
        .order_by(
            ApplicationStatusHistory.created_at.asc(),
            ApplicationStatusHistory.history_id.asc(),
        )
    )
    return list(result.scalars().all())
