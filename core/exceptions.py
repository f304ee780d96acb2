"""
Domain exceptions for the recruitment pipeline.

Each error carries an HTTP-equivalent status so the API layer can render it
without knowing the domain; services raise these and never HTTPException.
"""

from typing import Any, Optional


class RecruitmentError(Exception):
    """Base class for all domain errors."""

    status_code: int = 400
    code: str = "RECRUITMENT_ERROR"

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


# Not found
class NotFoundError(RecruitmentError):
    status_code = 404
    code = "NOT_FOUND"


class ApplicationNotFound(NotFoundError):
    code = "APPLICATION_NOT_FOUND"

    def __init__(self, application_id: int):
        super().__init__(
            f"Application {application_id} not found",
            {"application_id": application_id},
        )


class PostNotFound(NotFoundError):
    code = "POST_NOT_FOUND"

    def __init__(self, post_id: int):
        super().__init__(f"Post {post_id} not found", {"post_id": post_id})


class UploadNotFound(NotFoundError):
    code = "UPLOAD_NOT_FOUND"


class ScheduleNotFound(NotFoundError):
    code = "SCHEDULE_NOT_FOUND"

    def __init__(self, schedule_id: int):
        super().__init__(
            f"Email schedule {schedule_id} not found", {"schedule_id": schedule_id}
        )


# Validation
class InvalidTransition(RecruitmentError):
    code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str):
        super().__init__(
            f"Invalid status transition from {from_status} to {to_status}",
            {"from_status": from_status, "to_status": to_status},
        )


class TerminalStateViolation(RecruitmentError):
    code = "TERMINAL_STATE"

    def __init__(self, status: str):
        super().__init__(
            f"Cannot change status of an application in terminal state: {status}",
            {"status": status},
        )


class NotSubmittable(RecruitmentError):
    code = "NOT_SUBMITTABLE"


class ApplicationLocked(RecruitmentError):
    status_code = 409
    code = "APPLICATION_LOCKED"


class InvalidSelectionAction(RecruitmentError):
    code = "INVALID_SELECTION_ACTION"


class ScheduleStateError(RecruitmentError):
    code = "INVALID_SCHEDULE_STATE"


class ActiveScheduleConflict(RecruitmentError):
    status_code = 409
    code = "ACTIVE_SCHEDULE_CONFLICT"


# Delivery (caught per recipient by the dispatcher)
class DeliveryError(RecruitmentError):
    status_code = 502
    code = "DELIVERY_FAILED"
