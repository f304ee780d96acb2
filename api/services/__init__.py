"""
API Services Layer.

Transactional operations behind the HTTP routes and the dispatcher task.
Every function takes the caller's AsyncSession first.
"""

from api.services.workflow import (
    change_status,
    process_submission,
    withdraw_application,
    get_status_history,
    ensure_editable,
)

from api.services.merit import (
    calculate_merit_score,
    rank_applications,
    get_merit_list,
    generate_merit_snapshot,
)

from api.services.selection import (
    update_application_status,
    bulk_update_status,
)

from api.services.allotments import (
    schedule_distribution,
    cancel_schedule,
    retry_failed_emails,
    get_email_status,
    process_scheduled_emails,
)

__all__ = [
    # Workflow
    "change_status",
    "process_submission",
    "withdraw_application",
    "get_status_history",
    "ensure_editable",
    # Merit
    "calculate_merit_score",
    "rank_applications",
    "get_merit_list",
    "generate_merit_snapshot",
    # Selection
    "update_application_status",
    "bulk_update_status",
    # Allotments
    "schedule_distribution",
    "cancel_schedule",
    "retry_failed_emails",
    "get_email_status",
    "process_scheduled_emails",
]
