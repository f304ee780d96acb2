"""Celery Beat schedule for periodic tasks."""

import logging
from typing import Optional

from celery.schedules import ParseException, crontab

logger = logging.getLogger(__name__)

DEFAULT_DISPATCH_MINUTES = 5


def _default_schedule() -> crontab:
    return crontab(minute=f"*/{DEFAULT_DISPATCH_MINUTES}")


def resolve_dispatch_schedule(raw: Optional[str]) -> crontab:
    """
    Turn the configured dispatcher interval into a crontab.

    Accepts either a plain number of minutes or a five-field cron
    expression ("minute hour day month weekday").

    Args:
        raw: Value of ALLOTMENT_EMAIL_CRON, or None

    Returns:
        Crontab for the beat entry (every 5 minutes when unset or invalid)
    """
    if raw is None or not str(raw).strip():
        return _default_schedule()

    value = str(raw).strip()

    if value.isdigit():
        minutes = int(value)
        if 0 < minutes < 60:
            return crontab(minute=f"*/{minutes}")
        if minutes >= 60 and minutes % 60 == 0 and minutes // 60 < 24:
            return crontab(minute=0, hour=f"*/{minutes // 60}")
        logger.warning(
            f"Unsupported allotment dispatch interval {minutes} minutes, "
            f"using every {DEFAULT_DISPATCH_MINUTES} minutes"
        )
        return _default_schedule()

    fields = value.split()
    if len(fields) != 5:
        logger.warning(
            f"Invalid allotment dispatch cron '{value}', "
            f"using every {DEFAULT_DISPATCH_MINUTES} minutes"
        )
        return _default_schedule()

    minute, hour, day_of_month, month_of_year, day_of_week = fields
    try:
        return crontab(
            minute=minute,
            hour=hour,
            day_of_month=day_of_month,
            month_of_year=month_of_year,
            day_of_week=day_of_week,
        )
    except (ValueError, ParseException) as e:
        logger.warning(
            f"Invalid allotment dispatch cron '{value}' ({e}), "
            f"using every {DEFAULT_DISPATCH_MINUTES} minutes"
        )
        return _default_schedule()


def build_beat_schedule(raw: Optional[str]) -> dict:
    return {
        # Allotment letter distribution
        "dispatch-due-allotments": {
            "task": "workers.tasks.allotments.dispatch_due_allotments",
            "schedule": resolve_dispatch_schedule(raw),
            "options": {
                "queue": "allotments",
                "expires": 240,  # Skip stale ticks
            },
        },
    }
