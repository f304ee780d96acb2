"""Allotment letter dispatch tasks."""

import asyncio
import logging
from typing import Any, Dict

from redis import Redis
from redis.exceptions import LockError
from sqlalchemy.ext.asyncio import async_sessionmaker

from api.services.allotments import process_scheduled_emails
from core.config import settings
from database.engine import create_task_engine
from workers.celery_app import celery_app

logger = logging.getLogger(__name__)

DISPATCH_LOCK_NAME = "allotments:dispatch"


def get_redis_client() -> Redis:
    return Redis.from_url(settings.redis_url)


async def _dispatch() -> Dict[str, Any]:
    # Fresh engine per run: asyncio.run creates a new event loop each time
    engine = create_task_engine()
    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    try:
        async with session_factory() as session:
            return await process_scheduled_emails(session)
    finally:
        await engine.dispose()


@celery_app.task(name="workers.tasks.allotments.dispatch_due_allotments")
def dispatch_due_allotments() -> dict:
    """Send every due allotment batch.

    Only one run may be active at a time; a tick that finds the dispatch
    lock held returns immediately.

    Returns:
        Dictionary with run status and per-batch results
    """
    client = get_redis_client()
    lock = client.lock(
        DISPATCH_LOCK_NAME,
        timeout=settings.allotment_dispatch_lock_timeout,
    )
    if not lock.acquire(blocking=False):
        logger.info("Allotment dispatch already running, skipping this tick")
        return {"status": "skipped", "reason": "dispatch already running"}

    try:
        summary = asyncio.run(_dispatch())
    finally:
        try:
            lock.release()
        except LockError:
            logger.warning("Allotment dispatch lock expired before release")

    logger.info(f"Allotment dispatch finished: {summary['processed']} schedule(s) processed")
    return {"status": "completed", **summary}
