"""
Tests for the allotment dispatch task and its single-run lock.
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import LockError

from workers.celery_app import celery_app
from workers.tasks.allotments import DISPATCH_LOCK_NAME, dispatch_due_allotments


@pytest.fixture
def redis_client():
    client = MagicMock()
    with patch("workers.tasks.allotments.get_redis_client", return_value=client):
        yield client


class TestDispatchDueAllotments:

    def test_skips_when_lock_held(self, redis_client):
        redis_client.lock.return_value.acquire.return_value = False
        dispatch = AsyncMock()

        with patch("workers.tasks.allotments._dispatch", new=dispatch):
            result = dispatch_due_allotments()

        assert result == {"status": "skipped", "reason": "dispatch already running"}
        dispatch.assert_not_called()
        redis_client.lock.return_value.release.assert_not_called()

    def test_runs_and_releases_lock(self, redis_client):
        lock = redis_client.lock.return_value
        lock.acquire.return_value = True
        summary = {"processed": 1, "results": [{"schedule_id": 3, "status": "COMPLETED"}]}

        with patch("workers.tasks.allotments._dispatch", new=AsyncMock(return_value=summary)):
            result = dispatch_due_allotments()

        assert result == {"status": "completed", **summary}
        assert redis_client.lock.call_args.args == (DISPATCH_LOCK_NAME,)
        lock.acquire.assert_called_once_with(blocking=False)
        lock.release.assert_called_once()

    def test_lock_released_when_run_fails(self, redis_client):
        lock = redis_client.lock.return_value
        lock.acquire.return_value = True

        with patch(
            "workers.tasks.allotments._dispatch",
            new=AsyncMock(side_effect=RuntimeError("database unreachable")),
        ):
            with pytest.raises(RuntimeError):
                dispatch_due_allotments()

        lock.release.assert_called_once()

    def test_expired_lock_is_not_an_error(self, redis_client):
        lock = redis_client.lock.return_value
        lock.acquire.return_value = True
        lock.release.side_effect = LockError("Cannot release an unlocked lock")

        with patch(
            "workers.tasks.allotments._dispatch",
            new=AsyncMock(return_value={"processed": 0, "results": []}),
        ):
            result = dispatch_due_allotments()

        assert result["status"] == "completed"


def test_task_registered_on_allotment_queue():
    assert "workers.tasks.allotments.dispatch_due_allotments" in celery_app.tasks
    assert celery_app.conf.task_routes["workers.tasks.allotments.*"] == {"queue": "allotments"}
