"""Worker script to run Celery workers."""

import sys

from core.config import settings
from core.middleware.logging import setup_logging
from workers.celery_app import celery_app

WORKER_QUEUES = ("default", "allotments")


def worker_argv(concurrency: int = 2, beat: bool = False) -> list[str]:
    """Command line for ``celery worker`` consuming every queue this project routes to."""
    argv = [
        "worker",
        f"--loglevel={settings.log_level.lower()}",
        f"--concurrency={concurrency}",
        "-Q",
        ",".join(WORKER_QUEUES),
    ]
    if beat:
        # Embedded beat: only for single-worker deployments
        argv.append("--beat")
    return argv


if __name__ == "__main__":
    setup_logging(log_level=settings.log_level, json_logs=settings.json_logs)
    celery_app.worker_main(argv=worker_argv(beat="--beat" in sys.argv[1:]))
