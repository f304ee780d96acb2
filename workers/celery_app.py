"""Celery app factory."""

from celery import Celery

celery_app = Celery("recruitment", include=["workers.tasks.allotments"])
celery_app.config_from_object("workers.celery_config")
