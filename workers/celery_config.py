"""Celery configuration for background task processing."""

from kombu import Exchange, Queue

from core.config import settings
from workers.beat import build_beat_schedule

# Broker configuration (Redis)
broker_url = settings.celery_broker_url
result_backend = settings.celery_result_backend

# Task routing and serialization
task_serializer = "json"
accept_content = ["json"]
result_serializer = "json"
timezone = "UTC"
enable_utc = True

# Task execution settings
task_track_started = True
task_time_limit = 30 * 60  # 30 minutes hard limit
task_soft_time_limit = 25 * 60  # 25 minutes soft limit

# Worker settings
worker_prefetch_multiplier = 1
worker_max_tasks_per_child = 1000

# Queue configuration with routing
default_exchange = Exchange("recruitment", type="direct")
task_default_queue = "default"
task_queues = (
    Queue("default", exchange=default_exchange, routing_key="default"),
    Queue("allotments", exchange=default_exchange, routing_key="allotments"),
)

# Task routing
task_routes = {
    "workers.tasks.allotments.*": {"queue": "allotments"},
}

# Periodic tasks
beat_schedule = build_beat_schedule(settings.allotment_email_cron)

# Result backend settings
result_expires = 3600  # Results expire after 1 hour
