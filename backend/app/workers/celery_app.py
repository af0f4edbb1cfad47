"""
Celery application configuration
"""
from celery import Celery
from kombu import Queue

from app.core.config import settings

celery_app = Celery(
    "auditflow",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["app.workers.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=settings.NOTIFY_TASK_TIMEOUT_SEC,
    task_soft_time_limit=settings.NOTIFY_TASK_TIMEOUT_SEC - 10,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
)

celery_app.conf.task_queues = (
    Queue("celery"),
    Queue("notifications"),
)

# Default queue
celery_app.conf.task_default_queue = "celery"

# Task routing
celery_app.conf.task_routes = {
    "app.workers.tasks.send_audit_link_task": {"queue": "notifications"},
}

# Retry policies
celery_app.conf.task_annotations = {
    "app.workers.tasks.send_audit_link_task": {
        "max_retries": 3,
        "default_retry_delay": 30,
    },
}
