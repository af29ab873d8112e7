"""
Celery Application Configuration
"""
from celery import Celery

from app.core.config import settings

celery_app = Celery(
    "replysequence",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["app.workers.tasks"]
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    # ריצת retry לא חופפת לריצה הבאה (beat כל 60 שניות)
    task_time_limit=300,  # 5 minutes
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    "process-webhook-retries-every-minute": {
        "task": "app.workers.tasks.process_webhook_retries",
        "schedule": 60.0,
    },
    "cleanup-idempotency-locks-daily": {
        "task": "app.workers.tasks.cleanup_idempotency_locks",
        "schedule": 86400.0,  # 24 hours
    },
}
