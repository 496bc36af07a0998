"""
Celery Application Configuration
"""
from celery import Celery
from celery.schedules import crontab

from travelagent.config import settings

# Create Celery app
app = Celery(
    "travelagent",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "tasks.refunds",
    ]
)

# Celery configuration
app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=300,  # 5 minutes max per task
    task_soft_time_limit=240,  # Soft limit at 4 minutes

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=2,

    # Result backend settings
    result_expires=3600,  # Results expire after 1 hour

    # Routing
    task_routes={
        "tasks.refunds.*": {"queue": "payments"},
    },
)

# Beat schedule (periodic tasks)
app.conf.beat_schedule = {
    # Re-attempt refunds that failed or were left pending every 15 minutes
    "retry-failed-refunds": {
        "task": "tasks.refunds.retry_failed_refunds",
        "schedule": crontab(minute="*/15"),
        "options": {"queue": "payments"},
    },
}

if __name__ == "__main__":
    app.start()
