"""
Celery Application Configuration

Configures Celery with:
- One task per upload event, acknowledged late
- A hard time limit equal to the pipeline's wall-clock budget
- No automatic retries (only record resolution is retried, in-process)
- An optional beat schedule for the stale-record sweep
"""

from celery import Celery
from celery.signals import worker_process_init

from proshot.core.config import settings
from proshot.core.logging import setup_logging

# Create Celery app
celery_app = Celery(
    "proshot_pipeline",
    broker=settings.CELERY_BROKER_URL or settings.REDIS_URL,
    backend=settings.CELERY_RESULT_BACKEND or settings.REDIS_URL,
    include=[
        "proshot.pipeline.tasks",
    ]
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task tracking
    task_track_started=True,
    # Overrun kills the invocation and leaves the record in processing
    task_time_limit=settings.PIPELINE_TIMEOUT_SECONDS,

    # Result expiration
    result_expires=86400,  # 24 hours

    # Worker settings
    worker_prefetch_multiplier=1,

    # Late acknowledgment: at-least-once delivery
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

# Beat schedule for the stale-record sweep (disabled unless configured)
celery_app.conf.beat_schedule = {}
if settings.RECONCILE_STALE_AFTER_SECONDS:
    celery_app.conf.beat_schedule["reconcile-stale-projects"] = {
        "task": "proshot.pipeline.tasks.reconcile_stale_projects",
        "schedule": float(max(60, settings.RECONCILE_STALE_AFTER_SECONDS // 2)),
    }


@worker_process_init.connect
def configure_worker_logging(**kwargs):
    """Structured logging in every worker process."""
    setup_logging(
        log_level=settings.LOG_LEVEL,
        json_format=settings.LOG_FORMAT_JSON
    )
