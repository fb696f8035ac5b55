"""
Celery application configuration.
"""

from celery import Celery

from dealsync.config import get_settings

settings = get_settings()

# Create Celery app
celery_app = Celery(
    "dealsync",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["dealsync.workers.sync_tasks", "dealsync.workers.bootstrap"],
)

# Configure Celery
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task execution
    task_track_started=True,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=settings.sync_job_timeout_seconds,
    task_soft_time_limit=settings.sync_job_timeout_seconds - 60,

    # Result backend
    result_expires=7 * 86400,  # job index is trimmed by clean_sync_jobs
    result_extended=True,

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=4,

    # Priorities: manual (1) before scheduled (2)
    broker_transport_options={"priority_steps": list(range(10)), "queue_order_strategy": "priority"},

    # Task routes
    task_routes={
        "dealsync.workers.sync_tasks.run_sync_job": {"queue": "sync"},
        "dealsync.workers.sync_tasks.run_scheduler_tick": {"queue": "scheduler"},
        "dealsync.workers.sync_tasks.clean_sync_jobs": {"queue": "scheduler"},
    },

    # Beat schedule for periodic tasks
    beat_schedule={
        "queue-due-syncs": {
            "task": "dealsync.workers.sync_tasks.run_scheduler_tick",
            "schedule": float(settings.scheduler_interval_seconds),
        },
        "clean-old-sync-jobs": {
            "task": "dealsync.workers.sync_tasks.clean_sync_jobs",
            "schedule": 3600.0,  # Every hour
        },
    },
)
