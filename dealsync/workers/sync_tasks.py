"""
Celery tasks for Gmail/Drive sync jobs and the sync scheduler.
"""

import asyncio
import logging
from typing import Any

from dealsync.config import get_settings
from dealsync.core.exceptions import AuthorizationError, SyncConfigurationError
from dealsync.core.progress import ProgressChannel, ProgressEvent
from dealsync.schemas.sync import SyncJobData
from dealsync.workers.celery_app import celery_app
from dealsync.workers.executor import get_executor

logger = logging.getLogger(__name__)

settings = get_settings()

# Retrying cannot fix these; the user has to change the config or re-authorize
NON_RETRYABLE_ERRORS = (SyncConfigurationError, AuthorizationError)


def run_async(coro):
    """Run async function in Celery task."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


def retry_countdown(retries: int) -> int:
    """Exponential backoff: 10s, 20s, 40s..."""
    return settings.sync_job_backoff_seconds * (2 ** retries)


@celery_app.task(
    bind=True,
    name="dealsync.workers.sync_tasks.run_sync_job",
    max_retries=settings.sync_job_attempts - 1,
    time_limit=settings.sync_job_timeout_seconds,
    acks_late=True,
)
def run_sync_job(self, job: dict) -> dict:
    """
    Task for one Gmail or Drive sync job.

    Progress is published to the Celery result backend as PROGRESS state.
    """
    data = SyncJobData.model_validate(job)
    job_id = self.request.id

    def report(event: ProgressEvent) -> None:
        self.update_state(
            state="PROGRESS",
            meta={"progress": event.progress, "status": event.status},
        )

    try:
        result = run_async(_run_sync_job_async(data, job_id, report))
    except NON_RETRYABLE_ERRORS as e:
        logger.error(f"Sync job {job_id} failed permanently: {e}")
        run_async(_release_lock_async(data, job_id))
        raise
    except Exception as e:
        if self.request.retries < self.max_retries:
            countdown = retry_countdown(self.request.retries)
            logger.warning(
                f"Sync job {job_id} failed (attempt {self.request.retries + 1}), "
                f"retrying in {countdown}s: {e}"
            )
            raise self.retry(exc=e, countdown=countdown)
        logger.error(f"Sync job {job_id} failed after {self.request.retries + 1} attempts: {e}")
        run_async(_release_lock_async(data, job_id))
        raise

    run_async(_release_lock_async(data, job_id))
    return result


async def _run_sync_job_async(data: SyncJobData, job_id: str, report) -> dict[str, Any]:
    """Async implementation of a sync job."""
    from dealsync.database import close_db

    channel = ProgressChannel()
    channel.subscribe(report)
    try:
        result = await get_executor().execute(data, channel, job_id)
        return result.model_dump(mode="json")
    finally:
        # The engine is bound to this task's event loop
        await close_db()


async def _release_lock_async(data: SyncJobData, job_id: str) -> None:
    from dealsync.core.redis_client import RedisClient
    from dealsync.workers.queue import SyncQueue

    queue = SyncQueue(RedisClient(settings.redis_url), app=celery_app)
    await queue.redis.connect()
    try:
        await queue.release_lock(data.type, data.config_id, job_id)
    finally:
        await queue.close()


@celery_app.task(name="dealsync.workers.sync_tasks.run_scheduler_tick")
def run_scheduler_tick() -> dict:
    """
    Periodic task that queues due sync configurations.

    Run every 5 minutes via Celery Beat.
    """
    return run_async(_scheduler_tick_async())


async def _scheduler_tick_async() -> dict:
    """Async implementation of the scheduler tick."""
    from dealsync.core.redis_client import RedisClient
    from dealsync.database import close_db
    from dealsync.services.scheduler import SyncScheduler
    from dealsync.workers.queue import SyncQueue

    queue = SyncQueue(RedisClient(settings.redis_url), app=celery_app)
    await queue.redis.connect()

    async def provide_queue() -> SyncQueue:
        return queue

    try:
        queued = await SyncScheduler(queue_provider=provide_queue).queue_due_syncs()
    finally:
        await queue.close()
        await close_db()

    return {"queued": queued}


@celery_app.task(name="dealsync.workers.sync_tasks.clean_sync_jobs")
def clean_sync_jobs(grace_seconds: int = 3600) -> dict:
    """Periodic task that trims finished job history."""
    return run_async(_clean_sync_jobs_async(grace_seconds))


async def _clean_sync_jobs_async(grace_seconds: int) -> dict:
    from dealsync.core.redis_client import RedisClient
    from dealsync.workers.queue import SyncQueue

    queue = SyncQueue(RedisClient(settings.redis_url), app=celery_app)
    await queue.redis.connect()
    try:
        removed = await queue.clean_old_sync_jobs(grace_seconds)
    finally:
        await queue.close()
    return {"removed": removed}
