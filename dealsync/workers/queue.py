"""
Sync job queue.

Jobs run on Celery; Redis holds the admission lock (one active job per
configuration and job type) and a small job index used for status lookups,
per-config listings and cleanup.
"""

import asyncio
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Optional, Union

from celery import Celery

from dealsync.config import Settings, get_settings
from dealsync.core.exceptions import (
    SyncJobConflictError,
    SyncJobNotFoundError,
    SyncJobStateError,
)
from dealsync.core.redis_client import RedisClient, get_redis
from dealsync.schemas.sync import (
    JobType,
    QueueStats,
    SyncJobCreated,
    SyncJobData,
    SyncJobStatus,
)

logger = logging.getLogger(__name__)

RUN_SYNC_JOB_TASK = "dealsync.workers.sync_tasks.run_sync_job"

LOCK_PREFIX = "sync:lock:"
JOB_PREFIX = "sync:job:"
JOB_INDEX = "sync:jobs"
CONFIG_INDEX_PREFIX = "sync:jobs:config:"

PRIORITIES = {"manual": 1, "scheduled": 2}

# Celery task state -> queue state
CELERY_STATES = {
    "PENDING": "waiting",
    "RECEIVED": "waiting",
    "STARTED": "active",
    "PROGRESS": "active",
    "RETRY": "delayed",
    "SUCCESS": "completed",
    "FAILURE": "failed",
    "REVOKED": "cancelled",
}

TERMINAL_STATES = {"completed", "failed", "cancelled"}


def lock_key(job_type: str, config_id: Union[str, uuid.UUID]) -> str:
    return f"{LOCK_PREFIX}{job_type}:{config_id}"


def job_key(job_id: str) -> str:
    return f"{JOB_PREFIX}{job_id}"


def config_index_key(config_id: Union[str, uuid.UUID]) -> str:
    return f"{CONFIG_INDEX_PREFIX}{config_id}"


class SyncQueue:
    """
    Producer side of the sync job queue.

    Handles:
    - Admission (one waiting/active job per config and type)
    - Dispatch to the Celery worker with priorities
    - Status, cancel and retry
    - Queue statistics and retention cleanup
    """

    def __init__(
        self,
        redis: RedisClient,
        app: Optional[Celery] = None,
        settings: Optional[Settings] = None,
    ):
        self.redis = redis
        self.settings = settings or get_settings()
        if app is None:
            from dealsync.workers.celery_app import celery_app

            app = celery_app
        self.app = app

    @property
    def lock_ttl(self) -> int:
        # Covers every attempt plus backoff in case a worker dies mid-job
        settings = self.settings
        backoff = settings.sync_job_backoff_seconds * (2 ** settings.sync_job_attempts)
        return settings.sync_job_timeout_seconds * settings.sync_job_attempts + backoff

    # ============== Admission ==============

    async def add_gmail_sync_job(
        self,
        config_id: Union[str, uuid.UUID],
        trigger_type: str = "manual",
        triggered_by: Optional[str] = None,
    ) -> SyncJobCreated:
        return await self._add_job("gmail_sync", config_id, trigger_type, triggered_by)

    async def add_drive_sync_job(
        self,
        config_id: Union[str, uuid.UUID],
        trigger_type: str = "manual",
        triggered_by: Optional[str] = None,
    ) -> SyncJobCreated:
        return await self._add_job("drive_sync", config_id, trigger_type, triggered_by)

    async def _acquire_lock(self, job_type: str, config_id: uuid.UUID, job_id: str) -> None:
        key = lock_key(job_type, config_id)
        if await self.redis.set_if_absent(key, job_id, self.lock_ttl):
            return

        existing_job_id = await self.redis.get(key)
        if existing_job_id:
            # A worker that died without releasing leaves a stale lock behind
            status = await self._status_or_none(existing_job_id)
            if status is None or status.state in TERMINAL_STATES:
                # Only the caller that removes this exact stale value may take over
                if await self.redis.delete_if_value(key, existing_job_id):
                    if await self.redis.set_if_absent(key, job_id, self.lock_ttl):
                        return
                existing_job_id = await self.redis.get(key) or existing_job_id

        raise SyncJobConflictError(existing_job_id=existing_job_id)

    async def _add_job(
        self,
        job_type: JobType,
        config_id: Union[str, uuid.UUID],
        trigger_type: str,
        triggered_by: Optional[str],
    ) -> SyncJobCreated:
        config_id = uuid.UUID(str(config_id))
        service = "gmail" if job_type == "gmail_sync" else "drive"
        now_ms = int(time.time() * 1000)
        job_id = f"{service}-sync-{config_id}-{now_ms}"

        await self._acquire_lock(job_type, config_id, job_id)

        data = SyncJobData(
            type=job_type,
            config_id=config_id,
            trigger_type=trigger_type,
            triggered_by=triggered_by,
        )
        priority = PRIORITIES.get(trigger_type, PRIORITIES["scheduled"])
        record = {
            "job_id": job_id,
            "data": data.model_dump(mode="json"),
            "state": "waiting",
            "priority": priority,
            "enqueued_at": datetime.now(timezone.utc).isoformat(),
        }

        await self.redis.set_json(job_key(job_id), record)
        await self.redis.zadd(JOB_INDEX, job_id, now_ms)
        await self.redis.zadd(config_index_key(config_id), job_id, now_ms)

        try:
            self.app.send_task(
                RUN_SYNC_JOB_TASK,
                args=[data.model_dump(mode="json")],
                task_id=job_id,
                priority=priority,
            )
        except Exception:
            await self._forget(job_id, config_id)
            await self.release_lock(job_type, config_id, job_id)
            raise

        logger.info(f"Queued {job_type} job {job_id} ({trigger_type})")
        return SyncJobCreated(job_id=job_id, config_id=config_id, type=job_type)

    async def release_lock(self, job_type: str, config_id: Union[str, uuid.UUID], job_id: str) -> None:
        """Release the admission lock if ``job_id`` still holds it."""
        await self.redis.delete_if_value(lock_key(job_type, config_id), job_id)

    # ============== Status ==============

    async def _celery_state(self, job_id: str) -> tuple[str, Any]:
        result = self.app.AsyncResult(job_id)
        loop = asyncio.get_running_loop()
        # Backend lookups are blocking
        return await loop.run_in_executor(None, lambda: (result.state, result.info))

    async def _status_or_none(self, job_id: str) -> Optional[SyncJobStatus]:
        record = await self.redis.get_json(job_key(job_id))
        if record is None:
            return None

        status = SyncJobStatus(
            job_id=job_id,
            state=record.get("state", "waiting"),
            data=SyncJobData.model_validate(record["data"]),
            enqueued_at=record.get("enqueued_at"),
        )
        if status.state == "cancelled":
            return status

        celery_state, info = await self._celery_state(job_id)
        status.state = CELERY_STATES.get(celery_state, "waiting")

        if celery_state == "PROGRESS" and isinstance(info, dict):
            status.progress = int(info.get("progress", 0))
            status.progress_status = info.get("status")
        elif celery_state == "SUCCESS":
            status.progress = 100
            status.result = info if isinstance(info, dict) else None
        elif celery_state in ("FAILURE", "RETRY"):
            status.error = str(info) if info is not None else None
        return status

    async def get_sync_job_status(self, job_id: str) -> SyncJobStatus:
        status = await self._status_or_none(job_id)
        if status is None:
            raise SyncJobNotFoundError(job_id)
        return status

    async def get_jobs_for_config(self, config_id: Union[str, uuid.UUID], limit: int = 20) -> list[SyncJobStatus]:
        job_ids = await self.redis.zrevrange(config_index_key(config_id), 0, limit - 1)
        jobs = []
        for job_id in job_ids:
            status = await self._status_or_none(job_id)
            if status is not None:
                jobs.append(status)
        return jobs

    # ============== Control ==============

    async def cancel_sync_job(self, job_id: str) -> SyncJobStatus:
        """Cancel a job that has not started (waiting or delayed)."""
        status = await self.get_sync_job_status(job_id)
        if status.state not in ("waiting", "delayed"):
            raise SyncJobStateError(f"Cannot cancel job in state: {status.state}")

        self.app.control.revoke(job_id)
        record = await self.redis.get_json(job_key(job_id)) or {}
        record["state"] = "cancelled"
        await self.redis.set_json(job_key(job_id), record)
        await self.release_lock(status.data.type, status.data.config_id, job_id)

        logger.info(f"Cancelled sync job {job_id}")
        status.state = "cancelled"
        return status

    async def retry_sync_job(self, job_id: str) -> SyncJobCreated:
        """Re-queue a failed job under a new job id."""
        status = await self.get_sync_job_status(job_id)
        if status.state != "failed":
            raise SyncJobStateError(f"Only failed jobs can be retried (state: {status.state})")

        data = status.data
        logger.info(f"Retrying failed sync job {job_id}")
        return await self._add_job(data.type, data.config_id, data.trigger_type, data.triggered_by)

    # ============== Stats and cleanup ==============

    async def get_sync_queue_stats(self) -> QueueStats:
        stats = QueueStats()
        for job_id in await self.redis.zrevrange(JOB_INDEX, 0, -1):
            status = await self._status_or_none(job_id)
            if status is None:
                continue
            if hasattr(stats, status.state):
                setattr(stats, status.state, getattr(stats, status.state) + 1)
            stats.total += 1
        return stats

    async def _forget(self, job_id: str, config_id: Union[str, uuid.UUID]) -> None:
        await self.redis.delete(job_key(job_id))
        await self.redis.zrem(JOB_INDEX, job_id)
        await self.redis.zrem(config_index_key(config_id), job_id)

    async def clean_old_sync_jobs(self, grace_seconds: int = 0) -> int:
        """
        Drop finished jobs beyond the retention limits.

        The newest ``sync_jobs_keep_completed`` completed and
        ``sync_jobs_keep_failed`` failed jobs are kept, as is anything that
        finished within ``grace_seconds``.
        """
        keep = {
            "completed": self.settings.sync_jobs_keep_completed,
            "failed": self.settings.sync_jobs_keep_failed,
            "cancelled": self.settings.sync_jobs_keep_failed,
        }
        seen = {state: 0 for state in keep}
        cutoff = datetime.now(timezone.utc).timestamp() - grace_seconds
        removed = 0

        for job_id in await self.redis.zrevrange(JOB_INDEX, 0, -1):
            status = await self._status_or_none(job_id)
            if status is None:
                await self.redis.zrem(JOB_INDEX, job_id)
                continue
            if status.state not in keep:
                continue

            seen[status.state] += 1
            if seen[status.state] <= keep[status.state]:
                continue
            if status.enqueued_at and status.enqueued_at.timestamp() > cutoff:
                continue

            await self._forget(job_id, status.data.config_id)
            self.app.AsyncResult(job_id).forget()
            removed += 1

        if removed:
            logger.info(f"Cleaned {removed} old sync job(s)")
        return removed

    async def close(self) -> None:
        """Release the Redis connection owned by this queue."""
        await self.redis.disconnect()


async def get_sync_queue() -> SyncQueue:
    """Dependency for getting the sync queue."""
    return SyncQueue(await get_redis())
