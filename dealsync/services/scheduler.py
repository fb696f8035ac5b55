"""
Scheduler for recurring sync configurations.

Celery beat calls ``queue_due_syncs`` every few minutes; configurations
whose next_sync_at has passed are queued as scheduled jobs.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import AsyncContextManager, Awaitable, Callable, Optional, Union

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from dealsync.config import Settings, get_settings
from dealsync.core.exceptions import SyncConfigNotFoundError, SyncJobConflictError
from dealsync.core.redis_client import RedisClient
from dealsync.core.timeutils import as_utc, utcnow
from dealsync.database import get_db_context
from dealsync.models import OAuthToken, SyncConfiguration
from dealsync.schemas.sync import ScheduleStats, SchedulerStatus
from dealsync.workers.queue import SyncQueue, get_sync_queue

logger = logging.getLogger(__name__)

FREQUENCY_INTERVALS = {
    "hourly": timedelta(hours=1),
    "daily": timedelta(days=1),
    "weekly": timedelta(weeks=1),
}

LAST_TICK_KEY = "sync:scheduler:last_tick"


def calculate_next_sync_time(frequency: str, from_time: Optional[datetime] = None) -> Optional[datetime]:
    """Next run time for ``frequency``; None for manual (or unknown) schedules."""
    interval = FREQUENCY_INTERVALS.get(frequency)
    if interval is None:
        return None
    return as_utc(from_time or utcnow()) + interval


def _due_filter(now: datetime):
    return (
        SyncConfiguration.enabled.is_(True),
        SyncConfiguration.sync_frequency != "manual",
        or_(
            SyncConfiguration.next_sync_at.is_(None),
            SyncConfiguration.next_sync_at <= now,
        ),
    )


class SyncScheduler:
    """
    Queues due sync configurations.

    Handles:
    - Periodic ticks (with an is-running guard)
    - Schedule changes, pause and resume
    - Status and schedule statistics
    """

    def __init__(
        self,
        queue_provider: Callable[[], Awaitable[SyncQueue]] = get_sync_queue,
        session_factory: Callable[[], AsyncContextManager[AsyncSession]] = get_db_context,
        settings: Optional[Settings] = None,
    ):
        self.queue_provider = queue_provider
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self._is_processing = False
        self._last_tick_at: Optional[datetime] = None

    async def queue_due_syncs(self) -> int:
        """Queue every due configuration. Returns the number queued."""
        if self._is_processing:
            logger.debug("Scheduler tick skipped: previous tick still running")
            return 0

        self._is_processing = True
        queued = 0
        try:
            queue = await self.queue_provider()
            now = utcnow()

            async with self.session_factory() as db:
                stmt = (
                    select(SyncConfiguration)
                    .join(OAuthToken, OAuthToken.id == SyncConfiguration.token_id)
                    .where(*_due_filter(now), OAuthToken.revoked_at.is_(None))
                )
                result = await db.execute(stmt)
                configs = list(result.scalars().all())
                logger.debug(f"Scheduler tick: {len(configs)} configuration(s) due")

                for config in configs:
                    try:
                        if config.service_type == "gmail":
                            await queue.add_gmail_sync_job(config.id, trigger_type="scheduled")
                        else:
                            await queue.add_drive_sync_job(config.id, trigger_type="scheduled")
                        queued += 1
                    except SyncJobConflictError:
                        logger.debug(f"Sync already queued for config {config.id}, skipping")
                    except Exception as e:
                        logger.error(f"Failed to queue scheduled sync for config {config.id}: {e}")
                        continue

                    config.next_sync_at = calculate_next_sync_time(config.sync_frequency, now)

                await db.commit()

            self._last_tick_at = now
            await queue.redis.set(LAST_TICK_KEY, now.isoformat())
        finally:
            self._is_processing = False

        if queued:
            logger.info(f"Scheduler queued {queued} sync job(s)")
        return queued

    async def _get_config(self, db: AsyncSession, config_id: Union[str, uuid.UUID]) -> SyncConfiguration:
        config = await db.get(SyncConfiguration, uuid.UUID(str(config_id)))
        if config is None:
            raise SyncConfigNotFoundError()
        return config

    async def update_sync_schedule(
        self,
        db: AsyncSession,
        config_id: Union[str, uuid.UUID],
        frequency: str,
    ) -> SyncConfiguration:
        config = await self._get_config(db, config_id)
        config.sync_frequency = frequency
        config.next_sync_at = calculate_next_sync_time(frequency)
        await db.flush()
        logger.info(f"Sync schedule for config {config.id} set to {frequency}")
        return config

    async def pause_sync(self, db: AsyncSession, config_id: Union[str, uuid.UUID]) -> SyncConfiguration:
        config = await self._get_config(db, config_id)
        config.enabled = False
        config.next_sync_at = None
        await db.flush()
        logger.info(f"Paused sync for config {config.id}")
        return config

    async def resume_sync(self, db: AsyncSession, config_id: Union[str, uuid.UUID]) -> SyncConfiguration:
        config = await self._get_config(db, config_id)
        config.enabled = True
        config.next_sync_at = calculate_next_sync_time(config.sync_frequency)
        await db.flush()
        logger.info(f"Resumed sync for config {config.id}")
        return config

    async def get_scheduler_status(self, redis: Optional[RedisClient] = None) -> SchedulerStatus:
        """
        Report scheduler liveness.

        Ticks run in the worker, so the last tick time is read from Redis
        when a client is given.
        """
        last_tick = self._last_tick_at
        if redis is not None:
            stored = await redis.get(LAST_TICK_KEY)
            if stored:
                last_tick = datetime.fromisoformat(stored)

        interval = self.settings.scheduler_interval_seconds
        running = last_tick is not None and utcnow() - as_utc(last_tick) <= timedelta(seconds=interval * 2)
        return SchedulerStatus(
            running=running,
            is_processing=self._is_processing,
            interval_seconds=interval,
            last_tick_at=last_tick,
        )

    async def get_schedule_stats(self, db: AsyncSession) -> ScheduleStats:
        total = await db.scalar(select(func.count()).select_from(SyncConfiguration))
        enabled = await db.scalar(
            select(func.count()).select_from(SyncConfiguration).where(SyncConfiguration.enabled.is_(True))
        )
        due = await db.scalar(
            select(func.count()).select_from(SyncConfiguration).where(*_due_filter(utcnow()))
        )
        result = await db.execute(
            select(SyncConfiguration.sync_frequency, func.count()).group_by(SyncConfiguration.sync_frequency)
        )
        return ScheduleStats(
            total_configs=total or 0,
            enabled_configs=enabled or 0,
            due_now=due or 0,
            by_frequency={frequency: count for frequency, count in result.all()},
        )
