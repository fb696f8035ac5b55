"""Tests for the recurring sync scheduler."""
from datetime import timedelta

import pytest

from dealsync.core.exceptions import SyncConfigNotFoundError
from dealsync.core.timeutils import as_utc, utcnow
from dealsync.models import SyncConfiguration
from dealsync.services.scheduler import (
    LAST_TICK_KEY,
    SyncScheduler,
    calculate_next_sync_time,
)
from dealsync.workers.queue import SyncQueue, lock_key


@pytest.fixture(name="queue")
def queue_fixture(fake_redis, fake_celery) -> SyncQueue:
    return SyncQueue(fake_redis, app=fake_celery)


@pytest.fixture(name="scheduler")
def scheduler_fixture(queue, db_context, settings) -> SyncScheduler:
    async def provide_queue():
        return queue

    return SyncScheduler(provide_queue, db_context, settings)


async def add_config(db, token, **values) -> SyncConfiguration:
    values.setdefault("name", "Scheduled")
    values.setdefault("service_type", token.service_type)
    config = SyncConfiguration(token_id=token.id, **values)
    if config.service_type == "drive":
        config.drive_folder_id = "folder-1"
    db.add(config)
    await db.commit()
    return config


class TestCalculateNextSyncTime:
    def test_intervals(self):
        start = utcnow()
        assert calculate_next_sync_time("hourly", start) == start + timedelta(hours=1)
        assert calculate_next_sync_time("daily", start) == start + timedelta(days=1)
        assert calculate_next_sync_time("weekly", start) == start + timedelta(weeks=1)

    def test_manual_has_no_next_run(self):
        assert calculate_next_sync_time("manual") is None


class TestQueueDueSyncs:
    async def test_queues_due_configs_and_advances_schedule(
        self, db, scheduler, gmail_token, drive_token, fake_celery, fake_redis
    ):
        hourly = await add_config(
            db, gmail_token, sync_frequency="hourly", next_sync_at=utcnow() - timedelta(minutes=5)
        )
        never_run = await add_config(db, drive_token, sync_frequency="daily")
        await add_config(db, gmail_token, name="Later", sync_frequency="daily", next_sync_at=utcnow() + timedelta(hours=3))
        await add_config(db, gmail_token, name="Manual", sync_frequency="manual")
        await add_config(db, gmail_token, name="Paused", sync_frequency="hourly", enabled=False)

        before = utcnow()
        queued = await scheduler.queue_due_syncs()

        assert queued == 2
        sent = sorted((task["args"][0]["type"], task["args"][0]["config_id"]) for task in fake_celery.sent)
        assert sent == sorted([("gmail_sync", str(hourly.id)), ("drive_sync", str(never_run.id))])
        assert all(task["args"][0]["trigger_type"] == "scheduled" for task in fake_celery.sent)
        assert all(task["priority"] == 2 for task in fake_celery.sent)

        await db.refresh(hourly)
        await db.refresh(never_run)
        assert as_utc(hourly.next_sync_at) >= before + timedelta(hours=1) - timedelta(seconds=1)
        assert as_utc(never_run.next_sync_at) > before + timedelta(hours=23)
        assert await fake_redis.get(LAST_TICK_KEY) is not None

    async def test_skips_configs_with_revoked_tokens(self, db, scheduler, gmail_token, fake_celery):
        await add_config(db, gmail_token, sync_frequency="hourly")
        gmail_token.revoked_at = utcnow()
        await db.commit()

        assert await scheduler.queue_due_syncs() == 0
        assert fake_celery.sent == []

    async def test_conflict_skips_but_still_reschedules(self, db, scheduler, queue, gmail_token, fake_celery, fake_redis):
        config = await add_config(db, gmail_token, sync_frequency="hourly")
        existing = await queue.add_gmail_sync_job(config.id)

        assert await scheduler.queue_due_syncs() == 0

        assert len(fake_celery.sent) == 1
        assert await fake_redis.get(lock_key("gmail_sync", config.id)) == existing.job_id
        await db.refresh(config)
        assert config.next_sync_at is not None

    async def test_dispatch_failure_leaves_schedule_untouched(self, db, scheduler, gmail_token, fake_celery):
        config = await add_config(db, gmail_token, sync_frequency="hourly")
        fake_celery.fail_send = True

        assert await scheduler.queue_due_syncs() == 0

        await db.refresh(config)
        assert config.next_sync_at is None

    async def test_overlapping_tick_is_skipped(self, db, scheduler, gmail_token, fake_celery):
        await add_config(db, gmail_token, sync_frequency="hourly")
        scheduler._is_processing = True

        assert await scheduler.queue_due_syncs() == 0
        assert fake_celery.sent == []


class TestScheduleChanges:
    async def test_pause_and_resume(self, db, scheduler, gmail_token):
        config = await add_config(db, gmail_token, sync_frequency="daily", next_sync_at=utcnow())

        paused = await scheduler.pause_sync(db, config.id)
        assert paused.enabled is False
        assert paused.next_sync_at is None

        resumed = await scheduler.resume_sync(db, config.id)
        assert resumed.enabled is True
        assert resumed.next_sync_at > utcnow() + timedelta(hours=23)

    async def test_update_schedule_to_manual(self, db, scheduler, gmail_token):
        config = await add_config(db, gmail_token, sync_frequency="daily", next_sync_at=utcnow())

        updated = await scheduler.update_sync_schedule(db, config.id, "manual")

        assert updated.sync_frequency == "manual"
        assert updated.next_sync_at is None

    async def test_unknown_config(self, db, scheduler):
        import uuid

        with pytest.raises(SyncConfigNotFoundError):
            await scheduler.pause_sync(db, uuid.uuid4())


class TestStatus:
    async def test_not_running_before_first_tick(self, scheduler, fake_redis):
        status = await scheduler.get_scheduler_status(fake_redis)

        assert status.running is False
        assert status.last_tick_at is None
        assert status.interval_seconds == scheduler.settings.scheduler_interval_seconds

    async def test_running_after_tick(self, db, scheduler, fake_redis):
        await scheduler.queue_due_syncs()

        status = await scheduler.get_scheduler_status(fake_redis)

        assert status.running is True
        assert status.is_processing is False
        assert status.last_tick_at is not None

    async def test_stale_tick_reports_stopped(self, scheduler, fake_redis):
        stale = utcnow() - timedelta(seconds=scheduler.settings.scheduler_interval_seconds * 3)
        await fake_redis.set(LAST_TICK_KEY, stale.isoformat())

        status = await scheduler.get_scheduler_status(fake_redis)

        assert status.running is False

    async def test_schedule_stats(self, db, scheduler, gmail_token):
        await add_config(db, gmail_token, name="A", sync_frequency="hourly")
        await add_config(db, gmail_token, name="B", sync_frequency="daily", next_sync_at=utcnow() + timedelta(days=1))
        await add_config(db, gmail_token, name="C", sync_frequency="manual")
        await add_config(db, gmail_token, name="D", sync_frequency="hourly", enabled=False)

        stats = await scheduler.get_schedule_stats(db)

        assert stats.total_configs == 4
        assert stats.enabled_configs == 3
        assert stats.due_now == 1
        assert stats.by_frequency == {"hourly": 2, "daily": 1, "manual": 1}
