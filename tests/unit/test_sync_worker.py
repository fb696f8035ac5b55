"""Tests for the sync executor boundary and Celery task wiring."""
import uuid
from unittest.mock import AsyncMock, MagicMock

import pytest

from dealsync.core.exceptions import SyncConfigurationError
from dealsync.schemas.sync import SyncJobData, SyncJobResult, SyncResult
from dealsync.workers import sync_tasks
from dealsync.workers.executor import (
    ServiceSyncExecutor,
    SyncExecutor,
    configure_executor,
    get_executor,
)


class RecordingExecutor(SyncExecutor):
    def __init__(self, error=None, progress_steps=()):
        self.error = error
        self.progress_steps = progress_steps
        self.calls = []

    async def execute(self, job, progress=None, job_id=None):
        self.calls.append((job, job_id))
        if self.error:
            raise self.error
        return SyncJobResult(job_id=job_id, config_id=job.config_id, sync_run_id=uuid.uuid4(), items_found=2)


@pytest.fixture(autouse=True)
def reset_executor():
    yield
    configure_executor(None)


@pytest.fixture(name="release_lock")
def release_lock_fixture(monkeypatch) -> AsyncMock:
    release = AsyncMock()
    monkeypatch.setattr(sync_tasks, "_release_lock_async", release)
    return release


def job_payload(job_type: str = "gmail_sync") -> dict:
    return SyncJobData(type=job_type, config_id=uuid.uuid4()).model_dump(mode="json")


class TestExecutorRegistry:
    def test_unconfigured_executor_raises(self):
        with pytest.raises(RuntimeError, match="not configured"):
            get_executor()

    def test_configure_executor(self):
        executor = RecordingExecutor()
        configure_executor(executor)

        assert get_executor() is executor


class TestServiceSyncExecutor:
    @pytest.mark.parametrize(
        "job_type,method",
        [("gmail_sync", "sync_gmail_config"), ("drive_sync", "sync_drive_config")],
    )
    async def test_dispatches_on_job_type(self, job_type, method, db_context, encryptor, settings, monkeypatch):
        config_id = uuid.uuid4()
        run_id = uuid.uuid4()
        service = MagicMock()
        setattr(
            service,
            method,
            AsyncMock(return_value=SyncResult(config_id=config_id, sync_run_id=run_id, items_processed=1)),
        )
        executor = ServiceSyncExecutor(MagicMock(), encryptor, settings, session_factory=db_context)
        monkeypatch.setattr(executor, "build_service", lambda: service)

        job = SyncJobData(type=job_type, config_id=config_id, trigger_type="scheduled")
        result = await executor.execute(job, job_id="job-1")

        assert result.job_id == "job-1"
        assert result.sync_run_id == run_id
        assert result.items_processed == 1
        call_args = getattr(service, method).await_args.args
        assert call_args[1:] == (config_id, "scheduled", None, None)


class TestRunSyncJobTask:
    def test_retry_countdown_doubles(self):
        backoff = sync_tasks.settings.sync_job_backoff_seconds
        assert [sync_tasks.retry_countdown(n) for n in range(3)] == [backoff, backoff * 2, backoff * 4]

    def test_success_returns_result_and_releases_lock(self, release_lock):
        executor = RecordingExecutor()
        configure_executor(executor)

        outcome = sync_tasks.run_sync_job.apply(args=[job_payload()], task_id="gmail-sync-job-1")

        assert outcome.successful()
        assert outcome.result["job_id"] == "gmail-sync-job-1"
        assert outcome.result["items_found"] == 2
        assert executor.calls[0][1] == "gmail-sync-job-1"
        release_lock.assert_awaited_once()

    def test_configuration_errors_are_not_retried(self, release_lock):
        executor = RecordingExecutor(error=SyncConfigurationError("No Drive folder configured"))
        configure_executor(executor)

        outcome = sync_tasks.run_sync_job.apply(args=[job_payload("drive_sync")], task_id="drive-sync-job-1")

        assert outcome.failed()
        assert isinstance(outcome.result, SyncConfigurationError)
        assert len(executor.calls) == 1
        release_lock.assert_awaited_once()
