"""
Executor boundary between the job queue and the sync service.

The worker task only knows the abstract SyncExecutor; the concrete
ServiceSyncExecutor is installed at worker start by ``configure_executor``.
"""

import logging
from abc import ABC, abstractmethod
from typing import AsyncContextManager, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from dealsync.config import Settings, get_settings
from dealsync.connectors.factory import ConnectorFactory
from dealsync.connectors.oauth import OAuth2AuthManager
from dealsync.core.progress import ProgressChannel
from dealsync.core.token_encryption import TokenEncryptor, get_token_encryptor
from dealsync.database import get_db_context
from dealsync.schemas.sync import SyncJobData, SyncJobResult
from dealsync.services.sync_service import SyncService

logger = logging.getLogger(__name__)


class SyncExecutor(ABC):
    """Runs one queued sync job."""

    @abstractmethod
    async def execute(
        self,
        job: SyncJobData,
        progress: Optional[ProgressChannel] = None,
        job_id: Optional[str] = None,
    ) -> SyncJobResult:
        ...


class ServiceSyncExecutor(SyncExecutor):
    """Executes jobs with SyncService in a fresh database session."""

    def __init__(
        self,
        auth_manager: OAuth2AuthManager,
        encryptor: Optional[TokenEncryptor] = None,
        settings: Optional[Settings] = None,
        session_factory: Callable[[], AsyncContextManager[AsyncSession]] = get_db_context,
    ):
        self.settings = settings or get_settings()
        self.auth_manager = auth_manager
        self.encryptor = encryptor or get_token_encryptor()
        self.session_factory = session_factory

    def build_service(self) -> SyncService:
        factory = ConnectorFactory(self.auth_manager, self.encryptor, self.settings)
        return SyncService(factory, settings=self.settings)

    async def execute(
        self,
        job: SyncJobData,
        progress: Optional[ProgressChannel] = None,
        job_id: Optional[str] = None,
    ) -> SyncJobResult:
        service = self.build_service()
        async with self.session_factory() as db:
            if job.type == "gmail_sync":
                result = await service.sync_gmail_config(
                    db, job.config_id, job.trigger_type, job.triggered_by, progress
                )
            else:
                result = await service.sync_drive_config(
                    db, job.config_id, job.trigger_type, job.triggered_by, progress
                )
        return SyncJobResult(job_id=job_id, **result.model_dump())


_executor: Optional[SyncExecutor] = None


def configure_executor(executor: Optional[SyncExecutor]) -> None:
    """Install the executor used by sync tasks in this process."""
    global _executor
    _executor = executor


def get_executor() -> SyncExecutor:
    if _executor is None:
        raise RuntimeError("Sync executor not configured. Is the worker bootstrapped?")
    return _executor
