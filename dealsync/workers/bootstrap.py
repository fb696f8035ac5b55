"""
Worker process bootstrap: builds the OAuth manager and sync executor once
per Celery worker process.
"""

import logging

from celery.signals import worker_process_init, worker_process_shutdown

from dealsync.config import get_settings
from dealsync.connectors.oauth import InMemoryStateStore, OAuth2AuthManager
from dealsync.workers.executor import ServiceSyncExecutor, configure_executor
from dealsync.workers.sync_tasks import run_async

logger = logging.getLogger(__name__)

_auth_manager = None


@worker_process_init.connect
def init_worker(**kwargs):
    """Wire the sync executor for this worker process."""
    global _auth_manager
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    # Workers never run the consent flow, so OAuth state stays in-process
    _auth_manager = OAuth2AuthManager(InMemoryStateStore(), settings=settings)
    run_async(_auth_manager.init())
    configure_executor(ServiceSyncExecutor(_auth_manager, settings=settings))
    logger.info("Sync worker initialized")


@worker_process_shutdown.connect
def shutdown_worker(**kwargs):
    global _auth_manager
    if _auth_manager is not None:
        run_async(_auth_manager.close())
        _auth_manager = None
    configure_executor(None)
