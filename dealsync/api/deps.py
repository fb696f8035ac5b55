"""
Shared FastAPI dependencies.
"""

from typing import Optional

from fastapi import Depends, Header, Request

from dealsync.connectors.credentials import TokenStore
from dealsync.connectors.factory import ConnectorFactory
from dealsync.connectors.oauth import OAuth2AuthManager
from dealsync.core.token_encryption import TokenEncryptor, get_token_encryptor
from dealsync.services.scheduler import SyncScheduler
from dealsync.services.sync_service import SyncService
from dealsync.workers.queue import SyncQueue, get_sync_queue

_scheduler: Optional[SyncScheduler] = None


def get_auth_manager(request: Request) -> OAuth2AuthManager:
    """The auth manager created in the application lifespan."""
    return request.app.state.auth_manager


def get_encryptor() -> TokenEncryptor:
    return get_token_encryptor()


def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """Caller identity, set by the authenticating proxy in front of the API."""
    return x_user_id or "default"


def get_token_store(
    auth_manager: OAuth2AuthManager = Depends(get_auth_manager),
    encryptor: TokenEncryptor = Depends(get_encryptor),
) -> TokenStore:
    return TokenStore(auth_manager, encryptor)


def get_sync_service(
    auth_manager: OAuth2AuthManager = Depends(get_auth_manager),
    encryptor: TokenEncryptor = Depends(get_encryptor),
) -> SyncService:
    return SyncService(ConnectorFactory(auth_manager, encryptor))


async def get_queue() -> SyncQueue:
    return await get_sync_queue()


def get_scheduler() -> SyncScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = SyncScheduler()
    return _scheduler
