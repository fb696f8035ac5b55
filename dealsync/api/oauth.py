"""
OAuth2 account connection endpoints for Gmail and Drive.
"""

import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Path
from sqlalchemy.ext.asyncio import AsyncSession

from dealsync.api.deps import get_auth_manager, get_current_user_id, get_token_store
from dealsync.connectors.credentials import TokenStore
from dealsync.connectors.oauth import OAuth2AuthManager
from dealsync.core.exceptions import (
    InvalidOAuthStateError,
    OAuthServiceNotConfiguredError,
    TokenNotFoundError,
)
from dealsync.database import get_db
from dealsync.schemas.sync import (
    ApiResponse,
    AuthUrlResponse,
    OAuthAccountResponse,
    OAuthServiceStatus,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/oauth")

SERVICE_PATTERN = "^(gmail|drive)$"


@router.get("/{service}/authorize", response_model=ApiResponse[AuthUrlResponse])
async def authorize(
    service: str = Path(pattern=SERVICE_PATTERN),
    user_id: str = Depends(get_current_user_id),
    auth_manager: OAuth2AuthManager = Depends(get_auth_manager),
):
    """Start the consent flow. The state is single use and expires."""
    if not auth_manager.is_service_configured(service):
        raise OAuthServiceNotConfiguredError(service)

    auth_url, state = await auth_manager.generate_auth_url(service, user_id)
    return ApiResponse(data=AuthUrlResponse(auth_url=auth_url, state=state))


@router.get("/{service}/callback", response_model=ApiResponse[OAuthAccountResponse])
async def callback(
    service: str = Path(pattern=SERVICE_PATTERN),
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    auth_manager: OAuth2AuthManager = Depends(get_auth_manager),
    token_store: TokenStore = Depends(get_token_store),
):
    """Finish the consent flow and store the account's tokens."""
    if error:
        raise HTTPException(status_code=400, detail=f"Authorization failed: {error}")
    if not code or not state:
        raise HTTPException(status_code=400, detail="Missing code or state")

    pending = await auth_manager.verify_state(state)
    if pending is None or pending.get("service") != service:
        raise InvalidOAuthStateError()

    tokens = await auth_manager.exchange_code(service, code, pending["code_verifier"])
    account_email = await auth_manager.get_user_email(tokens.access_token)
    token = await token_store.store_tokens(
        db,
        user_id=pending["user_id"],
        account_email=account_email,
        service_type=service,
        tokens=tokens,
    )
    logger.info(f"Connected {service} account {account_email} for user {pending['user_id']}")
    return ApiResponse(data=OAuthAccountResponse.model_validate(token))


@router.get("/accounts", response_model=ApiResponse[list[OAuthAccountResponse]])
async def list_accounts(
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    token_store: TokenStore = Depends(get_token_store),
):
    tokens = await token_store.list_accounts(db, user_id)
    return ApiResponse(data=[OAuthAccountResponse.model_validate(t) for t in tokens])


@router.delete("/accounts/{token_id}", response_model=ApiResponse[dict])
async def revoke_account(
    token_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    token_store: TokenStore = Depends(get_token_store),
):
    """Disconnect an account and drop its sync history."""
    if not await token_store.revoke(db, token_id, user_id):
        raise TokenNotFoundError()
    return ApiResponse(data={"revoked": True})


@router.get("/status", response_model=ApiResponse[OAuthServiceStatus])
async def oauth_status(auth_manager: OAuth2AuthManager = Depends(get_auth_manager)):
    return ApiResponse(data=OAuthServiceStatus(**auth_manager.status()))
