"""
Credential providers for the Google connectors.

A connector asks its provider for google-auth credentials before every
client build. Two variants exist:

- OAuthTokenCredentials: a stored, encrypted per-account token that is
  refreshed in place when it is within five minutes of expiry.
- ServiceAccountCredentials: a service account key, optionally impersonating
  a workspace user through domain-wide delegation.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Optional, Union

from google.auth.credentials import Credentials as GoogleCredentials
from google.oauth2 import service_account
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from dealsync.connectors.oauth import OAuth2AuthManager, OAuthTokenSet
from dealsync.core.exceptions import TokenNotFoundError, TokenRefreshError
from dealsync.core.token_encryption import TokenEncryptor
from dealsync.core.timeutils import as_utc, utcnow
from dealsync.models import OAuthToken, SyncConfiguration, SyncedItem, SyncRun

logger = logging.getLogger(__name__)

REFRESH_BUFFER = timedelta(minutes=5)


class CredentialsProvider(ABC):
    """Supplies google-auth credentials to a connector."""

    @abstractmethod
    async def get_credentials(self) -> GoogleCredentials:
        ...

    @property
    def account_email(self) -> Optional[str]:
        return None


class OAuthTokenCredentials(CredentialsProvider):
    """
    Credentials backed by a row in google_oauth_tokens.

    Resolution:
    1. Load the token, ignoring revoked rows.
    2. Decrypt access and refresh tokens.
    3. Refresh and persist when the token expires within REFRESH_BUFFER.
    4. Cache the built credentials until the token expires.
    """

    def __init__(
        self,
        db: AsyncSession,
        token_id: Union[str, uuid.UUID],
        auth_manager: OAuth2AuthManager,
        encryptor: TokenEncryptor,
    ):
        self.db = db
        self.token_id = uuid.UUID(str(token_id))
        self.auth_manager = auth_manager
        self.encryptor = encryptor
        self._credentials: Optional[GoogleCredentials] = None
        self._expiry: Optional[datetime] = None
        self._account_email: Optional[str] = None
        self.service_type: Optional[str] = None

    @property
    def account_email(self) -> Optional[str]:
        return self._account_email

    async def _load_token(self) -> OAuthToken:
        stmt = select(OAuthToken).where(
            OAuthToken.id == self.token_id,
            OAuthToken.revoked_at.is_(None),
        )
        result = await self.db.execute(stmt)
        token = result.scalar_one_or_none()
        if token is None:
            raise TokenNotFoundError()
        return token

    async def get_credentials(self) -> GoogleCredentials:
        if self._credentials is not None and self._expiry and utcnow() < self._expiry:
            return self._credentials

        token = await self._load_token()
        self._account_email = token.account_email
        self.service_type = token.service_type

        access_token = self.encryptor.decrypt(token.access_token)
        refresh_token = self.encryptor.decrypt(token.refresh_token)
        expiry = as_utc(token.token_expiry)

        if expiry < utcnow() + REFRESH_BUFFER:
            logger.info(f"Refreshing access token for {token.account_email} ({token.service_type})")
            try:
                access_token, expiry = await self.auth_manager.refresh_access_token(
                    token.service_type, refresh_token
                )
            except TokenRefreshError:
                raise
            except Exception as e:
                logger.error(f"Access token refresh failed for token {self.token_id}: {e}")
                raise TokenRefreshError() from e

            # Concurrent refreshes are last-writer-wins; each token stays valid
            await self.db.execute(
                update(OAuthToken)
                .where(OAuthToken.id == self.token_id)
                .values(
                    access_token=self.encryptor.encrypt(access_token),
                    token_expiry=expiry,
                    updated_at=utcnow(),
                )
            )
            await self.db.commit()

        self._credentials = self.auth_manager.build_credentials(
            token.service_type, access_token, refresh_token, expiry
        )
        # Reuse only while the token is outside the refresh window
        self._expiry = as_utc(expiry) - REFRESH_BUFFER
        return self._credentials


class ServiceAccountCredentials(CredentialsProvider):
    """Service account key with optional domain-wide delegation."""

    def __init__(
        self,
        scopes: list[str],
        key_file: Optional[str] = None,
        key_info: Optional[dict] = None,
        subject: Optional[str] = None,
    ):
        if not key_file and not key_info:
            raise ValueError("ServiceAccountCredentials requires key_file or key_info")
        self.scopes = scopes
        self.key_file = key_file
        self.key_info = key_info
        self.subject = subject
        self._credentials: Optional[GoogleCredentials] = None

    @property
    def account_email(self) -> Optional[str]:
        return self.subject

    async def get_credentials(self) -> GoogleCredentials:
        if self._credentials is None:
            if self.key_info is not None:
                info = dict(self.key_info)
                # Keys pasted into env vars carry literal \n sequences
                if "private_key" in info:
                    info["private_key"] = info["private_key"].replace("\\n", "\n")
                creds = service_account.Credentials.from_service_account_info(
                    info, scopes=self.scopes
                )
            else:
                creds = service_account.Credentials.from_service_account_file(
                    self.key_file, scopes=self.scopes
                )
            if self.subject:
                creds = creds.with_subject(self.subject)
            self._credentials = creds
        return self._credentials


class TokenStore:
    """
    Persistence for OAuth tokens.

    Handles:
    - Storing tokens from the OAuth callback (update-else-insert)
    - Listing connected accounts
    - Revocation (provider-side best effort, local always)
    """

    def __init__(self, auth_manager: OAuth2AuthManager, encryptor: TokenEncryptor):
        self.auth_manager = auth_manager
        self.encryptor = encryptor

    async def store_tokens(
        self,
        db: AsyncSession,
        user_id: str,
        account_email: str,
        service_type: str,
        tokens: OAuthTokenSet,
    ) -> OAuthToken:
        """Keep exactly one active row per (user, account, service)."""
        stmt = select(OAuthToken).where(
            OAuthToken.user_id == user_id,
            OAuthToken.account_email == account_email,
            OAuthToken.service_type == service_type,
        )
        result = await db.execute(stmt)
        token = result.scalar_one_or_none()

        encrypted_access = self.encryptor.encrypt(tokens.access_token)
        encrypted_refresh = self.encryptor.encrypt(tokens.refresh_token)

        if token:
            token.access_token = encrypted_access
            token.refresh_token = encrypted_refresh
            token.token_expiry = tokens.expiry
            token.scopes = list(tokens.scopes)
            token.revoked_at = None
            token.updated_at = utcnow()
            logger.info(f"Updated {service_type} OAuth token for {account_email}")
        else:
            token = OAuthToken(
                user_id=user_id,
                account_email=account_email,
                service_type=service_type,
                access_token=encrypted_access,
                refresh_token=encrypted_refresh,
                token_expiry=tokens.expiry,
                scopes=list(tokens.scopes),
            )
            db.add(token)
            logger.info(f"Stored new {service_type} OAuth token for {account_email}")

        await db.flush()
        await db.refresh(token)
        return token

    async def list_accounts(self, db: AsyncSession, user_id: str) -> list[OAuthToken]:
        stmt = (
            select(OAuthToken)
            .where(OAuthToken.user_id == user_id, OAuthToken.revoked_at.is_(None))
            .order_by(OAuthToken.created_at.desc())
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def revoke(self, db: AsyncSession, token_id: Union[str, uuid.UUID], user_id: Optional[str] = None) -> bool:
        """
        Disconnect an account.

        Returns False if no active token matched. Provider-side failure never
        blocks the local revocation.
        """
        token_id = uuid.UUID(str(token_id))
        stmt = select(OAuthToken).where(
            OAuthToken.id == token_id,
            OAuthToken.revoked_at.is_(None),
        )
        if user_id is not None:
            stmt = stmt.where(OAuthToken.user_id == user_id)
        result = await db.execute(stmt)
        token = result.scalar_one_or_none()
        if token is None:
            return False

        try:
            access_token = self.encryptor.decrypt(token.access_token)
            await self.auth_manager.revoke_token(access_token)
        except Exception as e:
            logger.warning(f"Provider-side revoke failed for token {token_id}: {e}")

        token.revoked_at = utcnow()

        config_ids = select(SyncConfiguration.id).where(SyncConfiguration.token_id == token_id)
        await db.execute(delete(SyncedItem).where(SyncedItem.config_id.in_(config_ids)))
        await db.execute(delete(SyncRun).where(SyncRun.config_id.in_(config_ids)))
        await db.execute(delete(SyncConfiguration).where(SyncConfiguration.token_id == token_id))
        await db.flush()

        logger.info(f"Revoked OAuth token {token_id} ({token.account_email})")
        return True
