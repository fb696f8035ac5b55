"""
Builds connectors for stored OAuth tokens.
"""

import uuid
from typing import Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from dealsync.config import Settings, get_settings
from dealsync.connectors.credentials import (
    OAuthTokenCredentials,
    ServiceAccountCredentials,
)
from dealsync.connectors.drive import DriveConnector
from dealsync.connectors.gmail import GmailConnector
from dealsync.connectors.oauth import DRIVE_SCOPES, GMAIL_SCOPES, OAuth2AuthManager
from dealsync.core.token_encryption import TokenEncryptor


class ConnectorFactory:
    """Creates Gmail/Drive connectors bound to a token or a service account."""

    def __init__(
        self,
        auth_manager: OAuth2AuthManager,
        encryptor: TokenEncryptor,
        settings: Optional[Settings] = None,
    ):
        self.auth_manager = auth_manager
        self.encryptor = encryptor
        self.settings = settings or get_settings()

    def _token_credentials(self, db: AsyncSession, token_id: Union[str, uuid.UUID]) -> OAuthTokenCredentials:
        return OAuthTokenCredentials(db, token_id, self.auth_manager, self.encryptor)

    def gmail(self, db: AsyncSession, token_id: Union[str, uuid.UUID]) -> GmailConnector:
        return GmailConnector(self._token_credentials(db, token_id))

    def drive(self, db: AsyncSession, token_id: Union[str, uuid.UUID]) -> DriveConnector:
        return DriveConnector(self._token_credentials(db, token_id))

    def service_account_gmail(self, user_email: Optional[str] = None) -> GmailConnector:
        subject = user_email or self.settings.google_impersonated_user
        creds = ServiceAccountCredentials(
            scopes=GMAIL_SCOPES[:1],
            key_file=self.settings.google_service_account_file,
            subject=subject,
        )
        return GmailConnector(creds, user_id=subject or "me")

    def service_account_drive(self, user_email: Optional[str] = None) -> DriveConnector:
        creds = ServiceAccountCredentials(
            scopes=DRIVE_SCOPES[:1],
            key_file=self.settings.google_service_account_file,
            subject=user_email or self.settings.google_impersonated_user,
        )
        return DriveConnector(creds)
