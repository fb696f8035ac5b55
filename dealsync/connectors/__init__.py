"""
Google source connectors and their credential handling.
"""

from dealsync.connectors.oauth import (
    OAuth2AuthManager,
    StateStore,
    InMemoryStateStore,
    RedisStateStore,
)
from dealsync.connectors.credentials import (
    CredentialsProvider,
    OAuthTokenCredentials,
    ServiceAccountCredentials,
    TokenStore,
)
from dealsync.connectors.gmail import GmailConnector
from dealsync.connectors.drive import DriveConnector
from dealsync.connectors.factory import ConnectorFactory

__all__ = [
    "OAuth2AuthManager",
    "StateStore",
    "InMemoryStateStore",
    "RedisStateStore",
    "CredentialsProvider",
    "OAuthTokenCredentials",
    "ServiceAccountCredentials",
    "TokenStore",
    "GmailConnector",
    "DriveConnector",
    "ConnectorFactory",
]
