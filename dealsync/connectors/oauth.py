"""
OAuth 2.0 authorization for Google APIs.

OAuth2AuthManager runs the browser consent flow (PKCE, offline access) for
personal or workspace accounts, refreshes and revokes tokens, and builds
google-auth credentials for the connectors. It is constructed once per
process (FastAPI lifespan, Celery worker init) and injected where needed.
"""

import asyncio
import json
import logging
import secrets
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Optional

import httpx
from google.auth.exceptions import RefreshError
from google.auth.transport.requests import Request as GoogleRequest
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import Flow

from dealsync.config import Settings, get_settings
from dealsync.core.exceptions import (
    OAuthServiceNotConfiguredError,
    TokenRefreshError,
)
from dealsync.core.redis_client import RedisClient
from dealsync.core.timeutils import as_utc, utcnow

logger = logging.getLogger(__name__)

GMAIL_SCOPES = [
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/userinfo.email",
]

DRIVE_SCOPES = [
    "https://www.googleapis.com/auth/drive.readonly",
    "https://www.googleapis.com/auth/userinfo.email",
]

SERVICE_SCOPES = {"gmail": GMAIL_SCOPES, "drive": DRIVE_SCOPES}

GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
GOOGLE_REVOKE_URI = "https://oauth2.googleapis.com/revoke"
GOOGLE_USERINFO_URI = "https://www.googleapis.com/oauth2/v2/userinfo"


@dataclass
class OAuthTokenSet:
    access_token: str
    refresh_token: str
    expiry: datetime
    scopes: list[str]


# ============== PKCE state stores ==============

class StateStore(ABC):
    """Where pending authorization states live between authorize and callback."""

    @abstractmethod
    async def put(self, state: str, entry: dict, ttl_seconds: int) -> None:
        ...

    @abstractmethod
    async def pop(self, state: str) -> Optional[dict]:
        """Return and remove the entry, or None if unknown or expired."""


class InMemoryStateStore(StateStore):
    """Single-process store. Expired entries are evicted on every access."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._entries: dict[str, tuple[float, dict]] = {}
        self._clock = clock

    def _evict(self) -> None:
        now = self._clock()
        expired = [key for key, (expires_at, _) in self._entries.items() if expires_at <= now]
        for key in expired:
            del self._entries[key]

    async def put(self, state: str, entry: dict, ttl_seconds: int) -> None:
        self._evict()
        self._entries[state] = (self._clock() + ttl_seconds, entry)

    async def pop(self, state: str) -> Optional[dict]:
        self._evict()
        item = self._entries.pop(state, None)
        return item[1] if item else None

    def __len__(self) -> int:
        self._evict()
        return len(self._entries)


class RedisStateStore(StateStore):
    """Shared store for multi-instance deployments. Redis handles expiry."""

    def __init__(self, redis: RedisClient, prefix: str = "oauth:state:"):
        self.redis = redis
        self.prefix = prefix

    async def put(self, state: str, entry: dict, ttl_seconds: int) -> None:
        await self.redis.set_json(f"{self.prefix}{state}", entry, ttl_seconds)

    async def pop(self, state: str) -> Optional[dict]:
        return await self.redis.pop_json(f"{self.prefix}{state}")


# ============== Auth manager ==============

class OAuth2AuthManager:
    """
    OAuth 2.0 flow and token operations for Gmail and Drive.

    Handles:
    - Authorization URLs with PKCE (S256) and offline access
    - State verification (single use, TTL bound)
    - Code exchange, refresh and revocation
    - Building google-auth credentials for connectors
    """

    def __init__(
        self,
        state_store: StateStore,
        settings: Optional[Settings] = None,
        client_configs: Optional[dict[str, dict]] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or get_settings()
        self.state_store = state_store
        self.redirect_uri = self.settings.google_oauth_redirect_uri
        self.state_ttl_seconds = self.settings.oauth_state_ttl_seconds
        self._client_configs: dict[str, dict] = dict(client_configs or {})
        self._http: Optional[httpx.AsyncClient] = http_client
        self._owns_http = http_client is None

    async def init(self) -> None:
        """Load client configs and open the HTTP client."""
        paths = {
            "gmail": self.settings.google_gmail_credentials_path,
            "drive": self.settings.google_drive_credentials_path,
        }
        for service, path in paths.items():
            if service in self._client_configs or not path:
                continue
            try:
                self._client_configs[service] = json.loads(Path(path).read_text())
                logger.info(f"{service} OAuth2 credentials loaded from {path}")
            except (OSError, ValueError) as e:
                logger.error(f"Failed to load {service} OAuth2 credentials from {path}: {e}")

        if self._http is None:
            self._http = httpx.AsyncClient(timeout=30.0)

    async def close(self) -> None:
        if self._http and self._owns_http:
            await self._http.aclose()
        self._http = None

    @property
    def http(self) -> httpx.AsyncClient:
        if self._http is None:
            raise RuntimeError("OAuth2AuthManager not initialized. Call init() first.")
        return self._http

    def is_service_configured(self, service: str) -> bool:
        return service in self._client_configs

    def get_scopes(self, service: str) -> list[str]:
        return list(SERVICE_SCOPES[service])

    def _client_config(self, service: str) -> dict:
        config = self._client_configs.get(service)
        if not config:
            raise OAuthServiceNotConfiguredError(service)
        return config

    def _client_info(self, service: str) -> dict:
        config = self._client_config(service)
        return config.get("installed") or config.get("web") or {}

    def _flow(self, service: str, code_verifier: str) -> Flow:
        return Flow.from_client_config(
            self._client_config(service),
            scopes=self.get_scopes(service),
            redirect_uri=self.redirect_uri.format(service=service),
            code_verifier=code_verifier,
            autogenerate_code_verifier=False,
        )

    async def generate_auth_url(self, service: str, user_id: str) -> tuple[str, str]:
        """
        Build a consent URL and remember the PKCE verifier under a fresh state.

        Returns:
            (auth_url, state)
        """
        state = secrets.token_hex(32)
        code_verifier = secrets.token_urlsafe(64)

        auth_url, _ = self._flow(service, code_verifier).authorization_url(
            access_type="offline",
            prompt="consent",
            state=state,
        )

        await self.state_store.put(
            state,
            {"service": service, "code_verifier": code_verifier, "user_id": user_id},
            self.state_ttl_seconds,
        )
        logger.info(f"Generated {service} OAuth2 authorization URL for user {user_id}")
        return auth_url, state

    async def verify_state(self, state: str) -> Optional[dict]:
        """Consume a pending state. Returns None if unknown or expired."""
        return await self.state_store.pop(state)

    async def exchange_code(self, service: str, code: str, code_verifier: str) -> OAuthTokenSet:
        """Trade an authorization code for access and refresh tokens."""
        flow = self._flow(service, code_verifier)
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, lambda: flow.fetch_token(code=code))
        creds = flow.credentials

        if not creds.token or not creds.refresh_token:
            raise ValueError("Failed to obtain tokens from Google")

        logger.info(f"Exchanged authorization code for {service} tokens")
        return OAuthTokenSet(
            access_token=creds.token,
            refresh_token=creds.refresh_token,
            expiry=as_utc(creds.expiry) or utcnow() + timedelta(hours=1),
            scopes=list(creds.scopes or self.get_scopes(service)),
        )

    def build_credentials(
        self,
        service: str,
        access_token: Optional[str],
        refresh_token: str,
        expiry: Optional[datetime] = None,
    ) -> Credentials:
        info = self._client_info(service)
        creds = Credentials(
            token=access_token,
            refresh_token=refresh_token,
            token_uri=info.get("token_uri", GOOGLE_TOKEN_URI),
            client_id=info.get("client_id"),
            client_secret=info.get("client_secret"),
            scopes=self.get_scopes(service),
        )
        if expiry is not None:
            # google-auth compares expiry as naive UTC
            creds.expiry = as_utc(expiry).replace(tzinfo=None)
        return creds

    async def refresh_access_token(self, service: str, refresh_token: str) -> tuple[str, datetime]:
        """
        Get a new access token.

        Returns:
            (access_token, expiry)
        """
        creds = self.build_credentials(service, None, refresh_token)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, lambda: creds.refresh(GoogleRequest()))
        except RefreshError as e:
            logger.error(f"Failed to refresh {service} access token: {e}")
            raise TokenRefreshError() from e

        if not creds.token:
            raise TokenRefreshError()
        return creds.token, as_utc(creds.expiry) or utcnow() + timedelta(hours=1)

    async def get_user_email(self, access_token: str) -> str:
        response = await self.http.get(
            GOOGLE_USERINFO_URI,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        response.raise_for_status()
        email = response.json().get("email")
        if not email:
            raise ValueError("Could not retrieve user email")
        return email

    async def revoke_token(self, token: str) -> bool:
        """Best-effort provider-side revocation."""
        try:
            response = await self.http.post(
                GOOGLE_REVOKE_URI,
                params={"token": token},
                headers={"Content-Type": "application/x-www-form-urlencoded"},
            )
        except httpx.HTTPError as e:
            logger.warning(f"Token revocation request failed: {e}")
            return False

        if response.status_code != 200:
            logger.warning(f"Token revocation returned HTTP {response.status_code}")
            return False
        return True

    def status(self) -> dict[str, Any]:
        return {service: self.is_service_configured(service) for service in SERVICE_SCOPES}
