"""Tests for the OAuth2 consent flow helpers."""
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from dealsync.connectors.oauth import (
    InMemoryStateStore,
    OAuth2AuthManager,
    RedisStateStore,
)
from dealsync.core.exceptions import OAuthServiceNotConfiguredError

CLIENT_CONFIG = {
    "installed": {
        "client_id": "client-123.apps.googleusercontent.com",
        "client_secret": "shh",
        "auth_uri": "https://accounts.google.com/o/oauth2/auth",
        "token_uri": "https://oauth2.googleapis.com/token",
    }
}


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def build_manager(settings, store=None, handler=None) -> OAuth2AuthManager:
    http_client = None
    if handler is not None:
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return OAuth2AuthManager(
        store or InMemoryStateStore(),
        settings=settings,
        client_configs={"gmail": CLIENT_CONFIG},
        http_client=http_client,
    )


class TestInMemoryStateStore:
    async def test_pop_is_single_use(self):
        store = InMemoryStateStore()
        await store.put("abc", {"service": "gmail"}, ttl_seconds=60)

        assert await store.pop("abc") == {"service": "gmail"}
        assert await store.pop("abc") is None

    async def test_expired_entries_are_evicted(self):
        clock = FakeClock()
        store = InMemoryStateStore(clock=clock)
        await store.put("old", {"service": "gmail"}, ttl_seconds=10)
        await store.put("new", {"service": "drive"}, ttl_seconds=100)

        clock.now += 50

        assert len(store) == 1
        assert await store.pop("old") is None
        assert await store.pop("new") == {"service": "drive"}


class TestRedisStateStore:
    async def test_round_trip_through_redis(self, fake_redis):
        store = RedisStateStore(fake_redis)
        await store.put("xyz", {"user_id": "u1"}, ttl_seconds=60)

        assert "oauth:state:xyz" in fake_redis.values
        assert await store.pop("xyz") == {"user_id": "u1"}
        assert await store.pop("xyz") is None


class TestOAuth2AuthManager:
    async def test_generate_auth_url_uses_pkce_and_stores_state(self, settings):
        store = InMemoryStateStore()
        manager = build_manager(settings, store)

        auth_url, state = await manager.generate_auth_url("gmail", "user-1")

        query = parse_qs(urlparse(auth_url).query)
        assert query["state"] == [state]
        assert query["access_type"] == ["offline"]
        assert query["prompt"] == ["consent"]
        assert query["code_challenge_method"] == ["S256"]
        assert query["redirect_uri"] == ["http://localhost:8000/api/v1/oauth/gmail/callback"]
        assert "gmail.readonly" in query["scope"][0]

        pending = await manager.verify_state(state)
        assert pending["service"] == "gmail"
        assert pending["user_id"] == "user-1"
        assert pending["code_verifier"]
        assert await manager.verify_state(state) is None

    async def test_unconfigured_service_rejected(self, settings):
        manager = build_manager(settings)

        assert manager.status() == {"gmail": True, "drive": False}
        with pytest.raises(OAuthServiceNotConfiguredError):
            await manager.generate_auth_url("drive", "user-1")

    def test_build_credentials_uses_client_info(self, settings):
        manager = build_manager(settings)

        creds = manager.build_credentials("gmail", "access", "refresh")

        assert creds.token == "access"
        assert creds.refresh_token == "refresh"
        assert creds.client_id == "client-123.apps.googleusercontent.com"
        assert creds.client_secret == "shh"

    async def test_get_user_email(self, settings):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.headers["Authorization"] == "Bearer token-1"
            return httpx.Response(200, json={"email": "rep@example.com"})

        manager = build_manager(settings, handler=handler)
        await manager.init()

        assert await manager.get_user_email("token-1") == "rep@example.com"
        await manager.close()

    async def test_revoke_token_reports_failure(self, settings):
        manager = build_manager(settings, handler=lambda request: httpx.Response(400))
        await manager.init()

        assert await manager.revoke_token("token-1") is False

    async def test_revoke_token_success(self, settings):
        manager = build_manager(settings, handler=lambda request: httpx.Response(200))
        await manager.init()

        assert await manager.revoke_token("token-1") is True
