"""API tests: response envelope, error mapping and the sync and OAuth routes."""
import uuid
from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient

from dealsync.api.deps import (
    get_auth_manager,
    get_encryptor,
    get_queue,
    get_scheduler,
    get_sync_service,
)
from dealsync.connectors.oauth import OAuthTokenSet
from dealsync.core.timeutils import utcnow
from dealsync.database import get_db
from dealsync.main import app
from dealsync.schemas.connectors import GmailMessageSummary, GmailSearchResult
from dealsync.services.scheduler import SyncScheduler
from dealsync.services.spool import SpoolWriter
from dealsync.services.sync_service import SyncService
from dealsync.workers.queue import SyncQueue


@pytest.fixture(name="gmail_connector")
def gmail_connector_fixture() -> MagicMock:
    gmail = MagicMock()
    gmail.search_messages = AsyncMock(
        return_value=GmailSearchResult(messages=[GmailMessageSummary(id="msg-1", threadId="t-1")])
    )
    gmail.get_message_count = AsyncMock(return_value=7)
    return gmail


@pytest.fixture(name="client")
async def client_fixture(
    session_factory,
    db_context,
    settings,
    encryptor,
    fake_redis,
    fake_celery,
    fake_auth_manager,
    gmail_connector,
    tmp_path,
):
    queue = SyncQueue(fake_redis, app=fake_celery, settings=settings)

    async def override_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def override_queue():
        return queue

    factory = SimpleNamespace(gmail=MagicMock(return_value=gmail_connector), drive=MagicMock())
    service = SyncService(factory, spool=SpoolWriter(tmp_path / "spool"), settings=settings)
    scheduler = SyncScheduler(override_queue, db_context, settings)

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_queue] = override_queue
    app.dependency_overrides[get_scheduler] = lambda: scheduler
    app.dependency_overrides[get_sync_service] = lambda: service
    app.dependency_overrides[get_auth_manager] = lambda: fake_auth_manager
    app.dependency_overrides[get_encryptor] = lambda: encryptor

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


class TestHealth:
    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestConfigRoutes:
    async def test_create_and_fetch_config(self, client, gmail_token):
        response = await client.post(
            "/api/v1/sync/configs",
            json={
                "token_id": str(gmail_token.id),
                "service_type": "gmail",
                "name": "RFQ inbox",
                "gmail_query": "subject:RFQ",
                "sync_frequency": "hourly",
            },
            headers={"X-User-Id": "user-1"},
        )

        assert response.status_code == 201
        body = response.json()
        assert body["success"] is True
        config = body["data"]
        assert config["name"] == "RFQ inbox"
        assert config["next_sync_at"] is not None

        fetched = await client.get(f"/api/v1/sync/configs/{config['id']}")
        assert fetched.json()["data"]["gmail_query"] == "subject:RFQ"

        listed = await client.get("/api/v1/sync/configs", params={"service_type": "gmail"})
        assert [c["id"] for c in listed.json()["data"]] == [config["id"]]

    async def test_unknown_config_is_404(self, client):
        response = await client.get(f"/api/v1/sync/configs/{uuid.uuid4()}")

        assert response.status_code == 404
        assert response.json() == {"success": False, "error": "Sync configuration not found"}

    async def test_invalid_body_is_400(self, client, gmail_token):
        response = await client.post(
            "/api/v1/sync/configs",
            json={"token_id": str(gmail_token.id), "service_type": "drive", "name": "Docs"},
        )

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "Invalid request"
        assert body["data"]["detail"]

    async def test_domain_error_is_400(self, client, gmail_token):
        response = await client.post(
            "/api/v1/sync/configs",
            json={
                "token_id": str(gmail_token.id),
                "service_type": "drive",
                "name": "Docs",
                "drive_folder_id": "abc",
            },
        )

        assert response.status_code == 400
        assert response.json()["error"] == "Token is for gmail, not drive"

    async def test_update_and_delete(self, client, gmail_config):
        response = await client.patch(
            f"/api/v1/sync/configs/{gmail_config.id}", json={"sync_frequency": "daily"}
        )
        assert response.status_code == 200
        assert response.json()["data"]["sync_frequency"] == "daily"

        response = await client.delete(f"/api/v1/sync/configs/{gmail_config.id}")
        assert response.json() == {"success": True, "data": {"deleted": True}, "error": None}

        response = await client.delete(f"/api/v1/sync/configs/{gmail_config.id}")
        assert response.status_code == 404


class TestJobRoutes:
    async def test_trigger_then_conflict(self, client, gmail_config, fake_celery):
        first = await client.post(
            f"/api/v1/sync/configs/{gmail_config.id}/trigger", headers={"X-User-Id": "user-1"}
        )

        assert first.status_code == 202
        job = first.json()["data"]
        assert job["type"] == "gmail_sync"
        assert fake_celery.sent[0]["args"][0]["triggered_by"] == "user-1"

        second = await client.post(f"/api/v1/sync/configs/{gmail_config.id}/trigger")

        assert second.status_code == 409
        body = second.json()
        assert body["success"] is False
        assert body["data"] == {"existing_job_id": job["job_id"]}

        status = await client.get(f"/api/v1/sync/jobs/{job['job_id']}")
        assert status.json()["data"]["state"] == "waiting"

        jobs = await client.get(f"/api/v1/sync/configs/{gmail_config.id}/jobs")
        assert [j["job_id"] for j in jobs.json()["data"]] == [job["job_id"]]

    async def test_trigger_disabled_config(self, client, db, gmail_config):
        gmail_config.enabled = False
        await db.commit()

        response = await client.post(f"/api/v1/sync/configs/{gmail_config.id}/trigger")

        assert response.status_code == 400
        assert response.json()["error"] == "Sync configuration is disabled"

    async def test_unknown_job_is_404(self, client):
        response = await client.get("/api/v1/sync/jobs/gmail-sync-missing-1")

        assert response.status_code == 404
        assert response.json()["error"] == "Sync job not found: gmail-sync-missing-1"

    async def test_queue_stats(self, client, gmail_config):
        await client.post(f"/api/v1/sync/configs/{gmail_config.id}/trigger")

        response = await client.get("/api/v1/sync/queue/stats")

        assert response.json()["data"]["waiting"] == 1
        assert response.json()["data"]["total"] == 1


class TestScheduleRoutes:
    async def test_pause_resume(self, client, drive_config):
        paused = await client.post(f"/api/v1/sync/configs/{drive_config.id}/pause")
        assert paused.json()["data"]["enabled"] is False
        assert paused.json()["data"]["next_sync_at"] is None

        resumed = await client.post(f"/api/v1/sync/configs/{drive_config.id}/resume")
        assert resumed.json()["data"]["enabled"] is True
        assert resumed.json()["data"]["next_sync_at"] is not None

    async def test_scheduler_status(self, client, drive_config):
        response = await client.get("/api/v1/sync/scheduler/status")

        data = response.json()["data"]
        assert data["scheduler"]["running"] is False
        assert data["schedule"]["total_configs"] == 1
        assert data["schedule"]["by_frequency"] == {"daily": 1}


class TestPreviewRoutes:
    async def test_gmail_preview(self, client, gmail_token, gmail_connector):
        response = await client.post(
            "/api/v1/sync/gmail/preview",
            json={"token_id": str(gmail_token.id), "query": "RFQ", "max_results": 5},
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["total_count"] == 7
        assert data["messages"][0]["id"] == "msg-1"
        gmail_connector.search_messages.assert_awaited_once_with(query="RFQ", label_ids=None, max_results=5)

    async def test_preview_limit_validated(self, client, gmail_token):
        response = await client.post(
            "/api/v1/sync/gmail/preview",
            json={"token_id": str(gmail_token.id), "max_results": 500},
        )

        assert response.status_code == 400


class TestOAuthRoutes:
    async def test_status(self, client):
        response = await client.get("/api/v1/oauth/status")

        assert response.json()["data"] == {"gmail": True, "drive": False}

    async def test_authorize(self, client, fake_auth_manager):
        fake_auth_manager.generate_auth_url = AsyncMock(
            return_value=("https://accounts.google.com/o/oauth2/auth?state=s1", "s1")
        )

        response = await client.get("/api/v1/oauth/gmail/authorize", headers={"X-User-Id": "user-7"})

        assert response.status_code == 200
        assert response.json()["data"]["state"] == "s1"
        fake_auth_manager.generate_auth_url.assert_awaited_once_with("gmail", "user-7")

    async def test_authorize_unconfigured_service(self, client, fake_auth_manager):
        fake_auth_manager.is_service_configured = MagicMock(return_value=False)

        response = await client.get("/api/v1/oauth/drive/authorize")

        assert response.status_code == 400
        assert response.json()["success"] is False

    async def test_authorize_unknown_service(self, client):
        response = await client.get("/api/v1/oauth/dropbox/authorize")

        assert response.status_code == 400

    async def test_callback_stores_account(self, client, fake_auth_manager):
        fake_auth_manager.verify_state = AsyncMock(
            return_value={"service": "gmail", "user_id": "user-9", "code_verifier": "verifier"}
        )
        fake_auth_manager.exchange_code = AsyncMock(
            return_value=OAuthTokenSet(
                access_token="access",
                refresh_token="refresh",
                expiry=utcnow() + timedelta(hours=1),
                scopes=["https://www.googleapis.com/auth/gmail.readonly"],
            )
        )
        fake_auth_manager.get_user_email = AsyncMock(return_value="new@example.com")

        response = await client.get("/api/v1/oauth/gmail/callback", params={"code": "c", "state": "s"})

        assert response.status_code == 200
        assert response.json()["data"]["account_email"] == "new@example.com"
        fake_auth_manager.exchange_code.assert_awaited_once_with("gmail", "c", "verifier")

        accounts = await client.get("/api/v1/oauth/accounts", headers={"X-User-Id": "user-9"})
        assert [a["account_email"] for a in accounts.json()["data"]] == ["new@example.com"]

    async def test_callback_rejects_bad_state(self, client, fake_auth_manager):
        fake_auth_manager.verify_state = AsyncMock(return_value=None)

        response = await client.get("/api/v1/oauth/gmail/callback", params={"code": "c", "state": "s"})

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid or expired OAuth state"

    async def test_callback_provider_error(self, client):
        response = await client.get("/api/v1/oauth/gmail/callback", params={"error": "access_denied"})

        assert response.status_code == 400
        assert response.json()["error"] == "Authorization failed: access_denied"

    async def test_revoke_account(self, client, gmail_token):
        response = await client.delete(
            f"/api/v1/oauth/accounts/{gmail_token.id}", headers={"X-User-Id": "user-1"}
        )
        assert response.json()["data"] == {"revoked": True}

        response = await client.delete(
            f"/api/v1/oauth/accounts/{gmail_token.id}", headers={"X-User-Id": "user-1"}
        )
        assert response.status_code == 404
