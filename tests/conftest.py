"""Shared test fixtures."""
import json
import time
from contextlib import asynccontextmanager
from datetime import timedelta
from types import SimpleNamespace
from typing import Any, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import event
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from dealsync.config import Settings
from dealsync.core.retry import RateLimiter
from dealsync.core.timeutils import utcnow
from dealsync.core.token_encryption import TokenEncryptor
from dealsync.database import Base

# Import all models so Base.metadata knows about them
import dealsync.models  # noqa: F401
from dealsync.models import OAuthToken, SyncConfiguration


# ─── Database ────────────────────────────────────────────────────────────────

@pytest.fixture(name="engine")
async def engine_fixture():
    """In-memory SQLite engine with SAVEPOINT support. Tables recreated per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite's implicit transactions break SAVEPOINT; take over BEGIN ourselves
    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture(name="session_factory")
def session_factory_fixture(engine):
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


@pytest.fixture(name="db")
async def db_fixture(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture(name="db_context")
def db_context_fixture(session_factory):
    """Stand-in for dealsync.database.get_db_context bound to the test engine."""

    @asynccontextmanager
    async def context():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    return context


# ─── Settings and crypto ─────────────────────────────────────────────────────

@pytest.fixture(name="settings")
def settings_fixture(tmp_path) -> Settings:
    return Settings(
        token_encryption_key="test-secret",
        spool_directory=str(tmp_path / "spool"),
        redis_url="redis://localhost:6379/15",
    )


@pytest.fixture(name="encryptor")
def encryptor_fixture() -> TokenEncryptor:
    # Low iteration count keeps key derivation fast in tests
    return TokenEncryptor("test-secret", iterations=1000)


@pytest.fixture(name="fast_limiter")
def fast_limiter_fixture() -> RateLimiter:
    return RateLimiter(requests_per_second=10_000, burst_size=10_000)


# ─── Redis double ────────────────────────────────────────────────────────────

class FakeRedis:
    """In-memory stand-in for dealsync.core.redis_client.RedisClient."""

    def __init__(self):
        self.values: dict[str, tuple[str, Optional[float]]] = {}
        self.sorted_sets: dict[str, dict[str, float]] = {}
        self.disconnected = False

    def _live(self, key: str) -> Optional[str]:
        item = self.values.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at is not None and expires_at <= time.monotonic():
            del self.values[key]
            return None
        return value

    async def connect(self) -> None:
        pass

    async def disconnect(self) -> None:
        self.disconnected = True

    async def get(self, key: str) -> Optional[str]:
        return self._live(key)

    async def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        self.values[key] = (value, time.monotonic() + ttl if ttl else None)

    async def set_if_absent(self, key: str, value: str, ttl: int) -> bool:
        if self._live(key) is not None:
            return False
        await self.set(key, value, ttl)
        return True

    async def get_json(self, key: str) -> Optional[dict]:
        value = self._live(key)
        return json.loads(value) if value else None

    async def set_json(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        await self.set(key, json.dumps(value, default=str), ttl)

    async def pop_json(self, key: str) -> Optional[dict]:
        value = self._live(key)
        self.values.pop(key, None)
        return json.loads(value) if value else None

    async def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.values.pop(key, None) is not None:
                removed += 1
        return removed

    async def delete_if_value(self, key: str, value: str) -> bool:
        if self._live(key) != value:
            return False
        del self.values[key]
        return True

    async def zadd(self, key: str, member: str, score: float) -> None:
        self.sorted_sets.setdefault(key, {})[member] = score

    async def zrevrange(self, key: str, start: int, end: int) -> list[str]:
        members = sorted(self.sorted_sets.get(key, {}).items(), key=lambda kv: kv[1], reverse=True)
        names = [member for member, _ in members]
        return names[start:] if end == -1 else names[start:end + 1]

    async def zrem(self, key: str, *members: str) -> int:
        bucket = self.sorted_sets.get(key, {})
        return sum(1 for member in members if bucket.pop(member, None) is not None)


@pytest.fixture(name="fake_redis")
def fake_redis_fixture() -> FakeRedis:
    return FakeRedis()


# ─── Celery double ───────────────────────────────────────────────────────────

class FakeCeleryApp:
    """Records dispatched tasks and serves canned task states."""

    def __init__(self):
        self.sent: list[dict] = []
        self.states: dict[str, tuple[str, Any]] = {}
        self.forgotten: list[str] = []
        self.control = MagicMock()
        self.fail_send = False

    def send_task(self, name, args=None, kwargs=None, task_id=None, priority=None, **options):
        if self.fail_send:
            raise ConnectionError("broker unavailable")
        self.sent.append({"name": name, "args": args, "task_id": task_id, "priority": priority})
        return SimpleNamespace(id=task_id)

    def AsyncResult(self, task_id):
        state, info = self.states.get(task_id, ("PENDING", None))
        return SimpleNamespace(
            state=state,
            info=info,
            forget=lambda: self.forgotten.append(task_id),
        )


@pytest.fixture(name="fake_celery")
def fake_celery_fixture() -> FakeCeleryApp:
    return FakeCeleryApp()


# ─── Google fakes ────────────────────────────────────────────────────────────

class StaticCredentials:
    """CredentialsProvider that hands out one fixed credentials object."""

    def __init__(self, email: str = "rep@example.com"):
        self.credentials = object()
        self._email = email

    async def get_credentials(self):
        return self.credentials

    @property
    def account_email(self) -> Optional[str]:
        return self._email


@pytest.fixture(name="fake_auth_manager")
def fake_auth_manager_fixture() -> MagicMock:
    manager = MagicMock()
    manager.refresh_access_token = AsyncMock(
        return_value=("refreshed-access-token", utcnow() + timedelta(hours=1))
    )
    manager.build_credentials = MagicMock(side_effect=lambda *args: SimpleNamespace(args=args))
    manager.revoke_token = AsyncMock(return_value=True)
    manager.is_service_configured = MagicMock(return_value=True)
    manager.status = MagicMock(return_value={"gmail": True, "drive": False})
    return manager


# ─── Seed data ───────────────────────────────────────────────────────────────

@pytest.fixture(name="gmail_token")
async def gmail_token_fixture(db, encryptor) -> OAuthToken:
    token = OAuthToken(
        user_id="user-1",
        account_email="rep@example.com",
        access_token=encryptor.encrypt("access-token"),
        refresh_token=encryptor.encrypt("refresh-token"),
        token_expiry=utcnow() + timedelta(hours=1),
        scopes=["https://www.googleapis.com/auth/gmail.readonly"],
        service_type="gmail",
    )
    db.add(token)
    await db.commit()
    return token


@pytest.fixture(name="drive_token")
async def drive_token_fixture(db, encryptor) -> OAuthToken:
    token = OAuthToken(
        user_id="user-1",
        account_email="rep@example.com",
        access_token=encryptor.encrypt("access-token"),
        refresh_token=encryptor.encrypt("refresh-token"),
        token_expiry=utcnow() + timedelta(hours=1),
        scopes=["https://www.googleapis.com/auth/drive.readonly"],
        service_type="drive",
    )
    db.add(token)
    await db.commit()
    return token


@pytest.fixture(name="gmail_config")
async def gmail_config_fixture(db, gmail_token) -> SyncConfiguration:
    config = SyncConfiguration(
        token_id=gmail_token.id,
        name="RFQ",
        service_type="gmail",
        enabled=True,
        gmail_label_ids=[],
        gmail_query="subject:RFQ",
        sync_frequency="manual",
    )
    db.add(config)
    await db.commit()
    return config


@pytest.fixture(name="drive_config")
async def drive_config_fixture(db, drive_token) -> SyncConfiguration:
    config = SyncConfiguration(
        token_id=drive_token.id,
        name="Partner Docs",
        service_type="drive",
        enabled=True,
        drive_folder_id="folder-1",
        drive_include_subfolders=False,
        drive_mime_types=["application/vnd.google-apps.document"],
        sync_frequency="daily",
    )
    db.add(config)
    await db.commit()
    return config


@pytest.fixture(name="static_credentials")
def static_credentials_fixture() -> StaticCredentials:
    return StaticCredentials()
