"""Tests for Gmail and Drive sync runs and configuration management."""
import base64
import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import func, select

from dealsync.core.exceptions import (
    SyncConfigNotFoundError,
    SyncConfigurationError,
    TokenNotFoundError,
)
from dealsync.core.progress import ProgressChannel
from dealsync.core.timeutils import as_utc, utcnow
from dealsync.models import DealRegistration, SourceFile, SyncedItem, SyncRun
from dealsync.schemas.connectors import (
    DriveFileContent,
    DriveFileSummary,
    DriveOwner,
    DriveSearchResult,
    GmailMessagePayload,
    GmailMessageSummary,
    GmailSearchResult,
)
from dealsync.schemas.sync import SyncConfigCreate, SyncConfigUpdate
from dealsync.services.file_processor import FileProcessor
from dealsync.services.spool import SpoolWriter
from dealsync.services.sync_service import SyncService, build_gmail_query, drive_file_type

RFQ_EMAIL = (
    "From: Alice Smith <alice@acme-networks.com>\r\n"
    "To: rep@example.com\r\n"
    "Subject: RFQ for 200 units\r\n"
    "Message-ID: <msg-1@acme-networks.com>\r\n"
    "\r\n"
    "Please quote 200 units, budget $45k.\r\n"
)


def gmail_summary(message_id: str = "msg-1") -> GmailMessageSummary:
    return GmailMessageSummary(
        id=message_id,
        threadId="thread-1",
        labelIds=["INBOX"],
        headers={"subject": "RFQ for 200 units", "from": "alice@acme-networks.com"},
    )


def fake_gmail(messages=None, next_page_token=None) -> MagicMock:
    gmail = MagicMock()
    gmail.search_messages = AsyncMock(
        return_value=GmailSearchResult(messages=messages or [], next_page_token=next_page_token)
    )
    gmail.fetch_message_raw = AsyncMock(
        side_effect=lambda message_id: GmailMessagePayload(summary=gmail_summary(message_id), raw=RFQ_EMAIL)
    )
    gmail.get_message_count = AsyncMock(return_value=42)
    return gmail


def fake_drive(files=None, truncated=False) -> MagicMock:
    drive = MagicMock()
    drive.search_files = AsyncMock(return_value=DriveSearchResult(files=files or [], truncated=truncated))
    drive.fetch_file_content = AsyncMock(
        side_effect=lambda file_id: DriveFileContent(
            summary=DriveFileSummary(id=file_id, name="Call notes", mimeType="application/vnd.google-apps.document"),
            content=b"Vendor: Acme\nDeal: Firewall refresh\nCustomer: Initech\n",
            file_extension=".txt",
        )
    )
    return drive


@pytest.fixture(name="make_service")
def make_service_fixture(tmp_path, settings):
    def make(gmail=None, drive=None, file_processor=None) -> SyncService:
        factory = SimpleNamespace(
            gmail=MagicMock(return_value=gmail or fake_gmail()),
            drive=MagicMock(return_value=drive or fake_drive()),
        )
        return SyncService(
            factory,
            file_processor=file_processor or FileProcessor(auto_approve=True),
            spool=SpoolWriter(tmp_path / "spool"),
            settings=settings,
        )

    return make


class TestHelpers:
    def test_build_gmail_query(self):
        from datetime import date

        query = build_gmail_query(date(2024, 1, 1), date(2024, 2, 1), "  subject:RFQ ")
        assert query == "after:2024/01/01 before:2024/02/01 subject:RFQ"
        assert build_gmail_query() == ""

    def test_drive_file_type(self):
        assert drive_file_type(".CSV") == "csv"
        assert drive_file_type(".pdf") == "pdf"
        assert drive_file_type(".txt") == "txt"
        assert drive_file_type("") == "txt"


class TestGmailSync:
    async def test_no_messages_completes_empty_run(self, db, gmail_config, make_service):
        service = make_service(gmail=fake_gmail())

        result = await service.sync_gmail_config(db, gmail_config.id)

        assert (result.items_found, result.items_processed, result.errors_count) == (0, 0, 0)
        assert result.has_more is False
        run = await db.get(SyncRun, result.sync_run_id)
        assert run.status == "completed"
        assert run.details == {"has_more": False}
        await db.refresh(gmail_config)
        assert gmail_config.last_sync_at is not None

    async def test_message_is_spooled_parsed_and_imported(self, db, gmail_config, make_service, tmp_path):
        gmail = fake_gmail([gmail_summary("msg-1")])
        service = make_service(gmail=gmail)
        progress = ProgressChannel()

        result = await service.sync_gmail_config(db, gmail_config.id, "manual", "user-1", progress)

        assert result.items_found == 1
        assert result.items_processed == 1
        assert result.deals_created == 1
        assert result.vendors_created == 1
        assert result.contacts_created == 1

        eml = tmp_path / "spool" / "gmail" / "rfq" / "msg-1.eml"
        assert eml.read_text() == RFQ_EMAIL
        sidecar = json.loads((tmp_path / "spool" / "gmail" / "rfq" / "msg-1.eml.json").read_text())
        assert sidecar["connector"] == "gmail"
        assert sidecar["message"]["threadId"] == "thread-1"

        source_file = await db.scalar(select(SourceFile))
        assert source_file.file_type == "mbox"
        assert source_file.processing_status == "completed"
        assert source_file.file_metadata["gmail_message_id"] == "msg-1"
        assert source_file.file_metadata["sync_config_id"] == str(gmail_config.id)

        deal = await db.scalar(select(DealRegistration))
        assert deal.deal_name == "RFQ for 200 units"

        gmail.search_messages.assert_awaited_once_with(
            query="subject:RFQ", label_ids=None, max_results=100
        )
        statuses = [event.status for event in progress.history]
        assert statuses[0] == "initializing"
        assert "processing_message_1_of_1" in statuses
        assert statuses[-1] == "completed"

        run = await db.get(SyncRun, result.sync_run_id)
        assert run.triggered_by == "user-1"
        await db.refresh(gmail_config)
        assert gmail_config.last_sync_at is not None

    async def test_resync_skips_already_synced_messages(self, db, gmail_config, make_service):
        gmail = fake_gmail([gmail_summary("msg-1")])
        service = make_service(gmail=gmail)

        await service.sync_gmail_config(db, gmail_config.id)
        second = await service.sync_gmail_config(db, gmail_config.id)

        assert second.items_found == 1
        assert second.items_skipped == 1
        assert second.items_processed == 1
        assert second.deals_created == 0
        assert gmail.fetch_message_raw.await_count == 1
        assert await db.scalar(select(func.count()).select_from(SyncedItem)) == 1

    async def test_processing_failure_is_counted_and_item_marked(self, db, gmail_config, make_service):
        processor = MagicMock()
        processor.process_file = AsyncMock(side_effect=RuntimeError("parser crashed"))
        service = make_service(gmail=fake_gmail([gmail_summary("msg-1")]), file_processor=processor)

        result = await service.sync_gmail_config(db, gmail_config.id)

        assert result.errors_count == 1
        assert result.items_processed == 1
        assert await db.scalar(select(func.count()).select_from(SyncedItem)) == 1

    async def test_fetch_failure_skips_item_without_marking(self, db, gmail_config, make_service):
        gmail = fake_gmail([gmail_summary("msg-1")])
        gmail.fetch_message_raw = AsyncMock(side_effect=RuntimeError("404"))
        service = make_service(gmail=gmail)

        result = await service.sync_gmail_config(db, gmail_config.id)

        assert result.errors_count == 1
        assert result.items_processed == 0
        assert await db.scalar(select(func.count()).select_from(SyncedItem)) == 0

    async def test_search_failure_fails_the_run(self, db, gmail_config, make_service):
        gmail = fake_gmail()
        gmail.search_messages = AsyncMock(side_effect=RuntimeError("Gmail API down"))
        service = make_service(gmail=gmail)

        with pytest.raises(RuntimeError):
            await service.sync_gmail_config(db, gmail_config.id)

        run = await db.scalar(select(SyncRun))
        assert run.status == "failed"
        assert run.error_message == "Gmail API down"
        assert run.error_details == {"type": "RuntimeError"}
        assert run.errors_count == 1

    async def test_next_page_token_sets_has_more(self, db, gmail_config, make_service):
        service = make_service(gmail=fake_gmail(next_page_token="page-2"))

        result = await service.sync_gmail_config(db, gmail_config.id)

        assert result.has_more is True

    async def test_disabled_config_rejected(self, db, gmail_config, make_service):
        gmail_config.enabled = False
        await db.commit()

        with pytest.raises(SyncConfigurationError, match="disabled"):
            await make_service().sync_gmail_config(db, gmail_config.id)

    async def test_service_type_mismatch_rejected(self, db, drive_config, make_service):
        with pytest.raises(SyncConfigurationError, match="Invalid service type"):
            await make_service().sync_gmail_config(db, drive_config.id)


class TestDriveSync:
    async def test_drive_file_imported_as_transcript(self, db, drive_config, make_service, tmp_path):
        summary = DriveFileSummary(
            id="doc-1",
            name="Call notes",
            mimeType="application/vnd.google-apps.document",
            owners=[DriveOwner(displayName="Ann", emailAddress="ann@example.com")],
        )
        drive = fake_drive([summary])
        service = make_service(drive=drive)

        result = await service.sync_drive_config(db, drive_config.id, "scheduled")

        assert result.items_processed == 1
        assert result.deals_created == 1
        assert (tmp_path / "spool" / "drive" / "partner-docs" / "doc-1_Call_notes.txt").exists()
        drive.search_files.assert_awaited_once_with(
            "folder-1",
            mime_types=["application/vnd.google-apps.document"],
            include_subfolders=False,
            max_results=100,
        )
        source_file = await db.scalar(select(SourceFile))
        assert source_file.file_type == "txt"
        assert source_file.file_metadata["drive_file_id"] == "doc-1"
        assert source_file.file_metadata["owners"] == [{"displayName": "Ann", "emailAddress": "ann@example.com"}]

    async def test_truncated_search_sets_has_more(self, db, drive_config, make_service):
        service = make_service(drive=fake_drive(truncated=True))

        result = await service.sync_drive_config(db, drive_config.id)

        assert result.has_more is True
        run = await db.get(SyncRun, result.sync_run_id)
        assert run.details == {"has_more": True}

    async def test_missing_folder_rejected(self, db, drive_config, make_service):
        drive_config.drive_folder_id = None
        await db.commit()

        with pytest.raises(SyncConfigurationError, match="No Drive folder configured"):
            await make_service().sync_drive_config(db, drive_config.id)


class TestPreviews:
    async def test_gmail_preview(self, db, gmail_token, make_service):
        gmail = fake_gmail([gmail_summary("msg-1")])
        service = make_service(gmail=gmail)

        preview = await service.preview_gmail_messages(db, gmail_token.id, query="RFQ", max_results=5)

        assert preview["total_count"] == 42
        assert preview["messages"][0]["id"] == "msg-1"

    async def test_drive_preview_requires_existing_folder(self, db, drive_token, make_service):
        drive = fake_drive()
        drive.get_folder_info = AsyncMock(return_value=None)
        service = make_service(drive=drive)

        with pytest.raises(SyncConfigurationError, match="Drive folder not found"):
            await service.preview_drive_files(
                db, drive_token.id, folder_url="https://drive.google.com/drive/folders/abc123"
            )

        drive.get_folder_info.assert_awaited_once_with("abc123")


class TestConfigurations:
    async def test_create_gmail_config(self, db, gmail_token, make_service):
        service = make_service()

        config = await service.create_sync_config(
            db,
            SyncConfigCreate(token_id=gmail_token.id, service_type="gmail", name="RFQ", gmail_query="RFQ"),
        )
        await db.commit()

        assert config.next_sync_at is None
        assert config.gmail_label_ids == []
        assert [c.id for c in await service.list_sync_configs(db, service_type="gmail")] == [config.id]

    async def test_create_drive_config_resolves_folder_url(self, db, drive_token, make_service):
        service = make_service()

        config = await service.create_sync_config(
            db,
            SyncConfigCreate(
                token_id=drive_token.id,
                service_type="drive",
                name="Partner Docs",
                drive_folder_url="https://drive.google.com/drive/folders/XYZ_123",
                sync_frequency="daily",
            ),
        )

        assert config.drive_folder_id == "XYZ_123"
        assert config.drive_mime_types == ["application/vnd.google-apps.document"]
        assert as_utc(config.next_sync_at) > utcnow()

    async def test_token_service_must_match(self, db, gmail_token, make_service):
        with pytest.raises(SyncConfigurationError, match="Token is for gmail, not drive"):
            await make_service().create_sync_config(
                db,
                SyncConfigCreate(
                    token_id=gmail_token.id,
                    service_type="drive",
                    name="Docs",
                    drive_folder_id="abc",
                ),
            )

    async def test_revoked_token_rejected(self, db, gmail_token, make_service):
        gmail_token.revoked_at = utcnow()
        await db.commit()

        with pytest.raises(TokenNotFoundError):
            await make_service().create_sync_config(
                db, SyncConfigCreate(token_id=gmail_token.id, service_type="gmail", name="RFQ")
            )

    async def test_update_recomputes_schedule(self, db, gmail_config, make_service):
        service = make_service()

        updated = await service.update_sync_config(
            db, gmail_config.id, SyncConfigUpdate(sync_frequency="hourly", gmail_label_ids=None)
        )
        assert updated.next_sync_at is not None
        assert updated.gmail_label_ids == []

        updated = await service.update_sync_config(db, gmail_config.id, SyncConfigUpdate(enabled=False))
        assert updated.next_sync_at is None

    async def test_delete_removes_history(self, db, gmail_config, make_service):
        service = make_service(gmail=fake_gmail([gmail_summary("msg-1")]))
        await service.sync_gmail_config(db, gmail_config.id)

        assert await service.delete_sync_config(db, gmail_config.id) is True
        await db.commit()

        assert await db.scalar(select(func.count()).select_from(SyncRun)) == 0
        assert await db.scalar(select(func.count()).select_from(SyncedItem)) == 0
        with pytest.raises(SyncConfigNotFoundError):
            await service.get_sync_config(db, gmail_config.id)
        assert await service.delete_sync_config(db, gmail_config.id) is False

    async def test_history_newest_first(self, db, gmail_config, make_service):
        service = make_service()
        first = await service.sync_gmail_config(db, gmail_config.id)
        second = await service.sync_gmail_config(db, gmail_config.id)

        history = await service.get_sync_history(db, gmail_config.id, limit=1)

        assert [run.id for run in history] == [second.sync_run_id]
        assert first.sync_run_id != second.sync_run_id
