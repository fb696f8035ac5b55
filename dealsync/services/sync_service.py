"""
Sync service for pulling Gmail messages and Drive files into the import
pipeline.
"""

import logging
import time
import uuid
from dataclasses import dataclass
from datetime import date
from typing import Any, Awaitable, Callable, Optional, Union

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from dealsync.config import Settings, get_settings
from dealsync.connectors.drive import DriveConnector
from dealsync.connectors.factory import ConnectorFactory
from dealsync.core.exceptions import (
    SyncConfigNotFoundError,
    SyncConfigurationError,
    TokenNotFoundError,
)
from dealsync.core.progress import ProgressChannel, publish
from dealsync.core.timeutils import utcnow
from dealsync.models import OAuthToken, SourceFile, SyncConfiguration, SyncedItem, SyncRun
from dealsync.models.sync import GOOGLE_DOC_MIME_TYPE
from dealsync.schemas.sync import SyncConfigCreate, SyncConfigUpdate, SyncResult
from dealsync.services.file_processor import FileProcessor
from dealsync.services.scheduler import calculate_next_sync_time
from dealsync.services.spool import SpooledFile, SpoolWriter, slugify

logger = logging.getLogger(__name__)

DRIVE_FILE_TYPES = {".csv": "csv", ".pdf": "pdf", ".docx": "docx"}

# Columns an update may not clear
NON_NULL_FIELDS = {
    "name",
    "enabled",
    "gmail_label_ids",
    "drive_include_subfolders",
    "drive_mime_types",
    "sync_frequency",
}


def build_gmail_query(
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    query: Optional[str] = None,
) -> str:
    """Combine date bounds and free-text Gmail search syntax."""
    parts = []
    if date_from:
        parts.append(f"after:{date_from.strftime('%Y/%m/%d')}")
    if date_to:
        parts.append(f"before:{date_to.strftime('%Y/%m/%d')}")
    if query and query.strip():
        parts.append(query.strip())
    return " ".join(parts)


def drive_file_type(extension: str) -> str:
    return DRIVE_FILE_TYPES.get((extension or "").lower(), "txt")


# ============== Ledger ==============

class SyncLedger:
    """Run history and synced-item bookkeeping."""

    @staticmethod
    async def is_item_synced(db: AsyncSession, config_id: uuid.UUID, external_id: str) -> bool:
        stmt = select(SyncedItem.id).where(
            SyncedItem.config_id == config_id,
            SyncedItem.external_id == external_id,
        )
        result = await db.execute(stmt)
        return result.first() is not None

    @staticmethod
    async def mark_item_synced(
        db: AsyncSession,
        config_id: uuid.UUID,
        external_id: str,
        source_file_id: Optional[uuid.UUID] = None,
        sync_run_id: Optional[uuid.UUID] = None,
        item_hash: Optional[str] = None,
    ) -> None:
        """Upsert on (config_id, external_id); re-syncs refresh synced_at."""
        result = await db.execute(
            update(SyncedItem)
            .where(
                SyncedItem.config_id == config_id,
                SyncedItem.external_id == external_id,
            )
            .values(
                source_file_id=source_file_id,
                sync_run_id=sync_run_id,
                external_item_hash=item_hash,
                synced_at=utcnow(),
            )
        )
        if result.rowcount == 0:
            db.add(
                SyncedItem(
                    config_id=config_id,
                    external_id=external_id,
                    source_file_id=source_file_id,
                    sync_run_id=sync_run_id,
                    external_item_hash=item_hash,
                    synced_at=utcnow(),
                )
            )
        await db.flush()

    @staticmethod
    async def create_run(
        db: AsyncSession,
        config_id: uuid.UUID,
        trigger_type: str = "manual",
        triggered_by: Optional[str] = None,
    ) -> uuid.UUID:
        run = SyncRun(
            config_id=config_id,
            status="running",
            started_at=utcnow(),
            trigger_type=trigger_type,
            triggered_by=triggered_by,
            details={},
        )
        db.add(run)
        await db.flush()
        return run.id

    @staticmethod
    async def update_run(db: AsyncSession, run_id: uuid.UUID, **values: Any) -> None:
        await db.execute(update(SyncRun).where(SyncRun.id == run_id).values(**values))


@dataclass
class RunCounters:
    items_found: int = 0
    items_processed: int = 0
    items_skipped: int = 0
    deals_created: int = 0
    vendors_created: int = 0
    contacts_created: int = 0
    errors_count: int = 0

    def values(self) -> dict[str, int]:
        return dict(self.__dict__)


@dataclass
class _RunPlan:
    """Connector-specific parts of a sync run."""

    service: str
    search_status: str
    item_status: str
    search: Callable[[], Awaitable[tuple[list[Any], bool]]]
    fetch: Callable[[Any], Awaitable[tuple[SpooledFile, str, dict]]]


class SyncService:
    """
    Service for synchronizing Gmail and Drive content.

    Handles:
    - Gmail and Drive sync runs with progress reporting
    - Idempotency through the synced-items ledger
    - Previews for configuration screens
    - Run history and configuration removal
    """

    def __init__(
        self,
        connector_factory: ConnectorFactory,
        file_processor: Optional[FileProcessor] = None,
        spool: Optional[SpoolWriter] = None,
        settings: Optional[Settings] = None,
    ):
        self.connector_factory = connector_factory
        self.file_processor = file_processor or FileProcessor()
        self.settings = settings or get_settings()
        self.spool = spool or SpoolWriter(self.settings.spool_directory)

    async def _load_config(
        self,
        db: AsyncSession,
        config_id: Union[str, uuid.UUID],
        service_type: str,
    ) -> SyncConfiguration:
        config = await db.get(SyncConfiguration, uuid.UUID(str(config_id)))
        if config is None:
            raise SyncConfigNotFoundError()
        if config.service_type != service_type:
            label = "Gmail" if service_type == "gmail" else "Drive"
            raise SyncConfigurationError(f"Invalid service type for {label} sync")
        if not config.enabled:
            raise SyncConfigurationError("Sync configuration is disabled")
        return config

    # ============== Gmail ==============

    async def sync_gmail_config(
        self,
        db: AsyncSession,
        config_id: Union[str, uuid.UUID],
        trigger_type: str = "manual",
        triggered_by: Optional[str] = None,
        progress: Optional[ProgressChannel] = None,
    ) -> SyncResult:
        """
        Run one Gmail sync for a configuration.

        Fetches up to ``sync_max_items_per_run`` messages; ``has_more`` on the
        result tells the caller whether another run would find more.
        """
        config = await self._load_config(db, config_id, "gmail")
        config_id = config.id
        query_name = slugify(config.name)
        query = build_gmail_query(config.gmail_date_from, config.gmail_date_to, config.gmail_query)
        label_ids = list(config.gmail_label_ids or [])
        gmail = self.connector_factory.gmail(db, config.token_id)

        async def search() -> tuple[list[Any], bool]:
            result = await gmail.search_messages(
                query=query or None,
                label_ids=label_ids or None,
                max_results=self.settings.sync_max_items_per_run,
            )
            return result.messages, result.next_page_token is not None

        async def fetch(message) -> tuple[SpooledFile, str, dict]:
            payload = await gmail.fetch_message_raw(message.id)
            spooled = self.spool.write_gmail_message(query_name, payload)
            headers = message.headers
            metadata = {
                "gmail_message_id": message.id,
                "gmail_thread_id": message.threadId,
                "subject": headers.get("subject"),
                "from": headers.get("from"),
                "date": headers.get("date"),
                "labels": message.labelIds,
            }
            # Gmail messages are parsed as single-message mbox
            return spooled, "mbox", metadata

        plan = _RunPlan(
            service="gmail",
            search_status="searching_messages",
            item_status="processing_message",
            search=search,
            fetch=fetch,
        )
        return await self._execute_run(db, config_id, plan, trigger_type, triggered_by, progress)

    # ============== Drive ==============

    async def sync_drive_config(
        self,
        db: AsyncSession,
        config_id: Union[str, uuid.UUID],
        trigger_type: str = "manual",
        triggered_by: Optional[str] = None,
        progress: Optional[ProgressChannel] = None,
    ) -> SyncResult:
        """Run one Drive sync for a configuration."""
        config = await self._load_config(db, config_id, "drive")
        config_id = config.id
        folder_id = config.drive_folder_id or DriveConnector.parse_drive_folder_url(
            config.drive_folder_url or ""
        )
        if not folder_id:
            raise SyncConfigurationError("No Drive folder configured")

        query_name = slugify(config.name)
        mime_types = list(config.drive_mime_types or [GOOGLE_DOC_MIME_TYPE])
        include_subfolders = config.drive_include_subfolders
        drive = self.connector_factory.drive(db, config.token_id)

        async def search() -> tuple[list[Any], bool]:
            result = await drive.search_files(
                folder_id,
                mime_types=mime_types,
                include_subfolders=include_subfolders,
                max_results=self.settings.sync_max_items_per_run,
            )
            return result.files, result.truncated

        async def fetch(file) -> tuple[SpooledFile, str, dict]:
            content = await drive.fetch_file_content(file.id)
            spooled = self.spool.write_drive_file(query_name, content)
            metadata = {
                "drive_file_id": file.id,
                "drive_file_name": file.name,
                "mime_type": file.mimeType,
                "modified_time": file.modifiedTime,
                "web_view_link": file.webViewLink,
                "owners": [owner.model_dump() for owner in file.owners],
            }
            return spooled, drive_file_type(content.file_extension), metadata

        plan = _RunPlan(
            service="drive",
            search_status="searching_files",
            item_status="processing_file",
            search=search,
            fetch=fetch,
        )
        return await self._execute_run(db, config_id, plan, trigger_type, triggered_by, progress)

    # ============== Run loop ==============

    async def _execute_run(
        self,
        db: AsyncSession,
        config_id: uuid.UUID,
        plan: _RunPlan,
        trigger_type: str,
        triggered_by: Optional[str],
        progress: Optional[ProgressChannel],
    ) -> SyncResult:
        started = time.monotonic()
        counters = RunCounters()
        has_more = False

        run_id = await SyncLedger.create_run(db, config_id, trigger_type, triggered_by)
        await db.commit()
        logger.info(f"Started {plan.service} sync run {run_id} for config {config_id}")
        await publish(progress, 10, "initializing")

        try:
            await publish(progress, 15, plan.search_status)
            items, has_more = await plan.search()
            counters.items_found = len(items)
            await SyncLedger.update_run(db, run_id, items_found=counters.items_found)
            await db.commit()

            if items:
                for index, item in enumerate(items):
                    await self._sync_item(db, config_id, run_id, plan, item, index, counters, progress)
                await publish(progress, 95, "finalizing")

            await SyncLedger.update_run(
                db,
                run_id,
                status="completed",
                completed_at=utcnow(),
                details={"has_more": has_more},
                **counters.values(),
            )
            await db.execute(
                update(SyncConfiguration)
                .where(SyncConfiguration.id == config_id)
                .values(last_sync_at=utcnow())
            )
            await db.commit()
            await publish(progress, 100, "completed")
        except Exception as e:
            logger.error(f"{plan.service} sync run {run_id} failed: {e}")
            await db.rollback()
            counters.errors_count += 1
            await SyncLedger.update_run(
                db,
                run_id,
                status="failed",
                completed_at=utcnow(),
                error_message=str(e),
                error_details={"type": type(e).__name__},
                **counters.values(),
            )
            await db.commit()
            raise

        logger.info(
            f"{plan.service} sync run {run_id} completed: found={counters.items_found} "
            f"processed={counters.items_processed} skipped={counters.items_skipped} "
            f"deals={counters.deals_created} errors={counters.errors_count} has_more={has_more}"
        )
        return SyncResult(
            config_id=config_id,
            sync_run_id=run_id,
            has_more=has_more,
            duration=round(time.monotonic() - started, 3),
            **counters.values(),
        )

    async def _sync_item(
        self,
        db: AsyncSession,
        config_id: uuid.UUID,
        run_id: uuid.UUID,
        plan: _RunPlan,
        item: Any,
        index: int,
        counters: RunCounters,
        progress: Optional[ProgressChannel],
    ) -> None:
        external_id = item.id
        found = counters.items_found

        try:
            if await SyncLedger.is_item_synced(db, config_id, external_id):
                logger.debug(f"Skipping already synced {plan.service} item {external_id}")
                counters.items_processed += 1
                counters.items_skipped += 1
                return

            await publish(
                progress,
                int(15 + index * 70 / found + 0.5),
                f"{plan.item_status}_{index + 1}_of_{found}",
            )

            spooled, file_type, item_metadata = await plan.fetch(item)
            source_file = SourceFile(
                filename=spooled.filename,
                file_type=file_type,
                storage_path=str(spooled.path),
                file_size=spooled.size,
                processing_status="pending",
                scan_status="passed",
                file_metadata={
                    "source": spooled.metadata.model_dump(exclude_none=True),
                    "sync_config_id": str(config_id),
                    "sync_run_id": str(run_id),
                    **item_metadata,
                },
            )
            db.add(source_file)
            await db.flush()
            source_file_id = source_file.id
            await db.commit()

            try:
                result = await self.file_processor.process_file(db, source_file_id)
                counters.deals_created += result.deals_created
                counters.vendors_created += result.vendors_created
                counters.contacts_created += result.contacts_created
                logger.info(
                    f"Processed {plan.service} item {external_id} as {source_file_id}: "
                    f"{result.deals_created} deal(s)"
                )
            except Exception as e:
                logger.error(f"Failed to process {plan.service} item {external_id}: {e}")
                counters.errors_count += 1

            await SyncLedger.mark_item_synced(db, config_id, external_id, source_file_id, run_id)
            counters.items_processed += 1
            await SyncLedger.update_run(db, run_id, **counters.values())
            await db.commit()
        except Exception as e:
            logger.error(f"Error syncing {plan.service} item {external_id}: {e}")
            await db.rollback()
            counters.errors_count += 1

    # ============== Previews ==============

    async def preview_gmail_messages(
        self,
        db: AsyncSession,
        token_id: Union[str, uuid.UUID],
        query: Optional[str] = None,
        label_ids: Optional[list[str]] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        max_results: int = 10,
    ) -> dict:
        """Sample of messages a configuration would sync, plus a total count."""
        gmail = self.connector_factory.gmail(db, token_id)
        full_query = build_gmail_query(date_from, date_to, query) or None
        result = await gmail.search_messages(
            query=full_query,
            label_ids=label_ids or None,
            max_results=max_results,
        )
        total = await gmail.get_message_count(full_query, label_ids or None)
        return {
            "messages": [m.model_dump() for m in result.messages],
            "total_count": total,
        }

    async def preview_drive_files(
        self,
        db: AsyncSession,
        token_id: Union[str, uuid.UUID],
        folder_id: Optional[str] = None,
        folder_url: Optional[str] = None,
        mime_types: Optional[list[str]] = None,
        include_subfolders: bool = True,
        max_results: int = 10,
    ) -> dict:
        folder_id = folder_id or DriveConnector.parse_drive_folder_url(folder_url or "")
        if not folder_id:
            raise SyncConfigurationError("No Drive folder configured")

        drive = self.connector_factory.drive(db, token_id)
        folder = await drive.get_folder_info(folder_id)
        if folder is None:
            raise SyncConfigurationError(f"Drive folder not found: {folder_id}")

        result = await drive.search_files(
            folder_id,
            mime_types=mime_types,
            include_subfolders=include_subfolders,
            max_results=max_results,
        )
        total = await drive.get_file_count(folder_id, mime_types, include_subfolders)
        return {
            "folder": folder.model_dump(),
            "files": [f.model_dump() for f in result.files],
            "total_count": total,
        }

    # ============== Configurations ==============

    async def list_sync_configs(
        self,
        db: AsyncSession,
        service_type: Optional[str] = None,
        token_id: Optional[Union[str, uuid.UUID]] = None,
    ) -> list[SyncConfiguration]:
        stmt = select(SyncConfiguration).order_by(SyncConfiguration.created_at.desc())
        if service_type:
            stmt = stmt.where(SyncConfiguration.service_type == service_type)
        if token_id:
            stmt = stmt.where(SyncConfiguration.token_id == uuid.UUID(str(token_id)))
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def get_sync_config(self, db: AsyncSession, config_id: Union[str, uuid.UUID]) -> SyncConfiguration:
        config = await db.get(SyncConfiguration, uuid.UUID(str(config_id)))
        if config is None:
            raise SyncConfigNotFoundError()
        return config

    async def create_sync_config(self, db: AsyncSession, data: SyncConfigCreate) -> SyncConfiguration:
        """
        Create a configuration bound to an active token of the same service.

        Drive folder URLs are resolved to a folder id up front.
        """
        token = await db.get(OAuthToken, data.token_id)
        if token is None or token.revoked_at is not None:
            raise TokenNotFoundError()
        if token.service_type != data.service_type:
            raise SyncConfigurationError(
                f"Token is for {token.service_type}, not {data.service_type}"
            )

        values = data.model_dump()
        values["drive_mime_types"] = data.drive_mime_types or [GOOGLE_DOC_MIME_TYPE]
        if data.service_type == "drive":
            values["drive_folder_id"] = self._resolve_folder_id(
                data.drive_folder_id, data.drive_folder_url
            )

        config = SyncConfiguration(**values)
        config.next_sync_at = calculate_next_sync_time(data.sync_frequency) if data.enabled else None
        db.add(config)
        await db.flush()
        await db.refresh(config)
        logger.info(f"Created {data.service_type} sync configuration {config.id} ({data.name})")
        return config

    async def update_sync_config(
        self,
        db: AsyncSession,
        config_id: Union[str, uuid.UUID],
        data: SyncConfigUpdate,
    ) -> SyncConfiguration:
        config = await self.get_sync_config(db, config_id)
        changes = {
            key: value
            for key, value in data.model_dump(exclude_unset=True).items()
            if value is not None or key not in NON_NULL_FIELDS
        }

        if "drive_folder_id" in changes or "drive_folder_url" in changes:
            changes["drive_folder_id"] = self._resolve_folder_id(
                changes.get("drive_folder_id"),
                changes.get("drive_folder_url", config.drive_folder_url),
            )

        for field_name, value in changes.items():
            setattr(config, field_name, value)

        if "sync_frequency" in changes or "enabled" in changes:
            config.next_sync_at = (
                calculate_next_sync_time(config.sync_frequency) if config.enabled else None
            )

        await db.flush()
        await db.refresh(config)
        return config

    @staticmethod
    def _resolve_folder_id(folder_id: Optional[str], folder_url: Optional[str]) -> str:
        folder_id = folder_id or DriveConnector.parse_drive_folder_url(folder_url or "")
        if not folder_id:
            raise SyncConfigurationError("No Drive folder configured")
        return folder_id

    # ============== History and cleanup ==============

    async def get_sync_history(
        self,
        db: AsyncSession,
        config_id: Union[str, uuid.UUID],
        limit: int = 20,
    ) -> list[SyncRun]:
        stmt = (
            select(SyncRun)
            .where(SyncRun.config_id == uuid.UUID(str(config_id)))
            .order_by(SyncRun.started_at.desc())
            .limit(limit)
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def delete_sync_config(self, db: AsyncSession, config_id: Union[str, uuid.UUID]) -> bool:
        """Delete a configuration with its ledger and run history."""
        config_id = uuid.UUID(str(config_id))
        config = await db.get(SyncConfiguration, config_id)
        if config is None:
            return False

        await db.execute(delete(SyncedItem).where(SyncedItem.config_id == config_id))
        await db.execute(delete(SyncRun).where(SyncRun.config_id == config_id))
        await db.delete(config)
        await db.flush()
        logger.info(f"Deleted sync configuration {config_id}")
        return True
