"""
Sync configuration, run history and synced-items ledger models.
"""

import uuid
from datetime import date, datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from dealsync.database import Base
from dealsync.models.types import JSONType

GOOGLE_DOC_MIME_TYPE = "application/vnd.google-apps.document"


class SyncConfiguration(Base):
    """One recurring Gmail or Drive sync target."""

    __tablename__ = "sync_configurations"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    token_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("google_oauth_tokens.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    service_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )  # gmail, drive
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)

    # Gmail filters
    gmail_label_ids: Mapped[list] = mapped_column(JSONType, default=list)
    gmail_query: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    gmail_date_from: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    gmail_date_to: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # Drive filters
    drive_folder_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    drive_folder_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    drive_include_subfolders: Mapped[bool] = mapped_column(Boolean, default=True)
    drive_mime_types: Mapped[list] = mapped_column(
        JSONType,
        default=lambda: [GOOGLE_DOC_MIME_TYPE],
    )

    # Schedule
    sync_frequency: Mapped[str] = mapped_column(
        String(20),
        default="manual",
    )  # manual, hourly, daily, weekly
    sync_cron_expression: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    last_sync_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    next_sync_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )
    created_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        Index("idx_sync_config_due", "enabled", "next_sync_at"),
    )


class SyncRun(Base):
    """One execution of a sync configuration."""

    __tablename__ = "sync_runs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    config_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("sync_configurations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        default="pending",
    )  # pending, running, completed, failed, cancelled
    started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    items_found: Mapped[int] = mapped_column(Integer, default=0)
    items_processed: Mapped[int] = mapped_column(Integer, default=0)
    items_skipped: Mapped[int] = mapped_column(Integer, default=0)
    deals_created: Mapped[int] = mapped_column(Integer, default=0)
    vendors_created: Mapped[int] = mapped_column(Integer, default=0)
    contacts_created: Mapped[int] = mapped_column(Integer, default=0)
    errors_count: Mapped[int] = mapped_column(Integer, default=0)

    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    error_details: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    details: Mapped[dict] = mapped_column(JSONType, default=dict)

    trigger_type: Mapped[str] = mapped_column(
        String(20),
        default="manual",
    )  # manual, scheduled
    triggered_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        Index("idx_sync_runs_config_started", "config_id", "started_at"),
    )


class SyncedItem(Base):
    """Idempotency ledger: one row per external item per configuration."""

    __tablename__ = "synced_items"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )
    config_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("sync_configurations.id", ondelete="CASCADE"),
        nullable=False,
    )
    external_id: Mapped[str] = mapped_column(String(255), nullable=False)
    external_item_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    source_file_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("source_files.id", ondelete="SET NULL"),
        nullable=True,
    )
    sync_run_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid,
        ForeignKey("sync_runs.id", ondelete="SET NULL"),
        nullable=True,
    )
    synced_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )

    __table_args__ = (
        Index(
            "idx_synced_items_unique",
            "config_id",
            "external_id",
            unique=True,
        ),
    )
