"""Initial schema: OAuth tokens, sync configuration/history and import tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _uuid_pk() -> sa.Column:
    return sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, server_default=sa.text("uuid_generate_v4()"))


def upgrade() -> None:
    # Enable extensions
    op.execute("CREATE EXTENSION IF NOT EXISTS \"uuid-ossp\"")

    # OAuth tokens table
    op.create_table(
        "google_oauth_tokens",
        _uuid_pk(),
        sa.Column("user_id", sa.String(255), nullable=False, index=True),
        sa.Column("account_email", sa.String(255), nullable=False),
        sa.Column("access_token", sa.Text, nullable=False),
        sa.Column("refresh_token", sa.Text, nullable=False),
        sa.Column("token_expiry", sa.DateTime(timezone=True), nullable=False),
        sa.Column("scopes", postgresql.JSONB, server_default="[]"),
        sa.Column("service_type", sa.String(20), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("revoked_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "idx_oauth_token_unique",
        "google_oauth_tokens",
        ["user_id", "account_email", "service_type"],
        unique=True,
    )

    # Sync configurations table
    op.create_table(
        "sync_configurations",
        _uuid_pk(),
        sa.Column("token_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("google_oauth_tokens.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("service_type", sa.String(20), nullable=False),
        sa.Column("enabled", sa.Boolean, server_default=sa.true()),
        sa.Column("gmail_label_ids", postgresql.JSONB, server_default="[]"),
        sa.Column("gmail_query", sa.Text, nullable=True),
        sa.Column("gmail_date_from", sa.Date, nullable=True),
        sa.Column("gmail_date_to", sa.Date, nullable=True),
        sa.Column("drive_folder_id", sa.String(255), nullable=True),
        sa.Column("drive_folder_url", sa.Text, nullable=True),
        sa.Column("drive_include_subfolders", sa.Boolean, server_default=sa.true()),
        sa.Column("drive_mime_types", postgresql.JSONB, server_default='["application/vnd.google-apps.document"]'),
        sa.Column("sync_frequency", sa.String(20), server_default="manual"),
        sa.Column("sync_cron_expression", sa.String(100), nullable=True),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("created_by", sa.String(255), nullable=True),
    )
    op.create_index("idx_sync_config_due", "sync_configurations", ["enabled", "next_sync_at"])

    # Sync runs table
    op.create_table(
        "sync_runs",
        _uuid_pk(),
        sa.Column("config_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("sync_configurations.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("status", sa.String(20), server_default="pending"),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("items_found", sa.Integer, server_default="0"),
        sa.Column("items_processed", sa.Integer, server_default="0"),
        sa.Column("items_skipped", sa.Integer, server_default="0"),
        sa.Column("deals_created", sa.Integer, server_default="0"),
        sa.Column("vendors_created", sa.Integer, server_default="0"),
        sa.Column("contacts_created", sa.Integer, server_default="0"),
        sa.Column("errors_count", sa.Integer, server_default="0"),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("error_details", postgresql.JSONB, nullable=True),
        sa.Column("details", postgresql.JSONB, server_default="{}"),
        sa.Column("trigger_type", sa.String(20), server_default="manual"),
        sa.Column("triggered_by", sa.String(255), nullable=True),
    )
    op.create_index("idx_sync_runs_config_started", "sync_runs", ["config_id", "started_at"])

    # Source files table
    op.create_table(
        "source_files",
        _uuid_pk(),
        sa.Column("filename", sa.String(500), nullable=False),
        sa.Column("file_type", sa.String(50), nullable=False),
        sa.Column("storage_path", sa.Text, nullable=True),
        sa.Column("file_size", sa.BigInteger, server_default="0"),
        sa.Column("processing_status", sa.String(20), server_default="pending"),
        sa.Column("scan_status", sa.String(20), nullable=True),
        sa.Column("error_message", sa.Text, nullable=True),
        sa.Column("metadata", postgresql.JSONB, server_default="{}"),
        sa.Column("uploaded_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
    )

    # Synced items ledger
    op.create_table(
        "synced_items",
        _uuid_pk(),
        sa.Column("config_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("sync_configurations.id", ondelete="CASCADE"), nullable=False),
        sa.Column("external_id", sa.String(255), nullable=False),
        sa.Column("external_item_hash", sa.String(64), nullable=True),
        sa.Column("source_file_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("source_files.id", ondelete="SET NULL"), nullable=True),
        sa.Column("sync_run_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("sync_runs.id", ondelete="SET NULL"), nullable=True),
        sa.Column("synced_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_synced_items_unique", "synced_items", ["config_id", "external_id"], unique=True)

    # Vendors table
    op.create_table(
        "vendors",
        _uuid_pk(),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("normalized_name", sa.String(255), nullable=False, unique=True),
        sa.Column("approval_status", sa.String(20), server_default="approved"),
        sa.Column("email_domains", postgresql.JSONB, server_default="[]"),
        sa.Column("origin", sa.String(50), server_default="extracted"),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Vendor review queue
    op.create_table(
        "vendor_review_queue",
        _uuid_pk(),
        sa.Column("alias_name", sa.String(255), nullable=False),
        sa.Column("normalized_alias", sa.String(255), nullable=False, unique=True),
        sa.Column("status", sa.String(20), server_default="pending"),
        sa.Column("detection_count", sa.Integer, server_default="1"),
        sa.Column("latest_context", postgresql.JSONB, server_default="{}"),
        sa.Column("source_file_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("source_files.id", ondelete="SET NULL"), nullable=True),
        sa.Column("resolved_vendor_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("vendors.id", ondelete="SET NULL"), nullable=True),
        sa.Column("first_seen_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("last_seen_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Deal registrations table
    op.create_table(
        "deal_registrations",
        _uuid_pk(),
        sa.Column("vendor_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("vendors.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("deal_name", sa.String(500), nullable=False),
        sa.Column("deal_value", sa.Numeric(15, 2), server_default="0"),
        sa.Column("currency", sa.String(3), server_default="USD"),
        sa.Column("customer_name", sa.String(255), nullable=True),
        sa.Column("status", sa.String(50), server_default="registered"),
        sa.Column("deal_stage", sa.String(50), nullable=True),
        sa.Column("probability", sa.Integer, nullable=True),
        sa.Column("expected_close_date", sa.Date, nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("confidence_score", sa.Float, nullable=True),
        sa.Column("extraction_method", sa.String(50), nullable=True),
        sa.Column("source_file_ids", postgresql.JSONB, server_default="[]"),
        sa.Column("metadata", postgresql.JSONB, server_default="{}"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Contacts table
    op.create_table(
        "contacts",
        _uuid_pk(),
        sa.Column("vendor_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("vendors.id", ondelete="CASCADE"), nullable=False, index=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("role", sa.String(100), nullable=True),
        sa.Column("is_primary", sa.Boolean, server_default=sa.false()),
        sa.Column("source_file_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("source_files.id", ondelete="SET NULL"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    # Field provenance table
    op.create_table(
        "field_provenance",
        _uuid_pk(),
        sa.Column("entity_type", sa.String(20), nullable=False),
        sa.Column("entity_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("field_name", sa.String(100), nullable=False),
        sa.Column("field_value", sa.Text, nullable=True),
        sa.Column("source_file_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("source_files.id", ondelete="SET NULL"), nullable=True),
        sa.Column("source_type", sa.String(20), nullable=False),
        sa.Column("source_location", sa.Text, nullable=True),
        sa.Column("extraction_method", sa.String(30), nullable=False),
        sa.Column("confidence", sa.Float, nullable=True),
        sa.Column("extraction_context", postgresql.JSONB, server_default="{}"),
        sa.Column("validation_status", sa.String(20), server_default="unvalidated"),
        sa.Column("extracted_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )
    op.create_index("idx_provenance_entity", "field_provenance", ["entity_type", "entity_id"])

    # Error log table
    op.create_table(
        "error_logs",
        _uuid_pk(),
        sa.Column("error_category", sa.String(50), nullable=False),
        sa.Column("error_type", sa.String(100), nullable=False),
        sa.Column("error_severity", sa.String(20), nullable=False),
        sa.Column("error_message", sa.Text, nullable=False),
        sa.Column("source_component", sa.String(100), nullable=True),
        sa.Column("source_file_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("source_files.id", ondelete="SET NULL"), nullable=True),
        sa.Column("file_name", sa.String(500), nullable=True),
        sa.Column("file_type", sa.String(50), nullable=True),
        sa.Column("error_data", postgresql.JSONB, server_default="{}"),
        sa.Column("occurred_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )


def downgrade() -> None:
    op.drop_table("error_logs")
    op.drop_table("field_provenance")
    op.drop_table("contacts")
    op.drop_table("deal_registrations")
    op.drop_table("vendor_review_queue")
    op.drop_table("vendors")
    op.drop_table("synced_items")
    op.drop_table("source_files")
    op.drop_table("sync_runs")
    op.drop_table("sync_configurations")
    op.drop_table("google_oauth_tokens")
