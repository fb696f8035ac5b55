"""
Sync-related Pydantic schemas.
"""

import uuid
from datetime import date, datetime
from typing import Any, Generic, Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator

T = TypeVar("T")

ServiceType = Literal["gmail", "drive"]
SyncFrequency = Literal["manual", "hourly", "daily", "weekly"]
TriggerType = Literal["manual", "scheduled"]
JobType = Literal["gmail_sync", "drive_sync"]


class ApiResponse(BaseModel, Generic[T]):
    """Uniform response envelope."""

    success: bool = True
    data: Optional[T] = None
    error: Optional[str] = None


# ============== Configurations ==============

class SyncConfigBase(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    enabled: bool = True

    gmail_label_ids: list[str] = Field(default_factory=list)
    gmail_query: Optional[str] = None
    gmail_date_from: Optional[date] = None
    gmail_date_to: Optional[date] = None

    drive_folder_id: Optional[str] = None
    drive_folder_url: Optional[str] = None
    drive_include_subfolders: bool = True
    drive_mime_types: Optional[list[str]] = None

    sync_frequency: SyncFrequency = "manual"


class SyncConfigCreate(SyncConfigBase):
    """Request to create a sync configuration."""

    token_id: uuid.UUID
    service_type: ServiceType
    created_by: Optional[str] = None

    @model_validator(mode="after")
    def check_drive_folder(self) -> "SyncConfigCreate":
        if self.service_type == "drive" and not (self.drive_folder_id or self.drive_folder_url):
            raise ValueError("Drive sync requires drive_folder_id or drive_folder_url")
        return self


class SyncConfigUpdate(BaseModel):
    """Partial update of a sync configuration."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    enabled: Optional[bool] = None
    gmail_label_ids: Optional[list[str]] = None
    gmail_query: Optional[str] = None
    gmail_date_from: Optional[date] = None
    gmail_date_to: Optional[date] = None
    drive_folder_id: Optional[str] = None
    drive_folder_url: Optional[str] = None
    drive_include_subfolders: Optional[bool] = None
    drive_mime_types: Optional[list[str]] = None
    sync_frequency: Optional[SyncFrequency] = None


class SyncConfigResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    token_id: uuid.UUID
    name: str
    service_type: str
    enabled: bool
    gmail_label_ids: Optional[list[str]] = None
    gmail_query: Optional[str] = None
    gmail_date_from: Optional[date] = None
    gmail_date_to: Optional[date] = None
    drive_folder_id: Optional[str] = None
    drive_folder_url: Optional[str] = None
    drive_include_subfolders: Optional[bool] = None
    drive_mime_types: Optional[list[str]] = None
    sync_frequency: str
    last_sync_at: Optional[datetime] = None
    next_sync_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class SyncRunResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    config_id: uuid.UUID
    status: str
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    items_found: int = 0
    items_processed: int = 0
    items_skipped: int = 0
    deals_created: int = 0
    vendors_created: int = 0
    contacts_created: int = 0
    errors_count: int = 0
    error_message: Optional[str] = None
    details: Optional[dict] = None
    trigger_type: str
    triggered_by: Optional[str] = None


# ============== Jobs ==============

class SyncJobData(BaseModel):
    """Queue payload for one sync job."""

    type: JobType
    config_id: uuid.UUID
    trigger_type: TriggerType = "manual"
    triggered_by: Optional[str] = None


class SyncResult(BaseModel):
    """Outcome of one sync run."""

    config_id: uuid.UUID
    sync_run_id: uuid.UUID
    items_found: int = 0
    items_processed: int = 0
    items_skipped: int = 0
    deals_created: int = 0
    vendors_created: int = 0
    contacts_created: int = 0
    errors_count: int = 0
    has_more: bool = False
    duration: float = 0.0


class SyncJobResult(SyncResult):
    job_id: Optional[str] = None


class SyncJobStatus(BaseModel):
    job_id: str
    state: str  # waiting, active, delayed, completed, failed, cancelled, unknown
    data: Optional[SyncJobData] = None
    progress: int = 0
    progress_status: Optional[str] = None
    result: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    enqueued_at: Optional[datetime] = None


class SyncJobCreated(BaseModel):
    job_id: str
    config_id: uuid.UUID
    type: JobType


class QueueStats(BaseModel):
    waiting: int = 0
    active: int = 0
    delayed: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    total: int = 0


class ScheduleStats(BaseModel):
    total_configs: int
    enabled_configs: int
    due_now: int
    by_frequency: dict[str, int] = Field(default_factory=dict)


class SchedulerStatus(BaseModel):
    running: bool
    is_processing: bool
    interval_seconds: int
    last_tick_at: Optional[datetime] = None


# ============== Previews ==============

class GmailPreviewRequest(BaseModel):
    token_id: uuid.UUID
    query: Optional[str] = None
    label_ids: list[str] = Field(default_factory=list)
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    max_results: int = Field(default=10, ge=1, le=50)


class DrivePreviewRequest(BaseModel):
    token_id: uuid.UUID
    folder_id: Optional[str] = None
    folder_url: Optional[str] = None
    mime_types: Optional[list[str]] = None
    include_subfolders: bool = True
    max_results: int = Field(default=10, ge=1, le=50)


# ============== OAuth ==============

class AuthUrlResponse(BaseModel):
    auth_url: str
    state: str


class OAuthAccountResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    account_email: str
    service_type: str
    scopes: list[str] = Field(default_factory=list)
    token_expiry: Optional[datetime] = None
    created_at: Optional[datetime] = None


class OAuthServiceStatus(BaseModel):
    gmail: bool
    drive: bool
