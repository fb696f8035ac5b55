"""
Sync API endpoints.
"""

import logging
import uuid
from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from dealsync.api.deps import (
    get_current_user_id,
    get_queue,
    get_scheduler,
    get_sync_service,
)
from dealsync.core.exceptions import SyncConfigNotFoundError, SyncConfigurationError
from dealsync.database import get_db
from dealsync.schemas.sync import (
    ApiResponse,
    DrivePreviewRequest,
    GmailPreviewRequest,
    QueueStats,
    SyncConfigCreate,
    SyncConfigResponse,
    SyncConfigUpdate,
    SyncJobCreated,
    SyncJobStatus,
    SyncRunResponse,
)
from dealsync.services.scheduler import SyncScheduler
from dealsync.services.sync_service import SyncService
from dealsync.workers.queue import SyncQueue

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync")


# ============== Configurations ==============

@router.get("/configs", response_model=ApiResponse[list[SyncConfigResponse]])
async def list_configs(
    service_type: Optional[str] = Query(default=None, pattern="^(gmail|drive)$"),
    token_id: Optional[uuid.UUID] = None,
    db: AsyncSession = Depends(get_db),
    service: SyncService = Depends(get_sync_service),
):
    configs = await service.list_sync_configs(db, service_type, token_id)
    return ApiResponse(data=[SyncConfigResponse.model_validate(c) for c in configs])


@router.post("/configs", response_model=ApiResponse[SyncConfigResponse], status_code=201)
async def create_config(
    request: SyncConfigCreate,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    service: SyncService = Depends(get_sync_service),
):
    if request.created_by is None:
        request = request.model_copy(update={"created_by": user_id})
    config = await service.create_sync_config(db, request)
    return ApiResponse(data=SyncConfigResponse.model_validate(config))


@router.get("/configs/{config_id}", response_model=ApiResponse[SyncConfigResponse])
async def get_config(
    config_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    service: SyncService = Depends(get_sync_service),
):
    config = await service.get_sync_config(db, config_id)
    return ApiResponse(data=SyncConfigResponse.model_validate(config))


@router.patch("/configs/{config_id}", response_model=ApiResponse[SyncConfigResponse])
async def update_config(
    config_id: uuid.UUID,
    request: SyncConfigUpdate,
    db: AsyncSession = Depends(get_db),
    service: SyncService = Depends(get_sync_service),
):
    config = await service.update_sync_config(db, config_id, request)
    return ApiResponse(data=SyncConfigResponse.model_validate(config))


@router.delete("/configs/{config_id}", response_model=ApiResponse[dict])
async def delete_config(
    config_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    service: SyncService = Depends(get_sync_service),
):
    if not await service.delete_sync_config(db, config_id):
        raise SyncConfigNotFoundError()
    return ApiResponse(data={"deleted": True})


# ============== Runs and jobs ==============

@router.post("/configs/{config_id}/trigger", response_model=ApiResponse[SyncJobCreated], status_code=202)
async def trigger_sync(
    config_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    user_id: str = Depends(get_current_user_id),
    service: SyncService = Depends(get_sync_service),
    queue: SyncQueue = Depends(get_queue),
):
    """Queue a manual sync. Returns 409 while another job for the config is in flight."""
    config = await service.get_sync_config(db, config_id)
    if not config.enabled:
        raise SyncConfigurationError("Sync configuration is disabled")

    if config.service_type == "gmail":
        job = await queue.add_gmail_sync_job(config.id, trigger_type="manual", triggered_by=user_id)
    else:
        job = await queue.add_drive_sync_job(config.id, trigger_type="manual", triggered_by=user_id)

    logger.info(f"Manual {config.service_type} sync queued for config {config.id}: {job.job_id}")
    return ApiResponse(data=job)


@router.get("/configs/{config_id}/history", response_model=ApiResponse[list[SyncRunResponse]])
async def get_history(
    config_id: uuid.UUID,
    limit: int = Query(default=20, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    service: SyncService = Depends(get_sync_service),
):
    await service.get_sync_config(db, config_id)
    runs = await service.get_sync_history(db, config_id, limit)
    return ApiResponse(data=[SyncRunResponse.model_validate(r) for r in runs])


@router.get("/configs/{config_id}/jobs", response_model=ApiResponse[list[SyncJobStatus]])
async def get_config_jobs(
    config_id: uuid.UUID,
    queue: SyncQueue = Depends(get_queue),
):
    return ApiResponse(data=await queue.get_jobs_for_config(config_id))


@router.get("/jobs/{job_id}", response_model=ApiResponse[SyncJobStatus])
async def get_job_status(job_id: str, queue: SyncQueue = Depends(get_queue)):
    return ApiResponse(data=await queue.get_sync_job_status(job_id))


@router.delete("/jobs/{job_id}", response_model=ApiResponse[SyncJobStatus])
async def cancel_job(job_id: str, queue: SyncQueue = Depends(get_queue)):
    return ApiResponse(data=await queue.cancel_sync_job(job_id))


@router.post("/jobs/{job_id}/retry", response_model=ApiResponse[SyncJobCreated], status_code=202)
async def retry_job(job_id: str, queue: SyncQueue = Depends(get_queue)):
    return ApiResponse(data=await queue.retry_sync_job(job_id))


@router.get("/queue/stats", response_model=ApiResponse[QueueStats])
async def queue_stats(queue: SyncQueue = Depends(get_queue)):
    return ApiResponse(data=await queue.get_sync_queue_stats())


# ============== Schedule ==============

@router.post("/configs/{config_id}/pause", response_model=ApiResponse[SyncConfigResponse])
async def pause_config(
    config_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    scheduler: SyncScheduler = Depends(get_scheduler),
):
    config = await scheduler.pause_sync(db, config_id)
    return ApiResponse(data=SyncConfigResponse.model_validate(config))


@router.post("/configs/{config_id}/resume", response_model=ApiResponse[SyncConfigResponse])
async def resume_config(
    config_id: uuid.UUID,
    db: AsyncSession = Depends(get_db),
    scheduler: SyncScheduler = Depends(get_scheduler),
):
    config = await scheduler.resume_sync(db, config_id)
    return ApiResponse(data=SyncConfigResponse.model_validate(config))


@router.get("/scheduler/status", response_model=ApiResponse[dict[str, Any]])
async def scheduler_status(
    db: AsyncSession = Depends(get_db),
    scheduler: SyncScheduler = Depends(get_scheduler),
    queue: SyncQueue = Depends(get_queue),
):
    status = await scheduler.get_scheduler_status(queue.redis)
    stats = await scheduler.get_schedule_stats(db)
    return ApiResponse(
        data={
            "scheduler": status.model_dump(mode="json"),
            "schedule": stats.model_dump(mode="json"),
        }
    )


# ============== Previews ==============

@router.post("/gmail/preview", response_model=ApiResponse[dict[str, Any]])
async def preview_gmail(
    request: GmailPreviewRequest,
    db: AsyncSession = Depends(get_db),
    service: SyncService = Depends(get_sync_service),
):
    preview = await service.preview_gmail_messages(
        db,
        request.token_id,
        query=request.query,
        label_ids=request.label_ids,
        date_from=request.date_from,
        date_to=request.date_to,
        max_results=request.max_results,
    )
    return ApiResponse(data=preview)


@router.post("/drive/preview", response_model=ApiResponse[dict[str, Any]])
async def preview_drive(
    request: DrivePreviewRequest,
    db: AsyncSession = Depends(get_db),
    service: SyncService = Depends(get_sync_service),
):
    preview = await service.preview_drive_files(
        db,
        request.token_id,
        folder_id=request.folder_id,
        folder_url=request.folder_url,
        mime_types=request.mime_types,
        include_subfolders=request.include_subfolders,
        max_results=request.max_results,
    )
    return ApiResponse(data=preview)
