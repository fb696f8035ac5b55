"""
Error tracking service: persists pipeline errors to error_logs.
"""

import logging
import uuid
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from dealsync.models import ErrorLog

logger = logging.getLogger(__name__)


class ErrorTrackingService:
    """
    Service for recording errors raised by pipeline components.

    Handles:
    - Parser errors and warnings
    - Per-file error lookup
    - Category counts for triage
    """

    async def log_error(
        self,
        db: AsyncSession,
        category: str,
        error_type: str,
        message: str,
        severity: str = "error",
        source_component: Optional[str] = None,
        source_file_id: Optional[uuid.UUID] = None,
        file_name: Optional[str] = None,
        file_type: Optional[str] = None,
        error_data: Optional[dict] = None,
    ) -> ErrorLog:
        entry = ErrorLog(
            error_category=category,
            error_type=error_type,
            error_severity=severity,
            error_message=message,
            source_component=source_component,
            source_file_id=source_file_id,
            file_name=file_name,
            file_type=file_type,
            error_data=error_data or {},
        )
        db.add(entry)
        await db.flush()
        return entry

    async def log_parsing_error(
        self,
        db: AsyncSession,
        message: str,
        severity: str = "error",
        source_file_id: Optional[uuid.UUID] = None,
        file_name: Optional[str] = None,
        file_type: Optional[str] = None,
        error_data: Optional[dict] = None,
    ) -> ErrorLog:
        return await self.log_error(
            db,
            category="parsing",
            error_type="parsing_error",
            message=message,
            severity=severity,
            source_component="file_parser",
            source_file_id=source_file_id,
            file_name=file_name,
            file_type=file_type,
            error_data=error_data,
        )

    async def get_errors_for_file(self, db: AsyncSession, source_file_id: uuid.UUID) -> list[ErrorLog]:
        stmt = (
            select(ErrorLog)
            .where(ErrorLog.source_file_id == source_file_id)
            .order_by(ErrorLog.occurred_at.desc())
        )
        result = await db.execute(stmt)
        return list(result.scalars().all())

    async def count_by_category(self, db: AsyncSession) -> dict[str, int]:
        stmt = select(ErrorLog.error_category, func.count()).group_by(ErrorLog.error_category)
        result = await db.execute(stmt)
        return {category: count for category, count in result.all()}
