"""
Business logic services.
"""

from dealsync.services.error_tracking import ErrorTrackingService
from dealsync.services.file_processor import FileProcessor, FileProcessingResult, ImportOutcome
from dealsync.services.scheduler import SyncScheduler
from dealsync.services.spool import SpoolWriter
from dealsync.services.sync_service import SyncService

__all__ = [
    "ErrorTrackingService",
    "FileProcessor",
    "FileProcessingResult",
    "ImportOutcome",
    "SyncScheduler",
    "SpoolWriter",
    "SyncService",
]
