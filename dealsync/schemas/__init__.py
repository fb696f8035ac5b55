"""
Pydantic schemas for API, connector and parser payloads.
"""

from dealsync.schemas.sync import (
    ApiResponse,
    SyncConfigCreate,
    SyncConfigUpdate,
    SyncConfigResponse,
    SyncRunResponse,
    SyncJobData,
    SyncJobResult,
    SyncJobStatus,
    SyncResult,
)
from dealsync.schemas.connectors import (
    GmailMessageSummary,
    GmailMessagePayload,
    GmailSearchResult,
    DriveFileSummary,
    DriveFileContent,
    DriveSearchResult,
    SourceMetadata,
)
from dealsync.schemas.parsing import (
    NormalizedVendor,
    NormalizedDeal,
    NormalizedContact,
    ParserOutput,
    ValidationResult,
)

__all__ = [
    "ApiResponse",
    "SyncConfigCreate",
    "SyncConfigUpdate",
    "SyncConfigResponse",
    "SyncRunResponse",
    "SyncJobData",
    "SyncJobResult",
    "SyncJobStatus",
    "SyncResult",
    "GmailMessageSummary",
    "GmailMessagePayload",
    "GmailSearchResult",
    "DriveFileSummary",
    "DriveFileContent",
    "DriveSearchResult",
    "SourceMetadata",
    "NormalizedVendor",
    "NormalizedDeal",
    "NormalizedContact",
    "ParserOutput",
    "ValidationResult",
]
