"""
Connector payload schemas for Gmail and Google Drive.

Field names follow the Google API responses (camelCase) because these
objects are written verbatim into spool sidecars.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


class GmailLabel(BaseModel):
    id: str
    name: str
    type: Optional[str] = None


class GmailMessageSummary(BaseModel):
    id: str
    threadId: str = ""
    historyId: Optional[str] = None
    internalDate: Optional[str] = None
    snippet: Optional[str] = None
    labelIds: list[str] = Field(default_factory=list)
    headers: dict[str, str] = Field(default_factory=dict)
    labels: Optional[list[str]] = None

    @property
    def subject(self) -> Optional[str]:
        return self.headers.get("subject")


class GmailMessagePayload(BaseModel):
    summary: GmailMessageSummary
    raw: str


class GmailSearchResult(BaseModel):
    messages: list[GmailMessageSummary] = Field(default_factory=list)
    next_page_token: Optional[str] = None


class DriveOwner(BaseModel):
    model_config = ConfigDict(extra="allow")

    displayName: Optional[str] = None
    emailAddress: Optional[str] = None


class DriveFileSummary(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    name: str
    mimeType: str
    modifiedTime: Optional[str] = None
    createdTime: Optional[str] = None
    size: Optional[str] = None
    owners: list[DriveOwner] = Field(default_factory=list)
    parents: list[str] = Field(default_factory=list)
    webViewLink: Optional[str] = None


class DriveFileContent(BaseModel):
    summary: DriveFileSummary
    content: bytes
    file_extension: str


class DriveFolderListing(BaseModel):
    files: list[DriveFileSummary] = Field(default_factory=list)
    next_page_token: Optional[str] = None


class DriveSearchResult(BaseModel):
    files: list[DriveFileSummary] = Field(default_factory=list)
    truncated: bool = False


class SourceMetadata(BaseModel):
    """JSON sidecar written next to every spooled file."""

    connector: str
    queryName: Optional[str] = None
    message: Optional[dict[str, Any]] = None
    file: Optional[dict[str, Any]] = None
